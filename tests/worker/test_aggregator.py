from contextlib import contextmanager
from typing import Generator
from unittest.mock import patch

import pytest
from sqlmodel import Session, SQLModel, create_engine, select
from echopages.db_models import AudioChunk, Book, Chapter
from echopages.worker.aggregator import update_book_completion

test_engine = create_engine(
    "sqlite:///test_aggregator.db", connect_args={"check_same_thread": False}
)


@contextmanager
def get_test_session() -> Generator[Session, None, None]:
    """Test session that uses SQLite database"""
    session = Session(test_engine)
    try:
        yield session
    except Exception as e:
        session.rollback()
        raise e
    else:
        session.commit()
    finally:
        session.close()


@pytest.fixture(autouse=True)
def db():
    SQLModel.metadata.create_all(test_engine)
    with patch("echopages.worker.aggregator.get_session", get_test_session):
        yield
    SQLModel.metadata.drop_all(test_engine)


def create_book(chunk_statuses: list[list[str]]) -> int:
    """One chapter per entry, with chunks in the given statuses."""
    with get_test_session() as session:
        book = Book(title="Three Chapters")
        session.add(book)
        session.flush()
        for idx, statuses in enumerate(chunk_statuses):
            chapter = Chapter(book_id=book.id, idx=idx, title=f"Chapter {idx + 1}", text_content="...")
            session.add(chapter)
            session.flush()
            for chunk_idx, status in enumerate(statuses):
                session.add(
                    AudioChunk(
                        chapter_id=chapter.id,
                        idx=chunk_idx,
                        voice="narrator",
                        provider="openai",
                        text="Some text.",
                        status=status,
                    )
                )
        return book.id


def set_chunk_status(book_id: int, chapter_idx: int, chunk_idx: int, status: str):
    with get_test_session() as session:
        chapter = session.exec(
            select(Chapter).where(Chapter.book_id == book_id, Chapter.idx == chapter_idx)
        ).one()
        chunk = session.exec(
            select(AudioChunk).where(AudioChunk.chapter_id == chapter.id, AudioChunk.idx == chunk_idx)
        ).one()
        chunk.status = status
        session.add(chunk)


def test_all_chapters_done_completes_book():
    book_id = create_book([["done", "done"], ["done"], ["done", "done", "done"]])

    progress = update_book_completion(book_id)

    assert progress.completed_chapters == 3
    assert progress.total_chapters == 3
    assert progress.audio_complete
    assert progress.newly_complete
    with get_test_session() as session:
        book = session.get(Book, book_id)
        assert book.completed_chapters == 3
        assert book.total_chapters == 3
        assert book.audio_complete
        assert book.is_public


def test_partial_book_is_not_complete():
    book_id = create_book([["done", "done"], ["done", "error"], []])

    progress = update_book_completion(book_id)

    # chapter with an error chunk and chapter with no chunks are both unfinished
    assert progress.completed_chapters == 1
    assert progress.total_chapters == 3
    assert not progress.audio_complete
    with get_test_session() as session:
        assert not session.get(Book, book_id).is_public


def test_audio_complete_never_reverts():
    book_id = create_book([["done"], ["done"]])
    update_book_completion(book_id)

    set_chunk_status(book_id, 1, 0, "error")
    progress = update_book_completion(book_id)

    assert progress.completed_chapters == 1
    assert progress.audio_complete
    assert not progress.newly_complete


def test_missing_book():
    with pytest.raises(ValueError, match="not found"):
        update_book_completion(12345)
