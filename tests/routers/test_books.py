from contextlib import contextmanager
from typing import Generator
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from main import app
from sqlmodel import Session, SQLModel, create_engine, select
from echopages.db_models import AudioChunk, Book, Chapter
from echopages.helpers.documents import DocumentExtractionError
from echopages.models import DetectedChapter, Document

# Define test engine with proper SQLite configuration for testing
test_engine = create_engine(
    "sqlite:///test_books.db", connect_args={"check_same_thread": False}
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


@pytest.fixture
def client():
    """Create test client with overridden database session"""
    SQLModel.metadata.create_all(test_engine)

    with patch("echopages.routers.books.get_session", get_test_session):
        yield TestClient(app)

    SQLModel.metadata.drop_all(test_engine)


def create_book_with_audio() -> tuple[int, int]:
    """A book with one chapter holding one finished and one pending chunk."""
    with get_test_session() as session:
        book = Book(title="Old Upload", total_chapters=1, completed_chapters=1, audio_complete=True)
        session.add(book)
        session.flush()
        chapter = Chapter(book_id=book.id, idx=0, title="Old Chapter", text_content="Old text.")
        session.add(chapter)
        session.flush()
        session.add(
            AudioChunk(
                chapter_id=chapter.id,
                idx=0,
                voice="narrator",
                provider="openai",
                text="Old text.",
                status="done",
                audio_url=f"http://storage.test/audio/{chapter.id}/0.mp3",
            )
        )
        session.add(
            AudioChunk(chapter_id=chapter.id, idx=1, voice="narrator", provider="openai", text="More.")
        )
        return book.id, chapter.id


def test_create_book(client):
    response = client.post(
        "/books",
        json={"title": "Moby Dick", "author": "Herman Melville", "tts_provider": "google", "narrator_voice": "en-US-Neural2-D"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Moby Dick"
    assert data["tts_provider"] == "google"
    assert data["narrator_voice"] == "en-US-Neural2-D"
    assert data["audio_complete"] is False
    with get_test_session() as session:
        assert session.get(Book, data["id"]).author == "Herman Melville"


def test_create_book_unknown_voice(client):
    response = client.post("/books", json={"title": "Moby Dick", "narrator_voice": "no-such-voice"})

    assert response.status_code == 400
    assert "no-such-voice" in response.json()["detail"]


def test_create_book_unsupported_provider(client):
    response = client.post("/books", json={"title": "Moby Dick", "tts_provider": "azure"})

    assert response.status_code == 422


def test_get_book_not_found(client):
    response = client.get("/books/999")

    assert response.status_code == 404
    assert response.json()["detail"] == "Book not found"


@patch("echopages.helpers.storage.remove", new_callable=AsyncMock)
@patch("echopages.routers.books.detect_chapters", new_callable=AsyncMock)
@patch("echopages.routers.books.extract_document", new_callable=AsyncMock)
def test_extract_replaces_chapters(mock_extract, mock_detect, mock_remove, client):
    """Test re-extraction drops old chapters, chunks and their audio"""
    # Arrange
    book_id, old_chapter_id = create_book_with_audio()
    mock_extract.return_value = Document(text="First part. Second part.")
    mock_detect.return_value = [
        DetectedChapter(idx=0, title="Chapter 1", text="First part."),
        DetectedChapter(idx=1, title="Chapter 2", text="Second part."),
    ]

    # Act
    response = client.post(
        f"/books/{book_id}/extract",
        files={"file": ("book.txt", b"First part. Second part.", "text/plain")},
    )

    # Assert
    assert response.status_code == 201
    data = response.json()
    assert data["book"]["total_chapters"] == 2
    assert data["book"]["completed_chapters"] == 0
    assert data["book"]["audio_complete"] is False
    assert [c["title"] for c in data["chapters"]] == ["Chapter 1", "Chapter 2"]
    assert data["estimated_cost"] > 0

    mock_extract.assert_awaited_once_with(b"First part. Second part.", "book.txt", None)
    # only the finished chunk had audio in storage
    mock_remove.assert_awaited_once_with([f"audio/{old_chapter_id}/0.mp3"])
    with get_test_session() as session:
        assert session.exec(select(AudioChunk)).all() == []
        chapters = session.exec(select(Chapter).order_by(Chapter.idx)).all()
        assert [c.text_content for c in chapters] == ["First part.", "Second part."]


@patch("echopages.routers.books.detect_chapters", new_callable=AsyncMock)
@patch("echopages.routers.books.extract_document", new_callable=AsyncMock)
def test_extract_epub_is_written_to_disk(mock_extract, mock_detect, client):
    with get_test_session() as session:
        book = Book(title="Epub")
        session.add(book)
        session.flush()
        book_id = book.id
    mock_extract.return_value = Document(text="Whole book.")
    mock_detect.return_value = [DetectedChapter(idx=0, title="Full Book", text="Whole book.")]

    response = client.post(
        f"/books/{book_id}/extract",
        files={"file": ("novel.epub", b"epub bytes", "application/epub+zip")},
    )

    assert response.status_code == 201
    epub_path = mock_extract.call_args.args[2]
    assert epub_path.endswith("book.epub")


@patch("echopages.routers.books.extract_document", new_callable=AsyncMock)
def test_extract_unsupported_file(mock_extract, client):
    with get_test_session() as session:
        book = Book(title="Unreadable")
        session.add(book)
        session.flush()
        book_id = book.id
    mock_extract.side_effect = DocumentExtractionError("Unsupported file type: book.docx")

    response = client.post(
        f"/books/{book_id}/extract",
        files={"file": ("book.docx", b"...", "application/octet-stream")},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Unsupported file type: book.docx"


def test_extract_book_not_found(client):
    response = client.post(
        "/books/999/extract",
        files={"file": ("book.txt", b"text", "text/plain")},
    )

    assert response.status_code == 404


def test_update_book_tts(client):
    with get_test_session() as session:
        book = Book(title="Switching")
        session.add(book)
        session.flush()
        book_id = book.id

    response = client.put(
        f"/books/{book_id}/tts",
        json={"tts_provider": "elevenlabs", "narrator_voice": "rachel"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["tts_provider"] == "elevenlabs"
    assert data["narrator_voice"] == "rachel"


def test_get_book_chapters_progress(client):
    book_id, chapter_id = create_book_with_audio()

    response = client.get(f"/books/{book_id}/chapters")

    assert response.status_code == 200
    assert response.json() == [
        {
            "id": chapter_id,
            "idx": 0,
            "title": "Old Chapter",
            "total_chunks": 2,
            "done_chunks": 1,
            "error_chunks": 0,
            "pending_chunks": 1,
        }
    ]
