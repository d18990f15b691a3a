import logging
from dataclasses import dataclass

from sqlalchemy import case, func
from sqlmodel import select
from echopages.database_con import get_session
from echopages.db_models import AudioChunk, Book, Chapter

logger = logging.getLogger(__name__)


@dataclass
class BookProgress:
    book_id: int
    total_chapters: int
    completed_chapters: int
    audio_complete: bool
    newly_complete: bool = False


def completed_chapter_ids(session, book_id: int) -> set[int]:
    """Chapters of the book that have at least one chunk and no chunk outside `done`."""
    rows = session.exec(
        select(
            AudioChunk.chapter_id,
            func.count(AudioChunk.id),
            func.sum(case((AudioChunk.status == "done", 1), else_=0)),
        )
        .join(Chapter, Chapter.id == AudioChunk.chapter_id)
        .where(Chapter.book_id == book_id)
        .group_by(AudioChunk.chapter_id)
    ).all()
    return {chapter_id for chapter_id, total, done in rows if total > 0 and done == total}


def update_book_completion(book_id: int) -> BookProgress:
    """
    Recount finished chapters for a book and persist the counters.

    `audio_complete` (and catalog visibility) is only ever switched on here,
    never back off.
    """
    with get_session() as session:
        book = session.get(Book, book_id)
        if not book:
            raise ValueError(f"Book {book_id} not found")

        total = len(session.exec(select(Chapter.id).where(Chapter.book_id == book_id)).all())
        completed = len(completed_chapter_ids(session, book_id))

        book.total_chapters = total
        book.completed_chapters = completed
        newly_complete = False
        if total > 0 and completed == total and not book.audio_complete:
            book.audio_complete = True
            book.is_public = True
            newly_complete = True
            logger.info("Book %d audio complete (%d chapters), now public", book_id, total)

        session.add(book)
        logger.info("Book %d: %d/%d chapters complete", book_id, completed, total)
        return BookProgress(
            book_id=book_id,
            total_chapters=total,
            completed_chapters=completed,
            audio_complete=book.audio_complete,
            newly_complete=newly_complete,
        )
