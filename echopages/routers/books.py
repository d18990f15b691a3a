import tempfile
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, UploadFile
from sqlmodel import select
from echopages.database_con import get_session
from echopages.db_models import AudioChunk, Book, Chapter
from echopages.helpers import storage
from echopages.helpers.chapters import detect_chapters
from echopages.helpers.documents import DocumentExtractionError, extract_document
from echopages.helpers.tts import estimate_cost
from echopages.helpers.voices import get_voice_by_id, get_voice_by_voice_id
from echopages.schemas.api_book import (
    ChapterProgress,
    CreateBook,
    ExtractedBook,
    UpdateBookTTS,
)

router = APIRouter(prefix="/books", tags=["books"])


def validate_narrator_voice(voice: str | None):
    if voice is not None and not (get_voice_by_id(voice) or get_voice_by_voice_id(voice)):
        raise HTTPException(status_code=400, detail=f"Unknown narrator voice: {voice}")


@router.post(
    "",
    response_model=Book,
    status_code=201,
    responses={400: {"description": "Unknown narrator voice"}},
)
async def create_book(body: CreateBook):
    """
    Create a new book.

    1. It validates the narrator voice against the voice catalog.
    2. It creates a new book in database with its TTS settings.
    3. It returns the book.
    """
    validate_narrator_voice(body.narrator_voice)
    with get_session() as session:
        book = Book(**body.model_dump())
        session.add(book)
        session.flush()
        session.refresh(book)
        return book.model_dump()


@router.get(
    "/{book_id}",
    response_model=Book,
    status_code=200,
    responses={404: {"description": "Book not found"}},
)
async def get_book(book_id: int):
    with get_session() as session:
        book = session.get(Book, book_id)
        if not book:
            raise HTTPException(status_code=404, detail="Book not found")
        return book.model_dump()


@router.post(
    "/{book_id}/extract",
    response_model=ExtractedBook,
    status_code=201,
    responses={
        400: {"description": "Unsupported or unreadable file"},
        404: {"description": "Book not found"},
    },
)
async def extract_book(book_id: int, file: UploadFile = File(...)):
    """
    Split an uploaded PDF, EPUB or text file into chapters.

    1. It extracts the document text (OCR for PDFs).
    2. It detects chapters, falling back to a single "Full Book" chapter.
    3. It deletes the book's previous chapters, chunks and chunk audio.
    4. It stores the new chapters and resets the book's progress counters.
    5. It returns the book, its chapters and the estimated synthesis cost.
    """
    with get_session() as session:
        if not session.get(Book, book_id):
            raise HTTPException(status_code=404, detail="Book not found")

    content = await file.read()
    filename = file.filename or ""
    try:
        with tempfile.TemporaryDirectory() as tmp_dir:
            epub_path = None
            if filename.lower().endswith(".epub"):
                epub_path = Path(tmp_dir) / "book.epub"
                epub_path.write_bytes(content)
            document = await extract_document(
                content, filename, str(epub_path) if epub_path else None
            )
    except DocumentExtractionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    detected = await detect_chapters(document.text, document.page_texts)

    with get_session() as session:
        old_chapters = session.exec(select(Chapter).where(Chapter.book_id == book_id)).all()
        old_chunks = session.exec(
            select(AudioChunk).where(AudioChunk.chapter_id.in_([c.id for c in old_chapters]))
        ).all()
        old_paths = [storage.audio_chunk_path(c.chapter_id, c.idx) for c in old_chunks if c.audio_url]
        for chunk in old_chunks:
            session.delete(chunk)
        for chapter in old_chapters:
            session.delete(chapter)
        session.flush()

        chapters = [
            Chapter(book_id=book_id, idx=c.idx, title=c.title, text_content=c.text)
            for c in detected
        ]
        session.add_all(chapters)

        book = session.get(Book, book_id)
        book.total_chapters = len(chapters)
        book.completed_chapters = 0
        book.audio_complete = False
        session.add(book)
        session.flush()
        for chapter in chapters:
            session.refresh(chapter)
        session.refresh(book)

        result = ExtractedBook(
            book=book,
            chapters=chapters,
            estimated_cost=round(estimate_cost(document.text, book.tts_provider), 4),
        ).model_dump()

    if old_paths:
        await storage.remove(old_paths)
    return result


@router.put(
    "/{book_id}/tts",
    response_model=Book,
    status_code=200,
    responses={
        400: {"description": "Unknown narrator voice"},
        404: {"description": "Book not found"},
    },
)
async def update_book_tts(book_id: int, body: UpdateBookTTS):
    """
    Change the book's TTS provider and/or narrator voice.

    Existing audio is kept; chunks generated afterwards use the new settings.
    """
    validate_narrator_voice(body.narrator_voice)
    with get_session() as session:
        book = session.get(Book, book_id)
        if not book:
            raise HTTPException(status_code=404, detail="Book not found")
        if body.tts_provider is not None:
            book.tts_provider = body.tts_provider
        if body.narrator_voice is not None:
            book.narrator_voice = body.narrator_voice
        session.add(book)
        session.flush()
        session.refresh(book)
        return book.model_dump()


@router.get(
    "/{book_id}/chapters",
    response_model=list[ChapterProgress],
    status_code=200,
    responses={404: {"description": "Book not found"}},
)
async def get_book_chapters(book_id: int):
    """
    Get the book's chapters in order with their chunk progress.
    """
    with get_session() as session:
        if not session.get(Book, book_id):
            raise HTTPException(status_code=404, detail="Book not found")
        chapters = session.exec(
            select(Chapter).where(Chapter.book_id == book_id).order_by(Chapter.idx)
        ).all()

        progress = []
        for chapter in chapters:
            statuses = session.exec(
                select(AudioChunk.status).where(AudioChunk.chapter_id == chapter.id)
            ).all()
            done = statuses.count("done")
            error = statuses.count("error")
            progress.append(
                ChapterProgress(
                    id=chapter.id,
                    idx=chapter.idx,
                    title=chapter.title,
                    total_chunks=len(statuses),
                    done_chunks=done,
                    error_chunks=error,
                    pending_chunks=len(statuses) - done - error,
                ).model_dump()
            )
        return progress
