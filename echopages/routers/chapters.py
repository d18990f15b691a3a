from fastapi import APIRouter, HTTPException
from sqlmodel import select
from echopages import queue
from echopages.database_con import get_session
from echopages.db_models import AudioChunk, Chapter
from echopages.helpers import storage
from echopages.schemas.api_chapter import ChapterChunks, GenerateChapter, QueuedJob
from echopages.worker.aggregator import update_book_completion

router = APIRouter(prefix="/chapters", tags=["chapters"])


def get_chapter_or_404(chapter_id: int) -> Chapter:
    with get_session() as session:
        chapter = session.get(Chapter, chapter_id)
        if not chapter:
            raise HTTPException(status_code=404, detail="Chapter not found")
        return Chapter(**chapter.model_dump())


def ensure_not_queued(chapter_id: int):
    if queue.pending_jobs(chapter_id):
        raise HTTPException(status_code=409, detail="Chapter is already queued for generation")


@router.post(
    "/{chapter_id}/generate",
    response_model=QueuedJob,
    status_code=202,
    responses={
        404: {"description": "Chapter not found"},
        409: {"description": "Chapter is already queued"},
    },
)
async def generate_chapter(chapter_id: int, body: GenerateChapter):
    """
    Queue audio generation for a chapter.

    Chunks that already have audio are kept; only the rest are synthesized.
    """
    get_chapter_or_404(chapter_id)
    ensure_not_queued(chapter_id)
    job = queue.enqueue(chapter_id, body.user_id)
    return QueuedJob(job=job).model_dump()


@router.post(
    "/{chapter_id}/regenerate",
    response_model=QueuedJob,
    status_code=202,
    responses={
        404: {"description": "Chapter not found"},
        409: {"description": "Chapter is already queued"},
    },
)
async def regenerate_chapter(chapter_id: int, body: GenerateChapter):
    """
    Regenerate a chapter's audio from scratch.

    1. It deletes all chunks of the chapter from database.
    2. It deletes their audio files from storage.
    3. It recounts the book's completed chapters.
    4. It queues a new generation job.
    """
    chapter = get_chapter_or_404(chapter_id)
    ensure_not_queued(chapter_id)

    with get_session() as session:
        chunks = session.exec(select(AudioChunk).where(AudioChunk.chapter_id == chapter_id)).all()
        paths = [storage.audio_chunk_path(chapter_id, chunk.idx) for chunk in chunks]
        for chunk in chunks:
            session.delete(chunk)

    if paths:
        await storage.remove(paths)
    update_book_completion(chapter.book_id)

    job = queue.enqueue(chapter_id, body.user_id)
    return QueuedJob(job=job, removed_chunks=len(paths)).model_dump()


@router.get(
    "/{chapter_id}/chunks",
    response_model=ChapterChunks,
    status_code=200,
    responses={404: {"description": "Chapter not found"}},
)
async def get_chapter_chunks(chapter_id: int):
    get_chapter_or_404(chapter_id)
    with get_session() as session:
        chunks = session.exec(
            select(AudioChunk).where(AudioChunk.chapter_id == chapter_id).order_by(AudioChunk.idx)
        ).all()
        done = sum(1 for chunk in chunks if chunk.status == "done")
        error = sum(1 for chunk in chunks if chunk.status == "error")
        return ChapterChunks(
            chapter_id=chapter_id,
            chunks=chunks,
            done=done,
            error=error,
            pending=len(chunks) - done - error,
        ).model_dump()
