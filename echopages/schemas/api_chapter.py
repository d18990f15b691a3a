from pydantic import BaseModel
from echopages.db_models import AudioChunk, Job


class GenerateChapter(BaseModel):
    user_id: str


class ChapterChunks(BaseModel):
    chapter_id: int
    chunks: list[AudioChunk]
    done: int
    error: int
    pending: int


class QueuedJob(BaseModel):
    job: Job
    removed_chunks: int = 0
