from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Book(SQLModel, table=True):
    id: int = Field(default=None, primary_key=True)
    title: str
    author: Optional[str] = Field(default=None)
    tts_provider: str = Field(default="openai")  # 'openai', 'elevenlabs' or 'google'
    narrator_voice: Optional[str] = Field(default=None)  # catalog id, e.g. 'nova-openai'
    total_chapters: int = Field(default=0)
    completed_chapters: int = Field(default=0)
    audio_complete: bool = Field(default=False)
    is_public: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)


class Chapter(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("book_id", "idx"),)

    id: int = Field(default=None, primary_key=True)
    book_id: int = Field(foreign_key="book.id", index=True)
    idx: int
    title: str
    text_content: Optional[str] = Field(default=None)


class AudioChunk(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("chapter_id", "idx"),)

    id: int = Field(default=None, primary_key=True)
    chapter_id: int = Field(foreign_key="chapter.id", index=True)
    idx: int
    voice: str  # 'narrator', 'dialogue' or a character name
    provider: str
    text: str
    emotion_hint: Optional[str] = Field(default=None)
    status: str = Field(default="pending", index=True)  # pending, processing, done, error
    audio_url: Optional[str] = Field(default=None)
    duration_seconds: Optional[int] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    updated_at: datetime = Field(default_factory=utc_now)


class Job(SQLModel, table=True):
    id: int = Field(default=None, primary_key=True)
    chapter_id: int = Field(index=True)
    user_id: str
    status: str = Field(default="queued", index=True)  # queued, running, done, failed
    attempts: int = Field(default=0)
    error_message: Optional[str] = Field(default=None)
    enqueued_at: datetime = Field(default_factory=utc_now)
    claimed_at: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None)
