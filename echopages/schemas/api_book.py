from pydantic import BaseModel
from echopages.db_models import Book, Chapter
from echopages.models import ProviderName


class CreateBook(BaseModel):
    title: str
    author: str | None = None
    tts_provider: ProviderName = "openai"
    narrator_voice: str | None = None


class UpdateBookTTS(BaseModel):
    tts_provider: ProviderName | None = None
    narrator_voice: str | None = None


class ChapterProgress(BaseModel):
    id: int
    idx: int
    title: str
    total_chunks: int
    done_chunks: int
    error_chunks: int
    pending_chunks: int


class ExtractedBook(BaseModel):
    book: Book
    chapters: list[Chapter]
    estimated_cost: float


class VoiceInfo(BaseModel):
    id: str
    voice_id: str
    name: str
    gender: str
    accent: str
    style: str
    provider: ProviderName
