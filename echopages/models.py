from typing import Literal, Optional

from pydantic import BaseModel, Field

Gender = Literal["male", "female", "unknown"]
AgeBracket = Literal["child", "young", "adult", "elderly", "unknown"]
ProviderName = Literal["openai", "elevenlabs", "google"]
ChunkStatus = Literal["pending", "processing", "done", "error"]

NARRATOR = "narrator"
DIALOGUE = "dialogue"

EMOTIONS = (
    "neutral",
    "joyful",
    "sad",
    "angry",
    "fearful",
    "excited",
    "romantic",
    "mysterious",
    "tense",
    "contemplative",
    "warm",
    "cold",
)


class Document(BaseModel):
    text: str
    page_texts: list[str] = Field(default_factory=list)


class ChapterMarker(BaseModel):
    line: int
    title: str
    priority: int


class DetectedChapter(BaseModel):
    idx: int
    title: str
    text: str


class CharacterInfo(BaseModel):
    name: str
    gender: Gender = "unknown"
    age: AgeBracket = "unknown"
    personality: Optional[str] = None


class ChunkSpec(BaseModel):
    idx: int
    voice: str
    text: str
    emotion_hint: str = "neutral"
    character: Optional[str] = None

    @property
    def speaker(self) -> str:
        """Label persisted on the chunk row: the character if attributed, else the voice type."""
        return self.character or self.voice
