import logging

from pydantic import ValidationError

from echopages.helpers.llm import chat_json
from echopages.models import CharacterInfo

logger = logging.getLogger(__name__)

SAMPLE_CHARS = 15000

SYSTEM_PROMPT = """You are an expert literary analyst. Analyze the text and identify ALL named characters who SPEAK (have dialogue).

For each speaking character, determine:
1. "name": their name as it appears in dialogue tags (e.g., "said John" -> "John")
2. "gender": "male", "female", or "unknown"
3. "age": "child" (0-12), "young" (13-25), "adult" (26-60), "elderly" (60+), or "unknown"
4. "personality": brief description (e.g., "authoritative", "timid", "cheerful", "gruff")

Only include characters who actually SPEAK in the text (have quoted dialogue attributed to them).
Do NOT include the narrator or characters who are only mentioned but don't speak.

Return a JSON object with a "characters" array."""


def parse_characters(raw: list) -> list[CharacterInfo]:
    """Validate LLM entries, dropping malformed ones and duplicate names."""
    characters: list[CharacterInfo] = []
    seen: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        entry = dict(entry)
        if entry.get("gender") not in ("male", "female"):
            entry["gender"] = "unknown"
        if entry.get("age") not in ("child", "young", "adult", "elderly"):
            entry["age"] = "unknown"
        if not isinstance(entry.get("personality"), str):
            entry["personality"] = None
        try:
            character = CharacterInfo.model_validate(entry)
        except ValidationError:
            continue
        character.name = character.name.strip()
        key = character.name.lower()
        if not character.name or key in seen:
            continue
        seen.add(key)
        characters.append(character)
    return characters


async def detect_characters(text: str, sample_chars: int = SAMPLE_CHARS) -> list[CharacterInfo]:
    """
    Detect speaking characters in the first `sample_chars` of a chapter.

    Returns [] on any failure so chunking degrades to narrator-only voices.
    """
    try:
        result = await chat_json(
            SYSTEM_PROMPT,
            f"Identify all SPEAKING characters in this text:\n\n{text[:sample_chars]}",
        )
    except Exception as e:
        logger.warning("Character detection failed: %s", e)
        return []

    raw = result.get("characters") or []
    characters = parse_characters(raw if isinstance(raw, list) else [])
    logger.info(
        "Detected %d speaking characters: %s",
        len(characters),
        ", ".join(c.name for c in characters),
    )
    return characters
