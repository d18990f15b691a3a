import logging
import re

from echopages.config import COVERAGE_THRESHOLD
from echopages.helpers.llm import chat_json
from echopages.models import DIALOGUE, EMOTIONS, NARRATOR, CharacterInfo, ChunkSpec

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
SEGMENT_CHARS = 500
MAX_CHUNK_CHARS = 4000
EXCERPT_CHARS = 300

QUOTE_MARKS = re.compile(r'["“”„«»‘]')
SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

EMOTION_LEXICON = [
    ("excited", re.compile(r"!{2,}|excited|joy|celebrat|thrill", re.IGNORECASE)),
    ("sad", re.compile(r"sad|sorrow|tears|crying|grief|loss", re.IGNORECASE)),
    ("angry", re.compile(r"angry|furious|rage|shout|yell|frustrat", re.IGNORECASE)),
    ("fearful", re.compile(r"fear|terror|anxious|worry|dread", re.IGNORECASE)),
    ("romantic", re.compile(r"love|affection|tender|romantic", re.IGNORECASE)),
    ("mysterious", re.compile(r"\?|wonder|mystery|secret|uncertain", re.IGNORECASE)),
]

SYSTEM_PROMPT = """You are an expert audiobook director. For each paragraph, determine:

1. Voice type:
   - "narrator" for descriptive text, scene setting, internal thoughts, action
   - CHARACTER NAME for spoken dialogue (from the character list)
   - "dialogue" for unattributed speech

2. Emotional tone: {emotions}

Return JSON with a "results" array (EXACTLY {count} items, one per paragraph):
{{"results": [{{"voice": "narrator|character_name|dialogue", "emotionHint": "emotion", "character": "name or null"}}]}}

Known characters: {characters}"""


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def clean_chunk_text(text: str) -> str:
    return re.sub(r"\.{4,}", "...", normalize_whitespace(text))


def _accumulate(pieces: list[str], limit: int) -> list[str]:
    """Greedily join pieces with spaces into segments of about `limit` chars."""
    segments: list[str] = []
    current = ""
    for piece in pieces:
        if current and len(current) + len(piece) > limit:
            segments.append(current.strip())
            current = piece
        else:
            current = f"{current} {piece}" if current else piece
    if current.strip():
        segments.append(current.strip())
    return segments


def split_into_paragraphs(text: str, segment_chars: int = SEGMENT_CHARS) -> list[str]:
    """
    Split chapter text into paragraphs without dropping any of it.

    Blank lines first; single newlines when that gives fewer than 5 pieces of
    a text over 1,000 chars; sentence accumulation when still under 3.
    Paragraphs too long for one synthesis request are split on sentences.
    """
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]

    if len(paragraphs) < 5 and len(text) > 1000:
        paragraphs = [p.strip() for p in text.split("\n") if p.strip()]

    if len(paragraphs) < 3 and len(text) > segment_chars:
        paragraphs = _accumulate(SENTENCE_END.split(normalize_whitespace(text)), segment_chars)

    split: list[str] = []
    for paragraph in paragraphs:
        if len(paragraph) > MAX_CHUNK_CHARS:
            split.extend(_accumulate(SENTENCE_END.split(paragraph), MAX_CHUNK_CHARS))
        else:
            split.append(paragraph)
    return split


def detect_basic_emotion(text: str) -> str:
    for emotion, pattern in EMOTION_LEXICON:
        if pattern.search(text):
            return emotion
    return "neutral"


def text_coverage(chunk_texts: list[str], original: str) -> float:
    """Share of the original's non-whitespace characters present in the chunks."""
    original_length = len(re.sub(r"\s+", "", original))
    if original_length == 0:
        return 1.0
    chunk_length = sum(len(re.sub(r"\s+", "", text)) for text in chunk_texts)
    return chunk_length / original_length


def check_coverage(
    chunk_texts: list[str],
    original: str,
    threshold: float = COVERAGE_THRESHOLD,
) -> float:
    coverage = text_coverage(chunk_texts, original)
    logger.info("Chunk coverage: %.1f%% of %d chars", coverage * 100, len(original))
    if coverage < threshold:
        logger.warning(
            "Only %.1f%% of the chapter text was chunked; some content may be missing",
            coverage * 100,
        )
    return coverage


def _clean_label(value) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none", "undefined"):
        return None
    return value


async def classify_batch(batch: list[str], character_names: list[str]) -> list[dict]:
    system_prompt = SYSTEM_PROMPT.format(
        emotions=", ".join(EMOTIONS),
        count=len(batch),
        characters=", ".join(character_names) if character_names else "None",
    )
    user_prompt = "\n\n".join(
        f"[{i + 1}] {p[:EXCERPT_CHARS]}{'...' if len(p) > EXCERPT_CHARS else ''}"
        for i, p in enumerate(batch)
    )
    result = await chat_json(system_prompt, user_prompt)
    metadata = result.get("results") or result.get("chunks") or result.get("paragraphs") or []
    return [entry if isinstance(entry, dict) else {} for entry in metadata]


def build_chunk(
    idx: int,
    paragraph: str,
    meta: dict,
    known_names: dict[str, str],
) -> ChunkSpec:
    """Original paragraph text plus LLM metadata, or lexical fallbacks."""
    voice = _clean_label(meta.get("voice"))
    if voice is None:
        voice = DIALOGUE if QUOTE_MARKS.search(paragraph) else NARRATOR

    character = _clean_label(meta.get("character"))
    if character is None and voice.lower() not in (NARRATOR, DIALOGUE):
        character = voice
    if character is not None:
        character = known_names.get(character.lower(), character)
        if character.lower() in (NARRATOR, DIALOGUE):
            character = None
    if voice.lower() in (NARRATOR, DIALOGUE):
        voice = voice.lower()

    emotion = _clean_label(meta.get("emotionHint"))
    if emotion is None or emotion.lower() not in EMOTIONS:
        emotion = detect_basic_emotion(paragraph)

    return ChunkSpec(
        idx=idx,
        voice=voice,
        text=clean_chunk_text(paragraph),
        emotion_hint=emotion.lower(),
        character=character,
    )


async def structure_chapter_text(
    text: str,
    characters: list[CharacterInfo] | None = None,
    batch_size: int = BATCH_SIZE,
) -> list[ChunkSpec]:
    """
    Split a chapter into voice-tagged chunks covering all of its text.

    1. Split into paragraphs.
    2. Classify paragraphs in batches; the LLM only supplies voice and emotion.
    3. Emit one chunk per paragraph from the original text, whether or not
       classification succeeded.
    4. Log the coverage of the result.
    """
    characters = characters or []
    known_names = {c.name.lower(): c.name for c in characters}
    paragraphs = split_into_paragraphs(text)
    total_batches = (len(paragraphs) + batch_size - 1) // batch_size
    logger.info("Structuring %d paragraphs (%d chars total)", len(paragraphs), len(text))

    chunks: list[ChunkSpec] = []
    for start in range(0, len(paragraphs), batch_size):
        batch = paragraphs[start:start + batch_size]
        batch_number = start // batch_size + 1
        logger.debug("Classifying batch %d/%d", batch_number, total_batches)

        try:
            metadata = await classify_batch(batch, [c.name for c in characters])
        except Exception as e:
            logger.warning("Classification failed for batch %d, using heuristics: %s", batch_number, e)
            metadata = []

        for j, paragraph in enumerate(batch):
            meta = metadata[j] if j < len(metadata) else {}
            chunk = build_chunk(len(chunks), paragraph, meta, known_names)
            if chunk.text:
                chunks.append(chunk)

    check_coverage([chunk.text for chunk in chunks], text)
    logger.info("Created %d chunks", len(chunks))
    return chunks
