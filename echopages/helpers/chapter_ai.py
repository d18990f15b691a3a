import logging

from echopages.helpers.llm import chat_json
from echopages.helpers.markers import has_isolation_context, is_toc_entry
from echopages.models import ChapterMarker

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 4000
SKIP_AFTER_MATCH = 20

SYSTEM_PROMPT = """You are a book chapter analyzer. Find ALL chapter/section markers in this book.

Look for patterns like:
- "PROLOGUE", "Prologue"
- "CHAPTER ONE", "Chapter 1", "CHAPTER 1"
- "Part One", "PART 1"
- "EPILOGUE", "Epilogue"
- Simple numbers like "1" or "1." at the start of lines

Return JSON with the EXACT text of each chapter marker as it appears, in order:
{"markers": ["PROLOGUE", "CHAPTER ONE", "CHAPTER TWO", "EPILOGUE"]}

Include ALL chapters you can identify. Use EXACT text as shown in the book."""


def sample_document(text: str, sample_size: int = SAMPLE_SIZE) -> str:
    """Four windows: the start, ~30%, ~60% and the end of the text."""
    at_30 = int(len(text) * 0.3)
    at_60 = int(len(text) * 0.6)
    return "\n\n".join(
        [
            f"[BEGINNING]\n{text[:sample_size]}",
            f"[MIDDLE]\n{text[at_30:at_30 + sample_size]}",
            f"[LATER]\n{text[at_60:at_60 + sample_size]}",
            f"[END]\n{text[max(0, len(text) - sample_size):]}",
        ]
    )


def locate_markers(
    lines: list[str],
    titles: list[str],
    skip_after_match: int = SKIP_AFTER_MATCH,
) -> list[ChapterMarker]:
    """
    Find each title in order as a standalone line (exact or prefix match).

    The search resumes `skip_after_match` lines past every hit so a table of
    contents does not swallow the real headings.
    """
    found: list[ChapterMarker] = []
    search_from = 0

    for title in titles:
        wanted = str(title).strip().lower()
        if not wanted:
            continue
        for i in range(search_from, len(lines)):
            line = lines[i].strip()
            if not line or is_toc_entry(line):
                continue
            lowered = line.lower()
            if not (
                lowered == wanted
                or lowered.startswith(wanted + " ")
                or lowered.startswith(wanted + ":")
            ):
                continue
            if has_isolation_context(lines, i) or len(line) < 50:
                found.append(ChapterMarker(line=i, title=line, priority=2))
                logger.debug("Located %r at line %d", line, i)
                search_from = i + skip_after_match
                break

    return found


async def find_markers_with_ai(text: str, lines: list[str]) -> list[ChapterMarker]:
    """Ask the LLM for marker titles and re-locate them; [] on any failure."""
    try:
        result = await chat_json(
            SYSTEM_PROMPT,
            f"Find all chapter markers in this book:\n\n{sample_document(text)}",
            temperature=0.1,
        )
    except Exception as e:
        logger.warning("AI chapter detection failed: %s", e)
        return []

    titles = result.get("markers") or []
    if not isinstance(titles, list):
        logger.warning("AI chapter detection returned malformed markers: %r", titles)
        return []

    logger.info("AI suggested %d chapter markers", len(titles))
    if len(titles) < 2:
        return []

    markers = locate_markers(lines, titles)
    logger.info("Re-located %d of %d AI markers in the text", len(markers), len(titles))
    return markers if len(markers) >= 2 else []
