import logging

from echopages.config import (
    CHAPTER_COVERAGE_WARNING,
    MIN_CHAPTER_CHARS,
    MIN_CHAPTER_WORDS,
)
from echopages.helpers.chapter_ai import find_markers_with_ai
from echopages.helpers.markers import scan_markers
from echopages.models import ChapterMarker, DetectedChapter

logger = logging.getLogger(__name__)

FULL_BOOK_TITLE = "Full Book"
MAX_LEADING_NOISE_LINES = 5


def _strip_leading_noise(content: str) -> str:
    """Drop up to five near-empty lines (subtitle, byline) under a heading."""
    content_lines = content.split("\n")
    skip = 0
    for line in content_lines[:MAX_LEADING_NOISE_LINES]:
        if len(line.strip()) >= 5:
            break
        skip += 1
    if skip:
        content = "\n".join(content_lines[skip:]).strip()
    return content


def extract_chapters(
    lines: list[str],
    markers: list[ChapterMarker],
    min_chars: int = MIN_CHAPTER_CHARS,
    min_words: int = MIN_CHAPTER_WORDS,
) -> list[DetectedChapter]:
    """
    Slice the document between consecutive markers.

    Each body runs from the line after a marker up to the next marker (or the
    end of the document). Bodies too short to be a chapter are treated as
    false-positive headings and skipped; survivors are renumbered from 0.
    """
    chapters: list[DetectedChapter] = []

    for i, marker in enumerate(markers):
        start = marker.line + 1
        end = markers[i + 1].line if i + 1 < len(markers) else len(lines)
        content = _strip_leading_noise("\n".join(lines[start:end]).strip())
        word_count = len(content.split())

        if len(content) < min_chars or word_count < min_words:
            logger.info("Skipped %r: too short (%d words)", marker.title, word_count)
            continue

        chapters.append(DetectedChapter(idx=len(chapters), title=marker.title, text=content))
        logger.info(
            "%d. %r - %d words (lines %d-%d)", len(chapters), marker.title, word_count, start, end
        )

    return chapters


def chapter_coverage(chapters: list[DetectedChapter], full_text: str) -> float:
    if not full_text:
        return 0.0
    return sum(len(chapter.text) for chapter in chapters) / len(full_text)


def log_extraction(
    chapters: list[DetectedChapter],
    full_text: str,
    warning_threshold: float = CHAPTER_COVERAGE_WARNING,
) -> list[DetectedChapter]:
    coverage = chapter_coverage(chapters, full_text)
    logger.info("Extracted %d chapters, coverage %.1f%%", len(chapters), coverage * 100)
    if coverage < warning_threshold:
        logger.warning(
            "Chapter coverage %.1f%% is below %.0f%%; some text lies outside detected chapters",
            coverage * 100,
            warning_threshold * 100,
        )
    return chapters


async def detect_chapters(text: str, page_texts: list[str] | None = None) -> list[DetectedChapter]:
    """
    Split a document into chapters. Never returns an empty list.

    1. Scan every line for heading markers and slice between them.
    2. If that yields fewer than two chapters, ask the LLM for marker titles
       and re-locate them in the text.
    3. Otherwise return the whole text as a single "Full Book" chapter.
    """
    logger.info(
        "Detecting chapters: %d characters, ~%d words, %d pages",
        len(text),
        len(text.split()),
        len(page_texts or []),
    )
    lines = text.split("\n")

    markers = scan_markers(lines)
    if len(markers) >= 2:
        logger.info("Found %d chapter markers", len(markers))
        chapters = extract_chapters(lines, markers)
        if len(chapters) >= 2:
            return log_extraction(chapters, text)

    logger.info("Marker scan found no usable structure; trying AI-assisted detection")
    ai_markers = await find_markers_with_ai(text, lines)
    if len(ai_markers) >= 2:
        chapters = extract_chapters(lines, ai_markers)
        if len(chapters) >= 2:
            return log_extraction(chapters, text)

    logger.warning("Could not detect chapters, returning full book")
    return [DetectedChapter(idx=0, title=FULL_BOOK_TITLE, text=text)]
