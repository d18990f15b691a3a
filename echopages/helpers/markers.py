"""Scan document lines for chapter headings.

Headings are recognised by pattern class (front matter, "Chapter N", "Part N",
back matter, bare numbers) and only count when the line stands on its own,
i.e. a neighbouring line is blank or nearly so.
"""

import logging
import re

from echopages.config import (
    MARKER_CONTEXT_LINE_LENGTH,
    MARKER_MAX_LINE_LENGTH,
    MARKER_MIN_GAP_LINES,
    MIN_CHAPTER_CHARS,
)
from echopages.models import ChapterMarker

logger = logging.getLogger(__name__)

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19, "twenty": 20,
    "thirty": 30, "forty": 40, "fifty": 50,
}

_TENS = ("twenty", "thirty", "forty")
_UNITS = ("one", "two", "three", "four", "five", "six", "seven", "eight", "nine")
_COMPOUND_WORDS = [f"{tens}[- ]?{unit}" for tens in _TENS for unit in _UNITS]
# Longest alternatives first so "twenty-one" is not cut short at "twenty"
_NUMBER_WORD_PATTERN = "|".join(
    _COMPOUND_WORDS + sorted(NUMBER_WORDS, key=len, reverse=True)
)

# Page number after a leader: dots, underscores, a spaced dash, a tab or a wide gap
TOC_ENTRY = re.compile(r"(?:[.·…_]{2,}|\s[-–]+\s|\s{2,}|\t)\s*\d+\s*$")
FRONT_MATTER = re.compile(r"^(foreword|preface|prologue|introduction)$", re.IGNORECASE)
CHAPTER = re.compile(rf"^chapter\s+(\d+|{_NUMBER_WORD_PATTERN})\b", re.IGNORECASE)
PART = re.compile(rf"^part\s+(\d+|{_NUMBER_WORD_PATTERN})\b", re.IGNORECASE)
BACK_MATTER = re.compile(
    r"^(epilogue|afterword|acknowledgments?|about the author|author'?s? note)$",
    re.IGNORECASE,
)
BARE_NUMBER = re.compile(r"^(\d{1,2})\.?$")


def word_to_number(word: str) -> int:
    """Convert "7", "seven" or "twenty-one" to an int; 0 when unknown."""
    word = word.strip().lower()
    if word.isdigit():
        return int(word)

    normalized = re.sub(r"[- ]", "", word)
    if normalized in NUMBER_WORDS:
        return NUMBER_WORDS[normalized]
    for tens in _TENS:
        if normalized.startswith(tens):
            unit = NUMBER_WORDS.get(normalized[len(tens):], 0)
            if 0 < unit < 10:
                return NUMBER_WORDS[tens] + unit
    return 0


def is_toc_entry(line: str) -> bool:
    """A page number after a leader of dots, a spaced dash, a tab or a wide gap."""
    return bool(TOC_ENTRY.search(line))


def has_isolation_context(
    lines: list[str],
    i: int,
    context_line_length: int = MARKER_CONTEXT_LINE_LENGTH,
) -> bool:
    prev_line = lines[i - 1].strip() if i > 0 else ""
    next_line = lines[i + 1].strip() if i < len(lines) - 1 else ""
    return len(prev_line) < context_line_length or len(next_line) < context_line_length


def collapse_close_markers(
    markers: list[ChapterMarker],
    lines: list[str],
    min_gap_lines: int = MARKER_MIN_GAP_LINES,
    min_body_chars: int = MIN_CHAPTER_CHARS,
) -> list[ChapterMarker]:
    """
    Merge clusters of headings with no real text between them.

    Two markers collide when they are at most `min_gap_lines` apart and the
    lines between them hold fewer than `min_body_chars` characters. The higher
    priority wins; on a tie the later one does, since the heading followed by
    prose is the one in the body.
    """
    collapsed: list[ChapterMarker] = []
    for marker in sorted(markers, key=lambda m: m.line):
        last = collapsed[-1] if collapsed else None
        if last is not None and marker.line - last.line <= min_gap_lines:
            between = sum(len(line.strip()) for line in lines[last.line + 1:marker.line])
            if between < min_body_chars:
                if marker.priority <= last.priority:
                    collapsed[-1] = marker
                continue
        collapsed.append(marker)
    return collapsed


def _dedupe_keys(candidates: list[tuple[ChapterMarker, str | None]]) -> list[ChapterMarker]:
    """Keep the last surviving occurrence of each logical section."""
    # Last, not first: a TOC line that escaped the filters precedes the body heading
    last_position: dict[str, int] = {}
    for position, (_, key) in enumerate(candidates):
        if key is not None:
            last_position[key] = position
    return [
        marker
        for position, (marker, key) in enumerate(candidates)
        if key is None or last_position[key] == position
    ]


def scan_markers(
    lines: list[str],
    max_line_length: int = MARKER_MAX_LINE_LENGTH,
    context_line_length: int = MARKER_CONTEXT_LINE_LENGTH,
    min_gap_lines: int = MARKER_MIN_GAP_LINES,
) -> list[ChapterMarker]:
    """
    Return the ordered, deduplicated chapter markers found in `lines`.

    Front/back matter names count once each, "Chapter N" once per number.
    Bare numbers are only considered while no "Chapter N" heading has been
    seen. A table of contents repeating the body headings is dropped: its
    entries either carry page numbers or collapse into the body heading that
    follows them.
    """
    candidates: list[ChapterMarker] = []
    keys: dict[int, str | None] = {}
    chapter_headings = 0

    for i, raw in enumerate(lines):
        line = raw.strip()
        if not line or len(line) > max_line_length:
            continue
        if is_toc_entry(line):
            continue
        if not has_isolation_context(lines, i, context_line_length):
            continue

        marker = None
        key = None
        if FRONT_MATTER.match(line):
            marker = ChapterMarker(line=i, title=line, priority=1)
            key = f"section:{line.lower()}"
        elif match := CHAPTER.match(line):
            marker = ChapterMarker(line=i, title=line, priority=2)
            key = f"chapter:{word_to_number(match.group(1))}"
            chapter_headings += 1
        elif PART.match(line):
            marker = ChapterMarker(line=i, title=line, priority=3)
        elif BACK_MATTER.match(line):
            marker = ChapterMarker(line=i, title=line, priority=4)
            key = f"section:{line.lower()}"
        elif (match := BARE_NUMBER.match(line)) and chapter_headings == 0:
            number = int(match.group(1))
            next_line = lines[i + 1].strip() if i < len(lines) - 1 else ""
            if 1 <= number <= 50 and (len(next_line) > 20 or next_line[:1].isupper()):
                marker = ChapterMarker(line=i, title=f"Chapter {number}", priority=5)
                key = f"chapter:{number}"

        if marker is not None:
            logger.debug("[P%d] %r at line %d", marker.priority, line, i)
            candidates.append(marker)
            keys[marker.line] = key

    collapsed = collapse_close_markers(candidates, lines, min_gap_lines)
    return _dedupe_keys([(marker, keys[marker.line]) for marker in collapsed])
