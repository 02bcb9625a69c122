"""Source chunking and requirement title deduplication for the extraction pipeline.

Requirements are deduplicated twice:
  1. Within a source, across overlapping chunks, by exact normalized title.
  2. Across sources, against every requirement already stored for the
     project, by word overlap relative to the shorter title.
"""

import re
from collections.abc import Iterable

REQUIREMENT_ID_PREFIX = "REQ-"
DECISION_ID_PREFIX = "DEC-"
CONFLICT_ID_PREFIX = "CON-"

# Share of the shorter title's words that must appear in the other title
TITLE_OVERLAP_THRESHOLD = 0.7


def chunk_content(text: str, max_chars: int = 35_000, overlap: int = 2_000) -> list[str]:
    """
    Split source content into overlapping chunks.

    Content that fits in one chunk is returned whole. Adjacent chunks share
    ``overlap`` characters so a requirement straddling a boundary is seen
    in full by at least one chunk.

    Args:
        text: Source content
        max_chars: Maximum characters per chunk
        overlap: Number of characters shared by adjacent chunks

    Returns:
        List of chunk strings (empty for empty text)

    Raises:
        ValueError: If max_chars <= overlap
    """
    if max_chars <= overlap:
        raise ValueError(f"max_chars ({max_chars}) must be greater than overlap ({overlap})")

    if not text:
        return []

    if len(text) <= max_chars:
        return [text]

    chunks = []
    start = 0
    text_length = len(text)

    while start < text_length:
        end = min(start + max_chars, text_length)
        chunks.append(text[start:end])

        if end >= text_length:
            break

        start = end - overlap

    return chunks


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation and surrounding whitespace."""
    return re.sub(r"[^a-z0-9\s]", "", (title or "").lower().strip())


def _title_words(title: str) -> set[str]:
    return set(normalize_title(title).split())


def is_similar_title(a: str, b: str, threshold: float = TITLE_OVERLAP_THRESHOLD) -> bool:
    """
    Check whether two requirement titles describe the same requirement.

    Overlap is measured against the smaller word set, so a short title fully
    contained in a longer one counts as similar.
    """
    words_a = _title_words(a)
    words_b = _title_words(b)
    if not words_a or not words_b:
        return False

    intersection = len(words_a & words_b)
    return intersection / min(len(words_a), len(words_b)) >= threshold


def dedupe_by_title(candidates: Iterable, title_attr: str = "title") -> list:
    """Drop candidates whose exact lowercased title was already seen. Order is kept."""
    seen: set[str] = set()
    unique = []
    for candidate in candidates:
        key = (getattr(candidate, title_attr, "") or "").lower().strip()
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


class TitleIndex:
    """Titles already stored for a project, for cross-source duplicate checks."""

    def __init__(self, titles: Iterable[str] = ()):
        self._titles: list[str] = []
        for title in titles:
            self.add(title)

    def add(self, title: str) -> None:
        if normalize_title(title):
            self._titles.append(title)

    def find_similar(self, title: str) -> str | None:
        for existing in self._titles:
            if is_similar_title(title, existing):
                return existing
        return None

    def __len__(self) -> int:
        return len(self._titles)


def parse_sequence_number(human_id: str | None, prefix: str) -> int:
    """Numeric part of a human id like ``REQ-007``; 0 when absent or malformed."""
    if not human_id or not human_id.startswith(prefix):
        return 0
    try:
        return int(human_id[len(prefix):])
    except ValueError:
        return 0


def highest_sequence_number(human_ids: Iterable[str | None], prefix: str) -> int:
    return max((parse_sequence_number(h, prefix) for h in human_ids), default=0)


def format_human_id(prefix: str, number: int) -> str:
    """``format_human_id("REQ-", 7) -> "REQ-007"``"""
    return f"{prefix}{number:03d}"
