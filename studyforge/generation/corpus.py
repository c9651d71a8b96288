"""
Corpus assembly and generation sizing.

The corpus is bounded by a global character budget. Sources are taken in
order; the one that would overflow the budget is cut to fill it exactly and
everything after it is left out. Target artifact counts are derived from the
full extracted size, before truncation.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from config import get_settings
from studyforge.errors import EmptyCorpusError
from studyforge.generation.extraction import ExtractedSource

SMALL_THRESHOLD = 5_000
MEDIUM_THRESHOLD = 30_000
LARGE_THRESHOLD = 100_000
TIER_THRESHOLDS = (SMALL_THRESHOLD, MEDIUM_THRESHOLD, LARGE_THRESHOLD)

MIN_FLASHCARDS = 3
MIN_QUIZ = 2


@dataclass
class Corpus:
    """Assembled generation input."""

    text: str
    included: list[ExtractedSource] = field(default_factory=list)
    excluded: list[ExtractedSource] = field(default_factory=list)
    total_chars: int = 0
    truncated: bool = False


def build_corpus(sources: list[ExtractedSource], limit: int | None = None) -> Corpus:
    """
    Assemble sources into one corpus under a character budget.

    Each included chunk is prefixed with a ``### <title>`` line; headings do
    not count against the budget. A non-positive limit disables the budget.

    Raises:
        EmptyCorpusError: no source has any text
    """
    if limit is None:
        limit = get_settings().corpus_char_limit
    budget = limit if limit > 0 else None

    used = 0
    truncated = False
    chunks: list[str] = []
    included: list[ExtractedSource] = []
    excluded: list[ExtractedSource] = []

    for entry in sources:
        if not entry.text:
            continue
        if budget is not None and used >= budget:
            excluded.append(entry)
            continue

        text = entry.text
        if budget is not None and len(text) > budget - used:
            text = text[: budget - used]
            truncated = True
            logger.info(
                "Corpus budget reached: '{}' truncated to {} of {} chars",
                entry.title,
                len(text),
                entry.text_length,
            )

        chunks.append(f"### {entry.title}\n{text}")
        used += len(text)
        included.append(ExtractedSource(source=entry.source, text=text))

    if not included:
        raise EmptyCorpusError("Corpus is empty after normalisation")

    if excluded:
        logger.info("{} source(s) left out of the corpus", len(excluded))

    return Corpus(
        text="\n\n".join(chunks).strip(),
        included=included,
        excluded=excluded,
        total_chars=used,
        truncated=truncated or bool(excluded),
    )


def _tier_counts(total_chars: int) -> tuple[int, int]:
    if total_chars < SMALL_THRESHOLD:
        return max(3, total_chars // 500), max(2, total_chars // 1000)
    if total_chars < MEDIUM_THRESHOLD:
        return (
            min(max(total_chars // 600, 10), 50),
            min(max(total_chars // 1200, 5), 25),
        )
    if total_chars < LARGE_THRESHOLD:
        return (
            min(max(total_chars // 2000, 15), 60),
            min(max(total_chars // 4000, 8), 30),
        )
    return min(total_chars // 1500, 100), min(total_chars // 3000, 50)


def calculate_optimal_counts(total_chars: int) -> tuple[int, int]:
    """
    Target (flashcards, quiz) counts for a document size.

    Tiers:
        < 5k:    1 card / 500 chars, 1 quiz / 1000 chars
        < 30k:   1 / 600 clamped [10, 50], 1 / 1200 clamped [5, 25]
        < 100k:  1 / 2000 clamped [15, 60], 1 / 4000 clamped [8, 30]
        >= 100k: 1 / 1500 up to 100, 1 / 3000 up to 50

    A tier never returns less than the tier below it reached at its upper
    edge, so counts never decrease as the document grows.
    """
    total_chars = max(0, int(total_chars))
    flashcards, quiz = _tier_counts(total_chars)

    lower_edges = [t for t in TIER_THRESHOLDS if t <= total_chars]
    if lower_edges:
        previous_flashcards, previous_quiz = calculate_optimal_counts(lower_edges[-1] - 1)
        flashcards = max(flashcards, previous_flashcards)
        quiz = max(quiz, previous_quiz)

    return max(flashcards, MIN_FLASHCARDS), max(quiz, MIN_QUIZ)


def estimate_generation_time(total_chars: int) -> int:
    """Rough generation duration in seconds."""
    if total_chars < SMALL_THRESHOLD:
        return 30
    if total_chars < MEDIUM_THRESHOLD:
        return 60 + (total_chars - SMALL_THRESHOLD) // 25_000 * 30
    if total_chars < LARGE_THRESHOLD:
        return 120 + (total_chars - MEDIUM_THRESHOLD) // 70_000 * 60
    return 180 + (total_chars - LARGE_THRESHOLD) // 100_000 * 120


def format_time(seconds: int) -> str:
    """Format seconds as '45s', '2min' or '2min 30s'."""
    if seconds < 60:
        return f"{seconds}s"
    minutes, remaining = divmod(seconds, 60)
    if remaining == 0:
        return f"{minutes}min"
    return f"{minutes}min {remaining}s"
