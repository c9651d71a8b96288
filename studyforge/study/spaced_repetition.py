"""
SM-2 spaced repetition for flashcards.

The scheduler is a pure function of the prior memory state, the review
quality and the review time. Persistence lives in ``review_service``.

    quality >= 3: interval 1, then 6, then round(interval * ease_factor)
    quality <  3: repetitions reset, interval 1
    ease_factor += 0.1 - (5 - q) * (0.08 + (5 - q) * 0.02), floored at 1.3
    box = min(5, repetitions)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from studyforge.errors import JobInputError

# =============================================================================
# SM-2 CONSTANTS
# =============================================================================

QUALITY_MAP = {
    "easy": 5,
    "medium": 3,
    "hard": 1,
}

DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
PASSING_QUALITY = 3
MAX_BOX = 5


@dataclass(frozen=True)
class CardState:
    """Memory state of one learner on one flashcard."""

    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = 0  # days
    repetitions: int = 0
    box: int = 0
    next_review_at: datetime | None = None
    last_reviewed_at: datetime | None = None


def quality_from_label(label: str) -> int:
    """
    Map a difficulty label to an SM-2 quality.

    Raises:
        JobInputError: unknown label
    """
    quality = QUALITY_MAP.get((label or "").strip().lower())
    if quality is None:
        raise JobInputError(f"Invalid quality '{label}' (expected one of {', '.join(QUALITY_MAP)})")
    return quality


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def next_ease_factor(ease_factor: float, quality: int, min_ease_factor: float = MIN_EASE_FACTOR) -> float:
    miss = 5 - quality
    updated = ease_factor + 0.1 - miss * (0.08 + miss * 0.02)
    return max(updated, min_ease_factor)


def schedule_review(
    prior: CardState | None,
    quality: int,
    now: datetime,
    min_ease_factor: float = MIN_EASE_FACTOR,
) -> CardState:
    """
    Apply one review to a card state.

    Args:
        prior: Current state (None for a card never reviewed)
        quality: SM-2 quality, 0-5
        now: Review timestamp
        min_ease_factor: Ease factor floor

    Returns:
        New card state with ``next_review_at = now + interval days``
    """
    if not 0 <= quality <= 5:
        raise JobInputError(f"Quality must be between 0 and 5, got {quality}")

    state = prior or CardState()
    repetitions = state.repetitions
    interval = state.interval

    if quality >= PASSING_QUALITY:
        if repetitions == 0:
            interval = 1
        elif repetitions == 1:
            interval = 6
        else:
            interval = round_half_up(interval * state.ease_factor)
        repetitions += 1
    else:
        repetitions = 0
        interval = 1

    return CardState(
        ease_factor=next_ease_factor(state.ease_factor, quality, min_ease_factor),
        interval=interval,
        repetitions=repetitions,
        box=min(MAX_BOX, repetitions),
        next_review_at=now + timedelta(days=interval),
        last_reviewed_at=now,
    )
