"""
Quiz question mastery tiers.

A question's tier follows the learner's running correct ratio:

- mastered: correct >= 80% of attempts
- reviewing: correct >= 50% of attempts
- learning: otherwise

The next review is 1 / 7 / 30 days out by tier, one day sooner (never
under one day) once the learner has missed the question more than 3 times.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class AttemptCounts:
    total: int = 0
    correct: int = 0
    incorrect: int = 0

    def record(self, is_correct: bool) -> AttemptCounts:
        return AttemptCounts(
            total=self.total + 1,
            correct=self.correct + (1 if is_correct else 0),
            incorrect=self.incorrect + (0 if is_correct else 1),
        )


class MasteryScheduler:
    """Tiering and review spacing for quiz questions."""

    # Tier thresholds (fraction of attempts answered correctly)
    MASTERED_RATIO = 0.8
    REVIEWING_RATIO = 0.5

    # Days until next review per tier
    REVIEW_DAYS = {
        "learning": 1,
        "reviewing": 7,
        "mastered": 30,
    }

    # Misses beyond which the review is pulled a day earlier
    STRUGGLE_THRESHOLD = 3

    def mastery_level(self, counts: AttemptCounts) -> str:
        if counts.total <= 0:
            return "learning"
        if counts.correct >= self.MASTERED_RATIO * counts.total:
            return "mastered"
        if counts.correct >= self.REVIEWING_RATIO * counts.total:
            return "reviewing"
        return "learning"

    def review_days(self, level: str, counts: AttemptCounts) -> int:
        days = self.REVIEW_DAYS[level]
        if counts.incorrect > self.STRUGGLE_THRESHOLD:
            days = max(1, days - 1)
        return days

    def next_review_at(self, level: str, counts: AttemptCounts, attempted_at: datetime) -> datetime:
        return attempted_at + timedelta(days=self.review_days(level, counts))
