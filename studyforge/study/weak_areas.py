"""Weak-area scoring: a per-tag difficulty signal that only ever increases."""

from __future__ import annotations

from dataclasses import dataclass

from config import get_settings


@dataclass(frozen=True)
class WeakAreaPolicy:
    initial_score: int = 10
    increment: int = 5
    max_score: int = 100

    @classmethod
    def from_settings(cls) -> WeakAreaPolicy:
        settings = get_settings()
        return cls(
            initial_score=settings.weak_area_initial_score,
            increment=settings.weak_area_increment,
            max_score=settings.weak_area_max_score,
        )

    def bump(self, score: int | None) -> int:
        """Score after one more incorrect answer on the tag."""
        if score is None:
            return min(self.max_score, self.initial_score)
        return min(self.max_score, score + self.increment)


def question_tags(tags: list[str] | None) -> list[str]:
    """Distinct non-empty tags, in order."""
    seen: list[str] = []
    for tag in tags or []:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen
