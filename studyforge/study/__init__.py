"""
Learning schedulers.

- SM-2 flashcard scheduling
- Quiz mastery tiers
- Weak-area tracking
- Review submission and progress queries
"""

from studyforge.study.mastery import AttemptCounts, MasteryScheduler
from studyforge.study.review_service import ReviewService
from studyforge.study.spaced_repetition import CardState, quality_from_label, schedule_review
from studyforge.study.weak_areas import WeakAreaPolicy

__all__ = [
    "AttemptCounts",
    "CardState",
    "MasteryScheduler",
    "ReviewService",
    "WeakAreaPolicy",
    "quality_from_label",
    "schedule_review",
]
