# SQLAlchemy models
from .base import Base, JSONType, new_id
from .collections import (
    Collection,
    CollectionSource,
    Flashcard,
    QuizQuestion,
)
from .documents import (
    Document,
    DocumentSection,
    DocumentVersion,
)
from .jobs import Job
from .progress import (
    FlashcardStats,
    QuizAnswer,
    QuizQuestionStats,
    QuizSession,
    WeakArea,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "new_id",
    # Jobs
    "Job",
    # Collections
    "Collection",
    "CollectionSource",
    "Flashcard",
    "QuizQuestion",
    # Documents
    "Document",
    "DocumentVersion",
    "DocumentSection",
    # Progress
    "FlashcardStats",
    "QuizQuestionStats",
    "QuizSession",
    "QuizAnswer",
    "WeakArea",
]
