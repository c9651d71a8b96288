"""
Learner progress models.

Implements:
- FlashcardStats: SM-2 memory state per (flashcard, user)
- QuizQuestionStats: attempt counters and mastery tier per (question, user)
- QuizSession: aggregate over a group of answers, recomputed after every answer
- QuizAnswer: append-only attempt log
- WeakArea: per (user, collection, tag) difficulty signal, only ever increases
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studyforge.clock import utcnow

from .base import Base, JSONType, new_id
from .collections import Flashcard, QuizQuestion


class FlashcardStats(Base):
    """SM-2 memory state for one learner on one flashcard."""

    __tablename__ = "flashcard_stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    flashcard_id: Mapped[str] = mapped_column(
        ForeignKey("flashcards.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)
    interval: Mapped[int] = mapped_column(Integer, default=0)  # days
    repetitions: Mapped[int] = mapped_column(Integer, default=0)
    box: Mapped[int] = mapped_column(Integer, default=0)  # 0-5, UI tier
    difficulty: Mapped[str | None] = mapped_column(String(16))  # last quality label

    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime)
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    flashcard: Mapped[Flashcard] = relationship(back_populates="stats")

    __table_args__ = (
        UniqueConstraint("flashcard_id", "user_id", name="uq_flashcard_stats_user"),
    )

    def __repr__(self) -> str:
        return (
            f"<FlashcardStats(card={self.flashcard_id}, ef={self.ease_factor}, "
            f"interval={self.interval}, reps={self.repetitions})>"
        )


class QuizQuestionStats(Base):
    """Attempt history summary for one learner on one quiz question."""

    __tablename__ = "quiz_question_stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    quiz_question_id: Mapped[str] = mapped_column(
        ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, default=0)
    incorrect_attempts: Mapped[int] = mapped_column(Integer, default=0)

    # 'learning', 'reviewing', 'mastered'
    mastery_level: Mapped[str] = mapped_column(String(16), default="learning")
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_attempted_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    question: Mapped[QuizQuestion] = relationship(back_populates="stats")

    __table_args__ = (
        UniqueConstraint("quiz_question_id", "user_id", name="uq_quiz_stats_user"),
    )


class QuizSession(Base):
    """Practice session grouping quiz answers."""

    __tablename__ = "quiz_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    collection_id: Mapped[str | None] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE")
    )
    session_type: Mapped[str] = mapped_column(String(16), default="practice")
    quiz_question_ids: Mapped[list[str]] = mapped_column(JSONType, default=list)

    total_questions: Mapped[int] = mapped_column(Integer, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0)
    incorrect_answers: Mapped[int] = mapped_column(Integer, default=0)
    score_percentage: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    answers: Mapped[list[QuizAnswer]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )


class QuizAnswer(Base):
    """Single answer to a quiz question (append-only)."""

    __tablename__ = "quiz_answers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("quiz_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quiz_question_id: Mapped[str] = mapped_column(
        ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    user_answer: Mapped[str | None] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent_seconds: Mapped[int | None] = mapped_column(Integer)
    attempts_count: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    session: Mapped[QuizSession] = relationship(back_populates="answers")


class WeakArea(Base):
    """Topic-level difficulty signal for one learner within one collection."""

    __tablename__ = "weak_areas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    collection_id: Mapped[str | None] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE")
    )
    tag: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty_score: Mapped[int] = mapped_column(Integer, default=0)  # 0-100
    questions_count: Mapped[int] = mapped_column(Integer, default=0)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "collection_id", "tag", name="uq_weak_area"),
        Index("idx_weak_area_score", "user_id", "collection_id", "difficulty_score"),
    )

    def __repr__(self) -> str:
        return f"<WeakArea(tag={self.tag!r}, score={self.difficulty_score}, count={self.questions_count})>"
