"""
Study collection models.

Implements:
- Collection: a study set generated from one or more documents
- CollectionSource: document reference with extracted text length
- Flashcard: generated question/answer pair (immutable once generated)
- QuizQuestion: generated question with options, answer and explanation

Flashcards, quiz questions and sources are deleted with their collection.
A collection is only usable once ``status == "ready"``; row counts alone
never signal completion.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studyforge.clock import utcnow

from .base import Base, JSONType, new_id

if TYPE_CHECKING:
    from .progress import FlashcardStats, QuizQuestionStats


class Collection(Base):
    """Study set owned by a user."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list)

    # 'processing', 'ready', 'failed'
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="processing")

    total_sources: Mapped[int] = mapped_column(Integer, default=0)
    total_flashcards: Mapped[int] = mapped_column(Integer, default=0)
    total_quiz: Mapped[int] = mapped_column(Integer, default=0)

    # Token usage of the generation call
    prompt_tokens: Mapped[int | None] = mapped_column(Integer)
    completion_tokens: Mapped[int | None] = mapped_column(Integer)

    # {"summary": str, "notes": [str]}
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    sources: Mapped[list[CollectionSource]] = relationship(
        back_populates="collection", cascade="all, delete-orphan"
    )
    flashcards: Mapped[list[Flashcard]] = relationship(
        back_populates="collection",
        cascade="all, delete-orphan",
        order_by="Flashcard.order_index",
    )
    quiz_questions: Mapped[list[QuizQuestion]] = relationship(
        back_populates="collection",
        cascade="all, delete-orphan",
        order_by="QuizQuestion.order_index",
    )

    def __repr__(self) -> str:
        return f"<Collection(id={self.id}, title={self.title!r}, status={self.status})>"


class CollectionSource(Base):
    """A document feeding a collection."""

    __tablename__ = "collection_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    collection_id: Mapped[str] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_id: Mapped[str | None] = mapped_column(String(36))
    document_version_id: Mapped[str | None] = mapped_column(String(36))
    storage_path: Mapped[str | None] = mapped_column(Text)
    title: Mapped[str] = mapped_column(Text, default="")
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list)
    text_length: Mapped[int | None] = mapped_column(Integer)

    collection: Mapped[Collection] = relationship(back_populates="sources")


class Flashcard(Base):
    """Generated flashcard."""

    __tablename__ = "flashcards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    collection_id: Mapped[str] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    collection: Mapped[Collection] = relationship(back_populates="flashcards")
    stats: Mapped[list[FlashcardStats]] = relationship(
        back_populates="flashcard", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Flashcard(id={self.id}, order={self.order_index})>"


class QuizQuestion(Base):
    """
    Generated quiz question.

    question_type is one of 'multiple_choice', 'true_false', 'completion'.
    options is a list of strings for multiple choice, otherwise null.
    """

    __tablename__ = "quiz_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    collection_id: Mapped[str] = mapped_column(
        ForeignKey("collections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_type: Mapped[str] = mapped_column(String(32), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list[str] | None] = mapped_column(JSONType)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    collection: Mapped[Collection] = relationship(back_populates="quiz_questions")
    stats: Mapped[list[QuizQuestionStats]] = relationship(
        back_populates="question", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<QuizQuestion(type={self.question_type}, order={self.order_index})>"
