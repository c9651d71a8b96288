"""
Artifact persister.

Generated rows are written in fixed-size batches, each batch in its own
transaction with a short pause in between. Committed batches are not rolled
back when a later batch fails; the parent is marked failed instead.

A collection (or document) only becomes ``ready`` through the final status
update here. Readers must not infer completion from row counts.
"""

from __future__ import annotations

import hashlib
import time
from typing import Callable, Sequence

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from studyforge.clock import Clock, utcnow
from studyforge.db.database import SessionFactory, session_scope
from studyforge.db.models import (
    Collection,
    CollectionSource,
    Document,
    DocumentSection,
    DocumentVersion,
    Flashcard,
    QuizQuestion,
)
from studyforge.errors import PersistenceError
from studyforge.generation.extraction import ExtractedSource
from studyforge.generation.schemas import GeneratedFlashcard, GeneratedQuizQuestion
from studyforge.generation.sections import SectionDraft

BatchCallback = Callable[[int, int], None]


# =============================================================================
# Content validation
# =============================================================================


def quiz_question_problem(question: GeneratedQuizQuestion) -> str | None:
    """
    Why a generated quiz question is unusable, or None if it is fine.

    The answer and prompt must be non-empty, and a multiple choice answer
    must match one of its options (case-insensitive, trimmed).
    """
    answer = question.answer.strip()
    if not answer:
        return "missing answer"
    if question.type == "multiple_choice" and question.options:
        normalised = answer.lower()
        if not any(option.strip().lower() == normalised for option in question.options):
            return f"answer '{question.answer}' is not one of the options"
    if not question.prompt.strip():
        return "missing prompt"
    return None


def valid_quiz_questions(questions: Sequence[GeneratedQuizQuestion]) -> list[GeneratedQuizQuestion]:
    """Drop unusable quiz questions, logging each one."""
    valid = []
    for question in questions:
        problem = quiz_question_problem(question)
        if problem:
            logger.warning("Dropping quiz question '{}': {}", question.prompt[:80], problem)
            continue
        valid.append(question)
    return valid


def valid_flashcards(cards: Sequence[GeneratedFlashcard]) -> list[GeneratedFlashcard]:
    """Drop flashcards with an empty side."""
    valid = [card for card in cards if card.question.strip() and card.answer.strip()]
    if len(valid) < len(cards):
        logger.warning("Dropped {} empty flashcard(s)", len(cards) - len(valid))
    return valid


def content_hash(content: str | bytes) -> str:
    data = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(data).hexdigest()


# =============================================================================
# Persister
# =============================================================================


class ArtifactPersister:
    """Batch writer for generated study artifacts and their parents."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        batch_size: int | None = None,
        batch_pause: float | None = None,
        sleep: Callable[[float], object] = time.sleep,
        clock: Clock = utcnow,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self.batch_size = max(1, batch_size or settings.persist_batch_size)
        self.batch_pause = settings.persist_batch_pause_seconds if batch_pause is None else batch_pause
        self._sleep = sleep
        self._clock = clock

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def update_source_lengths(self, collection_id: str, entries: Sequence[ExtractedSource]) -> None:
        """Record extracted text length on each matching collection source."""
        try:
            with session_scope(self._session_factory) as session:
                for entry in entries:
                    source = entry.source
                    query = update(CollectionSource).where(CollectionSource.collection_id == collection_id)
                    if source.document_version_id:
                        query = query.where(CollectionSource.document_version_id == source.document_version_id)
                    elif source.storage_path:
                        query = query.where(CollectionSource.storage_path == source.storage_path)
                    else:
                        query = query.where(CollectionSource.title == source.title)
                    session.execute(
                        query.values(text_length=entry.text_length).execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Updating source metrics failed: {exc}") from exc

    def insert_flashcards(
        self,
        collection_id: str,
        cards: Sequence[GeneratedFlashcard],
        on_batch: BatchCallback | None = None,
    ) -> int:
        rows = [
            Flashcard(
                collection_id=collection_id,
                question=card.question.strip(),
                answer=card.answer.strip(),
                tags=list(card.tags),
                order_index=index,
            )
            for index, card in enumerate(cards)
        ]
        return self._insert_batches("flashcards", rows, on_batch)

    def insert_quiz_questions(
        self,
        collection_id: str,
        questions: Sequence[GeneratedQuizQuestion],
        on_batch: BatchCallback | None = None,
    ) -> int:
        rows = [
            QuizQuestion(
                collection_id=collection_id,
                question_type=question.type,
                prompt=question.prompt.strip(),
                options=question.options,
                answer=question.answer.strip(),
                explanation=question.explanation or None,
                tags=list(question.tags),
                order_index=index,
            )
            for index, question in enumerate(questions)
        ]
        return self._insert_batches("quiz questions", rows, on_batch)

    def _insert_batches(self, label: str, rows: list, on_batch: BatchCallback | None) -> int:
        written = 0
        for start in range(0, len(rows), self.batch_size):
            chunk = rows[start : start + self.batch_size]
            try:
                with session_scope(self._session_factory) as session:
                    session.add_all(chunk)
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Inserting {label} failed after {written}/{len(rows)} rows: {exc}"
                ) from exc
            written += len(chunk)
            logger.debug("Inserted {} {} ({}/{})", len(chunk), label, written, len(rows))
            if on_batch:
                on_batch(written, len(rows))
            if self.batch_pause > 0:
                self._sleep(self.batch_pause)
        return written

    def finalize_collection(
        self,
        collection_id: str,
        total_sources: int,
        total_flashcards: int,
        total_quiz: int,
        prompt_tokens: int | None,
        completion_tokens: int | None,
        summary: str,
        notes: list[str],
    ) -> None:
        """
        Mark a collection ready with its totals.

        Only a collection still ``processing`` is updated.

        Raises:
            PersistenceError: collection missing, no longer processing, or the update failed
        """
        try:
            with session_scope(self._session_factory) as session:
                result = session.execute(
                    update(Collection)
                    .where(Collection.id == collection_id, Collection.status == "processing")
                    .values(
                        status="ready",
                        total_sources=total_sources,
                        total_flashcards=total_flashcards,
                        total_quiz=total_quiz,
                        prompt_tokens=prompt_tokens,
                        completion_tokens=completion_tokens,
                        metadata_json={"summary": summary, "notes": list(notes)},
                        updated_at=self._clock(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    current = session.scalar(select(Collection.status).where(Collection.id == collection_id))
                    if current is None:
                        raise PersistenceError(f"Collection {collection_id} not found")
                    raise PersistenceError(f"Collection {collection_id} is '{current}', expected 'processing'")
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Finalizing collection {collection_id} failed: {exc}") from exc

        logger.info(
            "Collection {} ready: {} flashcards, {} quiz questions",
            collection_id,
            total_flashcards,
            total_quiz,
        )

    def mark_collection_failed(self, collection_id: str, reason: str) -> bool:
        """Mark a processing collection failed. Returns True if it changed."""
        with session_scope(self._session_factory) as session:
            collection = session.get(Collection, collection_id)
            if collection is None or collection.status != "processing":
                return False
            collection.status = "failed"
            collection.metadata_json = {**(collection.metadata_json or {}), "error": reason}
            collection.updated_at = self._clock()
        logger.warning("Collection {} marked failed: {}", collection_id, reason)
        return True

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def save_document_version(
        self,
        document_id: str,
        raw_text: str,
        sections: Sequence[SectionDraft],
        storage_path: str | None,
        page_count: int,
        checksum: str | None,
    ) -> tuple[str, int]:
        """
        Store a processed document version with its sections and point the
        document at it.

        Returns:
            (version id, sections written)
        """
        try:
            with session_scope(self._session_factory) as session:
                document = session.get(Document, document_id)
                if document is None:
                    raise PersistenceError(f"Document {document_id} not found")
                if document.status == "failed":
                    raise PersistenceError(f"Document {document_id} is 'failed', expected 'processing'")

                now = self._clock()
                version = DocumentVersion(
                    document_id=document_id,
                    storage_path=storage_path,
                    page_count=page_count,
                    raw_text=raw_text,
                    checksum=checksum,
                    processed_at=now,
                )
                version.sections = [
                    DocumentSection(
                        order_index=index,
                        heading=section.heading[:250],
                        content=section.content,
                        content_hash=content_hash(section.content),
                    )
                    for index, section in enumerate(sections)
                ]
                session.add(version)
                session.flush()

                document.status = "ready"
                document.current_version_id = version.id
                document.updated_at = now
                version_id = version.id
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Saving document {document_id} failed: {exc}") from exc

        logger.info("Document {} ready (version {}, {} sections)", document_id, version_id, len(sections))
        return version_id, len(sections)

    def mark_document_failed(self, document_id: str, reason: str) -> bool:
        with session_scope(self._session_factory) as session:
            document = session.get(Document, document_id)
            if document is None or document.status != "processing":
                return False
            document.status = "failed"
            document.updated_at = self._clock()
        logger.warning("Document {} marked failed: {}", document_id, reason)
        return True
