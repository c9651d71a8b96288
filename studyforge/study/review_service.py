"""
Review Service.

Records flashcard reviews and quiz answers for a learner and reschedules
the reviewed item:

- flashcard review -> SM-2 state on ``flashcard_stats``
- quiz answer -> append to ``quiz_answers``, mastery tier on
  ``quiz_question_stats``, weak areas for the question's tags on a miss,
  session aggregate recomputed from the session's full answer log

Stats rows are created lazily on first use through ``_get_or_create``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from studyforge.clock import Clock, utcnow
from studyforge.db.database import SessionFactory, session_scope
from studyforge.db.models import (
    Flashcard,
    FlashcardStats,
    QuizAnswer,
    QuizQuestion,
    QuizQuestionStats,
    QuizSession,
    WeakArea,
)
from studyforge.errors import NotFoundError
from studyforge.study.mastery import AttemptCounts, MasteryScheduler
from studyforge.study.spaced_repetition import CardState, quality_from_label, schedule_review
from studyforge.study.weak_areas import WeakAreaPolicy, question_tags

ModelT = TypeVar("ModelT")

TOP_WEAK_AREAS = 10


def _get_or_create(
    session: Session,
    model: type[ModelT],
    defaults: dict[str, Any] | None = None,
    **keys: Any,
) -> tuple[ModelT, bool]:
    """
    Fetch the row matching ``keys`` or insert it with ``defaults``.

    The insert runs in a savepoint so a concurrent insert of the same key
    falls back to reading the winner's row.

    Returns:
        (row, created)
    """
    row = session.scalar(select(model).filter_by(**keys))
    if row is not None:
        return row, False

    row = model(**keys, **(defaults or {}))
    try:
        with session.begin_nested():
            session.add(row)
    except IntegrityError:
        row = session.scalar(select(model).filter_by(**keys))
        if row is None:
            raise
        return row, False
    return row, True


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ReviewService:
    """Review submission and progress queries for learners."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        clock: Clock = utcnow,
        mastery: MasteryScheduler | None = None,
        weak_areas: WeakAreaPolicy | None = None,
    ):
        settings = get_settings()
        self._session_factory = session_factory
        self._clock = clock
        self.mastery = mastery or MasteryScheduler()
        self.weak_areas = weak_areas or WeakAreaPolicy.from_settings()
        self.default_ease_factor = settings.sm2_default_ease_factor
        self.min_ease_factor = settings.sm2_min_ease_factor

    # =========================================================================
    # Flashcards
    # =========================================================================

    def submit_flashcard_review(self, user_id: str, flashcard_id: str, quality: str) -> dict[str, Any]:
        """
        Apply an SM-2 review to a flashcard.

        Args:
            user_id: Learner
            flashcard_id: Reviewed flashcard
            quality: 'easy', 'medium' or 'hard'

        Returns:
            {"box": int, "nextReview": ISO timestamp}

        Raises:
            JobInputError: unknown quality label
            NotFoundError: unknown flashcard
        """
        score = quality_from_label(quality)
        now = self._clock()

        with session_scope(self._session_factory) as session:
            if session.get(Flashcard, flashcard_id) is None:
                raise NotFoundError(f"Flashcard {flashcard_id} not found")

            stats, _ = _get_or_create(
                session,
                FlashcardStats,
                defaults={"ease_factor": self.default_ease_factor, "interval": 0, "repetitions": 0, "box": 0},
                flashcard_id=flashcard_id,
                user_id=user_id,
            )
            prior = CardState(
                ease_factor=stats.ease_factor,
                interval=stats.interval,
                repetitions=stats.repetitions,
                box=stats.box,
            )
            state = schedule_review(prior, score, now, self.min_ease_factor)

            stats.ease_factor = state.ease_factor
            stats.interval = state.interval
            stats.repetitions = state.repetitions
            stats.box = state.box
            stats.difficulty = quality.strip().lower()
            stats.last_reviewed_at = state.last_reviewed_at
            stats.next_review_at = state.next_review_at
            stats.updated_at = now

        logger.debug(
            "Flashcard {} reviewed by {} ({}): interval {}d, box {}",
            flashcard_id,
            user_id,
            quality,
            state.interval,
            state.box,
        )
        return {"box": state.box, "nextReview": _isoformat(state.next_review_at)}

    def flashcard_progress(self, user_id: str, collection_id: str) -> list[dict[str, Any]]:
        """SM-2 state of every reviewed flashcard in a collection."""
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(FlashcardStats)
                .join(Flashcard, Flashcard.id == FlashcardStats.flashcard_id)
                .where(Flashcard.collection_id == collection_id, FlashcardStats.user_id == user_id)
                .order_by(Flashcard.order_index)
            ).all()
            return [
                {
                    "flashcardId": row.flashcard_id,
                    "easeFactor": row.ease_factor,
                    "interval": row.interval,
                    "repetitions": row.repetitions,
                    "box": row.box,
                    "difficulty": row.difficulty,
                    "lastReviewedAt": _isoformat(row.last_reviewed_at),
                    "nextReviewAt": _isoformat(row.next_review_at),
                }
                for row in rows
            ]

    # =========================================================================
    # Quiz
    # =========================================================================

    def submit_quiz_answer(
        self,
        user_id: str,
        quiz_question_id: str,
        is_correct: bool,
        user_answer: str | None = None,
        time_spent_seconds: int | None = None,
        session_id: str | None = None,
    ) -> dict[str, str]:
        """
        Record a quiz answer and reschedule the question.

        A given ``session_id`` is reused only if it belongs to the learner;
        otherwise a practice session is opened on the question's collection.

        Returns:
            {"answerId": str, "sessionId": str}

        Raises:
            NotFoundError: unknown quiz question
        """
        now = self._clock()

        with session_scope(self._session_factory) as session:
            question = session.get(QuizQuestion, quiz_question_id)
            if question is None:
                raise NotFoundError(f"Quiz question {quiz_question_id} not found")

            quiz_session = self._resolve_session(session, user_id, question, session_id)

            answer = QuizAnswer(
                session_id=quiz_session.id,
                quiz_question_id=quiz_question_id,
                user_id=user_id,
                user_answer=user_answer or None,
                is_correct=is_correct,
                time_spent_seconds=time_spent_seconds or None,
                attempts_count=1,
                created_at=now,
            )
            session.add(answer)
            session.flush()

            level = self._update_question_stats(session, user_id, quiz_question_id, is_correct, now)
            if not is_correct:
                self._record_weak_areas(session, user_id, question, now)
            self._recompute_session(session, quiz_session, now)

            answer_id, resolved_session_id = answer.id, quiz_session.id

        logger.debug(
            "Quiz answer {} on {} by {} ({}), level {}",
            answer_id,
            quiz_question_id,
            user_id,
            "correct" if is_correct else "incorrect",
            level,
        )
        return {"answerId": answer_id, "sessionId": resolved_session_id}

    def quiz_progress(self, user_id: str, collection_id: str) -> dict[str, Any]:
        """Question stats and the learner's weakest tags in a collection."""
        with session_scope(self._session_factory) as session:
            stats = session.scalars(
                select(QuizQuestionStats)
                .join(QuizQuestion, QuizQuestion.id == QuizQuestionStats.quiz_question_id)
                .where(QuizQuestion.collection_id == collection_id, QuizQuestionStats.user_id == user_id)
                .order_by(QuizQuestion.order_index)
            ).all()
            weak = session.scalars(
                select(WeakArea)
                .where(WeakArea.user_id == user_id, WeakArea.collection_id == collection_id)
                .order_by(WeakArea.difficulty_score.desc(), WeakArea.tag)
                .limit(TOP_WEAK_AREAS)
            ).all()
            return {
                "stats": [
                    {
                        "quizQuestionId": row.quiz_question_id,
                        "totalAttempts": row.total_attempts,
                        "correctAttempts": row.correct_attempts,
                        "incorrectAttempts": row.incorrect_attempts,
                        "masteryLevel": row.mastery_level,
                        "nextReviewAt": _isoformat(row.next_review_at),
                        "lastAttemptedAt": _isoformat(row.last_attempted_at),
                    }
                    for row in stats
                ],
                "weakAreas": [
                    {
                        "tag": row.tag,
                        "difficultyScore": row.difficulty_score,
                        "questionsCount": row.questions_count,
                    }
                    for row in weak
                ],
            }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _resolve_session(
        self,
        session: Session,
        user_id: str,
        question: QuizQuestion,
        session_id: str | None,
    ) -> QuizSession:
        if session_id:
            existing = session.get(QuizSession, session_id)
            if existing is not None and existing.user_id == user_id:
                return existing
            logger.debug("Quiz session {} not usable for {}, opening a new one", session_id, user_id)

        quiz_session = QuizSession(
            user_id=user_id,
            collection_id=question.collection_id,
            session_type="practice",
            quiz_question_ids=[],
        )
        session.add(quiz_session)
        session.flush()
        return quiz_session

    def _update_question_stats(
        self,
        session: Session,
        user_id: str,
        quiz_question_id: str,
        is_correct: bool,
        now: datetime,
    ) -> str:
        stats, _ = _get_or_create(
            session,
            QuizQuestionStats,
            defaults={"total_attempts": 0, "correct_attempts": 0, "incorrect_attempts": 0},
            quiz_question_id=quiz_question_id,
            user_id=user_id,
        )
        counts = AttemptCounts(
            total=stats.total_attempts or 0,
            correct=stats.correct_attempts or 0,
            incorrect=stats.incorrect_attempts or 0,
        ).record(is_correct)

        level = self.mastery.mastery_level(counts)
        stats.total_attempts = counts.total
        stats.correct_attempts = counts.correct
        stats.incorrect_attempts = counts.incorrect
        stats.mastery_level = level
        stats.last_attempted_at = now
        stats.next_review_at = self.mastery.next_review_at(level, counts, now)
        stats.updated_at = now
        return level

    def _record_weak_areas(self, session: Session, user_id: str, question: QuizQuestion, now: datetime) -> None:
        for tag in question_tags(question.tags):
            area, created = _get_or_create(
                session,
                WeakArea,
                defaults={
                    "difficulty_score": self.weak_areas.bump(None),
                    "questions_count": 1,
                    "last_updated_at": now,
                },
                user_id=user_id,
                collection_id=question.collection_id,
                tag=tag,
            )
            if created:
                continue
            area.difficulty_score = self.weak_areas.bump(area.difficulty_score)
            area.questions_count = (area.questions_count or 0) + 1
            area.last_updated_at = now

    def _recompute_session(self, session: Session, quiz_session: QuizSession, now: datetime) -> None:
        total, correct = session.execute(
            select(
                func.count(QuizAnswer.id),
                func.coalesce(func.sum(case((QuizAnswer.is_correct.is_(True), 1), else_=0)), 0),
            ).where(QuizAnswer.session_id == quiz_session.id)
        ).one()
        question_ids = session.scalars(
            select(QuizAnswer.quiz_question_id)
            .where(QuizAnswer.session_id == quiz_session.id)
            .group_by(QuizAnswer.quiz_question_id)
            .order_by(func.min(QuizAnswer.created_at))
        ).all()

        quiz_session.quiz_question_ids = list(question_ids)
        quiz_session.total_questions = total
        quiz_session.correct_answers = correct
        quiz_session.incorrect_answers = total - correct
        quiz_session.score_percentage = (correct / total) * 100 if total else 0.0
        quiz_session.updated_at = now
