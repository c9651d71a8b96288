"""
Integration tests for the ReviewService: flashcard SM-2 scheduling, quiz
answers, mastery tiers, weak areas and session aggregates.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from studyforge.db.database import session_scope
from studyforge.db.models import (
    Collection,
    Flashcard,
    QuizAnswer,
    QuizQuestion,
    QuizQuestionStats,
    QuizSession,
    WeakArea,
)
from studyforge.errors import JobInputError, NotFoundError
from studyforge.study.review_service import ReviewService
from studyforge.study.weak_areas import WeakAreaPolicy


@pytest.fixture
def collection(session_factory):
    """A ready collection with two flashcards and three quiz questions."""
    with session_scope(session_factory) as session:
        collection = Collection(owner_id="author", title="Biology", status="ready")
        collection.flashcards = [
            Flashcard(question="What is ATP?", answer="Energy currency", order_index=0),
            Flashcard(question="What is DNA?", answer="Genetic material", order_index=1),
        ]
        collection.quiz_questions = [
            QuizQuestion(
                question_type="multiple_choice",
                prompt="Powerhouse of the cell?",
                options=["Nucleus", "Mitochondria"],
                answer="Mitochondria",
                tags=["cells", "organelles", "cells"],
                order_index=0,
            ),
            QuizQuestion(
                question_type="true_false",
                prompt="DNA is a protein.",
                answer="false",
                tags=["genetics"],
                order_index=1,
            ),
            QuizQuestion(
                question_type="completion",
                prompt="Cells divide by ___.",
                answer="mitosis",
                tags=[],
                order_index=2,
            ),
        ]
        session.add(collection)
        session.flush()
        return {
            "id": collection.id,
            "flashcards": [card.id for card in collection.flashcards],
            "questions": [question.id for question in collection.quiz_questions],
        }


@pytest.fixture
def service(session_factory, clock):
    return ReviewService(session_factory, clock=clock)


def question_stats(session_factory, question_id, user_id="learner"):
    with session_scope(session_factory) as session:
        return session.scalar(
            select(QuizQuestionStats).where(
                QuizQuestionStats.quiz_question_id == question_id,
                QuizQuestionStats.user_id == user_id,
            )
        )


def weak_areas(session_factory, user_id="learner"):
    with session_scope(session_factory) as session:
        rows = session.scalars(select(WeakArea).where(WeakArea.user_id == user_id)).all()
        return {row.tag: (row.difficulty_score, row.questions_count) for row in rows}


def load_session(session_factory, session_id):
    with session_scope(session_factory) as session:
        return session.get(QuizSession, session_id)


# ========================================
# Flashcards
# ========================================


class TestFlashcardReview:
    def test_first_easy_review(self, service, collection, clock):
        result = service.submit_flashcard_review("learner", collection["flashcards"][0], "easy")

        assert result == {"box": 1, "nextReview": (clock.now + timedelta(days=1)).isoformat()}

    def test_intervals_grow_with_successive_reviews(self, service, collection, clock):
        card = collection["flashcards"][0]

        service.submit_flashcard_review("learner", card, "easy")
        clock.advance(days=1)
        service.submit_flashcard_review("learner", card, "easy")
        clock.advance(days=6)
        result = service.submit_flashcard_review("learner", card, "easy")

        (progress,) = service.flashcard_progress("learner", collection["id"])
        assert progress["repetitions"] == 3
        assert progress["interval"] == 16
        assert progress["easeFactor"] == pytest.approx(2.8)
        assert progress["difficulty"] == "easy"
        assert result["box"] == 3
        assert result["nextReview"] == (clock.now + timedelta(days=16)).isoformat()

    def test_hard_review_resets_repetitions(self, service, collection):
        card = collection["flashcards"][0]
        service.submit_flashcard_review("learner", card, "easy")
        service.submit_flashcard_review("learner", card, "easy")

        result = service.submit_flashcard_review("learner", card, " Hard ")

        (progress,) = service.flashcard_progress("learner", collection["id"])
        assert result["box"] == 0
        assert progress["repetitions"] == 0
        assert progress["interval"] == 1
        assert progress["difficulty"] == "hard"
        assert progress["easeFactor"] == pytest.approx(2.7 - 0.54)

    def test_state_is_per_learner(self, service, collection):
        card = collection["flashcards"][1]
        service.submit_flashcard_review("learner", card, "easy")
        service.submit_flashcard_review("learner", card, "easy")

        service.submit_flashcard_review("other", card, "medium")

        assert service.flashcard_progress("learner", collection["id"])[0]["repetitions"] == 2
        assert service.flashcard_progress("other", collection["id"])[0]["repetitions"] == 1

    def test_unknown_flashcard(self, service, collection):
        with pytest.raises(NotFoundError):
            service.submit_flashcard_review("learner", "missing", "easy")

    def test_unknown_quality(self, service, collection):
        with pytest.raises(JobInputError):
            service.submit_flashcard_review("learner", collection["flashcards"][0], "trivial")

        assert service.flashcard_progress("learner", collection["id"]) == []


# ========================================
# Quiz answers
# ========================================


class TestQuizAnswer:
    def test_answer_is_logged_in_a_new_session(self, service, collection, session_factory):
        question = collection["questions"][0]

        result = service.submit_quiz_answer(
            "learner", question, True, user_answer="Mitochondria", time_spent_seconds=12
        )

        with session_scope(session_factory) as session:
            answer = session.get(QuizAnswer, result["answerId"])
            assert answer.session_id == result["sessionId"]
            assert answer.user_answer == "Mitochondria"
            assert answer.time_spent_seconds == 12
            assert answer.is_correct is True

        quiz_session = load_session(session_factory, result["sessionId"])
        assert quiz_session.user_id == "learner"
        assert quiz_session.collection_id == collection["id"]
        assert quiz_session.session_type == "practice"

    def test_session_is_reused_for_its_owner(self, service, collection):
        first = service.submit_quiz_answer("learner", collection["questions"][0], True)

        second = service.submit_quiz_answer(
            "learner", collection["questions"][1], False, session_id=first["sessionId"]
        )

        assert second["sessionId"] == first["sessionId"]

    def test_foreign_or_missing_session_is_replaced(self, service, collection):
        theirs = service.submit_quiz_answer("other", collection["questions"][0], True)

        foreign = service.submit_quiz_answer(
            "learner", collection["questions"][0], True, session_id=theirs["sessionId"]
        )
        missing = service.submit_quiz_answer("learner", collection["questions"][0], True, session_id="nope")

        assert foreign["sessionId"] != theirs["sessionId"]
        assert missing["sessionId"] not in {theirs["sessionId"], foreign["sessionId"]}

    def test_unknown_question(self, service, collection):
        with pytest.raises(NotFoundError):
            service.submit_quiz_answer("learner", "missing", True)

    def test_session_totals_follow_all_answers(self, service, collection, session_factory, clock):
        questions = collection["questions"]
        first = service.submit_quiz_answer("learner", questions[0], True)
        session_id = first["sessionId"]
        clock.advance(seconds=30)
        service.submit_quiz_answer("learner", questions[1], False, session_id=session_id)
        clock.advance(seconds=30)
        service.submit_quiz_answer("learner", questions[2], True, session_id=session_id)
        clock.advance(seconds=30)
        service.submit_quiz_answer("learner", questions[1], True, session_id=session_id)

        quiz_session = load_session(session_factory, session_id)
        assert quiz_session.total_questions == 4
        assert quiz_session.correct_answers == 3
        assert quiz_session.incorrect_answers == 1
        assert quiz_session.score_percentage == pytest.approx(75.0)
        assert quiz_session.quiz_question_ids == questions


class TestMastery:
    def test_tiers_follow_correct_ratio(self, service, collection, session_factory, clock):
        question = collection["questions"][1]

        service.submit_quiz_answer("learner", question, False)
        stats = question_stats(session_factory, question)
        assert stats.mastery_level == "learning"
        assert stats.next_review_at == clock.now + timedelta(days=1)

        service.submit_quiz_answer("learner", question, True)
        stats = question_stats(session_factory, question)
        assert stats.mastery_level == "reviewing"
        assert stats.next_review_at == clock.now + timedelta(days=7)

        for _ in range(3):
            service.submit_quiz_answer("learner", question, True)
        stats = question_stats(session_factory, question)
        assert (stats.total_attempts, stats.correct_attempts, stats.incorrect_attempts) == (5, 4, 1)
        assert stats.mastery_level == "mastered"
        assert stats.next_review_at == clock.now + timedelta(days=30)
        assert stats.last_attempted_at == clock.now

    def test_repeated_misses_pull_review_earlier(self, service, collection, session_factory, clock):
        question = collection["questions"][1]
        for _ in range(4):
            service.submit_quiz_answer("learner", question, False)
        for _ in range(4):
            service.submit_quiz_answer("learner", question, True)

        stats = question_stats(session_factory, question)
        assert stats.mastery_level == "reviewing"
        assert stats.next_review_at == clock.now + timedelta(days=6)


class TestWeakAreas:
    def test_miss_creates_one_area_per_distinct_tag(self, service, collection, session_factory):
        service.submit_quiz_answer("learner", collection["questions"][0], False)

        assert weak_areas(session_factory) == {"cells": (10, 1), "organelles": (10, 1)}

    def test_correct_answer_leaves_areas_alone(self, service, collection, session_factory):
        service.submit_quiz_answer("learner", collection["questions"][0], True)
        service.submit_quiz_answer("learner", collection["questions"][2], False)

        assert weak_areas(session_factory) == {}

    def test_repeated_misses_raise_the_score(self, service, collection, session_factory):
        question = collection["questions"][1]

        for _ in range(3):
            service.submit_quiz_answer("learner", question, False)
        service.submit_quiz_answer("learner", question, True)

        assert weak_areas(session_factory) == {"genetics": (20, 3)}

    def test_score_is_capped(self, session_factory, clock, collection):
        service = ReviewService(
            session_factory,
            clock=clock,
            weak_areas=WeakAreaPolicy(initial_score=10, increment=50, max_score=100),
        )
        question = collection["questions"][1]

        for _ in range(4):
            service.submit_quiz_answer("learner", question, False)

        assert weak_areas(session_factory) == {"genetics": (100, 4)}


class TestQuizProgress:
    def test_stats_and_weakest_tags(self, service, collection):
        questions = collection["questions"]
        service.submit_quiz_answer("learner", questions[0], False)
        service.submit_quiz_answer("learner", questions[1], False)
        service.submit_quiz_answer("learner", questions[1], False)
        service.submit_quiz_answer("learner", questions[2], True)

        progress = service.quiz_progress("learner", collection["id"])

        assert [row["quizQuestionId"] for row in progress["stats"]] == questions
        assert progress["stats"][1]["incorrectAttempts"] == 2
        assert progress["stats"][2]["masteryLevel"] == "mastered"
        assert progress["weakAreas"] == [
            {"tag": "genetics", "difficultyScore": 15, "questionsCount": 2},
            {"tag": "cells", "difficultyScore": 10, "questionsCount": 1},
            {"tag": "organelles", "difficultyScore": 10, "questionsCount": 1},
        ]

    def test_other_learners_are_not_visible(self, service, collection):
        service.submit_quiz_answer("other", collection["questions"][0], False)

        assert service.quiz_progress("learner", collection["id"]) == {"stats": [], "weakAreas": []}
