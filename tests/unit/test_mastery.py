"""Tests for quiz mastery tiers and weak-area scoring."""

from datetime import datetime, timedelta

import pytest

from studyforge.study.mastery import AttemptCounts, MasteryScheduler
from studyforge.study.weak_areas import WeakAreaPolicy, question_tags

NOW = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture
def scheduler():
    return MasteryScheduler()


class TestMasteryLevel:
    @pytest.mark.parametrize(
        "correct,expected",
        [(8, "mastered"), (10, "mastered"), (5, "reviewing"), (7, "reviewing"), (2, "learning"), (0, "learning")],
    )
    def test_tier_from_ratio(self, scheduler, correct, expected):
        counts = AttemptCounts(total=10, correct=correct, incorrect=10 - correct)
        assert scheduler.mastery_level(counts) == expected

    def test_first_correct_attempt_is_mastered(self, scheduler):
        counts = AttemptCounts().record(True)
        assert scheduler.mastery_level(counts) == "mastered"

    def test_first_incorrect_attempt_is_learning(self, scheduler):
        counts = AttemptCounts().record(False)
        assert scheduler.mastery_level(counts) == "learning"

    def test_no_attempts(self, scheduler):
        assert scheduler.mastery_level(AttemptCounts()) == "learning"


class TestAttemptCounts:
    def test_record(self):
        counts = AttemptCounts().record(True).record(False).record(True)

        assert counts == AttemptCounts(total=3, correct=2, incorrect=1)


class TestNextReview:
    @pytest.mark.parametrize(
        "level,days",
        [("learning", 1), ("reviewing", 7), ("mastered", 30)],
    )
    def test_days_per_tier(self, scheduler, level, days):
        counts = AttemptCounts(total=4, correct=3, incorrect=1)
        assert scheduler.next_review_at(level, counts, NOW) == NOW + timedelta(days=days)

    def test_struggling_learner_reviews_sooner(self, scheduler):
        counts = AttemptCounts(total=20, correct=16, incorrect=4)

        assert scheduler.review_days("mastered", counts) == 29
        assert scheduler.review_days("reviewing", counts) == 6

    def test_reduction_never_below_one_day(self, scheduler):
        counts = AttemptCounts(total=5, correct=0, incorrect=5)
        assert scheduler.review_days("learning", counts) == 1

    def test_three_misses_do_not_reduce(self, scheduler):
        counts = AttemptCounts(total=10, correct=7, incorrect=3)
        assert scheduler.review_days("reviewing", counts) == 7


class TestWeakAreaPolicy:
    def test_new_area_starts_at_initial_score(self):
        assert WeakAreaPolicy().bump(None) == 10

    def test_increment(self):
        assert WeakAreaPolicy().bump(10) == 15

    def test_score_is_capped(self):
        policy = WeakAreaPolicy()
        score = None
        for _ in range(50):
            score = policy.bump(score)
            assert score <= 100
        assert score == 100

    def test_from_settings_defaults(self):
        policy = WeakAreaPolicy.from_settings()
        assert (policy.initial_score, policy.increment, policy.max_score) == (10, 5, 100)

    def test_question_tags_dedupes_and_strips(self):
        assert question_tags([" algebra", "algebra", "", "geometry"]) == ["algebra", "geometry"]
        assert question_tags(None) == []
