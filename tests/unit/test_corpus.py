"""Tests for corpus assembly and generation sizing."""

import pytest

from studyforge.errors import EmptyCorpusError
from studyforge.generation.corpus import (
    build_corpus,
    calculate_optimal_counts,
    estimate_generation_time,
    format_time,
)
from studyforge.generation.extraction import ExtractedSource
from studyforge.jobs.types import CollectionSourcePayload


def source(title: str, length: int, char: str = "a") -> ExtractedSource:
    return ExtractedSource(source=CollectionSourcePayload(title=title), text=char * length)


class TestBuildCorpus:
    def test_budget_truncates_and_excludes(self):
        sources = [source("one", 80_000, "a"), source("two", 80_000, "b"), source("three", 10, "c")]

        corpus = build_corpus(sources, limit=120_000)

        assert corpus.total_chars == 120_000
        assert [entry.text_length for entry in corpus.included] == [80_000, 40_000]
        assert [entry.title for entry in corpus.excluded] == ["three"]
        assert corpus.truncated is True

    def test_headings_do_not_count_against_budget(self):
        corpus = build_corpus([source("Cells", 3_000), source("Genetics", 4_000)], limit=120_000)

        assert corpus.total_chars == 7_000
        assert corpus.truncated is False
        assert corpus.text.startswith("### Cells\n")
        assert "### Genetics\n" in corpus.text

    def test_source_order_is_kept(self):
        corpus = build_corpus([source("first", 5, "x"), source("second", 5, "y")], limit=100)

        assert corpus.text.index("first") < corpus.text.index("second")

    def test_non_positive_limit_disables_budget(self):
        corpus = build_corpus([source("big", 200_000)], limit=0)

        assert corpus.total_chars == 200_000
        assert corpus.truncated is False

    def test_empty_sources_are_skipped(self):
        corpus = build_corpus([source("empty", 0), source("full", 10)], limit=100)

        assert [entry.title for entry in corpus.included] == ["full"]

    def test_nothing_to_build_from(self):
        with pytest.raises(EmptyCorpusError):
            build_corpus([source("empty", 0)], limit=100)


class TestOptimalCounts:
    def test_small_document(self):
        assert calculate_optimal_counts(1_000) == (3, 2)

    def test_medium_document(self):
        assert calculate_optimal_counts(7_000) == (11, 5)

    def test_counts_stay_in_bounds_and_never_decrease(self):
        previous = (0, 0)
        for chars in range(0, 400_000, 997):
            flashcards, quiz = calculate_optimal_counts(chars)
            assert 3 <= flashcards <= 100
            assert 2 <= quiz <= 50
            assert flashcards >= previous[0]
            assert quiz >= previous[1]
            previous = (flashcards, quiz)

    def test_tier_edges_do_not_drop(self):
        for edge in (5_000, 30_000, 100_000):
            below = calculate_optimal_counts(edge - 1)
            at = calculate_optimal_counts(edge)
            assert at[0] >= below[0]
            assert at[1] >= below[1]

    def test_very_large_document_is_capped(self):
        assert calculate_optimal_counts(10_000_000) == (100, 50)


class TestEstimates:
    @pytest.mark.parametrize(
        "chars,seconds",
        [(1_000, 30), (5_000, 60), (29_999, 60), (30_000, 120), (100_000, 180)],
    )
    def test_estimate_generation_time(self, chars, seconds):
        assert estimate_generation_time(chars) == seconds

    @pytest.mark.parametrize(
        "seconds,text",
        [(45, "45s"), (120, "2min"), (150, "2min 30s")],
    )
    def test_format_time(self, seconds, text):
        assert format_time(seconds) == text
