"""Tests for document section detection."""

import pytest

from studyforge.generation.sections import (
    SectionDraft,
    clean_section_text,
    detect_sections,
    is_heading,
    merge_small_sections,
    split_large_section,
    split_raw_sections,
)


class TestIsHeading:
    @pytest.mark.parametrize(
        "line",
        ["Chapter 1: Cells", "chapitre 2", "Section A", "1.2 Membranes", "3 Results", "INTRODUCTION"],
    )
    def test_headings(self, line):
        assert is_heading(line)

    @pytest.mark.parametrize(
        "line",
        ["Cells are small.", "Particles move.", "Introduction to cells", "Mostly lower case"],
    )
    def test_body_lines(self, line):
        assert not is_heading(line)


class TestSplitRawSections:
    def test_text_before_first_heading_uses_fallback(self):
        text = "Intro line\nChapter 1: Cells\nCells are small.\nChapter 2 - Genes\nGenes code proteins."

        sections = split_raw_sections(text, "Doc")

        assert [s.heading for s in sections] == ["Doc", "Chapter 1: Cells", "Chapter 2 - Genes"]
        assert sections[1].content == "Cells are small."

    def test_trailing_colon_is_removed(self):
        sections = split_raw_sections("Section A:\nBody", "Doc")
        assert sections[0].heading == "Section A"

    def test_empty_heading_sections_are_dropped(self):
        sections = split_raw_sections("Chapter 1\nChapter 2\nBody", "Doc")
        assert [s.heading for s in sections] == ["Chapter 2"]

    def test_no_headings(self):
        sections = split_raw_sections("Just some text.\nMore text.", "Doc")
        assert sections == [SectionDraft("Doc", "Just some text.\nMore text.")]


class TestMergeAndSplit:
    def test_small_section_folds_into_previous(self):
        sections = [SectionDraft("A", "a" * 700), SectionDraft("B", "b" * 100)]

        merged = merge_small_sections(sections)

        assert len(merged) == 1
        assert merged[0].heading == "A • B"
        assert merged[0].content.endswith("B\n" + "b" * 100)

    def test_first_section_is_kept_even_if_small(self):
        merged = merge_small_sections([SectionDraft("A", "short"), SectionDraft("B", "b" * 700)])
        assert [s.heading for s in merged] == ["A", "B"]

    def test_large_section_splits_on_paragraphs(self):
        content = "\n\n".join(["x" * 2000, "y" * 2000, "z" * 2000])

        parts = split_large_section(SectionDraft("H", content))

        assert [p.heading for p in parts] == ["H", "H (part 2)"]
        assert parts[0].content == "x" * 2000 + "\n\n" + "y" * 2000
        assert parts[1].content == "z" * 2000

    def test_section_within_limit_is_untouched(self):
        section = SectionDraft("H", "short")
        assert split_large_section(section) == [section]


def test_clean_section_text():
    assert clean_section_text("a  b   \n\n\n\nc ") == "a b\n\nc"


def test_detect_sections_end_to_end():
    body = ("Cells are the unit of life. " * 30).strip()
    text = f"Chapter 1: Cells\n{body}\nChapter 2: Genes\nShort.\nChapter 3: Proteins\n{body}"

    sections = detect_sections(text, "Biology")

    assert [s.heading for s in sections] == ["Chapter 1: Cells • Chapter 2: Genes", "Chapter 3: Proteins"]
    assert all(s.content for s in sections)
