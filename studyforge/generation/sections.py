"""
Document section detection.

Splits raw document text into heading-delimited sections, then evens them
out: sections shorter than ``MIN_SECTION_CHARS`` are folded into the previous
one and sections longer than ``MAX_SECTION_CHARS`` are split on paragraph
boundaries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

MIN_SECTION_CHARS = 600
MAX_SECTION_CHARS = 4500

HEADING_PATTERN = re.compile(
    r"^(?i:chapitre|chapter|section|partie|part|module|lesson|cours)\b"
    r"|^\d+(\.\d+)*\b"
    r"|^[A-Z][A-Z\s]{2,}$"  # all-caps line
)


@dataclass
class SectionDraft:
    """A section before it is persisted."""

    heading: str
    content: str


def clean_section_text(content: str) -> str:
    text = content.replace("\u00a0", " ")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def is_heading(line: str) -> bool:
    return bool(HEADING_PATTERN.search(line))


def split_raw_sections(raw_text: str, fallback_title: str) -> list[SectionDraft]:
    """Cut text at heading lines. Text before the first heading goes under the fallback title."""
    lines = [line.strip() for line in re.split(r"\r?\n", raw_text)]
    lines = [line for line in lines if line]

    sections: list[SectionDraft] = []
    current: SectionDraft | None = None

    for line in lines:
        if is_heading(line):
            if current and clean_section_text(current.content):
                sections.append(SectionDraft(current.heading, clean_section_text(current.content)))
            current = SectionDraft(heading=re.sub(r"[:\-]+$", "", line).strip(), content="")
        else:
            if current is None:
                current = SectionDraft(heading=fallback_title, content="")
            current.content += f"{line}\n"

    if current and clean_section_text(current.content):
        sections.append(SectionDraft(current.heading, clean_section_text(current.content)))

    if not sections:
        sections.append(SectionDraft(fallback_title, clean_section_text(raw_text)))
    return sections


def merge_small_sections(sections: list[SectionDraft], min_chars: int = MIN_SECTION_CHARS) -> list[SectionDraft]:
    """Fold sections shorter than ``min_chars`` into the previous section."""
    merged: list[SectionDraft] = []
    for section in sections:
        content = clean_section_text(section.content)
        if merged and len(content) < min_chars:
            previous = merged[-1]
            previous.heading = f"{previous.heading} • {section.heading}"
            previous.content = f"{previous.content}\n\n{section.heading}\n{content}".strip()
        else:
            merged.append(SectionDraft(section.heading, content))
    return merged


def split_large_section(section: SectionDraft, max_chars: int = MAX_SECTION_CHARS) -> list[SectionDraft]:
    """Split a section over ``max_chars`` on paragraph boundaries, or on lines if it has one paragraph."""
    if len(section.content) <= max_chars:
        return [section]

    paragraphs = [p.strip() for p in re.split(r"\n{2,}", section.content) if p.strip()]
    if len(paragraphs) == 1:
        paragraphs = [line.strip() for line in section.content.split("\n") if line.strip()]
    parts: list[SectionDraft] = []
    buffer: list[str] = []
    length = 0

    def flush() -> None:
        nonlocal buffer, length
        if not buffer:
            return
        index = len(parts) + 1
        heading = section.heading if index == 1 else f"{section.heading} (part {index})"
        parts.append(SectionDraft(heading, "\n\n".join(buffer)))
        buffer, length = [], 0

    for paragraph in paragraphs:
        paragraph_length = len(paragraph) + 2
        if buffer and length + paragraph_length > max_chars:
            flush()
        buffer.append(paragraph)
        length += paragraph_length
    flush()

    return parts or [section]


def detect_sections(raw_text: str, fallback_title: str) -> list[SectionDraft]:
    """Full section detection: split, merge small, split large."""
    working = merge_small_sections(split_raw_sections(raw_text, fallback_title))
    sections: list[SectionDraft] = []
    for section in working:
        cleaned = SectionDraft(clean_section_text(section.heading), clean_section_text(section.content))
        sections.extend(split_large_section(cleaned))
    return sections
