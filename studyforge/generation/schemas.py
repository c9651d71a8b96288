"""
Structured payloads returned by the generative model.

Models accept the model's camelCase JSON and tolerate missing fields; content
checks (empty answers, answers outside the options) happen in the persister.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from studyforge.errors import GenerationError
from studyforge.jobs.types import CamelModel

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _as_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


# =============================================================================
# Study set (collection mode)
# =============================================================================


class GeneratedFlashcard(CamelModel):
    question: str = ""
    answer: str = ""
    tags: list[str] = Field(default_factory=list)

    @field_validator("question", "answer", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _as_text(value)


class GeneratedQuizQuestion(CamelModel):
    id: str | None = None
    type: str = "multiple_choice"
    prompt: str = ""
    options: list[str] | None = None
    answer: str = ""
    explanation: str = ""
    tags: list[str] = Field(default_factory=list)

    @field_validator("prompt", "answer", "explanation", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("options", mode="before")
    @classmethod
    def _coerce_options(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(_as_text(option)) for option in value]
        return value


class StudySetMetadata(CamelModel):
    recommended_session_length: int | None = None
    summary: str = ""
    notes: list[str] = Field(default_factory=list)


class StudySetPayload(CamelModel):
    flashcards: list[GeneratedFlashcard] = Field(default_factory=list)
    quiz: list[GeneratedQuizQuestion] = Field(default_factory=list)
    metadata: StudySetMetadata = Field(default_factory=StudySetMetadata)

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return value or {}


# =============================================================================
# Quiz mode
# =============================================================================


class QuizPayload(CamelModel):
    document_title: str = ""
    recommended_session_length: int = 6
    questions: list[GeneratedQuizQuestion] = Field(default_factory=list)


# =============================================================================
# Revision note (fiche mode)
# =============================================================================


class Definition(CamelModel):
    term: str
    meaning: str
    context: str | None = None


class OutlineItem(CamelModel):
    title: str
    paragraphs: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)
    methodology: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)
    applications: list[str] = Field(default_factory=list)


class StudyQuestion(CamelModel):
    question: str
    answer: str


class NoteSection(CamelModel):
    title: str
    summary: str = ""
    key_ideas: list[str] = Field(default_factory=list)
    definitions: list[Definition] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)


class RevisionNotePayload(CamelModel):
    document_title: str = ""
    section_heading: str | None = None
    summary: str = ""
    learning_objectives: list[str] = Field(default_factory=list)
    outline: list[OutlineItem] = Field(default_factory=list)
    definitions: list[Definition] = Field(default_factory=list)
    misconceptions: list[str] = Field(default_factory=list)
    memory_hooks: list[str] = Field(default_factory=list)
    study_questions: list[StudyQuestion] = Field(default_factory=list)
    further_reading: list[str] = Field(default_factory=list)
    sections: list[NoteSection] = Field(default_factory=list)
    revision_tips: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _fill_legacy_fields(self) -> RevisionNotePayload:
        # Older consumers read ``sections`` / ``revisionTips``
        if not self.sections and self.outline:
            self.sections = [
                NoteSection(
                    title=item.title,
                    summary=" ".join(item.paragraphs).strip(),
                    key_ideas=item.key_points,
                    examples=item.examples,
                )
                for item in self.outline
            ]
        if not self.revision_tips and self.memory_hooks:
            self.revision_tips = list(self.memory_hooks)
        return self


# =============================================================================
# Result envelope & parsing
# =============================================================================

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass
class GenerationResult(Generic[T]):
    """Output of one generation call with its token usage."""

    data: T
    tokens_used: int = 0
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    model: str = ""
    raw: str = ""


def extract_json(text: str) -> Any:
    """
    Parse a JSON document out of a model response.

    Code fences and leading/trailing prose are tolerated.

    Raises:
        GenerationError: no parseable JSON object or array
    """
    candidate = text.strip()
    fence = _FENCE.search(candidate)
    if fence:
        candidate = fence.group(1).strip()

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    match = re.search(r"\{[\s\S]*\}|\[[\s\S]*\]", candidate)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise GenerationError(f"Model returned invalid JSON: {exc}") from exc
    raise GenerationError("Model response contained no JSON")


def parse_structured(text: str, model: type[M]) -> M:
    """Parse and validate a structured model response."""
    data = extract_json(text)
    if not isinstance(data, dict):
        raise GenerationError(f"Expected a JSON object for {model.__name__}, got {type(data).__name__}")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise GenerationError(f"Model response does not match {model.__name__}: {exc}") from exc
