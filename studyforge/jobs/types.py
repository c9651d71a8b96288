"""
Job types, statuses and typed payloads.

Payloads travel as camelCase JSON (the shape written by enqueuing callers)
and are parsed into one pydantic model per job type. The worker dispatches
on ``JobType``; every member must have a handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from studyforge.errors import JobInputError


class JobType(str, Enum):
    """Kinds of work a worker can claim."""

    GENERATION = "generation"
    COLLECTION_GENERATION = "collection-generation"
    DOCUMENT_GENERATION = "document-generation"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})


@dataclass
class JobRecord:
    """Detached snapshot of a job row."""

    id: str
    owner_id: str
    type: str
    status: str
    progress: float | None
    payload: dict[str, Any] | None
    result: dict[str, Any] | None
    error: str | None
    error_kind: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}


def job_status_view(job: JobRecord) -> dict[str, Any]:
    """Status shape consumed by the HTTP layer."""
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
        "progress": job.progress,
        "result": job.result,
        "error": job.error,
        "isTerminal": job.is_terminal,
    }


# ========================================
# Payloads
# ========================================


class CamelModel(BaseModel):
    """Base for wire payloads: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


TEXT_MODES: frozenset[str] = frozenset({"improve", "correct", "translate", "summarize"})
STRUCTURED_MODES: frozenset[str] = frozenset({"fiche", "quiz", "collection"})


class GenerationJobPayload(CamelModel):
    """Single generation from inline text."""

    mode: str
    text: str
    metadata: dict[str, Any] | None = None


class CollectionSourcePayload(CamelModel):
    """A document selected for a collection."""

    document_id: str | None = None
    document_version_id: str | None = None
    storage_path: str | None = None
    title: str = ""
    tags: list[str] = Field(default_factory=list)
    raw_text: str | None = None


class CollectionGenerationJobPayload(CamelModel):
    """Multi-source study set generation."""

    collection_id: str
    user_id: str
    title: str
    tags: list[str] = Field(default_factory=list)
    sources: list[CollectionSourcePayload] = Field(default_factory=list)


class DocumentGenerationJobPayload(CamelModel):
    """Document ingestion into versioned sections."""

    document_id: str
    user_id: str
    title: str
    original_filename: str | None = None
    bucket: str | None = None
    object_path: str | None = None
    manual_text: str | None = None
    page_count: int | None = None


JobPayload = GenerationJobPayload | CollectionGenerationJobPayload | DocumentGenerationJobPayload

PAYLOAD_MODELS: dict[JobType, type[CamelModel]] = {
    JobType.GENERATION: GenerationJobPayload,
    JobType.COLLECTION_GENERATION: CollectionGenerationJobPayload,
    JobType.DOCUMENT_GENERATION: DocumentGenerationJobPayload,
}


def parse_payload(job_type: JobType | str, raw: dict[str, Any] | None) -> JobPayload:
    """
    Parse a raw job payload into its typed model.

    Raises:
        JobInputError: payload missing, job type unknown, or validation failed
    """
    if not raw:
        raise JobInputError("Job payload missing")
    try:
        model = PAYLOAD_MODELS[JobType(job_type)]
    except ValueError:
        raise JobInputError(f"Unsupported job type: {job_type}") from None
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise JobInputError(f"Invalid {JobType(job_type).value} payload: {exc}") from exc
