"""
Job handlers: one per ``JobType``.

A handler runs the pipeline for a parsed payload and knows which parent
aggregate to fail when the job fails (including timeouts and stale expiry).
``build_handlers`` returns a mapping covering every job type.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, TypeVar

from loguru import logger
from pydantic import ValidationError

from studyforge.errors import JobInputError, error_message
from studyforge.generation.extraction import DocumentStorage
from studyforge.generation.invoker import StudySetGenerator
from studyforge.generation.persister import ArtifactPersister
from studyforge.generation.pipeline import (
    CollectionPipeline,
    DocumentPipeline,
    Progress,
    run_generation,
)
from studyforge.jobs.types import (
    CamelModel,
    CollectionGenerationJobPayload,
    DocumentGenerationJobPayload,
    GenerationJobPayload,
    JobPayload,
    JobRecord,
    JobType,
)

PayloadT = TypeVar("PayloadT", bound=CamelModel)


def _expect(payload: JobPayload, expected: type[PayloadT]) -> PayloadT:
    if not isinstance(payload, expected):
        raise JobInputError(f"Expected {expected.__name__}, got {type(payload).__name__}")
    return payload


class JobHandler(Protocol):
    """Executes one job type."""

    def run(self, job: JobRecord, payload: JobPayload, progress: Progress) -> dict[str, Any]: ...

    def on_failure(self, job: JobRecord, exc: BaseException) -> None: ...


class GenerationHandler:
    """Single generation from inline text. Has no parent aggregate."""

    def __init__(self, generator: StudySetGenerator):
        self.generator = generator

    def run(self, job: JobRecord, payload: JobPayload, progress: Progress) -> dict[str, Any]:
        return run_generation(_expect(payload, GenerationJobPayload), self.generator, progress)

    def on_failure(self, job: JobRecord, exc: BaseException) -> None:
        return None


class CollectionGenerationHandler:
    """Study set generation; fails the collection with the job."""

    def __init__(self, pipeline: CollectionPipeline):
        self.pipeline = pipeline

    def run(self, job: JobRecord, payload: JobPayload, progress: Progress) -> dict[str, Any]:
        return self.pipeline.run(_expect(payload, CollectionGenerationJobPayload), progress)

    def on_failure(self, job: JobRecord, exc: BaseException) -> None:
        collection_id = (job.payload or {}).get("collectionId")
        if not collection_id:
            logger.debug("Job {} has no collection to fail", job.id)
            return
        self.pipeline.persister.mark_collection_failed(collection_id, error_message(exc))


class DocumentGenerationHandler:
    """Document ingestion; fails the document with the job."""

    def __init__(self, pipeline: DocumentPipeline):
        self.pipeline = pipeline

    def run(self, job: JobRecord, payload: JobPayload, progress: Progress) -> dict[str, Any]:
        return self.pipeline.run(_expect(payload, DocumentGenerationJobPayload), progress)

    def on_failure(self, job: JobRecord, exc: BaseException) -> None:
        try:
            payload = DocumentGenerationJobPayload.model_validate(job.payload or {})
        except ValidationError:
            logger.debug("Job {} has no document to fail", job.id)
            return
        self.pipeline.persister.mark_document_failed(payload.document_id, error_message(exc))


def build_handlers(
    generator: StudySetGenerator,
    storage: DocumentStorage,
    persister: ArtifactPersister,
    corpus_char_limit: int | None = None,
) -> Mapping[JobType, JobHandler]:
    """Handlers for every job type."""
    handlers: dict[JobType, JobHandler] = {
        JobType.GENERATION: GenerationHandler(generator),
        JobType.COLLECTION_GENERATION: CollectionGenerationHandler(
            CollectionPipeline(generator, storage, persister, corpus_char_limit)
        ),
        JobType.DOCUMENT_GENERATION: DocumentGenerationHandler(DocumentPipeline(storage, persister)),
    }
    return handlers
