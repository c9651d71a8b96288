"""
Generation pipelines run by the job handlers.

- ``run_generation``: one generation from inline text (text or structured mode)
- ``CollectionPipeline``: sources -> corpus -> study set -> batched rows -> ready
- ``DocumentPipeline``: document text -> sections -> version -> ready

Progress milestones are reported through a ``Progress`` sink; values of 1 are
left to the worker, which finalizes the job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

from studyforge.errors import JobInputError
from studyforge.generation.corpus import build_corpus, calculate_optimal_counts
from studyforge.generation.extraction import (
    DocumentStorage,
    extract_document_text,
    extract_sources,
    split_storage_path,
)
from studyforge.generation.invoker import StudySetGenerator
from studyforge.generation.persister import (
    ArtifactPersister,
    content_hash,
    valid_flashcards,
    valid_quiz_questions,
)
from studyforge.generation.sections import detect_sections
from studyforge.jobs.types import (
    STRUCTURED_MODES,
    TEXT_MODES,
    CollectionGenerationJobPayload,
    DocumentGenerationJobPayload,
    GenerationJobPayload,
)


class Progress(Protocol):
    def __call__(self, value: float) -> None: ...

    def checkpoint(self) -> None: ...


class NullProgress:
    """Progress sink that ignores everything."""

    def __call__(self, value: float) -> None:
        return None

    def checkpoint(self) -> None:
        return None


# =============================================================================
# Single generation
# =============================================================================


def run_generation(
    payload: GenerationJobPayload,
    generator: StudySetGenerator,
    progress: Progress | None = None,
) -> dict[str, Any]:
    """
    Run a text or structured generation.

    Raises:
        JobInputError: empty text or unknown mode
    """
    progress = progress or NullProgress()
    mode, text = payload.mode, payload.text
    if not text.strip():
        raise JobInputError("Text to process is empty")
    if mode not in TEXT_MODES and mode not in STRUCTURED_MODES:
        raise JobInputError(f"Unsupported generation mode: {mode}")

    progress(0.05)

    if mode in STRUCTURED_MODES:
        progress(0.15)
        if mode == "fiche":
            result = generator.generate_revision_note(text, payload.metadata)
        elif mode == "quiz":
            result = generator.generate_quiz(text, payload.metadata)
        else:
            result = generator.generate_study_set(text, payload.metadata)
        progress(0.8)
        kind = "structured"
        data: Any = result.data.to_wire()
    else:
        progress(0.2)
        result = generator.run_text_mode(mode, text)
        progress(0.9)
        kind = "text"
        data = result.data

    return {
        "mode": mode,
        "kind": kind,
        "data": data,
        "tokensUsed": result.tokens_used,
        "model": result.model,
        "promptTokens": result.prompt_tokens,
        "completionTokens": result.completion_tokens,
        "metadata": payload.metadata,
    }


# =============================================================================
# Collection generation
# =============================================================================


@dataclass
class CollectionPipeline:
    """Multi-source study set generation for one collection."""

    generator: StudySetGenerator
    storage: DocumentStorage
    persister: ArtifactPersister
    corpus_char_limit: int | None = None

    def run(self, payload: CollectionGenerationJobPayload, progress: Progress | None = None) -> dict[str, Any]:
        progress = progress or NullProgress()
        if not payload.sources:
            raise JobInputError("No sources provided for the collection")

        progress(0.05)
        logger.info(
            "Generating collection {} from {} source(s)",
            payload.collection_id,
            len(payload.sources),
        )

        extracted = extract_sources(payload.sources, self.storage)
        self.persister.update_source_lengths(payload.collection_id, extracted)
        progress(0.2)

        # Targets follow the full document size, not the truncated corpus
        document_chars = sum(entry.text_length for entry in extracted)
        flashcards_target, quiz_target = calculate_optimal_counts(document_chars)
        corpus = build_corpus(extracted, self.corpus_char_limit)

        logger.info(
            "Corpus {} chars of {} extracted; targets {} flashcards / {} quiz",
            corpus.total_chars,
            document_chars,
            flashcards_target,
            quiz_target,
        )

        metadata = {
            "collectionTitle": payload.title,
            "tags": payload.tags,
            "totalSources": len(corpus.included),
            "totalDocumentCharacters": document_chars,
            "corpusCharacters": corpus.total_chars,
            "flashcardsTarget": flashcards_target,
            "quizTarget": quiz_target,
            "sources": [
                {"title": entry.title, "tags": entry.source.tags, "textLength": entry.text_length}
                for entry in extracted
            ],
        }
        progress(0.3)

        generation = self.generator.generate_study_set(corpus.text, metadata)
        study_set = generation.data
        progress(0.7)

        flashcards = valid_flashcards(study_set.flashcards)[:flashcards_target]
        quiz = valid_quiz_questions(study_set.quiz)[:quiz_target]
        if len(flashcards) < flashcards_target:
            logger.warning("Model produced {}/{} usable flashcards", len(flashcards), flashcards_target)
        if len(quiz) < quiz_target:
            logger.warning("Model produced {}/{} usable quiz questions", len(quiz), quiz_target)

        progress.checkpoint()
        total_rows = len(flashcards) + len(quiz)

        def on_batch(offset: int):
            def report(written: int, _total: int) -> None:
                if total_rows:
                    progress(0.7 + 0.25 * (offset + written) / total_rows)

            return report

        flashcards_count = self.persister.insert_flashcards(payload.collection_id, flashcards, on_batch(0))
        quiz_count = self.persister.insert_quiz_questions(payload.collection_id, quiz, on_batch(flashcards_count))

        progress.checkpoint()
        self.persister.finalize_collection(
            payload.collection_id,
            total_sources=len(corpus.included),
            total_flashcards=flashcards_count,
            total_quiz=quiz_count,
            prompt_tokens=generation.prompt_tokens,
            completion_tokens=generation.completion_tokens,
            summary=study_set.metadata.summary,
            notes=study_set.metadata.notes,
        )

        return {
            "collectionId": payload.collection_id,
            "flashcardsCount": flashcards_count,
            "quizCount": quiz_count,
            "tokensUsed": generation.tokens_used,
        }


# =============================================================================
# Document ingestion
# =============================================================================


@dataclass
class DocumentPipeline:
    """Document ingestion into a new version with detected sections."""

    storage: DocumentStorage
    persister: ArtifactPersister
    default_bucket: str | None = None

    def run(self, payload: DocumentGenerationJobPayload, progress: Progress | None = None) -> dict[str, Any]:
        progress = progress or NullProgress()
        raw_text, page_count, checksum, storage_path = self._load_text(payload)
        progress(0.1)

        sections = detect_sections(raw_text, payload.title)
        if not sections:
            raise JobInputError("No section detected in the document")
        progress(0.2)

        progress.checkpoint()
        version_id, sections_count = self.persister.save_document_version(
            payload.document_id,
            raw_text=raw_text,
            sections=sections,
            storage_path=storage_path,
            page_count=page_count,
            checksum=checksum,
        )
        progress(0.95)

        return {
            "documentId": payload.document_id,
            "versionId": version_id,
            "sectionsCount": sections_count,
            "quizzesCount": 0,
        }

    def _load_text(self, payload: DocumentGenerationJobPayload) -> tuple[str, int, str | None, str | None]:
        if payload.manual_text and payload.manual_text.strip():
            return (
                payload.manual_text.strip(),
                payload.page_count or 0,
                content_hash(payload.manual_text),
                None,
            )

        if not payload.object_path:
            raise JobInputError("Document payload has neither an object path nor manual text")

        bucket = payload.bucket or self.default_bucket
        if bucket:
            storage_path = f"{bucket}/{payload.object_path.lstrip('/')}"
        else:
            storage_path = payload.object_path
        bucket, object_path = split_storage_path(storage_path)

        data = self.storage.download(bucket, object_path)
        document = extract_document_text(data)
        raw_text = document.text.strip()
        if not raw_text:
            raise JobInputError("Could not extract any text from the document")
        return raw_text, document.page_count or payload.page_count or 0, content_hash(data), storage_path
