"""
Error taxonomy for studyforge.

Every error carries a ``kind`` that is stored on a failed job as ``error_kind``
so operators can tell a rejected input from a stuck pipeline:

- input: bad payload or nothing to generate from (never retried)
- external: generative model or document storage failure
- timeout: worker-enforced execution deadline
- stale: job left running by a worker that never came back
- cancelled: job cancelled while its pipeline was running
- persistence: batch insert / aggregate update failure
- internal: anything else
"""

from __future__ import annotations


class StudyForgeError(Exception):
    """Base class for all studyforge errors."""

    kind: str = "internal"


class JobInputError(StudyForgeError):
    """Job payload is missing, malformed, or has nothing to process."""

    kind = "input"


class EmptyCorpusError(JobInputError):
    """No source yielded any text."""


class ExternalServiceError(StudyForgeError):
    """An external collaborator failed (possibly transient)."""

    kind = "external"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationError(ExternalServiceError):
    """The generative model call failed or returned an unusable payload."""


class DocumentDownloadError(ExternalServiceError):
    """A stored document could not be downloaded or parsed."""


class JobTimeoutError(StudyForgeError):
    """A job exceeded its execution deadline."""

    kind = "timeout"


class StaleJobError(StudyForgeError):
    """A running job outlived its worker."""

    kind = "stale"


class JobCancelledError(StudyForgeError):
    """The job was cancelled while its pipeline was still running."""

    kind = "cancelled"


class PersistenceError(StudyForgeError):
    """Writing generated artifacts or aggregates failed."""

    kind = "persistence"


class NotFoundError(StudyForgeError):
    """A referenced row does not exist."""

    kind = "input"


def error_kind(exc: BaseException) -> str:
    """Return the job error kind for an exception."""
    if isinstance(exc, StudyForgeError):
        return exc.kind
    return "internal"


def error_message(exc: BaseException) -> str:
    """Return a non-empty message for an exception."""
    message = str(exc).strip()
    return message or exc.__class__.__name__
