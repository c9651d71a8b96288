"""
Durable job store.

All state transitions are conditional UPDATEs guarded on the current status,
so the store is the only coordination point between workers:

- claim: ``status = 'pending'`` -> ``'running'`` on one row; the caller that
  sees ``rowcount == 1`` owns the job
- progress: only while ``'running'`` and never lower than the stored value
- finalize: only from a non-terminal status
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Mapping

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from studyforge.clock import Clock, utcnow
from studyforge.db.database import SessionFactory, session_scope
from studyforge.db.models import Job
from studyforge.errors import JobInputError
from studyforge.jobs.types import (
    ACTIVE_STATUSES,
    CamelModel,
    JobRecord,
    JobStatus,
    JobType,
    job_status_view,
    parse_payload,
)

# A lost CAS race re-reads the queue this many times before reporting empty
MAX_CLAIM_ATTEMPTS = 3

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


class JobStore:
    """Create, claim, and finalize jobs."""

    def __init__(self, session_factory: SessionFactory | None = None, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    # ========================================
    # Creation & lookup
    # ========================================

    def create_job(
        self,
        owner_id: str,
        job_type: JobType | str,
        payload: CamelModel | Mapping[str, Any],
    ) -> JobRecord:
        """
        Enqueue a job in ``pending`` state.

        The payload is validated against the job type before insertion.

        Raises:
            JobInputError: unknown type or invalid payload
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise JobInputError(f"Unsupported job type: {job_type}") from None
        raw = payload.to_wire() if isinstance(payload, CamelModel) else dict(payload)
        parse_payload(job_type, raw)

        with session_scope(self._session_factory) as session:
            now = self._clock()
            job = Job(
                owner_id=owner_id,
                type=job_type.value,
                status=JobStatus.PENDING.value,
                progress=None,
                payload=raw,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            session.flush()
            record = _to_record(job)

        logger.info("Enqueued {} job {} for owner {}", record.type, record.id, owner_id)
        return record

    def get_job(self, job_id: str) -> JobRecord | None:
        """Fetch a job snapshot, or None if it does not exist."""
        with session_scope(self._session_factory) as session:
            job = session.get(Job, job_id)
            return _to_record(job) if job else None

    def status_view(self, job_id: str) -> dict[str, Any] | None:
        """Status shape for polling clients."""
        record = self.get_job(job_id)
        return job_status_view(record) if record else None

    def list_jobs(
        self,
        owner_id: str | None = None,
        status: JobStatus | str | None = None,
        limit: int = 20,
    ) -> list[JobRecord]:
        """Most recent jobs first."""
        query = select(Job).order_by(Job.created_at.desc()).limit(limit)
        if owner_id:
            query = query.where(Job.owner_id == owner_id)
        if status:
            query = query.where(Job.status == JobStatus(status).value)
        with session_scope(self._session_factory) as session:
            return [_to_record(job) for job in session.scalars(query)]

    # ========================================
    # Claiming
    # ========================================

    def claim_next_pending(self, job_type: JobType | str) -> JobRecord | None:
        """
        Atomically claim the oldest pending job of a type.

        The candidate is read first (``FOR UPDATE SKIP LOCKED`` on PostgreSQL)
        and then flipped with an UPDATE guarded on ``status = 'pending'``.
        Only the caller whose UPDATE matched the row owns it.

        Returns:
            The claimed job, or None when nothing is available
        """
        job_type = JobType(job_type).value

        for _ in range(MAX_CLAIM_ATTEMPTS):
            with session_scope(self._session_factory) as session:
                candidate_id = session.scalar(
                    select(Job.id)
                    .where(Job.type == job_type, Job.status == JobStatus.PENDING.value)
                    .order_by(Job.created_at.asc(), Job.id.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                if candidate_id is None:
                    return None

                now = self._clock()
                result = session.execute(
                    update(Job)
                    .where(Job.id == candidate_id, Job.status == JobStatus.PENDING.value)
                    .values(status=JobStatus.RUNNING.value, started_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    logger.debug("Lost claim race for job {}", candidate_id)
                    continue

                job = session.get(Job, candidate_id, populate_existing=True)
                record = _to_record(job)

            logger.info("Claimed {} job {}", job_type, record.id)
            return record

        return None

    # ========================================
    # Progress & completion
    # ========================================

    def update_progress(self, job_id: str, value: float) -> bool:
        """
        Record job progress.

        Clamped to [0, 1]. Ignored once the job is no longer running or when
        the value would lower the stored progress.

        Returns:
            True if the stored value changed
        """
        value = min(1.0, max(0.0, float(value)))
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.status == JobStatus.RUNNING.value,
                    or_(Job.progress.is_(None), Job.progress <= value),
                )
                .values(progress=value, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def finalize(
        self,
        job_id: str,
        status: JobStatus | str,
        result: Mapping[str, Any] | None = None,
        error: str | None = None,
        error_kind: str | None = None,
    ) -> bool:
        """
        Move a job to a terminal status.

        Finalizing twice with the same status is a no-op that reports success.
        Finalizing a job that already holds a different terminal status is
        logged as an error and reported as False.

        Args:
            job_id: Job to finalize
            status: succeeded, failed, or cancelled
            result: Result document (succeeded jobs)
            error: Error message (failed jobs; a default is used when empty)
            error_kind: Error category stored alongside the message

        Returns:
            True if the job now holds ``status``
        """
        status = JobStatus(status)
        if not status.is_terminal:
            raise ValueError(f"Cannot finalize job with non-terminal status '{status.value}'")

        values: dict[str, Any] = {"status": status.value}
        if status is JobStatus.SUCCEEDED:
            values.update(result=dict(result or {}), progress=1.0, error=None, error_kind=None)
        elif status is JobStatus.FAILED:
            values.update(error=(error or "").strip() or "Job failed", error_kind=error_kind or "internal")
        elif error:
            values["error"] = error

        with session_scope(self._session_factory) as session:
            now = self._clock()
            values.update(finished_at=now, updated_at=now)
            updated = session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status.in_(_ACTIVE))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount == 1:
                logger.info("Job {} finalized as {}", job_id, status.value)
                return True

            current = session.scalar(select(Job.status).where(Job.id == job_id))

        return _report_finalize_conflict(job_id, status, current)

    def cancel_job(self, job_id: str, reason: str | None = None) -> bool:
        """Cancel a pending or running job."""
        return self.finalize(job_id, JobStatus.CANCELLED, error=reason)

    def expire_stale_jobs(self, job_type: JobType | str, older_than: timedelta) -> list[JobRecord]:
        """
        Fail running jobs whose worker disappeared.

        A job is stale when it has been ``running`` for longer than
        ``older_than``. Each one is failed with ``error_kind='stale'``.

        Returns:
            Snapshots of the jobs that were expired by this call
        """
        job_type = JobType(job_type).value
        cutoff = self._clock() - older_than
        expired: list[JobRecord] = []

        with session_scope(self._session_factory) as session:
            stale_ids = list(
                session.scalars(
                    select(Job.id).where(
                        Job.type == job_type,
                        Job.status == JobStatus.RUNNING.value,
                        Job.started_at < cutoff,
                    )
                )
            )
            for job_id in stale_ids:
                if _expire_one(session, job_id, older_than, self._clock()):
                    expired.append(_to_record(session.get(Job, job_id, populate_existing=True)))

        for record in expired:
            logger.warning("Expired stale {} job {} (started {})", job_type, record.id, record.started_at)
        return expired


def _expire_one(session: Session, job_id: str, older_than: timedelta, now) -> bool:
    result = session.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
        .values(
            status=JobStatus.FAILED.value,
            error=f"Job still running after {int(older_than.total_seconds())}s; worker presumed lost",
            error_kind="stale",
            finished_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _report_finalize_conflict(job_id: str, status: JobStatus, current: str | None) -> bool:
    if current is None:
        logger.warning("Job {} not found for finalize", job_id)
        return False
    if current == status.value:
        logger.debug("Job {} already {}", job_id, current)
        return True
    logger.error(
        "Refusing to finalize job {} as {}: already {}",
        job_id,
        status.value,
        current,
    )
    return False


def _to_record(job: Job) -> JobRecord:
    return JobRecord(
        id=job.id,
        owner_id=job.owner_id,
        type=job.type,
        status=job.status,
        progress=job.progress,
        payload=job.payload,
        result=job.result,
        error=job.error,
        error_kind=job.error_kind,
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
    )
