"""
Polling job worker.

One worker serves one job type. Each loop iteration:

1. optionally expires stale ``running`` jobs (worker presumed lost)
2. claims the oldest pending job
3. runs its handler on a daemon thread bounded by a hard timeout
4. finalizes the job and, on failure, the parent aggregate

Idle polls back off exponentially (base x multiplier, capped); a claim resets
the interval and the next poll happens immediately after the job finishes.

Usage:
    worker = JobWorker(JobType.COLLECTION_GENERATION, JobStore(), build_handlers())
    worker.run()            # until stop() is called
    worker.drain()          # process until the queue is empty
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from loguru import logger

from config import get_settings
from studyforge.clock import Clock, utcnow
from studyforge.errors import (
    JobCancelledError,
    JobTimeoutError,
    StaleJobError,
    error_kind,
    error_message,
)
from studyforge.jobs.handlers import JobHandler
from studyforge.jobs.store import JobStore
from studyforge.jobs.types import JobRecord, JobStatus, JobType, parse_payload


@dataclass
class WorkerConfig:
    """Polling and execution limits."""

    base_interval: float = 2.0
    max_interval: float = 30.0
    backoff_multiplier: float = 1.5
    job_timeout: float = 300.0
    stale_after: float | None = None
    progress_timeout: float = 1.0

    @classmethod
    def from_settings(cls) -> WorkerConfig:
        return cls(**get_settings().get_worker_config())


@dataclass
class WorkerStatus:
    """Current worker status."""

    is_running: bool = False
    is_executing: bool = False
    current_job_id: str | None = None
    current_interval: float = 0.0
    jobs_succeeded: int = 0
    jobs_failed: int = 0
    stale_expired: int = 0
    last_job_at: datetime | None = None
    last_error: str | None = None

    @property
    def jobs_processed(self) -> int:
        return self.jobs_succeeded + self.jobs_failed


class ProgressReporter:
    """
    Forwards pipeline progress to the store.

    Writes are fire-and-forget. Every store call runs on a daemon thread and
    holds the pipeline up for at most ``timeout`` seconds; a write that has
    not landed by then is dropped, and failures are logged at debug level.
    Values >= 1 are left to finalize, and everything is dropped once the
    worker has closed the reporter (job timed out or finished).
    """

    def __init__(self, store: JobStore, job_id: str, timeout: float = 1.0):
        self._store = store
        self._job_id = job_id
        self._closed = threading.Event()
        self._last = 0.0
        self.timeout = timeout

    @property
    def active(self) -> bool:
        return not self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def checkpoint(self) -> None:
        """
        Stop the pipeline if its job is over.

        Raises:
            JobTimeoutError: the worker gave up on this job
            JobCancelledError: the stored job is no longer running
        """
        if self._closed.is_set():
            raise JobTimeoutError(f"Job {self._job_id} was abandoned by its worker")

        answered, record = self._bounded(self._store.get_job, self._job_id)
        if answered and record is not None and record.status != JobStatus.RUNNING.value:
            raise JobCancelledError(f"Job {self._job_id} is '{record.status}', stopping its pipeline")

    def __call__(self, value: float) -> None:
        if self._closed.is_set() or value >= 1 or value < self._last:
            return
        self._last = value
        answered, _ = self._bounded(self._store.update_progress, self._job_id, value)
        if not answered:
            logger.debug("Progress {:.2f} for job {} dropped", value, self._job_id)

    def _bounded(self, call: Callable[..., Any], *args: Any) -> tuple[bool, Any]:
        """Run a store call, waiting at most ``timeout``. Returns (answered, value)."""
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["value"] = call(*args)
            except Exception as exc:  # Progress is best-effort
                logger.debug("Store call for job {} failed: {}", self._job_id, exc)

        thread = threading.Thread(target=target, name=f"progress-{self._job_id[:8]}", daemon=True)
        thread.start()
        thread.join(self.timeout)
        if thread.is_alive() or "value" not in outcome:
            return False, None
        return True, outcome["value"]


@dataclass
class JobWorker:
    """
    Single-type polling worker.

    ``sleep`` and ``clock`` are injectable so the loop can be driven in tests
    without wall-clock waits. By default sleeping waits on the stop event, so
    ``stop()`` interrupts an idle worker immediately.
    """

    job_type: JobType
    store: JobStore
    handlers: Mapping[JobType, JobHandler]
    config: WorkerConfig = field(default_factory=WorkerConfig)
    sleep: Callable[[float], Any] | None = None
    clock: Clock = utcnow

    # Internal state
    _status: WorkerStatus = field(default_factory=WorkerStatus)
    _stop_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _interval: float = field(default=0.0, repr=False)

    def __post_init__(self) -> None:
        self.job_type = JobType(self.job_type)
        missing = [t.value for t in JobType if t not in self.handlers]
        if missing:
            raise ValueError(f"No handler registered for job types: {', '.join(missing)}")
        self._interval = self.config.base_interval
        self._status.current_interval = self._interval

    @property
    def status(self) -> WorkerStatus:
        """Get current worker status."""
        return self._status

    @property
    def current_interval(self) -> float:
        return self._interval

    # ========================================
    # Loop control
    # ========================================

    def run(self, max_polls: int | None = None) -> None:
        """
        Poll until ``stop()`` is called (or ``max_polls`` iterations ran).

        A failing poll (store unavailable, etc.) is logged and treated as an
        empty poll; the loop itself never exits on error.
        """
        self._stop_event.clear()
        self._status.is_running = True
        logger.info(
            "Worker for {} started (interval {}s-{}s, timeout {}s)",
            self.job_type.value,
            self.config.base_interval,
            self.config.max_interval,
            self.config.job_timeout,
        )

        polls = 0
        try:
            while not self._stop_event.is_set():
                if max_polls is not None and polls >= max_polls:
                    break
                polls += 1

                try:
                    processed = self.poll_once()
                except Exception as exc:
                    logger.error("Worker poll for {} failed: {}", self.job_type.value, exc)
                    self._status.last_error = str(exc)
                    processed = False

                if not processed:
                    self._idle()
        finally:
            self._status.is_running = False
            logger.info("Worker for {} stopped", self.job_type.value)

    def drain(self) -> int:
        """Process jobs until a poll finds the queue empty. Returns jobs processed."""
        processed = 0
        while self.poll_once():
            processed += 1
        return processed

    def stop(self) -> None:
        """Ask the loop to exit after the current iteration."""
        logger.info("Stopping worker for {}...", self.job_type.value)
        self._stop_event.set()

    def _idle(self) -> None:
        delay = self._interval
        if self.sleep is not None:
            self.sleep(delay)
        else:
            self._stop_event.wait(timeout=delay)
        self._interval = min(self._interval * self.config.backoff_multiplier, self.config.max_interval)
        self._status.current_interval = self._interval

    # ========================================
    # Single iteration
    # ========================================

    def poll_once(self) -> bool:
        """
        Claim and execute at most one job.

        Returns:
            True if a job was claimed (regardless of its outcome)
        """
        if self.config.stale_after:
            self.expire_stale()

        job = self.store.claim_next_pending(self.job_type)
        if job is None:
            return False

        self._interval = self.config.base_interval
        self._status.current_interval = self._interval
        self.execute(job)
        return True

    def expire_stale(self) -> list[JobRecord]:
        """Fail jobs left running by a lost worker, and their parents."""
        expired = self.store.expire_stale_jobs(
            self.job_type, timedelta(seconds=self.config.stale_after or 0)
        )
        for job in expired:
            self._status.stale_expired += 1
            self._notify_failure(job, StaleJobError(job.error or "Stale job"))
        return expired

    def execute(self, job: JobRecord) -> None:
        """Run a claimed job to a terminal status."""
        handler = self.handlers[JobType(job.type)]
        reporter = ProgressReporter(self.store, job.id, self.config.progress_timeout)
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["result"] = self._run_handler(handler, job, reporter)
            except Exception as exc:
                outcome["error"] = exc

        self._status.is_executing = True
        self._status.current_job_id = job.id
        started = self.clock()
        # Daemon: a timed-out handler is abandoned and never holds up interpreter exit
        thread = threading.Thread(target=target, name=f"job-{job.id[:8]}", daemon=True)

        try:
            thread.start()
            thread.join(self.config.job_timeout)
            if thread.is_alive():
                self._fail(job, JobTimeoutError(f"Job timed out after {self.config.job_timeout:g}s"), reporter)
            elif "error" in outcome:
                self._fail(job, outcome["error"], reporter)
            elif "result" in outcome:
                self._succeed(job, outcome["result"], reporter, started)
            else:
                self._fail(job, RuntimeError("Job handler exited without a result"), reporter)
        finally:
            self._status.is_executing = False
            self._status.current_job_id = None
            self._status.last_job_at = self.clock()

    @staticmethod
    def _run_handler(handler: JobHandler, job: JobRecord, reporter: ProgressReporter) -> dict[str, Any]:
        payload = parse_payload(job.type, job.payload)
        return handler.run(job, payload, reporter)

    def _succeed(
        self,
        job: JobRecord,
        result: dict[str, Any],
        reporter: ProgressReporter,
        started: datetime,
    ) -> None:
        reporter.close()
        if self.store.finalize(job.id, JobStatus.SUCCEEDED, result=result):
            self._status.jobs_succeeded += 1
            logger.info(
                "Job {} succeeded in {:.1f}s",
                job.id,
                (self.clock() - started).total_seconds(),
            )
        else:
            logger.warning("Job {} finished but could not be marked succeeded", job.id)

    def _fail(self, job: JobRecord, exc: BaseException, reporter: ProgressReporter) -> None:
        reporter.close()
        if isinstance(exc, JobCancelledError):
            # The job row already holds its terminal status
            logger.info("Job {} stopped: {}", job.id, error_message(exc))
            self._notify_failure(job, exc)
            return

        kind = error_kind(exc)
        message = error_message(exc)
        self._status.jobs_failed += 1
        self._status.last_error = message

        if kind == "internal":
            logger.opt(exception=exc).error("Job {} crashed: {}", job.id, message)
        else:
            logger.error("Job {} failed ({}): {}", job.id, kind, message)

        self.store.finalize(job.id, JobStatus.FAILED, error=message, error_kind=kind)
        self._notify_failure(job, exc)

    def _notify_failure(self, job: JobRecord, exc: BaseException) -> None:
        handler = self.handlers[JobType(job.type)]
        try:
            handler.on_failure(job, exc)
        except Exception as notify_exc:
            logger.warning("Failure hook for job {} raised: {}", job.id, notify_exc)

    def get_status_line(self) -> str:
        """Get one-line status for display."""
        s = self._status
        state = f"executing {s.current_job_id}" if s.is_executing else "idle"
        return (
            f"{self.job_type.value}: {state} | ok={s.jobs_succeeded} failed={s.jobs_failed} "
            f"stale={s.stale_expired} | next poll {s.current_interval:g}s"
        )
