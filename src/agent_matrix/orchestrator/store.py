"""Job store abstraction and its in-process implementation."""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Protocol

from agent_matrix.orchestrator.errors import JobConflictError
from agent_matrix.orchestrator.models import (
    Job,
    JobErrorKind,
    JobStatus,
    TaskOutcome,
    TaskRunRecord,
)
from agent_matrix.orchestrator.storage.common import utc_now


class JobStore(Protocol):
    """Owner of job records for their whole lifetime.

    Every mutating call is a compare-and-set against the job's current status:
    a job in a terminal state is never moved again, and callers learn whether
    their transition won through the boolean return value. Passing
    ``attempt_id`` additionally requires the record to still belong to that
    submission.
    """

    def put(self, job: Job) -> None:
        """Register a new job; raise ``JobConflictError`` if the id is active."""

    def get(self, job_id: str) -> Job | None:
        """Return a snapshot of the job or ``None``."""

    def list_jobs(self, *, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        """Return latest jobs first."""

    def mark_running(self, job_id: str, *, attempt_id: str | None = None) -> bool:
        """Move a pending job to running and stamp ``running_at``."""

    def update_progress(
        self,
        job_id: str,
        *,
        completed_count: int | None = None,
        current_task_id: str | None = None,
        attempt_id: str | None = None,
    ) -> bool:
        """Update progress counters of a non-terminal job."""

    def finish(  # noqa: PLR0913
        self,
        job_id: str,
        *,
        status: JobStatus,
        error: str | None = None,
        error_kind: JobErrorKind | None = None,
        failed_task_id: str | None = None,
        results: list[TaskOutcome] | None = None,
        attempt_id: str | None = None,
    ) -> bool:
        """Move a non-terminal job to a terminal status."""

    def cancel(self, job_id: str) -> Job | None:
        """Request cancellation; return the resulting snapshot or ``None``."""

    def record_task_run(self, record: TaskRunRecord) -> None:
        """Append one agent invocation record."""

    def list_task_runs(
        self,
        *,
        job_id: str | None = None,
        model_id: str | None = None,
        since: datetime | None = None,
    ) -> list[TaskRunRecord]:
        """Return run records in insertion order."""


class InMemoryJobStore:
    """Lock-guarded dict of jobs, handing out deep copies to readers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._runs: list[TaskRunRecord] = []

    def put(self, job: Job) -> None:
        with self._lock:
            existing = self._jobs.get(job.job_id)
            if existing is not None and not existing.status.is_terminal:
                raise JobConflictError(job.job_id)
            self._jobs[job.job_id] = copy.deepcopy(job)

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def list_jobs(self, *, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        with self._lock:
            jobs = [
                copy.deepcopy(job)
                for job in self._jobs.values()
                if status is None or job.status == status
            ]
        jobs.sort(key=lambda job: job.started_at, reverse=True)
        return jobs[:limit]

    def mark_running(self, job_id: str, *, attempt_id: str | None = None) -> bool:
        with self._lock:
            job = self._owned(job_id, attempt_id)
            if job is None or job.status != JobStatus.PENDING:
                return False
            job.status = JobStatus.RUNNING
            job.running_at = utc_now()
            return True

    def update_progress(
        self,
        job_id: str,
        *,
        completed_count: int | None = None,
        current_task_id: str | None = None,
        attempt_id: str | None = None,
    ) -> bool:
        with self._lock:
            job = self._owned(job_id, attempt_id)
            if job is None or job.status.is_terminal:
                return False
            if completed_count is not None:
                job.progress.completed_count = completed_count
            job.progress.current_task_id = current_task_id
            return True

    def finish(  # noqa: PLR0913
        self,
        job_id: str,
        *,
        status: JobStatus,
        error: str | None = None,
        error_kind: JobErrorKind | None = None,
        failed_task_id: str | None = None,
        results: list[TaskOutcome] | None = None,
        attempt_id: str | None = None,
    ) -> bool:
        if not status.is_terminal:
            raise ValueError(f"finish() requires a terminal status, got {status.value!r}")
        with self._lock:
            job = self._owned(job_id, attempt_id)
            if job is None or job.status.is_terminal:
                return False
            job.status = status
            job.ended_at = utc_now()
            job.error = error
            job.error_kind = error_kind
            job.failed_task_id = failed_task_id
            job.results = copy.deepcopy(results)
            job.progress.current_task_id = None
            return True

    def cancel(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if not job.status.is_terminal:
                job.status = JobStatus.CANCELLED
                job.ended_at = utc_now()
            return copy.deepcopy(job)

    def record_task_run(self, record: TaskRunRecord) -> None:
        with self._lock:
            self._runs.append(copy.deepcopy(record))

    def list_task_runs(
        self,
        *,
        job_id: str | None = None,
        model_id: str | None = None,
        since: datetime | None = None,
    ) -> list[TaskRunRecord]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._runs
                if (job_id is None or record.job_id == job_id)
                and (model_id is None or record.model_id == model_id)
                and (since is None or record.started_at >= since)
            ]

    def _owned(self, job_id: str, attempt_id: str | None) -> Job | None:
        job = self._jobs.get(job_id)
        if job is None or (attempt_id is not None and job.attempt_id != attempt_id):
            return None
        return job
