"""Durable job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import update as sa_update
from sqlmodel import Session, SQLModel, col, select

from agent_matrix.orchestrator.contracts import task_outcome_from_dict, task_outcome_to_dict
from agent_matrix.orchestrator.errors import JobConflictError
from agent_matrix.orchestrator.models import (
    TERMINAL_JOB_STATUSES,
    Job,
    JobErrorKind,
    JobProgress,
    JobStatus,
    TaskOutcome,
    TaskRunRecord,
)
from agent_matrix.orchestrator.storage.common import as_utc, build_sqlite_engine, utc_now
from agent_matrix.orchestrator.storage.sqlmodel_models import JobRow, TaskRunRow

_TERMINAL_VALUES = tuple(status.value for status in TERMINAL_JOB_STATUSES)


class SqlJobStore:
    """Job store persistence facade.

    Status changes are conditional ``UPDATE`` statements filtered on the
    current status, so the job thread and a concurrent cancel request cannot
    both win a transition.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        """Create job tables if missing."""

        SQLModel.metadata.create_all(
            self.engine,
            tables=[JobRow.__table__, TaskRunRow.__table__],  # type: ignore[attr-defined]
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def put(self, job: Job) -> None:
        with Session(self.engine) as session:
            existing = session.get(JobRow, job.job_id)
            if existing is not None and existing.status not in _TERMINAL_VALUES:
                raise JobConflictError(job.job_id)
            session.merge(_to_row(job))
            session.commit()

    def get(self, job_id: str) -> Job | None:
        with Session(self.engine) as session:
            row = session.get(JobRow, job_id)
            return _to_job(row) if row is not None else None

    def list_jobs(self, *, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        with Session(self.engine) as session:
            statement = select(JobRow)
            if status is not None:
                statement = statement.where(JobRow.status == status.value)
            rows = session.exec(
                statement.order_by(col(JobRow.started_at).desc()).limit(limit),
            ).all()
            return [_to_job(row) for row in rows]

    def mark_running(self, job_id: str, *, attempt_id: str | None = None) -> bool:
        return self._conditional_update(
            job_id,
            allowed_from=(JobStatus.PENDING.value,),
            values={"status": JobStatus.RUNNING.value, "running_at": utc_now()},
            attempt_id=attempt_id,
        )

    def update_progress(
        self,
        job_id: str,
        *,
        completed_count: int | None = None,
        current_task_id: str | None = None,
        attempt_id: str | None = None,
    ) -> bool:
        values: dict[str, Any] = {"current_task_id": current_task_id}
        if completed_count is not None:
            values["completed_count"] = completed_count
        return self._conditional_update(
            job_id,
            allowed_from=(JobStatus.PENDING.value, JobStatus.RUNNING.value),
            values=values,
            attempt_id=attempt_id,
        )

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
        return self._conditional_update(
            job_id,
            allowed_from=(JobStatus.PENDING.value, JobStatus.RUNNING.value),
            values={
                "status": status.value,
                "ended_at": utc_now(),
                "error": error,
                "error_kind": error_kind.value if error_kind else None,
                "failed_task_id": failed_task_id,
                "results_json": _dump_results(results),
                "current_task_id": None,
            },
            attempt_id=attempt_id,
        )

    def cancel(self, job_id: str) -> Job | None:
        self._conditional_update(
            job_id,
            allowed_from=(JobStatus.PENDING.value, JobStatus.RUNNING.value),
            values={"status": JobStatus.CANCELLED.value, "ended_at": utc_now()},
        )
        return self.get(job_id)

    def record_task_run(self, record: TaskRunRecord) -> None:
        with Session(self.engine) as session:
            session.add(
                TaskRunRow(
                    job_id=record.job_id,
                    task_id=record.task_id,
                    agent_ref=record.agent_ref,
                    success=record.success,
                    started_at=record.started_at,
                    finished_at=record.finished_at,
                    duration_ms=record.duration_ms,
                    cost=record.cost,
                    model_id=record.model_id,
                    model_confidence=record.model_confidence,
                    error=record.error,
                ),
            )
            session.commit()

    def list_task_runs(
        self,
        *,
        job_id: str | None = None,
        model_id: str | None = None,
        since: datetime | None = None,
    ) -> list[TaskRunRecord]:
        with Session(self.engine) as session:
            statement = select(TaskRunRow)
            if job_id is not None:
                statement = statement.where(TaskRunRow.job_id == job_id)
            if model_id is not None:
                statement = statement.where(TaskRunRow.model_id == model_id)
            if since is not None:
                statement = statement.where(col(TaskRunRow.started_at) >= since)
            rows = session.exec(statement.order_by(col(TaskRunRow.run_id).asc())).all()
            return [
                TaskRunRecord(
                    job_id=row.job_id,
                    task_id=row.task_id,
                    agent_ref=row.agent_ref,
                    success=row.success,
                    started_at=as_utc(row.started_at),
                    finished_at=as_utc(row.finished_at),
                    duration_ms=row.duration_ms,
                    cost=row.cost,
                    model_id=row.model_id,
                    model_confidence=row.model_confidence,
                    error=row.error,
                )
                for row in rows
            ]

    def _conditional_update(
        self,
        job_id: str,
        *,
        allowed_from: tuple[str, ...],
        values: dict[str, Any],
        attempt_id: str | None = None,
    ) -> bool:
        statement = sa_update(JobRow).where(
            col(JobRow.job_id) == job_id,
            col(JobRow.status).in_(allowed_from),
        )
        if attempt_id is not None:
            statement = statement.where(col(JobRow.attempt_id) == attempt_id)
        with Session(self.engine) as session:
            result = session.exec(statement.values(**values))
            session.commit()
            return result.rowcount == 1


def _to_row(job: Job) -> JobRow:
    return JobRow(
        job_id=job.job_id,
        graph_id=job.graph_id,
        user_id=job.user_id,
        project_id=job.project_id,
        status=job.status.value,
        completed_count=job.progress.completed_count,
        total_count=job.progress.total_count,
        current_task_id=job.progress.current_task_id,
        estimated_duration_ms=job.estimated_duration_ms,
        attempt_id=job.attempt_id,
        started_at=job.started_at,
        running_at=job.running_at,
        ended_at=job.ended_at,
        error=job.error,
        error_kind=job.error_kind.value if job.error_kind else None,
        failed_task_id=job.failed_task_id,
        results_json=_dump_results(job.results),
    )


def _to_job(row: JobRow) -> Job:
    return Job(
        job_id=row.job_id,
        graph_id=row.graph_id,
        user_id=row.user_id,
        project_id=row.project_id,
        status=JobStatus(row.status),
        progress=JobProgress(
            completed_count=row.completed_count,
            total_count=row.total_count,
            current_task_id=row.current_task_id,
        ),
        started_at=as_utc(row.started_at),
        ended_at=as_utc(row.ended_at) if row.ended_at is not None else None,
        error=row.error,
        error_kind=JobErrorKind(row.error_kind) if row.error_kind else None,
        failed_task_id=row.failed_task_id,
        results=_load_results(row.results_json),
        estimated_duration_ms=row.estimated_duration_ms,
        attempt_id=row.attempt_id,
        running_at=as_utc(row.running_at) if row.running_at is not None else None,
    )


def _dump_results(results: list[TaskOutcome] | None) -> str | None:
    if results is None:
        return None
    return json.dumps(
        [task_outcome_to_dict(outcome) for outcome in results],
        ensure_ascii=False,
        sort_keys=True,
        default=str,
    )


def _load_results(raw: str | None) -> list[TaskOutcome] | None:
    if raw is None:
        return None
    payload = json.loads(raw)
    if not isinstance(payload, list):
        raise TypeError("jobs.results_json must hold a JSON array")
    return [task_outcome_from_dict(item) for item in payload]
