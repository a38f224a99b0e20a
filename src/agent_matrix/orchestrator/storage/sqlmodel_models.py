"""SQLModel ORM tables for the job store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class JobRow(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_jobs_status_started", "status", "started_at"),)

    job_id: str = Field(primary_key=True)
    graph_id: str = Field(index=True)
    user_id: str = Field(index=True)
    project_id: str | None = None
    status: str = Field(index=True)
    completed_count: int = 0
    total_count: int = 0
    current_task_id: str | None = None
    estimated_duration_ms: int = 0
    attempt_id: str = ""
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    running_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    ended_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    error_kind: str | None = None
    failed_task_id: str | None = None
    results_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


class TaskRunRow(SQLModel, table=True):
    __tablename__ = "task_runs"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_task_runs_model_started", "model_id", "started_at"),)

    run_id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(index=True)
    task_id: str
    agent_ref: str = Field(index=True)
    success: bool
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    duration_ms: int = 0
    cost: float | None = None
    model_id: str | None = None
    model_confidence: float | None = None
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
