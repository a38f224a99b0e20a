"""Domain models for task graphs, jobs and agent execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
)


class JobErrorKind(str, Enum):
    """Where a job failure originated."""

    EXECUTION = "execution"
    SCHEDULING = "scheduling"
    INTERNAL = "internal"


@dataclass(slots=True)
class GraphMetadata:
    """Planner annotations attached to a task graph."""

    complexity: str = "medium"
    confidence: float = 1.0
    risk_level: str = "low"
    requires_approval: bool = False


@dataclass(slots=True)
class Task:
    """One unit of work handled by a single agent."""

    task_id: str
    task_type: str
    agent_ref: str
    dependencies: tuple[str, ...] = ()
    inputs: dict[str, Any] = field(default_factory=dict)
    constraints: dict[str, Any] | None = None


@dataclass(slots=True)
class TaskGraph:
    """Dependency graph of tasks produced for one user intent."""

    graph_id: str
    tasks: list[Task]
    estimated_duration_ms: int = 0
    metadata: GraphMetadata = field(default_factory=GraphMetadata)
    intent: str = ""

    def task_ids(self) -> list[str]:
        return [task.task_id for task in self.tasks]


@dataclass(slots=True)
class Artifact:
    """File-like product of an agent run."""

    artifact_id: str
    artifact_type: str
    name: str
    content: str = ""
    locator: str | None = None


@dataclass(slots=True)
class ArtifactRef:
    """Artifact reference kept in job results (content is not retained)."""

    artifact_id: str
    artifact_type: str
    name: str
    locator: str | None = None


@dataclass(slots=True)
class ExecutionMetrics:
    """Per-run counters reported by an agent."""

    duration_ms: int = 0
    cost: float | None = None
    model_calls: int = 0
    cache_hits: int = 0
    tokens_used: int | None = None


@dataclass(slots=True)
class AgentResult:
    """Outcome of one agent invocation."""

    success: bool
    outputs: dict[str, Any] | None = None
    artifacts: list[Artifact] = field(default_factory=list)
    error: str | None = None
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)
    model_id: str | None = None
    model_confidence: float | None = None


@dataclass(slots=True)
class AgentContext:
    """Everything an agent sees when it runs a task."""

    job_id: str
    task_id: str
    task_type: str
    user_id: str
    project_id: str | None
    inputs: dict[str, Any]
    dependency_outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    constraints: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskOutcome:
    """Per-task entry of a completed job report."""

    task_id: str
    success: bool
    outputs: dict[str, Any] = field(default_factory=dict)
    artifacts: list[ArtifactRef] = field(default_factory=list)


@dataclass(slots=True)
class JobProgress:
    """Round-level progress counters."""

    completed_count: int
    total_count: int
    current_task_id: str | None = None


@dataclass(slots=True)
class Job:
    """Mutable execution record for one graph run.

    ``attempt_id`` identifies one submission of ``job_id``. A job id may be
    reused once terminal, so transitions made by a job thread carry its
    attempt id and only apply while that attempt still owns the record.
    """

    job_id: str
    graph_id: str
    user_id: str
    project_id: str | None
    status: JobStatus
    progress: JobProgress
    started_at: datetime
    ended_at: datetime | None = None
    error: str | None = None
    error_kind: JobErrorKind | None = None
    failed_task_id: str | None = None
    results: list[TaskOutcome] | None = None
    estimated_duration_ms: int = 0
    attempt_id: str = ""
    running_at: datetime | None = None


@dataclass(slots=True)
class TaskRunRecord:
    """Audit row for one agent invocation."""

    job_id: str
    task_id: str
    agent_ref: str
    success: bool
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    cost: float | None = None
    model_id: str | None = None
    model_confidence: float | None = None
    error: str | None = None
