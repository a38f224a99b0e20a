"""Use-case services for graph submission, job status and model rollout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from agent_matrix.config import Settings
from agent_matrix.orchestrator.agents.model_agent import DryRunInvoker, ModelInvoker
from agent_matrix.orchestrator.agents.registry import AgentRegistry, default_agent_registry
from agent_matrix.orchestrator.errors import JobNotFoundError
from agent_matrix.orchestrator.executor import TaskGraphExecutor
from agent_matrix.orchestrator.models import (
    Job,
    JobErrorKind,
    JobProgress,
    JobStatus,
    TaskGraph,
    TaskOutcome,
)
from agent_matrix.orchestrator.repository import SqlJobStore
from agent_matrix.orchestrator.storage.common import utc_now
from agent_matrix.orchestrator.store import InMemoryJobStore, JobStore
from agent_matrix.selection.metrics import RunHistoryMetricsProvider
from agent_matrix.selection.models import CanaryConfig, SelectionStats
from agent_matrix.selection.registry import ModelRegistry, default_model_registry
from agent_matrix.selection.selector import ModelSelector

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubmitGraph:
    """High-level command to run one task graph."""

    graph: TaskGraph
    user_id: str
    project_id: str | None = None
    job_id: str | None = None


@dataclass(slots=True)
class SubmissionView:
    """Answer to a submission."""

    job_id: str
    status: JobStatus
    estimated_duration_ms: int


@dataclass(slots=True)
class JobStatusView:
    """Job snapshot enriched with a remaining-time projection."""

    job_id: str
    graph_id: str
    status: JobStatus
    progress: JobProgress
    started_at: datetime
    ended_at: datetime | None
    results: list[TaskOutcome] | None
    error: str | None
    error_kind: JobErrorKind | None
    failed_task_id: str | None
    estimated_time_remaining_ms: int | None


class OrchestratorService:
    """Boundary used by request handlers and the CLI."""

    def __init__(self, *, executor: TaskGraphExecutor, selector: ModelSelector) -> None:
        self.executor = executor
        self.selector = selector

    def submit(self, command: SubmitGraph) -> SubmissionView:
        job_id = self.executor.submit(
            command.graph,
            user_id=command.user_id,
            project_id=command.project_id,
            job_id=command.job_id,
        )
        return SubmissionView(
            job_id=job_id,
            status=JobStatus.PENDING,
            estimated_duration_ms=command.graph.estimated_duration_ms,
        )

    def status(self, job_id: str, *, now: datetime | None = None) -> JobStatusView:
        job = self.executor.status(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return build_status_view(job, now=now)

    def wait(self, job_id: str, *, timeout: float | None = None) -> JobStatusView:
        job = self.executor.wait(job_id, timeout=timeout)
        if job is None:
            raise JobNotFoundError(job_id)
        return build_status_view(job)

    def cancel(self, job_id: str) -> JobStatusView:
        job = self.executor.cancel(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return build_status_view(job)

    def list_jobs(self, *, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        return self.executor.store.list_jobs(status=status, limit=limit)

    # -- model-selection configuration ----------------------------------------

    def canary_config(self) -> CanaryConfig:
        return self.selector.canary_config

    def update_canary_config(self, **changes: Any) -> CanaryConfig:
        return self.selector.update_canary_config(**changes)

    def selection_stats(self, role: str | None = None) -> SelectionStats:
        return self.selector.get_selection_stats(role)


def build_status_view(job: Job, *, now: datetime | None = None) -> JobStatusView:
    """Project remaining time as elapsed-per-completed-task times tasks left.

    Elapsed time counts from ``running_at``, not from submission; a job that
    has not been picked up yet has no estimate.
    """

    remaining_ms: int | None = None
    completed = job.progress.completed_count
    if job.status == JobStatus.RUNNING and completed > 0 and job.running_at is not None:
        elapsed_ms = ((now or utc_now()) - job.running_at).total_seconds() * 1000
        left = max(job.progress.total_count - completed, 0)
        remaining_ms = max(int(elapsed_ms / completed * left), 0)
    return JobStatusView(
        job_id=job.job_id,
        graph_id=job.graph_id,
        status=job.status,
        progress=job.progress,
        started_at=job.started_at,
        ended_at=job.ended_at,
        results=job.results,
        error=job.error,
        error_kind=job.error_kind,
        failed_task_id=job.failed_task_id,
        estimated_time_remaining_ms=remaining_ms,
    )


def build_job_store(settings: Settings) -> JobStore:
    if settings.executor.job_store == "sqlite":
        store = SqlJobStore(settings.db_path, busy_timeout_ms=settings.executor.busy_timeout_ms)
        store.init_schema()
        return store
    return InMemoryJobStore()


def build_model_selector(settings: Settings, *, store: JobStore | None = None) -> ModelSelector:
    """Selector over the configured catalog, scored from the store's run history."""

    path = settings.selection.model_registry_path
    registry = ModelRegistry.from_file(path) if path is not None else default_model_registry()
    return ModelSelector(
        registry,
        metrics=RunHistoryMetricsProvider(store) if store is not None else None,
        canary_config=settings.selection.canary_config(),
    )


def build_orchestrator_service(
    settings: Settings,
    *,
    store: JobStore | None = None,
    agents: AgentRegistry | None = None,
    invoker: ModelInvoker | None = None,
) -> OrchestratorService:
    active_store = store or build_job_store(settings)
    selector = build_model_selector(settings, store=active_store)
    registry = agents or default_agent_registry(
        selector=selector,
        invoker=invoker or DryRunInvoker(),
    )
    executor = TaskGraphExecutor(active_store, registry, settings.executor)
    logger.debug(
        "Orchestrator ready: store=%s agents=%d",
        type(active_store).__name__,
        len(registry.known_agents()),
    )
    return OrchestratorService(executor=executor, selector=selector)
