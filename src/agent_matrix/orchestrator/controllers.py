"""Controllers for graph and job CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from agent_matrix.config import Settings
from agent_matrix.orchestrator.agents.registry import default_agent_registry
from agent_matrix.orchestrator.contracts import job_to_dict, read_task_graph, write_json
from agent_matrix.orchestrator.errors import GraphValidationError, JobConflictError
from agent_matrix.orchestrator.models import JobStatus, TaskGraph
from agent_matrix.orchestrator.repository import SqlJobStore
from agent_matrix.orchestrator.services import (
    JobStatusView,
    SubmitGraph,
    build_job_store,
    build_orchestrator_service,
)
from agent_matrix.orchestrator.store import JobStore
from agent_matrix.orchestrator.validator import topological_rounds, validate_task_graph


@dataclass(slots=True)
class GraphValidateCommand:
    """CLI input for offline graph validation."""

    graph_path: Path
    check_agents: bool = True


@dataclass(slots=True)
class GraphRunCommand:
    """CLI input for a synchronous graph run."""

    db_path: Path | None
    graph_path: Path
    user_id: str | None
    project_id: str | None
    job_id: str | None
    job_store: str | None
    max_parallel_tasks: int | None
    timeout_seconds: float | None
    output_path: Path | None


@dataclass(slots=True)
class JobsListCommand:
    """CLI input for job listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobsInspectCommand:
    """CLI input for job inspection."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobsCancelCommand:
    """CLI input for job cancellation."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class CommandResult:
    """Printable lines plus overall outcome."""

    lines: list[str]
    success: bool


class OrchestratorCliController:
    """Coordinates graph validation, graph runs and job inspection."""

    def validate_graph(self, command: GraphValidateCommand) -> CommandResult:
        graph = read_task_graph(command.graph_path)
        known_agents = default_agent_registry().known_agents() if command.check_agents else None
        result = validate_task_graph(graph, known_agents=known_agents)
        if not result.valid:
            lines = [f"Graph {graph.graph_id or '<missing id>'} is invalid:"]
            lines.extend(f"  - {error}" for error in result.errors)
            return CommandResult(lines=lines, success=False)

        rounds, _ = topological_rounds(graph.tasks)
        lines = [f"Graph {graph.graph_id} is valid: tasks={len(graph.tasks)} rounds={len(rounds)}"]
        for index, round_ids in enumerate(rounds, start=1):
            lines.append(f"  round {index}: {', '.join(round_ids)}")
        return CommandResult(lines=lines, success=True)

    def run_graph(self, command: GraphRunCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        if command.job_store is not None:
            settings.executor.job_store = command.job_store
        if command.max_parallel_tasks is not None:
            settings.executor.max_parallel_tasks = command.max_parallel_tasks
        settings.validate()

        graph = read_task_graph(command.graph_path)
        store = build_job_store(settings)
        try:
            return self._run_graph(command, settings, graph, store)
        finally:
            if isinstance(store, SqlJobStore):
                store.close()

    def _run_graph(
        self,
        command: GraphRunCommand,
        settings: Settings,
        graph: TaskGraph,
        store: JobStore,
    ) -> CommandResult:
        service = build_orchestrator_service(settings, store=store)
        try:
            submission = service.submit(
                SubmitGraph(
                    graph=graph,
                    user_id=command.user_id or settings.user_context.user_id,
                    project_id=command.project_id or settings.user_context.project_id,
                    job_id=command.job_id,
                ),
            )
        except GraphValidationError as error:
            return CommandResult(
                lines=[f"Graph {error.graph_id} rejected:", *(f"  - {e}" for e in error.errors)],
                success=False,
            )
        except JobConflictError as error:
            return CommandResult(lines=[str(error)], success=False)

        timeout = command.timeout_seconds or settings.executor.job_wait_timeout_seconds
        view = service.wait(submission.job_id, timeout=timeout)
        lines = [
            f"Job submitted: job_id={submission.job_id} graph={graph.graph_id} "
            f"estimated_ms={submission.estimated_duration_ms}",
        ]
        if not view.status.is_terminal:
            view = service.cancel(submission.job_id)
            lines.append(f"Timed out after {timeout:.0f}s; job cancelled")
        lines.extend(_status_lines(view))

        if command.output_path is not None:
            job = service.executor.status(submission.job_id)
            if job is not None:
                write_json(command.output_path, job_to_dict(job))
                lines.append(f"Report: {command.output_path}")
        return CommandResult(lines=lines, success=view.status == JobStatus.COMPLETED)

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _sql_store(settings) as store:
            jobs = store.list_jobs(status=status_filter, limit=command.limit)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} graph={job.graph_id} status={job.status.value} "
                f"progress={job.progress.completed_count}/{job.progress.total_count} "
                f"started_at={job.started_at.isoformat()}",
            )
        return lines

    def inspect_job(self, command: JobsInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _sql_store(settings) as store:
            job = store.get(command.job_id)
            runs = store.list_task_runs(job_id=command.job_id)
        if job is None:
            return [f"Job not found: {command.job_id}"]

        lines = [
            f"Job: {job.job_id}",
            f"Graph: {job.graph_id}",
            f"User: {job.user_id} project={job.project_id or '-'}",
            f"Status: {job.status.value}",
            f"Progress: {job.progress.completed_count}/{job.progress.total_count}",
            f"Started: {job.started_at.isoformat()}",
            f"Running since: {job.running_at.isoformat() if job.running_at else '-'}",
            f"Ended: {job.ended_at.isoformat() if job.ended_at else '-'}",
            f"Error kind: {job.error_kind.value if job.error_kind else '-'}",
            f"Failed task: {job.failed_task_id or '-'}",
            f"Error: {job.error or '-'}",
            f"Task runs: {len(runs)}",
        ]
        for run in runs:
            lines.append(
                f"  {run.started_at.isoformat()} {run.task_id} agent={run.agent_ref} "
                f"success={run.success} duration_ms={run.duration_ms} "
                f"model={run.model_id or '-'}",
            )
        return lines

    def cancel_job(self, command: JobsCancelCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _sql_store(settings) as store:
            job = store.cancel(command.job_id)
        if job is None:
            return [f"Job not found: {command.job_id}"]
        return [f"Job {job.job_id} status={job.status.value}"]


def _status_lines(view: JobStatusView) -> list[str]:
    lines = [
        f"Status: {view.status.value} "
        f"progress={view.progress.completed_count}/{view.progress.total_count}",
    ]
    if view.error:
        lines.append(
            f"Error ({view.error_kind.value if view.error_kind else '-'}): {view.error}",
        )
    for outcome in view.results or []:
        lines.append(
            f"  {outcome.task_id} success={outcome.success} "
            f"outputs={len(outcome.outputs)} artifacts={len(outcome.artifacts)}",
        )
    return lines


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.strip().lower())


@contextmanager
def _sql_store(settings: Settings) -> Iterator[SqlJobStore]:
    store = SqlJobStore(settings.db_path, busy_timeout_ms=settings.executor.busy_timeout_ms)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()
