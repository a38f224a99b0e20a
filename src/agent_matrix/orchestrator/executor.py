"""Round-based task graph executor."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from agent_matrix.config import ExecutorSettings
from agent_matrix.orchestrator.agents.registry import AgentRegistry
from agent_matrix.orchestrator.errors import (
    GraphValidationError,
    JobNotFoundError,
    TaskExecutionError,
)
from agent_matrix.orchestrator.models import (
    AgentContext,
    AgentResult,
    ArtifactRef,
    Job,
    JobErrorKind,
    JobProgress,
    JobStatus,
    Task,
    TaskGraph,
    TaskOutcome,
    TaskRunRecord,
)
from agent_matrix.orchestrator.sanitization import redact_payload, sanitize_preview
from agent_matrix.orchestrator.storage.common import utc_now
from agent_matrix.orchestrator.store import JobStore
from agent_matrix.orchestrator.validator import validate_task_graph

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _TaskRun:
    task: Task
    result: AgentResult


@dataclass(slots=True)
class _JobIdentity:
    job_id: str
    user_id: str
    project_id: str | None


class TaskGraphExecutor:
    """Run task graphs, one thread per job, one thread pool per ready round.

    A round dispatches every task whose dependencies have completed and waits
    for all of them. The first failed task fails the whole job and nothing
    after that round is dispatched. Cancellation is observed between rounds:
    tasks already in flight finish, but their results are dropped.
    """

    def __init__(
        self,
        store: JobStore,
        agents: AgentRegistry,
        settings: ExecutorSettings | None = None,
    ) -> None:
        self.store = store
        self.agents = agents
        self.settings = settings or ExecutorSettings()
        self._lock = threading.Lock()
        self._finished: dict[str, threading.Event] = {}
        self._threads: dict[str, threading.Thread] = {}

    # -- submission / status boundary ------------------------------------------

    def submit(
        self,
        graph: TaskGraph,
        *,
        user_id: str,
        project_id: str | None = None,
        job_id: str | None = None,
    ) -> str:
        """Register a pending job for ``graph`` and start it in the background."""

        validation = validate_task_graph(graph, known_agents=self.agents.known_agents())
        if not validation.valid:
            raise GraphValidationError(graph.graph_id, validation.errors)

        job = Job(
            job_id=job_id or f"job_{uuid4().hex}",
            graph_id=graph.graph_id,
            user_id=user_id,
            project_id=project_id,
            status=JobStatus.PENDING,
            progress=JobProgress(completed_count=0, total_count=len(graph.tasks)),
            started_at=utc_now(),
            estimated_duration_ms=graph.estimated_duration_ms,
            attempt_id=uuid4().hex,
        )
        self.store.put(job)

        finished = threading.Event()
        thread = threading.Thread(
            target=self._run_in_thread,
            args=(job.job_id, job.attempt_id, graph, finished),
            daemon=True,
            name=f"job-{job.job_id[:16]}",
        )
        with self._lock:
            self._finished[job.job_id] = finished
            self._threads[job.attempt_id] = thread
        thread.start()
        logger.info(
            "Submitted job %s for graph %s (%d tasks)",
            job.job_id,
            graph.graph_id,
            len(graph.tasks),
        )
        return job.job_id

    def status(self, job_id: str) -> Job | None:
        return self.store.get(job_id)

    def cancel(self, job_id: str) -> Job | None:
        """Flag a job as cancelled; the job thread stops at the next round boundary."""

        job = self.store.cancel(job_id)
        if job is not None and job.status == JobStatus.CANCELLED:
            logger.info("Cancellation requested for job %s", job_id)
        return job

    def wait(self, job_id: str, timeout: float | None = None) -> Job | None:
        """Block until the job thread finishes or ``timeout`` elapses."""

        with self._lock:
            finished = self._finished.get(job_id)
        if finished is not None:
            finished.wait(timeout)
        return self.store.get(job_id)

    def shutdown(self, timeout: float | None = None) -> None:
        """Join job threads that are still alive, including cancelled ones."""

        with self._lock:
            threads = list(self._threads.values())
        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Job thread %s did not stop within %ss", thread.name, timeout)

    def execute(
        self,
        graph: TaskGraph,
        *,
        user_id: str,
        project_id: str | None = None,
        job_id: str | None = None,
        timeout: float | None = None,
    ) -> Job:
        """Submit ``graph`` and wait for its terminal snapshot."""

        submitted = self.submit(graph, user_id=user_id, project_id=project_id, job_id=job_id)
        job = self.wait(submitted, timeout=timeout)
        if job is None:
            raise JobNotFoundError(submitted)
        return job

    # -- job driver -------------------------------------------------------------

    def _run_in_thread(
        self,
        job_id: str,
        attempt_id: str,
        graph: TaskGraph,
        finished: threading.Event,
    ) -> None:
        try:
            self.run(job_id, graph, attempt_id=attempt_id)
        finally:
            finished.set()
            with self._lock:
                if self._finished.get(job_id) is finished:
                    del self._finished[job_id]
                self._threads.pop(attempt_id, None)

    def run(self, job_id: str, graph: TaskGraph, *, attempt_id: str | None = None) -> None:
        """Drive an already registered job to a terminal state in this thread.

        With ``attempt_id`` the thread only acts while the stored job still
        belongs to that submission; without it the current attempt is adopted.
        """

        try:
            self._drive(job_id, graph, attempt_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Job %s unexpected error", job_id)
            self.store.finish(
                job_id,
                status=JobStatus.FAILED,
                error=sanitize_preview(f"Unexpected error: {exc}"),
                error_kind=JobErrorKind.INTERNAL,
                attempt_id=attempt_id,
            )

    def _drive(self, job_id: str, graph: TaskGraph, attempt_id: str | None) -> None:  # noqa: C901
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if attempt_id is None:
            attempt_id = job.attempt_id
        if not self.store.mark_running(job_id, attempt_id=attempt_id):
            logger.info("Job %s left pending state before start (%s)", job_id, job.status.value)
            return
        identity = _JobIdentity(job_id=job_id, user_id=job.user_id, project_id=job.project_id)

        completed: dict[str, TaskOutcome] = {}
        outputs: dict[str, dict[str, Any]] = {}
        started = time.monotonic()
        while len(completed) < len(graph.tasks):
            if self._is_cancelled(job_id, attempt_id):
                logger.info("Job %s cancelled after %d tasks", job_id, len(completed))
                return

            ready = [
                task
                for task in graph.tasks
                if task.task_id not in completed
                and all(dep in completed for dep in task.dependencies)
            ]
            if not ready:
                remaining = [task.task_id for task in graph.tasks if task.task_id not in completed]
                logger.error("Job %s deadlocked with %d tasks left", job_id, len(remaining))
                self.store.finish(
                    job_id,
                    status=JobStatus.FAILED,
                    error=(
                        "Scheduling deadlock: no task is ready but "
                        f"{len(remaining)} remain ({', '.join(remaining)})"
                    ),
                    error_kind=JobErrorKind.SCHEDULING,
                    attempt_id=attempt_id,
                )
                return

            self.store.update_progress(
                job_id,
                completed_count=len(completed),
                current_task_id=ready[0].task_id,
                attempt_id=attempt_id,
            )
            runs = self._run_round(identity, ready, outputs)

            if self._is_cancelled(job_id, attempt_id):
                logger.info(
                    "Job %s cancelled; discarding results of %d in-flight tasks",
                    job_id,
                    len(runs),
                )
                return

            failed = next((run for run in runs if not run.result.success), None)
            if failed is not None:
                error = TaskExecutionError(failed.task.task_id, failed.result.error or "unknown")
                logger.warning("Job %s failed: %s", job_id, error)
                self.store.finish(
                    job_id,
                    status=JobStatus.FAILED,
                    error=sanitize_preview(str(error)),
                    error_kind=JobErrorKind.EXECUTION,
                    failed_task_id=failed.task.task_id,
                    attempt_id=attempt_id,
                )
                return

            for run in runs:
                outputs[run.task.task_id] = run.result.outputs or {}
                completed[run.task.task_id] = _to_outcome(run)
            self.store.update_progress(
                job_id,
                completed_count=len(completed),
                current_task_id=None,
                attempt_id=attempt_id,
            )

        if self.store.finish(
            job_id,
            status=JobStatus.COMPLETED,
            results=[completed[task.task_id] for task in graph.tasks],
            attempt_id=attempt_id,
        ):
            logger.info(
                "Job %s completed %d tasks in %.1fs",
                job_id,
                len(completed),
                time.monotonic() - started,
            )

    def _is_cancelled(self, job_id: str, attempt_id: str) -> bool:
        job = self.store.get(job_id)
        if job is not None and job.attempt_id != attempt_id:
            logger.info("Job %s was resubmitted; stopping the replaced attempt", job_id)
            return True
        return job is None or job.status == JobStatus.CANCELLED

    # -- round dispatch -----------------------------------------------------------

    def _run_round(
        self,
        identity: _JobIdentity,
        ready: list[Task],
        outputs: dict[str, dict[str, Any]],
    ) -> list[_TaskRun]:
        workers = len(ready)
        if self.settings.max_parallel_tasks > 0:
            workers = min(workers, self.settings.max_parallel_tasks)
        with ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix=f"{identity.job_id[:16]}-task",
        ) as pool:
            futures = [pool.submit(self._run_task, identity, task, outputs) for task in ready]
        return [future.result() for future in futures]

    def _run_task(
        self,
        identity: _JobIdentity,
        task: Task,
        outputs: dict[str, dict[str, Any]],
    ) -> _TaskRun:
        dependency_outputs = {dep: outputs[dep] for dep in task.dependencies}
        context = AgentContext(
            job_id=identity.job_id,
            task_id=task.task_id,
            task_type=task.task_type,
            user_id=identity.user_id,
            project_id=identity.project_id,
            inputs={
                **task.inputs,
                **{f"{dep}_outputs": value for dep, value in dependency_outputs.items()},
            },
            dependency_outputs=dependency_outputs,
            constraints=dict(task.constraints or {}),
        )

        started_at = utc_now()
        clock = time.monotonic()
        try:
            agent = self.agents.resolve(task.agent_ref)
            result = agent.execute(context)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Task %s of job %s raised: %s", task.task_id, identity.job_id, exc)
            result = AgentResult(success=False, error=str(exc) or type(exc).__name__)
        if not result.success and not result.error:
            result.error = "agent reported failure without an error message"
        duration_ms = int((time.monotonic() - clock) * 1000)

        self.store.record_task_run(
            TaskRunRecord(
                job_id=identity.job_id,
                task_id=task.task_id,
                agent_ref=task.agent_ref,
                success=result.success,
                started_at=started_at,
                finished_at=utc_now(),
                duration_ms=duration_ms,
                cost=result.metrics.cost,
                model_id=result.model_id,
                model_confidence=result.model_confidence,
                error=sanitize_preview(result.error) if result.error else None,
            ),
        )
        logger.debug(
            "Task %s of job %s finished: success=%s in %dms",
            task.task_id,
            identity.job_id,
            result.success,
            duration_ms,
        )
        return _TaskRun(task=task, result=result)


def _to_outcome(run: _TaskRun) -> TaskOutcome:
    return TaskOutcome(
        task_id=run.task.task_id,
        success=True,
        outputs=redact_payload(run.result.outputs or {}),
        artifacts=[
            ArtifactRef(
                artifact_id=artifact.artifact_id,
                artifact_type=artifact.artifact_type,
                name=artifact.name,
                locator=artifact.locator,
            )
            for artifact in run.result.artifacts
        ],
    )
