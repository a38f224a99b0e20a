from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_matrix.config import ExecutorSettings
from agent_matrix.orchestrator.agents.registry import AgentRegistry
from agent_matrix.orchestrator.errors import GraphValidationError, JobConflictError
from agent_matrix.orchestrator.executor import TaskGraphExecutor
from agent_matrix.orchestrator.models import (
    Job,
    JobErrorKind,
    JobProgress,
    JobStatus,
    Task,
    TaskGraph,
)
from agent_matrix.orchestrator.repository import SqlJobStore
from agent_matrix.orchestrator.storage.common import utc_now
from agent_matrix.orchestrator.store import InMemoryJobStore

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Graph Executor"),
]

_WAIT = 10.0


def _task(task_id: str, *deps: str, **inputs) -> Task:
    return Task(
        task_id=task_id,
        task_type="generic",
        agent_ref="recorder",
        dependencies=deps,
        inputs=inputs,
    )


def _graph(*tasks: Task) -> TaskGraph:
    return TaskGraph(graph_id="graph-1", tasks=list(tasks), estimated_duration_ms=1_000)


@pytest.fixture(params=["memory", "sqlite"])
def job_store(request, tmp_path: Path):
    if request.param == "memory":
        yield InMemoryJobStore()
        return
    sql_store = SqlJobStore(tmp_path / "jobs.db")
    sql_store.init_schema()
    yield sql_store
    sql_store.close()


def _executor(agents: AgentRegistry, *, max_parallel: int = 0) -> TaskGraphExecutor:
    return TaskGraphExecutor(
        InMemoryJobStore(),
        agents,
        ExecutorSettings(max_parallel_tasks=max_parallel),
    )


def test_diamond_graph_completes_with_dependency_outputs(recording_agents, journal) -> None:
    executor = _executor(recording_agents)
    graph = _graph(
        _task("A", value="alpha"),
        _task("B", "A"),
        _task("C", "A"),
        _task("D", "B", "C"),
    )

    job = executor.execute(graph, user_id="u-1", project_id="p-1", timeout=_WAIT)

    assert job.status == JobStatus.COMPLETED
    assert job.error is None
    assert job.progress.completed_count == 4
    assert job.progress.total_count == 4
    assert job.ended_at is not None
    assert [outcome.task_id for outcome in job.results] == ["A", "B", "C", "D"]
    assert all(outcome.success for outcome in job.results)

    order = journal.task_ids()
    assert order[0] == "A"
    assert set(order[1:3]) == {"B", "C"}
    assert order[3] == "D"

    b_context = journal.context_for("B")
    assert b_context.inputs["A_outputs"] == {"value": "alpha"}
    assert b_context.dependency_outputs == {"A": {"value": "alpha"}}
    assert b_context.user_id == "u-1"
    assert b_context.project_id == "p-1"
    d_context = journal.context_for("D")
    assert set(d_context.dependency_outputs) == {"B", "C"}
    assert "B_outputs" in d_context.inputs
    assert "C_outputs" in d_context.inputs


def test_single_task_graph_completes(recording_agents) -> None:
    executor = _executor(recording_agents)

    job = executor.execute(_graph(_task("only")), user_id="u-1", timeout=_WAIT)

    assert job.status == JobStatus.COMPLETED
    assert job.results[0].outputs == {"value": "only"}


def test_round_respects_parallel_cap(recording_agents, journal) -> None:
    executor = _executor(recording_agents, max_parallel=2)
    graph = _graph(*(_task(f"t{index}", behaviour="track") for index in range(5)))

    job = executor.execute(graph, user_id="u-1", timeout=_WAIT)

    assert job.status == JobStatus.COMPLETED
    assert len(journal.task_ids()) == 5
    assert 1 <= journal.peak <= 2


def test_failed_task_fails_job_and_skips_dependents(recording_agents, journal) -> None:
    executor = _executor(recording_agents)
    graph = _graph(_task("A"), _task("B", "A", behaviour="fail"), _task("C", "B"))

    job = executor.execute(graph, user_id="u-1", timeout=_WAIT)

    assert job.status == JobStatus.FAILED
    assert job.error_kind == JobErrorKind.EXECUTION
    assert job.failed_task_id == "B"
    assert job.error == "Task B failed: refused"
    assert job.results is None
    assert "C" not in journal.task_ids()


def test_raising_agent_is_recorded_as_task_failure(recording_agents) -> None:
    executor = _executor(recording_agents)

    job = executor.execute(_graph(_task("A", behaviour="raise")), user_id="u-1", timeout=_WAIT)

    assert job.status == JobStatus.FAILED
    assert job.error_kind == JobErrorKind.EXECUTION
    assert job.error == "Task A failed: boom"
    runs = executor.store.list_task_runs(job_id=job.job_id)
    assert len(runs) == 1
    assert runs[0].success is False
    assert runs[0].error == "boom"


def test_every_invocation_is_recorded(recording_agents) -> None:
    executor = _executor(recording_agents)

    job = executor.execute(_graph(_task("A"), _task("B", "A")), user_id="u-1", timeout=_WAIT)

    runs = executor.store.list_task_runs(job_id=job.job_id)
    assert [run.task_id for run in runs] == ["A", "B"]
    assert all(run.success and run.agent_ref == "recorder" for run in runs)
    assert all(run.finished_at >= run.started_at for run in runs)


def test_cancel_running_job_discards_in_flight_round(recording_agents, journal) -> None:
    executor = _executor(recording_agents)
    job_id = executor.submit(
        _graph(_task("A", behaviour="block"), _task("B", "A")),
        user_id="u-1",
    )
    assert journal.started.wait(_WAIT)

    snapshot = executor.cancel(job_id)
    journal.release.set()
    job = executor.wait(job_id, timeout=_WAIT)

    assert snapshot is not None
    assert snapshot.status == JobStatus.CANCELLED
    assert job.status == JobStatus.CANCELLED
    assert job.results is None
    assert journal.task_ids() == ["A"]


def test_cancel_terminal_job_is_a_no_op(recording_agents) -> None:
    executor = _executor(recording_agents)
    job = executor.execute(_graph(_task("A")), user_id="u-1", timeout=_WAIT)

    snapshot = executor.cancel(job.job_id)

    assert snapshot.status == JobStatus.COMPLETED
    assert executor.cancel("missing") is None


def test_pending_job_cancelled_before_start_never_runs(recording_agents, journal) -> None:
    executor = _executor(recording_agents)
    executor.store.put(
        Job(
            job_id="job-pending",
            graph_id="graph-1",
            user_id="u-1",
            project_id=None,
            status=JobStatus.PENDING,
            progress=JobProgress(completed_count=0, total_count=1),
            started_at=utc_now(),
        ),
    )
    executor.cancel("job-pending")

    executor.run("job-pending", _graph(_task("A")))

    assert executor.status("job-pending").status == JobStatus.CANCELLED
    assert journal.task_ids() == []


def test_unschedulable_graph_fails_with_scheduling_error(recording_agents, journal) -> None:
    executor = _executor(recording_agents)
    executor.store.put(
        Job(
            job_id="job-cycle",
            graph_id="graph-1",
            user_id="u-1",
            project_id=None,
            status=JobStatus.PENDING,
            progress=JobProgress(completed_count=0, total_count=3),
            started_at=utc_now(),
        ),
    )

    executor.run("job-cycle", _graph(_task("root"), _task("x", "y"), _task("y", "x")))

    job = executor.status("job-cycle")
    assert job.status == JobStatus.FAILED
    assert job.error_kind == JobErrorKind.SCHEDULING
    assert job.error.startswith("Scheduling deadlock:")
    assert "x, y" in job.error
    assert journal.task_ids() == ["root"]


def test_submit_rejects_invalid_graph(recording_agents) -> None:
    executor = _executor(recording_agents)

    with pytest.raises(GraphValidationError, match="Circular dependency"):
        executor.submit(_graph(_task("a", "b"), _task("b", "a")), user_id="u-1")
    assert executor.store.list_jobs() == []


def test_submit_rejects_unknown_agent(recording_agents) -> None:
    executor = _executor(recording_agents)
    graph = TaskGraph(
        graph_id="graph-1",
        tasks=[Task(task_id="a", task_type="generic", agent_ref="ghost")],
    )

    with pytest.raises(GraphValidationError, match="unknown agent 'ghost'") as exc_info:
        executor.submit(graph, user_id="u-1")
    assert exc_info.value.graph_id == "graph-1"


def test_active_job_id_cannot_be_reused(recording_agents, journal) -> None:
    executor = _executor(recording_agents)
    executor.submit(_graph(_task("A", behaviour="block")), user_id="u-1", job_id="job-fixed")
    assert journal.started.wait(_WAIT)

    with pytest.raises(JobConflictError):
        executor.submit(_graph(_task("A")), user_id="u-1", job_id="job-fixed")

    journal.release.set()
    first = executor.wait("job-fixed", timeout=_WAIT)
    assert first.status == JobStatus.COMPLETED

    again = executor.execute(_graph(_task("A")), user_id="u-2", job_id="job-fixed", timeout=_WAIT)
    assert again.status == JobStatus.COMPLETED
    assert again.user_id == "u-2"


def test_reused_id_is_not_touched_by_cancelled_attempt(
    job_store,
    recording_agents,
    journal,
) -> None:
    executor = TaskGraphExecutor(job_store, recording_agents)
    executor.submit(
        _graph(_task("A", behaviour="block"), _task("OLD_B", "A")),
        user_id="u-1",
        job_id="job-reused",
    )
    assert journal.started.wait(_WAIT)
    assert executor.cancel("job-reused").status == JobStatus.CANCELLED

    replacement = executor.execute(
        _graph(_task("X")),
        user_id="u-2",
        job_id="job-reused",
        timeout=_WAIT,
    )
    journal.release.set()
    executor.shutdown(timeout=_WAIT)

    assert replacement.status == JobStatus.COMPLETED
    assert journal.task_ids() == ["A", "X"]
    job = executor.status("job-reused")
    assert job.status == JobStatus.COMPLETED
    assert job.user_id == "u-2"
    assert [outcome.task_id for outcome in job.results] == ["X"]
    assert job.progress.completed_count == 1
    assert job.progress.total_count == 1


def test_reused_id_survives_old_round_finishing_mid_run(
    job_store,
    recording_agents,
    journal,
) -> None:
    executor = TaskGraphExecutor(job_store, recording_agents)
    executor.submit(
        _graph(_task("A", behaviour="block"), _task("OLD_B", "A")),
        user_id="u-1",
        job_id="job-reused",
    )
    assert journal.started.wait(_WAIT)
    executor.cancel("job-reused")
    executor.submit(
        _graph(_task("X", behaviour="block"), _task("Y", "X")),
        user_id="u-2",
        job_id="job-reused",
    )

    journal.release.set()
    job = executor.wait("job-reused", timeout=_WAIT)
    executor.shutdown(timeout=_WAIT)

    assert job.status == JobStatus.COMPLETED
    assert [outcome.task_id for outcome in job.results] == ["X", "Y"]
    assert job.progress.completed_count == 2
    assert job.progress.total_count == 2
    assert "OLD_B" not in journal.task_ids()
    assert executor.status("job-reused").status == JobStatus.COMPLETED


def test_finished_jobs_release_executor_bookkeeping(recording_agents) -> None:
    executor = _executor(recording_agents)

    job = executor.execute(_graph(_task("A")), user_id="u-1", timeout=_WAIT)
    executor.shutdown(timeout=_WAIT)

    assert executor._finished == {}
    assert executor._threads == {}
    assert executor.wait(job.job_id, timeout=0.01).status == JobStatus.COMPLETED


def test_unknown_job_status_is_none(recording_agents) -> None:
    executor = _executor(recording_agents)

    assert executor.status("missing") is None
    assert executor.wait("missing", timeout=0.01) is None


def test_generated_job_ids_are_unique(recording_agents) -> None:
    executor = _executor(recording_agents)

    first = executor.submit(_graph(_task("A")), user_id="u-1")
    second = executor.submit(_graph(_task("A")), user_id="u-1")
    executor.wait(first, timeout=_WAIT)
    executor.wait(second, timeout=_WAIT)

    assert first != second
    assert first.startswith("job_")


def test_secret_outputs_are_redacted_in_results(recording_agents) -> None:
    executor = _executor(recording_agents)

    job = executor.execute(
        _graph(_task("A", value="contact admin@example.com")),
        user_id="u-1",
        timeout=_WAIT,
    )

    assert job.results[0].outputs == {"value": "contact [redacted-email]"}


def test_sqlite_store_runs_graph_end_to_end(tmp_path: Path, recording_agents) -> None:
    store = SqlJobStore(tmp_path / "jobs.db")
    store.init_schema()
    try:
        executor = TaskGraphExecutor(store, recording_agents)
        job = executor.execute(
            _graph(_task("A"), _task("B", "A")),
            user_id="u-1",
            timeout=_WAIT,
        )

        assert job.status == JobStatus.COMPLETED
        stored = store.get(job.job_id)
        assert stored.status == JobStatus.COMPLETED
        assert [outcome.task_id for outcome in stored.results] == ["A", "B"]
        assert len(store.list_task_runs(job_id=job.job_id)) == 2
    finally:
        store.close()
