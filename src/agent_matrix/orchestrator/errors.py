"""Exception types raised by the orchestrator."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for orchestrator failures surfaced to callers."""


class GraphValidationError(OrchestratorError):
    """Task graph failed structural validation."""

    def __init__(self, graph_id: str, errors: list[str]) -> None:
        self.graph_id = graph_id
        self.errors = list(errors)
        super().__init__(f"Invalid task graph {graph_id!r}: {'; '.join(self.errors)}")


class UnknownAgentError(OrchestratorError):
    """No agent is registered under the requested identifier."""

    def __init__(self, agent_ref: str) -> None:
        self.agent_ref = agent_ref
        super().__init__(f"No agent available for agent_ref={agent_ref!r}")


class JobNotFoundError(OrchestratorError):
    """Job id is unknown to the job store."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobConflictError(OrchestratorError):
    """A non-terminal job already uses the requested job id."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} is still active and cannot be resubmitted")


class TaskExecutionError(OrchestratorError):
    """An agent failed while executing one task."""

    def __init__(self, task_id: str, reason: str) -> None:
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Task {task_id} failed: {reason}")
