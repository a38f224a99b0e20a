"""Agent interface for task execution."""

from __future__ import annotations

import time
from typing import Any, ClassVar, Protocol

from agent_matrix.orchestrator.models import AgentContext, AgentResult


class Agent(Protocol):
    """Protocol implemented by every task handler."""

    name: str
    version: str
    capabilities: tuple[str, ...]

    def validate_inputs(self, inputs: dict[str, Any]) -> list[str]:
        """Return validation errors for ``inputs``; empty when valid."""

    def execute(self, context: AgentContext) -> AgentResult:
        """Run one task and report its outcome."""


class BaseAgent:
    """Shared execute workflow: validate inputs, run, stamp duration.

    Subclasses implement :meth:`run`. Exceptions raised by ``run`` propagate to
    the executor, which records them against the task.
    """

    name: ClassVar[str] = "BaseAgent"
    version: ClassVar[str] = "1.0.0"
    capabilities: ClassVar[tuple[str, ...]] = ()
    required_inputs: ClassVar[tuple[str, ...]] = ()

    def validate_inputs(self, inputs: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        for key in self.required_inputs:
            value = inputs.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                errors.append(f"{key}: required")
        return errors

    def execute(self, context: AgentContext) -> AgentResult:
        errors = self.validate_inputs(context.inputs)
        if errors:
            return AgentResult(
                success=False,
                error=f"Input validation failed: {', '.join(errors)}",
            )
        started = time.monotonic()
        result = self.run(context)
        result.metrics.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    def run(self, context: AgentContext) -> AgentResult:
        raise NotImplementedError
