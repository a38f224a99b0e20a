"""Local deterministic agent for graph runs without model backends."""

from __future__ import annotations

import time
from typing import Any, ClassVar

from agent_matrix.orchestrator.agents.base import BaseAgent
from agent_matrix.orchestrator.models import AgentContext, AgentResult


class EchoAgent(BaseAgent):
    """Echo task inputs back as outputs.

    Two control inputs shape the run: ``delay_ms`` sleeps before answering and
    ``fail`` (a message string or ``True``) produces an unsuccessful result.
    """

    name: ClassVar[str] = "EchoAgent"
    version: ClassVar[str] = "1.0.0"
    capabilities: ClassVar[tuple[str, ...]] = ("echo",)

    def run(self, context: AgentContext) -> AgentResult:
        delay_ms = context.inputs.get("delay_ms", 0)
        if isinstance(delay_ms, int | float) and delay_ms > 0:
            time.sleep(delay_ms / 1000.0)

        fail = context.inputs.get("fail")
        if fail:
            reason = fail if isinstance(fail, str) else "echo agent asked to fail"
            return AgentResult(success=False, error=reason)

        skipped = {f"{dep}_outputs" for dep in context.dependency_outputs} | {"delay_ms", "fail"}
        own_inputs: dict[str, Any] = {
            key: value for key, value in context.inputs.items() if key not in skipped
        }
        return AgentResult(
            success=True,
            outputs={
                "task_id": context.task_id,
                "task_type": context.task_type,
                "echo": own_inputs,
                "received_from": sorted(context.dependency_outputs),
            },
        )
