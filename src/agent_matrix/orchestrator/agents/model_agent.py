"""Agents that route their work through the model selector."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

from agent_matrix.orchestrator.agents.base import BaseAgent
from agent_matrix.orchestrator.models import AgentContext, AgentResult, Artifact, ExecutionMetrics
from agent_matrix.selection.models import ModelConfig, SelectionContext
from agent_matrix.selection.selector import ModelSelector

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ModelInvocation:
    """One request sent to a backing model."""

    model: ModelConfig
    agent_name: str
    task_id: str
    task_type: str
    inputs: dict[str, Any]
    dependency_outputs: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(slots=True)
class ModelResponse:
    """Backing model answer."""

    outputs: dict[str, Any]
    artifacts: list[Artifact] = field(default_factory=list)
    cost: float | None = None
    tokens_used: int | None = None


class ModelInvoker(Protocol):
    """Transport to a model provider."""

    def invoke(self, request: ModelInvocation) -> ModelResponse:
        """Call the model and return its response."""


class DryRunInvoker:
    """Deterministic stand-in for a provider call.

    The response only depends on the model id and the request payload, so
    repeated graph runs produce identical outputs.
    """

    def invoke(self, request: ModelInvocation) -> ModelResponse:
        payload = json.dumps(
            {
                "inputs": request.inputs,
                "dependencies": request.dependency_outputs,
            },
            sort_keys=True,
            default=str,
        )
        digest = hashlib.sha256(f"{request.model.model_id}:{payload}".encode()).hexdigest()[:16]
        summary = f"{request.agent_name} handled {request.task_type} with {request.model.name}"
        return ModelResponse(
            outputs={
                "summary": summary,
                "digest": digest,
                "model_id": request.model.model_id,
            },
            artifacts=[
                Artifact(
                    artifact_id=f"{request.task_id}-{digest}",
                    artifact_type="document",
                    name=f"{request.task_id}.md",
                    content=f"# {request.task_type}\n\n{summary}\n",
                ),
            ],
            cost=0.0,
            tokens_used=len(payload) // 4,
        )


class ModelRoutedAgent(BaseAgent):
    """Agent that asks the selector which model serves its role.

    Task constraints may narrow the choice: ``capabilities`` (one capability
    name or a list of them) and ``critical`` (bool, opts the request into
    critical-only canary rollouts).
    """

    role: ClassVar[str] = ""

    def __init__(self, selector: ModelSelector, invoker: ModelInvoker) -> None:
        self.selector = selector
        self.invoker = invoker

    def run(self, context: AgentContext) -> AgentResult:
        try:
            capabilities = required_capabilities(context.constraints.get("capabilities"))
        except TypeError as exc:
            return AgentResult(success=False, error=str(exc))
        selection = self.selector.select_model(
            SelectionContext(
                role=self.role,
                capabilities=capabilities,
                user_id=context.user_id,
                project_id=context.project_id,
                is_critical=bool(context.constraints.get("critical", False)),
                task_type=context.task_type,
            ),
        )
        if selection is None:
            return AgentResult(success=False, error=f"No model available for role {self.role!r}")

        logger.debug(
            "%s uses model %s for task %s (%s)",
            self.name,
            selection.model.model_id,
            context.task_id,
            selection.reason.value,
        )
        response = self.invoker.invoke(
            ModelInvocation(
                model=selection.model,
                agent_name=self.name,
                task_id=context.task_id,
                task_type=context.task_type,
                inputs=context.inputs,
                dependency_outputs=context.dependency_outputs,
            ),
        )
        return AgentResult(
            success=True,
            outputs={**response.outputs, "selection_reason": selection.reason.value},
            artifacts=response.artifacts,
            metrics=ExecutionMetrics(
                cost=response.cost,
                model_calls=1,
                tokens_used=response.tokens_used,
            ),
            model_id=selection.model.model_id,
            model_confidence=selection.confidence,
        )


class CodeGenAgent(ModelRoutedAgent):
    name: ClassVar[str] = "CodeGenAgent"
    role: ClassVar[str] = "code_generator"
    capabilities: ClassVar[tuple[str, ...]] = (
        "react-component-generation",
        "api-endpoint-creation",
        "utility-function-creation",
        "test-file-generation",
    )
    required_inputs: ClassVar[tuple[str, ...]] = ("specification",)


class SchemaAgent(ModelRoutedAgent):
    name: ClassVar[str] = "SchemaAgent"
    role: ClassVar[str] = "code_architect"
    capabilities: ClassVar[tuple[str, ...]] = (
        "database-schema-design",
        "migration-planning",
        "relationship-modeling",
    )


class AuthAgent(ModelRoutedAgent):
    name: ClassVar[str] = "AuthAgent"
    role: ClassVar[str] = "security_checker"
    capabilities: ClassVar[tuple[str, ...]] = (
        "authentication-setup",
        "authorization-design",
        "rbac-design",
        "security-audit",
    )


class QAAgent(ModelRoutedAgent):
    name: ClassVar[str] = "QAAgent"
    role: ClassVar[str] = "systems_debugger"
    capabilities: ClassVar[tuple[str, ...]] = (
        "unit-test-generation",
        "integration-test-creation",
        "code-quality-analysis",
    )


def required_capabilities(raw: Any) -> frozenset[str] | None:
    """Normalize the ``capabilities`` constraint; a bare string is one capability."""

    if raw is None:
        return None
    if isinstance(raw, str):
        return frozenset({raw}) if raw else None
    if isinstance(raw, list | tuple | set | frozenset) and all(
        isinstance(item, str) for item in raw
    ):
        return frozenset(raw) or None
    raise TypeError("constraints.capabilities must be a string or a list of strings")
