"""Agent identifier to factory mapping."""

from __future__ import annotations

import threading
from collections.abc import Callable

from agent_matrix.orchestrator.agents.base import Agent
from agent_matrix.orchestrator.agents.echo_agent import EchoAgent
from agent_matrix.orchestrator.agents.model_agent import (
    AuthAgent,
    CodeGenAgent,
    DryRunInvoker,
    ModelInvoker,
    QAAgent,
    SchemaAgent,
)
from agent_matrix.orchestrator.errors import UnknownAgentError
from agent_matrix.selection.registry import default_model_registry
from agent_matrix.selection.selector import ModelSelector

AgentFactory = Callable[[], Agent]

ECHO_AGENT_REF = "echo"


class AgentRegistry:
    """Resolve task ``agent_ref`` values into fresh agent instances.

    A new instance is built per resolution, so concurrently running tasks never
    share agent state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: dict[str, AgentFactory] = {}

    def register(self, agent_ref: str, factory: AgentFactory, *, replace: bool = False) -> None:
        if not agent_ref.strip():
            raise ValueError("agent_ref must be non-empty")
        with self._lock:
            if agent_ref in self._factories and not replace:
                raise ValueError(f"Agent already registered: {agent_ref}")
            self._factories[agent_ref] = factory

    def resolve(self, agent_ref: str) -> Agent:
        with self._lock:
            factory = self._factories.get(agent_ref)
        if factory is None:
            raise UnknownAgentError(agent_ref)
        return factory()

    def known_agents(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._factories)

    def __contains__(self, agent_ref: object) -> bool:
        with self._lock:
            return agent_ref in self._factories


def default_agent_registry(
    *,
    selector: ModelSelector | None = None,
    invoker: ModelInvoker | None = None,
) -> AgentRegistry:
    """Registry with the echo agent and the model-routed builder agents."""

    active_selector = selector or ModelSelector(default_model_registry())
    active_invoker = invoker or DryRunInvoker()

    registry = AgentRegistry()
    registry.register(ECHO_AGENT_REF, EchoAgent)
    registry.register(EchoAgent.name, EchoAgent)
    for agent_cls in (CodeGenAgent, SchemaAgent, AuthAgent, QAAgent):
        registry.register(
            agent_cls.name,
            lambda cls=agent_cls: cls(active_selector, active_invoker),
        )
    return registry
