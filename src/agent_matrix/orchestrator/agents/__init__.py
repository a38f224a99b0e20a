"""Agent implementations invoked by the executor."""

from agent_matrix.orchestrator.agents.base import Agent, BaseAgent
from agent_matrix.orchestrator.agents.echo_agent import EchoAgent
from agent_matrix.orchestrator.agents.model_agent import (
    AuthAgent,
    CodeGenAgent,
    DryRunInvoker,
    ModelInvocation,
    ModelInvoker,
    ModelResponse,
    ModelRoutedAgent,
    QAAgent,
    SchemaAgent,
)
from agent_matrix.orchestrator.agents.registry import AgentRegistry, default_agent_registry

__all__ = [
    "Agent",
    "AgentRegistry",
    "AuthAgent",
    "BaseAgent",
    "CodeGenAgent",
    "DryRunInvoker",
    "EchoAgent",
    "ModelInvocation",
    "ModelInvoker",
    "ModelResponse",
    "ModelRoutedAgent",
    "QAAgent",
    "SchemaAgent",
    "default_agent_registry",
]
