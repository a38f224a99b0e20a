"""Shared test fixtures."""

from __future__ import annotations

import os
import threading
import time
from typing import ClassVar

import pytest

from agent_matrix.orchestrator.agents.base import BaseAgent
from agent_matrix.orchestrator.agents.registry import AgentRegistry
from agent_matrix.orchestrator.models import AgentContext, AgentResult


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep developer AGENT_MATRIX_* variables out of the tests."""
    for name in list(os.environ):
        if name.startswith("AGENT_MATRIX_"):
            monkeypatch.delenv(name, raising=False)


class RunJournal:
    """Thread-safe log of agent invocations shared by recording agents."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.contexts: list[AgentContext] = []
        self.started = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.peak = 0

    def record(self, context: AgentContext) -> None:
        with self._lock:
            self.contexts.append(context)
        self.started.set()

    def enter(self) -> None:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)

    def leave(self) -> None:
        with self._lock:
            self.active -= 1

    def task_ids(self) -> list[str]:
        with self._lock:
            return [context.task_id for context in self.contexts]

    def context_for(self, task_id: str) -> AgentContext:
        with self._lock:
            return next(context for context in self.contexts if context.task_id == task_id)


class RecordingAgent(BaseAgent):
    """Agent driven by its ``behaviour`` input: ok, fail, raise, block or track."""

    name: ClassVar[str] = "RecordingAgent"

    def __init__(self, journal: RunJournal) -> None:
        self.journal = journal

    def run(self, context: AgentContext) -> AgentResult:
        self.journal.record(context)
        behaviour = context.inputs.get("behaviour", "ok")
        if behaviour == "raise":
            raise RuntimeError("boom")
        if behaviour == "fail":
            return AgentResult(success=False, error="refused")
        if behaviour == "block":
            self.journal.release.wait(timeout=5)
        if behaviour == "track":
            self.journal.enter()
            time.sleep(0.05)
            self.journal.leave()
        return AgentResult(
            success=True,
            outputs={"value": context.inputs.get("value", context.task_id)},
        )


@pytest.fixture()
def journal() -> RunJournal:
    return RunJournal()


@pytest.fixture()
def recording_agents(journal: RunJournal) -> AgentRegistry:
    registry = AgentRegistry()
    registry.register("recorder", lambda: RecordingAgent(journal))
    return registry
