"""Domain models for model catalog, canary rollout and selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agent_matrix.orchestrator.storage.common import utc_now


class ModelStatus(str, Enum):
    """Rollout state of a catalog model."""

    STABLE = "stable"
    CANARY = "canary"
    DISABLED = "disabled"


STATUS_PRIORITY = {
    ModelStatus.STABLE: 0,
    ModelStatus.CANARY: 1,
    ModelStatus.DISABLED: 2,
}


class SelectionReason(str, Enum):
    """Why a model was picked."""

    PERFORMANCE_BASED = "performance_based"
    CANARY = "canary"
    FALLBACK = "fallback"


class MetricsWindow(str, Enum):
    """Aggregation window of model metrics."""

    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"

    @property
    def days(self) -> int:
        return 7 if self is MetricsWindow.LAST_7_DAYS else 30


@dataclass(slots=True)
class ModelConfig:
    """One catalog entry."""

    model_id: str
    name: str
    provider: str
    role: str
    capabilities: frozenset[str] = frozenset()
    status: ModelStatus = ModelStatus.CANARY
    is_active: bool = True
    version_tag: str | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class ModelFilter:
    """Optional predicates for catalog queries."""

    role: str | None = None
    status: ModelStatus | None = None
    provider: str | None = None
    is_active: bool | None = None
    capabilities: frozenset[str] | None = None

    def matches(self, model: ModelConfig) -> bool:
        if self.role is not None and model.role != self.role:
            return False
        if self.status is not None and model.status != self.status:
            return False
        if self.provider is not None and model.provider != self.provider:
            return False
        if self.is_active is not None and model.is_active != self.is_active:
            return False
        return self.capabilities is None or self.capabilities <= model.capabilities


@dataclass(frozen=True, slots=True)
class CanaryConfig:
    """Process-wide canary rollout policy. Replaced wholesale, never mutated."""

    enabled: bool = True
    percentage: float = 10.0
    critical_tasks_only: bool = False
    exclude_roles: frozenset[str] = frozenset()

    def validate(self) -> None:
        if not 0.0 <= self.percentage <= 100.0:
            raise ValueError("Canary percentage must be between 0 and 100")


@dataclass(slots=True)
class SelectionContext:
    """What the caller needs a model for."""

    role: str
    capabilities: frozenset[str] | None = None
    user_id: str | None = None
    project_id: str | None = None
    is_critical: bool = False
    task_type: str | None = None


@dataclass(slots=True)
class SelectionResult:
    """Chosen model and the evidence behind the choice."""

    model: ModelConfig
    reason: SelectionReason
    confidence: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ModelMetrics:
    """Aggregated run quality for one model over one window."""

    model_id: str
    window: MetricsWindow
    success_rate: float
    correction_rate: float
    avg_confidence: float
    mean_time_ms: float
    cost_per_run: float
    total_runs: int


@dataclass(slots=True)
class SelectionStats:
    """Counters of selections made by one selector."""

    total_selections: int
    stable_selections: int
    canary_selections: int

    @property
    def canary_percentage(self) -> float:
        if self.total_selections == 0:
            return 0.0
        return self.canary_selections / self.total_selections * 100.0
