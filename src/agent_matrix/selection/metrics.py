"""Model quality metrics providers and the ranking score built on them."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from agent_matrix.orchestrator.storage.common import utc_now
from agent_matrix.orchestrator.store import JobStore
from agent_matrix.selection.models import MetricsWindow, ModelMetrics

SUCCESS_WEIGHT = 0.4
CONFIDENCE_WEIGHT = 0.3
CORRECTION_WEIGHT = 0.2
PERFORMANCE_WEIGHT = 0.1
COST_WEIGHT = 0.6
LATENCY_WEIGHT = 0.4
COST_CEILING_USD = 0.10
LATENCY_CEILING_MS = 60_000.0
VOLUME_BONUS_MIN_RUNS = 10
VOLUME_BONUS = 1.1


class MetricsProvider(Protocol):
    """Source of aggregated per-model metrics."""

    def get_metrics(self, model_id: str, window: MetricsWindow) -> ModelMetrics | None:
        """Return metrics for ``model_id`` over ``window`` or ``None`` if unknown."""


class StaticMetricsProvider:
    """Metrics fixed at construction time (catalog snapshots, tests)."""

    def __init__(self, metrics: list[ModelMetrics] | None = None) -> None:
        self._metrics = {(item.model_id, item.window): item for item in metrics or []}

    def get_metrics(self, model_id: str, window: MetricsWindow) -> ModelMetrics | None:
        return self._metrics.get((model_id, window))


class RunHistoryMetricsProvider:
    """Aggregate task run records from a job store into model metrics.

    Correction feedback is not tracked by the job store, so ``correction_rate``
    is always ``0.0``. Windows without runs yield ``None``.
    """

    def __init__(self, store: JobStore, *, now: datetime | None = None) -> None:
        self.store = store
        self._now = now

    def get_metrics(self, model_id: str, window: MetricsWindow) -> ModelMetrics | None:
        since = (self._now or utc_now()) - timedelta(days=window.days)
        runs = self.store.list_task_runs(model_id=model_id, since=since)
        if not runs:
            return None
        total = len(runs)
        successes = sum(1 for run in runs if run.success)
        confidences = [run.model_confidence for run in runs if run.model_confidence is not None]
        costs = [run.cost for run in runs if run.cost is not None]
        return ModelMetrics(
            model_id=model_id,
            window=window,
            success_rate=_clamp(successes / total),
            correction_rate=0.0,
            avg_confidence=_clamp(sum(confidences) / len(confidences)) if confidences else 0.0,
            mean_time_ms=max(sum(run.duration_ms for run in runs) / total, 0.0),
            cost_per_run=max(sum(costs) / len(costs), 0.0) if costs else 0.0,
            total_runs=total,
        )


def performance_factor(metrics: ModelMetrics) -> float:
    """1.0 for a free instant model, 0.0 at or above both ceilings."""

    cost_penalty = _clamp(metrics.cost_per_run / COST_CEILING_USD)
    latency_penalty = _clamp(metrics.mean_time_ms / LATENCY_CEILING_MS)
    return 1.0 - (COST_WEIGHT * cost_penalty + LATENCY_WEIGHT * latency_penalty)


def score_metrics(metrics: ModelMetrics) -> float:
    """Weighted quality score in ``[0, 1]``."""

    score = (
        SUCCESS_WEIGHT * metrics.success_rate
        + CONFIDENCE_WEIGHT * metrics.avg_confidence
        + CORRECTION_WEIGHT * (1.0 - metrics.correction_rate)
        + PERFORMANCE_WEIGHT * performance_factor(metrics)
    )
    if metrics.total_runs > VOLUME_BONUS_MIN_RUNS:
        score *= VOLUME_BONUS
    return min(score, 1.0)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)
