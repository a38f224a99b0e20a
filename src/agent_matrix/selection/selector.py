"""Deterministic model selection with canary traffic split."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, fields, replace
from typing import Any

from agent_matrix.selection.bucketing import compute_bucket, in_canary
from agent_matrix.selection.metrics import MetricsProvider, score_metrics
from agent_matrix.selection.models import (
    CanaryConfig,
    MetricsWindow,
    ModelConfig,
    ModelStatus,
    SelectionContext,
    SelectionReason,
    SelectionResult,
    SelectionStats,
)
from agent_matrix.selection.registry import ModelRegistry

logger = logging.getLogger(__name__)

SINGLE_CANDIDATE_CONFIDENCE = 0.8
NO_METRICS_CONFIDENCE = 0.6
METRICS_FAILED_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.5

_METRICS_WINDOWS = (MetricsWindow.LAST_7_DAYS, MetricsWindow.LAST_30_DAYS)
_CANARY_FIELDS = frozenset(item.name for item in fields(CanaryConfig))


@dataclass(slots=True)
class _Ranking:
    model: ModelConfig
    confidence: float
    performance_considered: bool
    metrics_failed: bool


class ModelSelector:
    """Pick one backing model per request.

    The canary population is chosen by hashing the caller identity into a
    fixed bucket, so repeated calls under one ``CanaryConfig`` always land in
    the same population. Metric and registry failures degrade the answer,
    they never raise.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        *,
        metrics: MetricsProvider | None = None,
        canary_config: CanaryConfig | None = None,
    ) -> None:
        config = canary_config or CanaryConfig()
        config.validate()
        self.registry = registry
        self.metrics = metrics
        self._config = config
        self._config_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._totals = SelectionStats(0, 0, 0)
        self._by_role: dict[str, SelectionStats] = {}

    @property
    def canary_config(self) -> CanaryConfig:
        return self._config

    def update_canary_config(self, **changes: Any) -> CanaryConfig:
        """Apply a partial update and swap the config in one assignment."""

        unknown = set(changes) - _CANARY_FIELDS
        if unknown:
            raise ValueError(f"Unknown canary config fields: {', '.join(sorted(unknown))}")
        if "exclude_roles" in changes:
            changes["exclude_roles"] = frozenset(changes["exclude_roles"])
        if "percentage" in changes:
            changes["percentage"] = float(changes["percentage"])
        with self._config_lock:
            updated = replace(self._config, **changes)
            updated.validate()
            self._config = updated
        logger.info(
            "Canary config updated: enabled=%s percentage=%.1f critical_only=%s excluded=%s",
            updated.enabled,
            updated.percentage,
            updated.critical_tasks_only,
            ",".join(sorted(updated.exclude_roles)) or "-",
        )
        return updated

    def get_selection_stats(self, role: str | None = None) -> SelectionStats:
        with self._stats_lock:
            source = self._totals if role is None else self._by_role.get(role)
            if source is None:
                return SelectionStats(0, 0, 0)
            return replace(source)

    def select_model(self, context: SelectionContext) -> SelectionResult | None:
        try:
            candidates = self.registry.get_models_by_role(context.role)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Model registry lookup failed for role %s: %s", context.role, exc)
            return None

        if not candidates:
            logger.warning("No models available for role: %s", context.role)
            return None

        eligible = candidates
        if context.capabilities:
            required = frozenset(context.capabilities)
            eligible = [model for model in candidates if required <= model.capabilities]
        if not eligible:
            logger.warning("No models with required capabilities for role: %s", context.role)
            return None

        config = self._config
        try:
            result = self._select(context, eligible, config)
        except Exception:  # noqa: BLE001
            logger.exception("Model selection degraded to fallback for role %s", context.role)
            result = self._fallback(eligible, config, context)
        self._record(context.role, result.model)
        return result

    def _select(
        self,
        context: SelectionContext,
        eligible: list[ModelConfig],
        config: CanaryConfig,
    ) -> SelectionResult:
        stable = [model for model in eligible if model.status == ModelStatus.STABLE]
        canary = [model for model in eligible if model.status == ModelStatus.CANARY]
        canary_enabled = self._canary_allowed(context, config)
        bucket = compute_bucket(context.user_id, context.project_id, context.role)

        if canary_enabled and canary and in_canary(bucket, config.percentage):
            ranking = self._rank(canary)
            reason = SelectionReason.CANARY
        elif stable:
            ranking = self._rank(stable)
            reason = (
                SelectionReason.FALLBACK
                if ranking.metrics_failed
                else SelectionReason.PERFORMANCE_BASED
            )
        else:
            return self._fallback(eligible, config, context, bucket=bucket)

        logger.debug(
            "Selected %s for role %s (reason=%s, confidence=%.2f, bucket=%d)",
            ranking.model.model_id,
            context.role,
            reason.value,
            ranking.confidence,
            bucket,
        )
        return SelectionResult(
            model=ranking.model,
            reason=reason,
            confidence=ranking.confidence,
            metadata={
                "candidate_count": len(eligible),
                "canary_enabled": canary_enabled,
                "bucket": bucket,
                "performance_considered": ranking.performance_considered,
                "fallback_used": reason == SelectionReason.FALLBACK,
            },
        )

    def _fallback(
        self,
        eligible: list[ModelConfig],
        config: CanaryConfig,
        context: SelectionContext,
        *,
        bucket: int | None = None,
    ) -> SelectionResult:
        return SelectionResult(
            model=eligible[0],
            reason=SelectionReason.FALLBACK,
            confidence=FALLBACK_CONFIDENCE,
            metadata={
                "candidate_count": len(eligible),
                "canary_enabled": self._canary_allowed(context, config),
                "bucket": bucket,
                "performance_considered": False,
                "fallback_used": True,
            },
        )

    @staticmethod
    def _canary_allowed(context: SelectionContext, config: CanaryConfig) -> bool:
        if not config.enabled:
            return False
        if context.role in config.exclude_roles:
            return False
        return not (config.critical_tasks_only and not context.is_critical)

    def _rank(self, models: list[ModelConfig]) -> _Ranking:
        if len(models) == 1:
            return _Ranking(
                model=models[0],
                confidence=SINGLE_CANDIDATE_CONFIDENCE,
                performance_considered=False,
                metrics_failed=False,
            )

        scored: list[tuple[float, ModelConfig]] = []
        considered = False
        failures = 0
        for model in models:
            score, outcome = self._score(model)
            if outcome == "scored":
                considered = True
            elif outcome == "failed":
                failures += 1
            scored.append((score, model))

        # sorted() is stable: ties keep registry order
        best_score, best = sorted(scored, key=lambda item: item[0], reverse=True)[0]
        return _Ranking(
            model=best,
            confidence=min(best_score, 1.0),
            performance_considered=considered,
            metrics_failed=failures == len(models),
        )

    def _score(self, model: ModelConfig) -> tuple[float, str]:
        if self.metrics is None:
            return NO_METRICS_CONFIDENCE, "missing"
        try:
            for window in _METRICS_WINDOWS:
                metrics = self.metrics.get_metrics(model.model_id, window)
                if metrics is not None:
                    return score_metrics(metrics), "scored"
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to load metrics for model %s: %s", model.model_id, exc)
            return METRICS_FAILED_CONFIDENCE, "failed"
        return NO_METRICS_CONFIDENCE, "missing"

    def _record(self, role: str, model: ModelConfig) -> None:
        is_canary = model.status == ModelStatus.CANARY
        with self._stats_lock:
            per_role = self._by_role.setdefault(role, SelectionStats(0, 0, 0))
            for stats in (self._totals, per_role):
                stats.total_selections += 1
                if is_canary:
                    stats.canary_selections += 1
                else:
                    stats.stable_selections += 1
