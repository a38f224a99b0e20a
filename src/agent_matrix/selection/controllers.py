"""Controllers for model catalog and canary CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from agent_matrix.config import Settings
from agent_matrix.selection.bucketing import bucket_key, compute_bucket, in_canary
from agent_matrix.selection.models import ModelFilter, ModelStatus, SelectionContext
from agent_matrix.selection.registry import ModelRegistry, default_model_registry
from agent_matrix.selection.selector import ModelSelector


@dataclass(slots=True)
class ModelsListCommand:
    """CLI input for catalog listing."""

    registry_path: Path | None
    role: str | None
    status: str | None


@dataclass(slots=True)
class ModelsSelectCommand:
    """CLI input for a one-off selection."""

    registry_path: Path | None
    role: str
    user_id: str | None
    project_id: str | None
    capabilities: tuple[str, ...]
    critical: bool
    repeat: int = 1


@dataclass(slots=True)
class CanaryBucketCommand:
    """CLI input for bucket lookup."""

    role: str
    user_id: str | None
    project_id: str | None
    percentage: float | None


class SelectionCliController:
    """Read-only views over the catalog and the canary split."""

    def list_models(self, command: ModelsListCommand) -> list[str]:
        registry = _registry(Settings.from_env(), command.registry_path)
        models = registry.get_models(
            ModelFilter(
                role=command.role,
                status=ModelStatus(command.status.lower()) if command.status else None,
            ),
        )
        models.sort(key=lambda model: (model.role, model.model_id))

        lines = [f"Models: {len(models)}"]
        for model in models:
            lines.append(
                f"  {model.model_id} role={model.role} status={model.status.value} "
                f"provider={model.provider} active={model.is_active} "
                f"capabilities={','.join(sorted(model.capabilities)) or '-'}",
            )
        return lines

    def select(self, command: ModelsSelectCommand) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        selector = ModelSelector(
            _registry(settings, command.registry_path),
            canary_config=settings.selection.canary_config(),
        )
        context = SelectionContext(
            role=command.role,
            capabilities=frozenset(command.capabilities) or None,
            user_id=command.user_id or settings.user_context.user_id,
            project_id=command.project_id or settings.user_context.project_id,
            is_critical=command.critical,
        )

        lines: list[str] = []
        for _ in range(max(1, command.repeat)):
            result = selector.select_model(context)
            if result is None:
                return [f"No model available for role {command.role!r}"]
            lines.append(
                f"Selected {result.model.model_id} reason={result.reason.value} "
                f"confidence={result.confidence:.2f} bucket={result.metadata['bucket']} "
                f"canary_enabled={result.metadata['canary_enabled']}",
            )
        stats = selector.get_selection_stats()
        lines.append(
            f"Selections: total={stats.total_selections} stable={stats.stable_selections} "
            f"canary={stats.canary_selections} canary_pct={stats.canary_percentage:.1f}",
        )
        return lines

    def show_canary(self) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        config = settings.selection.canary_config()
        return [
            f"Enabled: {config.enabled}",
            f"Percentage: {config.percentage:g}",
            f"Critical tasks only: {config.critical_tasks_only}",
            f"Excluded roles: {', '.join(sorted(config.exclude_roles)) or '-'}",
        ]

    def bucket(self, command: CanaryBucketCommand) -> list[str]:
        settings = Settings.from_env()
        percentage = (
            command.percentage
            if command.percentage is not None
            else settings.selection.canary_percentage
        )
        user_id = command.user_id or settings.user_context.user_id
        project_id = command.project_id or settings.user_context.project_id
        bucket = compute_bucket(user_id, project_id, command.role)
        population = "canary" if in_canary(bucket, percentage) else "stable"
        return [
            f"Key: {bucket_key(user_id, project_id, command.role)}",
            f"Bucket: {bucket} -> {population} at {percentage:g}%",
        ]


def _registry(settings: Settings, override: Path | None) -> ModelRegistry:
    path = override or settings.selection.model_registry_path
    return ModelRegistry.from_file(path) if path is not None else default_model_registry()
