"""In-memory model catalog with rollout lifecycle operations."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from agent_matrix.orchestrator.contracts import load_json
from agent_matrix.selection.models import STATUS_PRIORITY, ModelConfig, ModelFilter, ModelStatus

logger = logging.getLogger(__name__)

CATALOG_SCHEMA_VERSION = 1


class ModelRegistryError(Exception):
    """Catalog lookup or lifecycle operation failed."""


class ModelNotFoundError(ModelRegistryError):
    """Model id is not in the catalog."""

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(f"Model not found: {model_id}")


class ModelRegistry:
    """Thread-safe catalog of models keyed by id.

    Readers always receive copies, so a caller holding a ``ModelConfig`` never
    observes a concurrent status change.
    """

    def __init__(self, models: list[ModelConfig] | None = None) -> None:
        self._lock = threading.Lock()
        self._models: dict[str, ModelConfig] = {}
        for model in models or []:
            self._models[model.model_id] = replace(model)

    def get_models(self, model_filter: ModelFilter | None = None) -> list[ModelConfig]:
        with self._lock:
            models = list(self._models.values())
        if model_filter is not None:
            models = [model for model in models if model_filter.matches(model)]
        return [replace(model) for model in models]

    def get_models_by_role(self, role: str) -> list[ModelConfig]:
        """Active models for ``role``, stable first, then canary, then disabled."""

        models = self.get_models(ModelFilter(role=role, is_active=True))
        return sorted(models, key=lambda model: STATUS_PRIORITY[model.status])

    def get_model(self, model_id: str) -> ModelConfig | None:
        with self._lock:
            model = self._models.get(model_id)
            return replace(model) if model is not None else None

    def add_model(  # noqa: PLR0913
        self,
        *,
        model_id: str,
        name: str,
        provider: str,
        role: str,
        capabilities: frozenset[str] = frozenset(),
        status: ModelStatus = ModelStatus.CANARY,
        version_tag: str | None = None,
    ) -> ModelConfig:
        """Register a new model; new models start as canaries unless told otherwise."""

        if not model_id.strip():
            raise ValueError("model_id must be non-empty")
        if not role.strip():
            raise ValueError("role must be non-empty")
        model = ModelConfig(
            model_id=model_id,
            name=name,
            provider=provider,
            role=role,
            capabilities=frozenset(capabilities),
            status=status,
            version_tag=version_tag,
        )
        with self._lock:
            if model_id in self._models:
                raise ModelRegistryError(f"Model already registered: {model_id}")
            self._models[model_id] = model
        logger.info("Registered model %s for role %s as %s", model_id, role, status.value)
        return replace(model)

    def update_model_status(self, model_id: str, status: ModelStatus) -> ModelConfig:
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                raise ModelNotFoundError(model_id)
            model.status = status
            snapshot = replace(model)
        logger.info("Model %s status set to %s", model_id, status.value)
        return snapshot

    def set_active(self, model_id: str, *, active: bool) -> ModelConfig:
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                raise ModelNotFoundError(model_id)
            model.is_active = active
            return replace(model)

    def promote_canary_to_stable(self, model_id: str) -> ModelConfig:
        """Make a canary the stable model of its role.

        Stable models previously serving the role are moved to ``disabled`` in
        the same critical section, so the role never has zero or two stable
        generations visible to readers.
        """

        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                raise ModelNotFoundError(model_id)
            if model.status != ModelStatus.CANARY:
                raise ModelRegistryError(
                    f"Model {model_id} is {model.status.value}, only canary models can be promoted",
                )
            demoted = [
                other
                for other in self._models.values()
                if other.role == model.role
                and other.status == ModelStatus.STABLE
                and other.model_id != model_id
            ]
            for other in demoted:
                other.status = ModelStatus.DISABLED
            model.status = ModelStatus.STABLE
            snapshot = replace(model)
        logger.info(
            "Promoted canary model %s to stable for role %s (demoted: %s)",
            model_id,
            snapshot.role,
            ", ".join(other.model_id for other in demoted) or "none",
        )
        return snapshot

    def stats(self) -> dict[str, dict[str, int]]:
        """Active model counts grouped by status, role and provider."""

        by_status: dict[str, int] = {}
        by_role: dict[str, int] = {}
        by_provider: dict[str, int] = {}
        for model in self.get_models(ModelFilter(is_active=True)):
            by_status[model.status.value] = by_status.get(model.status.value, 0) + 1
            by_role[model.role] = by_role.get(model.role, 0) + 1
            by_provider[model.provider] = by_provider.get(model.provider, 0) + 1
        return {"by_status": by_status, "by_role": by_role, "by_provider": by_provider}

    @classmethod
    def from_file(cls, path: Path) -> ModelRegistry:
        """Load a catalog from ``{"schema_version": 1, "models": [...]}``."""

        payload = load_json(path)
        version = payload.get("schema_version", CATALOG_SCHEMA_VERSION)
        if version != CATALOG_SCHEMA_VERSION:
            raise ValueError(f"Unsupported model catalog schema_version={version!r} in {path}")
        raw_models = payload.get("models")
        if not isinstance(raw_models, list):
            raise TypeError(f"Model catalog {path} must contain a 'models' array")
        models = [_parse_model(item, index) for index, item in enumerate(raw_models)]
        logger.debug("Loaded %d models from %s", len(models), path)
        return cls(models)


def _parse_model(item: Any, index: int) -> ModelConfig:
    if not isinstance(item, dict):
        raise TypeError(f"models[{index}] must be an object")
    for key in ("id", "name", "provider", "role"):
        if not isinstance(item.get(key), str) or not item[key].strip():
            raise ValueError(f"models[{index}].{key} must be a non-empty string")
    capabilities = item.get("capabilities", [])
    if not isinstance(capabilities, list):
        raise TypeError(f"models[{index}].capabilities must be an array")
    created_at = item.get("created_at")
    return ModelConfig(
        model_id=item["id"],
        name=item["name"],
        provider=item["provider"],
        role=item["role"],
        capabilities=frozenset(str(capability) for capability in capabilities),
        status=ModelStatus(item.get("status", ModelStatus.CANARY.value)),
        is_active=bool(item.get("is_active", True)),
        version_tag=item.get("version_tag"),
        created_at=datetime.fromisoformat(created_at) if created_at else _catalog_epoch(),
    )


def _catalog_epoch() -> datetime:
    return datetime.fromisoformat("2025-01-01T00:00:00+00:00")


_DEFAULT_CATALOG: tuple[tuple[str, str, str, str, ModelStatus, tuple[str, ...]], ...] = (
    (
        "claude-architect",
        "Claude",
        "anthropic",
        "code_architect",
        ModelStatus.STABLE,
        ("code_generation", "code_review", "architectural_guidance", "refactoring"),
    ),
    (
        "deepseek-coder",
        "DeepSeek",
        "deepseek",
        "code_generator",
        ModelStatus.STABLE,
        ("code_generation", "code_optimization", "algorithm_design", "data_structures"),
    ),
    (
        "qwen-coder",
        "Qwen Coder",
        "alibaba",
        "code_generator",
        ModelStatus.CANARY,
        ("code_generation", "code_optimization", "data_structures"),
    ),
    (
        "mistral-guard",
        "Mistral",
        "mistral",
        "security_checker",
        ModelStatus.STABLE,
        ("security_analysis", "policy_enforcement", "vulnerability_detection"),
    ),
    (
        "grok-debugger",
        "Grok",
        "xai",
        "systems_debugger",
        ModelStatus.CANARY,
        ("debugging", "test_generation", "infrastructure_analysis"),
    ),
    (
        "gpt-generalist",
        "GPT",
        "openai",
        "systems_debugger",
        ModelStatus.STABLE,
        ("debugging", "test_generation", "code_review"),
    ),
)


def default_model_registry() -> ModelRegistry:
    """Built-in catalog used when no catalog file is configured."""

    return ModelRegistry(
        [
            ModelConfig(
                model_id=model_id,
                name=name,
                provider=provider,
                role=role,
                capabilities=frozenset(capabilities),
                status=status,
                created_at=_catalog_epoch(),
            )
            for model_id, name, provider, role, status, capabilities in _DEFAULT_CATALOG
        ],
    )
