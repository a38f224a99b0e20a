"""Runtime configuration for the orchestrator and model selection."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from agent_matrix.selection.models import CanaryConfig

JOB_STORE_BACKENDS = ("memory", "sqlite")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class ExecutorSettings:
    """Task graph execution settings."""

    job_store: str = "memory"
    max_parallel_tasks: int = 0
    job_wait_timeout_seconds: float = 600.0
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class SelectionSettings:
    """Model catalog and canary rollout settings."""

    model_registry_path: Path | None = None
    canary_enabled: bool = True
    canary_percentage: float = 10.0
    canary_critical_only: bool = False
    canary_exclude_roles: tuple[str, ...] = ()

    def canary_config(self) -> CanaryConfig:
        return CanaryConfig(
            enabled=self.canary_enabled,
            percentage=self.canary_percentage,
            critical_tasks_only=self.canary_critical_only,
            exclude_roles=frozenset(self.canary_exclude_roles),
        )


@dataclass(slots=True)
class UserContextSettings:
    """Identity used when the caller does not pass one."""

    user_id: str = "local_user"
    project_id: str | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".agent_matrix.db")
    log_level: str = "WARNING"
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    selection: SelectionSettings = field(default_factory=SelectionSettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        registry_path = os.getenv("AGENT_MATRIX_MODEL_REGISTRY_PATH", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("AGENT_MATRIX_DB_PATH", ".agent_matrix.db")),
            log_level=os.getenv("AGENT_MATRIX_LOG_LEVEL", "WARNING").strip().upper(),
            executor=ExecutorSettings(
                job_store=os.getenv("AGENT_MATRIX_JOB_STORE", "memory").strip().lower(),
                max_parallel_tasks=int(os.getenv("AGENT_MATRIX_MAX_PARALLEL_TASKS", "0")),
                job_wait_timeout_seconds=float(
                    os.getenv("AGENT_MATRIX_JOB_WAIT_TIMEOUT_SECONDS", "600"),
                ),
                busy_timeout_ms=int(os.getenv("AGENT_MATRIX_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            ),
            selection=SelectionSettings(
                model_registry_path=Path(registry_path) if registry_path else None,
                canary_enabled=_env_bool("AGENT_MATRIX_CANARY_ENABLED", default=True),
                canary_percentage=float(os.getenv("AGENT_MATRIX_CANARY_PERCENT", "10")),
                canary_critical_only=_env_bool("AGENT_MATRIX_CANARY_CRITICAL_ONLY", default=False),
                canary_exclude_roles=_env_csv("AGENT_MATRIX_CANARY_EXCLUDE_ROLES"),
            ),
            user_context=UserContextSettings(
                user_id=os.getenv("AGENT_MATRIX_USER_ID", "local_user"),
                project_id=os.getenv("AGENT_MATRIX_PROJECT_ID") or None,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        if self.executor.job_store not in JOB_STORE_BACKENDS:
            raise ValueError(
                f"AGENT_MATRIX_JOB_STORE must be one of {', '.join(JOB_STORE_BACKENDS)}, "
                f"got {self.executor.job_store!r}.",
            )
        if self.executor.max_parallel_tasks < 0:
            raise ValueError("AGENT_MATRIX_MAX_PARALLEL_TASKS must be >= 0.")
        if self.executor.job_wait_timeout_seconds <= 0:
            raise ValueError("AGENT_MATRIX_JOB_WAIT_TIMEOUT_SECONDS must be > 0.")
        if self.executor.busy_timeout_ms <= 0:
            raise ValueError("AGENT_MATRIX_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if not 0.0 <= self.selection.canary_percentage <= 100.0:
            raise ValueError("AGENT_MATRIX_CANARY_PERCENT must be between 0 and 100.")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"AGENT_MATRIX_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, "
                f"got {self.log_level!r}.",
            )
        if not self.user_context.user_id.strip():
            raise ValueError("AGENT_MATRIX_USER_ID must be non-empty.")


def _env_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(dict.fromkeys(part.strip() for part in raw.split(",") if part.strip()))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
