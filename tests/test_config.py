from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_matrix.config import ExecutorSettings, SelectionSettings, Settings

pytestmark = [
    allure.epic("Runtime"),
    allure.feature("Configuration"),
]


def test_defaults_are_valid() -> None:
    settings = Settings.from_env()

    settings.validate()
    assert settings.db_path == Path(".agent_matrix.db")
    assert settings.executor.job_store == "memory"
    assert settings.executor.max_parallel_tasks == 0
    assert settings.selection.model_registry_path is None
    assert settings.user_context.user_id == "local_user"
    assert settings.user_context.project_id is None


def test_env_overrides_are_loaded(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_MATRIX_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("AGENT_MATRIX_JOB_STORE", "SQLite")
    monkeypatch.setenv("AGENT_MATRIX_MAX_PARALLEL_TASKS", "4")
    monkeypatch.setenv("AGENT_MATRIX_CANARY_PERCENT", "25")
    monkeypatch.setenv("AGENT_MATRIX_CANARY_ENABLED", "off")
    monkeypatch.setenv("AGENT_MATRIX_CANARY_CRITICAL_ONLY", "yes")
    monkeypatch.setenv("AGENT_MATRIX_CANARY_EXCLUDE_ROLES", "qa, security_checker,qa")
    monkeypatch.setenv("AGENT_MATRIX_MODEL_REGISTRY_PATH", str(tmp_path / "models.json"))
    monkeypatch.setenv("AGENT_MATRIX_USER_ID", "u-env")
    monkeypatch.setenv("AGENT_MATRIX_PROJECT_ID", "p-env")

    settings = Settings.from_env()

    settings.validate()
    assert settings.db_path == tmp_path / "env.db"
    assert settings.executor.job_store == "sqlite"
    assert settings.executor.max_parallel_tasks == 4
    assert settings.selection.model_registry_path == tmp_path / "models.json"
    assert settings.user_context.user_id == "u-env"
    assert settings.user_context.project_id == "p-env"

    config = settings.selection.canary_config()
    assert config.enabled is False
    assert config.percentage == 25.0
    assert config.critical_tasks_only is True
    assert config.exclude_roles == frozenset({"qa", "security_checker"})


def test_explicit_db_path_wins_over_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_MATRIX_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_MATRIX_CANARY_ENABLED", "maybe")

    with pytest.raises(ValueError, match="AGENT_MATRIX_CANARY_ENABLED"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(executor=ExecutorSettings(job_store="redis")), "AGENT_MATRIX_JOB_STORE"),
        (
            Settings(executor=ExecutorSettings(max_parallel_tasks=-1)),
            "AGENT_MATRIX_MAX_PARALLEL_TASKS",
        ),
        (
            Settings(executor=ExecutorSettings(job_wait_timeout_seconds=0)),
            "AGENT_MATRIX_JOB_WAIT_TIMEOUT_SECONDS",
        ),
        (
            Settings(selection=SelectionSettings(canary_percentage=101)),
            "AGENT_MATRIX_CANARY_PERCENT",
        ),
        (Settings(log_level="LOUD"), "AGENT_MATRIX_LOG_LEVEL"),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
