from __future__ import annotations

import json
import re
from pathlib import Path

import allure
from click.testing import CliRunner

from agent_matrix.main import agent_matrix

pytestmark = [
    allure.epic("Runtime"),
    allure.feature("CLI"),
]


def _write_graph(path: Path, tasks: list[dict], *, graph_id: str = "graph-cli") -> Path:
    path.write_text(json.dumps({"id": graph_id, "tasks": tasks}), "utf-8")
    return path


def _echo_graph(tmp_path: Path) -> Path:
    return _write_graph(
        tmp_path / "graph.json",
        [
            {"id": "plan", "type": "planning", "agent": "echo", "inputs": {"topic": "auth"}},
            {"id": "build", "type": "build", "agent": "echo", "dependencies": ["plan"]},
            {"id": "docs", "type": "docs", "agent": "echo", "dependencies": ["plan"]},
        ],
    )


def test_graph_validate_prints_rounds(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(agent_matrix, ["graph", "validate", str(_echo_graph(tmp_path))])

    assert result.exit_code == 0
    assert "Graph graph-cli is valid: tasks=3 rounds=2" in result.output
    assert "round 2: build, docs" in result.output


def test_graph_validate_reports_errors(tmp_path: Path) -> None:
    path = _write_graph(
        tmp_path / "bad.json",
        [
            {"id": "a", "type": "t", "agent": "echo", "dependencies": ["b"]},
            {"id": "b", "type": "t", "agent": "Ghost", "dependencies": ["a"]},
        ],
    )
    runner = CliRunner()

    result = runner.invoke(agent_matrix, ["graph", "validate", str(path)])

    assert result.exit_code == 1
    assert "Task 'b' references unknown agent 'Ghost'" in result.output
    assert "Circular dependency detected: a -> b -> a" in result.output

    relaxed = runner.invoke(agent_matrix, ["graph", "validate", "--no-check-agents", str(path)])
    assert "unknown agent" not in relaxed.output


def test_graph_validate_rejects_malformed_file(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"id": "g", "tasks": "nope"}), "utf-8")
    runner = CliRunner()

    result = runner.invoke(agent_matrix, ["graph", "validate", str(path)])

    assert result.exit_code == 1
    assert "tasks must be an array" in result.output


def test_graph_run_with_sqlite_store_and_job_commands(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    report = tmp_path / "out" / "report.json"
    runner = CliRunner()

    run = runner.invoke(
        agent_matrix,
        [
            "graph",
            "run",
            str(_echo_graph(tmp_path)),
            "--db-path",
            str(db_path),
            "--store",
            "sqlite",
            "--user-id",
            "u-cli",
            "--max-parallel",
            "1",
            "--output",
            str(report),
        ],
    )
    assert run.exit_code == 0
    assert "Status: completed progress=3/3" in run.output
    match = re.search(r"job_id=(job_[a-f0-9]+)", run.output)
    assert match is not None
    job_id = match.group(1)

    payload = json.loads(report.read_text("utf-8"))
    assert payload["status"] == "completed"
    assert payload["user_id"] == "u-cli"
    assert payload["running_at"] is not None
    assert payload["results"][1]["outputs"]["received_from"] == ["plan"]

    listing = runner.invoke(agent_matrix, ["jobs", "list", "--db-path", str(db_path)])
    assert listing.exit_code == 0
    assert "Jobs: 1" in listing.output
    assert job_id in listing.output

    inspect = runner.invoke(
        agent_matrix,
        ["jobs", "inspect", "--db-path", str(db_path), "--job-id", job_id],
    )
    assert inspect.exit_code == 0
    assert "Status: completed" in inspect.output
    assert "Running since: -" not in inspect.output
    assert "Task runs: 3" in inspect.output

    cancel = runner.invoke(
        agent_matrix,
        ["jobs", "cancel", "--db-path", str(db_path), "--job-id", job_id],
    )
    assert cancel.exit_code == 0
    assert f"Job {job_id} status=completed" in cancel.output


def test_graph_run_reports_task_failure(tmp_path: Path) -> None:
    path = _write_graph(
        tmp_path / "fail.json",
        [
            {"id": "a", "type": "t", "agent": "echo", "inputs": {"fail": "quota exceeded"}},
            {"id": "b", "type": "t", "agent": "echo", "dependencies": ["a"]},
        ],
    )
    runner = CliRunner()

    result = runner.invoke(agent_matrix, ["graph", "run", str(path)])

    assert result.exit_code == 1
    assert "Status: failed progress=0/2" in result.output
    assert "Error (execution): Task a failed: quota exceeded" in result.output


def test_inspect_unknown_job(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        agent_matrix,
        ["jobs", "inspect", "--db-path", str(tmp_path / "cli.db"), "--job-id", "nope"],
    )

    assert result.exit_code == 0
    assert "Job not found: nope" in result.output


def test_models_list_and_select() -> None:
    runner = CliRunner()

    listing = runner.invoke(agent_matrix, ["models", "list", "--role", "code_generator"])
    assert listing.exit_code == 0
    assert "Models: 2" in listing.output
    assert "qwen-coder role=code_generator status=canary" in listing.output

    select = runner.invoke(
        agent_matrix,
        [
            "models",
            "select",
            "--role",
            "code_architect",
            "--user-id",
            "u-1",
            "--repeat",
            "3",
        ],
    )
    assert select.exit_code == 0
    assert select.output.count("Selected claude-architect reason=performance_based") == 3
    assert "Selections: total=3 stable=3 canary=0" in select.output


def test_models_select_unknown_role() -> None:
    runner = CliRunner()

    result = runner.invoke(agent_matrix, ["models", "select", "--role", "poet"])

    assert result.exit_code == 0
    assert "No model available for role 'poet'" in result.output


def test_canary_commands_follow_env(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_MATRIX_CANARY_PERCENT", "100")
    monkeypatch.setenv("AGENT_MATRIX_CANARY_EXCLUDE_ROLES", "code_architect")
    runner = CliRunner()

    show = runner.invoke(agent_matrix, ["canary", "show"])
    assert show.exit_code == 0
    assert "Percentage: 100" in show.output
    assert "Excluded roles: code_architect" in show.output

    bucket = runner.invoke(
        agent_matrix,
        ["canary", "bucket", "--role", "qa", "--user-id", "u-1", "--project-id", "p-1"],
    )
    assert bucket.exit_code == 0
    assert "Key: u-1:p-1:qa" in bucket.output
    assert "-> canary at 100%" in bucket.output


def test_invalid_env_config_is_reported(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_MATRIX_JOB_STORE", "redis")
    runner = CliRunner()

    result = runner.invoke(agent_matrix, ["graph", "run", str(_echo_graph(tmp_path))])

    assert result.exit_code == 1
    assert "AGENT_MATRIX_JOB_STORE" in result.output
