"""CLI entrypoint for agent-matrix."""

import logging
import os
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agent_matrix import __version__
from agent_matrix.orchestrator.controllers import (
    CommandResult,
    GraphRunCommand,
    GraphValidateCommand,
    JobsCancelCommand,
    JobsInspectCommand,
    JobsListCommand,
    OrchestratorCliController,
)
from agent_matrix.selection.controllers import (
    CanaryBucketCommand,
    ModelsListCommand,
    ModelsSelectCommand,
    SelectionCliController,
)

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()
SELECTION_CONTROLLER = SelectionCliController()

_JOB_STATUSES = ["pending", "running", "completed", "failed", "cancelled"]
_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.version_option(version=__version__, prog_name="agent-matrix")
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level; defaults to AGENT_MATRIX_LOG_LEVEL or WARNING.",
)
def agent_matrix(log_level: str | None) -> None:
    """Task graph orchestration and model selection CLI."""

    level = (log_level or os.getenv("AGENT_MATRIX_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_matrix.group()
def graph() -> None:
    """Task graph commands."""


@graph.command("validate")
@click.argument("graph_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--check-agents/--no-check-agents",
    default=True,
    show_default=True,
    help="Require every agent reference to be registered.",
)
def graph_validate(graph_path: Path, check_agents: bool) -> None:
    """Validate a task graph file and print its execution rounds."""

    result = _guard_input(
        lambda: ORCHESTRATOR_CONTROLLER.validate_graph(
            GraphValidateCommand(graph_path=graph_path, check_agents=check_agents),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Task graph is invalid.")


@graph.command("run")
@click.argument("graph_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--user-id", default=None, help="Submitting user; defaults to AGENT_MATRIX_USER_ID.")
@click.option("--project-id", default=None, help="Optional project id.")
@click.option("--job-id", default=None, help="Explicit job id (must not be active).")
@click.option(
    "--store",
    "job_store",
    type=click.Choice(["memory", "sqlite"], case_sensitive=False),
    default=None,
    help="Job store backend; defaults to AGENT_MATRIX_JOB_STORE.",
)
@click.option(
    "--max-parallel",
    type=click.IntRange(min=0),
    default=None,
    help="Cap on concurrently running tasks per round (0 = unbounded).",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0.1),
    default=None,
    help="How long to wait for the job; defaults to AGENT_MATRIX_JOB_WAIT_TIMEOUT_SECONDS.",
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the final job report as JSON.",
)
def graph_run(  # noqa: PLR0913
    graph_path: Path,
    db_path: Path | None,
    user_id: str | None,
    project_id: str | None,
    job_id: str | None,
    job_store: str | None,
    max_parallel: int | None,
    timeout_seconds: float | None,
    output_path: Path | None,
) -> None:
    """Run a task graph to completion and print the job report."""

    result = _guard_input(
        lambda: ORCHESTRATOR_CONTROLLER.run_graph(
            GraphRunCommand(
                db_path=db_path,
                graph_path=graph_path,
                user_id=user_id,
                project_id=project_id,
                job_id=job_id,
                job_store=job_store.lower() if job_store else None,
                max_parallel_tasks=max_parallel,
                timeout_seconds=timeout_seconds,
                output_path=output_path,
            ),
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Job did not complete.")


@agent_matrix.group()
def jobs() -> None:
    """Persisted job commands (SQLite job store)."""


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(_JOB_STATUSES, case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List jobs, latest first."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.list_jobs(
            JobsListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@jobs.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Inspect one job with its task runs."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.inspect_job(JobsInspectCommand(db_path=db_path, job_id=job_id)),
    )


@jobs.command("cancel")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--job-id", required=True, help="Job id.")
def jobs_cancel(db_path: Path | None, job_id: str) -> None:
    """Cancel a pending or running job."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.cancel_job(JobsCancelCommand(db_path=db_path, job_id=job_id)),
    )


@agent_matrix.group()
def models() -> None:
    """Model catalog commands."""


@models.command("list")
@click.option(
    "--registry",
    "registry_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Model catalog JSON; defaults to AGENT_MATRIX_MODEL_REGISTRY_PATH or built-in.",
)
@click.option("--role", default=None, help="Optional role filter.")
@click.option(
    "--status",
    type=click.Choice(["stable", "canary", "disabled"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
def models_list(registry_path: Path | None, role: str | None, status: str | None) -> None:
    """List catalog models."""

    _emit_lines(
        SELECTION_CONTROLLER.list_models(
            ModelsListCommand(registry_path=registry_path, role=role, status=status),
        ),
    )


@models.command("select")
@click.option(
    "--registry",
    "registry_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Model catalog JSON; defaults to AGENT_MATRIX_MODEL_REGISTRY_PATH or built-in.",
)
@click.option("--role", required=True, help="Role to select a model for.")
@click.option("--user-id", default=None, help="User id used for canary bucketing.")
@click.option("--project-id", default=None, help="Project id used for canary bucketing.")
@click.option(
    "--capability",
    "capabilities",
    multiple=True,
    help="Required model capability. Can be repeated.",
)
@click.option("--critical", is_flag=True, default=False, help="Mark the request as critical.")
@click.option(
    "--repeat",
    type=click.IntRange(min=1, max=100),
    default=1,
    show_default=True,
    help="Repeat the selection to check it is stable.",
)
def models_select(  # noqa: PLR0913
    registry_path: Path | None,
    role: str,
    user_id: str | None,
    project_id: str | None,
    capabilities: tuple[str, ...],
    critical: bool,
    repeat: int,
) -> None:
    """Run the model selector once (or a few times) and print its decision."""

    _emit_lines(
        SELECTION_CONTROLLER.select(
            ModelsSelectCommand(
                registry_path=registry_path,
                role=role,
                user_id=user_id,
                project_id=project_id,
                capabilities=capabilities,
                critical=critical,
                repeat=repeat,
            ),
        ),
    )


@agent_matrix.group()
def canary() -> None:
    """Canary rollout commands."""


@canary.command("show")
def canary_show() -> None:
    """Show the canary configuration loaded from the environment."""

    _emit_lines(SELECTION_CONTROLLER.show_canary())


@canary.command("bucket")
@click.option("--role", required=True, help="Role the request is for.")
@click.option("--user-id", default=None, help="User id.")
@click.option("--project-id", default=None, help="Project id.")
@click.option(
    "--percentage",
    type=click.FloatRange(min=0, max=100),
    default=None,
    help="Canary percentage; defaults to AGENT_MATRIX_CANARY_PERCENT.",
)
def canary_bucket(
    role: str,
    user_id: str | None,
    project_id: str | None,
    percentage: float | None,
) -> None:
    """Show which canary bucket and population an identity maps to."""

    _emit_lines(
        SELECTION_CONTROLLER.bucket(
            CanaryBucketCommand(
                role=role,
                user_id=user_id,
                project_id=project_id,
                percentage=percentage,
            ),
        ),
    )


def _guard_input(call: Callable[[], CommandResult]) -> CommandResult:
    try:
        return call()
    except (TypeError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_matrix()
