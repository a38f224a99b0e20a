"""JSON contracts for task graphs and job reports."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from agent_matrix.orchestrator.models import (
    ArtifactRef,
    GraphMetadata,
    Job,
    Task,
    TaskGraph,
    TaskOutcome,
)

GRAPH_CONTRACT_VERSION = 1


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def read_task_graph(path: Path) -> TaskGraph:
    """Load a task graph file."""

    return parse_task_graph(load_json(path))


def parse_task_graph(raw: dict[str, Any]) -> TaskGraph:  # noqa: C901
    """Build a :class:`TaskGraph` from its wire form.

    Accepts both ``snake_case`` keys and the camelCase keys emitted by the
    intent router (``estimatedTimeMs``, ``riskLevel`` ...). Only type errors are
    raised here; graph-level rules live in the validator.
    """

    graph_id = raw.get("id", raw.get("graph_id", ""))
    if not isinstance(graph_id, str):
        raise TypeError("task_graph.id must be a string")
    raw_tasks = raw.get("tasks")
    if not isinstance(raw_tasks, list):
        raise TypeError("task_graph.tasks must be an array")

    estimated = raw.get("estimated_duration_ms", raw.get("estimatedTimeMs", 0))
    if not isinstance(estimated, int | float) or estimated < 0:
        raise ValueError("task_graph.estimated_duration_ms must be a non-negative number")

    intent = raw.get("intent", "")
    if not isinstance(intent, str):
        raise TypeError("task_graph.intent must be a string")

    tasks = [_parse_task(item, index) for index, item in enumerate(raw_tasks)]
    return TaskGraph(
        graph_id=graph_id,
        tasks=tasks,
        estimated_duration_ms=int(estimated),
        metadata=_parse_metadata(raw.get("metadata", {})),
        intent=intent,
    )


def _parse_task(item: Any, index: int) -> Task:
    if not isinstance(item, dict):
        raise TypeError(f"task_graph.tasks[{index}] must be an object")
    task_id = item.get("id", item.get("task_id", ""))
    task_type = item.get("type", item.get("task_type", ""))
    agent_ref = item.get("agent", item.get("agent_ref", ""))
    dependencies = item.get("dependencies", [])
    inputs = item.get("inputs", {})
    constraints = item.get("constraints")

    if not isinstance(task_id, str):
        raise TypeError(f"task_graph.tasks[{index}].id must be a string")
    if not isinstance(task_type, str):
        raise TypeError(f"task_graph.tasks[{index}].type must be a string")
    if not isinstance(agent_ref, str):
        raise TypeError(f"task_graph.tasks[{index}].agent must be a string")
    if not isinstance(dependencies, list) or not all(
        isinstance(dep, str) for dep in dependencies
    ):
        raise TypeError(f"task_graph.tasks[{index}].dependencies must be an array of strings")
    if not isinstance(inputs, dict):
        raise TypeError(f"task_graph.tasks[{index}].inputs must be an object")
    if constraints is not None and not isinstance(constraints, dict):
        raise TypeError(f"task_graph.tasks[{index}].constraints must be an object")

    return Task(
        task_id=task_id,
        task_type=task_type,
        agent_ref=agent_ref,
        dependencies=tuple(dict.fromkeys(dependencies)),
        inputs=inputs,
        constraints=constraints,
    )


def _parse_metadata(raw: Any) -> GraphMetadata:
    if not isinstance(raw, dict):
        raise TypeError("task_graph.metadata must be an object")
    confidence = raw.get("confidence", 1.0)
    if not isinstance(confidence, int | float) or not 0.0 <= confidence <= 1.0:
        raise ValueError("task_graph.metadata.confidence must be a number in [0, 1]")
    return GraphMetadata(
        complexity=str(raw.get("complexity", "medium")),
        confidence=float(confidence),
        risk_level=str(raw.get("risk_level", raw.get("riskLevel", "low"))),
        requires_approval=bool(raw.get("requires_approval", raw.get("requiresApproval", False))),
    )


def task_graph_to_dict(graph: TaskGraph) -> dict[str, Any]:
    """Serialize a graph to its wire form."""

    return {
        "contract_version": GRAPH_CONTRACT_VERSION,
        "id": graph.graph_id,
        "intent": graph.intent,
        "estimated_duration_ms": graph.estimated_duration_ms,
        "metadata": {
            "complexity": graph.metadata.complexity,
            "confidence": graph.metadata.confidence,
            "risk_level": graph.metadata.risk_level,
            "requires_approval": graph.metadata.requires_approval,
        },
        "tasks": [
            {
                "id": task.task_id,
                "type": task.task_type,
                "agent": task.agent_ref,
                "dependencies": list(task.dependencies),
                "inputs": task.inputs,
                "constraints": task.constraints,
            }
            for task in graph.tasks
        ],
    }


def job_to_dict(job: Job) -> dict[str, Any]:
    """Serialize a job snapshot for CLI JSON output and persistence."""

    return {
        "job_id": job.job_id,
        "graph_id": job.graph_id,
        "user_id": job.user_id,
        "project_id": job.project_id,
        "status": job.status.value,
        "progress": {
            "completed_count": job.progress.completed_count,
            "total_count": job.progress.total_count,
            "current_task_id": job.progress.current_task_id,
        },
        "started_at": job.started_at.isoformat(),
        "running_at": job.running_at.isoformat() if job.running_at else None,
        "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        "error": job.error,
        "error_kind": job.error_kind.value if job.error_kind else None,
        "failed_task_id": job.failed_task_id,
        "results": (
            [task_outcome_to_dict(outcome) for outcome in job.results]
            if job.results is not None
            else None
        ),
    }


def task_outcome_to_dict(outcome: TaskOutcome) -> dict[str, Any]:
    return {
        "task_id": outcome.task_id,
        "success": outcome.success,
        "outputs": outcome.outputs,
        "artifacts": [
            {
                "id": artifact.artifact_id,
                "type": artifact.artifact_type,
                "name": artifact.name,
                "locator": artifact.locator,
            }
            for artifact in outcome.artifacts
        ],
    }


def task_outcome_from_dict(raw: dict[str, Any]) -> TaskOutcome:
    return TaskOutcome(
        task_id=str(raw["task_id"]),
        success=bool(raw["success"]),
        outputs=dict(raw.get("outputs") or {}),
        artifacts=[
            ArtifactRef(
                artifact_id=str(artifact["id"]),
                artifact_type=str(artifact["type"]),
                name=str(artifact["name"]),
                locator=artifact.get("locator"),
            )
            for artifact in raw.get("artifacts", [])
        ],
    )
