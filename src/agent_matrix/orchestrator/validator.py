"""Structural validation of task graphs before execution."""

from __future__ import annotations

from collections import Counter
from collections.abc import Collection
from dataclasses import dataclass, field

from agent_matrix.orchestrator.models import Task, TaskGraph


@dataclass(slots=True)
class GraphValidationResult:
    """Result of task graph validation."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def validate_task_graph(
    graph: TaskGraph,
    *,
    known_agents: Collection[str] | None = None,
) -> GraphValidationResult:
    """Check ids, dependency references and acyclicity of ``graph``.

    All problems are collected rather than stopping at the first one. Cycle
    detection only runs over tasks with unique ids and resolvable dependencies,
    so a dangling reference is reported once as dangling and not again as an
    ordering failure.
    """

    errors: list[str] = []
    if not graph.graph_id.strip():
        errors.append("Task graph must have an id")

    for index, task in enumerate(graph.tasks):
        if not task.task_id.strip():
            errors.append(f"Task at position {index} is missing an id")
        if not task.agent_ref.strip():
            errors.append(f"Task {task.task_id!r} is missing an agent reference")
        elif known_agents is not None and task.agent_ref not in known_agents:
            errors.append(f"Task {task.task_id!r} references unknown agent {task.agent_ref!r}")

    counts = Counter(task.task_id for task in graph.tasks)
    for task_id, count in counts.items():
        if count > 1:
            errors.append(f"Duplicate task id {task_id!r} appears {count} times")

    known_ids = set(counts)
    for task in graph.tasks:
        for dependency in task.dependencies:
            if dependency == task.task_id:
                errors.append(f"Task {task.task_id!r} depends on itself")
            elif dependency not in known_ids:
                errors.append(
                    f"Task {task.task_id!r} depends on unknown task {dependency!r}",
                )

    cycle = find_cycle(graph.tasks)
    # a self-loop was already reported as "depends on itself"
    if len(cycle) > 2:
        errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

    return GraphValidationResult(valid=not errors, errors=errors)


def topological_rounds(tasks: list[Task]) -> tuple[list[list[str]], list[str]]:
    """Group task ids into dependency rounds.

    Returns the rounds that can be scheduled and the ids that can never become
    ready. Unknown dependency ids are ignored here; they are reported by
    :func:`validate_task_graph`.
    """

    known_ids = {task.task_id for task in tasks}
    pending = {
        task.task_id: {dep for dep in task.dependencies if dep in known_ids}
        for task in tasks
    }
    order = [task.task_id for task in tasks if task.task_id in pending]
    done: set[str] = set()
    rounds: list[list[str]] = []
    while True:
        ready = [
            task_id
            for task_id in dict.fromkeys(order)
            if task_id not in done and pending[task_id] <= done
        ]
        if not ready:
            break
        rounds.append(ready)
        done.update(ready)
    blocked = [task_id for task_id in dict.fromkeys(order) if task_id not in done]
    return rounds, blocked


def find_cycle(tasks: list[Task]) -> list[str]:
    """Return one dependency cycle as a closed path, or an empty list."""

    _, blocked = topological_rounds(tasks)
    if not blocked:
        return []

    blocked_set = set(blocked)
    edges: dict[str, list[str]] = {task_id: [] for task_id in blocked}
    for task in tasks:
        if task.task_id in blocked_set:
            for dep in task.dependencies:
                if dep in blocked_set and dep != task.task_id:
                    edges[task.task_id].append(dep)
                elif dep == task.task_id:
                    return [task.task_id, task.task_id]

    # Every blocked task waits on another blocked task, so walking the first
    # edge from any of them must revisit a node.
    path: list[str] = []
    position: dict[str, int] = {}
    current = blocked[0]
    while current not in position:
        position[current] = len(path)
        path.append(current)
        successors = edges.get(current) or []
        if not successors:
            return []
        current = successors[0]
    return [*path[position[current] :], current]
