"""
Prerequisite graph validation.

Edges point from an exercise to the exercises it requires. Problems are
reported, never raised: callers decide whether to block unlocking.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum

from cql_clinic.exercises.models import DependencyReport, Exercise


class _Mark(Enum):
    UNVISITED = 0
    VISITING = 1
    DONE = 2


def validate_exercise_dependencies(exercises: Iterable[Exercise]) -> DependencyReport:
    """
    Build the prerequisite graph and check it for dangling references and cycles.

    Args:
        exercises: The loaded collection

    Returns:
        DependencyReport; ``valid`` is False on any missing prerequisite or cycle
    """
    report = DependencyReport()
    exercises = list(exercises)
    exercise_ids = {exercise.id for exercise in exercises}

    for exercise in exercises:
        if exercise.id in report.dependency_graph:
            report.warnings.append(f"Duplicate exercise id: {exercise.id}")

        deps: list[str] = []
        for prereq_id in exercise.prerequisites:
            if prereq_id in deps:
                report.warnings.append(
                    f"Exercise {exercise.id} lists prerequisite {prereq_id} more than once"
                )
                continue
            if prereq_id not in exercise_ids:
                report.errors.append(
                    f"Exercise {exercise.id} references missing prerequisite: {prereq_id}"
                )
                report.valid = False
            deps.append(prereq_id)

        report.dependency_graph[exercise.id] = deps

    report.cycles = detect_circular_dependencies(report.dependency_graph)
    for cycle in report.cycles:
        report.errors.append(f"Circular dependency detected: {cycle}")
        report.valid = False

    return report


def detect_circular_dependencies(graph: Mapping[str, Sequence[str]]) -> list[str]:
    """
    Find cycles with an iterative three-colour depth-first search.

    Each cycle is rendered from the first repeated node round to itself,
    e.g. ``"a -> b -> c -> a"``. Nodes referenced but not present in the
    graph are treated as leaves.
    """
    marks: dict[str, _Mark] = {node: _Mark.UNVISITED for node in graph}
    cycles: list[str] = []

    for root in graph:
        if marks[root] is not _Mark.UNVISITED:
            continue

        path: list[str] = [root]
        stack = [iter(graph[root])]
        marks[root] = _Mark.VISITING

        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                marks[path.pop()] = _Mark.DONE
                stack.pop()
                continue

            mark = marks.get(dep)
            if mark is None or mark is _Mark.DONE:
                continue
            if mark is _Mark.VISITING:
                start = path.index(dep)
                cycles.append(" -> ".join(path[start:] + [dep]))
                continue

            marks[dep] = _Mark.VISITING
            path.append(dep)
            stack.append(iter(graph[dep]))

    return cycles
