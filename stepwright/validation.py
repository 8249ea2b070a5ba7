"""Structural checks for workflow templates."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Set

from pydantic import BaseModel, Field

from .contracts import AgentStep

WHITE, GREY, BLACK = 0, 1, 2


class ValidationReport(BaseModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    layers: List[List[str]] = Field(default_factory=list)


def unmet_dependencies(step: AgentStep, completed: Iterable[str]) -> List[str]:
    done = set(completed)
    return [dep for dep in step.dependencies if dep not in done]


def has_cycle(steps: Sequence[AgentStep]) -> bool:
    """Detect a dependency cycle with a three-colour depth-first search."""
    graph: Dict[str, List[str]] = {s.id: list(s.dependencies) for s in steps}
    colour = {node: WHITE for node in graph}

    def visit(node: str) -> bool:
        colour[node] = GREY
        for neighbour in graph.get(node, []):
            if neighbour not in colour:
                continue
            if colour[neighbour] == GREY:
                return True
            if colour[neighbour] == WHITE and visit(neighbour):
                return True
        colour[node] = BLACK
        return False

    return any(colour[node] == WHITE and visit(node) for node in graph)


def execution_layers(steps: Sequence[AgentStep]) -> List[List[str]]:
    """Group steps into layers whose members only depend on earlier layers.

    Steps caught in a cycle never reach in-degree zero and are left out.
    """

    known = {s.id for s in steps}
    in_degree = {s.id: 0 for s in steps}
    dependents: Dict[str, List[str]] = {s.id: [] for s in steps}
    for step in steps:
        for dep in step.dependencies:
            if dep in known:
                in_degree[step.id] += 1
                dependents[dep].append(step.id)

    layers: List[List[str]] = []
    current = [s.id for s in steps if in_degree[s.id] == 0]
    while current:
        layers.append(current)
        following: List[str] = []
        for node in current:
            for child in dependents[node]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    following.append(child)
        current = following
    return layers


def validate_steps(steps: Sequence[AgentStep], metadata_keys: Iterable[str] = ()) -> ValidationReport:
    report = ValidationReport()
    ids = [s.id for s in steps]
    seen: Set[str] = set()
    for step_id in ids:
        if step_id in seen:
            report.errors.append(f"Duplicate step id: {step_id}")
        seen.add(step_id)

    for step in steps:
        for dep in step.dependencies:
            if dep not in seen:
                report.errors.append(f"Step {step.id} depends on unknown step {dep}")

    if has_cycle(steps):
        report.errors.append("Circular dependency detected in workflow")

    by_id = {s.id: s for s in steps}
    provided_globally = {"input", "output", *metadata_keys}
    for step in steps:
        available = set(provided_globally)
        for dep in step.dependencies:
            if dep in by_id:
                available.update(by_id[dep].output_variables)
                available.add(f"{dep}.output")
        for variable in step.input_variables:
            if variable not in available:
                report.warnings.append(
                    f"Step {step.id} reads {variable!r} which no dependency produces"
                )

    report.is_valid = not report.errors
    if report.is_valid:
        report.layers = execution_layers(steps)
    return report
