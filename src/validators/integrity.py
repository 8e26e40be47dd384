# src/validators/integrity.py — v1
"""Dependency-graph and cross-document integrity checks.

Phase dependencies form one DAG per plan; task dependencies form one DAG
per phase and may only point at tasks of the same phase. Graphs are built
with networkx, edges run dependency -> dependent.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import networkx as nx

from planvault.core.errors import DocumentParseError, PlanValidationError
from planvault.core.models import PhaseDocument, Plan
from planvault.storage import document_store, layout
from planvault.validators.schema import ValidationReport

logger = logging.getLogger(__name__)

MAX_REPORTED_CYCLES = 5


def build_dependency_graph(dependency_map: Mapping[str, list[str]]) -> nx.DiGraph:
    """Directed graph over known ids; edges point dependency -> dependent.

    Dependencies on unknown ids are left out (see ``find_missing``).
    """
    graph = nx.DiGraph()
    graph.add_nodes_from(dependency_map)
    for item, deps in dependency_map.items():
        for dep in deps:
            if dep in dependency_map:
                graph.add_edge(dep, item)
    return graph


def find_missing(dependency_map: Mapping[str, list[str]]) -> list[tuple[str, str]]:
    """(item, missing_dependency) pairs, in declaration order."""
    return [
        (item, dep)
        for item, deps in dependency_map.items()
        for dep in deps
        if dep not in dependency_map
    ]


def find_cycles(dependency_map: Mapping[str, list[str]]) -> list[list[str]]:
    """Up to MAX_REPORTED_CYCLES cycles, each closed (first id repeated last)."""
    graph = build_dependency_graph(dependency_map)
    cycles = itertools.islice(nx.simple_cycles(graph), MAX_REPORTED_CYCLES)
    return [cycle + [cycle[0]] for cycle in cycles]


def find_dependents(item_id: str, dependency_map: Mapping[str, list[str]]) -> list[str]:
    """Ids that list ``item_id`` as a direct dependency."""
    return [item for item, deps in dependency_map.items() if item_id in deps]


def phase_dependency_map(plan: Plan) -> dict[str, list[str]]:
    return {p.id: list(p.dependencies) for p in plan.phases}


def task_dependency_map(phase: PhaseDocument) -> dict[str, list[str]]:
    return {t.id: list(t.dependencies) for t in phase.tasks}


def validate_phase_dependencies(plan: Plan | dict[str, Any]) -> ValidationReport:
    """Detect dangling phase dependencies and dependency cycles."""
    if not isinstance(plan, Plan):
        plan = Plan.model_validate(plan)
    report = ValidationReport()
    dependency_map = phase_dependency_map(plan)

    for phase_id, dep in find_missing(dependency_map):
        report.add_error(
            f"phases.{phase_id}.dependencies",
            f"Phase '{phase_id}' depends on unknown phase '{dep}'",
            "MISSING_PHASE_DEPENDENCY",
        )
    for cycle in find_cycles(dependency_map):
        report.add_error(
            "phases",
            f"Circular phase dependency: {' -> '.join(cycle)}",
            "CIRCULAR_PHASE_DEPENDENCY",
        )
    return report


def validate_task_dependencies(phase: PhaseDocument) -> ValidationReport:
    """Task dependencies must resolve inside the same phase and be acyclic."""
    report = ValidationReport()
    dependency_map = task_dependency_map(phase)

    for task_id, dep in find_missing(dependency_map):
        report.add_error(
            f"phases.{phase.id}.tasks.{task_id}.dependencies",
            f"Task '{task_id}' depends on '{dep}', which is not a task of phase '{phase.id}'",
            "MISSING_TASK_DEPENDENCY",
        )
    for cycle in find_cycles(dependency_map):
        report.add_error(
            f"phases.{phase.id}.tasks",
            f"Circular task dependency: {' -> '.join(cycle)}",
            "CIRCULAR_TASK_DEPENDENCY",
        )
    return report


def validate_phase_references(
    plan_dir: Path,
    plan: Plan,
    phase_documents: Mapping[str, PhaseDocument] | None = None,
) -> ValidationReport:
    """Check that every PhaseRef resolves to a matching phase document.

    Missing files are errors; orphaned phase files and name mismatches are
    warnings. ``phase_documents`` overrides what is on disk (pending writes).
    """
    plan_dir = Path(plan_dir)
    report = ValidationReport()
    pending = phase_documents or {}
    referenced: set[Path] = set()

    for ref in plan.phases:
        path = layout.phase_path(plan_dir, ref.file)
        referenced.add(path.resolve())
        doc = pending.get(ref.id)
        if doc is None:
            if not path.is_file():
                report.add_error(
                    f"phases.{ref.id}.file",
                    f"Phase file '{ref.file}' does not exist",
                    "MISSING_PHASE_FILE",
                )
                continue
            try:
                doc = document_store.load_phase(plan_dir, ref.file)
            except (DocumentParseError, PlanValidationError) as exc:
                report.add_error(f"phases.{ref.id}.file", exc.message, exc.code)
                continue

        if doc.id != ref.id:
            report.add_error(
                f"phases.{ref.id}.file",
                f"Phase file '{ref.file}' holds phase '{doc.id}'",
                "PHASE_ID_MISMATCH",
            )
        if doc.name != ref.name:
            report.add_warning(
                f"phases.{ref.id}.name",
                f"Orchestration name '{ref.name}' differs from phase file name '{doc.name}'",
                "PHASE_NAME_MISMATCH",
            )

    phases_root = layout.phases_dir(plan_dir)
    if phases_root.is_dir():
        for path in sorted(phases_root.glob("*.json")):
            if path.resolve() not in referenced:
                report.add_warning(
                    f"phases/{path.name}",
                    f"Phase file '{path.name}' is not referenced by the plan",
                    "ORPHANED_PHASE_FILE",
                )
    return report
