# src/scheduler/levels.py — v1
"""Dependency levels — which phases may run side by side.

A phase's level is 1 + the highest level among its dependencies;
dependency-free phases are level 0. Phases of one level have no path
between them. Levels run strictly in order, phases within a level may
run in parallel.

Conflict detection compares literal action target paths. That is a
heuristic, not a guarantee against every shared resource.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import networkx as nx

from planvault.core.errors import DependencyCycleError, PlanValidationError
from planvault.core.models import PhaseDocument, PhaseRef, Plan
from planvault.validators.integrity import (
    build_dependency_graph,
    find_cycles,
    find_missing,
    phase_dependency_map,
)

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FACTOR = 1.5


@dataclass
class ExecutionLevels:
    """Phase ids grouped by level; plan order is kept within a level."""

    levels: list[list[str]] = field(default_factory=list)
    level_of: dict[str, int] = field(default_factory=dict)
    graph: nx.DiGraph = field(default_factory=nx.DiGraph, repr=False)

    @property
    def flat_order(self) -> list[str]:
        return [phase_id for level in self.levels for phase_id in level]

    @property
    def max_width(self) -> int:
        return max((len(level) for level in self.levels), default=0)

    def as_dict(self) -> dict[str, object]:
        return {
            "levels": [list(level) for level in self.levels],
            "level_of": dict(self.level_of),
            "max_width": self.max_width,
        }


def compute_levels(plan: Plan) -> ExecutionLevels:
    """Group the plan's phases into dependency levels.

    Raises:
        PlanValidationError: If a phase depends on an unknown phase.
        DependencyCycleError: If the phase graph has a cycle.
    """
    dependency_map = phase_dependency_map(plan)
    missing = find_missing(dependency_map)
    if missing:
        phase_id, dep = missing[0]
        raise PlanValidationError(
            f"Phase '{phase_id}' depends on unknown phase '{dep}'",
            code="MISSING_PHASE_DEPENDENCY",
            details=[{"phase": p, "dependency": d} for p, d in missing],
        )

    graph = build_dependency_graph(dependency_map)
    try:
        generations = list(nx.topological_generations(graph))
    except nx.NetworkXUnfeasible as exc:
        cycle = find_cycles(dependency_map)[0]
        raise DependencyCycleError(cycle, code="CIRCULAR_PHASE_DEPENDENCY") from exc

    position = {phase_id: i for i, phase_id in enumerate(plan.phase_ids)}
    levels = [sorted(gen, key=position.__getitem__) for gen in generations]
    result = ExecutionLevels(
        levels=levels,
        level_of={pid: n for n, level in enumerate(levels) for pid in level},
        graph=graph,
    )
    logger.debug("Computed %d level(s) for plan %s: %s", len(levels), plan.id, levels)
    return result


def can_run_in_parallel(
    first: PhaseRef,
    second: PhaseRef,
    levels: ExecutionLevels,
    *,
    first_doc: PhaseDocument | None = None,
    second_doc: PhaseDocument | None = None,
    per_phase_budget: int | None = None,
    token_factor: float = DEFAULT_TOKEN_FACTOR,
) -> tuple[bool, str | None]:
    """Decide whether two phases may run in the same group.

    Returns:
        (allowed, reason) where reason explains a refusal.
    """
    graph = levels.graph
    if first.id == second.id:
        return False, "same phase"
    if nx.has_path(graph, first.id, second.id) or nx.has_path(graph, second.id, first.id):
        return False, f"'{first.id}' and '{second.id}' depend on each other"

    if first_doc is not None and second_doc is not None:
        shared = first_doc.action_targets & second_doc.action_targets
        if shared:
            return False, f"shared action targets: {', '.join(sorted(shared))}"

    if per_phase_budget is not None:
        combined = first.estimated_tokens + second.estimated_tokens
        limit = per_phase_budget * token_factor
        if combined > limit:
            return False, f"combined estimate {combined} exceeds {limit:g} tokens"
    return True, None
