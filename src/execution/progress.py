# src/execution/progress.py — v1
"""Derived progress counters and execution-state reconciliation.

Pure functions over in-memory documents; callers persist the results.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from planvault.core.models import (
    ExecutionState,
    PhaseDocument,
    Plan,
    Progress,
    utcnow,
)


def phase_status(plan: Plan, state: ExecutionState, phase_id: str) -> str:
    ref = plan.find_phase(phase_id)
    fallback = ref.status if ref is not None else "pending"
    return state.phase_statuses.get(phase_id, fallback)


def reconcile_execution_state(
    plan: Plan,
    phases: Mapping[str, PhaseDocument],
    state: ExecutionState,
) -> ExecutionState:
    """Return a copy whose status maps cover exactly the ids in the documents.

    New ids get ``pending``, removed ids are pruned, existing statuses are
    kept. Order follows the plan (phases, then tasks within each phase).
    """
    phase_statuses = {
        ref.id: state.phase_statuses.get(ref.id, "pending") for ref in plan.phases
    }
    task_statuses: dict[str, str] = {}
    for ref in plan.phases:
        doc = phases.get(ref.id)
        if doc is None:
            continue
        for task in doc.tasks:
            task_statuses[task.id] = state.task_statuses.get(task.id, "pending")

    current = state.current_phase if state.current_phase in phase_statuses else None
    return state.model_copy(
        update={
            "phase_statuses": phase_statuses,
            "task_statuses": task_statuses,
            "current_phase": current,
            "last_updated": utcnow(),
        }
    )


def recalculate_progress(
    plan: Plan,
    phases: Mapping[str, PhaseDocument],
    state: ExecutionState,
) -> Progress:
    """Recompute the plan's progress snapshot from the execution state."""
    total_tasks = 0
    completed_tasks = 0
    for ref in plan.phases:
        doc = phases.get(ref.id)
        if doc is None:
            continue
        total_tasks += len(doc.tasks)
        completed_tasks += sum(
            1 for t in doc.tasks if state.task_statuses.get(t.id, t.status) == "completed"
        )

    statuses = [phase_status(plan, state, ref.id) for ref in plan.phases]
    completed_phases = statuses.count("completed")
    current = [ref.id for ref, s in zip(plan.phases, statuses) if s == "in-progress"]

    if total_tasks:
        percentage = completed_tasks / total_tasks * 100
    elif plan.phases:
        percentage = completed_phases / len(plan.phases) * 100
    else:
        percentage = 0.0

    return Progress(
        total_phases=len(plan.phases),
        completed_phases=completed_phases,
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        current_phases=current,
        percentage=round(percentage, 1),
        last_updated=utcnow(),
    )


def get_progress_summary(
    plan: Plan,
    phases: Mapping[str, PhaseDocument],
    state: ExecutionState,
) -> dict[str, Any]:
    """Per-phase breakdown plus overall counters."""
    progress = recalculate_progress(plan, phases, state)
    per_phase: list[dict[str, Any]] = []
    for ref in plan.phases:
        doc = phases.get(ref.id)
        tasks = doc.tasks if doc is not None else []
        counts = {"pending": 0, "in-progress": 0, "completed": 0, "failed": 0}
        for task in tasks:
            counts[state.task_statuses.get(task.id, task.status)] += 1
        per_phase.append(
            {
                "phase_id": ref.id,
                "name": ref.name,
                "status": phase_status(plan, state, ref.id),
                "total_tasks": len(tasks),
                "tasks": counts,
            }
        )
    return {
        "plan_id": plan.id,
        "status": plan.status,
        "progress": progress.model_dump(mode="json"),
        "phases": per_phase,
    }
