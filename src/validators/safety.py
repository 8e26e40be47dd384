# src/validators/safety.py — v1
"""Execution-state safety checks for mutations and status transitions.

One precedence rule decides every phase/task mutation:

    in-progress            -> blocked, force cannot override
    has active dependents  -> blocked (deletes only)
    completed              -> blocked unless force, then allowed with a warning
    pending / failed       -> allowed
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Literal

from pydantic import BaseModel, Field

from planvault.core.models import ExecutionState, PhaseDocument, Plan
from planvault.validators.integrity import (
    find_dependents,
    phase_dependency_map,
    task_dependency_map,
)

Kind = Literal["phase", "task"]
Action = Literal["update", "delete", "move"]

ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("in-progress", "completed"),
    "in-progress": ("completed", "failed"),
    "failed": ("in-progress",),
    "completed": (),
}


class SafetyCheck(BaseModel):
    """``{canProceed, reason, code, requiresForce, warnings}``."""

    can_proceed: bool
    reason: str | None = None
    code: str | None = None
    requires_force: bool = False
    warnings: list[str] = Field(default_factory=list)


def evaluate_mutation(
    kind: Kind,
    item_id: str,
    status: str,
    *,
    action: Action,
    force: bool = False,
    dependents: Collection[str] = (),
) -> SafetyCheck:
    """Apply the precedence rule to one item."""
    label = kind.upper()
    if status == "in-progress":
        return SafetyCheck(
            can_proceed=False,
            reason=f"Cannot {action} {kind} '{item_id}': it is currently in progress",
            code=f"{label}_IN_PROGRESS",
        )
    if action == "delete" and dependents:
        return SafetyCheck(
            can_proceed=False,
            reason=(
                f"Cannot delete {kind} '{item_id}': "
                f"{', '.join(sorted(dependents))} depend on it"
            ),
            code=f"HAS_DEPENDENT_{label}S",
        )
    if status == "completed":
        if not force:
            return SafetyCheck(
                can_proceed=False,
                reason=f"{kind.capitalize()} '{item_id}' is completed; use force to {action} it",
                code=f"{label}_COMPLETED",
                requires_force=True,
            )
        return SafetyCheck(
            can_proceed=True,
            warnings=[f"Forcing {action} of completed {kind} '{item_id}'; its work will be lost"],
        )
    return SafetyCheck(can_proceed=True)


def effective_phase_status(
    phase_id: str,
    state: ExecutionState,
    phase_document: PhaseDocument | None = None,
    fallback: str = "pending",
) -> str:
    """Phase status from the execution state; in-progress if any task is."""
    status = state.phase_statuses.get(phase_id, fallback)
    if status != "in-progress" and phase_document is not None:
        if any(state.task_status(t.id) == "in-progress" for t in phase_document.tasks):
            return "in-progress"
    return status


def can_delete_phase(
    phase_id: str,
    plan: Plan,
    state: ExecutionState,
    *,
    force: bool = False,
    also_removing: Collection[str] = (),
    phase_document: PhaseDocument | None = None,
) -> SafetyCheck:
    """Decide whether a phase may be removed from the plan.

    Args:
        phase_id: Phase to delete.
        plan: Current orchestration document.
        state: Current execution state.
        force: Allow deleting a completed phase.
        also_removing: Phase ids deleted in the same batch; they do not
            count as blocking dependents.
        phase_document: The phase's document, used to see in-progress tasks.
    """
    ref = plan.find_phase(phase_id)
    if ref is None:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Phase '{phase_id}' not found",
            code="PHASE_NOT_FOUND",
        )
    status = effective_phase_status(phase_id, state, phase_document, fallback=ref.status)
    dependents = [
        d for d in find_dependents(phase_id, phase_dependency_map(plan))
        if d not in also_removing
    ]
    return evaluate_mutation(
        "phase", phase_id, status, action="delete", force=force, dependents=dependents
    )


def can_delete_task(
    task_id: str,
    phase: PhaseDocument,
    state: ExecutionState,
    *,
    force: bool = False,
    also_removing: Collection[str] = (),
) -> SafetyCheck:
    """Task-level mirror of can_delete_phase."""
    task = phase.find_task(task_id)
    if task is None:
        return SafetyCheck(
            can_proceed=False,
            reason=f"Task '{task_id}' not found in phase '{phase.id}'",
            code="TASK_NOT_FOUND",
        )
    status = state.task_statuses.get(task_id, task.status)
    dependents = [
        d for d in find_dependents(task_id, task_dependency_map(phase))
        if d not in also_removing
    ]
    return evaluate_mutation(
        "task", task_id, status, action="delete", force=force, dependents=dependents
    )


def validate_status_transition(current: str, new: str, *, kind: Kind = "task") -> SafetyCheck:
    """Check an execution status change reported for a phase or task."""
    if current == new or new in ALLOWED_TRANSITIONS.get(current, ()):
        return SafetyCheck(can_proceed=True)
    allowed = ", ".join(ALLOWED_TRANSITIONS.get(current, ())) or "none"
    return SafetyCheck(
        can_proceed=False,
        reason=f"Invalid {kind} status transition {current} -> {new} (allowed: {allowed})",
        code="INVALID_STATUS_TRANSITION",
    )
