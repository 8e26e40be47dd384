# src/execution/analyzer.py — v1
"""Execution-state analysis: what has run, what is running, what is safe.

Read-only. Derives the facts the recovery workflows and the orchestrator's
dry run need from the live execution state, and classifies each update
operation against the single safety precedence rule.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from planvault.core.errors import PlanVaultError
from planvault.core.results import OperationResult
from planvault.execution import progress
from planvault.operations.models import (
    MetadataUpdate,
    PhaseAdd,
    PhaseDelete,
    PhaseUpdate,
    TaskAdd,
    TaskDelete,
    parse_operations,
)
from planvault.storage.workspace import PlanWorkspace
from planvault.validators.integrity import (
    find_dependents,
    phase_dependency_map,
    task_dependency_map,
)
from planvault.validators.safety import SafetyCheck, effective_phase_status, evaluate_mutation

logger = logging.getLogger(__name__)

Recommendation = Literal["proceed", "proceed_with_caution", "selective", "rollback"]


class ExecutionSnapshot(BaseModel):
    """Status facts of one plan, lists in plan order."""

    plan_id: str
    plan_status: str
    has_started: bool = False
    is_executing: bool = False
    current_phase: str | None = None
    completed_phases: list[str] = Field(default_factory=list)
    in_progress_phases: list[str] = Field(default_factory=list)
    failed_phases: list[str] = Field(default_factory=list)
    pending_phases: list[str] = Field(default_factory=list)
    completed_tasks: list[str] = Field(default_factory=list)
    in_progress_tasks: list[str] = Field(default_factory=list)
    failed_tasks: list[str] = Field(default_factory=list)
    pending_tasks: list[str] = Field(default_factory=list)
    started_at: str | None = None
    completed_at: str | None = None


class OperationAssessment(BaseModel):
    index: int
    operation: str
    target: str
    type: str
    target_id: str | None = None
    status: str | None = None
    safe: bool
    reason: str | None = None
    code: str | None = None
    requires_force: bool = False
    warnings: list[str] = Field(default_factory=list)


def snapshot(ws: PlanWorkspace) -> ExecutionSnapshot:
    """Derive an ExecutionSnapshot from a loaded workspace."""
    plan, state = ws.plan, ws.state
    phase_buckets: dict[str, list[str]] = {
        "completed": [], "in-progress": [], "failed": [], "pending": [],
    }
    task_buckets: dict[str, list[str]] = {
        "completed": [], "in-progress": [], "failed": [], "pending": [],
    }
    for ref in plan.phases:
        doc = ws.phases.get(ref.id)
        status = effective_phase_status(ref.id, state, doc, fallback=ref.status)
        phase_buckets[status].append(ref.id)
        for task in doc.tasks if doc is not None else []:
            task_buckets[state.task_statuses.get(task.id, task.status)].append(task.id)

    touched = any(
        phase_buckets[s] or task_buckets[s] for s in ("completed", "in-progress", "failed")
    )
    return ExecutionSnapshot(
        plan_id=plan.id,
        plan_status=plan.status,
        has_started=state.started_at is not None or touched,
        is_executing=bool(phase_buckets["in-progress"] or task_buckets["in-progress"]),
        current_phase=state.current_phase,
        completed_phases=phase_buckets["completed"],
        in_progress_phases=phase_buckets["in-progress"],
        failed_phases=phase_buckets["failed"],
        pending_phases=phase_buckets["pending"],
        completed_tasks=task_buckets["completed"],
        in_progress_tasks=task_buckets["in-progress"],
        failed_tasks=task_buckets["failed"],
        pending_tasks=task_buckets["pending"],
        started_at=state.started_at.isoformat() if state.started_at else None,
        completed_at=state.completed_at.isoformat() if state.completed_at else None,
    )


def get_execution_state(plan_dir: Path) -> OperationResult:
    """Execution facts for ``plan_dir``; identical across calls without writes."""
    try:
        ws = PlanWorkspace.load(Path(plan_dir))
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)
    snap = snapshot(ws)
    return OperationResult.ok(
        f"Execution state of '{snap.plan_id}'", data=snap.model_dump(mode="json")
    )


def get_progress_summary(plan_dir: Path) -> OperationResult:
    try:
        ws = PlanWorkspace.load(Path(plan_dir))
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)
    summary = progress.get_progress_summary(ws.plan, ws.phases, ws.state)
    return OperationResult.ok(f"Progress of '{ws.plan.id}'", data=summary)


def _phase_check(ws: PlanWorkspace, phase_id: str, action: str, force: bool,
                 removing: frozenset[str]) -> tuple[str | None, SafetyCheck]:
    ref = ws.plan.find_phase(phase_id)
    if ref is None:
        return None, SafetyCheck(
            can_proceed=False, reason=f"Phase '{phase_id}' not found", code="PHASE_NOT_FOUND"
        )
    status = effective_phase_status(phase_id, ws.state, ws.phases.get(phase_id), ref.status)
    dependents: list[str] = []
    if action == "delete":
        dependents = [
            d for d in find_dependents(phase_id, phase_dependency_map(ws.plan))
            if d not in removing
        ]
    return status, evaluate_mutation(
        "phase", phase_id, status, action=action, force=force, dependents=dependents
    )


def _task_check(ws: PlanWorkspace, phase_id: str, task_id: str, action: str, force: bool,
                removing: frozenset[str]) -> tuple[str | None, SafetyCheck]:
    doc = ws.phases.get(phase_id)
    task = doc.find_task(task_id) if doc is not None else None
    if doc is None or task is None:
        return None, SafetyCheck(
            can_proceed=False,
            reason=f"Task '{task_id}' not found in phase '{phase_id}'",
            code="TASK_NOT_FOUND",
        )
    status = ws.state.task_statuses.get(task_id, task.status)
    dependents: list[str] = []
    if action == "delete":
        dependents = [
            d for d in find_dependents(task_id, task_dependency_map(doc)) if d not in removing
        ]
    return status, evaluate_mutation(
        "task", task_id, status, action=action, force=force, dependents=dependents
    )


def _classify(
    ws: PlanWorkspace,
    operations: Sequence[Any],
    force: bool,
    removing_phases: frozenset[str],
    removing_tasks: frozenset[str],
) -> list[OperationAssessment]:
    assessments: list[OperationAssessment] = []
    for index, op in enumerate(operations):
        item = {
            "index": index,
            "operation": op.describe(),
            "target": op.target,
            "type": op.type,
            "target_id": op.target_id,
        }
        if isinstance(op, (MetadataUpdate, PhaseAdd, TaskAdd)):
            assessments.append(OperationAssessment(**item, safe=True))
            continue
        op_force = force or op.force
        if isinstance(op, (PhaseUpdate, PhaseDelete)):
            status, check = _phase_check(ws, op.data.id, op.type, op_force, removing_phases)
        else:
            status, check = _task_check(
                ws, op.data.phase_id, op.data.id, op.type, op_force, removing_tasks
            )
        assessments.append(
            OperationAssessment(
                **item,
                status=status,
                safe=check.can_proceed,
                reason=check.reason,
                code=check.code,
                requires_force=check.requires_force,
                warnings=check.warnings,
            )
        )
    return assessments


def _removed_ids(
    operations: Sequence[Any], kind: type, assessments: Sequence[OperationAssessment] | None
) -> frozenset[str]:
    return frozenset(
        op.data.id
        for index, op in enumerate(operations)
        if isinstance(op, kind) and (assessments is None or assessments[index].safe)
    )


def assess_operations(
    ws: PlanWorkspace,
    operations: Sequence[Any],
    *,
    force: bool = False,
) -> list[OperationAssessment]:
    """Classify parsed operations without mutating anything.

    Adds and metadata updates are always safe. Phase and task mutations
    follow the precedence rule. A delete in the same batch only clears a
    dependent when that delete is itself safe, so classification repeats
    until the set of safe deletes stops shrinking.
    """
    removing_phases = _removed_ids(operations, PhaseDelete, None)
    removing_tasks = _removed_ids(operations, TaskDelete, None)
    while True:
        assessments = _classify(ws, operations, force, removing_phases, removing_tasks)
        safe_phases = _removed_ids(operations, PhaseDelete, assessments)
        safe_tasks = _removed_ids(operations, TaskDelete, assessments)
        if safe_phases == removing_phases and safe_tasks == removing_tasks:
            return assessments
        removing_phases, removing_tasks = safe_phases, safe_tasks


def recommend(
    snap: ExecutionSnapshot, assessments: Sequence[OperationAssessment]
) -> Recommendation:
    blocked = [a for a in assessments if not a.safe]
    if not blocked:
        return "proceed_with_caution" if snap.has_started else "proceed"
    if len(blocked) < len(assessments):
        return "selective"
    return "rollback"


def can_safely_update(
    plan_dir: Path,
    operations: Sequence[Any],
    *,
    force: bool = False,
) -> OperationResult:
    """Classify every operation's impact on the running plan.

    Returns:
        OperationResult whose data holds ``can_proceed``, ``safe`` and
        ``blocked`` assessments, ``recommendation`` and the execution snapshot.
    """
    parsed, errors = parse_operations(operations)
    if errors:
        return OperationResult.fail(
            f"{len(errors)} operation(s) failed validation",
            code="VALIDATION_FAILED",
            data={"validation_errors": errors},
        )
    try:
        ws = PlanWorkspace.load(Path(plan_dir))
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)

    snap = snapshot(ws)
    assessments = assess_operations(ws, parsed, force=force)
    safe = [a for a in assessments if a.safe]
    blocked = [a for a in assessments if not a.safe]
    warnings = [w for a in assessments for w in a.warnings]
    recommendation = recommend(snap, assessments)
    logger.debug(
        "Assessed %d operation(s): %d safe, %d blocked -> %s",
        len(assessments), len(safe), len(blocked), recommendation,
    )
    return OperationResult.ok(
        f"{len(safe)} safe, {len(blocked)} blocked",
        data={
            "can_proceed": not blocked,
            "safe": [a.model_dump() for a in safe],
            "blocked": [a.model_dump() for a in blocked],
            "recommendation": recommendation,
            "execution_state": snap.model_dump(mode="json"),
        },
        warnings=warnings,
    )
