# src/execution/state_tracker.py — v1
"""Record execution status transitions reported by an executor.

The external task executor (and the scheduler's coordinator) report phase
and task status changes through these functions. Transitions are checked
against the allowed table, mirrored into the orchestration and phase
documents, and the progress snapshot is recomputed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from planvault.core.errors import (
    BlockedOperationError,
    NotFoundError,
    OperationError,
    PlanVaultError,
)
from planvault.core.models import TaskOutput, normalize_status, utcnow
from planvault.core.results import OperationResult
from planvault.storage.workspace import PlanWorkspace
from planvault.validators.safety import validate_status_transition

logger = logging.getLogger(__name__)


def _derive_plan_status(ws: PlanWorkspace) -> str:
    statuses = list(ws.state.phase_statuses.values())
    if statuses and all(s == "completed" for s in statuses):
        return "completed"
    if "in-progress" in statuses:
        return "in-progress"
    if "failed" in statuses:
        return "failed"
    if ws.state.started_at is not None:
        return "in-progress"
    return ws.plan.status


def _record_error(ws: PlanWorkspace, message: str, **ids: str) -> None:
    ws.state.errors.append({"timestamp": utcnow().isoformat(), "message": message, **ids})


def _mark_started(ws: PlanWorkspace, phase_id: str) -> None:
    ws.state.current_phase = phase_id
    if ws.state.started_at is None:
        ws.state.started_at = utcnow()


def record_phase_status(
    plan_dir: Path,
    phase_id: str,
    status: str,
    *,
    error: str | None = None,
    actual_tokens: int | None = None,
) -> OperationResult:
    """Apply a phase status transition reported by the executor.

    Args:
        plan_dir: Plan directory.
        phase_id: Phase whose status changed.
        status: New status.
        error: Failure message to append to the execution state's errors.
        actual_tokens: Tokens consumed, added to the phase metrics.
    """
    status = normalize_status(status)
    try:
        ws = PlanWorkspace.load(plan_dir)
        ref = ws.phase_ref(phase_id)
        doc = ws.phase_document(phase_id)
        current = ws.state.phase_statuses.get(phase_id, ref.status)
        check = validate_status_transition(current, status, kind="phase")
        if not check.can_proceed:
            raise BlockedOperationError(check.reason or "Invalid transition", code=check.code)

        now = utcnow()
        ws.state.phase_statuses[phase_id] = status  # type: ignore[assignment]
        ref.status = status  # type: ignore[assignment]
        doc.status = status  # type: ignore[assignment]
        if status == "in-progress":
            if current == "failed":
                ref.retry_count += 1
            _mark_started(ws, phase_id)
            doc.metrics.start_time = now
            doc.metrics.end_time = None
        elif status in ("completed", "failed"):
            doc.metrics.end_time = now
            if doc.tasks:
                done = sum(1 for t in doc.tasks if ws.state.task_status(t.id) == "completed")
                doc.metrics.success_rate = round(done / len(doc.tasks), 3)
        if actual_tokens is not None:
            doc.metrics.actual_tokens += actual_tokens
        if status == "failed":
            _record_error(ws, error or "Phase failed", phaseId=phase_id)

        ws.put_phase(doc)
        ws.plan.status = _derive_plan_status(ws)  # type: ignore[assignment]
        if ws.plan.status == "completed":
            ws.state.completed_at = now
        ws.save()
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)
    except OSError as exc:
        return OperationResult.from_error(OperationError(f"Failed to record status: {exc}"))

    logger.info("Phase %s: %s -> %s", phase_id, current, status)
    return OperationResult.ok(
        f"Phase '{phase_id}' is now {status}",
        data={"phase_id": phase_id, "previous": current, "status": status},
    )


def record_task_status(
    plan_dir: Path,
    task_id: str,
    status: str,
    *,
    phase_id: str | None = None,
    output: TaskOutput | dict[str, Any] | None = None,
    result: Any = None,
    error: str | None = None,
) -> OperationResult:
    """Apply a task status transition reported by the executor.

    A task starting inside a pending phase moves that phase to in-progress.
    """
    status = normalize_status(status)
    try:
        ws = PlanWorkspace.load(plan_dir)
        if phase_id is None:
            phase_id = ws.locate_task(task_id)
            if phase_id is None:
                raise NotFoundError(f"Task '{task_id}' not found", code="TASK_NOT_FOUND")
        task = ws.task(phase_id, task_id)
        doc = ws.phase_document(phase_id)
        current = ws.state.task_statuses.get(task_id, task.status)
        check = validate_status_transition(current, status, kind="task")
        if not check.can_proceed:
            raise BlockedOperationError(check.reason or "Invalid transition", code=check.code)

        ws.state.task_statuses[task_id] = status  # type: ignore[assignment]
        task.status = status  # type: ignore[assignment]
        if output is not None:
            task.output = TaskOutput.model_validate(output)
        if result is not None:
            task.result = result
        if status == "in-progress":
            _mark_started(ws, phase_id)
            if ws.state.phase_status(phase_id) == "pending":
                ws.state.phase_statuses[phase_id] = "in-progress"
                ws.phase_ref(phase_id).status = "in-progress"
                doc.status = "in-progress"
                doc.metrics.start_time = utcnow()
        if status == "failed":
            _record_error(ws, error or "Task failed", phaseId=phase_id, taskId=task_id)

        ws.put_phase(doc)
        ws.plan.status = _derive_plan_status(ws)  # type: ignore[assignment]
        ws.save()
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)
    except OSError as exc:
        return OperationResult.from_error(OperationError(f"Failed to record status: {exc}"))

    logger.info("Task %s: %s -> %s", task_id, current, status)
    return OperationResult.ok(
        f"Task '{task_id}' is now {status}",
        data={"phase_id": phase_id, "task_id": task_id, "previous": current, "status": status},
    )
