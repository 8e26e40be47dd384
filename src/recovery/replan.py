# src/recovery/replan.py — v1
"""Rollback-and-replan — reset a started plan to pending and reapply edits.

The heavier recovery path for structural changes the selective update
cannot express safely. Progress is wiped, but not lost: the directory is
backed up, the execution logs are copied to ``.logs-backup/logs-<ts>/``,
and a provenance entry with per-task outcomes is appended to the plan's
``executionHistory`` before anything is reset.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from planvault.audit.logger import log_operation
from planvault.config.settings import Settings
from planvault.core.errors import PlanVaultError
from planvault.core.ids import timestamp_slug
from planvault.core.models import ExecutionHistoryEntry, PhaseMetrics, utcnow
from planvault.core.results import OperationResult
from planvault.execution.analyzer import ExecutionSnapshot, snapshot
from planvault.logging.context import set_operation_context, set_plan_context
from planvault.operations.models import parse_operations
from planvault.operations.orchestrator import execute_update
from planvault.storage import document_store, layout
from planvault.storage.backup import create_backup
from planvault.storage.workspace import PlanWorkspace

logger = logging.getLogger(__name__)


def _task_results(ws: PlanWorkspace) -> dict[str, Any]:
    results: dict[str, Any] = {}
    for ref in ws.plan.phases:
        doc = ws.phases.get(ref.id)
        for task in doc.tasks if doc is not None else []:
            entry: dict[str, Any] = {
                "phaseId": ref.id,
                "status": ws.state.task_statuses.get(task.id, task.status),
            }
            if task.output is not None:
                entry["output"] = task.output.to_document()
            if task.result is not None:
                entry["result"] = task.result
            results[task.id] = entry
    return results


def list_log_backups(plan_dir: Path) -> list[Path]:
    """Execution-log backups, oldest first."""
    root = layout.logs_backup_dir(Path(plan_dir))
    if not root.is_dir():
        return []
    return sorted(
        p for p in root.iterdir()
        if p.is_dir() and p.name.startswith(layout.LOGS_BACKUP_PREFIX)
    )


def backup_execution_logs(
    plan_dir: Path,
    ws: PlanWorkspace | None = None,
    retention: int = 5,
) -> Path:
    """Copy the execution state plus a derived summary to ``.logs-backup``.

    Generations beyond ``retention`` are pruned, oldest first.

    Returns:
        The new ``logs-<timestamp>`` directory.
    """
    plan_dir = Path(plan_dir)
    ws = ws or PlanWorkspace.load(plan_dir)
    target = layout.logs_backup_dir(plan_dir) / f"{layout.LOGS_BACKUP_PREFIX}{timestamp_slug()}"
    target.mkdir(parents=True)

    document_store.write_document(
        target / layout.EXECUTION_STATE_FILE, ws.state.to_document()
    )
    snap = snapshot(ws)
    summary = {
        "planId": ws.plan.id,
        "planName": ws.plan.name,
        "planStatus": ws.plan.status,
        "capturedAt": utcnow().isoformat(),
        "progress": ws.plan.progress.to_document(),
        "completedPhases": snap.completed_phases,
        "inProgressPhases": snap.in_progress_phases,
        "failedPhases": snap.failed_phases,
        "completedTasks": snap.completed_tasks,
        "inProgressTasks": snap.in_progress_tasks,
        "failedTasks": snap.failed_tasks,
        "errors": ws.state.errors,
        "taskResults": _task_results(ws),
    }
    document_store.write_document(target / layout.EXECUTION_SUMMARY_FILE, summary)

    backups = list_log_backups(plan_dir)
    for old in backups[: max(len(backups) - retention, 0)]:
        shutil.rmtree(old, ignore_errors=True)
        logger.debug("Pruned logs backup %s", old)
    logger.info("Execution logs backed up to %s", target)
    return target


def reset_progress(ws: PlanWorkspace, *, preserve_completed: bool = False) -> dict[str, int]:
    """Reset every phase and task to pending in memory.

    Task ``output``/``result`` are cleared unless ``preserve_completed``.

    Returns:
        Counts of reset phases and tasks that were not already pending.
    """
    counts = {"phases": 0, "tasks": 0}
    for ref in ws.plan.phases:
        if ws.state.phase_status(ref.id) != "pending" or ref.status != "pending":
            counts["phases"] += 1
        ref.status = "pending"
        ref.retry_count = 0
        doc = ws.phases.get(ref.id)
        if doc is None:
            continue
        doc.status = "pending"
        doc.metrics = PhaseMetrics(estimated_tokens=doc.metrics.estimated_tokens)
        for task in doc.tasks:
            if ws.state.task_status(task.id) != "pending" or task.status != "pending":
                counts["tasks"] += 1
            task.status = "pending"
            if not preserve_completed:
                task.output = None
                task.result = None
        ws.put_phase(doc)

    ws.state.phase_statuses = {pid: "pending" for pid in ws.state.phase_statuses}
    ws.state.task_statuses = {tid: "pending" for tid in ws.state.task_statuses}
    ws.state.current_phase = None
    ws.state.started_at = None
    ws.state.completed_at = None
    ws.state.errors = []
    ws.plan.status = "pending"
    return counts


def _guidance(
    counts: dict[str, int],
    backup_path: Path,
    logs_backup: Path,
    history_count: int,
) -> dict[str, Any]:
    return {
        "summary": (
            f"Reset {counts['phases']} phase(s) and {counts['tasks']} task(s) to pending"
        ),
        "backup_path": str(backup_path),
        "logs_backup_path": str(logs_backup),
        "history_entries": history_count,
        "next_steps": [
            "Review the updated plan structure and phase dependencies",
            "Check executionHistory for the outcomes of previously completed tasks",
            "Resume execution from the first phase",
            f"Restore manually from {backup_path} if the new plan is not what you want",
        ],
    }


def rollback_and_replan(
    plan_dir: Path,
    operations: Sequence[Any] = (),
    *,
    dry_run: bool = False,
    preserve_completed: bool = False,
    settings: Settings | None = None,
) -> OperationResult:
    """Reset all progress to pending, keep provenance, then apply ``operations``.

    Args:
        plan_dir: Plan directory of a started plan.
        operations: Update operations applied after the reset.
        dry_run: Report what would be reset; nothing is written.
        preserve_completed: Keep task ``output``/``result`` through the reset.
        settings: Retention and audit configuration.

    Returns:
        OperationResult with ``reset``, ``guidance`` and, if operations were
        given, the orchestrator's ``batch`` details. Every outcome after the
        first step names the step-1 backup.
    """
    settings = settings or Settings()
    plan_dir = Path(plan_dir)
    parsed, errors = parse_operations(operations)
    if errors:
        return OperationResult.fail(
            f"{len(errors)} operation(s) failed validation",
            code="VALIDATION_FAILED",
            data={"validation_errors": errors},
            details=errors,
        )
    try:
        ws = PlanWorkspace.load(plan_dir)
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)

    snap = snapshot(ws)
    if not snap.has_started:
        return OperationResult.fail(
            "Plan has not started; apply the changes with execute_update instead",
            code="PLAN_NOT_STARTED",
        )

    set_plan_context(ws.plan.id, actor=settings.actor)
    set_operation_context("rollback_and_replan")
    try:
        return _reset_and_apply(
            plan_dir,
            ws,
            snap,
            parsed,
            dry_run=dry_run,
            preserve_completed=preserve_completed,
            settings=settings,
        )
    finally:
        set_operation_context(None)


def _reset_and_apply(
    plan_dir: Path,
    ws: PlanWorkspace,
    snap: ExecutionSnapshot,
    parsed: list[Any],
    *,
    dry_run: bool,
    preserve_completed: bool,
    settings: Settings,
) -> OperationResult:
    if dry_run:
        return OperationResult.ok(
            "Dry run: plan would be reset to pending",
            data={
                "dry_run": True,
                "would_reset": {
                    "completed_tasks": snap.completed_tasks,
                    "in_progress_tasks": snap.in_progress_tasks,
                    "failed_tasks": snap.failed_tasks,
                },
                "operations": [op.describe() for op in parsed],
            },
        )

    previous_state = {
        "status": ws.plan.status,
        "progress": ws.plan.progress.to_document(),
        "startedAt": snap.started_at,
        "currentPhase": snap.current_phase,
    }
    try:
        backup_path = create_backup(plan_dir, settings.backup_retention)
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)

    try:
        logs_backup = backup_execution_logs(plan_dir, ws, settings.logs_backup_retention)
        ws.plan.execution_history.append(
            ExecutionHistoryEntry(
                previous_state=previous_state,
                task_results=_task_results(ws),
                logs_backup_path=str(logs_backup.relative_to(plan_dir)),
            )
        )
        counts = reset_progress(ws, preserve_completed=preserve_completed)
        ws.save("Reset plan failed validation")
    except PlanVaultError as exc:
        return OperationResult.from_error(exc, backup_path=str(backup_path))
    except OSError as exc:
        return OperationResult.fail(
            f"Failed to reset plan: {exc}",
            code="OPERATION_FAILED",
            backup_path=str(backup_path),
        )
    logger.info("Plan %s reset: %s", ws.plan.id, counts)

    batch: OperationResult | None = None
    if parsed:
        batch = execute_update(
            plan_dir, parsed, stop_on_error=True, mode="replan", settings=settings
        )

    try:
        final = PlanWorkspace.load(plan_dir)
        final.plan.status = "pending"
        final.save("Replanned plan failed validation")
    except PlanVaultError as exc:
        return OperationResult.from_error(exc, backup_path=str(backup_path))

    guidance = _guidance(counts, backup_path, logs_backup, len(final.plan.execution_history))
    failed_batch = batch if batch is not None and not batch.success else None
    log_operation(
        plan_dir,
        "rollback_replan",
        "plan",
        final.plan.id,
        before=previous_state,
        after={"status": final.plan.status, "progress": final.plan.progress.to_document()},
        success=failed_batch is None,
        error=failed_batch.error if failed_batch is not None else None,
        metadata={
            "mode": "replan",
            "backupPath": str(backup_path),
            "logsBackupPath": str(logs_backup),
            "operationCount": len(parsed),
            "preserveCompleted": preserve_completed,
        },
        settings=settings,
    )

    data: dict[str, Any] = {"reset": counts, "guidance": guidance}
    if batch is not None:
        data["batch"] = batch.data
    if failed_batch is not None:
        return OperationResult.fail(
            f"Plan was reset but the updates failed: {failed_batch.error}",
            code=failed_batch.code,
            data=data,
            warnings=list(failed_batch.warnings),
            backup_path=str(backup_path),
        )
    return OperationResult.ok(
        guidance["summary"] + (f" and applied {len(parsed)} operation(s)" if parsed else ""),
        data=data,
        warnings=list(batch.warnings) if batch else [],
        backup_path=str(backup_path),
    )


def get_execution_history(plan_dir: Path) -> OperationResult:
    """The plan's executionHistory plus the available logs backups."""
    try:
        plan = document_store.load_plan(Path(plan_dir))
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)
    count = len(plan.execution_history)
    return OperationResult.ok(
        f"{count} history entr{'y' if count == 1 else 'ies'}",
        data={
            "history": [h.to_document() for h in plan.execution_history],
            "log_backups": [str(p) for p in list_log_backups(Path(plan_dir))],
        },
    )
