# src/operations/orchestrator.py — v1
"""Batch update orchestrator — atomic, heterogeneous plan mutation.

A batch is validated as a whole, covered by exactly one backup, applied
in priority order (metadata, then phases, then tasks) through the
single-entity handlers, checked for integrity once at the end, and
restored from the backup if anything failed under ``stop_on_error``.
Batch start/complete audit entries bracket the per-operation entries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from planvault.audit.logger import log_batch_complete, log_batch_start, log_operation
from planvault.config.settings import Settings
from planvault.core.errors import PlanVaultError, RestoreError
from planvault.core.ids import generate_batch_id
from planvault.core.results import OperationResult
from planvault.execution.analyzer import can_safely_update
from planvault.logging.context import (
    set_batch_context,
    set_operation_context,
    set_plan_context,
)
from planvault.operations import metadata_ops, phase_ops, task_ops
from planvault.operations.base import BatchContext
from planvault.operations.models import (
    MetadataUpdate,
    PhaseAdd,
    PhaseDelete,
    PhaseUpdate,
    TaskAdd,
    TaskDelete,
    TaskUpdate,
    parse_operations,
    sort_by_priority,
)
from planvault.storage import layout
from planvault.storage.backup import create_backup, restore_from_backup
from planvault.storage.workspace import PlanWorkspace
from planvault.validators.schema import ValidationReport, format_validation_errors

logger = logging.getLogger(__name__)

Handler = Callable[[Path, Any, BatchContext, Settings], OperationResult]

_HANDLERS: dict[type, Handler] = {
    MetadataUpdate: lambda d, op, b, s: metadata_ops.update_plan_metadata(
        d, op.data, batch=b, settings=s
    ),
    PhaseAdd: lambda d, op, b, s: phase_ops.add_phase(d, op.data, batch=b, settings=s),
    PhaseUpdate: lambda d, op, b, s: phase_ops.update_phase_metadata(
        d, op.data.id, op.data, force=op.force, batch=b, settings=s
    ),
    PhaseDelete: lambda d, op, b, s: phase_ops.remove_phase(
        d, op.data.id, force=op.force, batch=b, settings=s
    ),
    TaskAdd: lambda d, op, b, s: task_ops.add_task(
        d, op.data.phase_id, op.data, batch=b, settings=s
    ),
    TaskUpdate: lambda d, op, b, s: task_ops.update_task(
        d, op.data.phase_id, op.data.id, op.data, force=op.force, batch=b, settings=s
    ),
    TaskDelete: lambda d, op, b, s: task_ops.remove_task(
        d, op.data.phase_id, op.data.id, force=op.force, batch=b, settings=s
    ),
}


def execute_operation(
    plan_dir: Path,
    operation: Any,
    batch: BatchContext,
    settings: Settings,
) -> OperationResult:
    """Route one parsed operation to its handler."""
    handler = _HANDLERS.get(type(operation))
    if handler is None:
        return OperationResult.fail(
            f"Unsupported operation: {operation!r}", code="INVALID_OPERATION"
        )
    return handler(plan_dir, operation, batch, settings)


def verify_plan_integrity(plan_dir: Path) -> ValidationReport:
    """Full schema, dependency and reference check of the committed plan."""
    try:
        ws = PlanWorkspace.load(plan_dir)
    except PlanVaultError as exc:
        report = ValidationReport()
        report.add_error("plan", exc.message, exc.code)
        return report
    return ws.validate()


def _record(index: int, operation: Any, result: OperationResult) -> dict[str, Any]:
    record: dict[str, Any] = {
        "index": index,
        "operation": operation.describe(),
        "target": operation.target,
        "type": operation.type,
        "target_id": operation.target_id or result.data.get(f"{operation.target}_id"),
    }
    if result.success:
        record["message"] = result.message
        record["data"] = result.data
    else:
        record["error"] = result.error
        record["code"] = result.code
        if result.details:
            record["details"] = result.details
    if result.warnings:
        record["warnings"] = list(result.warnings)
    return record


def execute_update(
    plan_dir: Path,
    operations: Sequence[Any],
    *,
    dry_run: bool = False,
    stop_on_error: bool = True,
    force: bool = False,
    mode: str = "rollback",
    settings: Settings | None = None,
) -> OperationResult:
    """Apply a batch of update operations atomically.

    Args:
        plan_dir: Plan directory.
        operations: Raw operation mappings or typed UpdateOperation models.
        dry_run: Validate and assess only; nothing is written.
        stop_on_error: On the first failure restore the batch backup and
            skip the remaining operations. When False, failures are
            collected and successful operations stay applied.
        force: Allow mutating completed items (never in-progress ones).
        mode: Recorded in audit metadata (``rollback``, ``selective``, ``replan``).
        settings: Retention and audit configuration.

    Returns:
        OperationResult with ``batch_id``, ``completed``, ``failed``,
        ``skipped``, ``rolled_back`` and ``duration_ms`` in data, and the
        batch backup path.
    """
    settings = settings or Settings()
    plan_dir = Path(plan_dir)
    if not layout.is_plan_dir(plan_dir):
        return OperationResult.fail(f"Plan directory not found: {plan_dir}", code="NOT_FOUND")
    if not operations:
        return OperationResult.fail("No operations provided", code="VALIDATION_FAILED")

    parsed, errors = parse_operations(operations)
    if errors:
        logger.info("Batch rejected: %d invalid operation(s)", len(errors))
        return OperationResult.fail(
            f"{len(errors)} of {len(operations)} operation(s) failed validation",
            code="VALIDATION_FAILED",
            data={"validation_errors": errors},
            details=errors,
        )
    ordered = sort_by_priority(parsed)

    if dry_run:
        assessment = can_safely_update(plan_dir, ordered, force=force)
        return OperationResult.ok(
            f"Dry run: {len(ordered)} operation(s) valid, nothing written",
            data={
                "dry_run": True,
                "operation_count": len(ordered),
                "operations": [op.describe() for op in ordered],
                "impact": assessment.data,
            },
            warnings=assessment.warnings,
        )

    batch_id = generate_batch_id()
    set_plan_context(plan_dir.name, actor=settings.actor)
    set_batch_context(batch_id)
    try:
        return _run_batch(plan_dir, ordered, batch_id, stop_on_error, force, mode, settings)
    finally:
        set_operation_context(None)
        set_batch_context(None)


def _run_batch(
    plan_dir: Path,
    ordered: list[Any],
    batch_id: str,
    stop_on_error: bool,
    force: bool,
    mode: str,
    settings: Settings,
) -> OperationResult:
    start_ns = time.monotonic_ns()
    try:
        backup_path = create_backup(plan_dir, settings.backup_retention)
    except PlanVaultError as exc:
        logger.error("Batch %s aborted, backup failed: %s", batch_id, exc.message)
        return OperationResult.from_error(exc, data={"batch_id": batch_id})

    log_batch_start(plan_dir, batch_id, ordered, mode=mode, settings=settings)
    batch = BatchContext(
        batch_id=batch_id,
        backup_path=backup_path,
        force=force,
        removing_phases=frozenset(op.data.id for op in ordered if isinstance(op, PhaseDelete)),
        removing_tasks=frozenset(op.data.id for op in ordered if isinstance(op, TaskDelete)),
    )
    logger.info("Batch %s: %d operation(s), backup %s", batch_id, len(ordered), backup_path)

    completed: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    warnings: list[str] = []
    stopped_at: int | None = None
    for index, op in enumerate(ordered):
        set_operation_context(op.describe())
        result = execute_operation(plan_dir, op, batch, settings)
        record = _record(index, op, result)
        log_operation(
            plan_dir,
            op.type,
            op.target,
            record["target_id"],
            before=result.before,
            after=result.after,
            success=result.success,
            error=result.error,
            metadata={
                "batchId": batch_id,
                "operationIndex": index,
                "mode": mode,
                "force": force or op.force,
            },
            settings=settings,
        )
        warnings.extend(result.warnings)
        if result.success:
            completed.append(record)
            continue
        failed.append(record)
        logger.warning(
            "Batch %s: %s failed [%s]: %s", batch_id, op.describe(), result.code, result.error
        )
        if stop_on_error:
            stopped_at = index
            break
    set_operation_context(None)

    skipped = [] if stopped_at is None else [
        op.describe() for op in ordered[stopped_at + 1:]
    ]
    if stopped_at is None:
        report = verify_plan_integrity(plan_dir)
        warnings.extend(w.message for w in report.warnings)
        if not report.valid:
            failed.append(
                {
                    "index": None,
                    "operation": "integrity check",
                    "error": format_validation_errors(report),
                    "code": "VALIDATION_FAILED",
                    "details": [e.model_dump() for e in report.errors],
                }
            )

    rolled_back = False
    if failed and stop_on_error:
        try:
            restore_from_backup(backup_path)
            rolled_back = True
        except RestoreError as exc:
            logger.critical("Batch %s: restore from %s failed", batch_id, backup_path)
            log_batch_complete(
                plan_dir, batch_id, completed=len(completed), failed=len(failed),
                rolled_back=False, backup_path=str(backup_path),
                duration_ms=(time.monotonic_ns() - start_ns) // 1_000_000,
                mode=mode, settings=settings,
            )
            return OperationResult.from_error(
                exc,
                backup_path=str(backup_path),
                data={"batch_id": batch_id, "completed": completed, "failed": failed},
            )

    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
    log_batch_complete(
        plan_dir, batch_id, completed=len(completed), failed=len(failed),
        rolled_back=rolled_back, backup_path=str(backup_path),
        duration_ms=duration_ms, mode=mode, settings=settings,
    )
    data = {
        "batch_id": batch_id,
        "operation_count": len(ordered),
        "completed": completed,
        "failed": failed,
        "skipped": skipped,
        "rolled_back": rolled_back,
        "duration_ms": duration_ms,
    }
    if not failed:
        logger.info(
            "Batch %s applied %d operation(s) in %d ms", batch_id, len(completed), duration_ms
        )
        return OperationResult.ok(
            f"Applied {len(completed)} operation(s)",
            data=data, warnings=warnings, backup_path=str(backup_path),
        )

    first = failed[0]
    if rolled_back:
        error = f"Batch failed at '{first['operation']}': {first['error']}; all changes rolled back"
    else:
        error = f"{len(failed)} of {len(ordered)} operation(s) failed; {len(completed)} applied"
        data["partial"] = True
    return OperationResult.fail(
        error,
        code=first.get("code") or "OPERATION_FAILED",
        data=data,
        warnings=warnings,
        backup_path=str(backup_path),
    )
