# src/recovery/selective.py — v1
"""Selective update — mutate only not-yet-executed structure.

The conservative recovery path for a plan that is already running:
classify every operation, refuse (or skip) what touches in-progress or
completed work, and hand the safe remainder to the orchestrator behind
one backup.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from planvault.config.settings import Settings
from planvault.core.errors import PlanVaultError
from planvault.core.results import OperationResult
from planvault.execution.analyzer import assess_operations, snapshot
from planvault.operations.models import parse_operations
from planvault.operations.orchestrator import execute_update
from planvault.storage.workspace import PlanWorkspace

logger = logging.getLogger(__name__)

STARTED_DISCLAIMER = (
    "Plan execution has already started; even safe edits can leave ordering "
    "assumptions of completed work stale. Review dependent phases before resuming."
)


def selective_update(
    plan_dir: Path,
    operations: Sequence[Any],
    *,
    dry_run: bool = False,
    force: bool = False,
    skip_blocked: bool = False,
    settings: Settings | None = None,
) -> OperationResult:
    """Apply only the safe subset of a batch to a running plan.

    Args:
        plan_dir: Plan directory.
        operations: Raw or typed update operations.
        dry_run: Classify only.
        force: Allow mutating completed items. In-progress items stay blocked.
        skip_blocked: Apply the safe operations even when some are blocked.
            When False, any blocked operation fails the whole call.
        settings: Passed through to the orchestrator.

    Returns:
        OperationResult with ``applied``, ``blocked`` and the orchestrator's
        batch details in data.
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
    assessments = assess_operations(ws, parsed, force=force)
    safe_ops = [parsed[a.index] for a in assessments if a.safe]
    blocked = [a.model_dump() for a in assessments if not a.safe]
    warnings = [w for a in assessments if a.safe for w in a.warnings]
    if snap.has_started:
        warnings.insert(0, STARTED_DISCLAIMER)

    if blocked and not skip_blocked:
        logger.info("Selective update refused: %d blocked operation(s)", len(blocked))
        return OperationResult.fail(
            f"{len(blocked)} operation(s) blocked by execution state; nothing applied",
            code="OPERATIONS_BLOCKED",
            data={
                "blocked": blocked,
                "safe_count": len(safe_ops),
                "applied": [],
                "execution_state": snap.model_dump(mode="json"),
            },
            warnings=warnings,
        )

    if skip_blocked and blocked:
        warnings.append(f"Skipped {len(blocked)} blocked operation(s)")

    if dry_run or not safe_ops:
        message = (
            f"Dry run: {len(safe_ops)} operation(s) would be applied"
            if dry_run else "No safe operations to apply; plan unchanged"
        )
        return OperationResult.ok(
            message,
            data={
                "dry_run": dry_run,
                "would_apply": [op.describe() for op in safe_ops],
                "applied": [],
                "blocked": blocked,
            },
            warnings=warnings,
        )

    result = execute_update(
        plan_dir,
        safe_ops,
        stop_on_error=True,
        force=force,
        mode="selective",
        settings=settings,
    )
    data = dict(result.data)
    data["blocked"] = blocked
    data["applied"] = data.get("completed", []) if result.success else []
    if result.success:
        # Re-sync the execution-state maps with the edited structure.
        try:
            PlanWorkspace.load(plan_dir).save("Execution state re-sync failed")
        except PlanVaultError as exc:
            return OperationResult.from_error(
                exc, backup_path=result.backup_path, data=data, warnings=warnings
            )
    return result.model_copy(
        update={"data": data, "warnings": warnings + list(result.warnings)}
    )
