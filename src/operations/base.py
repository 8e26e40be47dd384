# src/operations/base.py — v1
"""Shared plumbing for single-entity handlers.

Every handler follows the same sequence: load the plan workspace, mutate
it in memory, re-validate schema and dependency graphs, take a backup
(unless running inside a batch that already took one), then write. Any
failure before the write leaves the plan directory untouched.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from planvault.audit.logger import log_operation
from planvault.config.settings import Settings
from planvault.core.errors import (
    BlockedOperationError,
    ConflictError,
    OperationError,
    PlanValidationError,
    PlanVaultError,
)
from planvault.core.results import OperationResult
from planvault.storage.backup import create_backup
from planvault.storage.workspace import PlanWorkspace
from planvault.validators.safety import SafetyCheck
from planvault.validators.schema import issues_from_pydantic

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass
class BatchContext:
    """Handed to handlers by the orchestrator for operations inside a batch.

    Handlers skip their own backup when a batch context is present; the
    batch backup covers them.
    """

    batch_id: str
    backup_path: Path | None = None
    force: bool = False
    removing_phases: frozenset[str] = field(default_factory=frozenset)
    removing_tasks: frozenset[str] = field(default_factory=frozenset)


def coerce(model: type[M], value: M | Mapping[str, Any], label: str) -> M:
    """Validate a payload, turning pydantic errors into PlanValidationError."""
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        issues = issues_from_pydantic(exc)
        raise PlanValidationError(
            f"Invalid {label}: " + "; ".join(f"{i.field}: {i.message}" for i in issues),
            code=issues[0].code if len(issues) == 1 else None,
            details=[i.model_dump() for i in issues],
        ) from exc


def raise_if_blocked(check: SafetyCheck) -> None:
    """Turn a refused SafetyCheck into BlockedOperationError."""
    if not check.can_proceed:
        raise BlockedOperationError(
            check.reason or "Operation blocked",
            code=check.code,
            requires_force=check.requires_force,
        )


def check_position(position: int | None, size: int) -> int:
    """Insert index for a list of ``size`` items; None means append."""
    if position is None:
        return size
    if position < 0 or position > size:
        raise PlanValidationError(
            f"Position {position} is out of range 0..{size}", code="VALUE_OUT_OF_RANGE"
        )
    return position


def check_permutation(new_order: Sequence[str], current: Sequence[str], kind: str) -> None:
    """Raise ConflictError unless ``new_order`` is exactly a permutation of ``current``."""
    duplicates = sorted(i for i, n in Counter(new_order).items() if n > 1)
    missing = sorted(set(current) - set(new_order))
    unknown = sorted(set(new_order) - set(current))
    if duplicates or missing or unknown or len(new_order) != len(current):
        raise ConflictError(
            f"New {kind} order must be a permutation of the existing ids",
            code="INVALID_PERMUTATION",
            details=[{"missing": missing, "unknown": unknown, "duplicates": duplicates}],
        )


def run_handler(
    plan_dir: Path,
    mutate: Callable[[PlanWorkspace], OperationResult],
    *,
    batch: BatchContext | None,
    settings: Settings | None,
    audit: tuple[str, str, str | None] | None = None,
) -> OperationResult:
    """Run ``mutate`` against a fresh workspace and persist on success.

    ``mutate`` raises PlanVaultError subclasses to fail; it returns the
    success result (message, data, before/after snapshots). Standalone
    calls append ``audit`` (operation type, target, target id) to the
    audit log; inside a batch the orchestrator writes that entry instead.
    """
    settings = settings or Settings()
    backup_path = str(batch.backup_path) if batch and batch.backup_path else None
    try:
        ws = PlanWorkspace.load(Path(plan_dir))
        result = mutate(ws)
        report = ws.validate()
        report.raise_if_invalid("Update rejected")
        if batch is None:
            backup_path = str(create_backup(ws.plan_dir, settings.backup_retention))
        ws.commit()
    except PlanVaultError as exc:
        logger.info("Handler failed [%s]: %s", exc.code, exc.message)
        result = OperationResult.from_error(exc, backup_path=backup_path)
    except OSError as exc:
        logger.error("Handler I/O failure: %s", exc)
        result = OperationResult.from_error(
            OperationError(f"I/O failure while updating plan: {exc}"),
            backup_path=backup_path,
        )
    else:
        result.backup_path = backup_path
        result.warnings.extend(w.message for w in report.warnings)

    if batch is None and audit is not None:
        operation_type, target, target_id = audit
        log_operation(
            Path(plan_dir),
            operation_type,
            target,
            target_id or result.data.get(f"{target}_id"),
            before=result.before,
            after=result.after,
            success=result.success,
            error=result.error,
            metadata={"mode": "standalone", "backupPath": backup_path},
            settings=settings,
        )
    return result
