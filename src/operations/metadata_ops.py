# src/operations/metadata_ops.py — v1
"""Plan-level metadata and execution-config handlers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from planvault.config.settings import Settings
from planvault.core.errors import PlanValidationError, PlanVaultError
from planvault.core.models import ExecutionConfig
from planvault.core.results import OperationResult
from planvault.operations.base import BatchContext, coerce, run_handler
from planvault.operations.models import ExecutionConfigPatch, MetadataPatch
from planvault.storage.workspace import PlanWorkspace

logger = logging.getLogger(__name__)


def _apply_execution_patch(config: ExecutionConfig, patch: ExecutionConfigPatch) -> list[str]:
    """Merge field-by-field; nested budget/retry objects are merged too."""
    changed: list[str] = []
    for name, value in patch.provided(exclude={"token_budget", "retry_policy"}).items():
        if value is not None:
            setattr(config, name, value)
            changed.append(f"execution.{name}")
    if patch.token_budget is not None:
        for name, value in patch.token_budget.provided().items():
            setattr(config.token_budget, name, value)
            changed.append(f"execution.token_budget.{name}")
    if patch.retry_policy is not None:
        for name, value in patch.retry_policy.provided().items():
            if value is not None:
                setattr(config.retry_policy, name, value)
                changed.append(f"execution.retry_policy.{name}")
    return changed


def update_plan_metadata(
    plan_dir: Path,
    updates: MetadataPatch | Mapping[str, Any],
    *,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Update name, description, status, version and/or execution config."""

    def mutate(ws: PlanWorkspace) -> OperationResult:
        patch = coerce(MetadataPatch, updates, "metadata update")
        fields = patch.provided(exclude={"execution"})
        if not fields and patch.execution is None:
            raise PlanValidationError("No metadata fields to update", code="NO_METADATA_FIELDS")

        plan = ws.plan
        before = {
            "name": plan.name,
            "description": plan.description,
            "status": plan.status,
            "version": plan.version,
            "execution": plan.execution.to_document(),
        }
        changed: list[str] = []
        for name, value in fields.items():
            if value is None:
                continue
            setattr(plan, name, value)
            changed.append(name)
        if patch.execution is not None:
            changed.extend(_apply_execution_patch(plan.execution, patch.execution))
        if not changed:
            raise PlanValidationError("No metadata fields to update", code="NO_METADATA_FIELDS")

        after = {key: getattr(plan, key) for key in ("name", "description", "status", "version")}
        after["execution"] = plan.execution.to_document()
        return OperationResult.ok(
            "Updated plan metadata",
            data={"plan_id": plan.id, "updated_fields": changed},
            before=before,
            after=after,
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("update", "metadata", None)
    )


def update_execution_config(
    plan_dir: Path,
    config: ExecutionConfigPatch | Mapping[str, Any],
    *,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Update strategy, maxParallelPhases, token budget or retry policy."""
    try:
        patch = coerce(ExecutionConfigPatch, config, "execution config")
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)
    return update_plan_metadata(
        plan_dir, MetadataPatch(execution=patch), batch=batch, settings=settings
    )


def get_plan_metadata(plan_dir: Path) -> OperationResult:
    """Read-only summary of the orchestration document."""
    try:
        ws = PlanWorkspace.load(Path(plan_dir))
    except PlanVaultError as exc:
        return OperationResult.from_error(exc)
    plan = ws.plan
    return OperationResult.ok(
        f"Plan '{plan.id}'",
        data={
            "id": plan.id,
            "name": plan.name,
            "description": plan.description,
            "status": plan.status,
            "version": plan.version,
            "created": plan.created.isoformat(),
            "modified": plan.modified.isoformat(),
            "phase_count": len(plan.phases),
            "execution": plan.execution.to_document(),
            "progress": plan.progress.to_document(),
        },
    )
