# src/operations/phase_ops.py — v1
"""Phase handlers: add, remove, update metadata, reorder."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from planvault.config.settings import Settings
from planvault.core.errors import ConflictError, PlanValidationError
from planvault.core.ids import generate_phase_id, generate_task_id
from planvault.core.models import PhaseDocument, PhaseMetrics, PhaseRef
from planvault.core.results import OperationResult
from planvault.operations.base import (
    BatchContext,
    check_permutation,
    check_position,
    coerce,
    raise_if_blocked,
    run_handler,
)
from planvault.operations.models import PhasePatch, PhaseSpec
from planvault.operations.task_ops import build_task
from planvault.storage import layout
from planvault.storage.workspace import PlanWorkspace
from planvault.validators.safety import (
    can_delete_phase,
    effective_phase_status,
    evaluate_mutation,
)

logger = logging.getLogger(__name__)

_PATCH_CONTROL_FIELDS = {"id", "force"}
# Fields mirrored from the orchestration entry into the phase document.
_MIRRORED_FIELDS = ("name", "type", "dependencies")


def add_phase(
    plan_dir: Path,
    phase: PhaseSpec | Mapping[str, Any],
    *,
    position: int | None = None,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Add a phase and create its phase document.

    Args:
        plan_dir: Plan directory.
        phase: New phase; ``id`` defaults to ``phase-{ordinal}-{slug}`` and
            ``file`` to ``phases/<id>.json``.
        position: Insert index (default: append). Overrides
            ``phase.insert_at_index``.
        batch: Set when called by the orchestrator.
        settings: Defaults for estimated tokens/duration and backup retention.

    Returns:
        OperationResult with ``phase_id``, ``position`` and ``file`` in data.
    """
    settings = settings or Settings()

    def mutate(ws: PlanWorkspace) -> OperationResult:
        spec = coerce(PhaseSpec, phase, "phase")
        existing = ws.plan.phase_ids
        phase_id = spec.id or generate_phase_id(spec.name, existing)
        if phase_id in existing:
            raise ConflictError(f"Phase '{phase_id}' already exists", code="PHASE_ID_EXISTS")

        requested = position if position is not None else spec.insert_at_index
        index = check_position(requested, len(ws.plan.phases))
        estimated = spec.estimated_tokens
        if estimated is None:
            estimated = settings.default_phase_estimated_tokens

        if spec.file is not None and not layout.is_managed_phase_file(ws.plan_dir, spec.file):
            raise PlanValidationError(
                f"Phase file '{spec.file}' must stay inside the plan directory",
                code="VALUE_OUT_OF_RANGE",
            )
        ref = PhaseRef(
            id=phase_id,
            name=spec.name,
            file=spec.file or layout.default_phase_file(phase_id),
            type=spec.type,
            dependencies=list(spec.dependencies),
            estimated_tokens=estimated,
            estimated_duration=spec.estimated_duration or settings.default_phase_estimated_duration,
        )

        task_ids = ws.all_task_ids()
        tasks = []
        for task_spec in spec.tasks:
            task_id = task_spec.id or generate_task_id(task_spec.name, task_ids)
            task_ids.append(task_id)
            tasks.append(build_task(task_spec, task_id, settings))

        doc = PhaseDocument(
            id=phase_id,
            name=spec.name,
            description=spec.description,
            type=spec.type,
            dependencies=list(spec.dependencies),
            tasks=tasks,
            metrics=PhaseMetrics(estimated_tokens=estimated),
        )
        ws.plan.phases.insert(index, ref)
        ws.put_phase(doc)
        logger.debug("Adding phase %s at position %d", phase_id, index)
        return OperationResult.ok(
            f"Added phase '{phase_id}'",
            data={"phase_id": phase_id, "position": index, "file": ref.file},
            after=ref.to_document(),
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("add", "phase", None)
    )


def remove_phase(
    plan_dir: Path,
    phase_id: str,
    *,
    force: bool = False,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Remove a phase, its document and its execution-state entries.

    Blocked (with no file change) when the phase is in progress, when other
    phases depend on it, or when it is completed and ``force`` is not set.
    """

    def mutate(ws: PlanWorkspace) -> OperationResult:
        removing = batch.removing_phases if batch else frozenset()
        check = can_delete_phase(
            phase_id,
            ws.plan,
            ws.state,
            force=force or bool(batch and batch.force),
            also_removing=removing,
            phase_document=ws.phases.get(phase_id),
        )
        raise_if_blocked(check)

        ref = ws.phase_ref(phase_id)
        before = ref.to_document()
        index = ws.plan.phase_index(phase_id)
        del ws.plan.phases[index]
        # Dependents being removed in the same batch lose the edge now.
        for other in ws.plan.phases:
            if phase_id in other.dependencies and other.id in removing:
                other.dependencies = [d for d in other.dependencies if d != phase_id]
                doc = ws.phases.get(other.id)
                if doc is not None:
                    doc.dependencies = list(other.dependencies)
                    ws.put_phase(doc)
        ws.drop_phase(phase_id, ref.file)
        return OperationResult.ok(
            f"Removed phase '{phase_id}'",
            data={"phase_id": phase_id, "position": index, "removed_file": ref.file},
            warnings=list(check.warnings),
            before=before,
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("delete", "phase", phase_id)
    )


def update_phase_metadata(
    plan_dir: Path,
    phase_id: str,
    updates: PhasePatch | Mapping[str, Any],
    *,
    force: bool = False,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Update allowed phase fields and mirror them into the phase document.

    The dependency graph is re-validated on save, so a change to
    ``dependencies`` that dangles or creates a cycle is rejected.
    """

    def mutate(ws: PlanWorkspace) -> OperationResult:
        patch = coerce(PhasePatch, updates, "phase update")
        fields = {
            k: v for k, v in patch.provided(exclude=_PATCH_CONTROL_FIELDS).items()
            if v is not None
        }
        if not fields:
            raise PlanValidationError("No phase fields to update", code="NO_UPDATE_FIELDS")

        ref = ws.phase_ref(phase_id)
        doc = ws.phase_document(phase_id)
        status = effective_phase_status(phase_id, ws.state, doc, fallback=ref.status)
        check = evaluate_mutation(
            "phase", phase_id, status, action="update", force=force or bool(batch and batch.force)
        )
        raise_if_blocked(check)

        before = ref.to_document()
        before["description"] = doc.description
        for name, value in fields.items():
            value = list(value) if isinstance(value, list) else value
            if name == "description":
                doc.description = value
                continue
            setattr(ref, name, value)
            if name in _MIRRORED_FIELDS:
                setattr(doc, name, list(value) if isinstance(value, list) else value)
            elif name == "estimated_tokens":
                doc.metrics.estimated_tokens = value
        ws.put_phase(doc)

        after = ref.to_document()
        after["description"] = doc.description
        return OperationResult.ok(
            f"Updated phase '{phase_id}'",
            data={
                "phase_id": phase_id,
                "updated_fields": sorted(fields),
                "dependencies_changed": "dependencies" in fields,
            },
            warnings=list(check.warnings),
            before=before,
            after=after,
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("update", "phase", phase_id)
    )


def reorder_phases(
    plan_dir: Path,
    new_order: Sequence[str],
    *,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Reorder phases; fails unless ``new_order`` is an exact permutation."""

    def mutate(ws: PlanWorkspace) -> OperationResult:
        previous = ws.plan.phase_ids
        check_permutation(new_order, previous, "phase")
        ws.plan.phases = [ws.phase_ref(phase_id) for phase_id in new_order]
        return OperationResult.ok(
            f"Reordered {len(previous)} phases",
            data={"previous_order": previous, "new_order": list(new_order)},
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("reorder", "phase", None)
    )
