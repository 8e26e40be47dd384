# src/operations/task_ops.py — v1
"""Task handlers: add, remove, update, move, reorder.

Mirror the phase handlers one level down, scoped to a phase's task list.
Task ids are unique across the plan because the execution state keys
task statuses by id alone.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from planvault.config.settings import Settings
from planvault.core.errors import ConflictError, PlanValidationError
from planvault.core.ids import generate_task_id
from planvault.core.models import Task
from planvault.core.results import OperationResult
from planvault.operations.base import (
    BatchContext,
    check_permutation,
    check_position,
    coerce,
    raise_if_blocked,
    run_handler,
)
from planvault.operations.models import TaskPatch, TaskSpec
from planvault.storage.workspace import PlanWorkspace
from planvault.validators.safety import can_delete_task, evaluate_mutation

logger = logging.getLogger(__name__)

_PATCH_CONTROL_FIELDS = {"phase_id", "id", "force"}


def build_task(spec: TaskSpec, task_id: str, settings: Settings) -> Task:
    """Materialize a Task from its spec, applying configured defaults."""
    estimated = spec.estimated_tokens
    if estimated is None:
        estimated = settings.default_task_estimated_tokens
    return Task(
        id=task_id,
        name=spec.name,
        description=spec.description,
        type=spec.type,
        dependencies=list(spec.dependencies),
        estimated_tokens=estimated,
        actions=list(spec.actions),
    )


def _task_status(ws: PlanWorkspace, task: Task) -> str:
    return ws.state.task_statuses.get(task.id, task.status)


def add_task(
    plan_dir: Path,
    phase_id: str,
    task: TaskSpec | Mapping[str, Any],
    *,
    position: int | None = None,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Add a task to a phase, derived id ``task-{ordinal}-{slug}`` if absent."""
    settings = settings or Settings()

    def mutate(ws: PlanWorkspace) -> OperationResult:
        spec = coerce(TaskSpec, task, "task")
        doc = ws.phase_document(phase_id)
        existing = ws.all_task_ids()
        task_id = spec.id or generate_task_id(spec.name, existing)
        if task_id in existing:
            raise ConflictError(f"Task '{task_id}' already exists", code="TASK_ID_EXISTS")

        requested = position if position is not None else getattr(spec, "insert_at_index", None)
        index = check_position(requested, len(doc.tasks))
        new_task = build_task(spec, task_id, settings)
        doc.tasks.insert(index, new_task)
        ws.put_phase(doc)
        return OperationResult.ok(
            f"Added task '{task_id}' to phase '{phase_id}'",
            data={"phase_id": phase_id, "task_id": task_id, "position": index},
            after=new_task.to_document(),
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("add", "task", None)
    )


def remove_task(
    plan_dir: Path,
    phase_id: str,
    task_id: str,
    *,
    force: bool = False,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Remove a task after can_delete_task allows it."""

    def mutate(ws: PlanWorkspace) -> OperationResult:
        doc = ws.phase_document(phase_id)
        target = ws.task(phase_id, task_id)
        check = can_delete_task(
            task_id,
            doc,
            ws.state,
            force=force or bool(batch and batch.force),
            also_removing=batch.removing_tasks if batch else (),
        )
        raise_if_blocked(check)
        before = target.to_document()
        doc.tasks = [t for t in doc.tasks if t.id != task_id]
        # Dependents removed in the same batch drop the edge with it.
        for other in doc.tasks:
            if task_id in other.dependencies:
                other.dependencies = [d for d in other.dependencies if d != task_id]
        ws.put_phase(doc)
        return OperationResult.ok(
            f"Removed task '{task_id}' from phase '{phase_id}'",
            data={"phase_id": phase_id, "task_id": task_id},
            warnings=list(check.warnings),
            before=before,
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("delete", "task", task_id)
    )


def update_task(
    plan_dir: Path,
    phase_id: str,
    task_id: str,
    updates: TaskPatch | Mapping[str, Any],
    *,
    force: bool = False,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Update allowed task fields; status is owned by the execution state."""

    def mutate(ws: PlanWorkspace) -> OperationResult:
        patch = coerce(TaskPatch, updates, "task update")
        fields = patch.provided(exclude=_PATCH_CONTROL_FIELDS)
        if not fields:
            raise PlanValidationError("No task fields to update", code="NO_UPDATE_FIELDS")
        doc = ws.phase_document(phase_id)
        target = ws.task(phase_id, task_id)
        check = evaluate_mutation(
            "task",
            task_id,
            _task_status(ws, target),
            action="update",
            force=force or bool(batch and batch.force),
        )
        raise_if_blocked(check)

        before = target.to_document()
        for name, value in fields.items():
            if value is None:
                continue
            setattr(target, name, list(value) if isinstance(value, list) else value)
        ws.put_phase(doc)
        return OperationResult.ok(
            f"Updated task '{task_id}'",
            data={"phase_id": phase_id, "task_id": task_id, "updated_fields": sorted(fields)},
            warnings=list(check.warnings),
            before=before,
            after=target.to_document(),
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("update", "task", task_id)
    )


def move_task(
    plan_dir: Path,
    task_id: str,
    from_phase_id: str,
    to_phase_id: str,
    *,
    position: int | None = None,
    force: bool = False,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Move a task to another phase.

    The task's dependencies must exist in the destination phase, and no
    task left behind may depend on it; otherwise validation rejects the move.
    """

    def mutate(ws: PlanWorkspace) -> OperationResult:
        source = ws.phase_document(from_phase_id)
        dest = ws.phase_document(to_phase_id)
        target = ws.task(from_phase_id, task_id)
        check = evaluate_mutation(
            "task",
            task_id,
            _task_status(ws, target),
            action="move",
            force=force or bool(batch and batch.force),
        )
        raise_if_blocked(check)

        if from_phase_id == to_phase_id:
            source.tasks = [t for t in source.tasks if t.id != task_id]
            index = check_position(position, len(source.tasks))
            source.tasks.insert(index, target)
            ws.put_phase(source)
        else:
            index = check_position(position, len(dest.tasks))
            source.tasks = [t for t in source.tasks if t.id != task_id]
            dest.tasks.insert(index, target)
            ws.put_phase(source)
            ws.put_phase(dest)
        return OperationResult.ok(
            f"Moved task '{task_id}' from '{from_phase_id}' to '{to_phase_id}'",
            data={
                "task_id": task_id,
                "from_phase_id": from_phase_id,
                "to_phase_id": to_phase_id,
                "position": index,
            },
            warnings=list(check.warnings),
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("move", "task", task_id)
    )


def reorder_tasks(
    plan_dir: Path,
    phase_id: str,
    new_order: Sequence[str],
    *,
    batch: BatchContext | None = None,
    settings: Settings | None = None,
) -> OperationResult:
    """Reorder a phase's tasks; ``new_order`` must be an exact permutation."""

    def mutate(ws: PlanWorkspace) -> OperationResult:
        doc = ws.phase_document(phase_id)
        previous = doc.task_ids
        check_permutation(new_order, previous, "task")
        by_id = {t.id: t for t in doc.tasks}
        doc.tasks = [by_id[t] for t in new_order]
        ws.put_phase(doc)
        return OperationResult.ok(
            f"Reordered {len(previous)} tasks in phase '{phase_id}'",
            data={"phase_id": phase_id, "previous_order": previous, "new_order": list(new_order)},
        )

    return run_handler(
        plan_dir, mutate, batch=batch, settings=settings, audit=("reorder", "task", phase_id)
    )
