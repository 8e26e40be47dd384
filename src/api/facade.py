# src/api/facade.py — v1
"""Public API facade — one object bound to one plan directory.

Usage:
    from planvault.api.facade import PlanVault
    vault = PlanVault("plans/my-plan")
    result = vault.execute_update([{"type": "add", "target": "phase", "data": {...}}])

Update, state and audit log methods return OperationResult; backup,
scheduling and the recent/batch entry helpers return their own types.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from planvault.audit import exporter
from planvault.audit import logger as audit_log
from planvault.audit.models import AuditEntry, AuditQuery
from planvault.config.settings import Settings
from planvault.core.results import OperationResult
from planvault.execution import analyzer, state_tracker
from planvault.operations import metadata_ops, orchestrator, phase_ops, task_ops
from planvault.recovery import replan, selective
from planvault.scheduler.coordinator import CoordinatorResult, ParallelCoordinator, PhaseExecutor
from planvault.scheduler.levels import ExecutionLevels, compute_levels
from planvault.storage import document_store
from planvault.storage.backup import create_backup, list_backups, restore_from_backup
from planvault.storage.workspace import PlanWorkspace
from planvault.validators.schema import ValidationReport

logger = logging.getLogger(__name__)


class PlanVault:
    """Operation surface for a single plan directory.

    Args:
        plan_dir: Directory holding ``orchestration.json``.
        settings: Global settings. Loaded from .env if None.
    """

    def __init__(self, plan_dir: Path | str, settings: Settings | None = None) -> None:
        self.plan_dir = Path(plan_dir)
        self.settings = settings or Settings()

    def __repr__(self) -> str:
        return f"PlanVault({str(self.plan_dir)!r})"

    # --- Batches and recovery ---

    def execute_update(
        self,
        operations: Sequence[Any],
        *,
        dry_run: bool = False,
        stop_on_error: bool = True,
        force: bool = False,
    ) -> OperationResult:
        return orchestrator.execute_update(
            self.plan_dir,
            operations,
            dry_run=dry_run,
            stop_on_error=stop_on_error,
            force=force,
            settings=self.settings,
        )

    def selective_update(
        self,
        operations: Sequence[Any],
        *,
        dry_run: bool = False,
        force: bool = False,
        skip_blocked: bool = False,
    ) -> OperationResult:
        return selective.selective_update(
            self.plan_dir,
            operations,
            dry_run=dry_run,
            force=force,
            skip_blocked=skip_blocked,
            settings=self.settings,
        )

    def rollback_and_replan(
        self,
        operations: Sequence[Any] = (),
        *,
        dry_run: bool = False,
        preserve_completed: bool = False,
    ) -> OperationResult:
        return replan.rollback_and_replan(
            self.plan_dir,
            operations,
            dry_run=dry_run,
            preserve_completed=preserve_completed,
            settings=self.settings,
        )

    def get_execution_history(self) -> OperationResult:
        return replan.get_execution_history(self.plan_dir)

    # --- Single-entity handlers ---

    def update_plan_metadata(self, updates: Mapping[str, Any]) -> OperationResult:
        return metadata_ops.update_plan_metadata(self.plan_dir, updates, settings=self.settings)

    def update_execution_config(self, config: Mapping[str, Any]) -> OperationResult:
        return metadata_ops.update_execution_config(self.plan_dir, config, settings=self.settings)

    def get_plan_metadata(self) -> OperationResult:
        return metadata_ops.get_plan_metadata(self.plan_dir)

    def add_phase(
        self, phase: Mapping[str, Any], *, position: int | None = None
    ) -> OperationResult:
        return phase_ops.add_phase(
            self.plan_dir, phase, position=position, settings=self.settings
        )

    def remove_phase(self, phase_id: str, *, force: bool = False) -> OperationResult:
        return phase_ops.remove_phase(self.plan_dir, phase_id, force=force, settings=self.settings)

    def update_phase_metadata(
        self, phase_id: str, updates: Mapping[str, Any], *, force: bool = False
    ) -> OperationResult:
        return phase_ops.update_phase_metadata(
            self.plan_dir, phase_id, updates, force=force, settings=self.settings
        )

    def reorder_phases(self, new_order: Sequence[str]) -> OperationResult:
        return phase_ops.reorder_phases(self.plan_dir, new_order, settings=self.settings)

    def add_task(
        self, phase_id: str, task: Mapping[str, Any], *, position: int | None = None
    ) -> OperationResult:
        return task_ops.add_task(
            self.plan_dir, phase_id, task, position=position, settings=self.settings
        )

    def remove_task(self, phase_id: str, task_id: str, *, force: bool = False) -> OperationResult:
        return task_ops.remove_task(
            self.plan_dir, phase_id, task_id, force=force, settings=self.settings
        )

    def update_task(
        self, phase_id: str, task_id: str, updates: Mapping[str, Any], *, force: bool = False
    ) -> OperationResult:
        return task_ops.update_task(
            self.plan_dir, phase_id, task_id, updates, force=force, settings=self.settings
        )

    def move_task(
        self,
        task_id: str,
        from_phase_id: str,
        to_phase_id: str,
        *,
        position: int | None = None,
        force: bool = False,
    ) -> OperationResult:
        return task_ops.move_task(
            self.plan_dir,
            task_id,
            from_phase_id,
            to_phase_id,
            position=position,
            force=force,
            settings=self.settings,
        )

    def reorder_tasks(self, phase_id: str, new_order: Sequence[str]) -> OperationResult:
        return task_ops.reorder_tasks(self.plan_dir, phase_id, new_order, settings=self.settings)

    # --- Execution state ---

    def get_execution_state(self) -> OperationResult:
        return analyzer.get_execution_state(self.plan_dir)

    def get_progress_summary(self) -> OperationResult:
        return analyzer.get_progress_summary(self.plan_dir)

    def can_safely_update(
        self, operations: Sequence[Any], *, force: bool = False
    ) -> OperationResult:
        return analyzer.can_safely_update(self.plan_dir, operations, force=force)

    def record_phase_status(self, phase_id: str, status: str, **kwargs: Any) -> OperationResult:
        return state_tracker.record_phase_status(self.plan_dir, phase_id, status, **kwargs)

    def record_task_status(self, task_id: str, status: str, **kwargs: Any) -> OperationResult:
        return state_tracker.record_task_status(self.plan_dir, task_id, status, **kwargs)

    # --- Validation and backups ---

    def validate(self) -> ValidationReport:
        """Full schema, dependency and reference check; never raises on invalid data."""
        return orchestrator.verify_plan_integrity(self.plan_dir)

    def create_backup(self) -> Path:
        return create_backup(self.plan_dir, self.settings.backup_retention)

    def list_backups(self) -> list[Path]:
        return list_backups(self.plan_dir)

    def restore_from_backup(self, backup_path: Path) -> Path:
        return restore_from_backup(backup_path)

    def load(self) -> PlanWorkspace:
        return PlanWorkspace.load(self.plan_dir)

    def read_plan(self) -> dict[str, Any]:
        return document_store.load_plan(self.plan_dir).to_document()

    # --- Scheduling ---

    def compute_levels(self) -> ExecutionLevels:
        return compute_levels(document_store.load_plan(self.plan_dir))

    async def run(self, executor: PhaseExecutor) -> CoordinatorResult:
        """Execute runnable phases level by level with ``executor``."""
        coordinator = ParallelCoordinator(self.plan_dir, executor, settings=self.settings)
        return await coordinator.run()

    # --- Audit log ---

    def query_log(self, query: AuditQuery | None = None, **filters: Any) -> OperationResult:
        """Matching audit entries, in file order, as camelCase dicts in ``data["entries"]``."""
        entries = audit_log.query_log(self.plan_dir, query, **filters)
        return OperationResult.ok(
            f"{len(entries)} matching entries",
            data={
                "count": len(entries),
                "entries": [e.model_dump(mode="json", by_alias=True) for e in entries],
            },
        )

    def get_log_stats(self) -> OperationResult:
        stats = audit_log.get_log_stats(self.plan_dir)
        return OperationResult.ok(
            f"{stats.total_entries} audit entries", data=stats.model_dump(mode="json")
        )

    def get_recent_entries(self, limit: int = 10) -> list[AuditEntry]:
        return audit_log.get_recent_entries(self.plan_dir, limit)

    def get_batch_entries(self, batch_id: str) -> list[AuditEntry]:
        return audit_log.get_batch_entries(self.plan_dir, batch_id)

    def export_log(
        self,
        fmt: exporter.ExportFormat = "json",
        query: AuditQuery | None = None,
        output_path: Path | None = None,
    ) -> OperationResult:
        """Render the history; the text is in ``data["content"]``."""
        try:
            text = exporter.export_log(self.plan_dir, fmt, query, output_path)
        except ValueError as exc:
            return OperationResult.fail(str(exc), code="VALIDATION_FAILED")
        except OSError as exc:
            return OperationResult.fail(f"Failed to export log: {exc}", code="OPERATION_FAILED")
        return OperationResult.ok(
            f"Exported audit log as {fmt}",
            data={
                "format": fmt,
                "content": text,
                "output_path": str(output_path) if output_path is not None else None,
            },
        )
