# tests/unit/recovery/test_replan.py — v1
"""Tests for recovery/replan.py — reset to pending with provenance."""

from __future__ import annotations

import json

from planvault.audit.logger import query_log
from planvault.logging.context import clear_context, get_context
from planvault.recovery.replan import (
    backup_execution_logs,
    get_execution_history,
    list_log_backups,
    reset_progress,
    rollback_and_replan,
)
from planvault.storage.workspace import PlanWorkspace

_STARTED = {
    "phase_statuses": {"phase-1-setup": "completed", "phase-2-backend": "in-progress"},
    "task_statuses": {
        "task-1-init": "completed",
        "task-2-config": "completed",
        "task-3-api": "in-progress",
    },
}


class TestBackupExecutionLogs:
    def test_writes_state_and_summary(self, plan_factory):
        plan_dir = plan_factory(**_STARTED)
        target = backup_execution_logs(plan_dir)
        assert target.parent == plan_dir / ".logs-backup"
        summary = json.loads((target / "execution-summary.json").read_text(encoding="utf-8"))
        assert summary["completedTasks"] == ["task-1-init", "task-2-config"]
        assert summary["inProgressTasks"] == ["task-3-api"]
        assert summary["taskResults"]["task-3-api"]["status"] == "in-progress"
        assert (target / "execution-state.json").is_file()

    def test_retention(self, plan_factory):
        plan_dir = plan_factory(**_STARTED)
        for _ in range(3):
            backup_execution_logs(plan_dir, retention=2)
        assert len(list_log_backups(plan_dir)) == 2


class TestResetProgress:
    def test_counts_and_clears(self, plan_factory):
        plan_dir = plan_factory(**_STARTED)
        ws = PlanWorkspace.load(plan_dir)
        ws.phases["phase-1-setup"].tasks[0].result = {"ok": True}
        counts = reset_progress(ws)
        assert counts == {"phases": 2, "tasks": 3}
        assert set(ws.state.task_statuses.values()) == {"pending"}
        assert ws.state.started_at is None
        assert ws.plan.status == "pending"
        assert ws.phases["phase-1-setup"].tasks[0].result is None

    def test_preserve_completed(self, plan_factory):
        plan_dir = plan_factory(**_STARTED)
        ws = PlanWorkspace.load(plan_dir)
        ws.phases["phase-1-setup"].tasks[0].result = {"ok": True}
        reset_progress(ws, preserve_completed=True)
        assert ws.phases["phase-1-setup"].tasks[0].result == {"ok": True}


class TestRollbackAndReplan:
    def test_not_started(self, plan_dir, settings):
        assert rollback_and_replan(plan_dir, settings=settings).code == "PLAN_NOT_STARTED"

    def test_dry_run(self, plan_factory, settings, tree_snapshot):
        plan_dir = plan_factory(**_STARTED)
        before = tree_snapshot(plan_dir)
        result = rollback_and_replan(plan_dir, dry_run=True, settings=settings)
        assert result.success
        assert result.data["would_reset"]["in_progress_tasks"] == ["task-3-api"]
        assert tree_snapshot(plan_dir) == before

    def test_operation_context_cleared(self, plan_factory, settings):
        plan_dir = plan_factory(**_STARTED)
        clear_context()
        rollback_and_replan(plan_dir, dry_run=True, settings=settings)
        assert get_context().operation is None
        rollback_and_replan(plan_dir, settings=settings)
        assert get_context().operation is None

    def test_reset_and_apply(self, plan_factory, settings):
        plan_dir = plan_factory(**_STARTED)
        operations = [{"type": "add", "target": "phase", "data": {"name": "Docs"}}]
        result = rollback_and_replan(plan_dir, operations, settings=settings)
        assert result.success, result.error
        assert result.data["reset"] == {"phases": 2, "tasks": 3}
        assert result.backup_path is not None
        assert result.data["batch"]["rolled_back"] is False

        ws = PlanWorkspace.load(plan_dir)
        assert ws.plan.status == "pending"
        assert set(ws.state.task_statuses.values()) == {"pending"}
        assert "phase-5-docs" in ws.plan.phase_ids
        assert len(ws.plan.execution_history) == 1
        entry = ws.plan.execution_history[0]
        assert entry.task_results["task-1-init"]["status"] == "completed"
        assert entry.logs_backup_path.startswith(".logs-backup/logs-")
        assert (plan_dir / entry.logs_backup_path / "execution-summary.json").is_file()

        audit = query_log(plan_dir, operation_type="rollback_replan")
        assert len(audit) == 1
        assert audit[0].metadata["mode"] == "replan"

    def test_failed_updates_keep_reset(self, plan_factory, settings):
        plan_dir = plan_factory(**_STARTED)
        operations = [{"type": "delete", "target": "phase", "data": {"id": "phase-1-setup"}}]
        result = rollback_and_replan(plan_dir, operations, settings=settings)
        assert not result.success
        assert result.code == "HAS_DEPENDENT_PHASES"
        assert result.backup_path is not None
        ws = PlanWorkspace.load(plan_dir)
        assert ws.plan.status == "pending"
        assert "phase-1-setup" in ws.plan.phase_ids
        assert len(ws.plan.execution_history) == 1


class TestGetExecutionHistory:
    def test_empty(self, plan_dir):
        result = get_execution_history(plan_dir)
        assert result.data == {"history": [], "log_backups": []}

    def test_after_replan(self, plan_factory, settings):
        plan_dir = plan_factory(**_STARTED)
        rollback_and_replan(plan_dir, settings=settings)
        result = get_execution_history(plan_dir)
        assert result.message == "1 history entry"
        assert len(result.data["log_backups"]) == 1
        assert result.data["history"][0]["reason"] == "rollback-replan"
