# tests/unit/api/test_facade.py — v1
"""Tests for api/facade.py — PlanVault surface bound to one plan directory."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from planvault.api.facade import PlanVault


@pytest.fixture
def vault(plan_dir, settings) -> PlanVault:
    return PlanVault(plan_dir, settings=settings)


class TestPlanVault:
    def test_repr(self, vault, plan_dir):
        assert repr(vault) == f"PlanVault({str(plan_dir)!r})"

    def test_single_entity_round(self, vault):
        assert vault.add_phase({"name": "Docs"}).success
        assert vault.add_task("phase-5-docs", {"name": "Guide"}).success
        assert vault.update_task("phase-5-docs", "task-6-guide", {"description": "d"}).success
        assert vault.move_task("task-6-guide", "phase-5-docs", "phase-4-deploy").success
        assert vault.reorder_tasks("phase-4-deploy", ["task-6-guide", "task-5-ship"]).success
        assert vault.remove_task("phase-4-deploy", "task-6-guide").success
        assert vault.update_phase_metadata("phase-5-docs", {"name": "Documentation"}).success
        assert vault.remove_phase("phase-5-docs").success
        assert vault.get_plan_metadata().data["phase_count"] == 4
        stats = vault.get_log_stats()
        assert stats.success
        assert stats.data["total_entries"] == 8
        assert stats.data["failed"] == 0

    def test_batch_and_log(self, vault):
        result = vault.execute_update(
            [{"type": "update", "target": "metadata", "data": {"description": "v2"}}]
        )
        assert result.success, result.error
        entries = vault.get_batch_entries(result.data["batch_id"])
        assert [e.operation_type for e in entries] == ["batch_start", "update", "batch_complete"]
        assert vault.get_recent_entries(1)[0].operation_type == "batch_complete"
        matched = vault.query_log(target="metadata")
        assert matched.success
        assert matched.data["count"] == 1
        assert matched.data["entries"][0]["operationType"] == "update"
        exported = vault.export_log("narrative")
        assert exported.success
        assert "started batch" in exported.data["content"]

    def test_export_unknown_format(self, vault):
        result = vault.export_log("xml")
        assert not result.success
        assert result.code == "VALIDATION_FAILED"

    def test_state_and_validation(self, vault):
        assert vault.validate().valid
        assert vault.get_execution_state().data["has_started"] is False
        assert vault.record_task_status("task-1-init", "in-progress").success
        assert vault.get_execution_state().data["is_executing"] is True
        assert vault.record_phase_status("phase-1-setup", "in-progress").success
        assert vault.get_progress_summary().success
        assert not vault.can_safely_update(
            [{"type": "delete", "target": "phase", "data": {"id": "phase-1-setup"}}]
        ).data["can_proceed"]

    def test_recovery(self, vault):
        vault.record_task_status("task-1-init", "completed")
        blocked = vault.selective_update(
            [{"type": "update", "target": "task",
              "data": {"phaseId": "phase-1-setup", "id": "task-1-init", "name": "x"}}]
        )
        assert blocked.code == "OPERATIONS_BLOCKED"
        assert vault.rollback_and_replan().success
        assert len(vault.get_execution_history().data["history"]) == 1

    def test_backups(self, vault):
        backup = vault.create_backup()
        assert vault.list_backups() == [backup]
        vault.update_plan_metadata({"name": "Changed"})
        vault.restore_from_backup(backup)
        assert vault.read_plan()["name"] == "Demo plan"
        assert vault.load().plan.name == "Demo plan"

    def test_levels(self, vault):
        assert vault.compute_levels().max_width == 2

    @pytest.mark.asyncio
    async def test_run(self, vault):
        result = await vault.run(AsyncMock(return_value=5))
        assert result.success
        assert len(result.completed) == 4
