# tests/unit/operations/test_phase_ops.py — v1
"""Tests for operations/phase_ops.py — phase add/remove/update/reorder."""

from __future__ import annotations

from planvault.audit.logger import iter_entries
from planvault.operations.phase_ops import (
    add_phase,
    remove_phase,
    reorder_phases,
    update_phase_metadata,
)
from planvault.storage.workspace import PlanWorkspace


class TestAddPhase:
    def test_generates_id_and_file(self, plan_dir, settings):
        result = add_phase(plan_dir, {"name": "Write Docs"}, settings=settings)
        assert result.success, result.error
        assert result.data["phase_id"] == "phase-5-write-docs"
        assert result.data["position"] == 4
        assert (plan_dir / "phases" / "phase-5-write-docs.json").is_file()
        assert result.backup_path is not None

        ws = PlanWorkspace.load(plan_dir)
        ref = ws.phase_ref("phase-5-write-docs")
        assert ref.estimated_tokens == settings.default_phase_estimated_tokens
        assert ref.estimated_duration == "1h"
        assert ws.state.phase_statuses["phase-5-write-docs"] == "pending"
        assert ws.plan.progress.total_phases == 5

    def test_insert_position_and_tasks(self, plan_dir, settings):
        result = add_phase(
            plan_dir,
            {"id": "phase-0-prep", "name": "Prep", "tasks": [{"name": "Clean"}]},
            position=0,
            settings=settings,
        )
        assert result.success, result.error
        ws = PlanWorkspace.load(plan_dir)
        assert ws.plan.phase_ids[0] == "phase-0-prep"
        assert ws.phases["phase-0-prep"].task_ids == ["task-6-clean"]
        assert ws.state.task_statuses["task-6-clean"] == "pending"

    def test_duplicate_id(self, plan_dir, settings, tree_snapshot):
        before = tree_snapshot(plan_dir)
        result = add_phase(plan_dir, {"id": "phase-1-setup", "name": "Again"}, settings=settings)
        assert not result.success
        assert result.code == "PHASE_ID_EXISTS"
        assert tree_snapshot(plan_dir) == before

    def test_dangling_dependency_rejected(self, plan_dir, settings, tree_snapshot):
        before = tree_snapshot(plan_dir)
        result = add_phase(
            plan_dir, {"name": "Late", "dependencies": ["phase-9-ghost"]}, settings=settings
        )
        assert result.code == "VALIDATION_FAILED"
        assert any(d["code"] == "MISSING_PHASE_DEPENDENCY" for d in result.details)
        assert tree_snapshot(plan_dir) == before
        assert not (plan_dir / ".backups").exists()

    def test_file_outside_plan_dir_rejected(self, plan_dir, settings, tree_snapshot):
        before = tree_snapshot(plan_dir)
        for file in ("../outside.json", ".backups/docs.json"):
            result = add_phase(plan_dir, {"name": "Docs", "file": file}, settings=settings)
            assert not result.success
            assert result.code == "VALUE_OUT_OF_RANGE"
        assert not (plan_dir.parent / "outside.json").exists()
        assert tree_snapshot(plan_dir) == before
        assert not (plan_dir / ".backups").exists()

    def test_unknown_payload_field(self, plan_dir, settings):
        result = add_phase(plan_dir, {"name": "X", "status": "completed"}, settings=settings)
        assert result.code == "UNKNOWN_FIELD"

    def test_writes_standalone_audit_entry(self, plan_dir, settings):
        result = add_phase(plan_dir, {"name": "Docs"}, settings=settings)
        entries = list(iter_entries(plan_dir))
        assert len(entries) == 1
        entry = entries[0]
        assert (entry.operation_type, entry.target) == ("add", "phase")
        assert entry.target_id == result.data["phase_id"]
        assert entry.actor == "tester"
        assert entry.metadata["mode"] == "standalone"
        assert entry.after["id"] == result.data["phase_id"]


class TestRemovePhase:
    def test_leaf_phase(self, plan_dir, settings):
        result = remove_phase(plan_dir, "phase-4-deploy", settings=settings)
        assert result.success, result.error
        assert not (plan_dir / "phases" / "phase-4-deploy.json").exists()
        ws = PlanWorkspace.load(plan_dir)
        assert "phase-4-deploy" not in ws.state.phase_statuses
        assert "task-5-ship" not in ws.state.task_statuses

    def test_dependents_block(self, plan_dir, settings):
        result = remove_phase(plan_dir, "phase-1-setup", settings=settings)
        assert result.code == "HAS_DEPENDENT_PHASES"
        assert result.data["can_proceed"] is False

    def test_in_progress_changes_nothing(self, plan_factory, settings, tree_snapshot):
        plan_dir = plan_factory(phase_statuses={"phase-4-deploy": "in-progress"})
        before = tree_snapshot(plan_dir)
        result = remove_phase(plan_dir, "phase-4-deploy", force=True, settings=settings)
        assert result.code == "PHASE_IN_PROGRESS"
        assert tree_snapshot(plan_dir) == before
        assert not (plan_dir / ".backups").exists()

    def test_completed_requires_force(self, plan_factory, settings):
        plan_dir = plan_factory(phase_statuses={"phase-4-deploy": "completed"})
        blocked = remove_phase(plan_dir, "phase-4-deploy", settings=settings)
        assert blocked.code == "PHASE_COMPLETED"
        assert blocked.data["requires_force"] is True

        forced = remove_phase(plan_dir, "phase-4-deploy", force=True, settings=settings)
        assert forced.success
        assert forced.warnings

    def test_unknown(self, plan_dir, settings):
        assert remove_phase(plan_dir, "phase-9", settings=settings).code == "PHASE_NOT_FOUND"


class TestUpdatePhase:
    def test_mirrors_into_document(self, plan_dir, settings):
        result = update_phase_metadata(
            plan_dir,
            "phase-2-backend",
            {"name": "API", "description": "REST layer", "estimatedTokens": 900},
            settings=settings,
        )
        assert result.success, result.error
        assert result.data["updated_fields"] == ["description", "estimated_tokens", "name"]
        ws = PlanWorkspace.load(plan_dir)
        assert ws.phase_ref("phase-2-backend").name == "API"
        doc = ws.phases["phase-2-backend"]
        assert (doc.name, doc.description) == ("API", "REST layer")
        assert doc.metrics.estimated_tokens == 900

    def test_cycle_rejected(self, plan_dir, settings, tree_snapshot):
        before = tree_snapshot(plan_dir)
        result = update_phase_metadata(
            plan_dir, "phase-1-setup", {"dependencies": ["phase-4-deploy"]}, settings=settings
        )
        assert result.code == "VALIDATION_FAILED"
        assert any(d["code"] == "CIRCULAR_PHASE_DEPENDENCY" for d in result.details)
        assert tree_snapshot(plan_dir) == before

    def test_no_fields(self, plan_dir, settings):
        result = update_phase_metadata(plan_dir, "phase-1-setup", {}, settings=settings)
        assert result.code == "NO_UPDATE_FIELDS"

    def test_completed_with_force(self, plan_factory, settings):
        plan_dir = plan_factory(phase_statuses={"phase-1-setup": "completed"})
        assert update_phase_metadata(
            plan_dir, "phase-1-setup", {"name": "S"}, settings=settings
        ).code == "PHASE_COMPLETED"
        result = update_phase_metadata(
            plan_dir, "phase-1-setup", {"name": "S"}, force=True, settings=settings
        )
        assert result.success
        assert result.warnings


class TestReorderPhases:
    def test_permutation(self, plan_dir, settings):
        order = ["phase-1-setup", "phase-3-frontend", "phase-2-backend", "phase-4-deploy"]
        result = reorder_phases(plan_dir, order, settings=settings)
        assert result.success, result.error
        assert PlanWorkspace.load(plan_dir).plan.phase_ids == order

    def test_not_a_permutation(self, plan_dir, settings):
        result = reorder_phases(
            plan_dir, ["phase-1-setup", "phase-1-setup", "phase-2-backend"], settings=settings
        )
        assert result.code == "INVALID_PERMUTATION"
        detail = result.details[0]
        assert detail["duplicates"] == ["phase-1-setup"]
        assert detail["missing"] == ["phase-3-frontend", "phase-4-deploy"]
