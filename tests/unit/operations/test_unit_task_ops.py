# tests/unit/operations/test_task_ops.py — v1
"""Tests for operations/task_ops.py — task add/remove/update/move/reorder."""

from __future__ import annotations

from planvault.operations.task_ops import (
    add_task,
    move_task,
    remove_task,
    reorder_tasks,
    update_task,
)
from planvault.storage.workspace import PlanWorkspace


class TestAddTask:
    def test_generated_id(self, plan_dir, settings):
        result = add_task(plan_dir, "phase-2-backend", {"name": "Write Tests"}, settings=settings)
        assert result.success, result.error
        assert result.data["task_id"] == "task-6-write-tests"
        ws = PlanWorkspace.load(plan_dir)
        task = ws.task("phase-2-backend", "task-6-write-tests")
        assert task.estimated_tokens == settings.default_task_estimated_tokens
        assert ws.plan.progress.total_tasks == 6

    def test_position(self, plan_dir, settings):
        result = add_task(
            plan_dir, "phase-1-setup", {"id": "task-0-plan", "name": "Plan"},
            position=0, settings=settings,
        )
        assert result.success
        ws = PlanWorkspace.load(plan_dir)
        assert ws.phases["phase-1-setup"].task_ids[0] == "task-0-plan"

    def test_position_out_of_range(self, plan_dir, settings):
        result = add_task(
            plan_dir, "phase-1-setup", {"name": "Late"}, position=9, settings=settings
        )
        assert result.code == "VALUE_OUT_OF_RANGE"

    def test_id_unique_across_phases(self, plan_dir, settings):
        result = add_task(
            plan_dir, "phase-3-frontend", {"id": "task-3-api", "name": "Dup"}, settings=settings
        )
        assert result.code == "TASK_ID_EXISTS"

    def test_cross_phase_dependency_rejected(self, plan_dir, settings, tree_snapshot):
        before = tree_snapshot(plan_dir)
        result = add_task(
            plan_dir, "phase-2-backend",
            {"name": "Needs init", "dependencies": ["task-1-init"]},
            settings=settings,
        )
        assert result.code == "VALIDATION_FAILED"
        assert any(d["code"] == "MISSING_TASK_DEPENDENCY" for d in result.details)
        assert tree_snapshot(plan_dir) == before

    def test_unknown_phase(self, plan_dir, settings):
        result = add_task(plan_dir, "phase-9", {"name": "x"}, settings=settings)
        assert result.code == "PHASE_NOT_FOUND"


class TestRemoveTask:
    def test_has_dependents(self, plan_dir, settings):
        result = remove_task(plan_dir, "phase-1-setup", "task-1-init", settings=settings)
        assert result.code == "HAS_DEPENDENT_TASKS"

    def test_removes_and_prunes_state(self, plan_dir, settings):
        result = remove_task(plan_dir, "phase-1-setup", "task-2-config", settings=settings)
        assert result.success, result.error
        assert result.before["id"] == "task-2-config"
        ws = PlanWorkspace.load(plan_dir)
        assert ws.phases["phase-1-setup"].task_ids == ["task-1-init"]
        assert "task-2-config" not in ws.state.task_statuses

    def test_unknown_task(self, plan_dir, settings, tree_snapshot):
        before = tree_snapshot(plan_dir)
        result = remove_task(plan_dir, "phase-1-setup", "task-9-ghost", settings=settings)
        assert not result.success
        assert result.code == "TASK_NOT_FOUND"
        assert tree_snapshot(plan_dir) == before


class TestUpdateTask:
    def test_updates_fields(self, plan_dir, settings):
        result = update_task(
            plan_dir, "phase-2-backend", "task-3-api",
            {"description": "FastAPI app", "estimatedTokens": 1500},
            settings=settings,
        )
        assert result.success, result.error
        task = PlanWorkspace.load(plan_dir).task("phase-2-backend", "task-3-api")
        assert task.description == "FastAPI app"
        assert task.estimated_tokens == 1500
        assert result.before["estimatedTokens"] == 1000

    def test_status_not_editable(self, plan_dir, settings):
        result = update_task(
            plan_dir, "phase-2-backend", "task-3-api", {"status": "completed"}, settings=settings
        )
        assert result.code == "UNKNOWN_FIELD"

    def test_completed_needs_force(self, plan_factory, settings):
        plan_dir = plan_factory(task_statuses={"task-3-api": "completed"})
        blocked = update_task(
            plan_dir, "phase-2-backend", "task-3-api", {"name": "x"}, settings=settings
        )
        assert blocked.code == "TASK_COMPLETED"
        forced = update_task(
            plan_dir, "phase-2-backend", "task-3-api", {"name": "x"}, force=True,
            settings=settings,
        )
        assert forced.success
        assert forced.warnings

    def test_in_progress_never(self, plan_factory, settings):
        plan_dir = plan_factory(task_statuses={"task-3-api": "in-progress"})
        result = update_task(
            plan_dir, "phase-2-backend", "task-3-api", {"name": "x"}, force=True,
            settings=settings,
        )
        assert result.code == "TASK_IN_PROGRESS"


class TestMoveTask:
    def test_between_phases(self, plan_dir, settings):
        result = move_task(
            plan_dir, "task-3-api", "phase-2-backend", "phase-3-frontend", settings=settings
        )
        assert result.success, result.error
        ws = PlanWorkspace.load(plan_dir)
        assert ws.phases["phase-2-backend"].task_ids == []
        assert ws.phases["phase-3-frontend"].task_ids == ["task-4-ui", "task-3-api"]

    def test_dependency_left_behind(self, plan_dir, settings, tree_snapshot):
        before = tree_snapshot(plan_dir)
        result = move_task(
            plan_dir, "task-2-config", "phase-1-setup", "phase-2-backend", settings=settings
        )
        assert result.code == "VALIDATION_FAILED"
        assert tree_snapshot(plan_dir) == before

    def test_within_phase(self, plan_dir, settings):
        result = move_task(
            plan_dir, "task-2-config", "phase-1-setup", "phase-1-setup", position=0,
            settings=settings,
        )
        assert result.success, result.error
        ws = PlanWorkspace.load(plan_dir)
        assert ws.phases["phase-1-setup"].task_ids == ["task-2-config", "task-1-init"]


class TestReorderTasks:
    def test_permutation(self, plan_dir, settings):
        result = reorder_tasks(
            plan_dir, "phase-1-setup", ["task-2-config", "task-1-init"], settings=settings
        )
        assert result.success
        assert result.data["previous_order"] == ["task-1-init", "task-2-config"]

    def test_unknown_id(self, plan_dir, settings):
        result = reorder_tasks(
            plan_dir, "phase-1-setup", ["task-1-init", "task-9"], settings=settings
        )
        assert result.code == "INVALID_PERMUTATION"
        assert result.details[0]["unknown"] == ["task-9"]
