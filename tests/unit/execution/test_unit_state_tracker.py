# tests/unit/execution/test_state_tracker.py — v1
"""Tests for execution/state_tracker.py — executor-reported transitions."""

from __future__ import annotations

from planvault.execution.state_tracker import record_phase_status, record_task_status
from planvault.storage.workspace import PlanWorkspace


class TestRecordPhaseStatus:
    def test_start_marks_plan(self, plan_dir):
        result = record_phase_status(plan_dir, "phase-1-setup", "in_progress")
        assert result.success, result.error
        assert result.data["previous"] == "pending"
        ws = PlanWorkspace.load(plan_dir)
        assert ws.state.phase_statuses["phase-1-setup"] == "in-progress"
        assert ws.state.current_phase == "phase-1-setup"
        assert ws.state.started_at is not None
        assert ws.plan.status == "in-progress"
        assert ws.phase_ref("phase-1-setup").status == "in-progress"
        assert ws.phases["phase-1-setup"].metrics.start_time is not None

    def test_failed_records_error(self, plan_dir):
        record_phase_status(plan_dir, "phase-1-setup", "in-progress")
        result = record_phase_status(
            plan_dir, "phase-1-setup", "failed", error="disk full", actual_tokens=120
        )
        assert result.success
        ws = PlanWorkspace.load(plan_dir)
        assert ws.state.errors[-1]["message"] == "disk full"
        assert ws.state.errors[-1]["phaseId"] == "phase-1-setup"
        assert ws.phases["phase-1-setup"].metrics.actual_tokens == 120
        assert ws.plan.status == "failed"

    def test_retry_counts(self, plan_factory):
        plan_dir = plan_factory(phase_statuses={"phase-1-setup": "failed"})
        assert record_phase_status(plan_dir, "phase-1-setup", "in-progress").success
        assert PlanWorkspace.load(plan_dir).phase_ref("phase-1-setup").retry_count == 1

    def test_invalid_transition(self, plan_factory):
        plan_dir = plan_factory(phase_statuses={"phase-1-setup": "completed"})
        result = record_phase_status(plan_dir, "phase-1-setup", "in-progress")
        assert result.code == "INVALID_STATUS_TRANSITION"

    def test_all_completed_completes_plan(self, plan_factory):
        phases = [{"id": "phase-1-a", "name": "A", "tasks": [{"id": "t1", "name": "t"}]}]
        plan_dir = plan_factory(phases, task_statuses={"t1": "completed"})
        result = record_phase_status(plan_dir, "phase-1-a", "completed")
        assert result.success, result.error
        ws = PlanWorkspace.load(plan_dir)
        assert ws.plan.status == "completed"
        assert ws.state.completed_at is not None
        assert ws.phases["phase-1-a"].metrics.success_rate == 1.0

    def test_unknown_phase(self, plan_dir):
        assert record_phase_status(plan_dir, "phase-9", "completed").code == "PHASE_NOT_FOUND"


class TestRecordTaskStatus:
    def test_locates_phase_and_starts_it(self, plan_dir):
        result = record_task_status(plan_dir, "task-3-api", "in-progress")
        assert result.success, result.error
        assert result.data["phase_id"] == "phase-2-backend"
        ws = PlanWorkspace.load(plan_dir)
        assert ws.state.task_statuses["task-3-api"] == "in-progress"
        assert ws.state.phase_statuses["phase-2-backend"] == "in-progress"
        assert ws.plan.progress.current_phases == ["phase-2-backend"]

    def test_output_and_result(self, plan_dir):
        result = record_task_status(
            plan_dir, "task-1-init", "completed",
            output={"files": ["README.md"]}, result={"ok": True},
        )
        assert result.success, result.error
        task = PlanWorkspace.load(plan_dir).task("phase-1-setup", "task-1-init")
        assert task.status == "completed"
        assert task.output.files == ["README.md"]
        assert task.result == {"ok": True}

    def test_unknown_task(self, plan_dir):
        assert record_task_status(plan_dir, "task-9", "completed").code == "TASK_NOT_FOUND"

    def test_unknown_status(self, plan_dir):
        result = record_task_status(plan_dir, "task-1-init", "done")
        assert result.code == "INVALID_STATUS_TRANSITION"
