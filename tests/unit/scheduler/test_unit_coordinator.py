# tests/unit/scheduler/test_coordinator.py — v1
"""Tests for scheduler/coordinator.py — level-ordered phase execution."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from planvault.scheduler.coordinator import ParallelCoordinator
from planvault.storage.workspace import PlanWorkspace

_PARALLEL = {"strategy": "parallel", "maxParallelPhases": 2}


def _coordinator(plan_dir, executor, settings, sleep=None):
    return ParallelCoordinator(plan_dir, executor, settings=settings, sleep=sleep or AsyncMock())


class TestRun:
    @pytest.mark.asyncio
    async def test_parallel_groups(self, plan_factory, settings):
        plan_dir = plan_factory(execution=_PARALLEL)
        executor = AsyncMock(return_value=100)
        result = await _coordinator(plan_dir, executor, settings).run()

        assert result.success
        assert result.groups == [
            ["phase-1-setup"],
            ["phase-2-backend", "phase-3-frontend"],
            ["phase-4-deploy"],
        ]
        assert sorted(result.completed) == sorted(
            ["phase-1-setup", "phase-2-backend", "phase-3-frontend", "phase-4-deploy"]
        )
        assert result.tokens_used == 400
        assert executor.await_count == 4

        ws = PlanWorkspace.load(plan_dir)
        assert set(ws.state.phase_statuses.values()) == {"completed"}
        assert ws.plan.status == "completed"
        assert ws.phases["phase-2-backend"].metrics.actual_tokens == 100

    @pytest.mark.asyncio
    async def test_sequential_strategy(self, plan_dir, settings):
        result = await _coordinator(plan_dir, AsyncMock(return_value=None), settings).run()
        assert result.success
        assert all(len(group) == 1 for group in result.groups)
        assert len(result.groups) == 4
        assert result.tokens_used == 0

    @pytest.mark.asyncio
    async def test_retry_then_success(self, plan_factory, settings):
        plan_dir = plan_factory(
            execution={"retryPolicy": {"maxAttempts": 2, "backoffMs": 1000}}
        )
        executor = AsyncMock(side_effect=[RuntimeError("boom"), 10, 10, 10, 10])
        sleep = AsyncMock()
        result = await _coordinator(plan_dir, executor, settings, sleep).run()

        assert result.success
        assert result.attempts["phase-1-setup"] == 2
        sleep.assert_awaited_once_with(1.0)
        ws = PlanWorkspace.load(plan_dir)
        assert ws.phase_ref("phase-1-setup").retry_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_block_dependents(self, plan_factory, settings):
        plan_dir = plan_factory(
            execution={"retryPolicy": {"maxAttempts": 2, "backoffMs": 0}}
        )
        executor = AsyncMock(side_effect=RuntimeError("down"))
        result = await _coordinator(plan_dir, executor, settings).run()

        assert not result.success
        assert result.failed == ["phase-1-setup"]
        assert result.attempts["phase-1-setup"] == 2
        blocked = {b["phase_id"]: b["waiting_on"] for b in result.blocked}
        assert blocked["phase-2-backend"] == ["phase-1-setup"]
        assert blocked["phase-4-deploy"] == ["phase-2-backend", "phase-3-frontend"]
        ws = PlanWorkspace.load(plan_dir)
        assert ws.state.phase_statuses["phase-1-setup"] == "failed"
        assert ws.state.errors[-1]["message"] == "down"

    @pytest.mark.asyncio
    async def test_skips_completed_and_blocks_in_progress(self, plan_factory, settings):
        plan_dir = plan_factory(
            phase_statuses={"phase-1-setup": "completed", "phase-3-frontend": "in-progress"},
        )
        result = await _coordinator(plan_dir, AsyncMock(return_value=1), settings).run()
        assert result.skipped == ["phase-1-setup"]
        assert result.completed == ["phase-2-backend"]
        reasons = {b["phase_id"]: b["reason"] for b in result.blocked}
        assert reasons["phase-3-frontend"] == "already in progress"
        assert reasons["phase-4-deploy"] == "dependencies not completed"

    @pytest.mark.asyncio
    async def test_budget_rejection(self, plan_factory, settings):
        plan_dir = plan_factory(execution={"tokenBudget": {"total": 4000}})
        executor = AsyncMock(return_value=1)
        result = await _coordinator(plan_dir, executor, settings).run()
        assert result.rejected[0]["phase_id"] == "phase-1-setup"
        assert result.rejected[0]["remaining_budget"] == 4000
        assert executor.await_count == 0
        assert not result.success

    @pytest.mark.asyncio
    async def test_per_phase_rejection(self, plan_factory, settings):
        plan_dir = plan_factory(execution={"tokenBudget": {"total": 100000, "perPhase": 4000}})
        result = await _coordinator(plan_dir, AsyncMock(return_value=1), settings).run()
        assert result.rejected[0]["per_phase_budget"] == 4000

    @pytest.mark.asyncio
    async def test_warning_threshold(self, plan_factory, settings):
        phases = [
            {"id": "phase-1-a", "name": "A", "estimated_tokens": 1000},
            {"id": "phase-2-b", "name": "B", "dependencies": ["phase-1-a"],
             "estimated_tokens": 1000},
        ]
        plan_dir = plan_factory(
            phases, execution={"tokenBudget": {"total": 2000, "warningThreshold": 0.5}}
        )
        result = await _coordinator(plan_dir, AsyncMock(return_value=600), settings).run()
        assert result.success
        assert result.tokens_used == 1200
        assert result.warnings == ["Token budget 60% used (threshold 50%)"]
