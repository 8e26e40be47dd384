# src/scheduler/coordinator.py — v1
"""Parallel coordinator — run a plan level by level.

Walks the dependency levels in order. Within a level, runnable phases are
batched into groups of at most ``maxParallelPhases`` (1 under the
sequential strategy) that pass the pairwise parallel check, and each
group runs as a join. Phases are executed by an external async executor;
the coordinator only records status transitions, retries failures under
the plan's retry policy and enforces the token budget as an admission
check.

Status writes are synchronous calls between awaits, so coroutines of one
group never write plan documents at the same time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from planvault.config.settings import Settings
from planvault.core.models import PhaseDocument, PhaseRef, RetryPolicy
from planvault.execution.state_tracker import record_phase_status
from planvault.logging.context import set_operation_context, set_plan_context
from planvault.scheduler.levels import ExecutionLevels, can_run_in_parallel, compute_levels
from planvault.storage.workspace import PlanWorkspace

logger = logging.getLogger(__name__)

PhaseExecutor = Callable[[PhaseRef, PhaseDocument], Awaitable[int | None]]


@dataclass
class CoordinatorResult:
    """Outcome of one coordinator run."""

    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    blocked: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    groups: list[list[str]] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    tokens_used: int = 0
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return not (self.failed or self.blocked or self.rejected)


class ParallelCoordinator:
    """Execute a plan's phases in dependency-level order.

    Args:
        plan_dir: Plan directory.
        executor: Async callable running one phase; returns tokens used
            (or None) and raises to signal a failed attempt.
        settings: Provides the parallel token factor.
        sleep: Awaitable used for retry backoff.
    """

    def __init__(
        self,
        plan_dir: Path,
        executor: PhaseExecutor,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._plan_dir = Path(plan_dir)
        self._executor = executor
        self._settings = settings or Settings()
        self._sleep = sleep
        self._policy = RetryPolicy()

    async def run(self) -> CoordinatorResult:
        """Run every runnable phase, level by level.

        Raises:
            PlanValidationError: If a phase depends on an unknown phase.
            DependencyCycleError: If the phase graph has a cycle.
        """
        start_ns = time.monotonic_ns()
        result = CoordinatorResult()
        ws = PlanWorkspace.load(self._plan_dir)
        plan = ws.plan
        set_plan_context(plan.id, actor=self._settings.actor)
        set_operation_context("coordinator")
        levels = compute_levels(plan)

        config = plan.execution
        self._policy = config.retry_policy
        max_group = 1 if config.strategy == "sequential" else config.max_parallel_phases
        budget = config.token_budget
        remaining = budget.total - sum(doc.metrics.actual_tokens for doc in ws.phases.values())
        done = {
            pid for pid in plan.phase_ids if ws.state.phase_status(pid) == "completed"
        }
        refs = {ref.id: ref for ref in plan.phases}

        for index, level in enumerate(levels.levels):
            runnable: list[PhaseRef] = []
            for phase_id in level:
                ref = refs[phase_id]
                status = ws.state.phase_status(phase_id)
                if status == "completed":
                    result.skipped.append(phase_id)
                    continue
                if status == "in-progress":
                    result.blocked.append(
                        {"phase_id": phase_id, "reason": "already in progress", "waiting_on": []}
                    )
                    continue
                unmet = [d for d in ref.dependencies if d not in done]
                if unmet:
                    result.blocked.append(
                        {
                            "phase_id": phase_id,
                            "reason": "dependencies not completed",
                            "waiting_on": unmet,
                        }
                    )
                    continue
                over_phase = (
                    budget.per_phase is not None and ref.estimated_tokens > budget.per_phase
                )
                if ref.estimated_tokens > remaining or over_phase:
                    result.rejected.append(
                        {
                            "phase_id": phase_id,
                            "estimated_tokens": ref.estimated_tokens,
                            "remaining_budget": remaining,
                            "per_phase_budget": budget.per_phase,
                        }
                    )
                    logger.warning(
                        "Phase %s rejected: needs %d tokens, %d remaining",
                        phase_id, ref.estimated_tokens, remaining,
                    )
                    continue
                remaining -= ref.estimated_tokens
                runnable.append(ref)

            groups = self._group(runnable, ws, levels, max_group, budget.per_phase)
            logger.info(
                "Level %d/%d: %d runnable phase(s) in %d group(s)",
                index + 1, len(levels.levels), len(runnable), len(groups),
            )
            for group in groups:
                result.groups.append([ref.id for ref in group])
                outcomes = await asyncio.gather(
                    *(self._run_phase(ref, ws.phases[ref.id], result) for ref in group)
                )
                for ref, (ok, tokens) in zip(group, outcomes):
                    remaining += ref.estimated_tokens - tokens
                    result.tokens_used += tokens
                    if ok:
                        done.add(ref.id)
                        result.completed.append(ref.id)
                    else:
                        result.failed.append(ref.id)

        used_ratio = (budget.total - remaining) / budget.total if budget.total else 0.0
        if used_ratio >= budget.warning_threshold:
            message = (
                f"Token budget {used_ratio:.0%} used "
                f"(threshold {budget.warning_threshold:.0%})"
            )
            result.warnings.append(message)
            logger.warning(message)

        set_operation_context(None)
        result.duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        logger.info(
            "Coordinator finished: %d completed, %d failed, %d blocked, %d rejected",
            len(result.completed), len(result.failed), len(result.blocked), len(result.rejected),
        )
        return result

    def _group(
        self,
        runnable: list[PhaseRef],
        ws: PlanWorkspace,
        levels: ExecutionLevels,
        max_group: int,
        per_phase_budget: int | None,
    ) -> list[list[PhaseRef]]:
        """Greedy first-fit grouping under the size limit and pairwise check."""
        groups: list[list[PhaseRef]] = []
        for ref in runnable:
            for group in groups:
                if len(group) >= max_group:
                    continue
                if all(
                    can_run_in_parallel(
                        ref,
                        other,
                        levels,
                        first_doc=ws.phases.get(ref.id),
                        second_doc=ws.phases.get(other.id),
                        per_phase_budget=per_phase_budget,
                        token_factor=self._settings.parallel_token_factor,
                    )[0]
                    for other in group
                ):
                    group.append(ref)
                    break
            else:
                groups.append([ref])
        return groups

    async def _run_phase(
        self,
        ref: PhaseRef,
        doc: PhaseDocument,
        result: CoordinatorResult,
    ) -> tuple[bool, int]:
        """Run one phase with retries. Returns (completed, tokens used)."""
        policy = self._policy
        tokens_used = 0
        for attempt in range(policy.max_attempts):
            result.attempts[ref.id] = attempt + 1
            started = record_phase_status(self._plan_dir, ref.id, "in-progress")
            if not started.success:
                logger.error("Phase %s could not start: %s", ref.id, started.error)
                return False, tokens_used
            try:
                tokens = await self._executor(ref, doc)
            except Exception as exc:
                record_phase_status(self._plan_dir, ref.id, "failed", error=str(exc))
                if attempt + 1 >= policy.max_attempts:
                    logger.error(
                        "Phase %s failed after %d attempt(s): %s", ref.id, attempt + 1, exc
                    )
                    return False, tokens_used
                delay = policy.backoff_ms / 1000 * (2 ** attempt)
                logger.warning(
                    "Phase %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    ref.id, attempt + 1, policy.max_attempts, delay, exc,
                )
                await self._sleep(delay)
                continue

            tokens_used += tokens or 0
            recorded = record_phase_status(
                self._plan_dir, ref.id, "completed", actual_tokens=tokens or 0
            )
            if not recorded.success:
                logger.error("Phase %s completion not recorded: %s", ref.id, recorded.error)
                return False, tokens_used
            return True, tokens_used
        return False, tokens_used
