# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides a plan-directory factory (orchestration, phase documents and
execution state written to ``tmp_path``), test settings and a helper to
snapshot a plan directory's documents.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from planvault.config.settings import Settings
from planvault.core.models import ExecutionState, PhaseDocument, PhaseRef, Plan, Task, utcnow
from planvault.storage import layout
from planvault.storage.workspace import PlanWorkspace

PlanFactory = Callable[..., Path]


# === FIXTURES: Sample data ===


def sample_phases() -> list[dict[str, Any]]:
    """Four phases: setup -> (backend, frontend) -> deploy."""
    return [
        {
            "id": "phase-1-setup",
            "name": "Setup",
            "tasks": [
                {
                    "id": "task-1-init",
                    "name": "Init repository",
                    "actions": [{"type": "create", "target": "README.md"}],
                },
                {
                    "id": "task-2-config",
                    "name": "Write config",
                    "dependencies": ["task-1-init"],
                    "actions": [{"type": "create", "target": "config.yaml"}],
                },
            ],
        },
        {
            "id": "phase-2-backend",
            "name": "Backend",
            "dependencies": ["phase-1-setup"],
            "tasks": [
                {
                    "id": "task-3-api",
                    "name": "Build API",
                    "actions": [{"type": "create", "target": "src/api.py"}],
                },
            ],
        },
        {
            "id": "phase-3-frontend",
            "name": "Frontend",
            "dependencies": ["phase-1-setup"],
            "tasks": [
                {
                    "id": "task-4-ui",
                    "name": "Build UI",
                    "actions": [{"type": "create", "target": "web/index.html"}],
                },
            ],
        },
        {
            "id": "phase-4-deploy",
            "name": "Deploy",
            "dependencies": ["phase-2-backend", "phase-3-frontend"],
            "tasks": [{"id": "task-5-ship", "name": "Ship it"}],
        },
    ]


def write_plan(
    plan_dir: Path,
    phases: list[dict[str, Any]] | None = None,
    *,
    phase_statuses: dict[str, str] | None = None,
    task_statuses: dict[str, str] | None = None,
    execution: dict[str, Any] | None = None,
    plan_id: str = "demo-plan",
) -> Path:
    """Materialize a consistent plan directory from compact phase specs."""
    phases = sample_phases() if phases is None else phases
    phase_statuses = phase_statuses or {}
    task_statuses = task_statuses or {}
    plan_dir.mkdir(parents=True, exist_ok=True)

    refs: list[PhaseRef] = []
    docs: dict[str, PhaseDocument] = {}
    for spec in phases:
        status = phase_statuses.get(spec["id"], "pending")
        tasks = [
            Task(**t, status=task_statuses.get(t["id"], "pending"))
            for t in spec.get("tasks", [])
        ]
        refs.append(
            PhaseRef(
                id=spec["id"],
                name=spec["name"],
                file=spec.get("file", layout.default_phase_file(spec["id"])),
                dependencies=spec.get("dependencies", []),
                status=status,
                estimated_tokens=spec.get("estimated_tokens", 5000),
            )
        )
        docs[spec["id"]] = PhaseDocument(
            id=spec["id"],
            name=spec["name"],
            dependencies=spec.get("dependencies", []),
            status=status,
            tasks=tasks,
        )

    started = any(s != "pending" for s in [*phase_statuses.values(), *task_statuses.values()])
    plan = Plan(
        id=plan_id,
        name="Demo plan",
        status="in-progress" if started else "pending",
        phases=refs,
        execution=execution or {},
    )
    state = ExecutionState(
        phase_statuses=dict(phase_statuses),
        task_statuses=dict(task_statuses),
        started_at=utcnow() if started else None,
    )
    ws = PlanWorkspace(
        plan_dir=plan_dir, plan=plan, phases=docs, state=state, dirty_phases=set(docs)
    )
    ws.refresh()
    ws.commit()
    return plan_dir


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, audit_actor="tester")


@pytest.fixture
def plan_factory(tmp_path: Path) -> PlanFactory:
    """Build plan directories under tmp_path; each call gets a fresh directory."""
    counter = {"n": 0}

    def build(phases: list[dict[str, Any]] | None = None, **kwargs: Any) -> Path:
        counter["n"] += 1
        return write_plan(tmp_path / f"plan-{counter['n']}", phases, **kwargs)

    return build


@pytest.fixture
def plan_dir(plan_factory: PlanFactory) -> Path:
    """A pending four-phase plan."""
    return plan_factory()


@pytest.fixture
def tree_snapshot() -> Callable[[Path], dict[str, bytes]]:
    """Return a function capturing every plan document's bytes.

    Backups, logs backups and the audit log are left out; they are
    expected to change.
    """

    def snapshot(plan_dir: Path) -> dict[str, bytes]:
        files: dict[str, bytes] = {}
        for path in sorted(plan_dir.rglob("*")):
            rel = path.relative_to(plan_dir)
            if layout.is_excluded_from_backup(rel.parts[0]) or not path.is_file():
                continue
            files[rel.as_posix()] = path.read_bytes()
        return files

    return snapshot
