# src/core/models.py — v1
"""Shared Pydantic domain models for persisted plan documents.

No module redefines these types; all imports come from core.models.
On disk every document uses camelCase keys, in Python snake_case
attributes. Unknown keys written by other tools are kept and round-trip.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def normalize_status(value: Any) -> Any:
    # Older documents spell it "in_progress".
    if isinstance(value, str):
        return value.strip().lower().replace("_", "-")
    return value


Status = Annotated[
    Literal["pending", "in-progress", "completed", "failed"],
    BeforeValidator(normalize_status),
]
PhaseType = Literal["sequential", "parallel"]
ActionType = Literal["create", "modify", "delete", "execute", "verify"]
Strategy = Literal["sequential", "parallel"]

STATUSES: tuple[str, ...] = ("pending", "in-progress", "completed", "failed")


class DocumentModel(BaseModel):
    """Base for every persisted document fragment."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready, camelCase representation written to disk."""
        return self.model_dump(mode="json", by_alias=True)


# === EXECUTION CONFIG ===


class TokenBudget(DocumentModel):
    total: int = Field(default=100_000, ge=0)
    per_phase: int | None = Field(default=None, ge=0)
    warning_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class RetryPolicy(DocumentModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_ms: int = Field(default=1000, ge=0)


class ExecutionConfig(DocumentModel):
    """How the scheduler is allowed to run the plan."""

    strategy: Strategy = "sequential"
    max_parallel_phases: int = Field(default=1, ge=1)
    token_budget: TokenBudget = Field(default_factory=TokenBudget)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)


class Progress(DocumentModel):
    """Derived counters, recomputed after every structural edit."""

    total_phases: int = Field(default=0, ge=0)
    completed_phases: int = Field(default=0, ge=0)
    total_tasks: int = Field(default=0, ge=0)
    completed_tasks: int = Field(default=0, ge=0)
    current_phases: list[str] = Field(default_factory=list)
    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    last_updated: datetime | None = None


class ExecutionHistoryEntry(DocumentModel):
    """Provenance record appended by rollback-and-replan."""

    timestamp: datetime = Field(default_factory=utcnow)
    reason: str = "rollback-replan"
    previous_state: dict[str, Any] = Field(default_factory=dict)
    task_results: dict[str, Any] = Field(default_factory=dict)
    logs_backup_path: str | None = None


# === ORCHESTRATION ===


class PhaseRef(DocumentModel):
    """Entry of the orchestration document pointing at a phase document."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    file: str = Field(min_length=1)
    type: PhaseType = "sequential"
    dependencies: list[str] = Field(default_factory=list)
    status: Status = "pending"
    estimated_tokens: int = Field(default=5000, ge=0)
    estimated_duration: str | None = None
    retry_count: int = Field(default=0, ge=0)


class Plan(DocumentModel):
    """The orchestration document (``orchestration.json``)."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    status: Status = "pending"
    version: str = "1.0.0"
    created: datetime = Field(default_factory=utcnow)
    modified: datetime = Field(default_factory=utcnow)
    phases: list[PhaseRef] = Field(default_factory=list)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    progress: Progress = Field(default_factory=Progress)
    execution_history: list[ExecutionHistoryEntry] = Field(default_factory=list)

    @property
    def phase_ids(self) -> list[str]:
        return [p.id for p in self.phases]

    def find_phase(self, phase_id: str) -> PhaseRef | None:
        for phase in self.phases:
            if phase.id == phase_id:
                return phase
        return None

    def phase_index(self, phase_id: str) -> int:
        """Index of a phase in the ordered list, -1 if absent."""
        for idx, phase in enumerate(self.phases):
            if phase.id == phase_id:
                return idx
        return -1


# === PHASE DOCUMENTS ===


class Action(DocumentModel):
    """One side effect a task performs; executed externally."""

    type: ActionType
    target: str = Field(min_length=1)
    description: str | None = None
    validation: dict[str, Any] | None = None


class TaskOutput(DocumentModel):
    files: list[str] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)


class Task(DocumentModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    type: str = "implementation"
    status: Status = "pending"
    dependencies: list[str] = Field(default_factory=list)
    estimated_tokens: int = Field(default=1000, ge=0)
    actions: list[Action] = Field(default_factory=list)
    output: TaskOutput | None = None
    result: Any = None

    @property
    def targets(self) -> set[str]:
        """Literal target paths of this task's actions."""
        return {a.target for a in self.actions}


class PhaseMetrics(DocumentModel):
    estimated_tokens: int = Field(default=0, ge=0)
    actual_tokens: int = Field(default=0, ge=0)
    start_time: datetime | None = None
    end_time: datetime | None = None
    success_rate: float | None = Field(default=None, ge=0.0, le=1.0)


class PhaseDocument(DocumentModel):
    """A phase document (``phases/<id>.json``)."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    type: PhaseType = "sequential"
    dependencies: list[str] = Field(default_factory=list)
    status: Status = "pending"
    created: datetime = Field(default_factory=utcnow)
    modified: datetime = Field(default_factory=utcnow)
    tasks: list[Task] = Field(default_factory=list)
    metrics: PhaseMetrics = Field(default_factory=PhaseMetrics)

    @property
    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]

    @property
    def action_targets(self) -> set[str]:
        targets: set[str] = set()
        for task in self.tasks:
            targets |= task.targets
        return targets

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


# === EXECUTION STATE ===


class ExecutionState(DocumentModel):
    """Live status ledger (``execution-state.json``).

    The single source of truth for "is this already done".
    """

    current_phase: str | None = None
    phase_statuses: dict[str, Status] = Field(default_factory=dict)
    task_statuses: dict[str, Status] = Field(default_factory=dict)
    errors: list[dict[str, Any]] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_updated: datetime | None = None

    def phase_status(self, phase_id: str) -> str:
        return self.phase_statuses.get(phase_id, "pending")

    def task_status(self, task_id: str) -> str:
        return self.task_statuses.get(task_id, "pending")
