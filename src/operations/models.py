# src/operations/models.py — v1
"""Typed update payloads and the UpdateOperation tagged union.

Payload models forbid unknown fields, so a misspelled or disallowed field
is rejected structurally instead of being filtered at runtime. Operations
are discriminated on ``(target, type)``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from planvault.core.models import Action, PhaseType, Status, Strategy
from planvault.validators.schema import issues_from_pydantic

TARGET_PRIORITY: dict[str, int] = {"metadata": 1, "phase": 2, "task": 3}


class Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def provided(self, exclude: Iterable[str] = ()) -> dict[str, Any]:
        """Explicitly provided fields (python names), minus ``exclude``."""
        skip = set(exclude)
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name not in skip
        }


# === METADATA ===


class TokenBudgetPatch(Payload):
    total: int | None = Field(default=None, ge=0)
    per_phase: int | None = Field(default=None, ge=0)
    warning_threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class RetryPolicyPatch(Payload):
    max_attempts: int | None = Field(default=None, ge=1)
    backoff_ms: int | None = Field(default=None, ge=0)


class ExecutionConfigPatch(Payload):
    strategy: Strategy | None = None
    max_parallel_phases: int | None = Field(default=None, ge=1)
    token_budget: TokenBudgetPatch | None = None
    retry_policy: RetryPolicyPatch | None = None


class MetadataPatch(Payload):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: Status | None = None
    version: str | None = Field(default=None, min_length=1)
    execution: ExecutionConfigPatch | None = None


# === TASKS ===


class TaskSpec(Payload):
    """A new task. ``id`` is derived from the name when absent."""

    id: str | None = Field(default=None, min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    type: str = "implementation"
    dependencies: list[str] = Field(default_factory=list)
    estimated_tokens: int | None = Field(default=None, ge=0)
    actions: list[Action] = Field(default_factory=list)


class TaskPatch(Payload):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    type: str | None = None
    dependencies: list[str] | None = None
    estimated_tokens: int | None = Field(default=None, ge=0)
    actions: list[Action] | None = None


class TaskAddData(TaskSpec):
    phase_id: str = Field(min_length=1)
    insert_at_index: int | None = Field(default=None, ge=0)


class TaskUpdateData(TaskPatch):
    phase_id: str = Field(min_length=1)
    id: str = Field(min_length=1)
    force: bool = False


class TaskDeleteData(Payload):
    phase_id: str = Field(min_length=1)
    id: str = Field(min_length=1)
    force: bool = False


# === PHASES ===


class PhaseSpec(Payload):
    """A new phase. ``id`` and ``file`` are derived when absent."""

    id: str | None = Field(default=None, min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    file: str | None = Field(default=None, min_length=1)
    type: PhaseType = "sequential"
    dependencies: list[str] = Field(default_factory=list)
    estimated_tokens: int | None = Field(default=None, ge=0)
    estimated_duration: str | None = None
    tasks: list[TaskSpec] = Field(default_factory=list)
    insert_at_index: int | None = Field(default=None, ge=0)


class PhasePatch(Payload):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    type: PhaseType | None = None
    dependencies: list[str] | None = None
    estimated_tokens: int | None = Field(default=None, ge=0)
    estimated_duration: str | None = None


class PhaseUpdateData(PhasePatch):
    id: str = Field(min_length=1)
    force: bool = False


class PhaseDeleteData(Payload):
    id: str = Field(min_length=1)
    force: bool = False


# === OPERATIONS ===


class _Operation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def priority(self) -> int:
        """Execution order within a batch: metadata, then phases, then tasks."""
        return TARGET_PRIORITY[self.target]  # type: ignore[attr-defined]

    @property
    def target_id(self) -> str | None:
        data = self.data  # type: ignore[attr-defined]
        return getattr(data, "id", None) or getattr(data, "name", None)

    @property
    def force(self) -> bool:
        return bool(getattr(self.data, "force", False))  # type: ignore[attr-defined]

    def describe(self) -> str:
        target_id = self.target_id
        label = f"{self.type} {self.target}"  # type: ignore[attr-defined]
        return f"{label} '{target_id}'" if target_id else label


class MetadataUpdate(_Operation):
    type: Literal["update"] = "update"
    target: Literal["metadata"] = "metadata"
    data: MetadataPatch

    @property
    def target_id(self) -> str | None:
        return None


class PhaseAdd(_Operation):
    type: Literal["add"] = "add"
    target: Literal["phase"] = "phase"
    data: PhaseSpec


class PhaseUpdate(_Operation):
    type: Literal["update"] = "update"
    target: Literal["phase"] = "phase"
    data: PhaseUpdateData


class PhaseDelete(_Operation):
    type: Literal["delete"] = "delete"
    target: Literal["phase"] = "phase"
    data: PhaseDeleteData


class TaskAdd(_Operation):
    type: Literal["add"] = "add"
    target: Literal["task"] = "task"
    data: TaskAddData


class TaskUpdate(_Operation):
    type: Literal["update"] = "update"
    target: Literal["task"] = "task"
    data: TaskUpdateData


class TaskDelete(_Operation):
    type: Literal["delete"] = "delete"
    target: Literal["task"] = "task"
    data: TaskDeleteData


def _operation_tag(value: Any) -> str:
    if isinstance(value, dict):
        return f"{value.get('target')}:{value.get('type')}"
    return f"{getattr(value, 'target', None)}:{getattr(value, 'type', None)}"


UpdateOperation = Annotated[
    Union[
        Annotated[MetadataUpdate, Tag("metadata:update")],
        Annotated[PhaseAdd, Tag("phase:add")],
        Annotated[PhaseUpdate, Tag("phase:update")],
        Annotated[PhaseDelete, Tag("phase:delete")],
        Annotated[TaskAdd, Tag("task:add")],
        Annotated[TaskUpdate, Tag("task:update")],
        Annotated[TaskDelete, Tag("task:delete")],
    ],
    Discriminator(
        _operation_tag,
        custom_error_type="invalid_operation",
        custom_error_message="Unsupported operation: unknown target/type combination",
    ),
]

_OPERATION_ADAPTER: TypeAdapter[Any] = TypeAdapter(UpdateOperation)

OPERATION_TYPES = (
    MetadataUpdate, PhaseAdd, PhaseUpdate, PhaseDelete, TaskAdd, TaskUpdate, TaskDelete,
)


def parse_operation(raw: Any) -> Any:
    """Validate one raw operation mapping (or pass a typed one through).

    Raises:
        pydantic.ValidationError: If the shape is invalid.
    """
    if isinstance(raw, OPERATION_TYPES):
        return raw
    return _OPERATION_ADAPTER.validate_python(raw)


def parse_operations(raw_operations: Sequence[Any]) -> tuple[list[Any], list[dict[str, Any]]]:
    """Validate every operation, collecting all errors before returning.

    Returns:
        (operations, errors) where each error is
        ``{"index", "error", "code", "issues"}``.
    """
    operations: list[Any] = []
    errors: list[dict[str, Any]] = []
    for index, raw in enumerate(raw_operations):
        try:
            operations.append(parse_operation(raw))
        except ValidationError as exc:
            issues = issues_from_pydantic(exc)
            errors.append(
                {
                    "index": index,
                    "error": "; ".join(f"{i.field}: {i.message}" for i in issues),
                    "code": issues[0].code if issues else "INVALID_OPERATION",
                    "issues": [i.model_dump() for i in issues],
                }
            )
    return operations, errors


def sort_by_priority(operations: Iterable[Any]) -> list[Any]:
    """Stable sort: metadata -> phase -> task, caller order kept within a target."""
    return sorted(operations, key=lambda op: op.priority)
