# src/logging/context.py — v1
"""Contextual logging support: attach plan_id, batch_id, operation, actor to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per plan call / batch.
_plan_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "plan_id", default=None
)
_batch_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "batch_id", default=None
)
_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation", default=None
)
_actor: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "actor", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    plan_id: str | None = None
    batch_id: str | None = None
    operation: str | None = None
    actor: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        plan_id=_plan_id.get(),
        batch_id=_batch_id.get(),
        operation=_operation.get(),
        actor=_actor.get(),
    )


def set_plan_context(plan_id: str, actor: str | None = None) -> None:
    """Set plan-level context (called once per public call)."""
    _plan_id.set(plan_id)
    if actor is not None:
        _actor.set(actor)


def set_batch_context(batch_id: str | None) -> None:
    """Set or clear the batch the following records belong to."""
    _batch_id.set(batch_id)


def set_operation_context(operation: str | None) -> None:
    """Set the operation currently being applied, e.g. ``phase:add``."""
    _operation.set(operation)


def clear_context() -> None:
    """Reset all context variables."""
    _plan_id.set(None)
    _batch_id.set(None)
    _operation.set(None)
    _actor.set(None)
