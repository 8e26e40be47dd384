# src/core/results.py — v1
"""Uniform result shape returned by every public operation."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from planvault.core.errors import BlockedOperationError, PlanVaultError


class OperationResult(BaseModel):
    """``{success, message|error, data, warnings?, backup_path?}``.

    ``before``/``after`` hold snapshots of the touched entity for the audit
    log and are left out of serialized output.
    """

    success: bool
    message: str | None = None
    error: str | None = None
    code: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    details: list[Any] = Field(default_factory=list)
    backup_path: str | None = None
    before: Any = Field(default=None, exclude=True)
    after: Any = Field(default=None, exclude=True)

    @classmethod
    def ok(cls, message: str, **kwargs: Any) -> OperationResult:
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, error: str, code: str | None = None, **kwargs: Any) -> OperationResult:
        return cls(success=False, error=error, code=code, **kwargs)

    @classmethod
    def from_error(
        cls,
        exc: PlanVaultError,
        backup_path: str | None = None,
        **kwargs: Any,
    ) -> OperationResult:
        """Convert a raised PlanVaultError into a failed result."""
        data: dict[str, Any] = dict(kwargs.pop("data", {}) or {})
        warnings = list(kwargs.pop("warnings", []) or [])
        if isinstance(exc, BlockedOperationError):
            data.setdefault("can_proceed", False)
            data.setdefault("reason", exc.reason)
            data.setdefault("requires_force", exc.requires_force)
            warnings.extend(exc.warnings)
        if exc.fatal:
            data["fatal"] = True
        backup = backup_path or getattr(exc, "backup_path", None)
        return cls(
            success=False,
            error=exc.message,
            code=exc.code,
            data=data,
            warnings=warnings,
            details=list(exc.details),
            backup_path=backup,
            **kwargs,
        )
