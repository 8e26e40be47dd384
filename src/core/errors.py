# src/core/errors.py — v1
"""Exception taxonomy for plan storage and updates.

Internals raise these; public operations convert them into failed
OperationResult values at their boundary so callers always receive
structured detail (code, reason, backup path).
"""

from __future__ import annotations

from typing import Any


class PlanVaultError(Exception):
    """Base class. Every subclass carries a stable ``code``."""

    code = "PLANVAULT_ERROR"
    fatal = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: list[Any] = details or []


class PlanValidationError(PlanVaultError):
    """Schema or dependency-graph violation; nothing was persisted."""

    code = "VALIDATION_FAILED"


class DependencyCycleError(PlanValidationError):
    """Dependency graph contains a cycle."""

    code = "CIRCULAR_DEPENDENCY"

    def __init__(self, cycle: list[str], *, code: str | None = None) -> None:
        self.cycle = cycle
        super().__init__(
            f"Circular dependency detected: {' -> '.join(cycle)}",
            code=code,
            details=[{"cycle": cycle}],
        )


class NotFoundError(PlanVaultError):
    code = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    code = "FILE_NOT_FOUND"


class DocumentParseError(PlanVaultError):
    code = "INVALID_JSON"


class ConflictError(PlanVaultError):
    """Id collision or a reorder that is not an exact permutation."""

    code = "CONFLICT"


class BlockedOperationError(PlanVaultError):
    """Execution-state safety check refused the mutation."""

    code = "BLOCKED"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        requires_force: bool = False,
        warnings: list[str] | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.reason = message
        self.requires_force = requires_force
        self.warnings = warnings or []


class BackupError(PlanVaultError):
    """Creating a backup failed; the safety net is unavailable."""

    code = "BACKUP_FAILED"
    fatal = True


class RestoreError(PlanVaultError):
    """Restoring a backup failed; the plan directory may be inconsistent."""

    code = "RESTORE_FAILED"
    fatal = True

    def __init__(self, message: str, *, backup_path: str | None = None) -> None:
        super().__init__(message)
        self.backup_path = backup_path


class OperationError(PlanVaultError):
    """Handler failure wrapping an underlying cause."""

    code = "OPERATION_FAILED"
