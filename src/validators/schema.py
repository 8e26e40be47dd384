# src/validators/schema.py — v1
"""Structural schema checks for plan documents.

Every check returns a ValidationReport (``{valid, errors[]}``) instead of
raising, so handlers can collect all problems before deciding.
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from planvault.core.errors import PlanValidationError
from planvault.core.models import ExecutionState, PhaseDocument, Plan


class ValidationIssue(BaseModel):
    field: str
    message: str
    code: str


class ValidationReport(BaseModel):
    """Result type shared by all validators."""

    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def add_error(self, field: str, message: str, code: str) -> None:
        self.errors.append(ValidationIssue(field=field, message=message, code=code))

    def add_warning(self, field: str, message: str, code: str) -> None:
        self.warnings.append(ValidationIssue(field=field, message=message, code=code))

    def merge(self, other: ValidationReport) -> ValidationReport:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def as_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.model_dump() for e in self.errors],
            "warnings": [w.model_dump() for w in self.warnings],
        }

    def raise_if_invalid(self, message: str = "Validation failed") -> None:
        """Raise PlanValidationError carrying every error as details."""
        if self.errors:
            raise PlanValidationError(
                f"{message}: {format_validation_errors(self)}",
                details=[e.model_dump() for e in self.errors],
            )


_TYPE_CODES: dict[str, str] = {
    "missing": "REQUIRED_FIELD_MISSING",
    "literal_error": "INVALID_ENUM_VALUE",
    "enum": "INVALID_ENUM_VALUE",
    "greater_than": "VALUE_OUT_OF_RANGE",
    "greater_than_equal": "VALUE_OUT_OF_RANGE",
    "less_than": "VALUE_OUT_OF_RANGE",
    "less_than_equal": "VALUE_OUT_OF_RANGE",
    "string_too_short": "VALUE_OUT_OF_RANGE",
    "too_short": "VALUE_OUT_OF_RANGE",
    "extra_forbidden": "UNKNOWN_FIELD",
    "union_tag_invalid": "INVALID_OPERATION",
    "union_tag_not_found": "INVALID_OPERATION",
    "invalid_operation": "INVALID_OPERATION",
}


def _code_for(error_type: str) -> str:
    if error_type in _TYPE_CODES:
        return _TYPE_CODES[error_type]
    if error_type.endswith("_type") or error_type.endswith("_parsing"):
        return "TYPE_MISMATCH"
    return "INVALID_VALUE"


def issues_from_pydantic(exc: ValidationError, prefix: str = "") -> list[ValidationIssue]:
    """Convert a pydantic ValidationError into ValidationIssue entries."""
    issues: list[ValidationIssue] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        field = f"{prefix}.{loc}" if prefix and loc else (prefix or loc or "<root>")
        issues.append(
            ValidationIssue(field=field, message=err["msg"], code=_code_for(err["type"]))
        )
    return issues


def _parse(model: type[BaseModel], doc: Any, report: ValidationReport) -> Any:
    if isinstance(doc, model):
        doc = doc.to_document()  # type: ignore[attr-defined]
    try:
        return model.model_validate(doc)
    except ValidationError as exc:
        report.errors.extend(issues_from_pydantic(exc))
        return None


def validate_orchestration(doc: Plan | dict[str, Any]) -> ValidationReport:
    """Check required fields, enum domains, numeric ranges and counters.

    Accepts the raw JSON document or a Plan (which is re-validated from its
    serialized form, so in-memory edits are checked too).
    """
    report = ValidationReport()
    plan = _parse(Plan, doc, report)
    if plan is None:
        return report

    if not plan.phases:
        report.add_error("phases", "Plan must contain at least one phase", "NO_PHASES")

    for phase_id, count in Counter(plan.phase_ids).items():
        if count > 1:
            report.add_error("phases", f"Duplicate phase id '{phase_id}'", "DUPLICATE_ID")
    for phase_file, count in Counter(p.file for p in plan.phases).items():
        if count > 1:
            report.add_error(
                "phases", f"Phase file '{phase_file}' referenced {count} times", "DUPLICATE_FILE"
            )

    progress = plan.progress
    if progress.total_phases != len(plan.phases):
        report.add_error(
            "progress.totalPhases",
            f"totalPhases is {progress.total_phases} but the plan has {len(plan.phases)} phases",
            "PROGRESS_MISMATCH",
        )
    if progress.completed_phases > progress.total_phases:
        report.add_error(
            "progress.completedPhases",
            "completedPhases exceeds totalPhases",
            "PROGRESS_MISMATCH",
        )
    if progress.completed_tasks > progress.total_tasks:
        report.add_error(
            "progress.completedTasks",
            "completedTasks exceeds totalTasks",
            "PROGRESS_MISMATCH",
        )

    budget = plan.execution.token_budget
    if budget.per_phase is not None and budget.per_phase > budget.total:
        report.add_error(
            "execution.tokenBudget.perPhase",
            "perPhase budget exceeds the total budget",
            "VALUE_OUT_OF_RANGE",
        )
    return report


def validate_phase_document(doc: PhaseDocument | dict[str, Any]) -> ValidationReport:
    report = ValidationReport()
    phase = _parse(PhaseDocument, doc, report)
    if phase is None:
        return report
    for task_id, count in Counter(phase.task_ids).items():
        if count > 1:
            report.add_error("tasks", f"Duplicate task id '{task_id}'", "DUPLICATE_ID")
    return report


def validate_execution_state(doc: ExecutionState | dict[str, Any]) -> ValidationReport:
    report = ValidationReport()
    _parse(ExecutionState, doc, report)
    return report


def format_validation_errors(report: ValidationReport) -> str:
    """One line per error: ``field: message [CODE]``."""
    return "; ".join(f"{e.field}: {e.message} [{e.code}]" for e in report.errors)
