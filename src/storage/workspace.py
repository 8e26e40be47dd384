# src/storage/workspace.py — v1
"""In-memory aggregate of one plan directory.

Handlers load a PlanWorkspace, mutate it, call ``save()`` which derives
progress and execution-state maps, validates everything, and only then
writes. A failed validation leaves every file untouched.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from planvault.core.errors import NotFoundError
from planvault.core.models import ExecutionState, PhaseDocument, PhaseRef, Plan, Task, utcnow
from planvault.execution.progress import recalculate_progress, reconcile_execution_state
from planvault.storage import document_store, layout
from planvault.validators.integrity import (
    validate_phase_dependencies,
    validate_phase_references,
    validate_task_dependencies,
)
from planvault.validators.schema import (
    ValidationReport,
    validate_orchestration,
    validate_phase_document,
)

logger = logging.getLogger(__name__)


@dataclass
class PlanWorkspace:
    plan_dir: Path
    plan: Plan
    phases: dict[str, PhaseDocument]
    state: ExecutionState
    dirty_phases: set[str] = field(default_factory=set)
    removed_files: list[str] = field(default_factory=list)

    @classmethod
    def load(cls, plan_dir: Path) -> PlanWorkspace:
        """Load orchestration, phase documents and execution state.

        Raises:
            NotFoundError: If the directory or its orchestration document is missing.
        """
        plan_dir = Path(plan_dir)
        if not plan_dir.is_dir():
            raise NotFoundError(f"Plan directory not found: {plan_dir}")
        plan = document_store.load_plan(plan_dir)
        return cls(
            plan_dir=plan_dir,
            plan=plan,
            phases=document_store.load_phase_documents(plan_dir, plan),
            state=document_store.load_execution_state(plan_dir),
        )

    # --- Lookups ---

    def phase_ref(self, phase_id: str) -> PhaseRef:
        ref = self.plan.find_phase(phase_id)
        if ref is None:
            raise NotFoundError(f"Phase '{phase_id}' not found", code="PHASE_NOT_FOUND")
        return ref

    def phase_document(self, phase_id: str) -> PhaseDocument:
        ref = self.phase_ref(phase_id)
        doc = self.phases.get(phase_id)
        if doc is None:
            raise NotFoundError(
                f"Phase file '{ref.file}' for '{phase_id}' is missing",
                code="MISSING_PHASE_FILE",
            )
        return doc

    def task(self, phase_id: str, task_id: str) -> Task:
        task = self.phase_document(phase_id).find_task(task_id)
        if task is None:
            raise NotFoundError(
                f"Task '{task_id}' not found in phase '{phase_id}'", code="TASK_NOT_FOUND"
            )
        return task

    def locate_task(self, task_id: str) -> str | None:
        """Phase id holding ``task_id``, if any."""
        for phase_id, doc in self.phases.items():
            if doc.find_task(task_id) is not None:
                return phase_id
        return None

    def all_task_ids(self) -> list[str]:
        return [t.id for doc in self.phases.values() for t in doc.tasks]

    # --- Mutation bookkeeping ---

    def put_phase(self, doc: PhaseDocument) -> None:
        self.phases[doc.id] = doc
        self.dirty_phases.add(doc.id)

    def drop_phase(self, phase_id: str, phase_file: str) -> None:
        """Forget a phase document; its file is deleted on commit."""
        self.phases.pop(phase_id, None)
        self.dirty_phases.discard(phase_id)
        self.removed_files.append(phase_file)

    # --- Validation / persistence ---

    def refresh(self) -> None:
        """Re-derive execution-state maps and the progress snapshot."""
        self.state = reconcile_execution_state(self.plan, self.phases, self.state)
        self.plan.progress = recalculate_progress(self.plan, self.phases, self.state)

    def validate(self) -> ValidationReport:
        self.refresh()
        report = validate_orchestration(self.plan)
        if report.valid:
            report.merge(validate_phase_dependencies(self.plan))
        for doc in self.phases.values():
            report.merge(validate_phase_document(doc))
            report.merge(validate_task_dependencies(doc))
        for task_id, count in Counter(self.all_task_ids()).items():
            if count > 1:
                report.add_error(
                    "tasks", f"Task id '{task_id}' is used {count} times", "DUPLICATE_ID"
                )
        pending = {pid: doc for pid, doc in self.phases.items() if pid in self.dirty_phases}
        refs = validate_phase_references(self.plan_dir, self.plan, pending)
        # Files removed in this edit are not orphans yet.
        removed = {Path(f).name for f in self.removed_files}
        refs.warnings = [
            w for w in refs.warnings
            if not (w.code == "ORPHANED_PHASE_FILE" and w.field.split("/")[-1] in removed)
        ]
        return report.merge(refs)

    def commit(self) -> None:
        """Write dirty documents: phase files, removals, state, then the plan."""
        now = utcnow()
        for phase_id in sorted(self.dirty_phases):
            doc = self.phases[phase_id]
            doc.modified = now
            document_store.save_phase(self.plan_dir, self.phase_ref(phase_id).file, doc)
        for phase_file in self.removed_files:
            layout.phase_path(self.plan_dir, phase_file).unlink(missing_ok=True)
        document_store.save_execution_state(self.plan_dir, self.state)
        self.plan.modified = now
        document_store.save_plan(self.plan_dir, self.plan)
        logger.debug(
            "Committed plan %s (%d phase files, %d removed)",
            self.plan.id, len(self.dirty_phases), len(self.removed_files),
        )
        self.dirty_phases.clear()
        self.removed_files.clear()

    def save(self, message: str = "Plan validation failed") -> ValidationReport:
        """Validate, then commit. Raises PlanValidationError without writing."""
        report = self.validate()
        report.raise_if_invalid(message)
        self.commit()
        return report
