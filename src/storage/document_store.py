# src/storage/document_store.py — v1
"""Atomic read/write of plan JSON documents.

Writes go to a temp file in the target's directory which is then renamed
over the target, so no partial file is ever visible under the real name.
Typed load/save helpers wrap the three document kinds.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from planvault.core.errors import (
    DocumentNotFoundError,
    DocumentParseError,
    PlanValidationError,
)
from planvault.core.models import ExecutionState, PhaseDocument, Plan
from planvault.storage import layout

logger = logging.getLogger(__name__)


def read_document(path: Path) -> Any:
    """Read and parse a JSON document.

    Raises:
        DocumentNotFoundError: If the file does not exist.
        DocumentParseError: If the content is not valid JSON.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise DocumentNotFoundError(f"File not found: {path}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DocumentParseError(f"Invalid JSON in {path}: {exc.msg} (line {exc.lineno})") from exc


def write_document(path: Path, document: Any) -> None:
    """Atomically write ``document`` as indented JSON.

    Accepts plain JSON-ready data or a pydantic model.
    """
    if isinstance(document, BaseModel):
        document = document.model_dump(mode="json", by_alias=True)
    payload = json.dumps(document, indent=2, ensure_ascii=False) + "\n"

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.tmp.", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug("Wrote %s (%d bytes)", path, len(payload))


def _parse(model: type[BaseModel], data: Any, path: Path) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise PlanValidationError(
            f"{path.name} does not match the {model.__name__} schema",
            details=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        ) from exc


# --- Typed helpers ---

def load_plan(plan_dir: Path) -> Plan:
    path = layout.orchestration_path(plan_dir)
    return _parse(Plan, read_document(path), path)


def save_plan(plan_dir: Path, plan: Plan) -> None:
    write_document(layout.orchestration_path(plan_dir), plan.to_document())


def load_phase(plan_dir: Path, phase_file: str) -> PhaseDocument:
    path = layout.phase_path(plan_dir, phase_file)
    return _parse(PhaseDocument, read_document(path), path)


def save_phase(plan_dir: Path, phase_file: str, phase: PhaseDocument) -> None:
    write_document(layout.phase_path(plan_dir, phase_file), phase.to_document())


def load_execution_state(plan_dir: Path) -> ExecutionState:
    """Load the execution state; a plan that never ran has an empty one."""
    path = layout.execution_state_path(plan_dir)
    if not path.exists():
        return ExecutionState()
    return _parse(ExecutionState, read_document(path), path)


def save_execution_state(plan_dir: Path, state: ExecutionState) -> None:
    write_document(layout.execution_state_path(plan_dir), state.to_document())


def load_phase_documents(plan_dir: Path, plan: Plan) -> dict[str, PhaseDocument]:
    """Load every phase document the plan references that exists on disk."""
    documents: dict[str, PhaseDocument] = {}
    for ref in plan.phases:
        path = layout.phase_path(plan_dir, ref.file)
        if path.exists():
            documents[ref.id] = load_phase(plan_dir, ref.file)
    return documents
