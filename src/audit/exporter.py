# src/audit/exporter.py — v1
"""Audit log export to JSON, CSV and a narrative text format."""

from __future__ import annotations

import csv
import io
import json
import logging
from pathlib import Path
from typing import Literal

from planvault.audit.logger import query_log
from planvault.audit.models import AuditEntry, AuditQuery

logger = logging.getLogger(__name__)

ExportFormat = Literal["json", "csv", "narrative"]

CSV_FIELDS = [
    "id", "timestamp", "planId", "operationType", "target",
    "targetId", "actor", "success", "error",
]


def export_json(entries: list[AuditEntry]) -> str:
    return json.dumps(
        [e.model_dump(mode="json", by_alias=True) for e in entries],
        indent=2,
        ensure_ascii=False,
    )


def export_csv(entries: list[AuditEntry]) -> str:
    """One row per entry; snapshots and metadata are left out."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, extrasaction="ignore")
    writer.writeheader()
    for entry in entries:
        row = entry.model_dump(mode="json", by_alias=True)
        row["success"] = "true" if entry.success else "false"
        row["error"] = entry.error or ""
        row["targetId"] = entry.target_id or ""
        writer.writerow(row)
    return buffer.getvalue()


def _describe(entry: AuditEntry) -> str:
    meta = entry.metadata
    when = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    if entry.operation_type == "batch_start":
        return (
            f"[{when}] {entry.actor} started batch {entry.target_id} "
            f"with {meta.get('operationCount', 0)} operation(s) ({meta.get('mode')})"
        )
    if entry.operation_type == "batch_complete":
        outcome = "succeeded" if entry.success else "failed"
        line = (
            f"[{when}] Batch {entry.target_id} {outcome}: "
            f"{meta.get('completed', 0)} completed, {meta.get('failed', 0)} failed "
            f"in {meta.get('durationMs', 0)} ms"
        )
        if meta.get("rolledBack"):
            line += f", rolled back from {meta.get('backupPath')}"
        return line
    subject = f"{entry.target} '{entry.target_id}'" if entry.target_id else entry.target
    if entry.success:
        return f"[{when}] {entry.actor} performed {entry.operation_type} on {subject}"
    return f"[{when}] {entry.actor} failed to {entry.operation_type} {subject}: {entry.error}"


def export_narrative(entries: list[AuditEntry], plan_id: str = "") -> str:
    """Human-readable history, one line per entry."""
    lines = [f"=== Update History: {plan_id} ===" if plan_id else "=== Update History ==="]
    if not entries:
        lines.append("No entries.")
    lines.extend(_describe(e) for e in entries)
    return "\n".join(lines) + "\n"


def export_log(
    plan_dir: Path,
    fmt: ExportFormat = "json",
    query: AuditQuery | None = None,
    output_path: Path | None = None,
) -> str:
    """Render (a filtered slice of) the audit log.

    Args:
        plan_dir: Plan directory holding the log.
        fmt: ``json``, ``csv`` or ``narrative``.
        query: Optional filters, as for query_log.
        output_path: If given, the rendering is also written there.

    Returns:
        The rendered text.

    Raises:
        ValueError: On an unknown format.
    """
    plan_dir = Path(plan_dir)
    entries = query_log(plan_dir, query or AuditQuery())
    if fmt == "json":
        text = export_json(entries)
    elif fmt == "csv":
        text = export_csv(entries)
    elif fmt == "narrative":
        text = export_narrative(entries, plan_dir.name)
    else:
        raise ValueError(f"Unknown export format: {fmt}")

    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(text, encoding="utf-8")
        logger.info("Exported %d audit entries to %s", len(entries), output_path)
    return text
