# src/audit/logger.py — v1
"""Append-only audit trail of plan updates (``update-history.jsonl``).

One JSON object per line. Rotation is checked before every append: when
the current file has reached the size threshold, generations shift
(``.1`` -> ``.2`` ...), the oldest beyond the retention count is dropped,
and the entry goes to a fresh file. Reads walk the generations oldest
first, so results are chronological.
"""

from __future__ import annotations

import json
import logging
import os
from collections import Counter
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from planvault.audit.models import AuditEntry, AuditQuery, LogStats
from planvault.config.settings import Settings
from planvault.core.ids import generate_entry_id
from planvault.storage import layout

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500


def create_snapshot(data: Any, max_bytes: int) -> Any:
    """Return ``data``, or a truncated preview when it serializes too large."""
    if data is None:
        return None
    text = json.dumps(data, default=str, ensure_ascii=False)
    size = len(text.encode("utf-8"))
    if size <= max_bytes:
        return data
    return {
        "_truncated": True,
        "_originalSize": size,
        "_preview": text[: min(PREVIEW_CHARS, max_bytes)],
    }


def _generations(plan_dir: Path, retention: int | None = None) -> list[Path]:
    """Existing rotated generations, oldest first."""
    found: list[tuple[int, Path]] = []
    for path in plan_dir.glob(f"{layout.AUDIT_LOG_FILE}.*"):
        suffix = path.name.rsplit(".", 1)[-1]
        if suffix.isdigit():
            found.append((int(suffix), path))
    found.sort(reverse=True)
    paths = [p for _, p in found]
    if retention is not None:
        paths = paths[-retention:]
    return paths


def rotate_if_needed(plan_dir: Path, settings: Settings | None = None) -> bool:
    """Rotate the current log when it has reached the size threshold.

    Returns:
        True if a rotation happened.
    """
    settings = settings or Settings()
    current = layout.audit_log_path(plan_dir)
    if not current.exists() or current.stat().st_size < settings.audit_log_max_bytes:
        return False

    retention = settings.audit_log_retention
    oldest = layout.rotated_audit_log_path(plan_dir, retention)
    oldest.unlink(missing_ok=True)
    for generation in range(retention - 1, 0, -1):
        src = layout.rotated_audit_log_path(plan_dir, generation)
        if src.exists():
            os.replace(src, layout.rotated_audit_log_path(plan_dir, generation + 1))
    os.replace(current, layout.rotated_audit_log_path(plan_dir, 1))
    logger.info("Rotated audit log for %s", plan_dir.name)
    return True


def _append(plan_dir: Path, entry: AuditEntry, settings: Settings) -> None:
    rotate_if_needed(plan_dir, settings)
    with layout.audit_log_path(plan_dir).open("a", encoding="utf-8") as fh:
        fh.write(entry.to_line() + "\n")


def log_operation(
    plan_dir: Path,
    operation_type: str,
    target: str,
    target_id: str | None = None,
    *,
    before: Any = None,
    after: Any = None,
    success: bool = True,
    error: str | None = None,
    metadata: dict[str, Any] | None = None,
    settings: Settings | None = None,
) -> AuditEntry | None:
    """Append one entry. Returns None when auditing is disabled or the plan
    directory does not exist."""
    settings = settings or Settings()
    plan_dir = Path(plan_dir)
    if not settings.audit_log_enabled:
        return None
    if not plan_dir.is_dir():
        logger.debug("Skipping audit entry, no plan directory at %s", plan_dir)
        return None

    meta = {"mode": "rollback", "force": False, "source": settings.audit_source}
    meta.update(metadata or {})
    cap = settings.audit_snapshot_bytes
    entry = AuditEntry(
        id=generate_entry_id("log"),
        plan_id=plan_dir.name,
        operation_type=operation_type,
        target=target,
        target_id=target_id,
        actor=settings.actor,
        before=create_snapshot(before, cap),
        after=create_snapshot(after, cap),
        success=success,
        error=error,
        metadata=meta,
    )
    _append(plan_dir, entry, settings)
    return entry


def log_batch_start(
    plan_dir: Path,
    batch_id: str,
    operations: Sequence[Any],
    *,
    mode: str = "rollback",
    settings: Settings | None = None,
) -> AuditEntry | None:
    """Open a batch bracket with an operation count and summary."""
    summary = Counter(f"{op.target}:{op.type}" for op in operations)
    return log_operation(
        plan_dir,
        "batch_start",
        "batch",
        batch_id,
        metadata={
            "batchId": batch_id,
            "mode": mode,
            "operationCount": len(operations),
            "operationSummary": dict(summary),
        },
        settings=settings,
    )


def log_batch_complete(
    plan_dir: Path,
    batch_id: str,
    *,
    completed: int,
    failed: int,
    rolled_back: bool = False,
    backup_path: str | None = None,
    duration_ms: int = 0,
    mode: str = "rollback",
    settings: Settings | None = None,
) -> AuditEntry | None:
    """Close a batch bracket with counts, rollback outcome and duration."""
    return log_operation(
        plan_dir,
        "batch_complete",
        "batch",
        batch_id,
        success=failed == 0,
        metadata={
            "batchId": batch_id,
            "mode": mode,
            "completed": completed,
            "failed": failed,
            "rolledBack": rolled_back,
            "backupPath": backup_path,
            "durationMs": duration_ms,
        },
        settings=settings,
    )


def iter_entries(plan_dir: Path) -> Iterator[AuditEntry]:
    """Every readable entry across generations, oldest first.

    Malformed lines are skipped.
    """
    plan_dir = Path(plan_dir)
    files = _generations(plan_dir) + [layout.audit_log_path(plan_dir)]
    for path in files:
        if not path.exists():
            continue
        with path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield AuditEntry.model_validate_json(line)
                except ValidationError:
                    logger.warning("Skipping malformed audit line %s:%d", path.name, lineno)


def query_log(
    plan_dir: Path,
    query: AuditQuery | None = None,
    **filters: Any,
) -> list[AuditEntry]:
    """Filter entries by date range, type, target, id, outcome, batch.

    Filters may be given as an AuditQuery or as keyword arguments.
    """
    query = query or AuditQuery(**filters)
    matched = [e for e in iter_entries(plan_dir) if query.matches(e)]
    end = None if query.limit is None else query.offset + query.limit
    return matched[query.offset:end]


def get_recent_entries(plan_dir: Path, limit: int = 10) -> list[AuditEntry]:
    """The ``limit`` most recent entries, newest first."""
    entries = list(iter_entries(plan_dir))
    return list(reversed(entries[-limit:])) if limit > 0 else []


def get_batch_entries(plan_dir: Path, batch_id: str) -> list[AuditEntry]:
    """All entries of one batch, brackets included, in order."""
    return query_log(plan_dir, AuditQuery(batch_id=batch_id))


def get_log_stats(plan_dir: Path) -> LogStats:
    plan_dir = Path(plan_dir)
    stats = LogStats()
    by_type: Counter[str] = Counter()
    by_target: Counter[str] = Counter()
    for entry in iter_entries(plan_dir):
        stats.total_entries += 1
        if entry.success:
            stats.successful += 1
        else:
            stats.failed += 1
        by_type[entry.operation_type] += 1
        by_target[entry.target] += 1
        if stats.first_entry is None:
            stats.first_entry = entry.timestamp
        stats.last_entry = entry.timestamp
    stats.by_operation_type = dict(by_type)
    stats.by_target = dict(by_target)
    current = layout.audit_log_path(plan_dir)
    stats.file_size_bytes = current.stat().st_size if current.exists() else 0
    stats.rotated_files = len(_generations(plan_dir))
    return stats


def clear_log(plan_dir: Path) -> int:
    """Delete the current log and every rotated generation.

    Administrative reset only; no update path calls it.

    Returns:
        Number of files removed.
    """
    plan_dir = Path(plan_dir)
    files = _generations(plan_dir) + [layout.audit_log_path(plan_dir)]
    removed = 0
    for path in files:
        if path.exists():
            path.unlink()
            removed += 1
    logger.warning("Cleared audit log of %s (%d files)", plan_dir.name, removed)
    return removed
