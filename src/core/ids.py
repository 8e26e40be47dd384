# src/core/ids.py — v1
"""Human-legible, collision-resistant identifiers.

Phase and task ids are ``<kind>-<ordinal>-<slug>``; log entry and batch ids
combine a fixed-width time component with a random suffix so they sort
chronologically.
"""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Collection
from datetime import datetime, timezone

_SLUG_RE = re.compile(r"[^a-z0-9]+")
MAX_SLUG_LENGTH = 40


def slugify(name: str, fallback: str = "item") -> str:
    """Lowercase, dash-separated slug of a display name."""
    slug = _SLUG_RE.sub("-", name.lower()).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    return slug or fallback


def _ordinal_id(kind: str, name: str, existing_ids: Collection[str]) -> str:
    existing = set(existing_ids)
    slug = slugify(name, fallback=kind)
    ordinal = len(existing) + 1
    candidate = f"{kind}-{ordinal}-{slug}"
    while candidate in existing:
        ordinal += 1
        candidate = f"{kind}-{ordinal}-{slug}"
    return candidate


def generate_phase_id(name: str, existing_ids: Collection[str]) -> str:
    """Generate ``phase-{ordinal}-{slug}``, unique by ordinal increment."""
    return _ordinal_id("phase", name, existing_ids)


def generate_task_id(name: str, existing_ids: Collection[str]) -> str:
    """Generate ``task-{ordinal}-{slug}``, unique among ``existing_ids``."""
    return _ordinal_id("task", name, existing_ids)


def generate_entry_id(prefix: str = "log") -> str:
    """Generate a sortable id: ``{prefix}-{ms since epoch, hex}-{random}``."""
    millis = time.time_ns() // 1_000_000
    return f"{prefix}-{millis:012x}-{uuid.uuid4().hex[:8]}"


def generate_batch_id() -> str:
    return generate_entry_id("batch")


def timestamp_slug(timestamp: datetime | None = None) -> str:
    """Filesystem-safe UTC timestamp with microseconds: yyyymmdd-hhmmss-ffffff."""
    ts = timestamp or datetime.now(timezone.utc)
    return ts.strftime("%Y%m%d-%H%M%S-%f")
