# src/logging/handlers.py — v1
"""Size strings and the diagnostic log file handler.

``parse_size`` turns the human-readable limits in Settings
(AUDIT_LOG_ROTATION, AUDIT_SNAPSHOT_MAX_SIZE, LOG_ROTATION) into byte
counts; the audit log rotates and truncates snapshots on those counts.
``create_rotating_handler`` backs LOG_FILE when setup_logging is given one.
The diagnostic log never lives inside a plan directory's backup set.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

SIZE_UNITS: dict[str, int] = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}

_SIZE_RE = re.compile(r"^(\d+)\s*(B|KB|MB|GB)$", re.IGNORECASE)


def parse_size(size_str: str) -> int:
    """Bytes in a size setting such as ``"10MB"`` or ``"200B"``.

    Units are binary (1KB = 1024 bytes) and case-insensitive.

    Raises:
        ValueError: If the string is not ``<integer><unit>``. Settings
            collects these into a single ConfigurationError.
    """
    match = _SIZE_RE.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    return int(match.group(1)) * SIZE_UNITS[match.group(2).upper()]


def create_rotating_handler(
    log_file: str | Path,
    rotation: str = "10MB",
    retention: int = 30,
) -> RotatingFileHandler:
    """Rotating handler for the LOG_FILE diagnostic log.

    Args:
        log_file: Log file path; ``~`` is expanded and parent directories
            are created.
        rotation: LOG_ROTATION size at which the file rolls over.
        retention: LOG_RETENTION, the number of rolled files kept.
    """
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
    )
    # Level filtering happens on the planvault logger.
    handler.setLevel(logging.NOTSET)
    return handler
