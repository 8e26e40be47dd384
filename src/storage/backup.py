# src/storage/backup.py — v1
"""Whole-plan-directory backup and restore.

A backup is a full copy of the plan documents under
``<plan_dir>/.backups/backup-<timestamp>-<rand>``. The newest
``retention`` backups are kept. Audit log generations, ``.backups`` and
``.logs-backup`` are never copied or restored.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

from planvault.core.errors import BackupError, NotFoundError, RestoreError
from planvault.core.ids import timestamp_slug
from planvault.storage import layout

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 5


def _top_level_ignore(plan_dir: Path):
    # Exclusions only apply at the top level of the plan directory.
    def ignore(directory: str, names: list[str]) -> list[str]:
        if Path(directory) != plan_dir:
            return []
        return [n for n in names if layout.is_excluded_from_backup(n)]

    return ignore


def create_backup(plan_dir: Path, retention: int = DEFAULT_RETENTION) -> Path:
    """Copy the plan directory tree to a fresh timestamped backup.

    Args:
        plan_dir: Plan directory to copy.
        retention: Number of most recent backups to keep afterwards.

    Returns:
        Path of the new backup directory.

    Raises:
        NotFoundError: If ``plan_dir`` does not exist.
        BackupError: If the copy fails.
    """
    plan_dir = Path(plan_dir)
    if not plan_dir.is_dir():
        raise NotFoundError(f"Plan directory not found: {plan_dir}")

    name = f"{layout.BACKUP_PREFIX}{timestamp_slug()}-{uuid.uuid4().hex[:4]}"
    backup_path = layout.backups_dir(plan_dir) / name
    try:
        layout.backups_dir(plan_dir).mkdir(exist_ok=True)
        shutil.copytree(
            plan_dir,
            backup_path,
            ignore=_top_level_ignore(plan_dir),
        )
    except OSError as exc:
        shutil.rmtree(backup_path, ignore_errors=True)
        raise BackupError(f"Failed to create backup of {plan_dir}: {exc}") from exc

    logger.info("Backup created: %s", backup_path)
    prune_backups(plan_dir, retention)
    return backup_path


def list_backups(plan_dir: Path) -> list[Path]:
    """Existing backups, oldest first."""
    root = layout.backups_dir(Path(plan_dir))
    if not root.is_dir():
        return []
    return sorted(
        p for p in root.iterdir()
        if p.is_dir() and p.name.startswith(layout.BACKUP_PREFIX)
    )


def prune_backups(plan_dir: Path, retention: int = DEFAULT_RETENTION) -> list[Path]:
    """Delete all but the ``retention`` newest backups. Returns removed paths."""
    backups = list_backups(plan_dir)
    excess = backups[: max(len(backups) - retention, 0)]
    for old in excess:
        shutil.rmtree(old, ignore_errors=True)
        logger.debug("Pruned backup %s", old)
    return excess


def restore_from_backup(backup_path: Path) -> Path:
    """Replace the plan documents with the content of ``backup_path``.

    Returns:
        The restored plan directory.

    Raises:
        RestoreError: If the backup is missing or copying it back fails.
    """
    backup_path = Path(backup_path)
    if not backup_path.is_dir():
        raise RestoreError(f"Backup not found: {backup_path}", backup_path=str(backup_path))

    plan_dir = layout.plan_dir_from_backup(backup_path)
    try:
        for entry in plan_dir.iterdir():
            if layout.is_excluded_from_backup(entry.name):
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        shutil.copytree(backup_path, plan_dir, dirs_exist_ok=True)
    except OSError as exc:
        raise RestoreError(
            f"Failed to restore {plan_dir} from {backup_path}: {exc}",
            backup_path=str(backup_path),
        ) from exc

    logger.info("Restored %s from %s", plan_dir, backup_path)
    return plan_dir
