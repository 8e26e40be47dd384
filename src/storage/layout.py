# src/storage/layout.py — v1
"""Plan directory structure definition.

    <plan_dir>/
        orchestration.json          Plan
        phases/<phase_id>.json      Phase documents
        execution-state.json        ExecutionState
        update-history.jsonl        audit log (+ .1, .2, ... rotated)
        .backups/backup-<ts>/       full copies of the plan documents
        .logs-backup/logs-<ts>/     execution-state snapshots from replans
"""

from __future__ import annotations

from pathlib import Path

ORCHESTRATION_FILE = "orchestration.json"
PHASES_DIR = "phases"
EXECUTION_STATE_FILE = "execution-state.json"
AUDIT_LOG_FILE = "update-history.jsonl"
BACKUPS_DIR = ".backups"
LOGS_BACKUP_DIR = ".logs-backup"

BACKUP_PREFIX = "backup-"
LOGS_BACKUP_PREFIX = "logs-"
EXECUTION_SUMMARY_FILE = "execution-summary.json"


def orchestration_path(plan_dir: Path) -> Path:
    return plan_dir / ORCHESTRATION_FILE


def phases_dir(plan_dir: Path) -> Path:
    return plan_dir / PHASES_DIR


def default_phase_file(phase_id: str) -> str:
    """Relative file reference stored in a PhaseRef."""
    return f"{PHASES_DIR}/{phase_id}.json"


def phase_path(plan_dir: Path, phase_file: str) -> Path:
    """Resolve a PhaseRef.file (relative to the plan directory)."""
    return plan_dir / phase_file


def is_managed_phase_file(plan_dir: Path, phase_file: str) -> bool:
    """True if ``phase_file`` resolves to a path covered by backup and restore."""
    root = Path(plan_dir).resolve()
    try:
        parts = phase_path(root, phase_file).resolve().relative_to(root).parts
    except ValueError:
        return False
    if not parts or is_excluded_from_backup(parts[0]):
        return False
    return parts[0] not in (ORCHESTRATION_FILE, EXECUTION_STATE_FILE)


def execution_state_path(plan_dir: Path) -> Path:
    return plan_dir / EXECUTION_STATE_FILE


def audit_log_path(plan_dir: Path) -> Path:
    return plan_dir / AUDIT_LOG_FILE


def rotated_audit_log_path(plan_dir: Path, generation: int) -> Path:
    """Rotated generation ``n`` (1 = most recent)."""
    return plan_dir / f"{AUDIT_LOG_FILE}.{generation}"


def backups_dir(plan_dir: Path) -> Path:
    return plan_dir / BACKUPS_DIR


def logs_backup_dir(plan_dir: Path) -> Path:
    return plan_dir / LOGS_BACKUP_DIR


def is_plan_dir(plan_dir: Path) -> bool:
    return orchestration_path(plan_dir).is_file()


def is_excluded_from_backup(name: str) -> bool:
    """Entries never copied into or restored from a backup.

    The audit log generations stay outside so the log remains append-only
    across rollbacks.
    """
    return (
        name in (BACKUPS_DIR, LOGS_BACKUP_DIR)
        or name == AUDIT_LOG_FILE
        or name.startswith(f"{AUDIT_LOG_FILE}.")
    )


def plan_dir_from_backup(backup_path: Path) -> Path:
    """Plan directory owning a backup (``<plan>/.backups/<name>``)."""
    return backup_path.parent.parent
