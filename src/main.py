# src/main.py — v1
"""CLI entry point — read-only inspection of a plan directory.

Usage:
    planvault state <plan_dir>
    planvault levels <plan_dir>
    planvault validate <plan_dir>
    planvault log <plan_dir> [--limit N] [--operation-type T] [--target T] [--failed]
    planvault stats <plan_dir>
    planvault export <plan_dir> [--format json|csv|narrative] [-o FILE]

Mutations go through the Python API; this CLI never writes plan documents.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from planvault.audit.exporter import export_log
from planvault.audit.logger import get_log_stats, query_log
from planvault.audit.models import AuditQuery
from planvault.config.settings import Settings
from planvault.core.errors import PlanVaultError
from planvault.execution.analyzer import get_execution_state, get_progress_summary
from planvault.logging.logger import setup_logging
from planvault.operations.orchestrator import verify_plan_integrity
from planvault.scheduler.levels import compute_levels
from planvault.storage import document_store, layout
from planvault.validators.schema import format_validation_errors
from planvault.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging(
        level="DEBUG" if args.verbose else settings.log_level,
        log_format="text",
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    if not layout.is_plan_dir(args.plan_dir):
        logger.error("Not a plan directory (no %s): %s", layout.ORCHESTRATION_FILE, args.plan_dir)
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except PlanVaultError as exc:
        logger.error("%s [%s]", exc.message, exc.code)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="planvault",
        description=f"planvault v{__version__} — plan document store inspector",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    p_state = subparsers.add_parser("state", help="Show execution state and progress")
    p_state.add_argument("plan_dir", type=Path)
    p_state.set_defaults(func=_cmd_state)

    p_levels = subparsers.add_parser("levels", help="Show dependency levels")
    p_levels.add_argument("plan_dir", type=Path)
    p_levels.set_defaults(func=_cmd_levels)

    p_validate = subparsers.add_parser("validate", help="Validate the plan documents")
    p_validate.add_argument("plan_dir", type=Path)
    p_validate.set_defaults(func=_cmd_validate)

    p_log = subparsers.add_parser("log", help="Query the update history")
    p_log.add_argument("plan_dir", type=Path)
    p_log.add_argument("--limit", type=int, default=20, help="Max entries (default: 20)")
    p_log.add_argument("--offset", type=int, default=0)
    p_log.add_argument("--operation-type", default=None)
    p_log.add_argument(
        "--target", default=None, choices=["metadata", "phase", "task", "batch", "plan"],
    )
    p_log.add_argument("--target-id", default=None)
    p_log.add_argument("--failed", action="store_true", help="Only failed entries")
    p_log.set_defaults(func=_cmd_log)

    p_stats = subparsers.add_parser("stats", help="Show audit log statistics")
    p_stats.add_argument("plan_dir", type=Path)
    p_stats.set_defaults(func=_cmd_stats)

    p_export = subparsers.add_parser("export", help="Export the update history")
    p_export.add_argument("plan_dir", type=Path)
    p_export.add_argument(
        "-f", "--format", dest="fmt", default="json", choices=["json", "csv", "narrative"],
    )
    p_export.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Write to this file instead of stdout",
    )
    p_export.set_defaults(func=_cmd_export)

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _cmd_state(args: argparse.Namespace) -> int:
    """Print execution facts and the per-phase progress breakdown."""
    state = get_execution_state(args.plan_dir)
    if not state.success:
        logger.error("%s [%s]", state.error, state.code)
        return 1
    summary = get_progress_summary(args.plan_dir)
    _print_json({"execution": state.data, "progress": summary.data})
    return 0


def _cmd_levels(args: argparse.Namespace) -> int:
    plan = document_store.load_plan(args.plan_dir)
    levels = compute_levels(plan)
    print(f"\nDependency levels for {plan.id}:")
    for index, level in enumerate(levels.levels):
        print(f"  Level {index}: {', '.join(level)}")
    print(f"  Max parallel width: {levels.max_width}")
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    report = verify_plan_integrity(args.plan_dir)
    if report.valid:
        print(f"Plan {args.plan_dir} is valid")
        for warning in report.warnings:
            print(f"  warning [{warning.code}] {warning.field}: {warning.message}")
        return 0
    print(format_validation_errors(report))
    return 2


def _cmd_log(args: argparse.Namespace) -> int:
    query = AuditQuery(
        operation_type=args.operation_type,
        target=args.target,
        target_id=args.target_id,
        success=False if args.failed else None,
        offset=args.offset,
        limit=args.limit,
    )
    entries = query_log(args.plan_dir, query)
    for entry in entries:
        status = "ok  " if entry.success else "FAIL"
        target = f"{entry.target}:{entry.target_id}" if entry.target_id else entry.target
        line = f"{entry.timestamp:%Y-%m-%d %H:%M:%S} {status} {entry.operation_type:<15} {target}"
        if entry.error:
            line += f" — {entry.error}"
        print(line)
    if not entries:
        print("No matching entries.")
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    stats = get_log_stats(args.plan_dir)
    print(f"\nAudit statistics for {args.plan_dir}:")
    print(f"  Entries:       {stats.total_entries}")
    print(f"  Successful:    {stats.successful}")
    print(f"  Failed:        {stats.failed}")
    print(f"  Current file:  {stats.file_size_bytes} bytes")
    print(f"  Rotated files: {stats.rotated_files}")
    for op_type, count in sorted(stats.by_operation_type.items()):
        print(f"    {op_type:<16} {count}")
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    text = export_log(args.plan_dir, args.fmt, output_path=args.output)
    if args.output is None:
        sys.stdout.write(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
