"""
Snapshot CLI tool.

Provides commands for:
- run-due: Execute every due snapshot schedule once
- export: Export a snapshot as JSON or CSV
- compare: Compare a snapshot with the current state of its book

Usage:
    fiscal-snapshots run-due [--db-path PATH]
    fiscal-snapshots export <snapshot_id> --format json|csv [--output FILE]
    fiscal-snapshots compare <snapshot_id> [--format text|json]

run-due is the external trigger for scheduled snapshots; wire it to cron or
any other scheduler. The engine itself owns no timer.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from typing import Any

from ..config import ServiceConfig
from ..errors import SnapshotError
from ..main import build_service, setup_logging
from ..service import SnapshotService


class SnapshotCLI:
    """Command implementations, one coroutine per subcommand."""

    def __init__(self, service: SnapshotService) -> None:
        self.service = service

    async def run_due(self) -> dict[str, Any]:
        return await self.service.trigger_scheduled_snapshots()

    async def export(self, snapshot_id: str, format: str) -> tuple[str, str]:
        """Returns (file_name, data)."""
        result = await self.service.export_snapshot(snapshot_id, format)
        return result.file_name, result.data

    async def compare(self, snapshot_id: str) -> dict[str, Any]:
        result = await self.service.compare_snapshot(snapshot_id)
        return result.to_dict()


def _print_comparison(comparison: dict[str, Any]) -> None:
    counts = comparison["counts"]
    print(f"Snapshot {comparison['snapshot_id']} vs fiscal book {comparison['fiscal_book_id']}")
    print(
        f"  added: {counts['added']}  removed: {counts['removed']}  "
        f"modified: {counts['modified']}  unchanged: {counts['unchanged']}"
    )
    for item in comparison["modified"]:
        print(f"  ~ {item['original_transaction_id']}")
        for change in item["changes"]:
            print(f"      {change['field']}: {change['old_value']!r} -> {change['new_value']!r}")

    differences = comparison["summary"]["differences"]
    print("  differences (current - snapshot):")
    for name, value in differences.items():
        print(f"      {name}: {value:+g}")


async def _run(args: argparse.Namespace, config: ServiceConfig) -> int:
    service = await build_service(config)
    cli = SnapshotCLI(service)

    if args.command == "run-due":
        summary = await cli.run_due()
        print(f"Executed {summary['executed']} schedule(s), {summary['errors']} error(s)")
        for error in summary["details"]["errors"]:
            print(f"  - {error['fiscal_book_id']}: {error['error']}")
        return 1 if summary["errors"] else 0

    if args.command == "export":
        file_name, data = await cli.export(args.snapshot_id, args.format)
        output = args.output or file_name
        if output == "-":
            print(data)
        else:
            with open(output, "w", encoding="utf-8") as f:
                f.write(data)
            print(f"Snapshot exported to {output}", file=sys.stderr)
        return 0

    if args.command == "compare":
        comparison = await cli.compare(args.snapshot_id)
        if args.format == "json":
            print(json.dumps(comparison, indent=2))
        else:
            _print_comparison(comparison)
        return 0

    return 2


def main() -> None:
    """CLI entry point for the snapshot tool."""
    parser = argparse.ArgumentParser(description="Fiscal book snapshot tool")
    parser.add_argument("--db-path", help="SQLite database file (default: SNAPSHOT_DB_PATH)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run-due", help="Execute due snapshot schedules once")

    export_parser = subparsers.add_parser("export", help="Export a snapshot")
    export_parser.add_argument("snapshot_id", help="Snapshot ID")
    export_parser.add_argument(
        "--format", choices=["json", "csv"], default="json", help="Export format"
    )
    export_parser.add_argument(
        "--output", "-o", help="Output file (default: suggested file name, '-' for stdout)"
    )

    compare_parser = subparsers.add_parser("compare", help="Compare a snapshot with current state")
    compare_parser.add_argument("snapshot_id", help="Snapshot ID")
    compare_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    args = parser.parse_args()

    try:
        config = ServiceConfig.from_env()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    if args.db_path:
        config = replace(config, storage=replace(config.storage, db_path=args.db_path))
    if args.verbose:
        config = replace(
            config, observability=replace(config.observability, log_level="DEBUG")
        )
    setup_logging(config)

    try:
        sys.exit(asyncio.run(_run(args, config)))
    except SnapshotError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
