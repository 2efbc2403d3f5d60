"""
Offline maintenance tool for sqlkite projects.

This tool inspects and repairs a project directory while no editor or
server has it open:
- pending: List operations interrupted between a file step and its metadata
- resolve: Clear one interrupted-operation marker after manual reconciliation
- orphans: List backing files that no branch references
- purge: Delete one orphaned backing file
- check: Run PRAGMA integrity_check on branch databases

Usage:
    sqlkite-doctor --project <path> pending
    sqlkite-doctor --project <path> resolve 3
    sqlkite-doctor --project <path> orphans
    sqlkite-doctor --project <path> purge old--feature.db.sqlite
    sqlkite-doctor --project <path> check --all

Invariants:
    - The tool never repairs anything on its own; resolve and purge act on
      exactly the id or file given
    - Exit code is non-zero when a check fails or a command is refused

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep --json output stable for scripting
"""

from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
from typing import Any

from ..config import WorkspaceConfig
from ..errors import WorkspaceError
from ..logging_config import setup_logging
from ..manager import WorkspaceManager

logger = logging.getLogger(__name__)


class DoctorTool:
    """Maintenance commands over an open workspace.

    Attributes:
        manager: Workspace manager for the project
    """

    def __init__(self, manager: WorkspaceManager) -> None:
        self.manager = manager

    def pending(self) -> list[dict[str, Any]]:
        return [op.to_dict() for op in self.manager.interrupted_operations()]

    def resolve(self, operation_id: int) -> dict[str, Any]:
        return self.manager.resolve_interrupted(operation_id).to_dict()

    def orphans(self) -> list[dict[str, Any]]:
        return self.manager.branches.orphaned_files()

    def purge(self, db_file: str) -> dict[str, Any]:
        return self.manager.branches.purge(db_file, self.manager.current_branch())

    def check(self, branches: list[str]) -> dict[str, list[str]]:
        """Run an integrity check on each branch's backing file.

        Returns:
            Map of branch name -> integrity_check messages (["ok"] if healthy)
        """
        results = {}
        for name in branches:
            db_path = self.manager.branches.backing_path(name)
            if not db_path.exists():
                results[name] = [f"backing file missing: {db_path.name}"]
                continue

            conn = sqlite3.connect(str(db_path))
            try:
                rows = conn.execute("PRAGMA integrity_check").fetchall()
                results[name] = [row[0] for row in rows]
            finally:
                conn.close()

            if results[name] == ["ok"]:
                logger.info("Integrity check passed", extra={"branch": name})
            else:
                logger.warning("Integrity check failed", extra={"branch": name})
        return results


def _print(data: Any, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return

    if isinstance(data, list):
        if not data:
            print("Nothing found")
        for item in data:
            print("  " + ", ".join(f"{k}={v}" for k, v in item.items()))
    elif isinstance(data, dict):
        for key, value in data.items():
            print(f"  {key}: {value}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the doctor tool."""
    parser = argparse.ArgumentParser(description="sqlkite project maintenance tool")
    parser.add_argument("--project", "-p", default=".", help="Project directory")
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("pending", help="List interrupted operations")

    resolve_parser = subparsers.add_parser("resolve", help="Clear an interrupted-operation marker")
    resolve_parser.add_argument("operation_id", type=int, help="Marker id (see 'pending')")

    subparsers.add_parser("orphans", help="List unreferenced backing files")

    purge_parser = subparsers.add_parser("purge", help="Delete an orphaned backing file")
    purge_parser.add_argument("db_file", help="Filename in the project root")

    check_parser = subparsers.add_parser("check", help="Run PRAGMA integrity_check")
    check_parser.add_argument("--branch", "-b", action="append", help="Branch to check")
    check_parser.add_argument("--all", action="store_true", help="Check every branch")

    args = parser.parse_args(argv)

    config = WorkspaceConfig.for_project(args.project)
    setup_logging(config, verbose=args.verbose)

    manager = WorkspaceManager(config)
    exit_code = 0
    try:
        manager.open(create=False)
        tool = DoctorTool(manager)

        if args.command == "pending":
            _print(tool.pending(), args.json)

        elif args.command == "resolve":
            _print(tool.resolve(args.operation_id), args.json)

        elif args.command == "orphans":
            _print(tool.orphans(), args.json)

        elif args.command == "purge":
            _print(tool.purge(args.db_file), args.json)

        elif args.command == "check":
            if args.all:
                names = [b.name for b in manager.branches.list()]
            else:
                names = args.branch or [manager.current_branch()]
            results = tool.check(names)
            if args.json:
                _print(results, True)
            else:
                for name, messages in results.items():
                    status = "OK" if messages == ["ok"] else "FAILED"
                    print(f"[{status}] {name}")
                    if status == "FAILED":
                        for message in messages:
                            print(f"    {message}")
            if any(messages != ["ok"] for messages in results.values()):
                exit_code = 1

    except WorkspaceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        exit_code = 1
    finally:
        manager.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
