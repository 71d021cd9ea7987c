"""Command-line entry point for rollover."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from pydantic import ValidationError

from rollover import __version__
from rollover.config import get_settings
from rollover.errors import RollbackError, UpdateError, UpdateInProgressError
from rollover.logging import get_logger, setup_logging
from rollover.orchestrator import UpdateOrchestrator
from rollover.resolver import ReleaseResolver

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MANUAL_RECOVERY = 2
EXIT_BUSY = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rollover", description="Staged self-update with automatic rollback."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    update = sub.add_parser("update", help="Update to the latest or a given release")
    update.add_argument("--to", dest="target_version", default=None, help="Release tag")
    update.add_argument(
        "--keep-staging", action="store_true", help="Keep the staging workspace for inspection"
    )

    check = sub.add_parser("check", help="Report whether a newer release exists")
    check.add_argument("current", help="Currently installed version")

    sub.add_parser("snapshots", help="List snapshots")

    rollback = sub.add_parser("rollback", help="Restore a snapshot")
    rollback.add_argument("--snapshot", default=None, help="Snapshot id (default: latest)")

    sub.add_parser("status", help="Show the last recorded update attempt")
    return parser


async def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command, and return the process exit code."""
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"Invalid configuration:\n{exc}", file=sys.stderr)
        return EXIT_FAILED

    setup_logging()
    log = get_logger("rollover.main")

    if getattr(args, "keep_staging", False):
        settings = settings.model_copy(update={"keep_staging": True})
    orchestrator = UpdateOrchestrator.from_settings(settings)

    try:
        if args.command == "update":
            outcome = await orchestrator.run(args.target_version)
            print(outcome.describe())
            if outcome.requires_manual_recovery:
                print(f"Snapshot kept at: {outcome.snapshot.path if outcome.snapshot else '?'}")
                return EXIT_MANUAL_RECOVERY
            return EXIT_OK if outcome.succeeded else EXIT_FAILED

        if args.command == "check":
            release = await ReleaseResolver.from_settings(settings).check_for_update(args.current)
            print(f"Update available: {release.tag}" if release else "Up to date")
            return EXIT_OK

        if args.command == "snapshots":
            for snapshot in orchestrator.snapshots.list_snapshots():
                binaries = ", ".join(snapshot.binaries) or "-"
                print(f"{snapshot.id}\t{snapshot.release_tag or '-'}\t{binaries}")
            return EXIT_OK

        if args.command == "rollback":
            snapshot = await orchestrator.rollback_to(args.snapshot)
            print(f"Restored snapshot {snapshot.id}")
            return EXIT_OK

        store = orchestrator.state_store
        print(json.dumps(store.snapshot() if store else {}, indent=2, sort_keys=True))
        return EXIT_OK

    except UpdateInProgressError as exc:
        log.warning("update_busy", error=str(exc))
        print(str(exc), file=sys.stderr)
        return EXIT_BUSY
    except RollbackError as exc:
        print(f"Rollback failed: {exc}", file=sys.stderr)
        return EXIT_MANUAL_RECOVERY
    except UpdateError as exc:
        print(f"Update failed: {exc}", file=sys.stderr)
        return EXIT_FAILED


def run() -> None:
    """Run the application."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
