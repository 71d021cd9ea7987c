"""Restore production from a snapshot.

The snapshots subtree of the state directory is never removed during a
restore: it holds the very snapshot being restored, plus the runtime
state record. Everything else in the state directory is replaced
wholesale by the snapshot's ``state_backup``.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

from rollover.constants import SNAPSHOTS_DIRNAME
from rollover.errors import RollbackError, VerificationError
from rollover.installer import Verifier
from rollover.logging import get_logger
from rollover.models import InstallationTarget, Snapshot

log = get_logger("rollover.rollback")


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class RollbackEngine:
    """Restores state and binaries, then verifies the result."""

    def __init__(self, target: InstallationTarget, verifier: Verifier) -> None:
        self._target = target
        self._verifier = verifier

    async def roll_back(self, snapshot: Snapshot) -> None:
        """Restore *snapshot* and verify; raises ``RollbackError`` on failure."""
        log.info("rollback_started", snapshot_id=snapshot.id)
        await asyncio.to_thread(self.restore, snapshot)

        try:
            await self._verifier.verify()
        except VerificationError as exc:
            raise RollbackError("Post-rollback verification failed", detail=str(exc)) from exc

        log.info("rollback_complete", snapshot_id=snapshot.id)

    def restore(self, snapshot: Snapshot) -> list[str]:
        """Filesystem part of the rollback. Returns the restored binaries."""
        if not snapshot.path.is_dir():
            raise RollbackError("Snapshot not found", detail=str(snapshot.path))

        if snapshot.state_backup.is_dir():
            try:
                self._restore_state(snapshot.state_backup)
            except OSError as exc:
                raise RollbackError("Failed to restore state directory", detail=str(exc)) from exc
            log.info("rollback_state_restored", state_dir=str(self._target.state_dir))

        restored: list[str] = []
        if snapshot.bin_backup.is_dir():
            for backup in sorted(snapshot.bin_backup.iterdir()):
                self._restore_binary(backup)
                restored.append(backup.name)
        return restored

    def _restore_state(self, state_backup: Path) -> None:
        state_dir = self._target.state_dir
        state_dir.mkdir(parents=True, exist_ok=True)

        for entry in state_dir.iterdir():
            if entry.name == SNAPSHOTS_DIRNAME:
                continue
            _remove(entry)

        for entry in state_backup.iterdir():
            if entry.name == SNAPSHOTS_DIRNAME:
                continue
            dst = state_dir / entry.name
            if entry.is_dir() and not entry.is_symlink():
                shutil.copytree(entry, dst, symlinks=True)
            else:
                shutil.copy2(entry, dst, follow_symlinks=False)

    def _restore_binary(self, backup: Path) -> None:
        dst = self._target.binary_path(backup.name)
        try:
            self._target.bin_dir.mkdir(parents=True, exist_ok=True)
            if dst.exists() or dst.is_symlink():
                _remove(dst)
            shutil.copy2(backup, dst)
        except OSError as exc:
            raise RollbackError(f"Failed to restore {backup.name}", detail=str(exc)) from exc
        log.info("rollback_binary_restored", binary=backup.name)
