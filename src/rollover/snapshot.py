"""Point-in-time snapshots of the production installation.

Layout::

    <state_dir>/snapshots/pre_update_<YYYYmmdd_HHMMSS>/
        manifest.json
        state_backup/        copy of <state_dir> minus its snapshots/ subtree
        bin_backup/<name>    each named binary present at snapshot time

Snapshots are append-only; nothing here deletes a completed snapshot.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from rollover.constants import (
    BIN_BACKUP_DIRNAME,
    SNAPSHOT_PREFIX,
    SNAPSHOT_TIMESTAMP_FORMAT,
    SNAPSHOTS_DIRNAME,
    STATE_BACKUP_DIRNAME,
)
from rollover.errors import SnapshotError
from rollover.logging import get_logger
from rollover.models import InstallationTarget, ReleaseDescriptor, Snapshot

log = get_logger("rollover.snapshot")


def copy_state_tree(src: Path, dst: Path) -> None:
    """Copy *src* to *dst*, leaving out the top-level snapshots directory.

    *dst* must not exist. Symlinks are copied as links.
    """

    def _ignore(directory: str, names: list[str]) -> set[str]:
        if Path(directory) == src and SNAPSHOTS_DIRNAME in names:
            return {SNAPSHOTS_DIRNAME}
        return set()

    shutil.copytree(src, dst, symlinks=True, ignore=_ignore)


class SnapshotManager:
    """Creates and looks up snapshots for one installation target."""

    def __init__(
        self,
        target: InstallationTarget,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._target = target
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def root(self) -> Path:
        return self._target.snapshots_dir

    def create(self, release: ReleaseDescriptor | None = None) -> Snapshot:
        """Capture the state directory and every present named binary.

        Raises ``SnapshotError`` on I/O failure; a partially written
        snapshot is removed before raising.
        """
        now = self._clock()
        state_present = self._target.state_dir.is_dir()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path = self._reserve(now)
        except OSError as exc:
            raise SnapshotError("Failed to create snapshot directory", detail=str(exc)) from exc

        try:
            snapshot = self._capture(path, now, release, state_present)
        except OSError as exc:
            shutil.rmtree(path, ignore_errors=True)
            raise SnapshotError("Failed to snapshot installation", detail=str(exc)) from exc

        log.info(
            "snapshot_created",
            snapshot_id=snapshot.id,
            path=str(snapshot.path),
            binaries=list(snapshot.binaries),
            state_present=snapshot.state_present,
        )
        return snapshot

    def list_snapshots(self) -> list[Snapshot]:
        """All snapshots, oldest first."""
        if not self.root.is_dir():
            return []
        paths = sorted(
            p for p in self.root.iterdir() if p.is_dir() and p.name.startswith(SNAPSHOT_PREFIX)
        )
        return [Snapshot.load(p) for p in paths]

    def latest(self) -> Snapshot | None:
        snapshots = self.list_snapshots()
        return snapshots[-1] if snapshots else None

    def get(self, snapshot_id: str) -> Snapshot:
        path = self.root / snapshot_id
        if (
            os.sep in snapshot_id
            or not snapshot_id.startswith(SNAPSHOT_PREFIX)
            or not path.is_dir()
        ):
            raise KeyError(snapshot_id)
        return Snapshot.load(path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reserve(self, now: datetime) -> Path:
        base = f"{SNAPSHOT_PREFIX}{now.strftime(SNAPSHOT_TIMESTAMP_FORMAT)}"
        candidate = self.root / base
        counter = 1
        while True:
            try:
                candidate.mkdir()
                return candidate
            except FileExistsError:
                candidate = self.root / f"{base}_{counter}"
                counter += 1

    def _capture(
        self,
        path: Path,
        now: datetime,
        release: ReleaseDescriptor | None,
        state_present: bool,
    ) -> Snapshot:
        state_dir = self._target.state_dir
        state_backup = path / STATE_BACKUP_DIRNAME
        if state_present:
            copy_state_tree(state_dir, state_backup)
        else:
            state_backup.mkdir()

        bin_backup = path / BIN_BACKUP_DIRNAME
        bin_backup.mkdir()
        backed_up: list[str] = []
        for name in sorted(self._target.binary_names):
            src = self._target.binary_path(name)
            if not src.is_file():
                log.debug("snapshot_binary_absent", binary=name)
                continue
            shutil.copy2(src, bin_backup / name)
            backed_up.append(name)

        snapshot = Snapshot(
            id=path.name,
            path=path,
            created_at=now.isoformat(),
            release_tag=release.tag if release else None,
            state_present=state_present,
            binaries=tuple(backed_up),
        )
        snapshot.write_manifest()
        return snapshot
