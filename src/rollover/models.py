"""Data models for the update pipeline.

Plain dataclasses with ``to_dict``/``from_*`` helpers for serialisation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rollover.constants import (
    ARCHIVE_FILENAME,
    BIN_BACKUP_DIRNAME,
    SNAPSHOT_MANIFEST,
    SNAPSHOTS_DIRNAME,
    STATE_BACKUP_DIRNAME,
)

if TYPE_CHECKING:
    from rollover.errors import RollbackError, UpdateError


class UpdatePhase(Enum):
    """Phases of a single update run, in order."""

    RESOLVING_VERSION = "resolving_version"
    STAGING_DOWNLOAD = "staging_download"
    STAGING_VALIDATE = "staging_validate"
    SNAPSHOTTING = "snapshotting"
    INSTALLING = "installing"
    VERIFYING = "verifying"
    ROLLING_BACK = "rolling_back"
    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class OutcomeStatus(Enum):
    """Terminal result of an update run that reached the snapshot."""

    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


# ------------------------------------------------------------------
# Release
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ReleaseDescriptor:
    """A concrete, downloadable release."""

    tag: str
    artifact_url: str

    @classmethod
    def from_api(cls, payload: Any) -> ReleaseDescriptor:
        """Build from a ``{tag_name, tarball_url}`` release payload.

        Raises ``ValueError`` when the payload does not have that shape.
        """
        if not isinstance(payload, dict):
            raise ValueError("release payload is not an object")
        tag = payload.get("tag_name")
        url = payload.get("tarball_url")
        if not isinstance(tag, str) or not tag:
            raise ValueError("release payload has no tag_name")
        if not isinstance(url, str) or not url:
            raise ValueError("release payload has no tarball_url")
        return cls(tag=tag, artifact_url=url)

    def to_dict(self) -> dict[str, str]:
        return {"tag": self.tag, "artifact_url": self.artifact_url}


# ------------------------------------------------------------------
# Installation
# ------------------------------------------------------------------


@dataclass(frozen=True)
class InstallationTarget:
    """The fixed identity of the current production installation."""

    state_dir: Path
    bin_dir: Path
    binary_names: frozenset[str]
    primary_binary: str

    def __post_init__(self) -> None:
        if not self.primary_binary:
            raise ValueError("primary_binary must not be empty")
        if self.primary_binary not in self.binary_names:
            object.__setattr__(
                self, "binary_names", frozenset({*self.binary_names, self.primary_binary})
            )

    @property
    def snapshots_dir(self) -> Path:
        return self.state_dir / SNAPSHOTS_DIRNAME

    @property
    def primary_path(self) -> Path:
        return self.binary_path(self.primary_binary)

    def binary_path(self, name: str) -> Path:
        return self.bin_dir / name


@dataclass
class StagingWorkspace:
    """An isolated directory tree owned by one update run."""

    root: Path
    staged_state_dir: Path
    staged_bin_dir: Path
    extracted_source: Path | None = None
    retained: bool = False

    @classmethod
    def under(cls, root: Path) -> StagingWorkspace:
        return cls(root=root, staged_state_dir=root / "state", staged_bin_dir=root / "bin")

    @property
    def download_dir(self) -> Path:
        return self.root / "download"

    @property
    def archive_path(self) -> Path:
        return self.download_dir / ARCHIVE_FILENAME

    @property
    def extract_dir(self) -> Path:
        return self.root / "extract"

    def retain(self) -> None:
        """Transfer ownership to the caller; the directory is kept on exit."""
        self.retained = True


@dataclass(frozen=True)
class Snapshot:
    """A point-in-time copy of the production installation."""

    id: str
    path: Path
    created_at: str
    release_tag: str | None = None
    state_present: bool = True
    binaries: tuple[str, ...] = ()

    @property
    def state_backup(self) -> Path:
        return self.path / STATE_BACKUP_DIRNAME

    @property
    def bin_backup(self) -> Path:
        return self.path / BIN_BACKUP_DIRNAME

    @property
    def manifest_path(self) -> Path:
        return self.path / SNAPSHOT_MANIFEST

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": str(self.path),
            "created_at": self.created_at,
            "release_tag": self.release_tag,
            "state_present": self.state_present,
            "binaries": list(self.binaries),
        }

    def write_manifest(self) -> None:
        manifest = {k: v for k, v in self.to_dict().items() if k != "path"}
        self.manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Snapshot:
        """Load a snapshot from its directory.

        Falls back to the directory contents when the manifest is missing.
        """
        manifest_path = path / SNAPSHOT_MANIFEST
        data: dict[str, Any] = {}
        if manifest_path.is_file():
            try:
                loaded = json.loads(manifest_path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    data = loaded
            except (OSError, ValueError):
                data = {}

        bin_backup = path / BIN_BACKUP_DIRNAME
        binaries = data.get("binaries")
        if not isinstance(binaries, list):
            binaries = sorted(p.name for p in bin_backup.iterdir()) if bin_backup.is_dir() else []

        return cls(
            id=str(data.get("id") or path.name),
            path=path,
            created_at=str(data.get("created_at") or ""),
            release_tag=data.get("release_tag"),
            state_present=bool(data.get("state_present", True)),
            binaries=tuple(str(b) for b in binaries),
        )


# ------------------------------------------------------------------
# Outcome
# ------------------------------------------------------------------


@dataclass
class UpdateOutcome:
    """Terminal result of an update run that got past the snapshot.

    ``SUCCESS`` carries no error, ``ROLLED_BACK`` carries the error that
    triggered the rollback, and ``ROLLBACK_FAILED`` carries that error plus
    the rollback's own error.
    """

    status: OutcomeStatus
    release: ReleaseDescriptor | None = None
    snapshot: Snapshot | None = None
    original_error: UpdateError | None = None
    rollback_error: RollbackError | None = None
    phases: list[UpdatePhase] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None
    duration_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.status is OutcomeStatus.SUCCESS:
            if self.original_error is not None or self.rollback_error is not None:
                raise ValueError("a successful outcome carries no errors")
        elif self.status is OutcomeStatus.ROLLED_BACK:
            if self.original_error is None or self.rollback_error is not None:
                raise ValueError("a rolled back outcome carries only the original error")
        elif self.original_error is None or self.rollback_error is None:
            raise ValueError("a failed rollback carries both errors")

    @classmethod
    def success(cls, **kwargs: Any) -> UpdateOutcome:
        return cls(status=OutcomeStatus.SUCCESS, **kwargs)

    @classmethod
    def rolled_back(cls, original_error: UpdateError, **kwargs: Any) -> UpdateOutcome:
        return cls(status=OutcomeStatus.ROLLED_BACK, original_error=original_error, **kwargs)

    @classmethod
    def rollback_failed(
        cls,
        original_error: UpdateError,
        rollback_error: RollbackError,
        **kwargs: Any,
    ) -> UpdateOutcome:
        return cls(
            status=OutcomeStatus.ROLLBACK_FAILED,
            original_error=original_error,
            rollback_error=rollback_error,
            **kwargs,
        )

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def requires_manual_recovery(self) -> bool:
        return self.status is OutcomeStatus.ROLLBACK_FAILED

    def describe(self) -> str:
        """Human-readable summary distinguishing the three outcomes."""
        tag = self.release.tag if self.release else "unknown release"
        if self.status is OutcomeStatus.SUCCESS:
            return f"Update to {tag} completed successfully"
        if self.status is OutcomeStatus.ROLLED_BACK:
            return f"Update to {tag} failed and was rolled back: {self.original_error}"
        return (
            f"Update to {tag} failed: {self.original_error}. "
            f"Rollback also failed: {self.rollback_error}. Manual recovery required."
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "release": self.release.to_dict() if self.release else None,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "original_error": self.original_error.to_dict() if self.original_error else None,
            "rollback_error": self.rollback_error.to_dict() if self.rollback_error else None,
            "requires_manual_recovery": self.requires_manual_recovery,
            "phases": [p.value for p in self.phases],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": self.duration_seconds,
        }
