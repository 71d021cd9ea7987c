"""Persistent runtime record of update attempts.

Stored inside the snapshots subtree, which rollbacks preserve, so the
record of a rolled back attempt survives the rollback itself.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rollover.constants import RUNTIME_STATE_FILENAME
from rollover.logging import get_logger
from rollover.models import InstallationTarget, UpdateOutcome

log = get_logger("rollover.state")


class UpdateStateStore:
    """Load and save the JSON runtime record."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._data = self._load()

    @classmethod
    def for_target(cls, target: InstallationTarget) -> UpdateStateStore:
        return cls(target.snapshots_dir / RUNTIME_STATE_FILENAME)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def last_attempted_tag(self) -> str | None:
        value = self._data.get("last_attempted_tag")
        return str(value) if value else None

    @property
    def last_good_tag(self) -> str | None:
        value = self._data.get("last_good_tag")
        return str(value) if value else None

    @property
    def last_outcome(self) -> str | None:
        value = self._data.get("last_outcome")
        return str(value) if value else None

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)

    def mark_attempt(self, tag: str) -> None:
        self._data["last_attempted_tag"] = tag
        self._data["last_attempted_at"] = _now_iso()
        self._save()

    def record_outcome(self, outcome: UpdateOutcome) -> None:
        now = _now_iso()
        self._data["last_outcome"] = outcome.status.value
        self._data["last_snapshot"] = outcome.snapshot.id if outcome.snapshot else None
        if outcome.succeeded:
            self._data["last_good_tag"] = outcome.release.tag if outcome.release else None
            self._data["last_success_at"] = now
            self._data["last_error"] = None
        else:
            self._data["last_failure_at"] = now
            self._data["last_error"] = outcome.describe()
        self._save()

    def record_manual_rollback(self, snapshot_id: str) -> None:
        self._data["last_manual_rollback"] = snapshot_id
        self._data["last_manual_rollback_at"] = _now_iso()
        self._save()

    @staticmethod
    def _default_state() -> dict[str, Any]:
        return {
            "last_attempted_tag": None,
            "last_attempted_at": None,
            "last_good_tag": None,
            "last_outcome": None,
            "last_snapshot": None,
            "last_error": None,
            "last_success_at": None,
            "last_failure_at": None,
        }

    def _load(self) -> dict[str, Any]:
        default = self._default_state()
        if not self._path.exists():
            return default
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            log.warning("update_state_load_failed", path=str(self._path))
            return default
        if not isinstance(data, dict):
            return default
        return {**default, **data}

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            log.exception("update_state_save_failed", path=str(self._path))


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()
