"""Tests for rollover.state runtime record."""

from __future__ import annotations

import json
from pathlib import Path

from rollover.errors import InstallError
from rollover.models import ReleaseDescriptor, Snapshot, UpdateOutcome
from rollover.state import UpdateStateStore
from tests.conftest import FakeInstallation

RELEASE = ReleaseDescriptor(tag="v2.0.0", artifact_url="https://example.test/t.tar.gz")


def _snapshot(tmp_path: Path) -> Snapshot:
    return Snapshot(id="pre_update_20260101_000000", path=tmp_path, created_at="")


class TestUpdateStateStore:
    def test_defaults_when_missing(self, tmp_path: Path) -> None:
        store = UpdateStateStore(tmp_path / "state.json")
        assert store.last_attempted_tag is None
        assert store.last_good_tag is None
        assert store.last_outcome is None
        assert not store.path.exists()

    def test_for_target_lives_under_snapshots(self, installation: FakeInstallation) -> None:
        store = UpdateStateStore.for_target(installation.target)
        assert store.path == installation.target.snapshots_dir / "updater-state.json"

    def test_mark_attempt_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        UpdateStateStore(path).mark_attempt("v2.0.0")

        reloaded = UpdateStateStore(path)
        assert reloaded.last_attempted_tag == "v2.0.0"
        assert reloaded.snapshot()["last_attempted_at"]

    def test_record_success(self, tmp_path: Path) -> None:
        store = UpdateStateStore(tmp_path / "state.json")
        store.record_outcome(UpdateOutcome.success(release=RELEASE, snapshot=_snapshot(tmp_path)))

        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert data["last_outcome"] == "success"
        assert data["last_good_tag"] == "v2.0.0"
        assert data["last_snapshot"] == "pre_update_20260101_000000"
        assert data["last_error"] is None

    def test_record_rolled_back_keeps_last_good(self, tmp_path: Path) -> None:
        store = UpdateStateStore(tmp_path / "state.json")
        store.record_outcome(UpdateOutcome.success(release=RELEASE))
        store.record_outcome(
            UpdateOutcome.rolled_back(
                InstallError("Installation failed"),
                release=ReleaseDescriptor(tag="v3.0.0", artifact_url="u"),
            )
        )

        assert store.last_outcome == "rolled_back"
        assert store.last_good_tag == "v2.0.0"
        assert "Installation failed" in store.snapshot()["last_error"]

    def test_record_manual_rollback(self, tmp_path: Path) -> None:
        store = UpdateStateStore(tmp_path / "state.json")
        store.record_manual_rollback("pre_update_20260101_000000")
        assert UpdateStateStore(store.path).snapshot()["last_manual_rollback"] == (
            "pre_update_20260101_000000"
        )

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{broken", encoding="utf-8")
        assert UpdateStateStore(path).last_outcome is None

    def test_non_object_file_falls_back_to_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert UpdateStateStore(path).snapshot()["last_good_tag"] is None

    def test_save_failure_is_not_fatal(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("", encoding="utf-8")
        store = UpdateStateStore(blocker / "state.json")
        store.mark_attempt("v2.0.0")
        assert store.last_attempted_tag == "v2.0.0"
