"""Shared fixtures: a fake installation, a fake release, and a test runner."""

from __future__ import annotations

import os
import tarfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest

from rollover.models import InstallationTarget
from rollover.procedure import InstallProcedure
from rollover.process import ProcessRunner
from tests.helpers import INSTALL_SCRIPT, NEW_BINARY, OLD_BINARY, tree_digest, write_executable


@dataclass
class FakeInstallation:
    home: Path
    state_dir: Path
    bin_dir: Path
    target: InstallationTarget

    def digest(self) -> dict[str, dict[str, str]]:
        return {
            "state": tree_digest(self.state_dir),
            "bin": tree_digest(self.bin_dir),
        }


@pytest.fixture
def installation(tmp_path: Path) -> FakeInstallation:
    """A production install: state dir with files, two of three binaries."""
    home = tmp_path / "home"
    state_dir = home / ".app"
    bin_dir = home / "bin"
    (state_dir / "data").mkdir(parents=True)
    (state_dir / "config.toml").write_text("version = 1\n", encoding="utf-8")
    (state_dir / "data" / "notes.txt").write_text("original notes\n", encoding="utf-8")
    write_executable(bin_dir / "app", OLD_BINARY)
    write_executable(bin_dir / "helper", "#!/bin/sh\necho helper 1.0.0\n")

    target = InstallationTarget(
        state_dir=state_dir,
        bin_dir=bin_dir,
        binary_names=frozenset({"app", "helper", "tool"}),
        primary_binary="app",
    )
    return FakeInstallation(home=home, state_dir=state_dir, bin_dir=bin_dir, target=target)


@pytest.fixture
def runner(tmp_path: Path) -> ProcessRunner:
    """A runner whose children see a throwaway HOME."""
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    path = os.environ.get("PATH", "/usr/bin:/bin")
    return ProcessRunner(base_env={"PATH": path, "HOME": str(home)})


@pytest.fixture
def procedure() -> InstallProcedure:
    return InstallProcedure(primary_binary="app", install_timeout=60, smoke_timeout=10)


@pytest.fixture
def make_release(tmp_path: Path) -> Callable[..., Path]:
    """Build an extracted release tree; returns its top-level directory."""

    def _make(
        name: str = "acme-widget-abc1234",
        *,
        install_script: str | None = INSTALL_SCRIPT,
        binary: str = NEW_BINARY,
        parent: Path | None = None,
    ) -> Path:
        root = (parent or tmp_path / "releases") / name
        write_executable(root / "dist" / "app", binary)
        write_executable(root / "dist" / "tool", "#!/bin/sh\necho tool 2.0.0\n")
        if install_script is not None:
            write_executable(root / "scripts" / "install.sh", install_script)
        return root

    return _make


@pytest.fixture
def make_tarball(tmp_path: Path) -> Callable[[Path], bytes]:
    """Pack a release tree the way a source tarball is laid out."""

    def _pack(source_dir: Path) -> bytes:
        out = tmp_path / f"{source_dir.name}.tar.gz"
        with tarfile.open(out, "w:gz") as tar:
            tar.add(source_dir, arcname=source_dir.name)
        return out.read_bytes()

    return _pack
