"""Tests for rollover.installer production install and verification."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from rollover.errors import InstallError, VerificationError
from rollover.installer import Installer, Verifier
from rollover.procedure import InstallProcedure
from rollover.process import CommandResult, ProcessRunner
from tests.conftest import FakeInstallation
from tests.helpers import NEW_BINARY, requires_tools, write_executable

# ---------------------------------------------------------------------------
# Installer
# ---------------------------------------------------------------------------


@requires_tools
class TestInstaller:
    @pytest.mark.asyncio
    async def test_scoped_install_writes_production(
        self,
        installation: FakeInstallation,
        runner: ProcessRunner,
        procedure: InstallProcedure,
        make_release: Callable[..., Path],
    ) -> None:
        installer = Installer(installation.target, procedure, runner)
        await installer.install(make_release())

        assert (installation.bin_dir / "tool").is_file()
        assert "2.0.0" in (installation.bin_dir / "app").read_text(encoding="utf-8")
        config = (installation.state_dir / "config.toml").read_text(encoding="utf-8")
        assert config == "version = 2\n"

    @pytest.mark.asyncio
    async def test_unscoped_install_uses_script_defaults(
        self,
        tmp_path: Path,
        installation: FakeInstallation,
        runner: ProcessRunner,
        procedure: InstallProcedure,
        make_release: Callable[..., Path],
    ) -> None:
        before = installation.digest()
        installer = Installer(installation.target, procedure, runner, scoped=False)

        await installer.install(make_release())

        # The fake script defaults to $HOME/.app and $HOME/.local/bin.
        assert (installation.home / ".local" / "bin" / "app").is_file()
        assert installation.digest()["bin"] == before["bin"]

    @pytest.mark.asyncio
    async def test_missing_script(
        self,
        installation: FakeInstallation,
        runner: ProcessRunner,
        procedure: InstallProcedure,
        make_release: Callable[..., Path],
    ) -> None:
        installer = Installer(installation.target, procedure, runner)
        with pytest.raises(InstallError, match="not found"):
            await installer.install(make_release(install_script=None))

    @pytest.mark.asyncio
    async def test_failure_leaves_partial_install(
        self,
        installation: FakeInstallation,
        runner: ProcessRunner,
        procedure: InstallProcedure,
        make_release: Callable[..., Path],
    ) -> None:
        (installation.bin_dir / ".fail-install").write_text("", encoding="utf-8")
        installer = Installer(installation.target, procedure, runner)

        with pytest.raises(InstallError, match="Installation failed") as exc_info:
            await installer.install(make_release())

        assert "exit status 4" in exc_info.value.detail
        assert "2.0.0" in (installation.bin_dir / "app").read_text(encoding="utf-8")


class TestInstallerEnvironment:
    @pytest.mark.asyncio
    async def test_scoped_passes_production_paths(
        self, installation: FakeInstallation, procedure: InstallProcedure, tmp_path: Path
    ) -> None:
        source = tmp_path / "src"
        write_executable(source / procedure.script, "#!/usr/bin/env bash\n")
        runner = AsyncMock()
        runner.run.return_value = CommandResult(argv=("bash",), returncode=0)

        await Installer(installation.target, procedure, runner).install(source)

        kwargs = runner.run.call_args.kwargs
        assert kwargs["env"] == {
            "APP_HOME": str(installation.state_dir),
            "INSTALL_DIR": str(installation.bin_dir),
        }
        assert kwargs["cwd"] == source
        assert runner.run.call_args.args[0] == [
            "bash",
            str(source / "scripts" / "install.sh"),
            "--non-interactive",
        ]

    @pytest.mark.asyncio
    async def test_unscoped_passes_no_paths(
        self, installation: FakeInstallation, procedure: InstallProcedure, tmp_path: Path
    ) -> None:
        source = tmp_path / "src"
        write_executable(source / procedure.script, "#!/usr/bin/env bash\n")
        runner = AsyncMock()
        runner.run.return_value = CommandResult(argv=("bash",), returncode=0)

        await Installer(installation.target, procedure, runner, scoped=False).install(source)

        assert runner.run.call_args.kwargs["env"] == {}


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------


@requires_tools
class TestVerifier:
    @pytest.mark.asyncio
    async def test_healthy(
        self, installation: FakeInstallation, runner: ProcessRunner, procedure: InstallProcedure
    ) -> None:
        await Verifier(installation.target, procedure, runner).verify()

    @pytest.mark.asyncio
    async def test_missing_primary(
        self, installation: FakeInstallation, runner: ProcessRunner, procedure: InstallProcedure
    ) -> None:
        (installation.bin_dir / "app").unlink()
        with pytest.raises(VerificationError, match="Primary binary not found"):
            await Verifier(installation.target, procedure, runner).verify()

    @pytest.mark.asyncio
    async def test_failing_version_check(
        self, installation: FakeInstallation, runner: ProcessRunner, procedure: InstallProcedure
    ) -> None:
        write_executable(installation.bin_dir / "app", NEW_BINARY)
        (installation.bin_dir / ".fail-verify").write_text("", encoding="utf-8")

        with pytest.raises(VerificationError, match="app failed version check") as exc_info:
            await Verifier(installation.target, procedure, runner).verify()
        assert "broken build" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_invoked_by_explicit_path(
        self,
        tmp_path: Path,
        installation: FakeInstallation,
        runner: ProcessRunner,
        procedure: InstallProcedure,
    ) -> None:
        # A different "app" earlier on PATH must not be picked up.
        decoy = tmp_path / "decoy"
        write_executable(decoy / "app", "#!/bin/sh\nexit 1\n")
        env = runner.base_env
        env["PATH"] = f"{decoy}:{env['PATH']}"

        await Verifier(installation.target, procedure, ProcessRunner(base_env=env)).verify()
