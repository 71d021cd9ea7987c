"""Apply a validated release to production and verify it."""

from __future__ import annotations

from pathlib import Path

from rollover.errors import InstallError, VerificationError
from rollover.logging import get_logger
from rollover.models import InstallationTarget
from rollover.procedure import InstallProcedure
from rollover.process import ProcessRunner

log = get_logger("rollover.installer")


class Installer:
    """Runs the install procedure against the production installation.

    A failure may leave production partially updated; the caller is
    expected to hold a snapshot.
    """

    def __init__(
        self,
        target: InstallationTarget,
        procedure: InstallProcedure,
        runner: ProcessRunner,
        *,
        scoped: bool = True,
    ) -> None:
        self._target = target
        self._procedure = procedure
        self._runner = runner
        self._scoped = scoped

    async def install(self, source_dir: Path) -> None:
        if not self._procedure.script_path(source_dir).is_file():
            raise InstallError("Install procedure not found", detail=self._procedure.script)

        log.info("install_started", source=str(source_dir), scoped=self._scoped)
        if self._scoped:
            result = await self._procedure.install(
                self._runner,
                source_dir,
                state_dir=self._target.state_dir,
                bin_dir=self._target.bin_dir,
            )
        else:
            result = await self._procedure.install(self._runner, source_dir)

        if not result.ok:
            raise InstallError("Installation failed", detail=result.failure_detail())
        log.info("install_complete")


class Verifier:
    """Smoke-tests the production primary binary."""

    def __init__(
        self, target: InstallationTarget, procedure: InstallProcedure, runner: ProcessRunner
    ) -> None:
        self._target = target
        self._procedure = procedure
        self._runner = runner

    async def verify(self) -> None:
        binary = self._target.primary_path
        if not binary.is_file():
            raise VerificationError("Primary binary not found", detail=str(binary))

        result = await self._procedure.smoke_test(
            self._runner, self._target.bin_dir, self._target.state_dir
        )
        if not result.ok:
            raise VerificationError(
                f"{self._target.primary_binary} failed version check",
                detail=result.failure_detail(),
            )
        log.info("installation_verified", version_output=result.stdout.strip()[:200])
