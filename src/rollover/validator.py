"""Build and smoke-test a release inside the staging workspace."""

from __future__ import annotations

from pathlib import Path

from rollover.errors import StagingBuildError, StagingSmokeTestError
from rollover.logging import get_logger
from rollover.procedure import InstallProcedure
from rollover.process import ProcessRunner

log = get_logger("rollover.validator")


class StagingValidator:
    """Runs the release's installer against staged paths only."""

    def __init__(self, procedure: InstallProcedure, runner: ProcessRunner) -> None:
        self._procedure = procedure
        self._runner = runner

    async def validate(
        self, source_dir: Path, staged_state_dir: Path, staged_bin_dir: Path
    ) -> None:
        script = self._procedure.script_path(source_dir)
        if not script.is_file():
            raise StagingBuildError(
                "Install procedure not found in release", detail=self._procedure.script
            )

        log.info("staging_build_started", source=str(source_dir))
        result = await self._procedure.install(
            self._runner, source_dir, state_dir=staged_state_dir, bin_dir=staged_bin_dir
        )
        if not result.ok:
            raise StagingBuildError("Staging installation failed", detail=result.failure_detail())

        binary = staged_bin_dir / self._procedure.primary_binary
        if not binary.is_file():
            raise StagingSmokeTestError(
                "Primary binary not found in staging installation", detail=str(binary)
            )

        result = await self._procedure.smoke_test(self._runner, staged_bin_dir, staged_state_dir)
        if not result.ok:
            raise StagingSmokeTestError(
                "Staged binary failed version check", detail=result.failure_detail()
            )

        log.info("staging_validated", version_output=result.stdout.strip()[:200])
