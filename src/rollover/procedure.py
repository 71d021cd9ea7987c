"""The release's own install procedure and the version smoke test.

Both the staging validator and the production installer run the same
procedure; they differ only in which directories are passed to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rollover.constants import DEFAULT_INSTALL_TIMEOUT, DEFAULT_SMOKE_TIMEOUT
from rollover.process import CommandResult, ProcessRunner


@dataclass(frozen=True)
class InstallProcedure:
    """How to invoke a release's installer and smoke-test its output."""

    primary_binary: str
    script: str = "scripts/install.sh"
    interpreter: str = "bash"
    args: tuple[str, ...] = ("--non-interactive",)
    state_dir_env: str = "APP_HOME"
    bin_dir_env: str = "INSTALL_DIR"
    version_args: tuple[str, ...] = ("--version",)
    install_timeout: float = DEFAULT_INSTALL_TIMEOUT
    smoke_timeout: float = DEFAULT_SMOKE_TIMEOUT

    def script_path(self, source_dir: Path) -> Path:
        return source_dir / self.script

    def install_command(self, source_dir: Path) -> list[str]:
        return [self.interpreter, str(self.script_path(source_dir)), *self.args]

    def path_overrides(self, state_dir: Path, bin_dir: Path) -> dict[str, str]:
        return {self.state_dir_env: str(state_dir), self.bin_dir_env: str(bin_dir)}

    def smoke_command(self, bin_dir: Path) -> list[str]:
        return [str(bin_dir / self.primary_binary), *self.version_args]

    async def install(
        self,
        runner: ProcessRunner,
        source_dir: Path,
        *,
        state_dir: Path | None = None,
        bin_dir: Path | None = None,
    ) -> CommandResult:
        """Run the installer from *source_dir*.

        Without *state_dir*/*bin_dir* the installer falls back to its own
        defaults.
        """
        env: dict[str, str] = {}
        if state_dir is not None and bin_dir is not None:
            env = self.path_overrides(state_dir, bin_dir)
        return await runner.run(
            self.install_command(source_dir),
            env=env,
            cwd=source_dir,
            timeout=self.install_timeout,
        )

    async def smoke_test(
        self, runner: ProcessRunner, bin_dir: Path, state_dir: Path
    ) -> CommandResult:
        return await runner.run(
            self.smoke_command(bin_dir),
            env={self.state_dir_env: str(state_dir)},
            timeout=self.smoke_timeout,
        )
