"""Subprocess invocation for the update pipeline.

All external programs (archive tool, install procedure, smoke tests) are
launched through ``ProcessRunner``. Paths are handed to children through
explicit per-call environment overrides; the parent's ``os.environ`` is
read once at construction and never modified.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from rollover.constants import STDERR_TAIL_CHARS
from rollover.logging import get_logger

log = get_logger("rollover.process")


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished (or failed to start) child process."""

    argv: tuple[str, ...]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def failure_detail(self) -> str:
        """Short description of why the command did not succeed."""
        if self.timed_out:
            return "timed out"
        tail = (self.stderr or self.stdout).strip()[-STDERR_TAIL_CHARS:]
        if self.returncode is None:
            return tail or "could not be started"
        if tail:
            return f"exit status {self.returncode}: {tail}"
        return f"exit status {self.returncode}"


class ProcessRunner:
    """Runs argument-list commands with explicit environment overrides."""

    def __init__(self, base_env: Mapping[str, str] | None = None) -> None:
        self._base_env = dict(os.environ if base_env is None else base_env)

    @property
    def base_env(self) -> dict[str, str]:
        return dict(self._base_env)

    def environment(self, overrides: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(self._base_env)
        if overrides:
            env.update(overrides)
        return env

    async def run(
        self,
        argv: Sequence[str | Path],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and collect its output.

        Start-up failures and timeouts are reported through the result;
        cancellation kills the child and propagates.
        """
        args = tuple(str(a) for a in argv)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.environment(env),
                cwd=str(cwd) if cwd is not None else None,
            )
        except OSError as exc:
            log.warning("process_start_failed", argv=args, error=str(exc))
            return CommandResult(argv=args, returncode=None, stderr=str(exc))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            await _terminate(proc)
            log.warning("process_timeout", argv=args, timeout=timeout)
            return CommandResult(argv=args, returncode=None, timed_out=True)
        except asyncio.CancelledError:
            await _terminate(proc)
            raise

        result = CommandResult(
            argv=args,
            returncode=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if not result.ok:
            log.warning(
                "process_failed",
                argv=args,
                returncode=proc.returncode,
                stderr=result.stderr[-STDERR_TAIL_CHARS:],
            )
        return result


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
