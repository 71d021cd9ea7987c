"""Advisory inter-process lock for an installation target.

The lock file sits next to the state directory rather than inside it,
so that restoring the state directory never replaces a held lock.
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from types import TracebackType

from rollover.errors import UpdateInProgressError
from rollover.logging import get_logger
from rollover.models import InstallationTarget

log = get_logger("rollover.lock")


class UpdateLock:
    """Non-blocking ``flock`` on a lock file."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fd: int | None = None

    @classmethod
    def for_target(cls, target: InstallationTarget) -> UpdateLock:
        state_dir = target.state_dir
        return cls(state_dir.parent / f".{state_dir.name.lstrip('.')}.update.lock")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            raise UpdateInProgressError("Update lock already held by this process")

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            os.close(fd)
            raise UpdateInProgressError(
                "Another update is already in progress", detail=str(self._path)
            ) from exc

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        log.debug("update_lock_acquired", path=str(self._path))

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        log.debug("update_lock_released", path=str(self._path))

    def __enter__(self) -> UpdateLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
