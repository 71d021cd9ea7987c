"""Error taxonomy for the update pipeline.

Every failure raised by a pipeline component is an ``UpdateError``
subclass tagged with the phase it belongs to. Errors raised before the
snapshot exists propagate to the caller unchanged; errors raised while
installing or verifying are composed into an ``UpdateOutcome`` together
with the result of the automatic rollback.
"""

from __future__ import annotations

from rollover.models import UpdatePhase


class UpdateError(Exception):
    """Base class for all update pipeline failures."""

    phase: UpdatePhase | None = None

    def __init__(self, message: str, *, detail: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message

    def to_dict(self) -> dict[str, str | None]:
        return {
            "type": type(self).__name__,
            "phase": self.phase.value if self.phase else None,
            "message": str(self),
        }


class ResolutionError(UpdateError):
    """The release service could not produce a usable release descriptor."""

    phase = UpdatePhase.RESOLVING_VERSION


class DownloadError(UpdateError):
    """The release artifact could not be fetched into the workspace."""

    phase = UpdatePhase.STAGING_DOWNLOAD


class ExtractionError(UpdateError):
    """The downloaded artifact could not be unpacked unambiguously."""

    phase = UpdatePhase.STAGING_DOWNLOAD


class StagingBuildError(UpdateError):
    """The install procedure failed against the staged paths."""

    phase = UpdatePhase.STAGING_VALIDATE


class StagingSmokeTestError(UpdateError):
    """The staged primary binary is missing or failed its version check."""

    phase = UpdatePhase.STAGING_VALIDATE


class SnapshotError(UpdateError):
    """The production installation could not be captured."""

    phase = UpdatePhase.SNAPSHOTTING


class InstallError(UpdateError):
    """The install procedure failed against production paths."""

    phase = UpdatePhase.INSTALLING


class VerificationError(UpdateError):
    """The production primary binary is missing or failed its version check."""

    phase = UpdatePhase.VERIFYING


class RollbackError(UpdateError):
    """Restoring production from a snapshot failed.

    This is the only unrecoverable class: production may be left in an
    undefined state and needs an operator.
    """

    phase = UpdatePhase.ROLLING_BACK


class SnapshotNotFoundError(UpdateError):
    """No snapshot matches a manual rollback request; nothing was touched."""


class UpdateCancelledError(UpdateError):
    """The run was cancelled after production had already been touched."""


class UpdateInProgressError(UpdateError):
    """Another update run already holds the installation."""
