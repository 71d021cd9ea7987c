"""Update orchestrator: the staged, snapshot-guarded update state machine.

Lifecycle:
1. Resolve the target release
2. Download and extract it into a fresh staging workspace
3. Build and smoke-test it against staged paths only
4. Snapshot the production installation
5. Install into production
6. Verify production
7. On any failure in 5-6, restore the snapshot once and report both errors

Failures in 1-4 propagate as exceptions; production has not been touched.
Failures in 5-6 are reported through ``UpdateOutcome``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from rollover.errors import (
    InstallError,
    RollbackError,
    SnapshotNotFoundError,
    UpdateCancelledError,
    UpdateError,
    UpdateInProgressError,
    VerificationError,
)
from rollover.installer import Installer, Verifier
from rollover.lock import UpdateLock
from rollover.logging import get_logger
from rollover.models import (
    InstallationTarget,
    ReleaseDescriptor,
    Snapshot,
    UpdateOutcome,
    UpdatePhase,
)
from rollover.process import ProcessRunner
from rollover.resolver import ReleaseResolver
from rollover.rollback import RollbackEngine
from rollover.snapshot import SnapshotManager
from rollover.staging import StagingArea
from rollover.state import UpdateStateStore
from rollover.validator import StagingValidator

if TYPE_CHECKING:
    import httpx

    from rollover.config import Settings

log = get_logger("rollover.orchestrator")


def _as_rollback_error(exc: Exception) -> RollbackError:
    if isinstance(exc, RollbackError):
        return exc
    error = RollbackError("Unexpected rollback failure", detail=str(exc))
    error.__cause__ = exc
    return error


class UpdateOrchestrator:
    """Drives one update run at a time against an installation target."""

    def __init__(
        self,
        target: InstallationTarget,
        *,
        resolver: ReleaseResolver,
        staging: StagingArea,
        validator: StagingValidator,
        snapshots: SnapshotManager,
        installer: Installer,
        verifier: Verifier,
        rollback: RollbackEngine,
        install_lock: UpdateLock | None = None,
        state_store: UpdateStateStore | None = None,
        keep_staging: bool = False,
    ) -> None:
        self._target = target
        self._resolver = resolver
        self._staging = staging
        self._validator = validator
        self._snapshots = snapshots
        self._installer = installer
        self._verifier = verifier
        self._rollback = rollback
        self._install_lock = install_lock
        self._state_store = state_store
        self._keep_staging = keep_staging

        self._lock = asyncio.Lock()
        self._phase: UpdatePhase | None = None
        self._phases: list[UpdatePhase] = []
        self._started_at = ""
        self._started = 0.0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        runner: ProcessRunner | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> UpdateOrchestrator:
        runner = runner or ProcessRunner()
        target = settings.installation_target()
        procedure = settings.install_procedure()
        resolver = ReleaseResolver.from_settings(settings, client=client)
        verifier = Verifier(target, procedure, runner)
        return cls(
            target,
            resolver=resolver,
            staging=StagingArea.from_settings(settings, resolver, runner, client=client),
            validator=StagingValidator(procedure, runner),
            snapshots=SnapshotManager(target),
            installer=Installer(
                target, procedure, runner, scoped=settings.scope_production_install
            ),
            verifier=verifier,
            rollback=RollbackEngine(target, verifier),
            install_lock=UpdateLock.for_target(target),
            state_store=UpdateStateStore.for_target(target),
            keep_staging=settings.keep_staging,
        )

    # ------------------------------------------------------------------
    # Public status surface
    # ------------------------------------------------------------------

    @property
    def target(self) -> InstallationTarget:
        return self._target

    @property
    def phase(self) -> UpdatePhase | None:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def snapshots(self) -> SnapshotManager:
        return self._snapshots

    @property
    def state_store(self) -> UpdateStateStore | None:
        return self._state_store

    # ------------------------------------------------------------------
    # Primary flows
    # ------------------------------------------------------------------

    async def run(self, version: str | None = None) -> UpdateOutcome:
        """Update to *version* (latest when ``None``).

        Raises the pipeline error for failures before the snapshot, and
        ``UpdateInProgressError`` when another run holds the target.
        """
        if self._lock.locked():
            raise UpdateInProgressError("Update already in progress")

        async with self._lock:
            with self._exclusive():
                try:
                    return await self._do_run(version)
                finally:
                    self._phase = None

    async def rollback_to(self, snapshot_id: str | None = None) -> Snapshot:
        """Restore production from *snapshot_id*, or the latest snapshot."""
        if self._lock.locked():
            raise UpdateInProgressError("Update already in progress")

        async with self._lock:
            with self._exclusive():
                if snapshot_id is None:
                    snapshot = self._snapshots.latest()
                    if snapshot is None:
                        raise SnapshotNotFoundError("No snapshot available")
                else:
                    try:
                        snapshot = self._snapshots.get(snapshot_id)
                    except KeyError as exc:
                        raise SnapshotNotFoundError(
                            "Snapshot not found", detail=snapshot_id
                        ) from exc

                try:
                    await self._rollback.roll_back(snapshot)
                except RollbackError:
                    raise
                except Exception as exc:
                    raise RollbackError(
                        "Unexpected rollback failure", detail=str(exc)
                    ) from exc
                if self._state_store is not None:
                    self._state_store.record_manual_rollback(snapshot.id)
                return snapshot

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _do_run(self, version: str | None) -> UpdateOutcome:
        self._phases = []
        self._started_at = datetime.now(UTC).isoformat()
        self._started = time.monotonic()

        try:
            self._enter(UpdatePhase.RESOLVING_VERSION)
            release = await self._resolver.resolve(version)

            with self._staging.workspace(keep=self._keep_staging) as ws:
                self._enter(UpdatePhase.STAGING_DOWNLOAD)
                source = await self._staging.fetch(release, ws)

                self._enter(UpdatePhase.STAGING_VALIDATE)
                await self._validator.validate(source, ws.staged_state_dir, ws.staged_bin_dir)

                self._enter(UpdatePhase.SNAPSHOTTING)
                snapshot = await asyncio.to_thread(self._snapshots.create, release)

                return await self._apply(release, source, snapshot)
        except UpdateError as exc:
            log.error("update_aborted", phase=self._phase_name(), error=str(exc))
            raise

    async def _apply(
        self, release: ReleaseDescriptor, source: Path, snapshot: Snapshot
    ) -> UpdateOutcome:
        if self._state_store is not None:
            self._state_store.mark_attempt(release.tag)

        try:
            self._enter(UpdatePhase.INSTALLING)
            await self._installer.install(source)

            self._enter(UpdatePhase.VERIFYING)
            await self._verifier.verify()
        except asyncio.CancelledError:
            error = UpdateCancelledError(f"Update cancelled while {self._phase_name()}")
            error.phase = self._phase
            await self._recover_uncancellable(release, snapshot, error)
            raise
        except Exception as exc:
            return await self._recover(release, snapshot, self._as_update_error(exc))

        self._enter(UpdatePhase.SUCCESS)
        log.info("update_succeeded", tag=release.tag, snapshot_id=snapshot.id)
        return self._finish(UpdateOutcome.success(**self._outcome_fields(release, snapshot)))

    async def _recover(
        self, release: ReleaseDescriptor, snapshot: Snapshot, error: UpdateError
    ) -> UpdateOutcome:
        log.warning(
            "update_failed_rolling_back",
            phase=self._phase_name(),
            error=str(error),
            snapshot_id=snapshot.id,
        )
        self._enter(UpdatePhase.ROLLING_BACK)

        try:
            await self._rollback.roll_back(snapshot)
        except Exception as exc:
            rollback_error = _as_rollback_error(exc)
            self._enter(UpdatePhase.ROLLBACK_FAILED)
            log.critical(
                "rollback_failed",
                manual_recovery_required=True,
                error=str(error),
                rollback_error=str(rollback_error),
                snapshot_path=str(snapshot.path),
            )
            return self._finish(
                UpdateOutcome.rollback_failed(
                    error, rollback_error, **self._outcome_fields(release, snapshot)
                )
            )

        self._enter(UpdatePhase.ROLLED_BACK)
        log.warning("update_rolled_back", tag=release.tag, error=str(error))
        return self._finish(
            UpdateOutcome.rolled_back(error, **self._outcome_fields(release, snapshot))
        )

    async def _recover_uncancellable(
        self, release: ReleaseDescriptor, snapshot: Snapshot, error: UpdateError
    ) -> UpdateOutcome:
        """Run the rollback to completion even if the caller keeps cancelling."""
        task = asyncio.ensure_future(self._recover(release, snapshot, error))
        while not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                log.warning("rollback_not_cancellable", snapshot_id=snapshot.id)
        return task.result()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._install_lock is None:
            yield
            return
        with self._install_lock:
            yield

    def _enter(self, phase: UpdatePhase) -> None:
        self._phase = phase
        self._phases.append(phase)
        log.info("update_phase", phase=phase.value)

    def _phase_name(self) -> str:
        return self._phase.value if self._phase else "idle"

    def _as_update_error(self, exc: Exception) -> UpdateError:
        if isinstance(exc, UpdateError):
            return exc
        cls = InstallError if self._phase is UpdatePhase.INSTALLING else VerificationError
        wrapped = cls("Unexpected error", detail=str(exc))
        wrapped.__cause__ = exc
        log.exception("update_unexpected_error", phase=self._phase_name())
        return wrapped

    def _outcome_fields(
        self, release: ReleaseDescriptor, snapshot: Snapshot
    ) -> dict[str, object]:
        return {
            "release": release,
            "snapshot": snapshot,
            "phases": list(self._phases),
            "started_at": self._started_at,
        }

    def _finish(self, outcome: UpdateOutcome) -> UpdateOutcome:
        outcome.completed_at = datetime.now(UTC).isoformat()
        outcome.duration_seconds = round(time.monotonic() - self._started, 2)
        if self._state_store is not None:
            self._state_store.record_outcome(outcome)
        return outcome
