"""Staging workspace: download and unpack a release in isolation.

Everything here writes inside the workspace only. The workspace is
removed when the ``workspace()`` block exits unless it was retained.
"""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from rollover.constants import DEFAULT_EXTRACT_TIMEOUT, DOWNLOAD_CHUNK_SIZE
from rollover.errors import DownloadError, ExtractionError
from rollover.http import client_session
from rollover.logging import get_logger
from rollover.models import ReleaseDescriptor, StagingWorkspace
from rollover.process import ProcessRunner

if TYPE_CHECKING:
    from rollover.config import Settings
    from rollover.resolver import ReleaseResolver

log = get_logger("rollover.staging")


class StagingArea:
    """Creates workspaces and fills them with an extracted release."""

    def __init__(
        self,
        resolver: ReleaseResolver,
        runner: ProcessRunner,
        *,
        marker: str,
        parent: Path | None = None,
        tar_executable: str = "tar",
        extract_timeout: float = DEFAULT_EXTRACT_TIMEOUT,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._resolver = resolver
        self._runner = runner
        self._marker = marker
        self._parent = parent
        self._tar = tar_executable
        self._extract_timeout = extract_timeout
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        resolver: ReleaseResolver,
        runner: ProcessRunner,
        client: httpx.AsyncClient | None = None,
    ) -> StagingArea:
        return cls(
            resolver,
            runner,
            marker=settings.extracted_dir_marker,
            parent=settings.staging_parent,
            tar_executable=settings.tar_executable,
            extract_timeout=settings.extract_timeout,
            timeout=settings.http_timeout,
            client=client,
        )

    # ------------------------------------------------------------------
    # Workspace lifecycle
    # ------------------------------------------------------------------

    @contextmanager
    def workspace(self, keep: bool = False) -> Iterator[StagingWorkspace]:
        """Create a fresh workspace and remove it when the block exits."""
        if self._parent is not None:
            self._parent.mkdir(parents=True, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix="rollover-staging-", dir=self._parent))
        ws = StagingWorkspace.under(root)
        for directory in (ws.download_dir, ws.extract_dir, ws.staged_state_dir, ws.staged_bin_dir):
            directory.mkdir(parents=True)
        if keep:
            ws.retain()
        log.info("staging_workspace_created", root=str(root))

        try:
            yield ws
        finally:
            if ws.retained:
                log.info("staging_workspace_retained", root=str(root))
            else:
                shutil.rmtree(root, ignore_errors=True)
                log.debug("staging_workspace_removed", root=str(root))

    # ------------------------------------------------------------------
    # Download + extract
    # ------------------------------------------------------------------

    async def fetch(self, release: ReleaseDescriptor, ws: StagingWorkspace) -> Path:
        """Download and extract *release* into *ws*; returns the source dir."""
        if not release.artifact_url:
            release = await self._resolver.resolve(release.tag)
        archive = await self.download(release, ws.archive_path)
        source = await self.extract(archive, ws.extract_dir)
        ws.extracted_source = source
        return source

    async def download(self, release: ReleaseDescriptor, destination: Path) -> Path:
        """Stream the release artifact to *destination*."""
        log.info("staging_download_started", tag=release.tag, url=release.artifact_url)
        size = 0
        try:
            async with client_session(self._client, self._timeout) as client:
                async with client.stream(
                    "GET",
                    release.artifact_url,
                    headers=self._resolver.headers,
                    follow_redirects=True,
                ) as resp:
                    if not resp.is_success:
                        raise DownloadError(
                            f"Failed to download {release.tag}",
                            detail=f"HTTP {resp.status_code}",
                        )
                    with destination.open("wb") as fh:
                        async for chunk in resp.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            fh.write(chunk)
                            size += len(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download {release.tag}", detail=str(exc)) from exc
        except OSError as exc:
            raise DownloadError(
                f"Failed to write {release.tag} to the workspace", detail=str(exc)
            ) from exc

        if size == 0:
            raise DownloadError(f"Failed to download {release.tag}", detail="empty artifact")
        log.info("staging_download_complete", tag=release.tag, bytes=size)
        return destination

    async def extract(self, archive: Path, destination: Path) -> Path:
        """Unpack *archive* into *destination* and locate the source dir."""
        result = await self._runner.run(
            [self._tar, "-xzf", archive, "-C", destination],
            timeout=self._extract_timeout,
        )
        if not result.ok:
            raise ExtractionError(
                "Failed to extract release archive", detail=result.failure_detail()
            )

        source = self.find_source_dir(destination)
        log.info("staging_extracted", source=str(source))
        return source

    def find_source_dir(self, extract_dir: Path) -> Path:
        """Return the single top-level directory matching the marker.

        Zero or several candidates is an ``ExtractionError``.
        """
        marker = self._marker.lower()
        candidates = sorted(
            p for p in extract_dir.iterdir() if p.is_dir() and marker in p.name.lower()
        )
        if not candidates:
            raise ExtractionError(
                "No extracted source directory found",
                detail=f"expected one directory containing '{self._marker}'",
            )
        if len(candidates) > 1:
            names = ", ".join(p.name for p in candidates)
            raise ExtractionError(
                "Extracted source directory is ambiguous",
                detail=f"{len(candidates)} candidates: {names}",
            )
        return candidates[0]
