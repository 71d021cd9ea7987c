"""Release resolution against the release metadata service.

Turns a user-supplied version (or nothing, meaning "latest") into a
``ReleaseDescriptor``. Read-only: no staging or production side effects.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, NamedTuple
from urllib.parse import quote

import httpx

from rollover.constants import DEFAULT_USER_AGENT, GITHUB_API_URL, LATEST
from rollover.errors import ResolutionError
from rollover.http import build_headers, client_session
from rollover.logging import get_logger
from rollover.models import ReleaseDescriptor

if TYPE_CHECKING:
    from rollover.config import Settings

log = get_logger("rollover.resolver")

_VERSION_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


class ReleaseVersion(NamedTuple):
    """A release tag parsed as semantic version; build metadata is dropped."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    def precedence(self) -> tuple:
        """Sort key: a release outranks its pre-releases, whose identifiers
        compare numerically when numeric and lexically otherwise."""
        if not self.prerelease:
            return (self.major, self.minor, self.patch, 1, ())
        idents = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part) for part in self.prerelease
        )
        return (self.major, self.minor, self.patch, 0, idents)


def parse_version(tag: str) -> ReleaseVersion | None:
    """Parse ``v1.2.3``, ``1.2.3-rc.1`` or ``1.2.3+build.7``; None if not semver."""
    match = _VERSION_RE.match(tag.strip())
    if match is None:
        return None
    pre = match.group("pre")
    return ReleaseVersion(
        int(match.group("major")),
        int(match.group("minor")),
        int(match.group("patch")),
        tuple(pre.split(".")) if pre else (),
    )


def is_newer(candidate: str, current: str) -> bool:
    """True when *candidate* has higher precedence than *current*.

    Tags that do not parse are never newer.
    """
    new, old = parse_version(candidate), parse_version(current)
    if new is None or old is None:
        return False
    return new.precedence() > old.precedence()


class ReleaseResolver:
    """Resolves version strings to downloadable releases."""

    def __init__(
        self,
        repo: str,
        *,
        api_url: str = GITHUB_API_URL,
        token: str | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._repo = repo
        self._api_url = api_url.rstrip("/")
        self._token = token
        self._user_agent = user_agent
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.AsyncClient | None = None
    ) -> ReleaseResolver:
        return cls(
            settings.release_repo,
            api_url=settings.github_api_url,
            token=settings.github_token.get_secret_value() if settings.github_token else None,
            user_agent=settings.user_agent,
            timeout=settings.http_timeout,
            client=client,
        )

    @property
    def headers(self) -> dict[str, str]:
        return build_headers(self._user_agent, self._token)

    def release_url(self, version: str | None = None) -> str:
        base = f"{self._api_url}/repos/{self._repo}/releases"
        if version is None or version == LATEST:
            return f"{base}/latest"
        return f"{base}/tags/{quote(version, safe='')}"

    async def resolve(self, version: str | None = None) -> ReleaseDescriptor:
        """Resolve *version* (``None`` or ``"latest"`` for the newest release)."""
        if version is not None:
            version = version.strip() or None
        url = self.release_url(version)
        log.info("release_resolving", version=version or LATEST, url=url)

        try:
            async with client_session(self._client, self._timeout) as client:
                resp = await client.get(url, headers=self.headers)
        except httpx.HTTPError as exc:
            raise ResolutionError(
                "Failed to reach the release service", detail=str(exc)
            ) from exc

        if not resp.is_success:
            hint = f"version '{version}' may not exist" if version else "no published release"
            raise ResolutionError(
                f"Release service returned HTTP {resp.status_code}", detail=hint
            )

        try:
            release = ReleaseDescriptor.from_api(resp.json())
        except ValueError as exc:
            raise ResolutionError(
                "Failed to parse the release service response", detail=str(exc)
            ) from exc

        log.info("release_resolved", tag=release.tag)
        return release

    async def check_for_update(self, current_version: str) -> ReleaseDescriptor | None:
        """Return the latest release if it is newer than *current_version*."""
        latest = await self.resolve(None)
        if not is_newer(latest.tag, current_version):
            log.debug("release_up_to_date", current=current_version, latest=latest.tag)
            return None
        log.info("release_update_available", current=current_version, latest=latest.tag)
        return latest
