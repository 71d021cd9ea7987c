"""Shared HTTP plumbing for the release service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from rollover.constants import GITHUB_ACCEPT


def build_headers(user_agent: str, token: str | None = None) -> dict[str, str]:
    headers: dict[str, str] = {"Accept": GITHUB_ACCEPT, "User-Agent": user_agent}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


@asynccontextmanager
async def client_session(
    client: httpx.AsyncClient | None, timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield *client* if one was injected, otherwise a short-lived client."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
        yield owned
