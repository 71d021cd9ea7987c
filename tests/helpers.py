"""Test helpers: fake release scripts, tree digests, a mock release service."""

from __future__ import annotations

import hashlib
import shutil
import stat
from pathlib import Path

import httpx
import pytest

REPO = "acme/widget"
API_URL = "https://api.example.test"
TARBALL_URL = f"{API_URL}/repos/{REPO}/tarball/v2.0.0"

requires_tools = pytest.mark.skipif(
    shutil.which("bash") is None or shutil.which("tar") is None,
    reason="bash and tar are required",
)

# Installed by the fake release. Fails when a marker file sits next to it,
# which lets tests break production without breaking staging.
NEW_BINARY = """#!/bin/sh
if [ -f "$(dirname "$0")/.fail-verify" ]; then
  echo "broken build" >&2
  exit 1
fi
echo "app 2.0.0"
"""

OLD_BINARY = """#!/bin/sh
echo "app 1.0.0"
"""

INSTALL_SCRIPT = """#!/usr/bin/env bash
set -euo pipefail
APP_HOME="${APP_HOME:-$HOME/.app}"
INSTALL_DIR="${INSTALL_DIR:-$HOME/.local/bin}"
SCRIPT_DIR="$(cd "$(dirname "${BASH_SOURCE[0]}")" && pwd)"
mkdir -p "$APP_HOME" "$INSTALL_DIR"
cp "$SCRIPT_DIR/../dist/app" "$INSTALL_DIR/app"
chmod +x "$INSTALL_DIR/app"
cp "$SCRIPT_DIR/../dist/tool" "$INSTALL_DIR/tool"
chmod +x "$INSTALL_DIR/tool"
echo "version = 2" > "$APP_HOME/config.toml"
mkdir -p "$APP_HOME/data"
echo "migrated" > "$APP_HOME/data/notes.txt"
if [ -f "$INSTALL_DIR/.fail-install" ]; then
  echo "install exploded halfway" >&2
  exit 4
fi
"""


def write_executable(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def tree_digest(root: Path, exclude: tuple[str, ...] = ("snapshots",)) -> dict[str, str]:
    """Map relative path -> sha256 for every file under *root*."""
    if not root.exists():
        return {}
    digest: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if rel.parts and rel.parts[0] in exclude:
            continue
        if path.is_file():
            digest[str(rel)] = hashlib.sha256(path.read_bytes()).hexdigest()
        elif path.is_dir():
            digest[str(rel) + "/"] = "dir"
    return digest


def release_service(
    tarball: bytes,
    *,
    tag: str = "v2.0.0",
    status: int = 200,
    tarball_status: int = 200,
) -> httpx.MockTransport:
    """A mock release service serving one release and its tarball."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path in (f"/repos/{REPO}/releases/latest", f"/repos/{REPO}/releases/tags/{tag}"):
            if status != 200:
                return httpx.Response(status, json={"message": "Not Found"})
            return httpx.Response(200, json={"tag_name": tag, "tarball_url": TARBALL_URL})
        if path == f"/repos/{REPO}/tarball/{tag}":
            return httpx.Response(tarball_status, content=tarball if tarball_status == 200 else b"")
        return httpx.Response(404, json={"message": "Not Found"})

    return httpx.MockTransport(handler)
