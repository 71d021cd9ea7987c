"""rollover: staged self-update orchestration with automatic rollback.

Resolves a release, builds and smoke-tests it in an isolated staging
workspace, snapshots the current installation, installs, verifies, and
restores the snapshot whenever install or verification fails.
"""

__version__ = "0.1.0"
