"""Centralized constants for rollover."""

# Release service
GITHUB_API_URL = "https://api.github.com"
GITHUB_ACCEPT = "application/vnd.github+json"
DEFAULT_USER_AGENT = "rollover-updater"
LATEST = "latest"

# Download streaming
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Filesystem layout
SNAPSHOTS_DIRNAME = "snapshots"
SNAPSHOT_PREFIX = "pre_update_"
SNAPSHOT_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
STATE_BACKUP_DIRNAME = "state_backup"
BIN_BACKUP_DIRNAME = "bin_backup"
SNAPSHOT_MANIFEST = "manifest.json"
RUNTIME_STATE_FILENAME = "updater-state.json"
ARCHIVE_FILENAME = "release.tar.gz"

# Subprocess limits (seconds)
DEFAULT_INSTALL_TIMEOUT = 1800
DEFAULT_SMOKE_TIMEOUT = 30
DEFAULT_EXTRACT_TIMEOUT = 300

# Captured output kept in error messages
STDERR_TAIL_CHARS = 500
