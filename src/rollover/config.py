"""Configuration management for rollover."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rollover.constants import (
    DEFAULT_EXTRACT_TIMEOUT,
    DEFAULT_INSTALL_TIMEOUT,
    DEFAULT_SMOKE_TIMEOUT,
    DEFAULT_USER_AGENT,
    GITHUB_API_URL,
)
from rollover.models import InstallationTarget

if TYPE_CHECKING:
    from rollover.procedure import InstallProcedure


class Settings(BaseSettings):
    """Application settings loaded from ``ROLLOVER_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ROLLOVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Release service
    release_repo: str = Field(description="owner/name of the repository publishing releases")
    github_api_url: str = Field(default=GITHUB_API_URL, description="Release metadata API base")
    github_token: SecretStr | None = Field(default=None, description="Optional API token")
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    http_timeout: float = Field(default=30.0, gt=0)

    # Installation target
    state_dir: Path = Field(default_factory=lambda: Path.home() / ".rollover")
    bin_dir: Path = Field(default_factory=lambda: Path.home() / ".local" / "bin")
    primary_binary: str = Field(description="Binary used for smoke tests and verification")
    binary_names: Annotated[
        list[str],
        Field(default_factory=list, description="Additional binaries to snapshot and restore"),
    ]

    # Install procedure
    source_dir_marker: str = Field(
        default="", description="Substring identifying the extracted source directory"
    )
    install_script: str = Field(default="scripts/install.sh")
    install_interpreter: str = Field(default="bash")
    install_args: list[str] = Field(default_factory=lambda: ["--non-interactive"])
    state_dir_env: str = Field(default="APP_HOME")
    bin_dir_env: str = Field(default="INSTALL_DIR")
    version_args: list[str] = Field(default_factory=lambda: ["--version"])
    install_timeout: float = Field(default=DEFAULT_INSTALL_TIMEOUT, gt=0)
    smoke_timeout: float = Field(default=DEFAULT_SMOKE_TIMEOUT, gt=0)
    extract_timeout: float = Field(default=DEFAULT_EXTRACT_TIMEOUT, gt=0)
    tar_executable: str = Field(default="tar")
    scope_production_install: bool = Field(
        default=True,
        description="Pass production paths explicitly to the install procedure",
    )

    # Staging
    staging_parent: Path | None = Field(default=None)
    keep_staging: bool = Field(default=False)

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_to_file: bool = Field(default=False)
    log_directory: str = Field(default="logs")
    log_file_max_bytes: int = Field(default=10 * 1024 * 1024)
    log_file_backup_count: int = Field(default=5)

    @field_validator("release_repo")
    @classmethod
    def _validate_repo(cls, value: str) -> str:
        owner, _, name = value.strip().partition("/")
        if not owner or not name or "/" in name:
            raise ValueError("release_repo must look like 'owner/name'")
        return f"{owner}/{name}"

    @field_validator("state_dir", "bin_dir", "staging_parent")
    @classmethod
    def _expand_user(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def extracted_dir_marker(self) -> str:
        """Substring the extracted source directory must contain."""
        return self.source_dir_marker or self.release_repo.split("/", 1)[1]

    @property
    def log_file_path(self) -> str:
        return str(Path(self.log_directory) / "rollover.log")

    def installation_target(self) -> InstallationTarget:
        return InstallationTarget(
            state_dir=self.state_dir,
            bin_dir=self.bin_dir,
            binary_names=frozenset(self.binary_names),
            primary_binary=self.primary_binary,
        )

    def install_procedure(self) -> InstallProcedure:
        from rollover.procedure import InstallProcedure

        return InstallProcedure(
            script=self.install_script,
            interpreter=self.install_interpreter,
            args=tuple(self.install_args),
            state_dir_env=self.state_dir_env,
            bin_dir_env=self.bin_dir_env,
            primary_binary=self.primary_binary,
            version_args=tuple(self.version_args),
            install_timeout=self.install_timeout,
            smoke_timeout=self.smoke_timeout,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]
