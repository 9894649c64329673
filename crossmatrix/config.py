"""Configuration settings for crossmatrix.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_work_dir() -> Path:
    """Return the default per-target working directory root."""
    return Path.cwd() / ".crossmatrix" / "work"


def _default_cache_dir() -> Path:
    """Return the default dependency cache directory."""
    return Path.home() / ".cache" / "crossmatrix" / "deps"


def _default_dist_dir() -> Path:
    """Return the default directory for release archives."""
    return Path.cwd() / ".crossmatrix" / "dist"


def _default_publish_dir() -> Path:
    """Return the default local publication directory."""
    return Path.home() / ".local" / "share" / "crossmatrix" / "published"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "crossmatrix" / "runs.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the CROSSMATRIX_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CROSSMATRIX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Root directory for per-target build, bundle and log dirs",
    )
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for the dependency cache backend",
    )
    dist_dir: Path = Field(
        default_factory=_default_dist_dir,
        description="Directory receiving <project>-<target>.tar.gz archives",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for run history",
    )
    matrix_file: Path | None = Field(
        default=None,
        description="Matrix definition file (uses the built-in matrix if not set)",
    )

    # Publication
    publish_dir: Path = Field(
        default_factory=_default_publish_dir,
        description="Local publication directory (used when publish_url is unset)",
    )
    publish_url: str | None = Field(
        default=None,
        description="HTTP endpoint for artifact uploads",
    )
    publish_token: str | None = Field(
        default=None,
        description="Bearer token for the HTTP publication endpoint",
    )
    publish_retention_days: int = Field(
        default=90,
        ge=1,
        description="Requested retention for published artifacts",
    )
    publish_binaries: bool = Field(
        default=True,
        description="Also publish bare binaries next to the archive",
    )

    # Operational modes
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    use_sudo: bool = Field(
        default=False,
        description="Run package manager commands through sudo",
    )
    apt_sources: list[Path] = Field(
        default_factory=lambda: [
            Path("/etc/apt/sources.list"),
            Path("/etc/apt/sources.list.d"),
        ],
        description="Package source files hashed into the cache fingerprint",
    )
    clean_build: bool = Field(
        default=True,
        description="Remove a target's build directory before configuring",
    )
    source_date_epoch: int | None = Field(
        default=None,
        ge=0,
        description="Timestamp stamped on archive members (0 if not set)",
    )

    # Concurrency
    max_parallel_targets: int = Field(
        default=0,
        ge=0,
        le=64,
        description="Maximum concurrent target pipelines (0 = one per target)",
    )

    # Timeouts (in seconds)
    probe_timeout: int = Field(
        default=120,
        ge=1,
        description="Timeout for the toolchain compile probe",
    )
    install_timeout: int = Field(
        default=1800,
        ge=1,
        description="Timeout for dependency installation",
    )
    configure_timeout: int = Field(
        default=600,
        ge=1,
        description="Timeout for the configure step",
    )
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Timeout for the build step",
    )
    package_timeout: int = Field(
        default=600,
        ge=1,
        description="Timeout for native package generation",
    )
    verify_timeout: int = Field(
        default=60,
        ge=1,
        description="Timeout for each verification probe",
    )
    publish_timeout: int = Field(
        default=300,
        ge=1,
        description="Timeout for artifact uploads",
    )
    lock_timeout: int = Field(
        default=300,
        ge=0,
        description="Timeout waiting for another run of the same target",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2, exclude={"publish_token"})


__all__ = ["Settings", "get_settings", "print_settings_json"]
