"""Application configuration using Pydantic Settings."""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _default_podman_url() -> str:
    """Locate the Podman API socket for the current user.

    Rootless Podman listens under $XDG_RUNTIME_DIR; the system service
    socket is used otherwise.
    """
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if runtime_dir:
        return f"unix://{runtime_dir}/podman/podman.sock"
    return "unix:///run/podman/podman.sock"


def _default_storage_path() -> str:
    return str(Path.home() / ".local" / "share" / "dbservices")


class EngineConnectionSettings(BaseModel):
    """One container engine provider connection."""

    name: str = Field(..., description="Connection name, unique per provider type")
    type: str = Field(default="podman", description="Provider type (only podman is provisioned)")
    url: str = Field(
        ...,
        description="Engine API URL (unix:///path/to/podman.sock or tcp://host:port)",
        pattern=r"^(unix|tcp|http|https)://.*",
    )

    @field_validator("type")
    @classmethod
    def _lower_type(cls, value: str) -> str:
        return value.lower()


def _default_connections() -> list[EngineConnectionSettings]:
    return [EngineConnectionSettings(name="podman", type="podman", url=_default_podman_url())]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "Database Services"
    app_version: str = "0.1.0"

    # API settings
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=8000, ge=1, le=65535)

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Container engine settings
    engine_connections: list[EngineConnectionSettings] = Field(
        default_factory=_default_connections,
        description="Container engine provider connections (JSON list in the environment)",
    )
    provider_poll_interval_seconds: float = Field(
        default=5.0,
        description="How often provider connections are pinged to detect start/stop",
        ge=0.5,
        le=300.0,
    )

    # Provisioning settings
    storage_path: str = Field(
        default_factory=_default_storage_path,
        description="Private storage root for staged init scripts and admin console files",
    )
    admin_console_image: str = Field(
        default="docker.io/dpage/pgadmin4:latest",
        description="Image reference pulled when an admin console is requested",
    )
    admin_console_email: str = Field(
        default="admin@example.com",
        description="Default login for the admin console",
    )
    admin_console_password: str = Field(
        default="admin",
        description="Default password for the admin console",
    )
    use_pods: bool = Field(
        default=True,
        description="Run a requested admin console in a pod shared with the database. "
        "When disabled, the admin console is a standalone container paired by label.",
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_file_path: str = Field(
        default="data/logs/dbservices.log",
        description="Path for rotating log file",
    )
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Maximum size of each log file in bytes",
    )
    log_file_backup_count: int = Field(
        default=7,
        description="Number of backup log files to keep",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines instead of plain text",
    )

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {value!r}")
        return upper


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
