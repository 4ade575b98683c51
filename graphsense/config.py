from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logger.bind(module="config")

__all__ = ["Settings", "get_settings"]


def _default_home() -> Path:
    return Path.home() / ".graphsense"


def _default_compose_file() -> Path:
    return Path.home() / "oss" / "code-graph-rag" / "docker-compose.yml"


class Settings(BaseSettings):
    """Centralised configuration for the instance manager."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    home_dir: Path = Field(default_factory=_default_home, alias="GRAPHSENSE_HOME")
    db_path: Path | None = Field(default=None, alias="GRAPHSENSE_DB_PATH")
    db_echo: bool = Field(default=False, alias="GRAPHSENSE_DB_ECHO")
    secrets_file: Path | None = Field(default=None, alias="GRAPHSENSE_SECRETS_FILE")

    compose_file: Path = Field(
        default_factory=_default_compose_file,
        alias="GRAPHSENSE_COMPOSE_FILE",
    )
    compose_bin: str = Field(default="docker compose", alias="GRAPHSENSE_COMPOSE_BIN")
    docker_bin: str = Field(default="docker", alias="GRAPHSENSE_DOCKER_BIN")

    default_base_port: int = Field(default=8080, alias="GRAPHSENSE_DEFAULT_BASE_PORT")
    port_step: int = Field(default=10, alias="GRAPHSENSE_PORT_STEP")
    port_limit: int = Field(default=65000, alias="GRAPHSENSE_PORT_LIMIT")

    health_max_attempts: int = Field(default=60, alias="GRAPHSENSE_HEALTH_MAX_ATTEMPTS")
    health_interval_seconds: float = Field(
        default=5.0,
        alias="GRAPHSENSE_HEALTH_INTERVAL_SECONDS",
    )

    @computed_field(return_type=Path)
    @property
    def database_path(self) -> Path:
        """Return the SQLite file backing the instance registry."""
        if self.db_path is not None:
            return Path(self.db_path).expanduser()
        return Path(self.home_dir).expanduser() / "instances.db"

    @computed_field(return_type=Path)
    @property
    def secrets_path(self) -> Path:
        """Return the key-value file holding optional API keys."""
        if self.secrets_file is not None:
            return Path(self.secrets_file).expanduser()
        return Path(self.home_dir).expanduser() / ".env"

    @property
    def lock_path(self) -> Path:
        return Path(self.home_dir).expanduser() / "deploy.lock"

    def export_safe(self) -> dict[str, Any]:
        """Return non-sensitive settings for debugging/logging."""
        return {
            "home_dir": str(self.home_dir),
            "database_path": str(self.database_path),
            "compose_file": str(self.compose_file),
            "compose_bin": self.compose_bin,
            "docker_bin": self.docker_bin,
            "default_base_port": self.default_base_port,
            "port_step": self.port_step,
            "port_limit": self.port_limit,
            "health_max_attempts": self.health_max_attempts,
            "health_interval_seconds": self.health_interval_seconds,
        }


@lru_cache
def get_settings() -> Settings:
    """Load and cache application settings."""
    settings = Settings()
    log.debug("Settings initialised: {}", settings.export_safe())
    return settings
