from __future__ import annotations

from pathlib import Path

from loguru import logger
from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from graphsense.errors import PreconditionError

log = logger.bind(module="core.secrets")

__all__ = ["ApiKeys", "load_api_keys"]


class ApiKeys(BaseSettings):
    """Optional credentials forwarded to the application container.

    Values are read from the secrets file only; the process environment is
    deliberately not consulted so a stray shell export cannot leak into an
    instance.
    """

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    co_api_key: str = Field(default="", alias="CO_API_KEY")
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, dotenv_settings)

    def as_env(self) -> dict[str, str]:
        """Return the non-empty keys using their file names."""
        values = {
            "CO_API_KEY": self.co_api_key.strip(),
            "ANTHROPIC_API_KEY": self.anthropic_api_key.strip(),
        }
        return {key: value for key, value in values.items() if value}


def load_api_keys(path: Path) -> ApiKeys:
    """Load API keys from ``path``.

    A missing file is a precondition failure; missing keys become empty strings.
    """
    secrets_path = Path(path).expanduser()
    if not secrets_path.is_file():
        raise PreconditionError(f"API keys file not found: {secrets_path}")
    try:
        keys = ApiKeys(_env_file=secrets_path)
    except OSError as exc:
        raise PreconditionError(f"Failed to read API keys file {secrets_path}: {exc}") from exc
    log.debug(
        "Loaded API keys from {} (configured={})",
        secrets_path,
        sorted(keys.as_env()),
    )
    return keys
