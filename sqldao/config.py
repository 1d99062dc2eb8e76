"""Database settings with YAML file and env variable support."""

import logging
import os
from pathlib import Path

import yaml
from pydantic import Field, PositiveFloat, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

logger = logging.getLogger(__name__)

ENV_PREFIX = "SQLDAO_"


def _load_yaml_mapping(path: Path) -> dict:
    """Load a YAML mapping, returning an empty dict for a missing file."""
    if not path.exists():
        logger.warning("Settings file %s not found; using defaults", path)
        return {}

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return data


class DbSettings(BaseSettings):
    """Connection and pool settings.

    Load order (later overrides earlier):
    1. settings YAML file (when loaded through ``from_yaml_file``)
    2. Environment variables - runtime overrides

    Prefix: SQLDAO_ (e.g., SQLDAO_MAX_POOL_SIZE)
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection settings
    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL. When set, the individual parts below are ignored.",
    )
    driver: str = Field(default="sqlite+aiosqlite")
    host: str | None = Field(default=None)
    port: int | None = Field(default=None)
    user: str | None = Field(default=None)
    password: str | None = Field(default=None)
    database: str = Field(default="sqldao.db")
    echo: bool = Field(default=False)

    # Pool settings
    min_pool_size: int = Field(default=1, ge=0)
    max_pool_size: int = Field(default=10, ge=1)
    acquire_timeout: PositiveFloat | None = Field(
        default=None,
        description="Seconds obtain() waits for a free connection. None waits forever.",
    )
    pool_name: str = Field(default="sqldao")

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "DbSettings":
        if self.min_pool_size > self.max_pool_size:
            raise ValueError(
                f"min_pool_size ({self.min_pool_size}) must not exceed "
                f"max_pool_size ({self.max_pool_size})"
            )
        return self

    def resolved_url(self) -> str:
        """Return ``database_url`` or a URL assembled from the individual parts."""
        if self.database_url:
            return self.database_url
        url = URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )
        return url.render_as_string(hide_password=False)

    @classmethod
    def from_yaml_file(cls, settings_path: str | Path) -> "DbSettings":
        """Load settings from a YAML file with env var overrides.

        Args:
            settings_path: Path to the settings YAML file.

        Returns:
            Configured DbSettings instance.
        """
        config_data = _load_yaml_mapping(Path(settings_path))

        # Remove keys from config_data if corresponding env var is set
        # This allows env vars to properly override file values
        keys_to_remove = [
            key for key in config_data if f"{ENV_PREFIX}{str(key).upper()}" in os.environ
        ]
        for key in keys_to_remove:
            del config_data[key]

        # Env variables override everything (handled by pydantic-settings)
        return cls(**config_data)
