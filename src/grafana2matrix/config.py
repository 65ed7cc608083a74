"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
bridge. Values are read from environment variables, a ``.env`` file and
an optional JSON config file, in that order of precedence.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_CONFIG_FILE = "config.json"

_config_file: Path = Path(DEFAULT_CONFIG_FILE)


def set_config_file(path: str | Path) -> None:
    """Select the JSON config file read by subsequent settings loads."""
    global _config_file
    _config_file = Path(path)


def get_config_file() -> Path:
    return _config_file


class _BridgeSettings(BaseSettings):
    """Base for all settings groups; adds the JSON config file source.

    The config file is a flat object using the same keys as the
    environment, e.g. ``{"MATRIX_ROOM_ID": "!abc:example.org"}``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=_config_file),
            file_secret_settings,
        )


class MatrixSettings(_BridgeSettings):
    """Matrix homeserver connection settings."""

    homeserver_url: str = Field(
        default="https://matrix.org",
        alias="MATRIX_HOMESERVER_URL",
        description="Base URL of the Matrix homeserver",
    )
    access_token: SecretStr = Field(
        alias="MATRIX_ACCESS_TOKEN",
        description="Access token of the bot account",
    )
    room_id: str = Field(
        alias="MATRIX_ROOM_ID",
        description="Room that receives all notifications",
    )

    @field_validator("homeserver_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate homeserver URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("MATRIX_HOMESERVER_URL must be an HTTP(S) URL")
        return v.rstrip("/")

    @field_validator("room_id")
    @classmethod
    def validate_room_id(cls, v: str) -> str:
        """Reject an empty room id."""
        if not v.strip():
            raise ValueError("MATRIX_ROOM_ID must not be empty")
        return v.strip()


class GrafanaSettings(_BridgeSettings):
    """Grafana API settings used for silencing."""

    url: str | None = Field(
        default=None,
        alias="GRAFANA_URL",
        description="Grafana base URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="GRAFANA_API_KEY",
        description="Grafana service account token",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Grafana URL format."""
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("GRAFANA_URL must be an HTTP(S) URL")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        """Check if silencing through Grafana is possible."""
        return self.url is not None and self.api_key is not None


class SummarySettings(_BridgeSettings):
    """Scheduled summary settings."""

    schedule_crit: str = Field(
        default="6:00,14:30",
        alias="SUMMARY_SCHEDULE_CRIT",
        description="Comma-separated UTC times for CRIT summaries",
    )
    schedule_warn: str = Field(
        default="6:00,14:30",
        alias="SUMMARY_SCHEDULE_WARN",
        description="Comma-separated UTC times for WARN summaries",
    )
    skip_empty: bool = Field(
        default=False,
        alias="SUMMARY_SCHEDULE_SKIP_EMPTY",
        description="Skip scheduled summaries with no active alerts",
    )


class Settings(_BridgeSettings):
    """Main application settings.

    Example:
        ```python
        from grafana2matrix.config import get_settings

        settings = get_settings()
        print(settings.matrix.room_id)
        print(settings.summary.schedule_crit)
        ```
    """

    # Nested configuration groups
    matrix: MatrixSettings = Field(default_factory=MatrixSettings)  # type: ignore[arg-type]
    grafana: GrafanaSettings = Field(default_factory=GrafanaSettings)
    summary: SummarySettings = Field(default_factory=SummarySettings)

    # Application settings
    port: int = Field(
        default=3000,
        alias="PORT",
        description="HTTP port for the webhook receiver",
        ge=1,
        le=65535,
    )
    db_file: str = Field(
        default="alerts.db",
        alias="DB_FILE",
        description="SQLite database file",
    )
    mention_config_path: str | None = Field(
        default=None,
        alias="MENTION_CONFIG_PATH",
        description="JSON file with per-host mention policies",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    tick_interval_seconds: float = Field(
        default=60.0,
        alias="TICK_INTERVAL_SECONDS",
        description="Seconds between mention and summary checks",
        gt=0,
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "matrix": {
                "homeserver_url": self.matrix.homeserver_url,
                "room_id": self.matrix.room_id,
                "access_token": "(set)" if self.matrix.access_token else "(not set)",
            },
            "grafana": {
                "url": self.grafana.url or "(not set)",
                "api_key": "(set)" if self.grafana.api_key else "(not set)",
            },
            "summary": {
                "schedule_crit": self.summary.schedule_crit,
                "schedule_warn": self.summary.schedule_warn,
                "skip_empty": str(self.summary.skip_empty),
            },
            "silencing_enabled": str(self.grafana.enabled),
            "mention_config_path": self.mention_config_path or "(not set)",
            "db_file": self.db_file,
            "log_level": self.log_level,
            "port": str(self.port),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required values are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Used by ``.reload-config`` and by tests to reload settings with
    different environment variables or config files.
    """
    get_settings.cache_clear()
