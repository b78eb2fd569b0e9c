"""Settings and configuration management."""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import ClassVar

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

_DEFAULT_DATABASE_URL = "sqlite:///areaflow.db"

# Regex for ${ENV_VAR} placeholders in YAML values
_ENV_VAR_PLACEHOLDER_RE = re.compile(r"^\$\{[A-Z_][A-Z0-9_]*\}$")

# YAML config search paths (checked in order, first found wins)
_YAML_SEARCH_PATHS = [
    Path("areaflow.yaml"),
    Path("config/areaflow.yaml"),
    Path.home() / ".config" / "areaflow" / "areaflow.yaml",
]


def _find_yaml_config() -> Path | None:
    """Find the first areaflow.yaml in search paths."""
    for path in _YAML_SEARCH_PATHS:
        if path.is_file():
            return path
    return None


class Settings(BaseSettings):
    """Application settings.

    Priority chain: init kwargs > env vars > .env file > areaflow.yaml > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="AREAFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Class-level cache for the resolved YAML path (not a pydantic field)
    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Priority: init kwargs > env vars > .env file > areaflow.yaml > file secrets > defaults
        """
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
        ]

        yaml_path = _find_yaml_config()
        cls._yaml_path = yaml_path
        if yaml_path:
            sources.append(
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=yaml_path,
                    yaml_file_encoding="utf-8",
                )
            )

        sources.append(file_secret_settings)
        return tuple(sources)

    @model_validator(mode="before")
    @classmethod
    def _resolve_env_var_placeholders(cls, data: dict) -> dict:
        """Strip unresolved ${VAR} placeholders so they become None.

        YAML files may contain ${ENV_VAR} syntax for secrets. When the env var
        is not set, the raw placeholder string would pollute the field value.
        """
        if not isinstance(data, dict):
            return data
        for key, value in data.items():
            if isinstance(value, str) and _ENV_VAR_PLACEHOLDER_RE.match(value):
                data[key] = None
        return data

    # Application Settings
    app_name: str = Field("Areaflow", description="Application name")
    debug: bool = Field(False, description="Debug mode")
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    sanitize_logs: bool = Field(True, description="Sanitize sensitive data from logs")

    # Storage
    database_url: str = Field(
        default=_DEFAULT_DATABASE_URL,
        description="Rule store URL (sqlite:///path.db)",
    )
    credentials_dir: Path = Field(
        default_factory=lambda: Path.home() / ".areaflow" / "credentials",
        description="Directory holding per-owner provider credentials",
    )
    credentials_key: str | None = Field(
        None,
        description="Fernet key or passphrase encrypting stored credentials "
        "(generated into credentials_dir when unset)",
    )

    # Scheduler
    default_timezone: str = Field(
        "Europe/Paris", description="Timezone used when a timer rule sets none"
    )

    # Dispatch
    dispatch_timeout_seconds: float = Field(
        30.0, gt=0, description="Upper bound for a single reaction call"
    )
    dispatch_max_workers: int = Field(8, ge=1, description="Concurrent reaction executions")

    # Polling
    pollers_enabled: bool = Field(True, description="Start polling loops with the engine")
    gmail_poll_interval_seconds: int = Field(120, ge=10, description="Gmail poll cadence")
    spotify_poll_interval_seconds: int = Field(60, ge=10, description="Spotify poll cadence")
    notion_poll_interval_seconds: int = Field(60, ge=10, description="Notion poll cadence")
    poll_fetch_timeout_seconds: float = Field(
        30.0, gt=0, description="Upper bound for one owner's fetch in a poll cycle"
    )
    poll_max_workers: int = Field(4, ge=1, description="Owners polled concurrently")
    gmail_max_results: int = Field(10, ge=1, description="Messages fetched per Gmail poll")
    processed_ids_cap: int = Field(100, ge=1, description="Max ids kept per set cursor")

    # Provider credentials (app-level; per-owner tokens live in the credential store)
    github_token: str | None = Field(None, description="Fallback GitHub token")
    discord_bot_token: str | None = Field(None, description="Discord bot token")
    notion_token: str | None = Field(None, description="Fallback Notion integration token")
    spotify_client_id: str | None = Field(None, description="Spotify app client id")
    spotify_client_secret: str | None = Field(None, description="Spotify app client secret")
    google_client_id: str | None = Field(None, description="Google OAuth client id")
    google_client_secret: str | None = Field(None, description="Google OAuth client secret")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @model_validator(mode="after")
    def _check_cursor_window(self) -> "Settings":
        if self.processed_ids_cap < self.gmail_max_results:
            raise ValueError(
                f"processed_ids_cap ({self.processed_ids_cap}) must be at least "
                f"gmail_max_results ({self.gmail_max_results})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
