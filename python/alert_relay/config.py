"""
Configuration management for the alert relay.

Supports YAML config files (and the legacy JSON token file) with
environment variable overrides.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from alert_relay.exceptions import ConfigurationError

DEFAULT_CATEGORIES = [
    "alerts-log-errors",
    "alerts-disk-space",
    "alerts-memory-usage",
    "alerts-systemd",
    "alerts-docker-unhealthy-container",
]


class StoreConfig(BaseModel):
    """Configuration for the Elasticsearch index store."""

    url: str = Field(default="http://elasticsearch:9200", description="Elasticsearch base URL")
    unsent_index: str = Field(default="unsent-slacks", description="Index holding undelivered messages")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    search_size: int = Field(default=10, description="Hits returned per match-all search")
    username: str | None = Field(default=None, description="Basic auth username")
    password: str | None = Field(default=None, description="Basic auth password")


class SlackConfig(BaseModel):
    """Configuration for Slack delivery."""

    token: str = Field(default="", description="Slack bot token")
    channel: str = Field(default="#alerts-and-notifications", description="Target channel")
    api_url: str = Field(default="https://slack.com/api", description="Slack Web API base URL")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Attempts per message on transport errors")
    retry_delay_seconds: float = Field(default=1.0, description="Base delay for exponential backoff")


class DeliveryConfig(BaseModel):
    """Configuration for the delivery loop."""

    grace_period_seconds: float = Field(
        default=5.0, description="Minimum spacing between consecutive Slack sends"
    )
    categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CATEGORIES),
        description="Alert indexes to dispatch",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json, plain)")
    file: str | None = Field(default=None, description="Log file path (None for stdout)")


class Config(BaseSettings):
    """Main configuration for the alert relay."""

    model_config = SettingsConfigDict(
        env_prefix="ALERT_RELAY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment overrides values read from a config file.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with path.open() as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_json(cls, path: str | Path) -> Config:
        """
        Load configuration from a JSON file.

        A top-level ``slackToken`` key (the legacy token file layout) is
        mapped onto ``slack.token``.
        """
        path = Path(path)
        if not path.exists():
            return cls()

        with path.open() as f:
            data: dict[str, Any] = json.load(f) or {}

        token = data.pop("slackToken", None)
        if token is not None:
            slack = dict(data.get("slack") or {})
            slack.setdefault("token", token)
            data["slack"] = slack

        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """Load configuration from a YAML or JSON file based on its suffix."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError.missing_file(str(path))
        if path.suffix.lower() == ".json":
            return cls.from_json(path)
        return cls.from_yaml(path)

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """
        Load configuration with precedence:
        1. Environment variables (highest)
        2. Config file
        3. Defaults (lowest)
        """
        if config_path is None:
            config_path = os.getenv("ALERT_RELAY_CONFIG")

        if config_path is None:
            for candidate in [
                "alert-relay.yaml",
                "alert-relay.yml",
                "config/alert-relay.yaml",
                "config.json",
            ]:
                if Path(candidate).exists():
                    config_path = candidate
                    break

        if config_path is not None:
            return cls.from_file(config_path)

        return cls()

    def require_token(self) -> str:
        """Return the Slack token, failing when it is not configured."""
        if not self.slack.token:
            raise ConfigurationError.missing_token()
        return self.slack.token


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
