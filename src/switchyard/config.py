"""Configuration management for Switchyard using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, EnvSettingsSource, SettingsConfigDict

from switchyard.services.classifier import DEFAULT_BLOCK_ON_ERRORS, parse_pattern

# Block records outlive the longest backoff so failure counts keep climbing
# across short outages.
DEFAULT_STATE_TTL_SECONDS = 10 * 24 * 60 * 60


class StoreSettings(BaseSettings):
    """Block state store settings."""

    model_config = SettingsConfigDict(env_prefix="SWITCHYARD_ROUTER__STORE__")

    type: str = Field(
        default="memory",
        description="Store type: 'memory' or a 'package.module:Class' import path",
    )
    sweep_interval_seconds: float = Field(
        default=300.0, gt=0, description="Interval between expired-entry sweeps"
    )
    ttl_seconds: float = Field(
        default=DEFAULT_STATE_TTL_SECONDS,
        gt=0,
        description="TTL of a backend's block record",
    )


class RouterSettings(BaseSettings):
    """Exponential backoff router settings."""

    model_config = SettingsConfigDict(env_prefix="SWITCHYARD_ROUTER__")

    namespace: str = Field(
        default="default", description="Name isolating this router's stored entries"
    )
    min_backoff_ms: int = Field(
        default=1_000, ge=1, description="Floor of the backoff window in milliseconds"
    )
    max_backoff_ms: int = Field(
        default=300_000, ge=1, description="Ceiling of the backoff window in milliseconds"
    )
    block_on_errors: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCK_ON_ERRORS),
        description="Error patterns that block a backend (replaces the defaults)",
    )
    store: StoreSettings = Field(default_factory=StoreSettings)

    @field_validator("block_on_errors")
    @classmethod
    def _check_patterns(cls, v: list[str]) -> list[str]:
        for entry in v:
            parse_pattern(entry)
        return v

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "RouterSettings":
        if self.max_backoff_ms < self.min_backoff_ms:
            raise ValueError("max_backoff_ms must be >= min_backoff_ms")
        return self


class MetricsSettings(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(env_prefix="SWITCHYARD_METRICS__")

    enabled: bool = Field(default=True, description="Record Prometheus metrics")


class LoggingSettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="SWITCHYARD_LOGGING__")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="console", description="Log format")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SWITCHYARD_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    router: RouterSettings = Field(default_factory=RouterSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_yaml_config(config_path: Path | None = None) -> dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML config file. If None, looks for default locations.

    Returns:
        Dictionary with configuration values.
    """
    if config_path is None:
        default_paths = [
            Path("config/switchyard_config.yaml"),
            Path("switchyard_config.yaml"),
            Path("/etc/switchyard/config.yaml"),
        ]
        for path in default_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def create_settings(config_path: Path | None = None) -> Settings:
    """Create settings from YAML config and environment variables.

    Environment variables (`SWITCHYARD_ROUTER__MIN_BACKOFF_MS` and so on)
    take precedence over the YAML file key by key; anything set in neither
    keeps its default.

    Args:
        config_path: Optional path to YAML config file.

    Returns:
        Settings instance.
    """
    yaml_config = load_yaml_config(config_path)
    config = {
        section: dict(yaml_config.get(section) or {})
        for section in ("router", "metrics", "logging")
    }
    env_config = EnvSettingsSource(Settings)()
    return Settings(**_merge(config, env_config))


def _merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Cached Settings instance.
    """
    return create_settings()
