"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from deal_sentinel.core.exceptions import ConfigError


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/deal_sentinel.db"


class StoreAPIConfig(BaseModel):
    """Storefront price API access configuration."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://store.steampowered.com"
    country_code: str = "JP"
    language: str = "japanese"
    request_interval_seconds: float = 3.0
    request_timeout: int = 15

    @field_validator("request_interval_seconds")
    @classmethod
    def interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_interval_seconds must be > 0")
        return v

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return v.rstrip("/")


class MonitoringConfig(BaseModel):
    """Sweep scheduling and alerting configuration."""

    model_config = ConfigDict(frozen=True)

    interval_hours: float = 1.0
    fetch_timeout_seconds: float = 15.0
    fetch_cache_ttl: int = 60
    notification_cooldown_hours: float = 6.0
    poll_interval_seconds: float = 1.0

    @field_validator("interval_hours")
    @classmethod
    def interval_in_range(cls, v: float) -> float:
        # 0 disables scheduled sweeps
        if v != 0 and not 0.1 <= v <= 24:
            raise ValueError("interval_hours must be 0 or between 0.1 and 24")
        return v

    @field_validator("fetch_timeout_seconds", "poll_interval_seconds")
    @classmethod
    def seconds_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("value must be > 0")
        return v

    @field_validator("notification_cooldown_hours")
    @classmethod
    def cooldown_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("notification_cooldown_hours must be >= 0")
        return v


class CacheConfig(BaseModel):
    """In-process cache configuration."""

    model_config = ConfigDict(frozen=True)

    default_ttl_seconds: int = 300
    eviction_interval_seconds: float = 300.0

    @field_validator("eviction_interval_seconds")
    @classmethod
    def eviction_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("eviction_interval_seconds must be > 0")
        return v


class NotificationsConfig(BaseModel):
    """Outbound notification configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    discord_webhook_url: str | None = None

    @model_validator(mode="after")
    def webhook_is_https(self) -> NotificationsConfig:
        url = self.discord_webhook_url
        if url and not url.startswith("https://"):
            raise ValueError("discord_webhook_url must use HTTPS")
        return self

    @property
    def discord_active(self) -> bool:
        return self.enabled and bool(self.discord_webhook_url)


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = 3000


class SentinelConfig(BaseModel):
    """Root configuration for the entire deal-sentinel system."""

    model_config = ConfigDict(frozen=True)

    storage: StorageConfig = StorageConfig()
    store_api: StoreAPIConfig = StoreAPIConfig()
    monitoring: MonitoringConfig = MonitoringConfig()
    cache: CacheConfig = CacheConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "DEAL_SENTINEL_",
) -> SentinelConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (DEAL_SENTINEL_MONITORING__INTERVAL_HOURS, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        DEAL_SENTINEL_CACHE__DEFAULT_TTL_SECONDS=60  ->  cache.default_ttl_seconds = 60
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return SentinelConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("DEAL_SENTINEL_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from DEAL_SENTINEL_CONFIG not found: {env_path}",
                context={"field": "DEAL_SENTINEL_CONFIG", "value": env_path},
            )
        return p

    default = Path("deal-sentinel.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            else:
                target[part] = dict(target[part])
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
