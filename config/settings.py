"""
Configuration management for the GitFlow Live repository tracker.

This module provides centralized configuration with:
- Environment-specific settings
- Type validation and defaults
- Git query, watcher and listener tuning
- Optional Redis fan-out and the recent-repository store
"""

import ipaddress
from typing import Optional, Dict, Any
from pathlib import Path
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_DATA_DIR = Path.home() / ".gitflow-live"


class GitSettings(BaseSettings):
    """Repository query settings."""

    model_config = {"env_prefix": "GIT__"}

    binary: Optional[str] = Field(default=None, description="Explicit git executable path")
    baseline_limit: int = Field(
        default=5000, ge=1, description="Maximum commits loaded into a baseline"
    )
    query_timeout: float = Field(
        default=10.0, gt=0, description="Seconds before a git query is treated as failed"
    )


class WatcherSettings(BaseSettings):
    """Reference-log watcher settings."""

    model_config = {"env_prefix": "WATCHER__"}

    debounce_ms: int = Field(default=200, ge=0, description="Debounce window in milliseconds")
    force_polling: bool = Field(default=False, description="Poll instead of native notifications")
    poll_delay_ms: int = Field(default=300, ge=10, description="Polling interval when polling")
    retry_delay: float = Field(
        default=1.0, ge=0, description="Seconds to wait before re-watching after an error"
    )


class ServiceSettings(BaseSettings):
    """Listener configuration settings."""

    model_config = {"env_prefix": "SERVICE__"}

    host: str = Field(default="127.0.0.1", description="Loopback address both listeners bind")
    push_port: int = Field(default=53210, ge=0, le=65535, description="Push channel port")
    subscriber_port: int = Field(
        default=53211, ge=0, le=65535, description="Subscriber channel port"
    )
    graceful_shutdown_timeout: int = Field(default=5, description="Graceful shutdown timeout")

    @field_validator("host")
    @classmethod
    def validate_loopback_host(cls, v):
        if v == "localhost":
            return v
        try:
            address = ipaddress.ip_address(v)
        except ValueError:
            raise ValueError("Host must be an IP address or 'localhost'")
        if not address.is_loopback:
            raise ValueError("Listeners may only bind a loopback address")
        return v


class RedisSettings(BaseSettings):
    """Redis fan-out configuration settings."""

    model_config = {"env_prefix": "REDIS__"}

    enabled: bool = Field(default=False, description="Publish events to Redis pub/sub")
    url: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    channel: str = Field(default="gitflow_events", description="Pub/sub channel name")
    socket_connect_timeout: int = Field(default=5, description="Socket connect timeout")
    socket_timeout: int = Field(default=5, description="Socket timeout")

    @field_validator("url")
    @classmethod
    def validate_redis_url(cls, v):
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must use redis://, rediss:// or unix://")
        return v


class StoreSettings(BaseSettings):
    """Recent-repository store settings."""

    model_config = {"env_prefix": "STORE__"}

    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DATA_DIR / 'gitflow-live.db'}",
        description="SQLAlchemy database URL",
    )
    max_recent: int = Field(default=10, ge=1, description="Recent repositories kept")


class MonitoringSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = {"env_prefix": "MONITORING__"}

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Logging format string",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


class Settings(BaseSettings):
    """
    Main application settings.

    Nested groups can be overridden from the environment with a double
    underscore, e.g. ``GIT__BASELINE_LIMIT=2000`` or ``SERVICE__PUSH_PORT=0``.
    """

    app_name: str = Field(default="GitFlow Live", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")

    git: GitSettings = Field(default_factory=GitSettings)
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        valid_environments = ["development", "testing", "production"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration object

    Example:
        >>> settings = get_settings()
        >>> print(settings.git.baseline_limit)
    """
    return Settings()


# Global settings instance
settings = get_settings()


def export_config(config: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Export configuration for status reporting.

    Returns:
        Dict[str, Any]: Configuration export (without connection secrets)
    """
    config = config or settings
    return {
        "app_name": config.app_name,
        "version": config.version,
        "environment": config.environment,
        "debug": config.debug,
        "git": {
            "baseline_limit": config.git.baseline_limit,
            "query_timeout": config.git.query_timeout,
        },
        "watcher": {
            "debounce_ms": config.watcher.debounce_ms,
            "force_polling": config.watcher.force_polling,
        },
        "service": {
            "host": config.service.host,
            "push_port": config.service.push_port,
            "subscriber_port": config.service.subscriber_port,
        },
        "redis": {
            "enabled": config.redis.enabled,
            "channel": config.redis.channel,
        },
        "monitoring": {
            "log_level": config.monitoring.log_level,
        },
    }


if __name__ == "__main__":
    import json

    print("Configuration Export:")
    print(json.dumps(export_config(), indent=2))
