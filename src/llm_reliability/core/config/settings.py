#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
reliability core. Every documented default (pool limits, cache TTL, circuit
breaker thresholds, WebSocket reconnection policy) can be overridden through
environment variables or a ``.env`` file.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Nested section objects for grouped access
- Easy testing with reload_settings()

Author: System Architect
Date: 2025-12-10
"""

from typing import Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from llm_reliability.core.config.constants import (
    DEFAULT_CACHE_CLEANUP_INTERVAL,
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_MAX_RESPONSE_SIZE,
    DEFAULT_CACHE_TTL,
    DEFAULT_CB_FAILURE_THRESHOLD,
    DEFAULT_CB_HALF_OPEN_MAX_REQUESTS,
    DEFAULT_CB_HALF_OPEN_TIMEOUT,
    DEFAULT_CB_RECOVERY_TIMEOUT,
    DEFAULT_CB_SUCCESS_THRESHOLD,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_CONNECTION_WAIT_TIMEOUT,
    DEFAULT_HEALTH_CHECK_INTERVAL,
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_MAX_CONNECTION_FAILURES,
    DEFAULT_MAX_CONNECTIONS_PER_HOST,
    DEFAULT_METRICS_COLLECTION_INTERVAL,
    DEFAULT_METRICS_MAX_ENTRIES,
    DEFAULT_METRICS_NAMESPACE,
    DEFAULT_METRICS_RETENTION_PERIOD,
    DEFAULT_MIN_CONNECTIONS_PER_HOST,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_WS_CONNECTION_QUALITY_THRESHOLD,
    DEFAULT_WS_CONNECTION_TIMEOUT,
    DEFAULT_WS_HEALTH_CHECK_INTERVAL,
    DEFAULT_WS_HEARTBEAT_INTERVAL,
    DEFAULT_WS_INITIAL_RECONNECTION_DELAY,
    DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS,
    DEFAULT_WS_MAX_RECONNECTION_DELAY,
    DEFAULT_WS_MESSAGE_BUFFER_SIZE,
)
from llm_reliability.core.exceptions.base import ConfigurationError

_VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _validate_log_level(v: str) -> str:
    if v.upper() not in _VALID_LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {_VALID_LOG_LEVELS}")
    return v.upper()


class ConnectionPoolSettings(BaseSettings):
    """
    HTTP connection pool configuration.

    STAGE-CP: Per-host pool limits and maintenance cadence
    """

    POOL_MAX_CONNECTIONS_PER_HOST: int = Field(
        default=DEFAULT_MAX_CONNECTIONS_PER_HOST, gt=0, description="Max connections per host"
    )
    POOL_MIN_CONNECTIONS_PER_HOST: int = Field(
        default=DEFAULT_MIN_CONNECTIONS_PER_HOST, ge=0, description="Warm connections kept per host"
    )
    POOL_IDLE_TIMEOUT: float = Field(default=DEFAULT_IDLE_TIMEOUT, gt=0, description="Idle eviction (s)")
    POOL_HEALTH_CHECK_INTERVAL: float = Field(
        default=DEFAULT_HEALTH_CHECK_INTERVAL, gt=0, description="Cleanup loop interval (s)"
    )
    POOL_CONNECTION_WAIT_TIMEOUT: float = Field(
        default=DEFAULT_CONNECTION_WAIT_TIMEOUT, gt=0, description="Max wait for a free connection (s)"
    )
    POOL_REQUEST_TIMEOUT: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0, description="Request timeout (s)")
    POOL_CONNECT_TIMEOUT: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0, description="Connect timeout (s)")
    POOL_MAX_CONNECTION_FAILURES: int = Field(
        default=DEFAULT_MAX_CONNECTION_FAILURES, gt=0, description="Consecutive failures before eviction"
    )
    POOL_ENABLE_CONNECTION_WARMING: bool = Field(default=True, description="Keep min connections warm")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class CacheSettings(BaseSettings):
    """
    Response cache configuration.

    STAGE-RC: Cache sizing and TTL
    """

    CACHE_MAX_ENTRIES: int = Field(default=DEFAULT_CACHE_MAX_ENTRIES, gt=0, description="Max cached responses")
    CACHE_DEFAULT_TTL: float = Field(default=DEFAULT_CACHE_TTL, gt=0, description="Default TTL (s)")
    CACHE_MAX_RESPONSE_SIZE: int = Field(
        default=DEFAULT_CACHE_MAX_RESPONSE_SIZE, gt=0, description="Largest cacheable response (bytes)"
    )
    CACHE_CLEANUP_INTERVAL: float = Field(
        default=DEFAULT_CACHE_CLEANUP_INTERVAL, gt=0, description="Expired entry sweep interval (s)"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class CircuitBreakerSettings(BaseSettings):
    """
    Circuit breaker configuration for fault tolerance.

    STAGE-CB: Circuit breaker thresholds
    """

    CB_FAILURE_THRESHOLD: int = Field(default=DEFAULT_CB_FAILURE_THRESHOLD, gt=0, description="Failures before opening")
    CB_RECOVERY_TIMEOUT: float = Field(default=DEFAULT_CB_RECOVERY_TIMEOUT, gt=0, description="Seconds before probing")
    CB_SUCCESS_THRESHOLD: int = Field(default=DEFAULT_CB_SUCCESS_THRESHOLD, gt=0, description="Successes to close")
    CB_HALF_OPEN_MAX_REQUESTS: int = Field(
        default=DEFAULT_CB_HALF_OPEN_MAX_REQUESTS, gt=0, description="Probe requests allowed while half-open"
    )
    CB_HALF_OPEN_TIMEOUT: float = Field(
        default=DEFAULT_CB_HALF_OPEN_TIMEOUT, gt=0, description="Max seconds spent half-open"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class MetricsSettings(BaseSettings):
    """
    Metrics collection configuration.

    STAGE-MC: Metrics retention and export
    """

    METRICS_MAX_ENTRIES: int = Field(default=DEFAULT_METRICS_MAX_ENTRIES, gt=0, description="Max stored samples")
    METRICS_COLLECTION_INTERVAL: float = Field(
        default=DEFAULT_METRICS_COLLECTION_INTERVAL, gt=0, description="Retention sweep interval (s)"
    )
    METRICS_RETENTION_PERIOD: float = Field(
        default=DEFAULT_METRICS_RETENTION_PERIOD, gt=0, description="Snapshot retention (s)"
    )
    METRICS_NAMESPACE: str = Field(default=DEFAULT_METRICS_NAMESPACE, description="Prometheus metric prefix")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class WebSocketSettings(BaseSettings):
    """
    Reliable WebSocket session configuration.

    STAGE-WS: Reconnection policy, buffering and health monitoring
    """

    WS_MAX_RECONNECTION_ATTEMPTS: int = Field(default=DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS, gt=0)
    WS_INITIAL_RECONNECTION_DELAY: float = Field(default=DEFAULT_WS_INITIAL_RECONNECTION_DELAY, gt=0)
    WS_MAX_RECONNECTION_DELAY: float = Field(default=DEFAULT_WS_MAX_RECONNECTION_DELAY, gt=0)
    WS_CONNECTION_TIMEOUT: float = Field(default=DEFAULT_WS_CONNECTION_TIMEOUT, gt=0)
    WS_HEARTBEAT_INTERVAL: float = Field(default=DEFAULT_WS_HEARTBEAT_INTERVAL, gt=0)
    WS_MESSAGE_BUFFER_SIZE: int = Field(default=DEFAULT_WS_MESSAGE_BUFFER_SIZE, gt=0)
    WS_HEALTH_CHECK_INTERVAL: float = Field(default=DEFAULT_WS_HEALTH_CHECK_INTERVAL, gt=0)
    WS_CONNECTION_QUALITY_THRESHOLD: float = Field(default=DEFAULT_WS_CONNECTION_QUALITY_THRESHOLD, ge=0, le=1)
    WS_ENABLE_AUTO_RECONNECT: bool = Field(default=True)
    WS_ENABLE_MESSAGE_BUFFERING: bool = Field(default=True)
    WS_ENABLE_HEARTBEAT_MONITORING: bool = Field(default=True)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        return _validate_log_level(v)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    APP_NAME: str = Field(default="LLM Transport Reliability", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from llm_reliability.core.config.settings import get_settings

        settings = get_settings()
        max_conns = settings.connection_pool.POOL_MAX_CONNECTIONS_PER_HOST
        threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
    """

    # Feature toggles (optional capabilities of the enhanced client)
    ENABLE_CACHING: bool = Field(default=True, description="Enable response caching")
    ENABLE_CIRCUIT_BREAKER: bool = Field(default=True, description="Enable circuit breaking")
    ENABLE_METRICS: bool = Field(default=True, description="Enable metrics collection")

    # Connection pool settings
    POOL_MAX_CONNECTIONS_PER_HOST: int = Field(default=DEFAULT_MAX_CONNECTIONS_PER_HOST, gt=0)
    POOL_MIN_CONNECTIONS_PER_HOST: int = Field(default=DEFAULT_MIN_CONNECTIONS_PER_HOST, ge=0)
    POOL_IDLE_TIMEOUT: float = Field(default=DEFAULT_IDLE_TIMEOUT, gt=0)
    POOL_HEALTH_CHECK_INTERVAL: float = Field(default=DEFAULT_HEALTH_CHECK_INTERVAL, gt=0)
    POOL_CONNECTION_WAIT_TIMEOUT: float = Field(default=DEFAULT_CONNECTION_WAIT_TIMEOUT, gt=0)
    POOL_REQUEST_TIMEOUT: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    POOL_CONNECT_TIMEOUT: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)
    POOL_MAX_CONNECTION_FAILURES: int = Field(default=DEFAULT_MAX_CONNECTION_FAILURES, gt=0)
    POOL_ENABLE_CONNECTION_WARMING: bool = Field(default=True)

    # Cache settings
    CACHE_MAX_ENTRIES: int = Field(default=DEFAULT_CACHE_MAX_ENTRIES, gt=0)
    CACHE_DEFAULT_TTL: float = Field(default=DEFAULT_CACHE_TTL, gt=0)
    CACHE_MAX_RESPONSE_SIZE: int = Field(default=DEFAULT_CACHE_MAX_RESPONSE_SIZE, gt=0)
    CACHE_CLEANUP_INTERVAL: float = Field(default=DEFAULT_CACHE_CLEANUP_INTERVAL, gt=0)

    # Circuit Breaker settings
    CB_FAILURE_THRESHOLD: int = Field(default=DEFAULT_CB_FAILURE_THRESHOLD, gt=0)
    CB_RECOVERY_TIMEOUT: float = Field(default=DEFAULT_CB_RECOVERY_TIMEOUT, gt=0)
    CB_SUCCESS_THRESHOLD: int = Field(default=DEFAULT_CB_SUCCESS_THRESHOLD, gt=0)
    CB_HALF_OPEN_MAX_REQUESTS: int = Field(default=DEFAULT_CB_HALF_OPEN_MAX_REQUESTS, gt=0)
    CB_HALF_OPEN_TIMEOUT: float = Field(default=DEFAULT_CB_HALF_OPEN_TIMEOUT, gt=0)

    # Metrics settings
    METRICS_MAX_ENTRIES: int = Field(default=DEFAULT_METRICS_MAX_ENTRIES, gt=0)
    METRICS_COLLECTION_INTERVAL: float = Field(default=DEFAULT_METRICS_COLLECTION_INTERVAL, gt=0)
    METRICS_RETENTION_PERIOD: float = Field(default=DEFAULT_METRICS_RETENTION_PERIOD, gt=0)
    METRICS_NAMESPACE: str = Field(default=DEFAULT_METRICS_NAMESPACE)

    # WebSocket settings
    WS_MAX_RECONNECTION_ATTEMPTS: int = Field(default=DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS, gt=0)
    WS_INITIAL_RECONNECTION_DELAY: float = Field(default=DEFAULT_WS_INITIAL_RECONNECTION_DELAY, gt=0)
    WS_MAX_RECONNECTION_DELAY: float = Field(default=DEFAULT_WS_MAX_RECONNECTION_DELAY, gt=0)
    WS_CONNECTION_TIMEOUT: float = Field(default=DEFAULT_WS_CONNECTION_TIMEOUT, gt=0)
    WS_HEARTBEAT_INTERVAL: float = Field(default=DEFAULT_WS_HEARTBEAT_INTERVAL, gt=0)
    WS_MESSAGE_BUFFER_SIZE: int = Field(default=DEFAULT_WS_MESSAGE_BUFFER_SIZE, gt=0)
    WS_HEALTH_CHECK_INTERVAL: float = Field(default=DEFAULT_WS_HEALTH_CHECK_INTERVAL, gt=0)
    WS_CONNECTION_QUALITY_THRESHOLD: float = Field(default=DEFAULT_WS_CONNECTION_QUALITY_THRESHOLD, ge=0, le=1)
    WS_ENABLE_AUTO_RECONNECT: bool = Field(default=True)
    WS_ENABLE_MESSAGE_BUFFERING: bool = Field(default=True)
    WS_ENABLE_HEARTBEAT_MONITORING: bool = Field(default=True)

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Application environment"
    )
    APP_NAME: str = Field(default="LLM Transport Reliability", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        return _validate_log_level(v)

    @model_validator(mode="after")
    def validate_pool_bounds(self):
        """Reject a warm-pool floor above the per-host ceiling."""
        if self.POOL_MIN_CONNECTIONS_PER_HOST > self.POOL_MAX_CONNECTIONS_PER_HOST:
            raise ValueError(
                "POOL_MIN_CONNECTIONS_PER_HOST cannot exceed POOL_MAX_CONNECTIONS_PER_HOST"
            )
        if self.WS_INITIAL_RECONNECTION_DELAY > self.WS_MAX_RECONNECTION_DELAY:
            raise ValueError(
                "WS_INITIAL_RECONNECTION_DELAY cannot exceed WS_MAX_RECONNECTION_DELAY"
            )
        return self

    # Nested configuration objects
    @property
    def connection_pool(self) -> ConnectionPoolSettings:
        """Get connection pool settings."""
        return ConnectionPoolSettings(
            POOL_MAX_CONNECTIONS_PER_HOST=self.POOL_MAX_CONNECTIONS_PER_HOST,
            POOL_MIN_CONNECTIONS_PER_HOST=self.POOL_MIN_CONNECTIONS_PER_HOST,
            POOL_IDLE_TIMEOUT=self.POOL_IDLE_TIMEOUT,
            POOL_HEALTH_CHECK_INTERVAL=self.POOL_HEALTH_CHECK_INTERVAL,
            POOL_CONNECTION_WAIT_TIMEOUT=self.POOL_CONNECTION_WAIT_TIMEOUT,
            POOL_REQUEST_TIMEOUT=self.POOL_REQUEST_TIMEOUT,
            POOL_CONNECT_TIMEOUT=self.POOL_CONNECT_TIMEOUT,
            POOL_MAX_CONNECTION_FAILURES=self.POOL_MAX_CONNECTION_FAILURES,
            POOL_ENABLE_CONNECTION_WARMING=self.POOL_ENABLE_CONNECTION_WARMING,
        )

    @property
    def cache(self) -> CacheSettings:
        """Get cache settings."""
        return CacheSettings(
            CACHE_MAX_ENTRIES=self.CACHE_MAX_ENTRIES,
            CACHE_DEFAULT_TTL=self.CACHE_DEFAULT_TTL,
            CACHE_MAX_RESPONSE_SIZE=self.CACHE_MAX_RESPONSE_SIZE,
            CACHE_CLEANUP_INTERVAL=self.CACHE_CLEANUP_INTERVAL,
        )

    @property
    def circuit_breaker(self) -> CircuitBreakerSettings:
        """Get circuit breaker settings."""
        return CircuitBreakerSettings(
            CB_FAILURE_THRESHOLD=self.CB_FAILURE_THRESHOLD,
            CB_RECOVERY_TIMEOUT=self.CB_RECOVERY_TIMEOUT,
            CB_SUCCESS_THRESHOLD=self.CB_SUCCESS_THRESHOLD,
            CB_HALF_OPEN_MAX_REQUESTS=self.CB_HALF_OPEN_MAX_REQUESTS,
            CB_HALF_OPEN_TIMEOUT=self.CB_HALF_OPEN_TIMEOUT,
        )

    @property
    def metrics(self) -> MetricsSettings:
        """Get metrics settings."""
        return MetricsSettings(
            METRICS_MAX_ENTRIES=self.METRICS_MAX_ENTRIES,
            METRICS_COLLECTION_INTERVAL=self.METRICS_COLLECTION_INTERVAL,
            METRICS_RETENTION_PERIOD=self.METRICS_RETENTION_PERIOD,
            METRICS_NAMESPACE=self.METRICS_NAMESPACE,
        )

    @property
    def websocket(self) -> WebSocketSettings:
        """Get WebSocket reliability settings."""
        return WebSocketSettings(
            WS_MAX_RECONNECTION_ATTEMPTS=self.WS_MAX_RECONNECTION_ATTEMPTS,
            WS_INITIAL_RECONNECTION_DELAY=self.WS_INITIAL_RECONNECTION_DELAY,
            WS_MAX_RECONNECTION_DELAY=self.WS_MAX_RECONNECTION_DELAY,
            WS_CONNECTION_TIMEOUT=self.WS_CONNECTION_TIMEOUT,
            WS_HEARTBEAT_INTERVAL=self.WS_HEARTBEAT_INTERVAL,
            WS_MESSAGE_BUFFER_SIZE=self.WS_MESSAGE_BUFFER_SIZE,
            WS_HEALTH_CHECK_INTERVAL=self.WS_HEALTH_CHECK_INTERVAL,
            WS_CONNECTION_QUALITY_THRESHOLD=self.WS_CONNECTION_QUALITY_THRESHOLD,
            WS_ENABLE_AUTO_RECONNECT=self.WS_ENABLE_AUTO_RECONNECT,
            WS_ENABLE_MESSAGE_BUFFERING=self.WS_ENABLE_MESSAGE_BUFFERING,
            WS_ENABLE_HEARTBEAT_MONITORING=self.WS_ENABLE_HEARTBEAT_MONITORING,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    @property
    def app(self) -> ApplicationSettings:
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]) or "settings", "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ConfigurationError(
            f"Invalid configuration: {len(errors)} error(s)",
            details={"operation": "load_settings", "errors": errors},
        ) from exc


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    Returns:
        Settings: Global settings instance, created lazily on first access

    Raises:
        ConfigurationError: Environment or .env values failed validation
    """
    global _settings

    if _settings is None:
        _settings = _load_settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance

    Raises:
        ConfigurationError: Environment or .env values failed validation;
            the previous instance is kept
    """
    global _settings
    _settings = _load_settings()
    return _settings
