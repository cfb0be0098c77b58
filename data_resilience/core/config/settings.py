#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
whole data-access layer. All tunables (thresholds, intervals, budgets) live
here so each component reads one consistent source.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing: every component also accepts explicit overrides
"""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """
    Cache store budgets and default freshness windows.

    STAGE-1: Cache configuration

    Durations are in seconds. Resource specific windows live in
    `infrastructure.cache.strategies`; these defaults apply to unknown
    resources.
    """

    CACHE_MAX_ENTRIES: int = Field(default=1000, ge=1, description="Maximum number of cache entries")
    CACHE_MAX_SIZE_BYTES: int = Field(
        default=50 * 1024 * 1024, ge=1, description="Total payload size budget (50MB)"
    )
    CACHE_DEFAULT_STALE_TIME: float = Field(default=5.0, ge=0, description="Default stale window")
    CACHE_DEFAULT_EXPIRE_TIME: float = Field(default=60.0, ge=0, description="Default expire window")
    CACHE_SWEEP_INTERVAL: float = Field(
        default=60.0, gt=0, description="Seconds between memory-bounding sweeps"
    )

    @model_validator(mode="after")
    def check_windows(self):
        """Stale window must not exceed the expire window."""
        if self.CACHE_DEFAULT_STALE_TIME > self.CACHE_DEFAULT_EXPIRE_TIME:
            raise ValueError("CACHE_DEFAULT_STALE_TIME must be <= CACHE_DEFAULT_EXPIRE_TIME")
        return self

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class CircuitBreakerSettings(BaseSettings):
    """
    Circuit breaker configuration for fault tolerance.

    STAGE-CB: Circuit breaker thresholds

    A failed HALF_OPEN probe multiplies the reset timeout by
    CB_TIMEOUT_MULTIPLIER, capped at CB_MAX_RECOVERY_TIMEOUT.
    """

    CB_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Failures before opening circuit")
    CB_RECOVERY_TIMEOUT: float = Field(default=30.0, gt=0, description="Seconds before a probe")
    CB_TIMEOUT_MULTIPLIER: float = Field(default=2.0, ge=1.0, description="Backoff for failed probes")
    CB_MAX_RECOVERY_TIMEOUT: float = Field(default=300.0, gt=0, description="Reset timeout cap")

    @model_validator(mode="after")
    def check_cap(self):
        if self.CB_MAX_RECOVERY_TIMEOUT < self.CB_RECOVERY_TIMEOUT:
            raise ValueError("CB_MAX_RECOVERY_TIMEOUT must be >= CB_RECOVERY_TIMEOUT")
        return self

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class RetrySettings(BaseSettings):
    """
    Foreground retry policy.

    STAGE-R: Retry configuration
    """

    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Total attempts including the first")
    RETRY_BASE_DELAY: float = Field(default=1.0, ge=0, description="Delay before the second attempt")
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1.0, description="Exponential factor")
    RETRY_JITTER_FRACTION: float = Field(default=0.1, ge=0, le=1, description="+/- jitter fraction")
    RETRY_MAX_DELAY: float = Field(default=10.0, ge=0, description="Upper bound for a single delay")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class NetworkMonitorSettings(BaseSettings):
    """
    Network status monitor configuration.

    STAGE-N: Connectivity probing
    """

    NETWORK_PROBE_URL: str | None = Field(
        default=None, description="Backend health endpoint probed with HEAD requests"
    )
    NETWORK_PROBE_INTERVAL: float = Field(default=5.0, gt=0, description="Seconds between probes")
    NETWORK_PROBE_TIMEOUT: float = Field(default=3.0, gt=0, description="Probe request timeout")
    NETWORK_OFFLINE_THRESHOLD: int = Field(
        default=3, ge=1, description="Consecutive probe failures before OFFLINE"
    )
    NETWORK_DEGRADED_LATENCY_MS: float = Field(
        default=1000.0, gt=0, description="Probe latency above which status is DEGRADED"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class RefreshSchedulerSettings(BaseSettings):
    """
    Background refresh scheduler configuration.

    STAGE-B: Background refresh

    REFRESH_FAILURES_TRIP_BREAKER decides whether a failed background refresh
    counts against the circuit breaker exactly like a foreground failure.
    Off by default: background failures are only recorded in scheduler
    metrics so idle refreshes cannot open a circuit on their own. A refresh
    that ran as the HALF_OPEN probe and failed still re-opens the circuit.
    """

    REFRESH_ENABLED: bool = Field(default=True, description="Seed and run default schedules")
    REFRESH_MIN_INTERVAL: float = Field(
        default=30.0, gt=0, description="Lower bound for any schedule interval"
    )
    REFRESH_MAX_CONCURRENT: int = Field(default=3, ge=1, description="Refreshes running at once")
    REFRESH_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Attempts per background refresh")
    REFRESH_BASE_DELAY: float = Field(default=2.0, ge=0, description="Backoff base for refreshes")
    REFRESH_FAILURES_TRIP_BREAKER: bool = Field(
        default=False, description="Count background failures against the breaker"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class RedirectGuardSettings(BaseSettings):
    """
    Redirect loop protection.

    STAGE-G: Redirect guard
    """

    REDIRECT_MAX_PER_WINDOW: int = Field(default=5, ge=1, description="K: redirects allowed per window")
    REDIRECT_WINDOW_MS: float = Field(default=3000.0, gt=0, description="W: rolling window length")
    REDIRECT_COOLDOWN_MS: float = Field(
        default=0.0, ge=0, description="Minimum gap between two redirects"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class PersistenceSettings(BaseSettings):
    """
    Durable mirror for cache entries flagged `persist`.

    STAGE-P: Cache persistence
    """

    PERSISTENCE_BACKEND: Literal["none", "memory", "redis"] = Field(
        default="none", description="Where persisted entries are mirrored"
    )
    REDIS_URL: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    PERSISTENCE_KEY_TTL: int = Field(
        default=86400, ge=1, description="TTL of mirrored entries in seconds (24 hours)"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True, extra="ignore")


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from data_resilience.core.config.settings import get_settings

        settings = get_settings()
        threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
        window = settings.redirect.REDIRECT_WINDOW_MS
    """

    APP_NAME: str = Field(default="Practice Data Access Layer", description="Application name")
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Application environment"
    )

    cache: CacheSettings = Field(default_factory=CacheSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    network: NetworkMonitorSettings = Field(default_factory=NetworkMonitorSettings)
    refresh: RefreshSchedulerSettings = Field(default_factory=RefreshSchedulerSettings)
    redirect: RedirectGuardSettings = Field(default_factory=RedirectGuardSettings)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (lazily created).

    Components take an explicit `settings` argument and only fall back to
    this when none is given.
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from the environment (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
