"""
Per-Resource Cache Strategies

Freshness windows and priorities for every resource the layer knows about.
Durations are seconds.

    stale_time   - data younger than this is fresh
    expire_time  - data older than this is expired (last-resort fallback only)
    priority     - eviction order (LOW goes first) and refresh order
    background_refresh - whether the scheduler keeps the entry warm
    persist      - whether the entry is mirrored to durable storage
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from data_resilience.core.config.constants import CachePriority
from data_resilience.core.config.settings import CacheSettings


class CacheConfig(BaseModel):
    """Freshness policy applied when an entry is written."""

    model_config = ConfigDict(frozen=True)

    stale_time: float = Field(ge=0)
    expire_time: float = Field(ge=0)
    priority: CachePriority = CachePriority.MEDIUM
    background_refresh: bool = False
    persist: bool = False

    @model_validator(mode="after")
    def check_windows(self):
        if self.stale_time > self.expire_time:
            raise ValueError("stale_time must be <= expire_time")
        return self


CACHE_STRATEGIES: dict[str, CacheConfig] = {
    # Session and role data survive restarts
    "profiles": CacheConfig(
        stale_time=60, expire_time=300, priority=CachePriority.HIGH, persist=True
    ),
    "settings": CacheConfig(
        stale_time=300,
        expire_time=1800,
        priority=CachePriority.CRITICAL,
        background_refresh=True,
        persist=True,
    ),
    # Core business data
    "clinicians": CacheConfig(
        stale_time=30, expire_time=300, priority=CachePriority.HIGH, background_refresh=True
    ),
    "customers": CacheConfig(
        stale_time=60, expire_time=600, priority=CachePriority.MEDIUM, background_refresh=True
    ),
    "appointments": CacheConfig(
        stale_time=30, expire_time=180, priority=CachePriority.MEDIUM, background_refresh=True
    ),
    "treatments": CacheConfig(stale_time=120, expire_time=600, priority=CachePriority.MEDIUM),
    "treatment_approaches": CacheConfig(
        stale_time=600, expire_time=3600, priority=CachePriority.HIGH, background_refresh=True
    ),
    # Reporting data
    "analytics": CacheConfig(stale_time=300, expire_time=1800, priority=CachePriority.LOW),
    "logs": CacheConfig(stale_time=600, expire_time=3600, priority=CachePriority.LOW),
}


def default_cache_config(settings: CacheSettings | None = None) -> CacheConfig:
    """Policy for resources without a dedicated strategy."""
    settings = settings or CacheSettings()
    return CacheConfig(
        stale_time=settings.CACHE_DEFAULT_STALE_TIME,
        expire_time=settings.CACHE_DEFAULT_EXPIRE_TIME,
        priority=CachePriority.LOW,
    )


def get_cache_config(resource: str, settings: CacheSettings | None = None) -> CacheConfig:
    """Strategy for `resource`, falling back to the configured default."""
    strategy = CACHE_STRATEGIES.get(resource)
    if strategy is not None:
        return strategy
    return default_cache_config(settings)
