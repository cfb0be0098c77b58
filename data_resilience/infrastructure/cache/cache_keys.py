"""
Typed Cache Keys

Every cache key is built from a `CacheKey` model instead of ad-hoc string
concatenation, so two call sites asking for the same data always land on the
same entry and prefix invalidation is reliable.

Rendered format:

    cache:<resource>:<tenant_id|->:<user_id|->:<params_hash>

The params hash is the MD5 of the orjson encoding with sorted keys, so
parameter order never changes the key.
Unserializable parameters are rejected when the `CacheKey` is built.
"""

import hashlib
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from data_resilience.core.config.constants import CACHE_KEY_EMPTY_SCOPE, CACHE_KEY_PREFIX
from data_resilience.core.exceptions import CacheKeyError

_SEPARATOR = ":"


def hash_params(params: dict[str, Any]) -> str:
    """Stable hash of query parameters (order independent)."""
    if not params:
        return "none"
    try:
        encoded = orjson.dumps(params, option=orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS)
    except TypeError as e:
        raise CacheKeyError(
            f"Cache key parameters are not serializable: {e}",
            details={"params": repr(params)},
        ) from e
    return hashlib.md5(encoded).hexdigest()


class CacheKey(BaseModel):
    """
    Structured identity of one cached query.

    Example:
        key = CacheKey(resource="clients", params={"page": 1}, tenant_id="clinic-7")
        key.render()  # 'cache:clients:clinic-7:-:<hash>'
    """

    model_config = ConfigDict(frozen=True)

    resource: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    tenant_id: str | None = None
    user_id: str | None = None

    @field_validator("resource", "tenant_id", "user_id")
    @classmethod
    def no_separator(cls, v):
        if v is not None and _SEPARATOR in v:
            raise ValueError(f"cache key parts must not contain '{_SEPARATOR}'")
        return v

    @field_validator("params")
    @classmethod
    def params_serializable(cls, v):
        try:
            hash_params(v)
        except CacheKeyError as e:
            raise ValueError(e.message) from e
        return v

    def render(self) -> str:
        return _SEPARATOR.join(
            [
                CACHE_KEY_PREFIX,
                self.resource,
                self.tenant_id or CACHE_KEY_EMPTY_SCOPE,
                self.user_id or CACHE_KEY_EMPTY_SCOPE,
                hash_params(self.params),
            ]
        )

    def metadata(self) -> dict[str, Any]:
        """Source metadata stored alongside the cache entry."""
        return {
            "resource": self.resource,
            "params": self.params,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
        }

    def __str__(self) -> str:
        return self.render()


def resource_prefix(resource: str, tenant_id: str | None = None) -> str:
    """
    Prefix matching every key of `resource` (optionally one tenant only).

    Used with `CacheStore.invalidate(prefix, prefix=True)`.
    """
    parts = [CACHE_KEY_PREFIX, resource]
    if tenant_id is not None:
        parts.append(tenant_id)
    return _SEPARATOR.join(parts) + _SEPARATOR


def resource_from_key(key: str) -> str:
    """Best-effort resource name of a rendered key (the key itself otherwise)."""
    parts = key.split(_SEPARATOR)
    if len(parts) >= 2 and parts[0] == CACHE_KEY_PREFIX:
        return parts[1]
    return key
