"""Protocols and contracts shared between layers."""

from data_resilience.core.interfaces.backend import (
    BackendOperation,
    BackendResponse,
    unwrap_response,
)
from data_resilience.core.interfaces.cache import CachePersistence

__all__ = ["BackendOperation", "BackendResponse", "CachePersistence", "unwrap_response"]
