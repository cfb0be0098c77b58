"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the resilient data-access layer.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for state management
- Easy to update and track changes
"""

from enum import Enum, IntEnum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages for structured logging.

    Format: {PREFIX}.{SEQUENCE}_{DESCRIPTIVE_NAME}

    Each stage represents a phase of a query's life inside the layer, so a
    single request can be followed through the logs without reading code.

    Examples:
        log_stage(logger, Stage.CACHE_LOOKUP, "Cache hit", cache_key=key)
    """

    # Main query lifecycle (sequential)
    INITIALIZATION = "0.0_INITIALIZATION"
    CACHE_LOOKUP = "1.0_CACHE_LOOKUP"
    DEDUPLICATION = "2.0_DEDUPLICATION"
    CIRCUIT_CHECK = "3.0_CIRCUIT_CHECK"
    BACKEND_CALL = "4.0_BACKEND_CALL"
    CACHE_WRITE = "5.0_CACHE_WRITE"
    FALLBACK = "6.0_FALLBACK"

    # Cross-cutting concerns (alphabetic prefixes)
    CIRCUIT_BREAKER = "CB_CIRCUIT_BREAKER"
    RETRY = "R_RETRY_LOGIC"
    EVICTION = "E_CACHE_EVICTION"
    PERSISTENCE = "P_CACHE_PERSISTENCE"
    NETWORK = "N_NETWORK_MONITOR"
    REFRESH = "B_BACKGROUND_REFRESH"
    REDIRECT = "G_REDIRECT_GUARD"
    METRICS = "M_METRICS_COLLECTION"


# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, requests allowed
    OPEN: Failing fast, requests blocked
    HALF_OPEN: One probe request allowed to test recovery
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# ============================================================================
# Cache Priorities
# ============================================================================


class CachePriority(IntEnum):
    """
    Cache entry priority. Higher value means more important.

    Eviction removes LOW entries first; the scheduler runs CRITICAL
    schedules first.
    """

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


# ============================================================================
# Network Status
# ============================================================================


class NetworkStatusLevel(str, Enum):
    """Connectivity as seen by the network status monitor."""

    ONLINE = "online"
    DEGRADED = "degraded"
    OFFLINE = "offline"


# ============================================================================
# Error Taxonomy
# ============================================================================


class ErrorType(str, Enum):
    """
    Classification of backend failures.

    NETWORK_ERROR and TIMEOUT_ERROR are retried. PERMISSION_ERROR is never
    retried and never masked by cached data. SCHEMA_OR_DATA_ERROR indicates a
    contract bug and is never retried. CIRCUIT_OPEN is synthetic.
    """

    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    PERMISSION_ERROR = "permission_error"
    SCHEMA_OR_DATA_ERROR = "schema_or_data_error"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN_ERROR = "unknown_error"


# ============================================================================
# Recovery
# ============================================================================


class FallbackLevel(IntEnum):
    """Ordered degradation tiers of the recovery orchestrator."""

    NONE = 0
    CACHE_STALE = 1
    CACHE_EXPIRED = 2
    OFFLINE_MODE = 3
    GRACEFUL_DEGRADATION = 4


class ResultSource(str, Enum):
    """Where the data inside a RecoveryResult came from."""

    NETWORK = "network"
    CACHE_FRESH = "cache-fresh"
    CACHE_STALE = "cache-stale"
    CACHE_EXPIRED = "cache-expired"
    OFFLINE = "offline"
    DEGRADED = "degraded"


# ============================================================================
# User Messages
# ============================================================================

MESSAGE_CACHE_FRESH = "Showing saved data"
MESSAGE_CACHE_STALE = "Showing recent data while reconnecting..."
MESSAGE_CACHE_EXPIRED = "Showing older data - some information may be outdated"
MESSAGE_OFFLINE = "You appear to be offline. We'll load this data when the connection is restored."
MESSAGE_CIRCUIT_OPEN = "The service is temporarily unavailable. Please try again shortly."

DEGRADED_MESSAGES: dict[ErrorType, str] = {
    ErrorType.NETWORK_ERROR: (
        "Unable to connect to the server. Please check your internet connection and try again."
    ),
    ErrorType.TIMEOUT_ERROR: "The request is taking longer than expected. Please try again.",
    ErrorType.PERMISSION_ERROR: (
        "You don't have permission to access this data. Please contact your administrator."
    ),
    ErrorType.SCHEMA_OR_DATA_ERROR: (
        "There's a compatibility issue with the data structure. Please refresh the page."
    ),
    ErrorType.CIRCUIT_OPEN: MESSAGE_CIRCUIT_OPEN,
}

DEGRADED_MESSAGE_DEFAULT = (
    "Unable to load {resource} data. Please try again or contact support if the problem persists."
)

# ============================================================================
# Retry Delay Hints (seconds)
# ============================================================================

RETRY_HINT_STALE = 2.0
RETRY_HINT_EXPIRED = 5.0
RETRY_HINT_OFFLINE = 10.0
RETRY_HINT_DEGRADED_BASE = 2.0
RETRY_HINT_DEGRADED_MAX = 30.0
RETRY_HINT_JITTER_MAX = 1.0

# Window used by recovery statistics ("recent recoveries")
RECENT_RECOVERY_WINDOW_SECONDS = 300.0

# ============================================================================
# Cache Keys
# ============================================================================

CACHE_KEY_PREFIX = "cache"
CACHE_KEY_EMPTY_SCOPE = "-"
PERSISTENCE_KEY_PREFIX = "data_resilience:entry"

# Entries older than expire_time * this factor are removed by sweeps
SWEEP_EXPIRED_FACTOR = 2.0
