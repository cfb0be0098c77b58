"""
Unit Tests for Configuration Constants

Tests enum ordering and message tables the rest of the layer relies on.
"""

import pytest

from data_resilience.core.config.constants import (
    DEGRADED_MESSAGE_DEFAULT,
    DEGRADED_MESSAGES,
    CachePriority,
    ErrorType,
    FallbackLevel,
    ResultSource,
    Stage,
)


@pytest.mark.unit
class TestEnums:
    def test_priority_order(self):
        assert CachePriority.LOW < CachePriority.MEDIUM < CachePriority.HIGH
        assert CachePriority.HIGH < CachePriority.CRITICAL

    def test_fallback_levels_are_ordered(self):
        levels = [
            FallbackLevel.NONE,
            FallbackLevel.CACHE_STALE,
            FallbackLevel.CACHE_EXPIRED,
            FallbackLevel.OFFLINE_MODE,
            FallbackLevel.GRACEFUL_DEGRADATION,
        ]
        assert levels == sorted(levels)

    def test_result_source_values(self):
        assert ResultSource.CACHE_STALE.value == "cache-stale"
        assert ResultSource.NETWORK.value == "network"

    def test_stage_values_are_unique(self):
        values = [stage.value for stage in Stage]
        assert len(values) == len(set(values))


@pytest.mark.unit
class TestMessages:
    def test_every_real_error_type_has_a_message_except_unknown(self):
        for error_type in ErrorType:
            if error_type == ErrorType.UNKNOWN_ERROR:
                assert error_type not in DEGRADED_MESSAGES
            else:
                assert DEGRADED_MESSAGES[error_type]

    def test_default_message_names_resource(self):
        assert "customers" in DEGRADED_MESSAGE_DEFAULT.format(resource="customers")
