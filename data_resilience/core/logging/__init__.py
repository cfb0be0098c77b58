"""Structured logging helpers (structlog)."""

from data_resilience.core.logging.logger import (
    clear_query_id,
    get_logger,
    get_query_id,
    log_stage,
    set_query_id,
    setup_logging,
)

__all__ = [
    "clear_query_id",
    "get_logger",
    "get_query_id",
    "log_stage",
    "set_query_id",
    "setup_logging",
]
