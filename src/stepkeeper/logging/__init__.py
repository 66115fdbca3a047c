"""Logging module for stepkeeper.

This module provides structured JSON logging with:
- structlog configuration for consistent log formatting
- Secret redaction for provider tokens
- Structured log events for reconciliation, recovery and persistence

Usage:
    from stepkeeper.logging import configure_logging, log_session_closed

    configure_logging(verbose=True)
"""

from stepkeeper.logging.events import (
    configure_logging,
    get_logger,
    log_counter_reset,
    log_flush,
    log_reading_reconciled,
    log_recovery,
    log_session_closed,
    log_source_error,
    redact_secrets,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "log_counter_reset",
    "log_flush",
    "log_reading_reconciled",
    "log_recovery",
    "log_session_closed",
    "log_source_error",
    "redact_secrets",
]
