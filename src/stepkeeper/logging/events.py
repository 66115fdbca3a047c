"""Structured JSON logging for the tracking engine.

This module provides:
- structlog configuration for JSON logging to stderr
- Secret redaction for provider bearer tokens
- Structured log events for reconciliation, recovery, session close and flushes
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from structlog.typing import EventDict, WrappedLogger

SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(Bearer\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(token[=:]\s*['\"]?)([A-Za-z0-9._-]{12,})", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(authorization[=:]\s*['\"]?)([^\s'\"]+)", re.IGNORECASE), r"\1[REDACTED]"),
]

SECRET_KEYS = frozenset({"token", "authorization", "provider_token"})


def redact_secrets(value: Any) -> Any:
    """Redact sensitive values from a string, dict, or list.

    Dict entries whose key names a secret are replaced wholesale; strings
    are scrubbed with SECRET_PATTERNS.

    Args:
        value: Value to redact. Can be str, dict, list, or other.

    Returns:
        Value with sensitive data redacted
    """
    if isinstance(value, str):
        result = value
        for pattern, replacement in SECRET_PATTERNS:
            result = pattern.sub(replacement, result)
        return result

    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if k in SECRET_KEYS and v else redact_secrets(v)
            for k, v in value.items()
        }

    if isinstance(value, list):
        return [redact_secrets(item) for item in value]

    return value


def _redact_processor(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """structlog processor that redacts secrets from log events."""
    return redact_secrets(event_dict)


def configure_logging(
    verbose: bool = False,
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    Sets up structlog with JSON formatting to stderr, including ISO UTC
    timestamps, log level, secret redaction and exception formatting.
    Stdlib loggers used inside the library are routed to stderr at the same
    level.

    Args:
        verbose: If True, enable DEBUG level. Otherwise INFO.
        json_output: If True, output JSON. Otherwise use console format.
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        level=level,
    )

    processors: list[Callable[..., Any]] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


# Structured log event helpers


def log_reading_reconciled(
    source: str,
    cumulative: int,
    outcome: str,
    delta: int,
    session_steps: int,
) -> None:
    """Log the outcome of reconciling one counter reading.

    Args:
        source: Which counter source produced the reading
        cumulative: Raw cumulative value reported
        outcome: Reconciliation outcome (e.g. 'counted', 'duplicate')
        delta: Steps attributed to the session by this reading
        session_steps: Session steps after the update
    """
    log = get_logger("stepkeeper.reconcile")
    log.debug(
        "reading_reconciled",
        source=source,
        cumulative=cumulative,
        outcome=outcome,
        delta=delta,
        session_steps=session_steps,
    )


def log_counter_reset(
    source: str,
    previous: int,
    reported: int,
    offset: int,
) -> None:
    """Log a detected counter reset (device reboot, sensor restart).

    Args:
        source: Which counter source reported the lower value
        previous: Last observed normalized cumulative value
        reported: Raw value that triggered the reset
        offset: New normalization offset for the source
    """
    log = get_logger("stepkeeper.reconcile")
    log.warning(
        "counter_reset",
        source=source,
        previous=previous,
        reported=reported,
        offset=offset,
    )


def log_session_closed(
    steps: int,
    start_time: str,
    end_time: str,
    lifetime_total: int,
    reason: str = "stop",
) -> None:
    """Log a session being folded into history.

    Args:
        steps: Steps recorded by the session
        start_time: ISO start time
        end_time: ISO end time
        lifetime_total: Lifetime total after the fold
        reason: Why the session closed ('stop' or 'stale')
    """
    log = get_logger("stepkeeper.ledger")
    log.info(
        "session_closed",
        steps=steps,
        start_time=start_time,
        end_time=end_time,
        lifetime_total=lifetime_total,
        reason=reason,
    )


def log_recovery(
    outcome: str,
    recovered_steps: int = 0,
    session_steps: int = 0,
) -> None:
    """Log the one-time recovery pass at startup.

    Args:
        outcome: What recovery did ('gap_attributed', 'restarted', ...)
        recovered_steps: Steps attributed for the time the process was down
        session_steps: Session steps after recovery
    """
    log = get_logger("stepkeeper.recovery")
    log.info(
        "recovery",
        outcome=outcome,
        recovered_steps=recovered_steps,
        session_steps=session_steps,
    )


def log_flush(
    reason: str,
    is_tracking: bool,
    session_steps: int,
    sessions: int,
    ok: bool = True,
    error: str | None = None,
) -> None:
    """Log a persistence flush.

    Args:
        reason: What triggered the flush ('start', 'interval', 'pause', ...)
        is_tracking: Tracking status written
        session_steps: Session steps written
        sessions: Number of history entries written
        ok: Whether both keys were written
        error: Error message if the flush failed
    """
    log = get_logger("stepkeeper.persistence")
    log_func = log.debug if ok else log.warning
    log_func(
        "state_flushed",
        reason=reason,
        is_tracking=is_tracking,
        session_steps=session_steps,
        sessions=sessions,
        ok=ok,
        error=error,
    )


def log_source_error(
    source: str,
    error: str,
    retry_in: float | None = None,
) -> None:
    """Log a counter source failure that degraded to "no update this cycle".

    Args:
        source: Which counter source failed
        error: Error description
        retry_in: Seconds until the next attempt, if one is scheduled
    """
    log = get_logger("stepkeeper.sources")
    log.warning(
        "source_error",
        source=source,
        error=error,
        retry_in=retry_in,
    )
