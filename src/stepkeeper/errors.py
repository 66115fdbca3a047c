"""Exception types and precondition failures shared across stepkeeper.

Exceptions are raised at the source/store boundaries and caught by the
tracker, which degrades to "no update this cycle". Precondition failures on
administrative operations are not exceptions: the ledger returns a
PreconditionFailure and the public API turns it into ``False``.
"""

from __future__ import annotations

from enum import Enum


class StepKeeperError(Exception):
    """Base class for stepkeeper errors."""


class SourceUnavailableError(StepKeeperError):
    """Raised when a counter source cannot be reached or queried."""

    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source


class AuthorizationDeniedError(SourceUnavailableError):
    """Raised when a counter source refuses access to step data.

    Not fatal: tracking keeps running on other sources and picks this one up
    again once access is granted.
    """

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, source=source)
        self.status_code = status_code


class PersistenceCorruptError(StepKeeperError):
    """Raised when a stored record cannot be parsed.

    Attributes:
        key: Store key of the corrupt record
    """

    def __init__(self, message: str, *, key: str) -> None:
        super().__init__(message)
        self.key = key


class StoreError(StepKeeperError):
    """Raised when the durable store cannot be opened, read or written."""


class PreconditionFailure(str, Enum):
    """Why an administrative operation was refused."""

    TRACKING_ACTIVE = "tracking_active"
    HISTORY_NOT_EMPTY = "history_not_empty"
