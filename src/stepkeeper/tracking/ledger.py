"""Session ledger: completed sessions and the lifetime total."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from stepkeeper.errors import PreconditionFailure

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from stepkeeper.models import Session

logger = logging.getLogger(__name__)


class SessionLedger:
    """Append-mostly history of completed sessions.

    The lifetime total is the sum of the history plus ``carried_total``, the
    steps of sessions removed by ``clear``. Clearing history keeps the
    total; ``reset_lifetime_total`` zeroes it once the history is empty.

    Invariants:
        - lifetime_total == carried_total + sum(s.steps for s in history)
        - sessions are kept in completion order
    """

    def __init__(
        self,
        sessions: Iterable[Session] = (),
        *,
        carried_total: int = 0,
    ) -> None:
        self._sessions: list[Session] = list(sessions)
        self._history_total = sum(s.steps for s in self._sessions)
        self._carried_total = max(carried_total, 0)

    @classmethod
    def restore(cls, sessions: Iterable[Session], lifetime_total: int | None) -> SessionLedger:
        """Rebuild a ledger from persisted history and a persisted total.

        A missing total, or one smaller than the history it must contain, is
        recomputed from the history.
        """
        ledger = cls(sessions)
        if lifetime_total is None:
            return ledger
        carried = lifetime_total - ledger._history_total
        if carried < 0:
            logger.warning(
                "Persisted lifetime total %d is below history sum %d; recomputing",
                lifetime_total,
                ledger._history_total,
            )
            carried = 0
        ledger._carried_total = carried
        return ledger

    @property
    def lifetime_total(self) -> int:
        """Steps of all completed sessions, including cleared ones."""
        return self._carried_total + self._history_total

    @property
    def carried_total(self) -> int:
        return self._carried_total

    def __len__(self) -> int:
        return len(self._sessions)

    def append(self, session: Session) -> None:
        """Record a completed session and fold its steps into the total."""
        self._sessions.append(session)
        self._history_total += session.steps

    def history(self) -> Sequence[Session]:
        """Return the completed sessions in completion order (read-only)."""
        return tuple(self._sessions)

    def total(self, is_tracking: bool, session_steps: int) -> int:
        """Externally visible total, including the open session if any."""
        return self.lifetime_total + (session_steps if is_tracking else 0)

    def clear(self, is_tracking: bool) -> PreconditionFailure | None:
        """Remove all sessions, keeping their steps in the lifetime total.

        Returns:
            None on success, TRACKING_ACTIVE if a session is open
        """
        if is_tracking:
            return PreconditionFailure.TRACKING_ACTIVE
        self._carried_total += self._history_total
        self._sessions.clear()
        self._history_total = 0
        return None

    def reset_lifetime_total(self, is_tracking: bool) -> PreconditionFailure | None:
        """Zero the lifetime total.

        Returns:
            None on success, HISTORY_NOT_EMPTY if sessions remain or a
            session is open
        """
        if self._sessions or is_tracking:
            return PreconditionFailure.HISTORY_NOT_EMPTY
        self._carried_total = 0
        return None
