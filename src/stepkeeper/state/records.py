"""Versioned persisted record schemas.

Two records are written under independent keys:

- tracking record: the mutable TrackingState plus the lifetime total
- history record: ``{"version": 1, "sessions": [{steps, startTime, endTime}, ...]}``

Parsing is strict and granular. A tracking record that fails validation is
reported as corrupt as a whole; a history record is validated entry by
entry so that one bad session never costs the rest of the history.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from stepkeeper.errors import PersistenceCorruptError
from stepkeeper.models import DEFAULT_SERIES, Session, SourceCursor, TrackingState, ensure_utc

logger = logging.getLogger(__name__)

TRACKING_KEY = "stepkeeper.tracking"
HISTORY_KEY = "stepkeeper.history"

RECORD_VERSION = 1


class SourceRecord(BaseModel):
    """Persisted shape of one source cursor."""

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    series: str = DEFAULT_SERIES
    offset: int = 0
    last_raw: int | None = Field(default=None, ge=0)


class TrackingRecord(BaseModel):
    """Persisted shape of the tracking state."""

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    version: Literal[1] = RECORD_VERSION
    is_tracking: bool = False
    start_time: datetime | None = None
    session_steps: int = Field(default=0, ge=0)
    session_baseline: int | None = None
    last_observed_cumulative: int | None = None
    lifetime_total: int = Field(default=0, ge=0)
    system_cumulative: int = Field(default=0, ge=0)
    sources: dict[str, SourceRecord] = Field(default_factory=dict)
    last_checkpoint_time: datetime | None = None

    @field_validator("start_time", "last_checkpoint_time")
    @classmethod
    def validate_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else ensure_utc(v)

    @classmethod
    def from_state(cls, state: TrackingState, lifetime_total: int) -> TrackingRecord:
        """Build a record from the live state."""
        return cls(
            is_tracking=state.is_tracking,
            start_time=state.session_start_time,
            session_steps=state.session_steps,
            session_baseline=state.session_baseline,
            last_observed_cumulative=state.last_observed_cumulative,
            lifetime_total=lifetime_total,
            system_cumulative=state.system_cumulative,
            sources={
                name: SourceRecord(series=c.series, offset=c.offset, last_raw=c.last_raw)
                for name, c in state.sources.items()
            },
            last_checkpoint_time=state.last_checkpoint_time,
        )

    def to_state(self) -> TrackingState:
        """Rehydrate a live TrackingState from this record."""
        return TrackingState(
            is_tracking=self.is_tracking,
            session_start_time=self.start_time,
            session_baseline=self.session_baseline,
            session_steps=self.session_steps,
            last_observed_cumulative=self.last_observed_cumulative,
            last_checkpoint_time=self.last_checkpoint_time,
            system_cumulative=self.system_cumulative,
            sources={
                name: SourceCursor(series=r.series, offset=r.offset, last_raw=r.last_raw)
                for name, r in self.sources.items()
            },
        )


def encode_tracking(record: TrackingRecord) -> str:
    """Serialize a tracking record to JSON."""
    return record.model_dump_json(by_alias=True)


def decode_tracking(raw: str) -> TrackingRecord:
    """Parse a tracking record.

    Raises:
        PersistenceCorruptError: If the JSON or its schema is invalid
    """
    try:
        return TrackingRecord.model_validate_json(raw)
    except ValidationError as e:
        msg = f"Invalid tracking record: {e.error_count()} error(s)"
        raise PersistenceCorruptError(msg, key=TRACKING_KEY) from e


def encode_history(sessions: list[Session]) -> str:
    """Serialize the session history to JSON."""
    return json.dumps({
        "version": RECORD_VERSION,
        "sessions": [s.model_dump(mode="json", by_alias=True) for s in sessions],
    })


def decode_history(raw: str) -> tuple[list[Session], int]:
    """Parse the session history, skipping individual corrupt entries.

    Accepts the versioned object form and a bare list of sessions.

    Args:
        raw: Stored history JSON

    Returns:
        Tuple of (valid sessions in stored order, number of skipped entries)

    Raises:
        PersistenceCorruptError: If the record as a whole is unreadable
    """
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        msg = f"History record is not valid JSON: {e}"
        raise PersistenceCorruptError(msg, key=HISTORY_KEY) from e

    if isinstance(data, dict):
        if data.get("version", RECORD_VERSION) != RECORD_VERSION:
            msg = f"Unsupported history record version: {data.get('version')!r}"
            raise PersistenceCorruptError(msg, key=HISTORY_KEY)
        entries = data.get("sessions", [])
    else:
        entries = data

    if not isinstance(entries, list):
        msg = "History record must hold a list of sessions"
        raise PersistenceCorruptError(msg, key=HISTORY_KEY)

    sessions: list[Session] = []
    skipped = 0
    for index, entry in enumerate(entries):
        try:
            sessions.append(Session.model_validate(entry))
        except ValidationError as e:
            skipped += 1
            logger.warning(
                "Skipping corrupt history entry %d: %d error(s)",
                index,
                e.error_count(),
            )

    return sessions, skipped
