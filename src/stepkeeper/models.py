"""Domain models for step tracking.

- TrackingState: the single live, mutable tracking state
- SourceCursor: one source's position on the normalized count
- Session: an immutable completed tracking session
- Reading: one cumulative counter value from a source
- StepSnapshot: the state published to subscribers
- LifecycleEvent / ReadingSource / TrackingStatus: plain enums
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# Counter series of sources that report the same cumulative count
DEFAULT_SERIES = "steps"


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TrackingStatus(str, Enum):
    """Tracking state machine states."""

    IDLE = "idle"
    TRACKING = "tracking"


class ReadingSource(str, Enum):
    """Where a cumulative reading came from."""

    SENSOR = "sensor"
    PROVIDER = "provider"
    RECOVERY = "recovery"


class LifecycleEvent(str, Enum):
    """Host application lifecycle edges."""

    RESUMED = "resumed"
    PAUSED = "paused"
    DETACHED = "detached"


class Session(BaseModel):
    """A completed tracking session.

    Serialized with camelCase keys: ``{"steps", "startTime", "endTime"}``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    steps: int = Field(..., ge=0, description="Steps taken during the session")
    start_time: datetime = Field(..., description="When tracking started")
    end_time: datetime = Field(..., description="When tracking stopped")

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def validate_interval(self) -> Session:
        """Ensure the session does not end before it starts."""
        if self.end_time < self.start_time:
            msg = "end_time must not be earlier than start_time"
            raise ValueError(msg)
        return self

    @property
    def duration_seconds(self) -> float:
        """Session length in seconds."""
        return (self.end_time - self.start_time).total_seconds()


class Reading(BaseModel):
    """A cumulative counter value reported by a source."""

    model_config = ConfigDict(frozen=True)

    source: ReadingSource = Field(..., description="Which source reported the value")
    cumulative: int = Field(..., ge=0, description="Raw cumulative step count")
    series: str = Field(
        default=DEFAULT_SERIES,
        min_length=1,
        description="Counter the value belongs to; sources on one series count the same steps",
    )
    observed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the source observed the value",
    )


class StepSnapshot(BaseModel):
    """Consistent view of the tracker published to subscribers."""

    model_config = ConfigDict(frozen=True)

    total_steps: int = Field(..., description="Lifetime total including the open session")
    system_cumulative: int = Field(..., description="Last raw counter value from any source")
    session_steps: int = Field(..., description="Steps in the current session")
    is_tracking: bool = Field(..., description="Whether a session is open")


@dataclass
class SourceCursor:
    """Where one source sits on the normalized count.

    Attributes:
        series: Counter series the source reports
        offset: Added to the source's raw values to normalize them
        last_raw: Last raw value the source reported, used to tell a
                  counter restart apart from a source lagging behind
    """

    series: str = DEFAULT_SERIES
    offset: int = 0
    last_raw: int | None = None


@dataclass
class TrackingState:
    """Live tracking state, owned by the engine.

    Attributes:
        is_tracking: Whether a session is open
        session_start_time: When the open session started
        session_baseline: Normalized cumulative value the session is measured
                          from; None until the first reading after start
        session_steps: Steps attributed to the open session
        last_observed_cumulative: Highest normalized cumulative value seen
        last_checkpoint_time: Time of the last successful reconciliation
        system_cumulative: Last raw value reported by any source
        sources: Cursor per source name, mapping each source's raw values
                 onto one normalized count that stays monotonic across
                 counter resets

    Invariants:
        - session_steps never decreases while is_tracking
        - last_observed_cumulative never decreases
        - session_baseline is set only while a session is open
    """

    is_tracking: bool = False
    session_start_time: datetime | None = None
    session_baseline: int | None = None
    session_steps: int = 0
    last_observed_cumulative: int | None = None
    last_checkpoint_time: datetime | None = None
    system_cumulative: int = 0
    sources: dict[str, SourceCursor] = field(default_factory=dict)

    @property
    def status(self) -> TrackingStatus:
        return TrackingStatus.TRACKING if self.is_tracking else TrackingStatus.IDLE

    def normalize(self, raw: int, source: str) -> int:
        """Map a raw value from ``source`` onto the normalized count."""
        cursor = self.sources.get(source)
        return raw if cursor is None else raw + cursor.offset

    def observe(self, value: int, raw: int, now: datetime) -> None:
        """Record normalized ``value`` (reported as ``raw``) as the last observed count."""
        self.last_observed_cumulative = value
        self.system_cumulative = raw
        self.last_checkpoint_time = now

    def open_session(self, now: datetime, baseline: int | None) -> None:
        """Start a new session measured from ``baseline``."""
        self.is_tracking = True
        self.session_start_time = now
        self.session_baseline = baseline
        self.session_steps = 0

    def clear_session(self) -> None:
        """Reset session-scoped fields to "no active session"."""
        self.is_tracking = False
        self.session_start_time = None
        self.session_baseline = None
        self.session_steps = 0
