"""Pydantic schema models for configuration.

This module defines all configuration models:
- Config: Top-level configuration container
- TrackingConfig: Session engine timing and thresholds
- ProviderConfig: Poll-based health-data provider
- SensorConfig: Push-style step sensor stream
- StateConfig: State storage settings
- NotificationConfig: Tracking notification texts
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from stepkeeper.models import DEFAULT_SERIES
from stepkeeper.paths import get_default_state_dir


class TrackingConfig(BaseModel):
    """Session engine settings.

    Attributes:
        staleness_hours: Sessions older than this are force-closed on recovery
        save_interval: Seconds between periodic flushes while tracking
        refresh_interval: Seconds between foreground refresh ticks
        stale_after: Seconds without a reading before the refresh tick
                     reconnects the sensor and re-polls the provider
        reset_tolerance: How far (in steps) a reading may fall below the last
                         observed value before it counts as a counter reset
        baseline_max_age: Max age in seconds of the last observed value for it
                          to be reused as a session baseline at start
        io_timeout: Upper bound in seconds for any single source or store call
        retry_step: Sensor reconnect delay per failed attempt, in seconds
        retry_max: Cap on the sensor reconnect delay, in seconds
    """

    model_config = ConfigDict(extra="forbid")

    staleness_hours: Annotated[float, Field(gt=0, le=168)] = 12
    save_interval: Annotated[float, Field(gt=0, le=3600)] = 10
    refresh_interval: Annotated[float, Field(gt=0, le=3600)] = 5
    stale_after: Annotated[float, Field(gt=0, le=3600)] = 10
    reset_tolerance: Annotated[int, Field(ge=0)] = 10
    baseline_max_age: Annotated[float, Field(ge=0)] = 60
    io_timeout: Annotated[float, Field(gt=0, le=300)] = 15
    retry_step: Annotated[float, Field(gt=0)] = 2
    retry_max: Annotated[float, Field(gt=0)] = 10

    @model_validator(mode="after")
    def validate_retry_bounds(self) -> TrackingConfig:
        """Ensure the reconnect cap is not below a single step."""
        if self.retry_max < self.retry_step:
            msg = "retry_max must be greater than or equal to retry_step"
            raise ValueError(msg)
        return self


class ProviderConfig(BaseModel):
    """Health-data provider (pull source) configuration.

    Attributes:
        base_url: Provider API root, e.g. https://health.example.com
        token: Bearer token or env var reference (${VAR}); falls back to
               $STEPKEEPER_PROVIDER_TOKEN when omitted
        poll_interval: Seconds between polls while tracking
        timeout: HTTP timeout in seconds
        series: Counter series name; give the provider and the sensor
                different names when they do not count the same steps
    """

    model_config = ConfigDict(extra="forbid")

    base_url: str
    token: str | None = None
    poll_interval: Annotated[float, Field(gt=0, le=3600)] = 30
    timeout: Annotated[float, Field(gt=0, le=120)] = 10
    series: Annotated[str, Field(min_length=1)] = DEFAULT_SERIES

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate the provider URL scheme."""
        if not v.startswith(("http://", "https://")):
            msg = "base_url must start with http:// or https://"
            raise ValueError(msg)
        return v.rstrip("/")


class SensorConfig(BaseModel):
    """Step sensor (push source) configuration.

    Attributes:
        path: JSON-lines file the sensor bridge appends readings to
        poll_interval: Seconds between checks for new lines
        series: Counter series name (see ProviderConfig)
    """

    model_config = ConfigDict(extra="forbid")

    path: str
    poll_interval: Annotated[float, Field(gt=0, le=60)] = 0.5
    series: Annotated[str, Field(min_length=1)] = DEFAULT_SERIES

    def get_path(self) -> Path:
        """Get the sensor file path, expanding ~ if needed."""
        return Path(self.path).expanduser()


class StateConfig(BaseModel):
    """State storage configuration.

    Attributes:
        directory: State directory path (default: XDG data dir)
                   Uses $STEPKEEPER_STATE_DIR, else $XDG_DATA_HOME/stepkeeper
    """

    model_config = ConfigDict(extra="forbid")

    directory: str | None = None

    def get_directory(self) -> Path:
        """Get the state directory path, expanding ~ if needed."""
        if self.directory:
            return Path(self.directory).expanduser()
        return get_default_state_dir()


class NotificationConfig(BaseModel):
    """Tracking notification settings.

    Presentation is up to the host; stepkeeper only tells the notifier when
    tracking starts and stops.
    """

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    title: Annotated[str, Field(min_length=1, max_length=100)] = "Step Tracker"
    content: Annotated[str, Field(min_length=1, max_length=200)] = "Tracking your steps"


class Config(BaseModel):
    """Top-level configuration loaded from YAML.

    Attributes:
        version: Schema version (must be 1)
        tracking: Session engine settings
        provider: Optional poll-based provider
        sensor: Optional push-based sensor
        state: State storage settings
        notifications: Tracking notification settings
    """

    model_config = ConfigDict(extra="forbid")

    version: Literal[1]
    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    provider: ProviderConfig | None = None
    sensor: SensorConfig | None = None
    state: StateConfig = Field(default_factory=StateConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    def has_sources(self) -> bool:
        """Return True if at least one counter source is configured."""
        return self.provider is not None or self.sensor is not None
