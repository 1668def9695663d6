"""Shared data models for the minute velocity recorder.

All values are plain floats (IEEE-754 doubles). Rounding happens only when a
record is rendered for the CSV log or the console, never before dependent
fields are computed.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Direction(str, Enum):
    """Sign of the change since the previous record."""

    UP = "up"
    DOWN = "down"
    FLAT = "flat"

    @classmethod
    def from_delta(cls, delta: float) -> "Direction":
        if delta > 0:
            return cls.UP
        if delta < 0:
            return cls.DOWN
        return cls.FLAT


def floor_to_minute(timestamp: datetime) -> datetime:
    """Truncate a timestamp to the start of its minute."""
    return timestamp.replace(second=0, microsecond=0)


@dataclass(frozen=True)
class Sample:
    """A single scalar observation: a price or a mean microvolt amplitude."""

    value: float
    timestamp: datetime


@dataclass(frozen=True)
class Record:
    """One accepted minute of the series.

    `has_previous` is False only for the first record of a session, whose
    delta and velocities are the zero sentinel rather than a computed
    "no change". `pct_change` is kept for display and is never persisted.
    """

    timestamp: datetime  # floored to the minute
    value: float
    delta: float
    direction: Direction
    velocity_per_minute: float
    velocity_per_second: float
    has_previous: bool = True
    pct_change: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for the live readout."""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["direction"] = self.direction.value
        return data
