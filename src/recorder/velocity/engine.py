"""Delta and velocity computation for minute-resolution series.

Turns each accepted Sample into a Record relative to the previously
accepted Record. The absence of a previous Record is tracked explicitly:
the first record of a session carries the zero sentinel and is never the
result of a division.
"""

import math
from collections import deque
from datetime import datetime

from recorder.exceptions import InvalidSample, OutOfOrderSample
from recorder.logging import get_logger
from recorder.models import Direction, Record, Sample, floor_to_minute

logger = get_logger(__name__)

_SECONDS_PER_MINUTE = 60.0


def compute_record(
    value: float,
    timestamp: datetime,
    previous: Record | None,
) -> Record | None:
    """Compute the next Record for a minute-floored sample.

    Args:
        value: The sample value. Must be finite.
        timestamp: Minute-floored instant of the sample.
        previous: The most recently accepted Record, or None for the first
            sample of a session.

    Returns:
        The new Record, or None when ``timestamp`` falls in the minute that
        ``previous`` already covers (duplicate-minute suppression).

    Raises:
        InvalidSample: If ``value`` is NaN or infinite.
        OutOfOrderSample: If ``timestamp`` is older than ``previous``.
    """
    if not math.isfinite(value):
        raise InvalidSample(f"non-finite sample value: {value!r}")

    if previous is None:
        return Record(
            timestamp=timestamp,
            value=value,
            delta=0.0,
            direction=Direction.FLAT,
            velocity_per_minute=0.0,
            velocity_per_second=0.0,
            has_previous=False,
        )

    if timestamp == previous.timestamp:
        return None
    if timestamp < previous.timestamp:
        raise OutOfOrderSample(
            f"sample at {timestamp.isoformat()} precedes last record "
            f"at {previous.timestamp.isoformat()}"
        )

    delta = value - previous.value
    elapsed_minutes = (timestamp - previous.timestamp).total_seconds() / _SECONDS_PER_MINUTE
    velocity_per_minute = abs(delta) / elapsed_minutes
    pct_change = (delta / previous.value) * 100.0 if previous.value != 0.0 else None

    return Record(
        timestamp=timestamp,
        value=value,
        delta=delta,
        direction=Direction.from_delta(delta),
        velocity_per_minute=velocity_per_minute,
        velocity_per_second=velocity_per_minute / _SECONDS_PER_MINUTE,
        has_previous=True,
        pct_change=pct_change,
    )


class DeltaEngine:
    """Stateful wrapper around compute_record for one recording session.

    Remembers the last accepted Record and keeps a bounded in-memory
    history of recent Records. Trimming the history has no effect on what
    was already persisted.
    """

    def __init__(self, history_limit: int = 100) -> None:
        self._previous: Record | None = None
        self._history: deque[Record] = deque(maxlen=history_limit)

    @property
    def previous(self) -> Record | None:
        """The most recently accepted Record, or None before the first one."""
        return self._previous

    @property
    def history(self) -> list[Record]:
        """Recent Records, oldest first."""
        return list(self._history)

    def submit(self, sample: Sample) -> Record | None:
        """Floor the sample to its minute and record it if the minute is new.

        Returns None for a repeat of the last recorded minute. Propagates
        InvalidSample and OutOfOrderSample from compute_record.
        """
        timestamp = floor_to_minute(sample.timestamp)
        record = compute_record(sample.value, timestamp, self._previous)
        if record is None:
            logger.debug("duplicate_minute_ignored", timestamp=timestamp.isoformat())
            return None

        self._previous = record
        self._history.append(record)
        return record
