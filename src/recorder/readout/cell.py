"""Latest-value cells shared between the controller and HTTP readers.

Provides an async-safe (asyncio.Lock) single-slot cache that the cadence
controller replaces and the readout routes copy out of. The lock is held
only to swap or copy the value, never across I/O.
"""

import asyncio
import copy
import time
from typing import Generic, TypeVar

from recorder.models import Record

T = TypeVar("T")


class LatestCell(Generic[T]):
    """Single-writer cell holding the most recent value, or nothing yet."""

    def __init__(self) -> None:
        self._value: T | None = None
        self._updated_at: float | None = None
        self._lock = asyncio.Lock()

    async def publish(self, value: T) -> None:
        """Replace the held value with a private copy of ``value``."""
        snapshot = copy.copy(value)
        async with self._lock:
            self._value = snapshot
            self._updated_at = time.time()

    async def read(self) -> T | None:
        """Return a copy of the held value, or None before the first publish."""
        async with self._lock:
            value = self._value
        return copy.copy(value) if value is not None else None

    async def age(self) -> float | None:
        """Seconds since the last publish, or None before the first one."""
        async with self._lock:
            if self._updated_at is None:
                return None
            return time.time() - self._updated_at


class LiveReadout:
    """The latest Record and the latest per-channel device values."""

    def __init__(self) -> None:
        self.record: LatestCell[Record] = LatestCell()
        self.channels: LatestCell[dict[str, float]] = LatestCell()

    async def publish_record(self, record: Record) -> None:
        await self.record.publish(record)

    async def publish_channels(self, names: list[str], values: list[float]) -> None:
        await self.channels.publish(dict(zip(names, values)))
