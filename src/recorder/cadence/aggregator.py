"""Aggregate-then-bucket controller for the EEG relay and batch summarizer.

High-frequency device readings are averaged into one Sample per window
(60 s by default). Window boundaries sit at ``start + k * window`` so they
do not drift with read latency; each bucket is stamped with the start of
its window, floored to the minute by the engine.

Non-finite readings never reach the average. A window that collected no
finite reading is handled by the configured empty-window policy:

- ``zero``: emit 0.0 (default)
- ``carry``: repeat the previous accepted value
- ``skip``: emit nothing, so the next record's elapsed time spans the gap
"""

import asyncio
import math
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Literal

from recorder.cadence.base import CadenceController, ControllerState, local_now
from recorder.logging import get_logger
from recorder.models import Record, Sample
from recorder.readout.cell import LiveReadout
from recorder.sources.device import DeviceSource
from recorder.storage.csv_sink import CsvRecordSink
from recorder.velocity.engine import DeltaEngine

logger = get_logger(__name__)

EmptyWindowPolicy = Literal["zero", "carry", "skip"]


class MinuteWindow:
    """Running mean of the finite readings seen in the current window."""

    def __init__(self) -> None:
        self._total = 0.0
        self._count = 0
        self._rejected = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def rejected(self) -> int:
        """Non-finite readings excluded since the last reset."""
        return self._rejected

    def add(self, readings: Iterable[float]) -> int:
        """Accumulate readings, skipping NaN and infinities. Returns how many were kept."""
        kept = 0
        for reading in readings:
            if math.isfinite(reading):
                self._total += reading
                kept += 1
            else:
                self._rejected += 1
        self._count += kept
        return kept

    def mean(self) -> float | None:
        """Mean of the kept readings, or None if there were none."""
        if self._count == 0:
            return None
        return self._total / self._count

    def reset(self) -> None:
        self._total = 0.0
        self._count = 0
        self._rejected = 0


class AggregateController(CadenceController):
    """Read a DeviceSource at a fixed interval and record one mean per window.

    Args:
        device: Multi-channel source; opened and closed by run().
        engine: Delta/velocity engine for this session.
        sink: CSV log for accepted records, or None.
        readout: Receives the newest finite value of every channel.
        window_seconds: Length of one bucket.
        read_interval: Seconds between device reads.
        samples_per_read: Samples per channel requested on every read.
        empty_window_policy: What to emit for a window with no finite reading.
    """

    def __init__(
        self,
        device: DeviceSource,
        engine: DeltaEngine,
        sink: CsvRecordSink | None = None,
        readout: LiveReadout | None = None,
        window_seconds: float = 60.0,
        read_interval: float = 1.0,
        samples_per_read: int = 256,
        empty_window_policy: EmptyWindowPolicy = "zero",
        clock: Callable[[], datetime] = local_now,
        echo: bool = True,
        unit: str = "",
    ) -> None:
        super().__init__(engine, sink, readout, clock=clock, echo=echo, unit=unit)
        self._device = device
        self._window_seconds = window_seconds
        self._read_interval = read_interval
        self._samples_per_read = samples_per_read
        self._empty_window_policy = empty_window_policy
        self._window = MinuteWindow()
        self._window_start: datetime | None = None

    @property
    def window(self) -> MinuteWindow:
        return self._window

    @property
    def window_start(self) -> datetime | None:
        return self._window_start

    def begin(self, now: datetime) -> None:
        """Open the first window at ``now``."""
        self._window_start = now
        self._window.reset()

    async def ingest(self, channels: list[list[float]], now: datetime) -> Record | None:
        """Fold one device read into the current window.

        Args:
            channels: One list of readings per channel (may be empty).
            now: Wall-clock time of the read.

        Returns:
            The Record produced if this read closed a window, else None.
        """
        if self._window_start is None:
            self.begin(now)

        if channels:
            self._window.add(reading for channel in channels for reading in channel)
            await self._publish_latest(channels)

        elapsed = (now - self._window_start).total_seconds()
        if elapsed < self._window_seconds:
            return None
        return await self._flush(elapsed)

    async def _publish_latest(self, channels: list[list[float]]) -> None:
        if self._readout is None or not all(channels):
            return
        latest = [channel[-1] for channel in channels]
        if all(math.isfinite(value) for value in latest):
            await self._readout.publish_channels(self._device.channel_names, latest)

    async def _flush(self, elapsed: float) -> Record | None:
        """Close every window that has fully elapsed and emit one Sample."""
        windows_closed = int(elapsed // self._window_seconds)
        bucket_start = self._window_start
        self._window_start = bucket_start + timedelta(
            seconds=self._window_seconds * windows_closed
        )
        if windows_closed > 1:
            logger.warning("aggregation_fell_behind", windows_closed=windows_closed)

        value = self._window.mean()
        kept, rejected = self._window.count, self._window.rejected
        self._window.reset()

        if value is None:
            value = self._empty_window_value()
            logger.warning(
                "empty_aggregation_window",
                window_start=bucket_start.isoformat(),
                rejected=rejected,
                policy=self._empty_window_policy,
            )
            if value is None:
                return None
        else:
            logger.debug("aggregation_window_closed", readings=kept, rejected=rejected)

        return await self._accept(Sample(value=value, timestamp=bucket_start))

    def _empty_window_value(self) -> float | None:
        if self._empty_window_policy == "zero":
            return 0.0
        if self._empty_window_policy == "carry":
            previous = self._engine.previous
            return previous.value if previous is not None else None
        return None

    async def run(self, duration_minutes: float | None = None) -> None:
        """Stream from the device until stopped or ``duration_minutes`` have elapsed.

        The device session is open for exactly the duration of this call.
        Every window that fully elapsed within the duration is emitted; a
        window still open when the run ends is discarded.
        """
        try:
            async with self._device:
                started_at = self._clock()
                self.begin(started_at)
                self._state = ControllerState.AGGREGATING
                logger.info(
                    "aggregate_controller_started",
                    duration_minutes=duration_minutes,
                    read_interval=self._read_interval,
                    samples_per_read=self._samples_per_read,
                )
                try:
                    await self._stream(started_at, duration_minutes)
                finally:
                    self._state = ControllerState.SHUTTING_DOWN
                    logger.info(
                        "aggregate_controller_stopping",
                        records=self._records_accepted,
                        discarded_readings=self._window.count,
                    )
        finally:
            self._state = ControllerState.STOPPED

    async def _stream(self, started_at: datetime, duration_minutes: float | None) -> None:
        budget = duration_minutes * 60.0 if duration_minutes is not None else None
        while not self._stop_event.is_set():
            if await self._wait(self._read_interval):
                break
            now = self._clock()
            channels = await asyncio.to_thread(self._device.read_latest, self._samples_per_read)
            # The read at the duration boundary still closes the last full window.
            await self.ingest(channels, now)
            if budget is not None and (now - started_at).total_seconds() >= budget:
                break
