"""Poll-and-floor controller for the live price poller.

Each iteration fetches one price, stamps it with the minute the iteration
started in and hands it to the engine, then sleeps until the next
wall-clock minute boundary. A failed fetch produces no record: the
controller backs off for a fixed interval and tries again, forever, until
it is stopped.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

from recorder.cadence.base import CadenceController, ControllerState, local_now
from recorder.exceptions import FetchError, InvalidSample
from recorder.logging import get_logger
from recorder.models import Record, Sample, floor_to_minute
from recorder.readout.cell import LiveReadout
from recorder.sources.price import PriceSource
from recorder.storage.csv_sink import CsvRecordSink
from recorder.velocity.engine import DeltaEngine

logger = get_logger(__name__)


def seconds_until_next_minute(started_at: datetime, now: datetime) -> float:
    """Seconds from ``now`` to the minute boundary after ``started_at``.

    Aligning on the boundary instead of sleeping a fixed 60 s keeps the
    fetch time from accumulating as drift. Never negative.
    """
    boundary = floor_to_minute(started_at) + timedelta(minutes=1)
    return max((boundary - now).total_seconds(), 0.0)


class PollController(CadenceController):
    """Fetch-once-per-minute loop around a PriceSource."""

    def __init__(
        self,
        source: PriceSource,
        engine: DeltaEngine,
        sink: CsvRecordSink | None = None,
        readout: LiveReadout | None = None,
        backoff_seconds: float = 60.0,
        clock: Callable[[], datetime] = local_now,
        echo: bool = True,
        unit: str = "",
    ) -> None:
        super().__init__(engine, sink, readout, clock=clock, echo=echo, unit=unit)
        self._source = source
        self._backoff_seconds = backoff_seconds
        self._consecutive_failures = 0

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def tick(self, now: datetime | None = None) -> Record | None:
        """Run one iteration body: fetch, floor, record.

        Returns the accepted Record, or None when the fetch failed, the
        value was invalid, or the minute was already recorded. After a
        failed fetch the controller is left in BACKOFF.
        """
        started_at = now if now is not None else self._clock()
        minute = floor_to_minute(started_at)

        self._state = ControllerState.FETCHING
        try:
            value = await self._source.fetch()
        except FetchError as exc:
            self._consecutive_failures += 1
            self._state = ControllerState.BACKOFF
            logger.warning(
                "price_fetch_failed",
                error=str(exc),
                consecutive_failures=self._consecutive_failures,
                retry_in=self._backoff_seconds,
            )
            return None
        except InvalidSample as exc:
            self._state = ControllerState.IDLE
            logger.warning("price_sample_invalid", error=str(exc))
            return None

        self._consecutive_failures = 0
        self._state = ControllerState.IDLE
        return await self._accept(Sample(value=value, timestamp=minute))

    async def run(self) -> None:
        """Poll until stop() is called, holding the source open for the whole run."""
        await self._source.connect()
        logger.info("poll_controller_started", backoff_seconds=self._backoff_seconds)
        try:
            while not self._stop_event.is_set():
                started_at = self._clock()
                await self.tick(started_at)

                if self._state is ControllerState.BACKOFF:
                    delay = self._backoff_seconds
                else:
                    delay = seconds_until_next_minute(started_at, self._clock())
                if await self._wait(delay):
                    break
        finally:
            self._state = ControllerState.SHUTTING_DOWN
            logger.info("poll_controller_stopping", records=self._records_accepted)
            await self._source.close()
            self._state = ControllerState.STOPPED
