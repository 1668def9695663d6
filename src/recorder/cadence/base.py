"""Shared plumbing for the cadence controllers.

A controller is an explicit state machine driven by one asyncio task. The
stop flag is an asyncio.Event: it is checked once per iteration and wakes
any wait in progress, but never interrupts a fetch or device read already
in flight.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

from recorder.console import print_summary
from recorder.exceptions import InvalidSample, OutOfOrderSample
from recorder.logging import get_logger
from recorder.models import Record, Sample
from recorder.readout.cell import LiveReadout
from recorder.storage.csv_sink import CsvRecordSink
from recorder.velocity.engine import DeltaEngine

logger = get_logger(__name__)


class ControllerState(str, Enum):
    """Lifecycle states of a cadence controller."""

    IDLE = "idle"
    FETCHING = "fetching"
    BACKOFF = "backoff"
    AGGREGATING = "aggregating"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


def local_now() -> datetime:
    """Current wall-clock time as an aware datetime in the host's zone."""
    return datetime.now().astimezone()


class CadenceController:
    """Base class: owns the engine, the sink, the readout and the stop flag.

    Args:
        engine: Delta/velocity engine for this session.
        sink: CSV log for accepted records, or None to keep records in memory only.
        readout: Live readout cells to publish into, or None.
        clock: Returns the current wall-clock time (injectable for tests).
        echo: Print a summary line to stdout for every accepted record.
        unit: Prefix for values in the summary line (e.g. "$").
    """

    def __init__(
        self,
        engine: DeltaEngine,
        sink: CsvRecordSink | None = None,
        readout: LiveReadout | None = None,
        clock: Callable[[], datetime] = local_now,
        echo: bool = True,
        unit: str = "",
    ) -> None:
        self._engine = engine
        self._sink = sink
        self._readout = readout
        self._clock = clock
        self._echo = echo
        self._unit = unit
        self._state = ControllerState.IDLE
        self._stop_event = asyncio.Event()
        self._records_accepted = 0

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def engine(self) -> DeltaEngine:
        return self._engine

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask the run loop to exit at its next safe point."""
        if not self._stop_event.is_set():
            logger.info("controller_stop_requested", state=self._state.value)
        self._stop_event.set()

    def get_status(self) -> dict[str, Any]:
        previous = self._engine.previous
        return {
            "state": self._state.value,
            "records_accepted": self._records_accepted,
            "rows_written": self._sink.rows_written if self._sink else 0,
            "csv_path": str(self._sink.path) if self._sink else None,
            "last_record_at": previous.timestamp.isoformat() if previous else None,
        }

    async def _accept(self, sample: Sample) -> Record | None:
        """Run a sample through the engine, then persist and publish the record.

        Invalid and out-of-order samples are logged and dropped. A
        PersistenceError from the sink propagates and ends the run.
        """
        try:
            record = self._engine.submit(sample)
        except (InvalidSample, OutOfOrderSample) as exc:
            logger.warning("sample_discarded", reason=str(exc))
            return None
        if record is None:
            return None

        if self._sink is not None:
            self._sink.append(record)
        if self._readout is not None:
            await self._readout.publish_record(record)
        self._records_accepted += 1

        logger.info(
            "record_accepted",
            timestamp=record.timestamp.isoformat(),
            value=record.value,
            direction=record.direction.value,
            velocity_per_minute=record.velocity_per_minute,
        )
        if self._echo:
            print_summary(record, self._unit)
        return record

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(seconds, 0.0))
        except asyncio.TimeoutError:
            return False
        return True
