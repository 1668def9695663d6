"""Tests for window averaging and the aggregate-then-bucket controller."""

import math
from unittest.mock import MagicMock

import pytest

from conftest import FakeClock, FakeDevice, at
from recorder.cadence.aggregator import AggregateController, MinuteWindow
from recorder.cadence.base import ControllerState
from recorder.exceptions import DeviceSessionError
from recorder.models import Direction
from recorder.readout.cell import LiveReadout
from recorder.storage.csv_sink import CsvRecordSink
from recorder.velocity.engine import DeltaEngine

NAN = math.nan


def _controller(device=None, sink=None, readout=None, clock=None, **kwargs) -> AggregateController:
    return AggregateController(
        device=device or FakeDevice(),
        engine=DeltaEngine(),
        sink=sink,
        readout=readout,
        clock=clock or FakeClock(),
        echo=False,
        **kwargs,
    )


class TestMinuteWindow:
    """Tests for the finite-only running mean."""

    def test_nan_excluded_from_mean(self) -> None:
        window = MinuteWindow()
        kept = window.add([1.0, 2.0, NAN, 3.0])

        assert kept == 3
        assert window.mean() == 2.0
        assert window.rejected == 1

    def test_infinities_excluded(self) -> None:
        window = MinuteWindow()
        window.add([math.inf, 4.0, -math.inf])
        assert window.mean() == 4.0
        assert window.rejected == 2

    def test_empty_window_has_no_mean(self) -> None:
        window = MinuteWindow()
        window.add([NAN])
        assert window.mean() is None
        assert window.count == 0

    def test_accumulates_across_adds_until_reset(self) -> None:
        window = MinuteWindow()
        window.add([1.0])
        window.add([5.0, 6.0])
        assert window.mean() == 4.0

        window.reset()
        assert window.mean() is None
        assert window.rejected == 0


class TestIngest:
    """Tests for window closing and bucket timestamps."""

    @pytest.mark.asyncio
    async def test_window_closes_after_sixty_seconds(self) -> None:
        controller = _controller()
        controller.begin(at(0))

        assert await controller.ingest([[1.0], [2.0]], at(0, seconds=1)) is None
        assert await controller.ingest([[NAN], [3.0]], at(0, seconds=30)) is None
        record = await controller.ingest([], at(1))

        assert record.value == 2.0
        assert record.timestamp == at(0)
        assert record.has_previous is False
        assert controller.window_start == at(1)
        assert controller.window.count == 0

    @pytest.mark.asyncio
    async def test_consecutive_windows_compute_delta(self) -> None:
        controller = _controller()
        controller.begin(at(0))

        await controller.ingest([[2.0]], at(0, seconds=10))
        await controller.ingest([], at(1))
        await controller.ingest([[4.0], [6.0]], at(1, seconds=10))
        record = await controller.ingest([], at(2))

        assert record.timestamp == at(1)
        assert record.value == 5.0
        assert record.delta == 3.0
        assert record.direction == Direction.UP
        assert record.velocity_per_minute == 3.0

    @pytest.mark.asyncio
    async def test_unaligned_start_keeps_one_minute_spacing(self) -> None:
        controller = _controller()
        controller.begin(at(0, seconds=59.5))

        first = await controller.ingest([[1.0]], at(1, seconds=59.6))
        second = await controller.ingest([[1.0]], at(2, seconds=59.7))

        assert first.timestamp == at(0)
        assert second.timestamp == at(1)
        assert second.velocity_per_minute == 0.0

    @pytest.mark.asyncio
    async def test_falling_behind_advances_past_missed_windows(self) -> None:
        controller = _controller()
        controller.begin(at(0))

        await controller.ingest([[2.0]], at(0, seconds=10))
        first = await controller.ingest([], at(2, seconds=30))
        await controller.ingest([[5.0]], at(2, seconds=40))
        second = await controller.ingest([], at(3))

        assert first.timestamp == at(0)
        assert controller.window_start == at(3)
        assert second.timestamp == at(2)
        assert second.velocity_per_minute == 1.5

    @pytest.mark.asyncio
    async def test_bucket_rows_written_to_sink(self, tmp_path) -> None:
        sink = CsvRecordSink(tmp_path / "eeg.csv")
        sink.open()
        controller = _controller(sink=sink)
        controller.begin(at(0))

        await controller.ingest([[1.0]], at(1))
        await controller.ingest([[2.0]], at(2))

        lines = (tmp_path / "eeg.csv").read_text(encoding="utf-8").splitlines()
        assert lines[1:] == [
            "2024-01-01 12:00:00,1.0000,,flat,,",
            "2024-01-01 12:01:00,2.0000,1.0000,up,1.0000,0.0167",
        ]


class TestEmptyWindowPolicy:
    """Tests for windows without a single finite reading."""

    @pytest.mark.asyncio
    async def test_zero_policy_emits_zero(self) -> None:
        controller = _controller(empty_window_policy="zero")
        controller.begin(at(0))

        await controller.ingest([[NAN], [NAN]], at(0, seconds=30))
        record = await controller.ingest([], at(1))

        assert record.value == 0.0

    @pytest.mark.asyncio
    async def test_carry_policy_repeats_previous_value(self) -> None:
        controller = _controller(empty_window_policy="carry")
        controller.begin(at(0))

        await controller.ingest([[4.0]], at(1))
        record = await controller.ingest([[NAN]], at(2))

        assert record.value == 4.0
        assert record.direction == Direction.FLAT
        assert record.has_previous is True

    @pytest.mark.asyncio
    async def test_carry_policy_without_history_emits_nothing(self) -> None:
        controller = _controller(empty_window_policy="carry")
        controller.begin(at(0))

        assert await controller.ingest([], at(1)) is None
        assert controller.engine.previous is None

    @pytest.mark.asyncio
    async def test_skip_policy_leaves_gap(self) -> None:
        controller = _controller(empty_window_policy="skip")
        controller.begin(at(0))

        await controller.ingest([[10.0]], at(1))
        assert await controller.ingest([], at(2)) is None
        record = await controller.ingest([[16.0]], at(3))

        assert record.timestamp == at(2)
        assert record.velocity_per_minute == 3.0


class TestChannelReadout:
    """Tests for publishing the newest per-channel values."""

    @pytest.mark.asyncio
    async def test_latest_values_published_by_name(self) -> None:
        readout = LiveReadout()
        controller = _controller(readout=readout)
        controller.begin(at(0))

        await controller.ingest([[1.0, 1.5], [3.0, 3.5]], at(0, seconds=1))

        assert await readout.channels.read() == {"TP9": 1.5, "AF7": 3.5}
        assert await readout.record.read() is None

    @pytest.mark.asyncio
    async def test_non_finite_latest_not_published(self) -> None:
        readout = LiveReadout()
        controller = _controller(readout=readout)
        controller.begin(at(0))

        await controller.ingest([[1.0, NAN], [3.0, 3.5]], at(0, seconds=1))

        assert await readout.channels.read() is None


class TestRun:
    """Tests for the streaming loop and device session scoping."""

    @pytest.mark.asyncio
    async def test_duration_limits_run_and_closes_device(self) -> None:
        clock = FakeClock()
        device = FakeDevice()
        device.on_read = lambda: clock.advance(30)
        controller = _controller(device=device, clock=clock, read_interval=0)

        await controller.run(duration_minutes=2)

        assert device.opened == 1
        assert device.closed == 1
        assert controller.state is ControllerState.STOPPED
        assert [r.timestamp for r in controller.engine.history] == [at(0), at(1)]
        assert controller.engine.history[0].value == 2.0

    @pytest.mark.parametrize("minutes", [1, 2, 3])
    @pytest.mark.asyncio
    async def test_one_record_per_requested_minute(self, minutes: int) -> None:
        clock = FakeClock()
        device = FakeDevice()
        device.on_read = lambda: clock.advance(1)
        controller = _controller(device=device, clock=clock, read_interval=0)

        await controller.run(duration_minutes=minutes)

        assert len(controller.engine.history) == minutes

    @pytest.mark.asyncio
    async def test_trailing_partial_window_discarded(self) -> None:
        clock = FakeClock()
        device = FakeDevice()
        device.on_read = lambda: clock.advance(30)
        controller = _controller(device=device, clock=clock, read_interval=0)

        await controller.run(duration_minutes=1.5)

        assert [r.timestamp for r in controller.engine.history] == [at(0)]
        assert controller.window.count > 0

    @pytest.mark.asyncio
    async def test_stop_ends_indefinite_run(self) -> None:
        device = FakeDevice()
        controller = _controller(device=device, read_interval=0)
        device.on_read = controller.stop

        await controller.run()

        assert device.closed == 1
        assert controller.stop_requested

    @pytest.mark.asyncio
    async def test_read_failure_propagates_after_closing(self) -> None:
        device = FakeDevice()
        device.read_latest = MagicMock(side_effect=DeviceSessionError("link lost"))
        controller = _controller(device=device, read_interval=0)

        with pytest.raises(DeviceSessionError):
            await controller.run()
        assert device.closed == 1
        assert controller.state is ControllerState.STOPPED

    @pytest.mark.asyncio
    async def test_open_failure_propagates(self) -> None:
        device = FakeDevice()
        device.open = MagicMock(side_effect=DeviceSessionError("no board"))
        controller = _controller(device=device)

        with pytest.raises(DeviceSessionError):
            await controller.run()
        assert device.closed == 0
