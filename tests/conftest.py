"""Shared test helpers and fixtures for the minute velocity recorder."""

import logging
import os
from datetime import datetime, timedelta, timezone

import pytest
import structlog

from recorder.logging import QUIET_LOGGERS, setup_logging
from recorder.sources.device import DeviceSource

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(minutes: float = 0, seconds: float = 0) -> datetime:
    """Timestamp ``minutes`` and ``seconds`` after BASE_TIME."""
    return BASE_TIME + timedelta(minutes=minutes, seconds=seconds)


class FakeClock:
    """Manually advanced wall clock for controller tests."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeDevice(DeviceSource):
    """Two-channel device returning a fixed read, with optional hooks."""

    def __init__(self, reading: list[list[float]] | None = None) -> None:
        self.reading = reading if reading is not None else [[1.0], [3.0]]
        self.opened = 0
        self.closed = 0
        self.on_read = None

    @property
    def channel_names(self) -> list[str]:
        return ["TP9", "AF7"]

    def open(self) -> None:
        self.opened += 1

    def close(self) -> None:
        self.closed += 1

    def read_latest(self, n_samples: int) -> list[list[float]]:
        if self.on_read is not None:
            self.on_read()
        return self.reading


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path) -> None:
    """Keep a developer's .env and recorder env vars out of the tests."""
    monkeypatch.chdir(tmp_path)
    for prefix in ("PRICE_", "DEVICE_", "AGGREGATION_", "STORAGE_", "READOUT_", "LOG_"):
        for name in list(os.environ):
            if name.startswith(prefix):
                monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def _configured_logging():
    """Route structlog to stderr as main() does, so stdout carries only summaries."""
    setup_logging()
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)
