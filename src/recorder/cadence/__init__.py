"""Cadence controllers -- poll-and-floor and aggregate-then-bucket loops."""

from recorder.cadence.aggregator import AggregateController, MinuteWindow
from recorder.cadence.base import CadenceController, ControllerState
from recorder.cadence.poller import PollController, seconds_until_next_minute

__all__ = [
    "AggregateController",
    "CadenceController",
    "ControllerState",
    "MinuteWindow",
    "PollController",
    "seconds_until_next_minute",
]
