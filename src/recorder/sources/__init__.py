"""Upstream sources -- exchange prices and EEG device samples."""

from recorder.sources.device import BrainFlowBoard, DeviceSource
from recorder.sources.price import CcxtPriceSource, PriceSource

__all__ = ["BrainFlowBoard", "CcxtPriceSource", "DeviceSource", "PriceSource"]
