"""Live readout -- latest-value cells and the HTTP app that serves them."""

from recorder.readout.cell import LatestCell, LiveReadout

__all__ = ["LatestCell", "LiveReadout"]
