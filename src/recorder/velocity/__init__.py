"""Delta/velocity engine -- turns minute samples into records."""

from recorder.velocity.engine import DeltaEngine, compute_record

__all__ = ["DeltaEngine", "compute_record"]
