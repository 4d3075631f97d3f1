"""Background sync stages and their combined progress."""

from .progress import StageState, StageStatus, SyncProgress, SyncProgressAggregator, SyncStage

__all__ = ["StageState", "StageStatus", "SyncProgress", "SyncProgressAggregator", "SyncStage"]
