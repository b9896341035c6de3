"""Sync services: conflict handling, merge passes and the scheduler."""

from gitnote_sync.services.conflict_service import ConflictResolver, detect_conflicts
from gitnote_sync.services.merge_engine import MergeEngine, PullOutcome, PushOutcome
from gitnote_sync.services.sync_service import SyncService

__all__ = [
    "ConflictResolver",
    "MergeEngine",
    "PullOutcome",
    "PushOutcome",
    "SyncService",
    "detect_conflicts",
]
