"""Client-side reconciliation: local snapshot, offline queue and canonical refresh."""

from .api import ApiError, ConnectionLost, HttpTaskApi, TaskApi
from .cache import CacheState, ReconciliationCache, content_signature
from .queue import ActionType, IdMap, OfflineQueue, PendingAction, ReplayResult, is_temp, new_temp_id
from .snapshot import JsonSnapshotStore, MemorySnapshotStore, SnapshotStore

__all__ = [
    "ApiError",
    "ConnectionLost",
    "HttpTaskApi",
    "TaskApi",
    "CacheState",
    "ReconciliationCache",
    "content_signature",
    "ActionType",
    "IdMap",
    "OfflineQueue",
    "PendingAction",
    "ReplayResult",
    "is_temp",
    "new_temp_id",
    "JsonSnapshotStore",
    "MemorySnapshotStore",
    "SnapshotStore",
]
