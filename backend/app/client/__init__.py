from app.client.sync_cache import (
    ClientReconciler,
    InMemorySyncStore,
    JsonFileSyncStore,
    SyncApiClient,
    SyncPayload,
    SyncStatus,
)

__all__ = [
    "ClientReconciler",
    "InMemorySyncStore",
    "JsonFileSyncStore",
    "SyncApiClient",
    "SyncPayload",
    "SyncStatus",
]
