"""Exception hierarchy for the offline sync engine.

Remote sync functions signal outcomes to the orchestrator by raising:

- ``SyncConflictError`` when the server holds a divergent version of the record
- ``PermanentSyncError`` when retrying can never succeed (validation, 4xx)

Any other exception is treated as a transient failure and retried.
"""

from typing import Any


class SyncError(Exception):
    """Base class for all sync engine errors."""

    code = "SYNC_ERROR"


class SyncConflictError(SyncError):
    """The server rejected a write because its version of the entity diverged."""

    code = "SYNC_CONFLICT"

    def __init__(
        self,
        remote_data: Any,
        *,
        entity_id: str | None = None,
        remote_timestamp: float | None = None,
        message: str = "Remote version conflicts with local change",
    ):
        super().__init__(message)
        self.remote_data = remote_data
        self.entity_id = entity_id
        self.remote_timestamp = remote_timestamp


class PermanentSyncError(SyncError):
    """The operation will never succeed on retry and must be dead-lettered."""

    code = "PERMANENT_FAILURE"


class OperationDeferred(SyncError):
    """The operation cannot be replayed yet. It stays queued without a retry charge."""

    code = "OPERATION_DEFERRED"


class StorageError(SyncError):
    """The local durable store failed to read or write."""

    code = "STORAGE_ERROR"


class OperationNotFoundError(SyncError):
    code = "OPERATION_NOT_FOUND"

    def __init__(self, operation_id: str):
        super().__init__(f"Queued operation '{operation_id}' not found.")
        self.operation_id = operation_id


class ConflictNotFoundError(SyncError):
    code = "CONFLICT_NOT_FOUND"

    def __init__(self, conflict_id: str):
        super().__init__(f"Pending conflict '{conflict_id}' not found.")
        self.conflict_id = conflict_id


class OfflineDataUnavailableError(SyncError):
    """Offline query for an entity that is not in the local cache."""

    code = "OFFLINE_DATA_UNAVAILABLE"
