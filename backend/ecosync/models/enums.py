"""All enum types for the EcoSync data model."""

import enum


# --- Entity Enums ---

class EntityType(str, enum.Enum):
    COLLECTION = "collection"
    USER = "user"
    IMPACT = "impact"
    MATERIAL = "material"
    ACHIEVEMENT = "achievement"
    CHALLENGE = "challenge"
    ORDER = "order"
    FEEDBACK = "feedback"


class OperationType(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    QUERY = "query"


# Operations that mutate server state and may be queued
QUEUEABLE_OPERATIONS = frozenset({
    OperationType.CREATE,
    OperationType.UPDATE,
    OperationType.DELETE,
})


# --- Sync Enums ---

class SyncStatus(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    SYNCING = "syncing"


class SyncTrigger(str, enum.Enum):
    NETWORK_RECONNECTION = "network_reconnection"
    MANUAL = "manual"
    PERIODIC = "periodic"
    NEW_OPERATION = "new_operation"
    STARTUP = "startup"


class OperationState(str, enum.Enum):
    PENDING = "pending"
    FAILED = "failed"


# --- Conflict Enums ---

class ResolutionStrategy(str, enum.Enum):
    LOCAL_WINS = "local_wins"
    REMOTE_WINS = "remote_wins"
    LATEST_WINS = "latest_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ConflictType(str, enum.Enum):
    BOTH_MODIFIED = "both_modified"
    LOCAL_DELETED_REMOTE_MODIFIED = "local_deleted_remote_modified"
    REMOTE_DELETED_LOCAL_MODIFIED = "remote_deleted_local_modified"
    BOTH_DELETED = "both_deleted"


class FieldMergeStrategy(str, enum.Enum):
    LOCAL_WINS = "local_wins"
    REMOTE_WINS = "remote_wins"
    LATEST_WINS = "latest_wins"
    CONCATENATE = "concatenate"
    NUMERIC_ADD = "numeric_add"
    CUSTOM = "custom"
