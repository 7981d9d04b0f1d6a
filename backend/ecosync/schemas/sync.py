"""Pydantic schemas for the offline queue, conflict resolution and sync status."""

import enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ecosync.models.enums import (
    ConflictType,
    FieldMergeStrategy,
    OperationState,
    OperationType,
    ResolutionStrategy,
    SyncStatus,
)


def entity_key(entity_type: enum.Enum | str) -> str:
    """Normalise an EntityType member or free-form tag to its string key."""
    if isinstance(entity_type, enum.Enum):
        return str(entity_type.value)
    return str(entity_type)


class QueuedOperation(BaseModel):
    id: str = Field(description="Unique ID assigned at enqueue time")
    entity_type: str = Field(description="Entity kind tag, e.g. collection, user")
    operation: OperationType
    entity_id: str | None = Field(default=None, description="ID of the entity being mutated")
    payload: Any = Field(default=None, description="Entity-shaped data for the operation")
    timestamp: float = Field(description="Enqueue time in epoch seconds, the ordering key")
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    state: OperationState = OperationState.PENDING

    @field_validator("entity_type", mode="before")
    @classmethod
    def _normalise_entity_type(cls, value: Any) -> str:
        return entity_key(value)


class ConflictDescriptor(BaseModel):
    type: str = Field(description="Entity type of the conflicting record")
    id: str
    local_data: Any = None
    remote_data: Any = None
    conflict_type: ConflictType | None = None
    local_timestamp: float | None = None
    remote_timestamp: float | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> str:
        return entity_key(value)

    @model_validator(mode="after")
    def _derive_conflict_type(self) -> "ConflictDescriptor":
        if self.conflict_type is None:
            if self.local_data is None and self.remote_data is None:
                self.conflict_type = ConflictType.BOTH_DELETED
            elif self.local_data is None:
                self.conflict_type = ConflictType.LOCAL_DELETED_REMOTE_MODIFIED
            elif self.remote_data is None:
                self.conflict_type = ConflictType.REMOTE_DELETED_LOCAL_MODIFIED
            else:
                self.conflict_type = ConflictType.BOTH_MODIFIED
        return self


class FieldConflict(BaseModel):
    field: str
    local_value: Any = None
    remote_value: Any = None
    resolved_value: Any = None
    strategy: FieldMergeStrategy


class ResolutionOutcome(BaseModel):
    resolved_data: Any = None
    should_delete: bool = False
    strategy_used: ResolutionStrategy
    needs_manual_resolution: bool = False
    field_conflicts: list[FieldConflict] = Field(default_factory=list)


class DrainResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    dead_lettered: int = 0
    deferred: int = 0
    conflicts: int = 0
    remaining: int = 0


class PendingConflict(BaseModel):
    """A conflict waiting for the user to pick a side."""
    id: str
    entity_type: str
    entity_id: str
    operation_id: str | None = None
    local_data: Any = None
    remote_data: Any = None
    detected_at: float


class SyncStats(BaseModel):
    status: SyncStatus
    pending_operations: int = 0
    failed_operations: int = 0
    pending_conflicts: int = 0
    by_entity_type: dict[str, int] = Field(default_factory=dict)
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    last_sync_at: float | None = None
    last_error: str | None = None


class NetworkReportRequest(BaseModel):
    online: bool


class ConflictResolveRequest(BaseModel):
    keep: Literal["local", "remote"]
