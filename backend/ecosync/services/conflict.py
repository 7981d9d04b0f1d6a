"""Conflict resolution between local and remote versions of the same entity.

Precedence, first match wins:

1. Deletions on either side.
2. A merge function registered for the entity type (MERGE).
3. Field strategies registered for the entity type (field-level MERGE).
4. An explicit per-type strategy: LOCAL_WINS, REMOTE_WINS or MANUAL.
5. The default LATEST_WINS comparison. Local wins only when it is strictly
   newer; ties go to the remote copy because the server is the durability
   authority.

Resolution is a pure function of the descriptor plus the registries. It never
touches storage.
"""

import logging
from typing import Any, Callable

from ecosync.models.enums import (
    ConflictType,
    EntityType,
    FieldMergeStrategy,
    ResolutionStrategy,
)
from ecosync.schemas.sync import (
    ConflictDescriptor,
    FieldConflict,
    ResolutionOutcome,
    entity_key,
)

logger = logging.getLogger(__name__)

MergeFunction = Callable[[Any, Any], Any]
FieldMerge = Callable[[Any, Any], Any]

# Fields consulted, in order, when deciding which copy is newer
VERSION_FIELDS = ("version",)
TIMESTAMP_FIELDS = ("updated_at", "updatedAt", "timestamp")

DEFAULT_ENTITY_STRATEGIES: dict[str, ResolutionStrategy] = {
    EntityType.USER.value: ResolutionStrategy.REMOTE_WINS,
    EntityType.MATERIAL.value: ResolutionStrategy.REMOTE_WINS,
    EntityType.ACHIEVEMENT.value: ResolutionStrategy.REMOTE_WINS,
    EntityType.CHALLENGE.value: ResolutionStrategy.REMOTE_WINS,
    EntityType.FEEDBACK.value: ResolutionStrategy.LOCAL_WINS,
}


def _pick(data: Any, fields: tuple[str, ...]) -> Any:
    if not isinstance(data, dict):
        return None
    for field in fields:
        value = data.get(field)
        if value is not None:
            return value
    return None


def _compare(local: Any, remote: Any) -> int | None:
    """Return 1 if local is newer, -1 if remote is newer, 0 on tie, None if incomparable."""
    if local is None or remote is None:
        return None
    try:
        if local > remote:
            return 1
        if local < remote:
            return -1
        return 0
    except TypeError:
        return None


def local_is_newer(descriptor: ConflictDescriptor) -> bool:
    """Compare by version, then by timestamp field, then by descriptor timestamps."""
    local, remote = descriptor.local_data, descriptor.remote_data
    for lhs, rhs in (
        (_pick(local, VERSION_FIELDS), _pick(remote, VERSION_FIELDS)),
        (_pick(local, TIMESTAMP_FIELDS), _pick(remote, TIMESTAMP_FIELDS)),
        (descriptor.local_timestamp, descriptor.remote_timestamp),
    ):
        order = _compare(lhs, rhs)
        if order is not None and order != 0:
            return order > 0
        if order == 0:
            # Equal on the most significant comparable key is a tie
            return False
    return False


class ConflictResolver:
    """Registry of per-entity merge rules plus the resolution algorithm."""

    def __init__(
        self,
        default_strategy: ResolutionStrategy = ResolutionStrategy.LATEST_WINS,
        entity_strategies: dict[str, ResolutionStrategy] | None = None,
    ):
        self.default_strategy = default_strategy
        self._merge_functions: dict[str, MergeFunction] = {}
        self._field_strategies: dict[str, dict[str, tuple[FieldMergeStrategy, FieldMerge | None]]] = {}
        self._entity_strategies: dict[str, ResolutionStrategy] = dict(entity_strategies or {})

    # --- Registry ---

    def register_merge_function(self, entity_type, fn: MergeFunction) -> None:
        self._merge_functions[entity_key(entity_type)] = fn

    def unregister_merge_function(self, entity_type) -> None:
        self._merge_functions.pop(entity_key(entity_type), None)

    def has_merge_function(self, entity_type) -> bool:
        return entity_key(entity_type) in self._merge_functions

    def set_strategy(self, entity_type, strategy: ResolutionStrategy) -> None:
        self._entity_strategies[entity_key(entity_type)] = ResolutionStrategy(strategy)

    def strategy_for(self, entity_type) -> ResolutionStrategy:
        return self._entity_strategies.get(entity_key(entity_type), self.default_strategy)

    def register_field_strategies(self, entity_type, strategies: dict) -> None:
        """Register per-field rules; values are a FieldMergeStrategy or (CUSTOM, fn)."""
        normalised: dict[str, tuple[FieldMergeStrategy, FieldMerge | None]] = {}
        for field, rule in strategies.items():
            if isinstance(rule, tuple):
                strategy, fn = rule
                normalised[field] = (FieldMergeStrategy(strategy), fn)
            else:
                normalised[field] = (FieldMergeStrategy(rule), None)
        self._field_strategies[entity_key(entity_type)] = normalised

    # --- Resolution ---

    def resolve(self, descriptor: ConflictDescriptor, entity_type=None) -> ResolutionOutcome:
        key = entity_key(entity_type) if entity_type is not None else descriptor.type
        local, remote = descriptor.local_data, descriptor.remote_data
        strategy = self.strategy_for(key)

        if descriptor.conflict_type == ConflictType.BOTH_DELETED:
            return ResolutionOutcome(
                resolved_data=None,
                should_delete=True,
                strategy_used=ResolutionStrategy.REMOTE_WINS,
            )
        if descriptor.conflict_type == ConflictType.LOCAL_DELETED_REMOTE_MODIFIED:
            return self._remote_wins(descriptor)
        if descriptor.conflict_type == ConflictType.REMOTE_DELETED_LOCAL_MODIFIED:
            if strategy == ResolutionStrategy.REMOTE_WINS:
                return ResolutionOutcome(
                    resolved_data=None,
                    should_delete=True,
                    strategy_used=ResolutionStrategy.REMOTE_WINS,
                )
            return self._local_wins(descriptor)

        merge_fn = self._merge_functions.get(key)
        if merge_fn is not None:
            return ResolutionOutcome(
                resolved_data=merge_fn(local, remote),
                should_delete=False,
                strategy_used=ResolutionStrategy.MERGE,
            )

        field_rules = self._field_strategies.get(key)
        if field_rules is not None and isinstance(local, dict) and isinstance(remote, dict):
            return self._field_level_merge(descriptor, field_rules)

        if strategy == ResolutionStrategy.LOCAL_WINS:
            return self._local_wins(descriptor)
        if strategy == ResolutionStrategy.REMOTE_WINS:
            return self._remote_wins(descriptor)
        if strategy == ResolutionStrategy.MANUAL:
            return ResolutionOutcome(
                resolved_data=remote,
                should_delete=False,
                strategy_used=ResolutionStrategy.MANUAL,
                needs_manual_resolution=True,
            )
        if strategy == ResolutionStrategy.MERGE:
            logger.debug("No merge function for %s, falling back to latest-wins", key)

        if local_is_newer(descriptor):
            return self._local_wins(descriptor)
        return self._remote_wins(descriptor)

    @staticmethod
    def _local_wins(descriptor: ConflictDescriptor) -> ResolutionOutcome:
        return ResolutionOutcome(
            resolved_data=descriptor.local_data,
            should_delete=descriptor.local_data is None,
            strategy_used=ResolutionStrategy.LOCAL_WINS,
        )

    @staticmethod
    def _remote_wins(descriptor: ConflictDescriptor) -> ResolutionOutcome:
        return ResolutionOutcome(
            resolved_data=descriptor.remote_data,
            should_delete=descriptor.remote_data is None,
            strategy_used=ResolutionStrategy.REMOTE_WINS,
        )

    def _field_level_merge(
        self,
        descriptor: ConflictDescriptor,
        rules: dict[str, tuple[FieldMergeStrategy, FieldMerge | None]],
    ) -> ResolutionOutcome:
        """Start from remote, copy local-only fields, apply rules where both sides differ."""
        local: dict = descriptor.local_data
        remote: dict = descriptor.remote_data
        merged = dict(remote)
        conflicts: list[FieldConflict] = []
        newer_local = local_is_newer(descriptor)

        for field in sorted(set(local) | set(remote)):
            in_local, in_remote = field in local, field in remote
            if in_local and not in_remote:
                merged[field] = local[field]
                continue
            if not in_local or local[field] == remote[field]:
                continue

            strategy, custom = rules.get(field, (FieldMergeStrategy.REMOTE_WINS, None))
            local_value, remote_value = local[field], remote[field]

            if strategy == FieldMergeStrategy.LOCAL_WINS:
                resolved = local_value
            elif strategy == FieldMergeStrategy.LATEST_WINS:
                resolved = local_value if newer_local else remote_value
            elif strategy == FieldMergeStrategy.CONCATENATE and isinstance(local_value, str) \
                    and isinstance(remote_value, str):
                resolved = f"{remote_value} | {local_value}"
            elif strategy == FieldMergeStrategy.NUMERIC_ADD and _is_number(local_value) \
                    and _is_number(remote_value):
                resolved = local_value + remote_value
            elif strategy == FieldMergeStrategy.CUSTOM and custom is not None:
                resolved = custom(local_value, remote_value)
            else:
                resolved = remote_value

            merged[field] = resolved
            conflicts.append(FieldConflict(
                field=field,
                local_value=local_value,
                remote_value=remote_value,
                resolved_value=resolved,
                strategy=strategy,
            ))

        return ResolutionOutcome(
            resolved_data=merged,
            should_delete=False,
            strategy_used=ResolutionStrategy.MERGE,
            field_conflicts=conflicts,
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
