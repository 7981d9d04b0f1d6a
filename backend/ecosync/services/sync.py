"""Offline-aware sync orchestrator.

Watches the network monitor, routes mutations either straight to the remote
API or onto the offline queue, drains the queue on reconnect and hands version
conflicts to the conflict resolver. Status changes (online / offline /
syncing) are broadcast to subscribers, with adjacent duplicates suppressed.
"""

import logging
import time
import uuid
from typing import Any, Awaitable, Callable

from ecosync.core.errors import (
    ConflictNotFoundError,
    OfflineDataUnavailableError,
    OperationDeferred,
    OperationNotFoundError,
    StorageError,
    SyncConflictError,
)
from ecosync.models.enums import (
    OperationType,
    ResolutionStrategy,
    SyncStatus,
    SyncTrigger,
)
from ecosync.schemas.sync import (
    ConflictDescriptor,
    DrainResult,
    PendingConflict,
    QueuedOperation,
    ResolutionOutcome,
    SyncStats,
    entity_key,
)
from ecosync.services.conflict import ConflictResolver, MergeFunction
from ecosync.services.queue import OperationQueue

logger = logging.getLogger(__name__)

SYNC_STATS_KEY = "ecosync:syncStats"
PENDING_CONFLICTS_KEY = "ecosync:pendingConflicts"

# Markers on optimistic results returned while offline
QUEUED_FLAG = "_queued"
QUEUED_OPERATION_ID = "_queued_operation_id"
OFFLINE_CREATED_FLAG = "_offline_created"
TEMP_ID_PREFIX = "temp_"

SyncFunction = Callable[[Any], Awaitable[Any]]
SyncHandler = Callable[[QueuedOperation], Awaitable[Any]]
StatusCallback = Callable[[SyncStatus], None]

# Returned by the conflict path when it has already updated the cache itself
_CACHE_SETTLED = object()


def is_queued_result(result: Any) -> bool:
    """True when a result came from the offline queue rather than the server."""
    return isinstance(result, dict) and result.get(QUEUED_FLAG) is True


def _entity_id_of(data: Any) -> str | None:
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None


class SyncService:
    """Single coordinating instance; build one at the composition root and inject it."""

    def __init__(
        self,
        store,
        monitor,
        queue: OperationQueue,
        resolver: ConflictResolver,
        cache=None,
        *,
        operation_timeout: float | None = None,
    ):
        self._store = store
        self._monitor = monitor
        self._queue = queue
        self._resolver = resolver
        self._cache = cache
        self.operation_timeout = operation_timeout or None

        self._status = SyncStatus.ONLINE if self.is_online() else SyncStatus.OFFLINE
        self._status_listeners: list[StatusCallback] = []
        self._sync_fns: dict[str, SyncFunction] = {}
        self._handlers: dict[str, SyncHandler] = {}
        self._pending_conflicts: list[PendingConflict] = []
        self._conflict_fns: dict[str, SyncFunction] = {}
        self._stats: dict[str, Any] = {
            "total_syncs": 0,
            "successful_syncs": 0,
            "failed_syncs": 0,
            "last_sync_at": None,
            "last_error": None,
        }
        self._syncing = False
        self._resync_requested = False
        self._drain_conflicts = 0
        self._network_unsubscribe: Callable[[], None] | None = None

    # --- Lifecycle ---

    async def start(self) -> None:
        """Restore persisted state, follow the network monitor, drain leftovers."""
        await self._queue.load()
        await self._load_state()
        self._update_status(SyncStatus.ONLINE if self.is_online() else SyncStatus.OFFLINE)
        self._network_unsubscribe = self._monitor.subscribe(self._handle_network_change)
        if self.is_online() and len(self._queue):
            await self.trigger_sync(SyncTrigger.STARTUP)

    async def stop(self) -> None:
        if self._network_unsubscribe is not None:
            self._network_unsubscribe()
            self._network_unsubscribe = None

    async def _load_state(self) -> None:
        try:
            stats = await self._store.get(SYNC_STATS_KEY)
            if stats:
                self._stats.update(stats)
            conflicts = await self._store.get(PENDING_CONFLICTS_KEY) or []
            self._pending_conflicts = [PendingConflict.model_validate(c) for c in conflicts]
        except (StorageError, ValueError) as exc:
            logger.error("Could not restore sync state, starting fresh: %s", exc)

    async def _save(self, key: str, value: Any) -> None:
        try:
            await self._store.set(key, value)
        except StorageError as exc:
            logger.error("Could not persist %s: %s", key, exc)

    # --- Status ---

    @property
    def status(self) -> SyncStatus:
        return self._status

    def is_online(self) -> bool:
        try:
            return bool(self._monitor.is_online())
        except Exception:
            logger.exception("Network check failed, treating as offline")
            return False

    def subscribe_to_status_changes(self, callback: StatusCallback) -> Callable[[], None]:
        """Deliver the current status now and every later transition."""
        self._status_listeners.append(callback)
        self._notify(callback, self._status)

        def unsubscribe() -> None:
            if callback in self._status_listeners:
                self._status_listeners.remove(callback)

        return unsubscribe

    def _update_status(self, status: SyncStatus) -> None:
        if status == self._status:
            return
        logger.info("Sync status %s -> %s", self._status.value, status.value)
        self._status = status
        for callback in list(self._status_listeners):
            self._notify(callback, status)

    @staticmethod
    def _notify(callback: StatusCallback, status: SyncStatus) -> None:
        try:
            callback(status)
        except Exception:
            logger.exception("Status subscriber raised")

    async def _handle_network_change(self, online: bool) -> None:
        if online != self.is_online():
            # Stale reading, the monitor has already moved on
            return
        if not online:
            self._update_status(SyncStatus.OFFLINE)
            return
        if self._syncing:
            # The running sync drains again before it settles the final status
            self._resync_requested = True
            self._update_status(SyncStatus.SYNCING)
            return
        if self._status == SyncStatus.OFFLINE:
            await self.trigger_sync(SyncTrigger.NETWORK_RECONNECTION)

    # --- Registries ---

    def register_merge_function(self, entity_type, fn: MergeFunction) -> None:
        self._resolver.register_merge_function(entity_type, fn)

    def set_conflict_strategy(self, entity_type, strategy: ResolutionStrategy) -> None:
        self._resolver.set_strategy(entity_type, strategy)

    def register_sync_handler(self, entity_type, handler: SyncHandler) -> None:
        """Handler used to replay queued operations whose sync function was lost on restart."""
        self._handlers[entity_key(entity_type)] = handler

    # --- Entry point ---

    async def execute_with_offline_handling(
        self,
        entity_type,
        operation: OperationType | str,
        sync_fn: SyncFunction,
        data: Any = None,
        entity_id: str | None = None,
    ) -> Any:
        """Run ``sync_fn(data)`` when online, otherwise queue it and return an optimistic result.

        Online failures propagate to the caller and nothing is queued.
        Queued results carry ``_queued`` and ``_queued_operation_id``; queued
        creates also carry ``_offline_created`` and a ``temp_`` id.
        """
        key = entity_key(entity_type)
        operation = OperationType(operation)
        entity_id = entity_id or _entity_id_of(data)

        if operation == OperationType.QUERY:
            if self.is_online():
                result = await sync_fn(data)
                if self._cache is not None and entity_id:
                    await self._cache.put(key, entity_id, result)
                return result
            return await self._query_offline(key, entity_id)

        if self.is_online():
            result = await sync_fn(data)
            await self._cache_confirmed(key, operation, entity_id, data, result)
            return result

        return await self._queue_offline(key, operation, sync_fn, data, entity_id)

    async def _queue_offline(
        self,
        key: str,
        operation: OperationType,
        sync_fn: SyncFunction,
        data: Any,
        entity_id: str | None,
    ) -> dict:
        if operation == OperationType.CREATE and not entity_id:
            entity_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex[:12]}"

        op = await self._queue.enqueue(key, operation, data, entity_id=entity_id)
        self._sync_fns[op.id] = sync_fn

        optimistic = dict(data) if isinstance(data, dict) else {"data": data}
        if operation == OperationType.CREATE:
            optimistic.setdefault("id", entity_id)
            optimistic[OFFLINE_CREATED_FLAG] = True

        if self._cache is not None and entity_id:
            if operation == OperationType.DELETE:
                await self._cache.invalidate(key, entity_id)
            else:
                await self._cache.put(key, entity_id, dict(optimistic))

        optimistic[QUEUED_FLAG] = True
        optimistic[QUEUED_OPERATION_ID] = op.id
        logger.info(
            "Offline: queued %s %s (%d pending)",
            operation.value,
            key,
            len(self._queue),
        )
        return optimistic

    async def _query_offline(self, key: str, entity_id: str | None) -> Any:
        if not entity_id:
            raise OfflineDataUnavailableError(
                f"Querying all {key} records offline is not supported"
            )
        cached = None
        if self._cache is not None:
            cached = await self._cache.get(key, entity_id)
        if cached is None:
            raise OfflineDataUnavailableError(
                f"No cached data for {key} with ID {entity_id}"
            )
        return cached

    async def _cache_confirmed(
        self,
        key: str,
        operation: OperationType,
        entity_id: str | None,
        data: Any,
        result: Any,
    ) -> None:
        if self._cache is None:
            return
        confirmed_id = _entity_id_of(result) or entity_id
        if not confirmed_id:
            return
        if operation == OperationType.DELETE:
            await self._cache.invalidate(key, confirmed_id)
        else:
            await self._cache.put(key, confirmed_id, result if isinstance(result, dict) else data)

    # --- Sync ---

    async def trigger_sync(self, trigger: SyncTrigger | str = SyncTrigger.MANUAL) -> bool:
        """Drain the queue. Returns False when offline, already syncing or aborted.

        A reconnect reported while the drain runs starts another pass, so ops
        deferred by a dropped connection are not left waiting for the next trigger.
        """
        trigger = SyncTrigger(trigger)
        if not self.is_online():
            logger.info("Sync (%s) skipped: offline", trigger.value)
            return False
        if self._syncing:
            logger.info("Sync (%s) skipped: already in progress", trigger.value)
            return False

        self._syncing = True
        self._update_status(SyncStatus.SYNCING)
        try:
            while True:
                self._resync_requested = False
                if not await self._drain_once(trigger):
                    return False
                if not (self._resync_requested and self.is_online() and len(self._queue)):
                    return True
                logger.info("Sync (%s) reconnected mid-pass, draining again", trigger.value)
        finally:
            self._syncing = False
            self._resync_requested = False
            self._update_status(SyncStatus.ONLINE if self.is_online() else SyncStatus.OFFLINE)

    async def _drain_once(self, trigger: SyncTrigger) -> bool:
        self._drain_conflicts = 0
        started = time.monotonic()
        try:
            result = await self._queue.drain(self._replay, timeout=self.operation_timeout)
            result.conflicts = self._drain_conflicts
        except Exception as exc:
            logger.exception("Sync (%s) aborted", trigger.value)
            await self._record_sync(None, exc)
            return False
        await self._record_sync(result, None)
        logger.info(
            "Sync (%s) finished in %.0fms: %d synced, %d failed, %d deferred, %d conflicts, %d remaining",
            trigger.value,
            (time.monotonic() - started) * 1000,
            result.succeeded,
            result.failed,
            result.deferred,
            result.conflicts,
            result.remaining,
        )
        return True

    async def _record_sync(self, result: DrainResult | None, exc: Exception | None) -> None:
        self._stats["total_syncs"] += 1
        self._stats["last_sync_at"] = time.time()
        if exc is None and result is not None and result.failed == 0:
            self._stats["successful_syncs"] += 1
            self._stats["last_error"] = None
        else:
            self._stats["failed_syncs"] += 1
            self._stats["last_error"] = (
                str(exc) if exc is not None else f"{result.failed} operation(s) failed"
            )
        await self._save(SYNC_STATS_KEY, self._stats)

    async def _invoke(self, op: QueuedOperation, payload: Any) -> Any:
        fn = self._sync_fns.get(op.id)
        if fn is not None:
            return await fn(payload)
        handler = self._handlers.get(op.entity_type)
        if handler is None:
            raise OperationDeferred(f"No sync handler registered for '{op.entity_type}'")
        return await handler(op.model_copy(update={"payload": payload}))

    async def _replay(self, op: QueuedOperation) -> Any:
        """Queue executor: replay one operation, routing conflicts to the resolver."""
        if not self.is_online():
            raise OperationDeferred("Connection lost during sync")
        try:
            result = await self._invoke(op, op.payload)
        except SyncConflictError as exc:
            result = await self._handle_conflict(op, exc)

        await self._after_replay(op, result)
        self._sync_fns.pop(op.id, None)
        return result

    async def _after_replay(self, op: QueuedOperation, result: Any) -> None:
        if self._cache is None or result is _CACHE_SETTLED:
            return
        if op.entity_id and op.entity_id.startswith(TEMP_ID_PREFIX):
            await self._cache.invalidate(op.entity_type, op.entity_id)
        await self._cache_confirmed(op.entity_type, op.operation, op.entity_id, op.payload, result)

    async def _handle_conflict(self, op: QueuedOperation, exc: SyncConflictError) -> Any:
        self._drain_conflicts += 1
        entity_id = exc.entity_id or op.entity_id or _entity_id_of(exc.remote_data) or op.id
        local_data = None if op.operation == OperationType.DELETE else op.payload
        descriptor = ConflictDescriptor(
            type=op.entity_type,
            id=str(entity_id),
            local_data=local_data,
            remote_data=exc.remote_data,
            local_timestamp=op.timestamp,
            remote_timestamp=exc.remote_timestamp,
        )
        outcome = self._resolver.resolve(descriptor, op.entity_type)
        self._log_outcome(descriptor, outcome)

        if outcome.needs_manual_resolution:
            await self._record_pending_conflict(op, descriptor)
            return exc.remote_data

        if outcome.should_delete:
            if self._cache is not None:
                await self._cache.invalidate(op.entity_type, str(entity_id))
            return _CACHE_SETTLED

        if outcome.strategy_used == ResolutionStrategy.REMOTE_WINS:
            # Server already holds the winning version
            if self._cache is not None:
                if op.entity_id and op.entity_id.startswith(TEMP_ID_PREFIX):
                    await self._cache.invalidate(op.entity_type, op.entity_id)
                await self._cache.put(op.entity_type, str(entity_id), outcome.resolved_data)
            return _CACHE_SETTLED

        # LOCAL_WINS or MERGE: write the resolved state back once. A second
        # conflict propagates and is charged as a failed attempt.
        return await self._invoke(op, outcome.resolved_data)

    @staticmethod
    def _log_outcome(descriptor: ConflictDescriptor, outcome: ResolutionOutcome) -> None:
        logger.info(
            "Conflict on %s/%s (%s) resolved with %s%s",
            descriptor.type,
            descriptor.id,
            descriptor.conflict_type.value,
            outcome.strategy_used.value,
            " (delete)" if outcome.should_delete else "",
        )

    def resolve_conflict(self, entity_type, entity_id: str, local_data: Any, remote_data: Any) -> Any:
        """Resolve a local/remote pair and return only the data to keep."""
        descriptor = ConflictDescriptor(
            type=entity_key(entity_type),
            id=str(entity_id),
            local_data=local_data,
            remote_data=remote_data,
        )
        outcome = self._resolver.resolve(descriptor, entity_type)
        self._log_outcome(descriptor, outcome)
        return outcome.resolved_data

    # --- Manual conflicts ---

    async def _record_pending_conflict(self, op: QueuedOperation, descriptor: ConflictDescriptor) -> None:
        conflict = PendingConflict(
            id=f"conflict_{uuid.uuid4().hex}",
            entity_type=descriptor.type,
            entity_id=descriptor.id,
            operation_id=op.id,
            local_data=descriptor.local_data,
            remote_data=descriptor.remote_data,
            detected_at=time.time(),
        )
        self._pending_conflicts.append(conflict)
        fn = self._sync_fns.get(op.id)
        if fn is not None:
            self._conflict_fns[conflict.id] = fn
        await self._save_conflicts()
        logger.warning(
            "Conflict on %s/%s needs manual resolution (%s)",
            conflict.entity_type,
            conflict.entity_id,
            conflict.id,
        )

    async def _save_conflicts(self) -> None:
        await self._save(
            PENDING_CONFLICTS_KEY,
            [c.model_dump(mode="json") for c in self._pending_conflicts],
        )

    def pending_conflicts(self) -> list[PendingConflict]:
        return list(self._pending_conflicts)

    async def resolve_pending_conflict(self, conflict_id: str, keep: str) -> PendingConflict:
        """Settle a manual conflict: ``keep="local"`` re-queues the local version."""
        conflict = next((c for c in self._pending_conflicts if c.id == conflict_id), None)
        if conflict is None:
            raise ConflictNotFoundError(conflict_id)
        if keep not in ("local", "remote"):
            raise ValueError("keep must be 'local' or 'remote'")

        self._pending_conflicts = [c for c in self._pending_conflicts if c.id != conflict_id]
        fn = self._conflict_fns.pop(conflict_id, None)
        await self._save_conflicts()

        if keep == "remote":
            if self._cache is not None and conflict.remote_data is not None:
                await self._cache.put(conflict.entity_type, conflict.entity_id, conflict.remote_data)
            return conflict

        operation = OperationType.DELETE if conflict.local_data is None else OperationType.UPDATE
        op = await self._queue.enqueue(
            conflict.entity_type, operation, conflict.local_data, entity_id=conflict.entity_id,
        )
        if fn is not None:
            self._sync_fns[op.id] = fn
        if self.is_online():
            await self.trigger_sync(SyncTrigger.NEW_OPERATION)
        return conflict

    # --- Dead-letter and housekeeping ---

    def pending_operations(self) -> list[QueuedOperation]:
        return self._queue.pending()

    def failed_operations(self) -> list[QueuedOperation]:
        return self._queue.failed_operations()

    async def retry_failed_operation(self, operation_id: str) -> QueuedOperation:
        op = await self._queue.retry_failed(operation_id)
        if self.is_online():
            await self.trigger_sync(SyncTrigger.NEW_OPERATION)
        return op

    async def discard_failed_operation(self, operation_id: str) -> QueuedOperation:
        op = await self._queue.discard_failed(operation_id)
        self._sync_fns.pop(op.id, None)
        return op

    async def get_sync_stats(self) -> SyncStats:
        return SyncStats(
            status=self._status,
            pending_operations=len(self._queue),
            failed_operations=len(self._queue.failed_operations()),
            pending_conflicts=len(self._pending_conflicts),
            by_entity_type=self._queue.count_by_entity_type(),
            **self._stats,
        )

    async def clear_offline_data(self) -> None:
        """Drop queued operations, failed operations, pending conflicts and cached entities."""
        await self._queue.clear()
        if self._cache is not None:
            await self._cache.clear()
        self._pending_conflicts = []
        self._sync_fns.clear()
        self._conflict_fns.clear()
        await self._save_conflicts()
        logger.warning("Cleared all offline data")

    def get_queued_operation(self, operation_id: str) -> QueuedOperation:
        op = self._queue.get(operation_id)
        if op is None:
            raise OperationNotFoundError(operation_id)
        return op
