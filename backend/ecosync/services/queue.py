"""Persisted FIFO of offline mutations with retry bookkeeping and a dead-letter list."""

import asyncio
import logging
import time
import uuid
from collections import Counter
from typing import Any, Awaitable, Callable

from ecosync.core.errors import (
    OperationDeferred,
    OperationNotFoundError,
    PermanentSyncError,
    StorageError,
)
from ecosync.models.enums import QUEUEABLE_OPERATIONS, OperationState, OperationType
from ecosync.schemas.sync import DrainResult, QueuedOperation, entity_key

logger = logging.getLogger(__name__)

PENDING_OPERATIONS_KEY = "ecosync:pendingOperations"
FAILED_OPERATIONS_KEY = "ecosync:failedOperations"

Executor = Callable[[QueuedOperation], Awaitable[Any]]
ErrorCallback = Callable[[str, Exception], None]


class OperationQueue:
    """Ordered list of pending operations, replayed oldest-first one at a time.

    Items leave the pending list only on a confirmed successful replay. Items
    that exhaust ``max_retries`` or raise PermanentSyncError move to the
    dead-letter list, where they stay until retried or discarded explicitly.
    """

    def __init__(
        self,
        store,
        max_retries: int = 5,
        storage_key: str = PENDING_OPERATIONS_KEY,
        failed_key: str = FAILED_OPERATIONS_KEY,
    ):
        self.store = store
        self.max_retries = max_retries
        self.storage_key = storage_key
        self.failed_key = failed_key
        self._items: list[QueuedOperation] = []
        self._failed: list[QueuedOperation] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._drain_lock = asyncio.Lock()
        self._last_timestamp = 0.0

    # --- Persistence ---

    async def load(self) -> None:
        """Restore pending and dead-lettered operations from the store."""
        self._items = await self._load_list(self.storage_key)
        self._failed = await self._load_list(self.failed_key)
        if self._items or self._failed:
            self._last_timestamp = max(op.timestamp for op in self._items + self._failed)
        logger.info(
            "Loaded offline queue: %d pending, %d failed",
            len(self._items),
            len(self._failed),
        )

    async def _load_list(self, key: str) -> list[QueuedOperation]:
        try:
            raw = await self.store.get(key)
        except StorageError as exc:
            self._report_error(f"load:{key}", exc)
            return []
        if not raw:
            return []
        operations: list[QueuedOperation] = []
        for item in raw:
            try:
                operations.append(QueuedOperation.model_validate(item))
            except (ValueError, TypeError) as exc:
                self._report_error(f"load:{key}", exc)
        return operations

    async def _persist(self, context: str) -> None:
        try:
            await self.store.set(
                self.storage_key,
                [op.model_dump(mode="json") for op in self._items],
            )
            await self.store.set(
                self.failed_key,
                [op.model_dump(mode="json") for op in self._failed],
            )
        except StorageError as exc:
            self._report_error(context, exc)

    # --- Error channel ---

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        self._error_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._error_callbacks:
                self._error_callbacks.remove(callback)

        return unsubscribe

    def _report_error(self, context: str, exc: Exception) -> None:
        logger.error("Offline queue %s failed: %s", context, exc)
        for callback in list(self._error_callbacks):
            try:
                callback(context, exc)
            except Exception:
                logger.exception("Queue error callback raised")

    # --- Mutations ---

    def _next_timestamp(self) -> float:
        # Strictly increasing, even when the clock stalls or steps back
        now = time.time()
        if now <= self._last_timestamp:
            now = self._last_timestamp + 1e-6
        self._last_timestamp = now
        return now

    async def enqueue(
        self,
        entity_type,
        operation: OperationType | str,
        payload: Any,
        entity_id: str | None = None,
    ) -> QueuedOperation:
        operation = OperationType(operation)
        if operation not in QUEUEABLE_OPERATIONS:
            raise ValueError(f"{operation.value} operations cannot be queued")
        op = QueuedOperation(
            id=f"op_{uuid.uuid4().hex}",
            entity_type=entity_key(entity_type),
            operation=operation,
            entity_id=entity_id,
            payload=payload,
            timestamp=self._next_timestamp(),
        )
        self._items.append(op)
        await self._persist("enqueue")
        logger.debug("Queued %s %s (%s)", op.operation.value, op.entity_type, op.id)
        return op

    async def dequeue(self, operation_id: str) -> None:
        before = len(self._items)
        self._items = [op for op in self._items if op.id != operation_id]
        if len(self._items) != before:
            await self._persist("dequeue")

    async def update(self, operation_id: str, patch: dict) -> QueuedOperation:
        for index, op in enumerate(self._items):
            if op.id == operation_id:
                updated = op.model_copy(update=patch)
                self._items[index] = updated
                await self._persist("update")
                return updated
        raise OperationNotFoundError(operation_id)

    async def clear(self) -> None:
        self._items = []
        self._failed = []
        await self._persist("clear")

    # --- Inspection ---

    def get(self, operation_id: str) -> QueuedOperation | None:
        for op in self._items:
            if op.id == operation_id:
                return op
        return None

    def pending(self) -> list[QueuedOperation]:
        return sorted(self._items, key=lambda op: op.timestamp)

    def failed_operations(self) -> list[QueuedOperation]:
        return sorted(self._failed, key=lambda op: op.timestamp)

    def count_by_entity_type(self) -> dict[str, int]:
        return dict(Counter(op.entity_type for op in self._items))

    def __len__(self) -> int:
        return len(self._items)

    # --- Dead-letter handling ---

    async def _dead_letter(self, op: QueuedOperation, reason: str) -> None:
        self._items = [item for item in self._items if item.id != op.id]
        dead = op.model_copy(update={"state": OperationState.FAILED, "last_error": reason})
        self._failed.append(dead)
        await self._persist("dead_letter")
        logger.warning(
            "Operation %s (%s %s) moved to failed list after %d attempts: %s",
            op.id,
            op.operation.value,
            op.entity_type,
            op.retry_count,
            reason,
        )

    async def retry_failed(self, operation_id: str) -> QueuedOperation:
        """Put a dead-lettered operation back on the queue with a fresh retry budget."""
        for op in self._failed:
            if op.id == operation_id:
                self._failed = [item for item in self._failed if item.id != operation_id]
                revived = op.model_copy(update={
                    "state": OperationState.PENDING,
                    "retry_count": 0,
                    "last_error": None,
                })
                self._items.append(revived)
                await self._persist("retry_failed")
                return revived
        raise OperationNotFoundError(operation_id)

    async def discard_failed(self, operation_id: str) -> QueuedOperation:
        for op in self._failed:
            if op.id == operation_id:
                self._failed = [item for item in self._failed if item.id != operation_id]
                await self._persist("discard_failed")
                logger.warning(
                    "Discarded failed operation %s (%s %s) at user request",
                    op.id,
                    op.operation.value,
                    op.entity_type,
                )
                return op
        raise OperationNotFoundError(operation_id)

    # --- Replay ---

    async def drain(self, executor: Executor, timeout: float | None = None) -> DrainResult:
        """Replay every pending operation oldest-first, strictly one at a time.

        A failing item is charged a retry and left in place; the drain then
        moves on to the next item instead of aborting.
        """
        async with self._drain_lock:
            result = DrainResult()
            for op in self.pending():
                # Skip items removed while an earlier executor was suspended
                if self.get(op.id) is None:
                    continue
                result.processed += 1
                try:
                    if timeout:
                        await asyncio.wait_for(executor(op), timeout=timeout)
                    else:
                        await executor(op)
                except OperationDeferred as exc:
                    result.deferred += 1
                    logger.info("Operation %s deferred: %s", op.id, exc)
                    continue
                except PermanentSyncError as exc:
                    result.failed += 1
                    result.dead_lettered += 1
                    await self._dead_letter(op, str(exc) or exc.__class__.__name__)
                    continue
                except Exception as exc:
                    result.failed += 1
                    reason = str(exc) or exc.__class__.__name__
                    if self.get(op.id) is None:
                        continue
                    updated = await self.update(op.id, {
                        "retry_count": op.retry_count + 1,
                        "last_error": reason,
                    })
                    if updated.retry_count >= self.max_retries:
                        result.dead_lettered += 1
                        await self._dead_letter(updated, reason)
                    else:
                        logger.warning(
                            "Replay of %s (%s %s) failed, attempt %d/%d: %s",
                            op.id,
                            op.operation.value,
                            op.entity_type,
                            updated.retry_count,
                            self.max_retries,
                            reason,
                        )
                    continue

                result.succeeded += 1
                await self.dequeue(op.id)

            result.remaining = len(self._items)
            return result
