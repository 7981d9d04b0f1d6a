"""
Shared pytest fixtures for the EcoSync test suite.

Provides:
- In-memory and failing key/value stores
- Network monitors starting online or offline
- Queue, resolver and orchestrator factories
- A scriptable remote API double for sync functions
"""

from typing import Any

import pytest

from ecosync.core.errors import StorageError
from ecosync.services.cache import OfflineCache
from ecosync.services.conflict import ConflictResolver
from ecosync.services.network import NetworkMonitor
from ecosync.services.queue import OperationQueue
from ecosync.services.storage import MemoryKeyValueStore
from ecosync.services.sync import SyncService


class FailingStore(MemoryKeyValueStore):
    """Memory store whose writes (and optionally reads) raise StorageError."""

    def __init__(self, fail_reads: bool = False) -> None:
        super().__init__()
        self.fail_writes = True
        self.fail_reads = fail_reads

    async def get(self, key: str) -> Any | None:
        if self.fail_reads:
            raise StorageError("disk unavailable")
        return await super().get(key)

    async def set(self, key: str, value: Any) -> None:
        if self.fail_writes:
            raise StorageError("disk full")
        await super().set(key, value)


class FakeRemote:
    """Records calls and returns or raises whatever the test scripts for it."""

    def __init__(self) -> None:
        self.calls: list[Any] = []
        self.responses: list[Any] = []

    async def __call__(self, data: Any) -> Any:
        self.calls.append(data)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        if isinstance(data, dict):
            return {**data, "id": data.get("id", "srv-1"), "synced": True}
        return {"synced": True}


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def monitor() -> NetworkMonitor:
    return NetworkMonitor(initial_online=True)


@pytest.fixture
def offline_monitor() -> NetworkMonitor:
    return NetworkMonitor(initial_online=False)


@pytest.fixture
def queue(store) -> OperationQueue:
    return OperationQueue(store, max_retries=5)


@pytest.fixture
def resolver() -> ConflictResolver:
    return ConflictResolver()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def make_service(store):
    """Factory building a SyncService around the given monitor."""

    def _make(monitor: NetworkMonitor, max_retries: int = 5, timeout: float | None = None) -> SyncService:
        return SyncService(
            store,
            monitor,
            OperationQueue(store, max_retries=max_retries),
            ConflictResolver(),
            cache=OfflineCache(store),
            operation_timeout=timeout,
        )

    return _make
