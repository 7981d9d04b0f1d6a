"""Composition root: wires store, monitor, queue, resolver and orchestrator together."""

import logging

from ecosync.config import Settings, settings as default_settings
from ecosync.models.enums import EntityType
from ecosync.services.cache import OfflineCache
from ecosync.services.conflict import DEFAULT_ENTITY_STRATEGIES, ConflictResolver
from ecosync.services.network import ConnectivityProbe, NetworkMonitor
from ecosync.services.queue import OperationQueue
from ecosync.services.scheduler import SyncScheduler
from ecosync.services.storage import KeyValueStore, create_store
from ecosync.services.sync import SyncService

logger = logging.getLogger(__name__)

IMPACT_TOTAL_FIELDS = ("plasticSaved", "co2Reduced", "treesEquivalent")


def merge_impact(local: dict, remote: dict) -> dict:
    """Impact counters accumulate on both sides, so conflicting totals are summed."""
    merged = dict(remote)
    for field in IMPACT_TOTAL_FIELDS:
        merged[field] = (local.get(field) or 0) + (remote.get(field) or 0)
    return merged


def merge_collection(local: dict, remote: dict) -> dict:
    """Local edits win field by field; fields only the server has are kept."""
    return {**remote, **local}


def register_default_merge_functions(service: SyncService) -> None:
    service.register_merge_function(EntityType.IMPACT, merge_impact)
    service.register_merge_function(EntityType.COLLECTION, merge_collection)


class SyncRuntime:
    """Owns the single SyncService instance and its background helpers."""

    def __init__(
        self,
        store: KeyValueStore,
        monitor: NetworkMonitor,
        service: SyncService,
        scheduler: SyncScheduler,
        probe: ConnectivityProbe | None = None,
        probe_interval: float = 10.0,
    ):
        self.store = store
        self.monitor = monitor
        self.service = service
        self.scheduler = scheduler
        self.probe = probe
        self.probe_interval = probe_interval

    async def start(self) -> None:
        await self.service.start()
        self.scheduler.start()
        if self.probe is not None:
            self.probe.start(self.probe_interval)

    async def stop(self) -> None:
        if self.probe is not None:
            await self.probe.stop()
        await self.scheduler.stop()
        await self.service.stop()
        await self.monitor.close()
        await self.store.close()


async def build_sync_runtime(
    config: Settings | None = None,
    store: KeyValueStore | None = None,
    monitor: NetworkMonitor | None = None,
) -> SyncRuntime:
    config = config or default_settings
    store = store or await create_store(config)
    monitor = monitor or NetworkMonitor(
        initial_online=config.START_ONLINE,
        debounce_seconds=config.NETWORK_DEBOUNCE_SECONDS,
    )
    queue = OperationQueue(store, max_retries=config.SYNC_MAX_RETRIES)
    resolver = ConflictResolver(entity_strategies=DEFAULT_ENTITY_STRATEGIES)
    service = SyncService(
        store,
        monitor,
        queue,
        resolver,
        cache=OfflineCache(store),
        operation_timeout=config.SYNC_OPERATION_TIMEOUT_SECONDS,
    )
    register_default_merge_functions(service)

    probe = None
    if config.NETWORK_PROBE_URL:
        probe = ConnectivityProbe(
            monitor,
            config.NETWORK_PROBE_URL,
            timeout=config.NETWORK_PROBE_TIMEOUT_SECONDS,
        )

    logger.info(
        "Sync runtime ready (store=%s, max_retries=%d, interval=%ss)",
        type(store).__name__,
        config.SYNC_MAX_RETRIES,
        config.SYNC_INTERVAL_SECONDS,
    )
    return SyncRuntime(
        store,
        monitor,
        service,
        SyncScheduler(service, config.SYNC_INTERVAL_SECONDS),
        probe=probe,
        probe_interval=config.NETWORK_PROBE_INTERVAL_SECONDS,
    )
