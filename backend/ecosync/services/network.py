"""Connectivity tracking: a subscribable online/offline monitor and an HTTP probe.

Delivery policy: adjacent identical states are deduplicated. Every subscriber
receives the current snapshot when it subscribes and then each real
transition exactly once. With ``debounce_seconds`` set, going offline is
delayed and cancelled by a quick recovery; going online is never delayed.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

NetworkCallback = Callable[[bool], Awaitable[None] | None]


class NetworkMonitor:
    """Current online/offline snapshot plus change notifications."""

    def __init__(self, initial_online: bool = True, debounce_seconds: float = 0.0):
        self._online = initial_online
        self.debounce_seconds = debounce_seconds
        self._subscribers: list[NetworkCallback] = []
        self._pending_offline: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: NetworkCallback) -> Callable[[], None]:
        """Register a callback and deliver the current state to it immediately.

        Async callbacks get the snapshot on the running loop, so they must be
        subscribed from inside one.
        """
        self._subscribers.append(callback)
        self._deliver_snapshot(callback, self._online)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def report(self, online: bool) -> None:
        """Feed a raw connectivity reading from the platform or a probe."""
        if online:
            if self._pending_offline is not None:
                self._pending_offline.cancel()
                self._pending_offline = None
            await self._transition(True)
            return

        if self.debounce_seconds > 0 and self._online:
            if self._pending_offline is None:
                self._pending_offline = asyncio.create_task(self._debounced_offline())
            return

        await self._transition(False)

    async def _debounced_offline(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._pending_offline = None
        await self._transition(False)

    async def _transition(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Network is now %s", "online" if online else "offline")
        # Iterate over a copy so callbacks may unsubscribe during delivery
        for callback in list(self._subscribers):
            try:
                result = callback(online)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Network subscriber raised during delivery")

    def _deliver_snapshot(self, callback: NetworkCallback, online: bool) -> None:
        try:
            result = callback(online)
        except Exception:
            logger.exception("Network subscriber raised on initial snapshot")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def close(self) -> None:
        if self._pending_offline is not None:
            self._pending_offline.cancel()
            self._pending_offline = None
        for task in list(self._background):
            task.cancel()
        self._subscribers.clear()


class ConnectivityProbe:
    """Polls a URL over HTTP and reports reachability to a NetworkMonitor."""

    def __init__(
        self,
        monitor: NetworkMonitor,
        url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.monitor = monitor
        self.url = url
        self.timeout = timeout
        self._client = client
        self._task: asyncio.Task | None = None

    async def check(self) -> bool:
        """Return True when the probe URL answers. Any failure means offline."""
        try:
            if self._client is not None:
                resp = await self._client.head(self.url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.head(self.url)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe to %s failed: %s", self.url, exc)
            return False
        return resp.status_code < 400

    async def run(self, interval: float) -> None:
        while True:
            await self.monitor.report(await self.check())
            await asyncio.sleep(interval)

    def start(self, interval: float) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(interval))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
