from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, Protocol
from urllib.parse import quote

from anibridge.telemetry import TelemetryClient

LOGGER = logging.getLogger("anibridge.cache")
CACHE_KEY_SEPARATOR = ":"


class CacheStore(Protocol):
    def get(self, key: str) -> object | None:
        ...

    def set(self, key: str, value: object, ttl_seconds: int) -> None:
        ...


def build_cache_key(namespace: str, *parts: object) -> str:
    """Deterministic key for a computation and its inputs.

    Parts are percent-encoded, so a separator inside a part cannot make two
    different inputs collide.
    """
    encoded = [quote(str(part), safe="") for part in parts]
    return CACHE_KEY_SEPARATOR.join([namespace, *encoded])


def is_empty_value(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, (dict, list, tuple, str)):
        return len(value) == 0
    return False


class ResponseCache:
    """Memoizes expensive lookups in a TTL store.

    Reads treat empty stored values as misses, so a cached "nothing found"
    heals on the next request. A store that fails to read counts as a miss.
    Writes run as detached tasks whose failures are logged and never reach
    the caller. Concurrent lookups of the same key
    within one event loop share a single computation.
    """

    def __init__(self, store: CacheStore, *, telemetry: TelemetryClient | None = None) -> None:
        self._store = store
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._pending_writes: set[asyncio.Task[bool]] = set()
        self._in_flight: dict[str, asyncio.Future[Any]] = {}

    @property
    def pending_writes(self) -> int:
        return len(self._pending_writes)

    async def read(self, key: str) -> object | None:
        try:
            value = await asyncio.to_thread(self._store.get, key)
        except Exception as exc:
            LOGGER.warning("cache read failed key=%s error=%s", key, exc, exc_info=True)
            self._telemetry.emit("cache.read.error", cache_key=key, error_type=type(exc).__name__)
            return None
        if is_empty_value(value):
            return None
        return value

    async def write(self, key: str, value: object, ttl_seconds: int) -> bool:
        try:
            await asyncio.to_thread(self._store.set, key, value, ttl_seconds)
        except Exception as exc:
            LOGGER.warning("cache write failed key=%s error=%s", key, exc, exc_info=True)
            self._telemetry.emit("cache.write.error", cache_key=key, error_type=type(exc).__name__)
            return False
        return True

    def schedule_write(self, key: str, value: object, ttl_seconds: int) -> asyncio.Task[bool]:
        """Start a background write; the caller does not wait for it."""
        task = asyncio.create_task(self.write(key, value, ttl_seconds), name=f"cache-write:{key}")
        self._pending_writes.add(task)
        task.add_done_callback(self._on_write_done)
        return task

    async def drain(self) -> None:
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def cached_lookup(
        self,
        key: str,
        ttl_seconds: int,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            self._telemetry.emit("cache.lookup.joined", cache_key=key)
            return await asyncio.shield(in_flight)

        cached = await self.read(key)
        if cached is not None:
            self._telemetry.emit("cache.lookup.hit", cache_key=key)
            return cached

        # Another caller may have started the computation while we were reading.
        in_flight = self._in_flight.get(key)
        if in_flight is None:
            self._telemetry.emit("cache.lookup.miss", cache_key=key)
            in_flight = asyncio.ensure_future(self._compute_and_store(key, ttl_seconds, compute))
            self._in_flight[key] = in_flight
            in_flight.add_done_callback(partial(self._forget_in_flight, key))
        return await asyncio.shield(in_flight)

    async def _compute_and_store(
        self,
        key: str,
        ttl_seconds: int,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        value = await compute()
        self.schedule_write(key, value, ttl_seconds)
        return value

    def _forget_in_flight(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._in_flight.get(key) is future:
            del self._in_flight[key]
        if not future.cancelled():
            # Marks the exception as retrieved when every waiter went away.
            future.exception()

    def _on_write_done(self, task: asyncio.Task[bool]) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error(
                "cache write task failed unexpectedly task=%s",
                task.get_name(),
                exc_info=exc,
            )
