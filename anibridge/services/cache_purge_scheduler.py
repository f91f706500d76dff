from __future__ import annotations

import logging
import threading
import time
from typing import Protocol
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from anibridge.telemetry import TelemetryClient

LOGGER = logging.getLogger("anibridge.cache_purge")


class PurgeableStore(Protocol):
    def purge_expired(self) -> int:
        ...


class CachePurgeScheduler:
    """Background thread that periodically deletes expired cache rows.

    Expired rows already read as absent; the purge only bounds the size of
    the database.
    """

    def __init__(
        self,
        store: PurgeableStore,
        interval_seconds: int,
        *,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._store = store
        self._interval_seconds = max(1, interval_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="anibridge-cache-purge")
        self._thread.daemon = True
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None

    def run_once(self) -> int | None:
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(purge_tick_id=tick_id)
        started_at = time.perf_counter()
        try:
            removed = self._store.purge_expired()
        except Exception as exc:
            self._telemetry.emit(
                "cache.purge.error",
                tick_id=tick_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            LOGGER.warning("expired cache purge failed", exc_info=True)
            return None
        else:
            self._telemetry.emit(
                "cache.purge.finish",
                tick_id=tick_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                removed=removed,
            )
            if removed:
                LOGGER.info("purged expired cache entries removed=%s", removed)
            return removed
        finally:
            reset_contextvars(**tick_tokens)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self._interval_seconds)
