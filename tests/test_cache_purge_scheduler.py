from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from anibridge.services.cache_purge_scheduler import CachePurgeScheduler
from anibridge.telemetry import TelemetryClient


class _CountingStore:
    def __init__(self, removed: int = 2) -> None:
        self.calls = 0
        self._removed = removed
        self.purged = threading.Event()

    def purge_expired(self) -> int:
        self.calls += 1
        self.purged.set()
        return self._removed


class _BrokenStore:
    def purge_expired(self) -> int:
        raise OSError("database is locked")


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_run_once_reports_removed_rows() -> None:
    sink = _CaptureSink()
    scheduler = CachePurgeScheduler(
        _CountingStore(removed=3),
        60,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )

    assert scheduler.run_once() == 3
    event_name, attributes = sink.events[0]
    assert event_name == "cache.purge.finish"
    assert attributes["removed"] == 3


def test_run_once_survives_store_errors() -> None:
    sink = _CaptureSink()
    scheduler = CachePurgeScheduler(
        _BrokenStore(),
        60,
        telemetry=TelemetryClient(enabled=True, sink=sink),
    )

    assert scheduler.run_once() is None
    event_name, attributes = sink.events[0]
    assert event_name == "cache.purge.error"
    assert attributes["error_type"] == "OSError"


def test_start_runs_first_tick_and_stop_joins_thread() -> None:
    store = _CountingStore()
    scheduler = CachePurgeScheduler(store, 3600)

    scheduler.start()
    try:
        assert store.purged.wait(timeout=2)
        assert scheduler.running
    finally:
        scheduler.stop()

    assert not scheduler.running
    assert store.calls == 1
