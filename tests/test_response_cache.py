from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from anibridge.errors import CacheWriteError
from anibridge.repositories.database import Database
from anibridge.repositories.response_cache_repository import ResponseCacheRepository
from anibridge.services.response_cache import ResponseCache, build_cache_key, is_empty_value
from anibridge.telemetry import TelemetryClient


class _MutableClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


class _FailingStore:
    def get(self, key: str) -> object | None:
        return None

    def set(self, key: str, value: object, ttl_seconds: int) -> None:
        raise CacheWriteError("disk full", cache_key=key)


class _LockedStore:
    def get(self, key: str) -> object | None:
        raise sqlite3.OperationalError("database is locked")

    def set(self, key: str, value: object, ttl_seconds: int) -> None:
        raise sqlite3.OperationalError("database is locked")


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def _repository(tmp_path: Path, clock: _MutableClock | None = None) -> ResponseCacheRepository:
    database = Database(tmp_path / "cache.db")
    database.initialize()
    if clock is None:
        return ResponseCacheRepository(database)
    return ResponseCacheRepository(database, clock=clock)


def test_build_cache_key_escapes_separators() -> None:
    assert build_cache_key("anilist_sources", 21, 1, "HD-1", "sub") == (
        "anilist_sources:21:1:HD-1:sub"
    )
    assert build_cache_key("ns", "a:b", "c") != build_cache_key("ns", "a", "b:c")


def test_is_empty_value() -> None:
    assert is_empty_value(None)
    assert is_empty_value({})
    assert is_empty_value([])
    assert is_empty_value("")
    assert not is_empty_value({"a": 1})
    assert not is_empty_value(0)


def test_repository_round_trip_and_expiry(tmp_path: Path) -> None:
    clock = _MutableClock()
    repository = _repository(tmp_path, clock)

    repository.set("k", {"a": 1}, 60)
    assert repository.get("k") == {"a": 1}

    clock.now += timedelta(seconds=59)
    assert repository.get("k") == {"a": 1}

    clock.now += timedelta(seconds=1)
    assert repository.get("k") is None
    assert repository.get("missing") is None


def test_repository_set_replaces_existing_entry(tmp_path: Path) -> None:
    repository = _repository(tmp_path)

    repository.set("k", {"v": 1}, 60)
    repository.set("k", {"v": 2}, 60)

    assert repository.get("k") == {"v": 2}
    assert repository.count() == 1


def test_repository_rejects_unserializable_values(tmp_path: Path) -> None:
    repository = _repository(tmp_path)

    with pytest.raises(CacheWriteError) as exc_info:
        repository.set("k", {"value": object()}, 60)
    assert exc_info.value.cache_key == "k"


def test_repository_purge_expired(tmp_path: Path) -> None:
    clock = _MutableClock()
    repository = _repository(tmp_path, clock)
    repository.set("short", {"v": 1}, 10)
    repository.set("long", {"v": 2}, 1000)

    clock.now += timedelta(seconds=10)

    assert repository.purge_expired() == 1
    assert repository.count() == 1
    assert repository.get("long") == {"v": 2}


def test_empty_stored_value_reads_as_absent(tmp_path: Path) -> None:
    repository = _repository(tmp_path)
    cache = ResponseCache(repository)
    repository.set("empty", {}, 60)
    repository.set("full", {"a": 1}, 60)

    assert asyncio.run(cache.read("empty")) is None
    assert asyncio.run(cache.read("full")) == {"a": 1}


def test_cached_lookup_computes_once_then_hits(tmp_path: Path) -> None:
    cache = ResponseCache(_repository(tmp_path))
    calls: list[int] = []

    async def _compute() -> dict[str, int]:
        calls.append(1)
        return {"answer": 42}

    async def _scenario() -> tuple[object, object]:
        first = await cache.cached_lookup("k", 60, _compute)
        await cache.drain()
        second = await cache.cached_lookup("k", 60, _compute)
        return first, second

    first, second = asyncio.run(_scenario())

    assert first == second == {"answer": 42}
    assert len(calls) == 1


def test_cached_lookup_recomputes_empty_results(tmp_path: Path) -> None:
    cache = ResponseCache(_repository(tmp_path))
    calls: list[int] = []

    async def _compute() -> list[int]:
        calls.append(1)
        return []

    async def _scenario() -> None:
        await cache.cached_lookup("k", 60, _compute)
        await cache.drain()
        await cache.cached_lookup("k", 60, _compute)

    asyncio.run(_scenario())

    assert len(calls) == 2


def test_concurrent_lookups_share_one_computation(tmp_path: Path) -> None:
    cache = ResponseCache(_repository(tmp_path))
    calls: list[int] = []

    async def _compute() -> dict[str, int]:
        calls.append(1)
        await asyncio.sleep(0.05)
        return {"answer": 42}

    async def _scenario() -> list[object]:
        results = await asyncio.gather(*(cache.cached_lookup("k", 60, _compute) for _ in range(5)))
        await cache.drain()
        return list(results)

    results = asyncio.run(_scenario())

    assert results == [{"answer": 42}] * 5
    assert len(calls) == 1


def test_failing_store_does_not_fail_lookup() -> None:
    cache = ResponseCache(_FailingStore())

    async def _compute() -> dict[str, int]:
        return {"answer": 42}

    async def _scenario() -> tuple[object, bool]:
        value = await cache.cached_lookup("k", 60, _compute)
        write_ok = await cache.write("k", value, 60)
        await cache.drain()
        return value, write_ok

    value, write_ok = asyncio.run(_scenario())

    assert value == {"answer": 42}
    assert write_ok is False
    assert cache.pending_writes == 0


def test_compute_errors_propagate_and_are_not_cached(tmp_path: Path) -> None:
    repository = _repository(tmp_path)
    cache = ResponseCache(repository)

    async def _compute() -> dict[str, int]:
        raise LookupError("upstream down")

    async def _scenario() -> None:
        await cache.cached_lookup("k", 60, _compute)

    with pytest.raises(LookupError):
        asyncio.run(_scenario())
    assert repository.count() == 0


def test_locked_store_falls_through_to_compute() -> None:
    sink = _CaptureSink()
    cache = ResponseCache(_LockedStore(), telemetry=TelemetryClient(enabled=True, sink=sink))
    calls: list[int] = []

    async def _compute() -> dict[str, int]:
        calls.append(1)
        return {"answer": 42}

    async def _scenario() -> object:
        value = await cache.cached_lookup("k", 60, _compute)
        await cache.drain()
        return value

    assert asyncio.run(_scenario()) == {"answer": 42}
    assert len(calls) == 1
    event_names = [event_name for event_name, _ in sink.events]
    assert "cache.read.error" in event_names
    assert "cache.write.error" in event_names
    read_error = next(attrs for name, attrs in sink.events if name == "cache.read.error")
    assert read_error["error_type"] == "OperationalError"


def test_write_reports_unexpected_store_errors_as_failure() -> None:
    cache = ResponseCache(_LockedStore())

    assert asyncio.run(cache.write("k", {"answer": 42}, 60)) is False
