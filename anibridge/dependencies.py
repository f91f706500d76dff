from __future__ import annotations

from functools import lru_cache

import httpx

from anibridge.config import AppSettings, load_settings
from anibridge.repositories.database import Database
from anibridge.repositories.response_cache_repository import ResponseCacheRepository
from anibridge.services.anilist_service import AniListClient
from anibridge.services.anime_lookup_service import AnimeLookupService
from anibridge.services.catalog_service import CatalogClient
from anibridge.services.identity_resolver import IdentityResolver
from anibridge.services.response_cache import ResponseCache
from anibridge.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_cache_repository() -> ResponseCacheRepository:
    database = Database(get_settings().db_path)
    database.initialize()
    return ResponseCacheRepository(database)


@lru_cache(maxsize=1)
def get_response_cache() -> ResponseCache:
    return ResponseCache(get_cache_repository(), telemetry=get_telemetry())


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        headers={"User-Agent": settings.http_user_agent},
        follow_redirects=True,
    )


@lru_cache(maxsize=1)
def get_lookup_service() -> AnimeLookupService:
    settings = get_settings()
    http_client = get_http_client()
    catalog = CatalogClient(http_client=http_client, base_url=settings.catalog_base_url)
    return AnimeLookupService(
        resolver=IdentityResolver(
            metadata_provider=AniListClient(
                http_client=http_client,
                graphql_url=settings.anilist_graphql_url,
            ),
            catalog_search=catalog,
            telemetry=get_telemetry(),
        ),
        catalog=catalog,
        cache=get_response_cache(),
        info_ttl_seconds=settings.info_cache_ttl_seconds,
        servers_ttl_seconds=settings.servers_cache_ttl_seconds,
        sources_ttl_seconds=settings.sources_cache_ttl_seconds,
    )


def reset_cached_dependencies() -> None:
    get_lookup_service.cache_clear()
    get_http_client.cache_clear()
    get_response_cache.cache_clear()
    get_cache_repository.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
