from __future__ import annotations

import logging
from functools import partial
from typing import Any

from anibridge.errors import EpisodeNotFoundError, ServerNotFoundError
from anibridge.services.catalog_service import CatalogClient, EpisodeEntry, EpisodeServer
from anibridge.services.identity_resolver import IdentityResolver
from anibridge.services.response_cache import ResponseCache, build_cache_key

LOGGER = logging.getLogger("anibridge.lookup")

INFO_CACHE_NAMESPACE = "anilist_info"
SERVERS_CACHE_NAMESPACE = "anilist_servers"
SOURCES_CACHE_NAMESPACE = "anilist_sources"


class AnimeLookupService:
    """AniList-keyed lookups against the streaming catalog, memoized per endpoint."""

    def __init__(
        self,
        *,
        resolver: IdentityResolver,
        catalog: CatalogClient,
        cache: ResponseCache,
        info_ttl_seconds: int,
        servers_ttl_seconds: int,
        sources_ttl_seconds: int,
    ) -> None:
        self._resolver = resolver
        self._catalog = catalog
        self._cache = cache
        self._info_ttl_seconds = max(0, info_ttl_seconds)
        self._servers_ttl_seconds = max(0, servers_ttl_seconds)
        self._sources_ttl_seconds = max(0, sources_ttl_seconds)

    async def get_anime_info(self, anilist_id: int) -> dict[str, Any]:
        return await self._cache.cached_lookup(
            build_cache_key(INFO_CACHE_NAMESPACE, anilist_id),
            self._info_ttl_seconds,
            partial(self._build_anime_info, anilist_id),
        )

    async def get_episode_servers(self, anilist_id: int, episode_number: int) -> dict[str, Any]:
        return await self._cache.cached_lookup(
            build_cache_key(SERVERS_CACHE_NAMESPACE, anilist_id, episode_number),
            self._servers_ttl_seconds,
            partial(self._build_episode_servers, anilist_id, episode_number),
        )

    async def get_streaming_sources(
        self,
        anilist_id: int,
        episode_number: int,
        *,
        server: str,
        stream_type: str,
    ) -> dict[str, Any]:
        return await self._cache.cached_lookup(
            build_cache_key(SOURCES_CACHE_NAMESPACE, anilist_id, episode_number, server, stream_type),
            self._sources_ttl_seconds,
            partial(
                self._build_streaming_sources,
                anilist_id,
                episode_number,
                server,
                stream_type,
            ),
        )

    async def _build_anime_info(self, anilist_id: int) -> dict[str, Any]:
        mapping = await self._resolver.resolve(anilist_id)
        info = await self._catalog.fetch_anime_info(mapping.target_id)
        episodes = await self._catalog.list_episodes(mapping.target_id)
        return {
            "anilist_id": anilist_id,
            "target_id": mapping.target_id,
            "match": {
                "query_title": mapping.query_title,
                "catalog_title": mapping.candidate.title,
                "similarity": mapping.candidate.similarity,
            },
            "anilist": mapping.metadata.to_payload(),
            "info": info.to_payload(),
            "episodes": [episode.to_payload() for episode in episodes],
        }

    async def _build_episode_servers(self, anilist_id: int, episode_number: int) -> dict[str, Any]:
        target_id = await self._resolver.resolve_target_id(anilist_id)
        episode = await self._find_episode(target_id, anilist_id, episode_number)
        servers = await self._catalog.list_servers(episode.episode_id)
        return {
            "anilist_id": anilist_id,
            "target_id": target_id,
            "episode_number": episode_number,
            "episode_id": episode.episode_id,
            "episode_slug": episode.slug,
            "servers": [item.to_payload() for item in servers],
        }

    async def _build_streaming_sources(
        self,
        anilist_id: int,
        episode_number: int,
        server: str,
        stream_type: str,
    ) -> dict[str, Any]:
        target_id = await self._resolver.resolve_target_id(anilist_id)
        episode = await self._find_episode(target_id, anilist_id, episode_number)
        servers = await self._catalog.list_servers(episode.episode_id)
        selected = find_server(servers, server=server, stream_type=stream_type)
        if selected is None:
            raise ServerNotFoundError(
                anilist_id=anilist_id,
                episode_number=episode_number,
                server=server,
                stream_type=stream_type,
            )
        source = await self._catalog.fetch_source(selected.server_item_id)
        return {
            "anilist_id": anilist_id,
            "target_id": target_id,
            "episode_number": episode_number,
            "episode_id": episode.episode_id,
            "episode_slug": episode.slug,
            "server": selected.name,
            "type": selected.stream_type,
            "source": source.to_payload(),
            "available_servers": [item.to_payload() for item in servers],
        }

    async def _find_episode(
        self,
        target_id: str,
        anilist_id: int,
        episode_number: int,
    ) -> EpisodeEntry:
        episodes = await self._catalog.list_episodes(target_id)
        for episode in episodes:
            if episode.number == episode_number:
                return episode
        LOGGER.info(
            "episode not in catalog listing anilist_id=%s target_id=%s episode=%s listed=%s",
            anilist_id,
            target_id,
            episode_number,
            len(episodes),
        )
        raise EpisodeNotFoundError(anilist_id=anilist_id, episode_number=episode_number)


def find_server(
    servers: list[EpisodeServer],
    *,
    server: str,
    stream_type: str,
) -> EpisodeServer | None:
    wanted = server.strip().lower()
    wanted_type = stream_type.strip().lower()
    for item in servers:
        if item.stream_type != wanted_type:
            continue
        if item.name.lower() == wanted or (
            item.server_id is not None and str(item.server_id) == wanted
        ):
            return item
    return None
