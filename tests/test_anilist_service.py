from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from anibridge.errors import FetchError
from anibridge.services.anilist_service import AniListClient, TitleSet
from tests.conftest import ANILIST_URL, FakeUpstream


def _client(http_client: httpx.AsyncClient) -> AniListClient:
    return AniListClient(http_client=http_client, graphql_url=ANILIST_URL)


def test_title_set_search_title_preference() -> None:
    assert TitleSet("Romaji", "English", None, None).search_title() == "English"
    assert TitleSet("Romaji", None, "Native", None).search_title() == "Romaji"
    assert TitleSet(None, None, "Native", "Native").search_title() is None


def test_fetch_metadata_parses_media(upstream: FakeUpstream) -> None:
    metadata = asyncio.run(_client(upstream.http_client()).fetch_metadata(21))

    assert metadata is not None
    assert metadata.anilist_id == 21
    assert metadata.mal_id == 1021
    assert metadata.titles.search_title() == "One Piece"
    assert metadata.genres == ("Action", "Adventure")
    assert metadata.episode_count is None
    assert metadata.cover_image == "https://img.test/21.jpg"
    assert metadata.to_payload()["titles"]["user_preferred"] == "One Piece"

    request = upstream.requests[0]
    assert request.method == "POST"
    body = json.loads(request.content)
    assert body["variables"] == {"id": 21}
    assert "Media(id: $id, type: ANIME)" in body["query"]


def test_fetch_metadata_unknown_id_is_none(upstream: FakeUpstream) -> None:
    assert asyncio.run(_client(upstream.http_client()).fetch_metadata(424242)) is None


def test_fetch_metadata_null_media_is_none() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"Media": None}})

    client = _client(httpx.AsyncClient(transport=httpx.MockTransport(_handler)))

    assert asyncio.run(client.fetch_metadata(1)) is None


def test_fetch_metadata_rate_limit_is_fetch_error() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"errors": [{"message": "Too Many Requests."}]})

    client = _client(httpx.AsyncClient(transport=httpx.MockTransport(_handler)))

    with pytest.raises(FetchError) as exc_info:
        asyncio.run(client.fetch_metadata(1))
    assert exc_info.value.status_code == 429
