from __future__ import annotations

import json
from collections.abc import Iterator
from html import escape
from pathlib import Path
from typing import Any, cast

import httpx
import pytest
from fastapi.testclient import TestClient

from anibridge.dependencies import (
    get_lookup_service,
    get_response_cache,
    get_settings,
    reset_cached_dependencies,
)
from anibridge.main import create_app
from anibridge.services.anilist_service import AniListClient
from anibridge.services.anime_lookup_service import AnimeLookupService
from anibridge.services.catalog_service import CatalogClient
from anibridge.services.identity_resolver import IdentityResolver

ANILIST_URL = "https://graphql.anilist.test"
CATALOG_URL = "https://catalog.test"


class FakeUpstream:
    """In-process stand-in for AniList and the streaming catalog."""

    def __init__(self) -> None:
        self.media: dict[int, dict[str, Any]] = {}
        self.search_results: dict[str, list[tuple[str, str]]] = {}
        self.episodes: dict[str, list[tuple[str, str]]] = {}
        self.servers: dict[int, list[tuple[str, int, str, str]]] = {}
        self.sources: dict[str, str] = {}
        self.info_pages: dict[str, str] = {}
        self.failures: dict[str, int] = {}
        self.requests: list[httpx.Request] = []

    def add_media(
        self,
        anilist_id: int,
        *,
        english: str | None,
        romaji: str | None,
        episodes: int | None = None,
    ) -> None:
        self.media[anilist_id] = {
            "id": anilist_id,
            "idMal": anilist_id + 1000,
            "title": {
                "romaji": romaji,
                "english": english,
                "native": None,
                "userPreferred": romaji,
            },
            "coverImage": {"extraLarge": None, "large": f"https://img.test/{anilist_id}.jpg"},
            "format": "TV",
            "description": "A test series.",
            "genres": ["Action", "Adventure"],
            "season": "FALL",
            "episodes": episodes,
            "status": "RELEASING",
            "seasonYear": 1999,
        }

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def count(self, path_prefix: str) -> int:
        return sum(1 for request in self.requests if request.url.path.startswith(path_prefix))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for failing_prefix, status_code in self.failures.items():
            if path.startswith(failing_prefix):
                return httpx.Response(status_code, text="upstream failure")

        if request.url.host == "graphql.anilist.test":
            variables = cast(dict[str, Any], json.loads(request.content)["variables"])
            media = self.media.get(int(variables["id"]))
            if media is None:
                return httpx.Response(
                    404,
                    json={"data": {"Media": None}, "errors": [{"message": "Not Found."}]},
                )
            return httpx.Response(200, json={"data": {"Media": media}})

        if path == "/search":
            keyword = request.url.params.get("keyword", "")
            return httpx.Response(200, text=_search_page(self.search_results.get(keyword, [])))
        if path.startswith("/ajax/v2/episode/list/"):
            numeric_id = path.rsplit("/", 1)[-1]
            return httpx.Response(
                200,
                json={"status": True, "html": _episode_list(self.episodes.get(numeric_id, []))},
            )
        if path == "/ajax/v2/episode/servers":
            episode_id = int(request.url.params["episodeId"])
            return httpx.Response(
                200,
                json={"status": True, "html": _server_list(self.servers.get(episode_id, []))},
            )
        if path == "/ajax/v2/episode/sources":
            server_item_id = request.url.params["id"]
            link = self.sources.get(server_item_id)
            if link is None:
                return httpx.Response(404, text="missing source")
            return httpx.Response(
                200,
                json={"type": "iframe", "link": link, "server": 4, "sources": [], "tracks": []},
            )

        page = self.info_pages.get(path.lstrip("/"))
        if page is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=page)


def _search_page(results: list[tuple[str, str]]) -> str:
    items = "".join(
        (
            '<div class="flw-item"><div class="film-poster"></div>'
            '<div class="film-detail"><h3 class="film-name">'
            f'<a href="{escape(href)}" title="{escape(title)}">{escape(title)}</a>'
            "</h3></div></div>"
        )
        for title, href in results
    )
    return f'<html><body><div class="film_list-wrap">{items}</div></body></html>'


def _episode_list(entries: list[tuple[str, str]]) -> str:
    links = "".join(
        f'<a class="ssl-item ep-item" href="{escape(href)}" title="{escape(title)}">'
        f'<div class="ssli-order">{index}</div></a>'
        for index, (href, title) in enumerate(entries, start=1)
    )
    return (
        '<div class="detail-infor-content"><div id="detail-ss-list">'
        f'<div class="ss-list">{links}</div></div></div>'
    )


def _server_list(servers: list[tuple[str, int, str, str]]) -> str:
    items = "".join(
        (
            f'<div class="item server-item" data-type="{stream_type}" '
            f'data-id="{item_id}" data-server-id="{server_id}">'
            f'<a href="javascript:;" class="btn">{escape(name)}</a></div>'
        )
        for item_id, server_id, stream_type, name in servers
    )
    return f'<div class="player-servers"><div class="ps_-block">{items}</div></div>'


def info_page(*, title: str, description: str, poster: str) -> str:
    return (
        '<div id="ani_detail"><div class="anis-content">'
        '<div class="anisc-poster"><div class="film-poster">'
        f'<img class="film-poster-img" src="{escape(poster)}"></div></div>'
        '<div class="anisc-detail">'
        f'<h2 class="film-name dynamic-name">{escape(title)}</h2>'
        f'<div class="film-description m-hide"><div class="text"> {escape(description)} </div></div>'
        "</div>"
        '<div class="anisc-info">'
        '<div class="item item-title"><span class="item-head">Japanese:</span> '
        '<span class="name">ワンピース</span></div>'
        '<div class="item item-list"><span class="item-head">Genres:</span> '
        '<a href="/genre/action">Action</a><a href="/genre/adventure">Adventure</a></div>'
        "</div></div></div>"
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    fake = FakeUpstream()
    fake.add_media(21, english="One Piece", romaji="One Piece", episodes=None)
    fake.search_results["One Piece"] = [
        ("One Piece Film: Red", "/one-piece-film-red-18236?ref=search"),
        ("One Piece", "/one-piece-100?ref=search"),
        ("Broken Link", ""),
    ]
    fake.episodes["100"] = [
        ("/watch/one-piece-100?ep=2142", "I'm Luffy! The Man Who Will Become the Pirate King!"),
        ("/watch/one-piece-100?ep=2143", "Enter the Great Swordsman!"),
        ("/watch/one-piece-100?ep=2145", "Morgan versus Luffy!"),
    ]
    fake.servers[2142] = [
        ("9001", 4, "sub", "HD-1"),
        ("9002", 1, "sub", "HD-2"),
        ("9003", 4, "dub", "HD-1"),
    ]
    fake.sources["9001"] = "https://embed.test/e-1/abc?k=1"
    fake.sources["9003"] = "https://embed.test/e-1/dub?k=1"
    fake.info_pages["one-piece-100"] = info_page(
        title="One Piece",
        description="Gol D. Roger was known as the Pirate King.",
        poster="https://img.test/one-piece.jpg",
    )
    return fake


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    upstream: FakeUpstream,
) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    monkeypatch.setenv("ANIBRIDGE_DATA_DIR", str(data_dir))
    monkeypatch.setenv("ANIBRIDGE_CACHE_PURGE_ENABLED", "0")
    monkeypatch.setenv("ANIBRIDGE_CATALOG_BASE_URL", CATALOG_URL)
    monkeypatch.setenv("ANIBRIDGE_ANILIST_GRAPHQL_URL", ANILIST_URL)
    reset_cached_dependencies()

    service = build_lookup_service(upstream)
    app = create_app()
    app.dependency_overrides[get_lookup_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()


def build_lookup_service(upstream: FakeUpstream) -> AnimeLookupService:
    settings = get_settings()
    http_client = upstream.http_client()
    catalog = CatalogClient(http_client=http_client, base_url=settings.catalog_base_url)
    return AnimeLookupService(
        resolver=IdentityResolver(
            metadata_provider=AniListClient(
                http_client=http_client,
                graphql_url=settings.anilist_graphql_url,
            ),
            catalog_search=catalog,
        ),
        catalog=catalog,
        cache=get_response_cache(),
        info_ttl_seconds=settings.info_cache_ttl_seconds,
        servers_ttl_seconds=settings.servers_cache_ttl_seconds,
        sources_ttl_seconds=settings.sources_cache_ttl_seconds,
    )
