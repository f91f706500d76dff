from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import parse_qs, urlsplit

import httpx
from bs4 import BeautifulSoup, Tag

from anibridge.errors import FetchError
from anibridge.services.http_fetch import as_int, as_str, request_json_object, request_text

LOGGER = logging.getLogger("anibridge.catalog")

SEARCH_RESULT_SELECTOR = ".film_list-wrap > .flw-item .film-detail .film-name a"
EPISODE_LINK_SELECTOR = "#detail-ss-list div.ss-list a"
SERVER_ITEM_SELECTOR = ".server-item"


@dataclass(frozen=True)
class CatalogSearchResult:
    raw_title: str
    raw_link: str


@dataclass(frozen=True)
class EpisodeEntry:
    slug: str
    episode_id: int
    title: str
    number: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "episode_id": self.episode_id,
            "title": self.title,
            "number": self.number,
        }


@dataclass(frozen=True)
class EpisodeServer:
    server_item_id: str
    server_id: int | None
    name: str
    stream_type: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "server_item_id": self.server_item_id,
            "server_id": self.server_id,
            "name": self.name,
            "type": self.stream_type,
        }


@dataclass(frozen=True)
class StreamSource:
    link: str
    source_type: str | None
    server_id: int | None

    def to_payload(self) -> dict[str, Any]:
        return {"link": self.link, "type": self.source_type, "server_id": self.server_id}


@dataclass(frozen=True)
class CatalogAnimeInfo:
    title: str | None
    poster: str | None
    description: str | None
    details: dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "poster": self.poster,
            "description": self.description,
            "details": dict(self.details),
        }


class CatalogSearch(Protocol):
    async def search(self, title_query: str) -> list[CatalogSearchResult]:
        ...


class CatalogClient:
    """Scraping client for the target streaming catalog.

    Every method raises ``FetchError`` when the catalog cannot be reached or
    answers with an error status. Markup that contains nothing recognisable
    yields empty results rather than errors.
    """

    def __init__(self, *, http_client: httpx.AsyncClient, base_url: str) -> None:
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")

    async def search(self, title_query: str) -> list[CatalogSearchResult]:
        markup = await request_text(
            self._http_client,
            "GET",
            f"{self._base_url}/search",
            params={"keyword": title_query},
        )
        results = parse_search_results(markup or "")
        LOGGER.debug("catalog search query=%s results=%s", title_query, len(results))
        return results

    async def fetch_episode_page(self, target_id: str) -> str:
        numeric_id = catalog_numeric_id(target_id)
        url = f"{self._base_url}/ajax/v2/episode/list/{numeric_id}"
        payload = await request_json_object(
            self._http_client,
            "GET",
            url,
            headers={
                "Referer": f"{self._base_url}/watch/{target_id}",
                "X-Requested-With": "XMLHttpRequest",
            },
        )
        return _html_field(payload, url=url)

    async def list_episodes(self, target_id: str) -> list[EpisodeEntry]:
        episodes = parse_episode_list(await self.fetch_episode_page(target_id))
        LOGGER.debug("catalog episodes target_id=%s count=%s", target_id, len(episodes))
        return episodes

    async def list_servers(self, episode_id: int) -> list[EpisodeServer]:
        url = f"{self._base_url}/ajax/v2/episode/servers"
        payload = await request_json_object(
            self._http_client,
            "GET",
            url,
            params={"episodeId": str(episode_id)},
            headers={"X-Requested-With": "XMLHttpRequest"},
        )
        return parse_server_list(_html_field(payload, url=url))

    async def fetch_source(self, server_item_id: str) -> StreamSource:
        url = f"{self._base_url}/ajax/v2/episode/sources"
        payload = await request_json_object(
            self._http_client,
            "GET",
            url,
            params={"id": server_item_id},
            headers={"X-Requested-With": "XMLHttpRequest"},
        )
        data = payload or {}
        link = as_str(data.get("link"))
        if link is None:
            raise FetchError(
                f"Source response for server item {server_item_id} has no link",
                url=url,
                status_code=200,
            )
        return StreamSource(
            link=link,
            source_type=as_str(data.get("type")),
            server_id=as_int(data.get("server")),
        )

    async def fetch_anime_info(self, target_id: str) -> CatalogAnimeInfo:
        markup = await request_text(self._http_client, "GET", f"{self._base_url}/{target_id}")
        return parse_anime_info(markup or "")


def catalog_numeric_id(target_id: str) -> str:
    return target_id.rsplit("-", 1)[-1]


def parse_target_id(raw_link: str) -> str | None:
    """Final path segment of a result link with any query string removed."""
    path = raw_link.split("?", 1)[0].split("#", 1)[0]
    segment = path.rsplit("/", 1)[-1].strip()
    return segment or None


def parse_search_results(markup: str) -> list[CatalogSearchResult]:
    soup = BeautifulSoup(markup, "html.parser")
    results: list[CatalogSearchResult] = []
    for anchor in soup.select(SEARCH_RESULT_SELECTOR):
        href = anchor.get("href")
        results.append(
            CatalogSearchResult(
                raw_title=" ".join(anchor.get_text().split()),
                raw_link=href if isinstance(href, str) else "",
            )
        )
    return results


def parse_episode_list(markup: str) -> list[EpisodeEntry]:
    """Episode entries in listing order, numbered from 1.

    Numbers reflect position among the parseable entries, never the episode
    ids themselves.
    """
    soup = BeautifulSoup(markup, "html.parser")
    episodes: list[EpisodeEntry] = []
    for anchor in soup.select(EPISODE_LINK_SELECTOR):
        href = anchor.get("href")
        if not isinstance(href, str):
            continue
        episode_id = _episode_id_from_href(href)
        if episode_id is None:
            continue
        title = anchor.get("title")
        episodes.append(
            EpisodeEntry(
                slug=href.rsplit("/", 1)[-1],
                episode_id=episode_id,
                title=title.strip() if isinstance(title, str) else "",
                number=len(episodes) + 1,
            )
        )
    return episodes


def parse_server_list(markup: str) -> list[EpisodeServer]:
    soup = BeautifulSoup(markup, "html.parser")
    servers: list[EpisodeServer] = []
    for item in soup.select(SERVER_ITEM_SELECTOR):
        server_item_id = as_str(item.get("data-id"))
        stream_type = as_str(item.get("data-type"))
        name = " ".join(item.get_text().split())
        if server_item_id is None or stream_type is None or not name:
            continue
        servers.append(
            EpisodeServer(
                server_item_id=server_item_id,
                server_id=as_int(item.get("data-server-id")),
                name=name,
                stream_type=stream_type.lower(),
            )
        )
    return servers


def parse_anime_info(markup: str) -> CatalogAnimeInfo:
    soup = BeautifulSoup(markup, "html.parser")
    title = _select_text(soup, ".anisc-detail .film-name")
    description = _select_text(soup, ".anisc-detail .film-description .text")
    poster_tag = soup.select_one(".anisc-poster img")
    poster = as_str(poster_tag.get("src")) if poster_tag is not None else None

    details: dict[str, str] = {}
    for item in soup.select(".anisc-info .item"):
        head = _select_text(item, ".item-head")
        if head is None:
            continue
        key = head.rstrip(":").strip().lower().replace(" ", "_")
        value_tags = item.select(".name") or item.select("a")
        values = [" ".join(tag.get_text().split()) for tag in value_tags]
        value = ", ".join(text for text in values if text) or _select_text(item, ".text")
        if key and value:
            details[key] = value
    return CatalogAnimeInfo(title=title, poster=poster, description=description, details=details)


def _episode_id_from_href(href: str) -> int | None:
    values = parse_qs(urlsplit(href).query).get("ep")
    if not values:
        return None
    return as_int(values[-1])


def _select_text(node: BeautifulSoup | Tag, selector: str) -> str | None:
    found = node.select_one(selector)
    if found is None:
        return None
    text = " ".join(found.get_text().split())
    return text or None


def _html_field(payload: dict[str, Any] | None, *, url: str) -> str:
    html = (payload or {}).get("html")
    if not isinstance(html, str):
        raise FetchError(f"Response from {url} has no html field", url=url, status_code=200)
    return html
