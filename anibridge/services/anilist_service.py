from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, cast

import httpx

from anibridge.services.http_fetch import as_int, as_str, normalize_object_dict, request_json_object

LOGGER = logging.getLogger("anibridge.anilist")

ANIME_QUERY = """
query ($id: Int) {
  Media(id: $id, type: ANIME) {
    id
    idMal
    title {
      romaji
      english
      native
      userPreferred
    }
    coverImage {
      extraLarge
      large
      medium
      color
    }
    format
    description
    genres
    season
    episodes
    status
    seasonYear
  }
}
"""


@dataclass(frozen=True)
class TitleSet:
    romaji: str | None
    english: str | None
    native: str | None
    user_preferred: str | None

    def search_title(self) -> str | None:
        """English title when present, else romaji; ``None`` when both are blank."""
        if self.english:
            return self.english
        if self.romaji:
            return self.romaji
        return None


@dataclass(frozen=True)
class AnimeMetadata:
    anilist_id: int
    mal_id: int | None
    titles: TitleSet
    format: str | None
    status: str | None
    episode_count: int | None
    description: str | None
    genres: tuple[str, ...]
    season: str | None
    season_year: int | None
    cover_image: str | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "anilist_id": self.anilist_id,
            "mal_id": self.mal_id,
            "titles": {
                "romaji": self.titles.romaji,
                "english": self.titles.english,
                "native": self.titles.native,
                "user_preferred": self.titles.user_preferred,
            },
            "format": self.format,
            "status": self.status,
            "episode_count": self.episode_count,
            "description": self.description,
            "genres": list(self.genres),
            "season": self.season,
            "season_year": self.season_year,
            "cover_image": self.cover_image,
        }


class MetadataProvider(Protocol):
    async def fetch_metadata(self, anilist_id: int) -> AnimeMetadata | None:
        ...


class AniListClient:
    def __init__(self, *, http_client: httpx.AsyncClient, graphql_url: str) -> None:
        self._http_client = http_client
        self._graphql_url = graphql_url

    async def fetch_metadata(self, anilist_id: int) -> AnimeMetadata | None:
        payload = await request_json_object(
            self._http_client,
            "POST",
            self._graphql_url,
            headers={"Accept": "application/json"},
            json_body={"query": ANIME_QUERY, "variables": {"id": anilist_id}},
            allow_not_found=True,
        )
        if payload is None:
            LOGGER.info("anilist media not found anilist_id=%s", anilist_id)
            return None

        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        media = cast(dict[object, object], data).get("Media")
        if not isinstance(media, dict):
            LOGGER.info("anilist media not found anilist_id=%s", anilist_id)
            return None
        return _metadata_from_media(
            normalize_object_dict(cast(dict[object, object], media)),
            requested_id=anilist_id,
        )


def _metadata_from_media(media: dict[str, Any], *, requested_id: int) -> AnimeMetadata:
    raw_title = media.get("title")
    title = (
        normalize_object_dict(cast(dict[object, object], raw_title))
        if isinstance(raw_title, dict)
        else {}
    )
    raw_cover = media.get("coverImage")
    cover = (
        normalize_object_dict(cast(dict[object, object], raw_cover))
        if isinstance(raw_cover, dict)
        else {}
    )

    genres: list[str] = []
    raw_genres = media.get("genres")
    if isinstance(raw_genres, list):
        for genre in cast(list[object], raw_genres):
            genre_name = as_str(genre)
            if genre_name is not None:
                genres.append(genre_name)

    anilist_id = as_int(media.get("id"))
    return AnimeMetadata(
        anilist_id=anilist_id if anilist_id is not None else requested_id,
        mal_id=as_int(media.get("idMal")),
        titles=TitleSet(
            romaji=as_str(title.get("romaji")),
            english=as_str(title.get("english")),
            native=as_str(title.get("native")),
            user_preferred=as_str(title.get("userPreferred")),
        ),
        format=as_str(media.get("format")),
        status=as_str(media.get("status")),
        episode_count=as_int(media.get("episodes")),
        description=as_str(media.get("description")),
        genres=tuple(genres),
        season=as_str(media.get("season")),
        season_year=as_int(media.get("seasonYear")),
        cover_image=(
            as_str(cover.get("extraLarge"))
            or as_str(cover.get("large"))
            or as_str(cover.get("medium"))
        ),
    )
