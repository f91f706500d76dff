from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

StreamType = Literal["sub", "dub", "raw"]


def _default_genres() -> list[str]:
    return []


def _default_details() -> dict[str, str]:
    return {}


class AniListTitles(BaseModel):
    model_config = ConfigDict(extra="ignore")

    romaji: str | None = None
    english: str | None = None
    native: str | None = None
    user_preferred: str | None = None


class AniListMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    anilist_id: int
    mal_id: int | None = None
    titles: AniListTitles
    format: str | None = None
    status: str | None = None
    episode_count: int | None = None
    description: str | None = None
    genres: list[str] = Field(default_factory=_default_genres)
    season: str | None = None
    season_year: int | None = None
    cover_image: str | None = None


class CatalogMatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query_title: str
    catalog_title: str
    similarity: float = Field(ge=0.0, le=10.0)


class CatalogInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    poster: str | None = None
    description: str | None = None
    details: dict[str, str] = Field(default_factory=_default_details)


class Episode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slug: str
    episode_id: int
    title: str
    number: int = Field(ge=1)


class EpisodeServer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    server_item_id: str
    server_id: int | None = None
    name: str
    type: str


class StreamSource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    link: str
    type: str | None = None
    server_id: int | None = None


class AnimeInfoResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    anilist_id: int
    target_id: str
    match: CatalogMatch
    anilist: AniListMetadata
    info: CatalogInfo
    episodes: list[Episode]


class EpisodeServersResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    anilist_id: int
    target_id: str
    episode_number: int
    episode_id: int
    episode_slug: str
    servers: list[EpisodeServer]


class StreamingSourcesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    anilist_id: int
    target_id: str
    episode_number: int
    episode_id: int
    episode_slug: str
    server: str
    type: str
    source: StreamSource
    available_servers: list[EpisodeServer]


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    detail: str
