from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from anibridge.errors import NoMatchError, NoTitleError, NotFoundError
from anibridge.services.anilist_service import AnimeMetadata, MetadataProvider
from anibridge.services.catalog_service import CatalogSearch, CatalogSearchResult, parse_target_id
from anibridge.services.similarity import title_similarity
from anibridge.telemetry import TelemetryClient

LOGGER = logging.getLogger("anibridge.identity")

# "Season 2", "Season Two Part 2", "2nd Season".
SEASON_MARKER_PATTERN = re.compile(
    r"\bseason\b.*?\d|\b\d+(?:st|nd|rd|th)\s+season\b",
    re.IGNORECASE,
)

TitleScorer = Callable[[str, str], float]


@dataclass(frozen=True)
class SearchCandidate:
    target_id: str
    title: str
    similarity: float


@dataclass(frozen=True)
class ResolvedMapping:
    anilist_id: int
    target_id: str
    query_title: str
    candidate: SearchCandidate
    metadata: AnimeMetadata


def has_season_marker(title: str) -> bool:
    return SEASON_MARKER_PATTERN.search(title) is not None


def rank_candidates(
    query_title: str,
    results: Sequence[CatalogSearchResult],
    *,
    scorer: TitleScorer = title_similarity,
) -> list[SearchCandidate]:
    """Score search results against the query, best first.

    Results whose link carries no target id are dropped. The sort is stable,
    so equal scores keep the catalog's result order.
    """
    candidates: list[SearchCandidate] = []
    for result in results:
        target_id = parse_target_id(result.raw_link)
        if target_id is None:
            continue
        candidates.append(
            SearchCandidate(
                target_id=target_id,
                title=result.raw_title,
                similarity=scorer(result.raw_title, query_title),
            )
        )
    candidates.sort(key=lambda candidate: candidate.similarity, reverse=True)
    return candidates


def select_candidate(query_title: str, ranked: Sequence[SearchCandidate]) -> SearchCandidate:
    """Pick the top candidate unless it disagrees with the query on naming a season.

    On disagreement the runner-up is chosen, which usually is the listing for
    the season the query names (or the unsuffixed one it does not name).
    """
    if not ranked:
        raise ValueError("select_candidate requires at least one candidate")
    top = ranked[0]
    if has_season_marker(query_title) == has_season_marker(top.title):
        return top
    if len(ranked) > 1:
        return ranked[1]
    return top


class IdentityResolver:
    def __init__(
        self,
        *,
        metadata_provider: MetadataProvider,
        catalog_search: CatalogSearch,
        scorer: TitleScorer = title_similarity,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._metadata_provider = metadata_provider
        self._catalog_search = catalog_search
        self._scorer = scorer
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    async def resolve(self, anilist_id: int) -> ResolvedMapping:
        metadata = await self._metadata_provider.fetch_metadata(anilist_id)
        if metadata is None:
            raise NotFoundError(
                f"Anime with AniList ID {anilist_id} not found",
                anilist_id=anilist_id,
            )

        query_title = metadata.titles.search_title()
        if query_title is None:
            raise NoTitleError(anilist_id=anilist_id)

        results = await self._catalog_search.search(query_title)
        ranked = rank_candidates(query_title, results, scorer=self._scorer)
        if not ranked:
            self._telemetry.emit(
                "identity.resolve.no_match",
                anilist_id=anilist_id,
                query_title=query_title,
                search_results=len(results),
            )
            raise NoMatchError(anilist_id=anilist_id, query_title=query_title)

        selected = select_candidate(query_title, ranked)
        LOGGER.info(
            "resolved anilist_id=%s query=%r target_id=%s similarity=%s rank=%s candidates=%s",
            anilist_id,
            query_title,
            selected.target_id,
            selected.similarity,
            ranked.index(selected) + 1,
            len(ranked),
        )
        self._telemetry.emit(
            "identity.resolve.finish",
            anilist_id=anilist_id,
            target_id=selected.target_id,
            catalog_title=selected.title,
            similarity=selected.similarity,
            season_fallback=selected is not ranked[0],
            candidates=len(ranked),
        )
        return ResolvedMapping(
            anilist_id=anilist_id,
            target_id=selected.target_id,
            query_title=query_title,
            candidate=selected,
            metadata=metadata,
        )

    async def resolve_target_id(self, anilist_id: int) -> str:
        return (await self.resolve(anilist_id)).target_id
