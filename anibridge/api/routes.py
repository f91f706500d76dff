from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from anibridge.dependencies import get_lookup_service
from anibridge.errors import (
    AnimeBridgeError,
    FetchError,
    NoMatchError,
    NotFoundError,
    NoTitleError,
)
from anibridge.models.anime_contracts import (
    AnimeInfoResponse,
    EpisodeServersResponse,
    ErrorResponse,
    StreamingSourcesResponse,
    StreamType,
)
from anibridge.services.anime_lookup_service import AnimeLookupService

LOGGER = logging.getLogger("anibridge.api")

router = APIRouter(prefix="/anilist", tags=["anilist"])

AniListId = Annotated[int, Path(gt=0, description="AniList media id.")]
EpisodeNumber = Annotated[int, Path(gt=0, description="1-based episode number.")]
LookupService = Annotated[AnimeLookupService, Depends(get_lookup_service)]
_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def http_error_for(exc: AnimeBridgeError) -> HTTPException:
    match exc:
        case NotFoundError() | NoMatchError() | NoTitleError():
            return HTTPException(status_code=404, detail=str(exc))
        case FetchError(status_code=None):
            return HTTPException(status_code=404, detail=f"Upstream unreachable: {exc}")
        case FetchError(status_code=status_code):
            return HTTPException(
                status_code=404,
                detail=f"Upstream lookup failed with HTTP {status_code}: {exc}",
            )
        case _:
            return HTTPException(status_code=500, detail="Internal server error")


def _log_lookup_failure(operation: str, exc: AnimeBridgeError) -> None:
    LOGGER.warning(
        "lookup failed operation=%s error_type=%s error=%s",
        operation,
        type(exc).__name__,
        exc,
    )


@router.get(
    "/info/{anilist_id}",
    response_model=AnimeInfoResponse,
    responses=_ERROR_RESPONSES,
    operation_id="get_anime_info",
)
async def get_anime_info(anilist_id: AniListId, service: LookupService) -> AnimeInfoResponse:
    context_tokens = bind_contextvars(anilist_id=anilist_id)
    try:
        payload = await service.get_anime_info(anilist_id)
    except AnimeBridgeError as exc:
        _log_lookup_failure("info", exc)
        raise http_error_for(exc) from exc
    finally:
        reset_contextvars(**context_tokens)
    return AnimeInfoResponse.model_validate(payload)


@router.get(
    "/servers/{anilist_id}/{episode_number}",
    response_model=EpisodeServersResponse,
    responses=_ERROR_RESPONSES,
    operation_id="get_episode_servers",
)
async def get_episode_servers(
    anilist_id: AniListId,
    episode_number: EpisodeNumber,
    service: LookupService,
) -> EpisodeServersResponse:
    context_tokens = bind_contextvars(anilist_id=anilist_id, episode_number=episode_number)
    try:
        payload = await service.get_episode_servers(anilist_id, episode_number)
    except AnimeBridgeError as exc:
        _log_lookup_failure("servers", exc)
        raise http_error_for(exc) from exc
    finally:
        reset_contextvars(**context_tokens)
    return EpisodeServersResponse.model_validate(payload)


@router.get(
    "/sources/{anilist_id}/{episode_number}",
    response_model=StreamingSourcesResponse,
    responses=_ERROR_RESPONSES,
    operation_id="get_streaming_sources",
)
async def get_streaming_sources(
    anilist_id: AniListId,
    episode_number: EpisodeNumber,
    service: LookupService,
    server: Annotated[str, Query(min_length=1, description="Server name, e.g. HD-1.")],
    stream_type: Annotated[StreamType, Query(alias="type")] = "sub",
) -> StreamingSourcesResponse:
    context_tokens = bind_contextvars(
        anilist_id=anilist_id,
        episode_number=episode_number,
        stream_server=server,
        stream_type=stream_type,
    )
    try:
        payload = await service.get_streaming_sources(
            anilist_id,
            episode_number,
            server=server,
            stream_type=stream_type,
        )
    except AnimeBridgeError as exc:
        _log_lookup_failure("sources", exc)
        raise http_error_for(exc) from exc
    finally:
        reset_contextvars(**context_tokens)
    return StreamingSourcesResponse.model_validate(payload)
