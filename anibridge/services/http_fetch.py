from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, cast

import httpx

from anibridge.errors import FetchError

LOGGER = logging.getLogger("anibridge.http")
_MAX_ERROR_BODY_LENGTH = 500


async def request_text(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
    json_body: Any | None = None,
    allow_not_found: bool = False,
) -> str | None:
    """Perform one request and return the decoded body.

    Returns ``None`` for a 404 when ``allow_not_found`` is set; every other
    non-2xx status or transport failure raises ``FetchError``.
    """
    response = await _send(
        client,
        method,
        url,
        params=params,
        headers=headers,
        json_body=json_body,
        allow_not_found=allow_not_found,
    )
    if response is None:
        return None
    return response.text


async def request_json_object(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
    json_body: Any | None = None,
    allow_not_found: bool = False,
) -> dict[str, Any] | None:
    response = await _send(
        client,
        method,
        url,
        params=params,
        headers=headers,
        json_body=json_body,
        allow_not_found=allow_not_found,
    )
    if response is None:
        return None

    try:
        parsed = cast(object, response.json())
    except ValueError as exc:
        raise FetchError(
            f"Response from {url} is not valid JSON",
            url=url,
            status_code=response.status_code,
            body=response.text[:_MAX_ERROR_BODY_LENGTH],
        ) from exc
    if not isinstance(parsed, dict):
        raise FetchError(
            f"Response from {url} is not a JSON object",
            url=url,
            status_code=response.status_code,
            body=response.text[:_MAX_ERROR_BODY_LENGTH],
        )
    return normalize_object_dict(cast(dict[object, object], parsed))


async def _send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: Mapping[str, str] | None,
    headers: Mapping[str, str] | None,
    json_body: Any | None,
    allow_not_found: bool,
) -> httpx.Response | None:
    try:
        response = await client.request(
            method,
            url,
            params=params,
            headers=headers,
            json=json_body,
        )
    except httpx.RequestError as exc:
        LOGGER.warning(
            "upstream request failed method=%s url=%s error_type=%s",
            method,
            url,
            type(exc).__name__,
        )
        raise FetchError(f"Request to {url} failed: {exc}", url=url) from exc

    if allow_not_found and response.status_code == 404:
        return None
    if response.is_error:
        LOGGER.warning(
            "upstream request returned error status method=%s url=%s status=%s",
            method,
            url,
            response.status_code,
        )
        raise FetchError(
            f"Request to {url} returned HTTP {response.status_code}",
            url=url,
            status_code=response.status_code,
            body=response.text[:_MAX_ERROR_BODY_LENGTH],
        )
    return response


def normalize_object_dict(raw: dict[object, object]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(key, str):
            normalized[key] = value
    return normalized


def as_str(value: object) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(stripped)
        except ValueError:
            return None
    return None
