from __future__ import annotations

import logging
from collections.abc import Mapping, Sized
from dataclasses import dataclass
from typing import Any, Literal, Protocol
from urllib.parse import urlsplit

import structlog

TELEMETRY_LOGGER_NAME = "anibridge.telemetry"
REDACTED = "[redacted]"

# Key segments whose values may carry scraped markup, stream links or credentials.
_REDACTED_KEY_SEGMENTS: frozenset[str] = frozenset(
    {"authorization", "body", "cookie", "html", "link", "markup", "secret", "token"}
)
_MAX_TITLE_LENGTH = 80
_MAX_STRING_LENGTH = 160

ScalarAttribute = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes each event as one structlog record named after the event."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info(event_name, telemetry=True, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if self.enabled:
            self.sink.emit(event_name=event_name, attributes=sanitize_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled:
        return TelemetryClient.disabled()
    match sink:
        case "log":
            return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())
        case "none":
            return TelemetryClient.disabled()
        case _:
            logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
                "unknown telemetry sink, events are dropped sink=%s",
                sink,
            )
            return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, ScalarAttribute]:
    """Flatten event attributes to log-safe scalars.

    Keys are matched by underscore-separated segment, so ``source_link`` is
    redacted while ``episode_slug`` is kept. Titles are shortened harder than
    other strings, URLs are reduced to their host and collections to their
    size.
    """
    sanitized: dict[str, ScalarAttribute] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        segments = set(key.split("_"))
        if segments & _REDACTED_KEY_SEGMENTS:
            sanitized[key] = REDACTED
        elif "url" in segments and isinstance(raw_value, str):
            sanitized[key] = _url_host(raw_value)
        elif "title" in segments and isinstance(raw_value, str):
            sanitized[key] = _shorten(raw_value, _MAX_TITLE_LENGTH)
        else:
            sanitized[key] = _scalar(raw_value)
    return sanitized


def _scalar(value: Any) -> ScalarAttribute:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        return _shorten(value, _MAX_STRING_LENGTH)
    if isinstance(value, Sized):
        return len(value)
    return type(value).__name__


def _shorten(value: str, limit: int) -> str:
    compact = " ".join(value.split())
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _url_host(url: str) -> str:
    try:
        parsed = urlsplit(url)
    except ValueError:
        return "url"
    return parsed.hostname or parsed.netloc or "url"
