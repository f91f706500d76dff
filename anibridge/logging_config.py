from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from anibridge.config import AppSettings
from anibridge.telemetry import TELEMETRY_LOGGER_NAME

ROOT_LOGGER_NAME = "anibridge"
LOG_FILE_NAME = "anibridge.log"
# Fields the routes bind per request; the file log nests them under "lookup".
LOOKUP_CONTEXT_FIELDS: tuple[str, ...] = (
    "anilist_id",
    "episode_number",
    "stream_server",
    "stream_type",
)
# Third-party loggers whose warnings belong in the file log.
UPSTREAM_LOGGER_NAMES: tuple[str, ...] = ("httpx", "httpcore")


def configure_application_logging(settings: AppSettings) -> Path:
    """Route the package loggers to stdout and a JSON-lines file.

    Telemetry records and upstream client warnings go to the file only.
    Calling this again replaces the previous handlers.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    _configure_structlog()

    console_stream = sys.stdout
    _attach(
        ROOT_LOGGER_NAME,
        logging.DEBUG,
        _console_handler(console_stream, resolve_log_level(settings.log_level)),
        _file_handler(log_file, logging.DEBUG),
    )
    _attach(TELEMETRY_LOGGER_NAME, logging.INFO, _file_handler(log_file, logging.INFO))
    for logger_name in UPSTREAM_LOGGER_NAMES:
        _attach(logger_name, logging.WARNING, _file_handler(log_file, logging.WARNING))

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s",
        logging.getLevelName(resolve_log_level(settings.log_level)),
        log_file,
    )
    return log_file


def resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _attach(logger_name: str, level: int, *handlers: logging.Handler) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)


def _console_handler(stream: TextIO, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=_is_terminal(stream)),
            ],
        )
    )
    return handler


def _file_handler(log_file: Path, level: int) -> logging.Handler:
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                _add_source_location,
                _group_lookup_context,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["source"] = f"{record.module}:{record.funcName}:{record.lineno}"
        # Requests run as asyncio tasks; the name tells concurrent lookups apart.
        task_name = getattr(record, "taskName", None)
        if task_name:
            event_dict["task_name"] = task_name
    return event_dict


def _group_lookup_context(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    lookup = {
        field: event_dict.pop(field)
        for field in LOOKUP_CONTEXT_FIELDS
        if field in event_dict
    }
    if lookup:
        event_dict["lookup"] = lookup
    return event_dict


def _is_terminal(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (OSError, ValueError):
        return False
