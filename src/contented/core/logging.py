"""
Structured logging for builds and watchers.

Manifesto:
    A watcher runs for hours and rebuilds in bursts. Every event has to say
    which pipeline and which file it belongs to, so:

    - **Key/value events:** JSON when piped, colors on a TTY
    - **Bound pipeline:** ``pipeline`` rides along for a whole build
    - **Dotted names:** ``coordinator.rebuild.complete``, never prose

Architecture:
    ::

        logger.info("coordinator.build.start", files=12)
            │
            ├─ merge_contextvars     (pipeline=Doc from LogContext)
            ├─ timestamp / level / logger name / exc info
            ├─ service.name
            ├─ ECS field names       (JSON only: @timestamp, log.level)
            ▼
        JSONRenderer | ConsoleRenderer  ──►  stdlib logging (stdout)

Examples:
    >>> from contented.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("pipeline.build.start", pipeline="Doc", files=12)

Tags:
    logging, structlog, observability, contented
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "contented"

# JSON output uses Elastic Common Schema names for these keys.
_ECS_RENAMES = {"timestamp": "@timestamp", "level": "log.level", "logger": "log.logger"}


def _stamp_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service)
    return event_dict


def _rename_for_ecs(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, renamed in _ECS_RENAMES.items():
        if key in event_dict:
            event_dict[renamed] = event_dict.pop(key)
    return event_dict


def _processor_chain(json_format: bool, add_timestamp: bool) -> list[Processor]:
    chain: list[Processor] = [structlog.contextvars.merge_contextvars]
    if add_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso"))
    chain += [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _stamp_service,
    ]
    if json_format:
        chain += [
            structlog.processors.format_exc_info,
            _rename_for_ecs,
            structlog.processors.JSONRenderer(),
        ]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return chain


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "contented",
    add_timestamp: bool = True,
) -> None:
    """Configure structlog once for the process.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_format: True for JSON, False for console, None picks JSON
            whenever stdout is not a terminal
        service: Value of ``service.name`` on every event
        add_timestamp: Prefix events with an ISO timestamp
    """
    global _service
    _service = service

    if json_format is None:
        json_format = not sys.stdout.isatty()
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    structlog.configure(
        processors=_processor_chain(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach key/values to every event logged by the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


class LogContext:
    """Bind context for the duration of a ``with`` / ``async with`` block.

    Example:
        async with LogContext(pipeline="Doc"):
            logger.info("coordinator.build.start")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        unbind_context(*self._context)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "LogContext",
]
