"""Structured logging for the integrity services (structlog over stdlib logging)."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable

import structlog

# One line per HTTP request / pooled connection at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _stamp_service(service: str) -> structlog.types.Processor:
    def processor(_logger, _method, event_dict):
        event_dict.setdefault("service", service)
        return event_dict
    return processor


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    service: str | None = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Route structlog and stdlib records through a single stderr handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "json" for production, "console" for development.
        service: When given, stamped on every line as ``service``.
        quiet: Loggers held at WARNING or above whatever *level* is.
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if service:
        pre_chain.append(_stamp_service(service))

    if log_format == "console":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        pre_chain.append(structlog.processors.dict_tracebacks)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn and sqlalchemy log through stdlib; give their records the same fields
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in quiet:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))


def get_logger(name: str | None = None, **initial_context) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, optionally pre-bound with context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
