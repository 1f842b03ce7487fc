"""Structured logging for the metrics core.

Entries are rendered as JSON (ConsoleRenderer when debugging), stdlib
loggers such as SQLAlchemy go through the same formatter, and every entry
carries the request_id and operation bound by request_context().
"""

import logging
import logging.config
import uuid
from contextlib import contextmanager
from typing import Iterator

import structlog

from workshop_metrics.core.config import get_settings

# Chatty stdlib loggers held at WARNING
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite")


def _shared_processors() -> list:
    """Processors applied to structlog and stdlib entries alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _logging_config(log_level: str, renderer, pre_chain: list) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
                "foreign_pre_chain": pre_chain,
            },
        },
        "handlers": {
            "stdout": {"class": "logging.StreamHandler", "formatter": "structured", "stream": "ext://sys.stdout"},
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    }


def configure_structlog(log_level: str | None = None, json_logs: bool | None = None) -> None:
    """Route structlog and stdlib logging through one structured formatter.

    Call once at startup of the embedding process, before the first log
    call (loggers cache their processor chain on first use).

    Args:
        log_level: Root level name; defaults to settings.log_level
        json_logs: JSON lines when True, ConsoleRenderer when False;
            defaults to JSON unless settings.debug is set
    """
    settings = get_settings()
    log_level = log_level or settings.log_level
    if json_logs is None:
        json_logs = not settings.debug

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    logging.config.dictConfig(_logging_config(log_level, renderer, _shared_processors()))

    structlog.configure(
        processors=_shared_processors() + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def request_context(operation: str, request_id: str | None = None) -> Iterator[str]:
    """Bind request_id and operation to every entry logged inside the block.

    A request_id already bound by the caller (an HTTP middleware, a job
    runner) is reused so both layers correlate; otherwise a new one is made.
    Yields the request_id in effect.
    """
    if request_id is None:
        request_id = structlog.contextvars.get_contextvars().get("request_id") or str(uuid.uuid4())
    with structlog.contextvars.bound_contextvars(request_id=request_id, operation=operation):
        yield request_id
