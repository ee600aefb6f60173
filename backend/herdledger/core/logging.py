"""
Structured logging for the audit trail using structlog.

Development output is colored console text, everything else is JSON. Key
material never reaches a log line: values of known secret fields and any
PEM private key are masked by a processor that runs before rendering.
"""

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from herdledger.core.config import Settings, get_settings

_REDACTED = "***"
_SECRET_FIELDS = frozenset(
    {
        "private_key_pem",
        "private_key_encrypted",
        "audit_signing_key",
        "encryption_master_key",
        "ledger_api_token",
    }
)
_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "aiosqlite", "asyncio")


def _mask(value: Any) -> Any:
    if isinstance(value, str) and "PRIVATE KEY" in value:
        return _REDACTED
    if isinstance(value, MutableMapping):
        return {
            key: _REDACTED if key in _SECRET_FIELDS else _mask(item)
            for key, item in value.items()
        }
    return value


def redact_key_material(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """structlog processor masking secrets in the event dict."""
    for key, value in list(event_dict.items()):
        event_dict[key] = _REDACTED if key in _SECRET_FIELDS else _mask(value)
    return event_dict


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging for the application.

    In development mode, logs are formatted for human readability.
    Elsewhere they are JSON-formatted for log aggregation.
    """
    settings = settings or get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        redact_key_material,
    ]

    if settings.environment == "development":
        renderer: list[Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderer = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    if not settings.debug:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def audit_stream_context(entity_type: str, entity_id: str) -> Iterator[None]:
    """Tag every log line inside the block with the audit stream."""
    with structlog.contextvars.bound_contextvars(
        audit_stream=f"{entity_type}/{entity_id}",
    ):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with the given name."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
