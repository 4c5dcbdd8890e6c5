"""
Structured Logging Configuration with structlog

Every settlement log line is a structured event: a snake_case event name plus
key/value context (order_id, payment_id, seller_id, ...). Request-scoped values
such as trace.id are merged in from contextvars, so handlers never pass them by hand.

Output format:
- console: colorized key/value lines for local development
- json: one JSON object per line (orjson) for log shipping in production
"""

import logging
import sys
from typing import Any

import orjson
import structlog
from structlog.types import EventDict, Processor

from settlement.core.config import settings


def add_service_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Processor: stamp service, environment and version on every entry."""
    event_dict["service_name"] = settings.SERVICE_NAME
    event_dict["environment"] = settings.ENVIRONMENT
    event_dict["version"] = settings.SERVICE_VERSION
    return event_dict


def add_log_level(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Processor: normalize log level to uppercase (ERROR, not error)."""
    if method_name:
        event_dict["level"] = method_name.upper()
    return event_dict


def rename_event_key(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Processor: rename structlog's 'event' key to 'message'.

    Log aggregators (Elasticsearch, Loki) expect 'message'.
    """
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


def drop_color_message_key(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Processor: remove console-only keys before JSON rendering."""
    event_dict.pop("color_message", None)
    return event_dict


def orjson_dumps(obj: Any, **kwargs: Any) -> str:
    # default=str keeps UUIDs and datetimes in log context serializable
    return orjson.dumps(obj, default=str).decode("utf-8")


def configure_logging() -> None:
    """
    Configure stdlib logging and structlog.

    Call this ONCE at process startup (API, outbox worker, consumer).
    """
    logging.basicConfig(
        format="%(message)s",  # structlog does the formatting
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL.upper()),
    )

    # Request logs come from LoggingMiddleware; library chatter stays at WARNING
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    logging.getLogger("aiokafka.consumer.group_coordinator").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosmtplib").setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_service_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_log_level,
        structlog.processors.format_exc_info,
        rename_event_key,
        drop_color_message_key,
    ]

    if settings.LOG_FORMAT == "console":
        renderer: Processor = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    else:
        renderer = structlog.processors.JSONRenderer(serializer=orjson_dumps)

    structlog.configure(
        processors=shared_processors + [renderer],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("payment_hold_created", order_id=order.id, amount_cents=order.amount_cents)
    """
    return structlog.get_logger(name)
