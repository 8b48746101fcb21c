"""structlog setup for the service.

Every log line carries the service name and version, any request-scoped
context bound through contextvars (request_id, user_id, event_id,
external_reference), and has processor credentials masked.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

from subscription_sync import __version__

SERVICE_NAME = "subscription-sync"

# Keys whose values never reach the log output
REDACTED_KEYS = frozenset(
    {"access_token", "authorization", "client_secret", "password", "payer_id"}
)
REDACTED = "***"

# Client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "google.auth", "google.api_core")


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", __version__)
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential-like values, including inside nested dicts one level deep."""
    for key, value in list(event_dict.items()):
        if key.lower() in REDACTED_KEYS and value is not None:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if str(k).lower() in REDACTED_KEYS and v is not None else v
                for k, v in value.items()
            }
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    include_timestamp: bool = True,
) -> None:
    """Configure structlog on top of stdlib logging.

    Safe to call more than once; the last call wins.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines when True, colored console output otherwise
        include_timestamp: Add an ISO 8601 timestamp to every event
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        add_service_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind request-scoped fields to every later log line of this context.

    Example:
        bind_context(request_id="abc123", user_id="user-456")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
