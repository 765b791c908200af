"""Structured logging with structlog.

Provides:
- JSON-formatted log output for production
- Context processors for request_id, user_id, organization_id
- Factory function for creating loggers
"""

from contextvars import ContextVar
import logging
import sys
from typing import Optional
from uuid import UUID

import structlog
from structlog.types import EventDict, WrappedLogger

from socialsync.config import LOG_JSON, LOG_LEVEL

# Keys whose values must never reach a log line
REDACTED_KEYS = frozenset(
    {"access_token", "refresh_token", "page_access_token", "client_secret", "code"}
)

# Request-scoped data, isolated per task
_context_vars: ContextVar[dict[str, str]] = ContextVar("log_context", default={})


def add_request_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add request context (request_id, user_id, organization_id) to log entries."""
    context = _context_vars.get()
    if context:
        event_dict.update(context)
    return event_dict


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service information to log entries."""
    event_dict["service"] = "socialsync"
    return event_dict


def redact_secrets(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask credential values passed as log fields."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def configure_structlog(
    json_format: bool = True,
    log_level: str = "INFO",
) -> None:
    """Configure structlog for the application.

    Args:
        json_format: If True, output JSON logs (for production).
                     If False, output human-readable logs (for development).
        log_level: The minimum log level to output (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_info,
        add_request_context,
        redact_secrets,
    ]

    if json_format:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger with the given name.

    Example:
        logger = get_logger(__name__)
        logger.info("job_claimed", job_id=str(job.id), attempts=job.attempts)
    """
    return structlog.get_logger(name)


def bind_context(
    request_id: Optional[str] = None,
    user_id: Optional[UUID] = None,
    organization_id: Optional[UUID] = None,
) -> None:
    """Bind context variables for the current request scope.

    These values will be included in all subsequent log entries
    until clear_context() is called.
    """
    context = dict(_context_vars.get())
    if request_id:
        context["request_id"] = request_id
    if user_id:
        context["user_id"] = str(user_id)
    if organization_id:
        context["organization_id"] = str(organization_id)
    _context_vars.set(context)


def clear_context() -> None:
    """Clear all bound context variables."""
    _context_vars.set({})


# Can be reconfigured by calling configure_structlog() in api/main.py
configure_structlog(json_format=LOG_JSON, log_level=LOG_LEVEL)
