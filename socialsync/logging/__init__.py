"""Structured logging for connection flows and publish jobs."""

from socialsync.logging.structured import (
    configure_structlog,
    get_logger,
    bind_context,
    clear_context,
)

__all__ = [
    "configure_structlog",
    "get_logger",
    "bind_context",
    "clear_context",
]
