"""structlog configuration shared by the CLI and the MCP server."""

from __future__ import annotations

import logging
import sys
from typing import IO, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

_LOGGING_CONFIGURED = False


def configure_logging(settings: Settings, *, stream: Optional[IO[str]] = None) -> None:
    """Initialize structlog and stdlib logging formatting.

    Rendered structlog events are handed to stdlib logging, whose root
    handler writes to stderr so stdout stays free for command output and
    the stdio MCP transport.
    """
    # Idempotent setup
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event", "slug", "blob_path"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    handler: logging.Handler
    if settings.log_rich_enabled and not settings.log_json_enabled:
        handler = RichHandler(
            console=Console(file=stream or sys.stderr),
            show_time=False,
            show_path=False,
            markup=False,
        )
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
    logging.basicConfig(level=level, handlers=[handler], format="%(message)s")

    # httpx logs every request line at INFO, including SAS query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    _LOGGING_CONFIGURED = True


def reset_logging() -> None:
    """Allow ``configure_logging`` to run again (stdio mode reconfigures for stderr)."""
    global _LOGGING_CONFIGURED
    _LOGGING_CONFIGURED = False
    structlog.reset_defaults()
