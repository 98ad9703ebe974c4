"""Structured logging setup for the API and CLI.

Engine modules log through the standard library (``logging.getLogger``);
structlog renders those records and its own events through one pipeline so
both end up in the same format.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from .config import get_settings

_configured = False


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure structlog and the root logger from settings.

    ``fmt`` is ``"json"`` for production or ``"console"`` for local runs.
    """
    global _configured
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if (fmt or settings.log_format) == "console"
        else structlog.processors.JSONRenderer(sort_keys=True)
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    if _configured:
        for existing in list(root.handlers):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str, **bound_values: Any) -> Any:
    """Return a structlog logger bound with ``bound_values`` (e.g. trace_id)."""
    return structlog.get_logger(name).bind(**bound_values)
