"""Logging configuration for plangraph.

Usage:
    from plangraph.logging import configure_logging, get_logger

    configure_logging(service_name="graph")
    log = get_logger()
    log.info("reindex_start", sources=4)
"""

from __future__ import annotations

import logging
import sys

import structlog

from plangraph.logging.formatters import PlanGraphRenderer

_configured = False


def configure_logging(
    *,
    service_name: str | None = None,
    level: str | None = None,
    colors: bool | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure structlog for plangraph.

    Unset arguments fall back to ``core_config`` (``PLANGRAPH_LOG_LEVEL``,
    ``PLANGRAPH_LOG_JSON``, ``PLANGRAPH_SERVICE_NAME``).

    Args:
        service_name: Label printed at the start of console lines.
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR).
        colors: Enable ANSI colors (auto-detect TTY if None).
        json_output: Emit JSON lines for log aggregation.
    """
    global _configured
    from plangraph.config import core_config

    service_name = service_name or core_config.service_name
    level = level or core_config.log_level
    if json_output is None:
        json_output = core_config.log_json
    if colors is None:
        colors = sys.stderr.isatty()

    _configure_stdlib_logging(level)

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = PlanGraphRenderer(service_name=service_name, colors=colors)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S" if not json_output else "iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    _configured = True


def is_configured() -> bool:
    """Whether configure_logging() has run in this process."""
    return _configured


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger (optionally named after the calling module)."""
    return structlog.get_logger(name)


def _configure_stdlib_logging(level: str) -> None:
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[logging.StreamHandler()],
    )
