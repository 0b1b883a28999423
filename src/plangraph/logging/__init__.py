"""plangraph logging.

Usage:
    from plangraph.logging import configure_logging, get_logger

    configure_logging(service_name="graph")
    log = get_logger()
    log.info("search_complete", results=10)
"""

from plangraph.logging.config import configure_logging, get_logger, is_configured
from plangraph.logging.formatters import PlanGraphRenderer

__all__ = [
    "PlanGraphRenderer",
    "configure_logging",
    "get_logger",
    "is_configured",
]
