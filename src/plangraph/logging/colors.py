"""Terminal palette for plangraph console logs."""

from __future__ import annotations

ANSI_RESET = "\033[0m"
ANSI_BOLD = "\033[1m"
ANSI_DIM = "\033[2m"
ANSI_CYAN = "\033[36m"
ANSI_GREEN = "\033[32m"
ANSI_YELLOW = "\033[33m"
ANSI_RED = "\033[31m"
ANSI_MAGENTA = "\033[35m"
ANSI_BLUE = "\033[34m"

LEVEL_COLORS: dict[str, str] = {
    "debug": ANSI_DIM,
    "info": ANSI_CYAN,
    "warning": ANSI_YELLOW,
    "warn": ANSI_YELLOW,
    "error": ANSI_RED,
    "critical": ANSI_MAGENTA,
}

# Component (service) label colors
SERVICE_COLORS: dict[str, str] = {
    "graph": ANSI_MAGENTA,
    "retrieval": ANSI_BLUE,
    "reindex": ANSI_YELLOW,
    "resolver": ANSI_GREEN,
}
