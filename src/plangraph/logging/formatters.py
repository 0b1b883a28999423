"""structlog renderer for plangraph console output.

Produces pipe-separated lines: service | timestamp | level | event key=value...
Scores are shortened and long id lists (BFS seeds, cycle members) are
truncated so a line stays readable.
"""

from __future__ import annotations

import os
import sys
import traceback
from datetime import datetime
from typing import TYPE_CHECKING, Any

from plangraph.logging.colors import (
    ANSI_DIM,
    ANSI_GREEN,
    ANSI_MAGENTA,
    ANSI_RED,
    ANSI_RESET,
    ANSI_YELLOW,
    LEVEL_COLORS,
    SERVICE_COLORS,
)

if TYPE_CHECKING:
    from structlog.typing import EventDict, WrappedLogger

EXCEPTION_INDENT = " " * 9


def _color_enabled(colors: bool | None) -> bool:
    if colors is not None:
        return colors
    return sys.stderr.isatty() or os.environ.get("FORCE_COLOR", "") not in ("", "0", "false")


class PlanGraphRenderer:
    """Render structlog events as compact, aligned console lines.

    Example:
        graph   | 10:42:07 | info  | reindex_complete sources=4 entities=37
        graph   | 10:42:07 | warn  | graph_expansion_failed seeds=[plan:0001,plan:0002,+3]
    """

    def __init__(
        self,
        service_name: str = "graph",
        service_width: int = 7,
        colors: bool | None = None,
        max_exception_frames: int = 5,
        max_list_items: int = 3,
    ) -> None:
        self.service_name = service_name
        self.service_width = service_width
        self.colors = _color_enabled(colors)
        self.max_exception_frames = max_exception_frames
        self.max_list_items = max_list_items

    def __call__(
        self,
        logger: WrappedLogger,
        method_name: str,
        event_dict: EventDict,
    ) -> str:
        timestamp = str(event_dict.pop("timestamp", None) or datetime.now().strftime("%H:%M:%S"))
        level = str(event_dict.pop("level", method_name)).lower()
        event = str(event_dict.pop("event", ""))
        exc_info = event_dict.pop("exc_info", None)

        columns = [
            self._paint(
                f"{self.service_name:<{self.service_width}}",
                SERVICE_COLORS.get(self.service_name, ANSI_MAGENTA),
            ),
            self._paint(timestamp, ANSI_DIM),
            self._paint(f"{level:<5}", LEVEL_COLORS.get(level, LEVEL_COLORS["info"])),
            event,
        ]
        line = " | ".join(columns)

        pairs = [
            f"{key}={self._format_value(value)}"
            for key, value in event_dict.items()
            if not key.startswith("_")
        ]
        if pairs:
            line += " " + " ".join(pairs)
        if exc_info:
            line += f"\n{self._format_exception(exc_info)}"
        return line

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{ANSI_RESET}" if self.colors else text

    def _format_value(self, value: Any) -> str:
        if isinstance(value, bool):
            return self._paint(str(value), ANSI_GREEN if value else ANSI_RED)
        if isinstance(value, float):
            return self._paint(f"{value:.4g}", ANSI_YELLOW)
        if isinstance(value, int):
            return self._paint(str(value), ANSI_YELLOW)
        if isinstance(value, (list, tuple, set, frozenset)):
            items = [str(item) for item in value]
            hidden = len(items) - self.max_list_items
            if hidden > 0:
                items = [*items[: self.max_list_items], f"+{hidden}"]
            return f"[{','.join(items)}]"
        return str(value)

    def _format_exception(self, exc_info: tuple[Any, ...] | bool) -> str:
        """Most recent frames of an exception, no locals."""
        if exc_info is True:
            exc_info = sys.exc_info()
        if not exc_info or exc_info[0] is None:
            return ""

        exc_type, exc_value, exc_tb = exc_info
        frames = traceback.format_tb(exc_tb)
        if len(frames) > self.max_exception_frames:
            frames = ["  ... (truncated)\n", *frames[-self.max_exception_frames :]]

        body = "\n".join(
            EXCEPTION_INDENT + line for line in "".join(frames).rstrip().splitlines()
        )
        header = self._paint(f"{EXCEPTION_INDENT}{exc_type.__name__}: {exc_value}", ANSI_RED)
        return f"{header}\n{self._paint(body, ANSI_DIM)}"
