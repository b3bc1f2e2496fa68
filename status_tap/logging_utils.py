from __future__ import annotations

import logging
import sys
from typing import TextIO

from colorlog import ColoredFormatter

TRACE_LEVEL = 5

LOG_FORMAT = "%(log_color)s%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_COLORS = {
    "TRACE": "cyan",
    "DEBUG": "blue",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _trace(self: logging.Logger, message: str, *args: object, **kwargs: object) -> None:
    if self.isEnabledFor(TRACE_LEVEL):
        self._log(TRACE_LEVEL, message, args, **kwargs)


def configure_logging(level: int, stream: TextIO | None = None) -> None:
    """Send diagnostics to stderr; stdout is reserved for status lines."""
    logging.addLevelName(TRACE_LEVEL, "TRACE")
    setattr(logging.Logger, "trace", _trace)
    stream = stream or sys.stderr
    formatter = ColoredFormatter(
        LOG_FORMAT,
        log_colors=LOG_COLORS,
        no_color=not stream.isatty(),
    )
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[handler])


def resolve_log_level(verbosity: int, fallback: str) -> int:
    if verbosity >= 2:
        return TRACE_LEVEL
    if verbosity == 1:
        return logging.DEBUG
    level = logging.getLevelName(fallback.upper())
    return level if isinstance(level, int) else logging.INFO
