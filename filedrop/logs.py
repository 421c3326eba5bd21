from __future__ import annotations

from typing import IO
import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ANSI_RESET = "\x1b[0m"
ANSI_GREEN = "\x1b[32m"
ANSI_YELLOW = "\x1b[33m"
ANSI_RED = "\x1b[31m"

_LEVEL_COLORS = {
    logging.WARNING: ANSI_YELLOW,
    logging.ERROR: ANSI_RED,
    logging.CRITICAL: ANSI_RED,
}


def ansi_enabled(stream: IO[str]) -> bool:
    if os.environ.get("NO_COLOR") is not None:
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class ColorFormatter(logging.Formatter):
    """Colours a whole log line by level, or by ``extra={"color": ...}``."""

    def __init__(self, *, use_color: bool) -> None:
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self.use_color:
            return text
        code = getattr(record, "color", None) or _LEVEL_COLORS.get(record.levelno)
        if not code:
            return text
        return f"{code}{text}{ANSI_RESET}"


def configure_logging(level: str | int = logging.INFO, stream: IO[str] | None = None) -> None:
    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ColorFormatter(use_color=ansi_enabled(stream)))
    logging.basicConfig(level=level, handlers=[handler], force=True)


_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_bytes(num: int) -> str:
    """Human readable size with one decimal, in powers of 1024."""
    exponent = 0
    while exponent < len(_SIZE_UNITS) - 1 and num >= 1024 ** (exponent + 1):
        exponent += 1
    return f"{num / 1024 ** exponent:.1f} {_SIZE_UNITS[exponent]}"
