"""structlog configuration that renders into an in-memory buffer.

While the dashboard owns the terminal nothing may be printed, so log events are
rendered to text and kept in a bounded buffer. ``--print-logs`` dumps the buffer
on shutdown.
"""

from __future__ import annotations

import logging
import tempfile
import time
from collections import deque
from pathlib import Path
from typing import Any

import structlog


class LogBuffer:
    """Bounded collection of rendered log lines."""

    def __init__(self, max_lines: int = 2000) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)

    def append(self, line: str) -> None:
        self._lines.append(line)

    def lines(self) -> list[str]:
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)

    def dump(self, subdomain: str, directory: str | Path | None = None) -> Path:
        """Write all buffered lines to a log file in the temp directory.

        Returns:
            Path of the written file.
        """
        base = Path(directory) if directory else Path(tempfile.gettempdir())
        stamp = time.strftime("%Y%m%d-%H%M%S")
        path = base / f"pgrok-{subdomain}-{stamp}.log"
        text = "\n".join(self._lines)
        path.write_text(text + "\n" if text else "", encoding="utf-8")
        return path


class BufferLogger:
    """structlog logger that appends rendered events to a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer) -> None:
        self._buffer = buffer

    def msg(self, message: str) -> None:
        self._buffer.append(message)

    log = debug = info = warning = warn = error = critical = exception = fatal = msg


class BufferHandler(logging.Handler):
    """stdlib handler for third-party loggers (aiohttp, asyncio, httpx)."""

    def __init__(self, buffer: LogBuffer) -> None:
        super().__init__()
        self._buffer = buffer
        self.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._buffer.append(self.format(record))
        except Exception:
            self.handleError(record)


class BufferLoggerFactory:
    def __init__(self, buffer: LogBuffer) -> None:
        self._buffer = buffer

    def __call__(self, *args: Any) -> BufferLogger:
        return BufferLogger(self._buffer)


def configure_logging(level: str = "info", buffer: LogBuffer | None = None) -> LogBuffer:
    """Route structlog output into a buffer.

    Args:
        level: Minimum level name (debug, info, warning, error).
        buffer: Existing buffer to reuse; a new one is created otherwise.

    Returns:
        The buffer receiving rendered events.
    """
    buffer = buffer if buffer is not None else LogBuffer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=BufferLoggerFactory(buffer),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, BufferHandler):
            root.removeHandler(handler)
    root.addHandler(BufferHandler(buffer))
    root.setLevel(logging.DEBUG if level.lower() == "debug" else logging.WARNING)
    return buffer
