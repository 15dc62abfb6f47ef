"""HTTP requests panel: the most recent proxied requests, newest last."""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Group
from rich.padding import Padding
from rich.text import Text

from pgrok.client.models import HttpRequest
from pgrok.observability.request_log import LoggedRequest

PATH_WIDTH = 28
METHOD_WIDTH = 7
STATUS_TEXT_WIDTH = 16
SEPARATOR_WIDTH = 76

METHOD_STYLES = {
    "GET": "#61AFEF",
    "POST": "#C678DD",
    "PUT": "#E5C07B",
    "PATCH": "#E5C07B",
    "DELETE": "#E06C75",
    "HEAD": "#56B6C2",
    "OPTIONS": "#56B6C2",
}
DEFAULT_METHOD_STYLE = "#ABB2BF"


def status_style(code: int) -> str:
    if code < 300:
        return "#98C379"
    if code < 400:
        return "#56B6C2"
    if code < 500:
        return "#E5C07B"
    return "#E06C75"


def duration_style(ms: float) -> str:
    if ms < 100:
        return "#98C379"
    if ms < 500:
        return "#E5C07B"
    return "#E06C75"


def format_path(path: str) -> str:
    """Pad or truncate a path to the fixed column width."""
    if len(path) > PATH_WIDTH:
        return path[: PATH_WIDTH - 1] + "…"
    return path.ljust(PATH_WIDTH)


def format_duration(ms: float) -> str:
    """``123ms`` below one second, ``1.5s`` above."""
    rounded = round(ms)
    if rounded < 1000:
        return f"{rounded}ms"
    return f"{rounded / 1000:.1f}s"


def format_timestamp(request: HttpRequest) -> str:
    ts = request.timestamp
    return f"{ts:%H:%M:%S}.{ts.microsecond // 1000:03d}"


def render_request_line(request: HttpRequest) -> Text:
    status_color = status_style(request.status_code)
    line = Text(no_wrap=True, overflow="ellipsis")
    line.append(format_timestamp(request), style="dim")
    line.append("  ")
    line.append(
        request.method.ljust(METHOD_WIDTH),
        style=f"bold {METHOD_STYLES.get(request.method, DEFAULT_METHOD_STYLE)}",
    )
    line.append(" ")
    line.append(format_path(request.path), style=DEFAULT_METHOD_STYLE)
    line.append(" ")
    line.append(str(request.status_code), style=f"bold {status_color}")
    line.append(" ")
    line.append(request.status_text.ljust(STATUS_TEXT_WIDTH), style=status_color)
    line.append(" ")
    line.append(format_duration(request.duration_ms), style=duration_style(round(request.duration_ms)))
    return line


def render_requests(entries: Sequence[LoggedRequest], limit: int | None = None) -> Padding:
    """Render the request log, keeping only the last ``limit`` entries."""
    if limit is not None:
        entries = entries[-limit:] if limit > 0 else []
    lines = [
        Text("HTTP Requests", style="bold white"),
        Text("─" * SEPARATOR_WIDTH, style="grey27"),
        *(render_request_line(entry.request) for entry in entries),
    ]
    return Padding(Group(*lines), (0, 2))
