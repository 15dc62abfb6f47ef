"""Dashboard panels. Each function turns session data into a rich renderable."""

from pgrok.dashboard.components.connections import render_connections
from pgrok.dashboard.components.header import render_header
from pgrok.dashboard.components.requests import render_requests
from pgrok.dashboard.components.session import render_session

__all__ = [
    "render_connections",
    "render_header",
    "render_requests",
    "render_session",
]
