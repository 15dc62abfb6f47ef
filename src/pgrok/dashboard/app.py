"""Full-screen live dashboard.

Rendering happens on the event loop in response to session events; the stats
timer guarantees at least one refresh per second.
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.live import Live

from pgrok import __version__
from pgrok.client.models import TunnelState
from pgrok.client.session import TunnelSession
from pgrok.dashboard.components import (
    render_connections,
    render_header,
    render_requests,
    render_session,
)
from pgrok.observability.stats import ConnectionStats

# Header, session and connections panels plus the requests title and separator
RESERVED_ROWS = 14


class Dashboard:
    """Renders a :class:`TunnelSession` to the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._session: TunnelSession | None = None
        self._state = TunnelState()
        self._stats = ConnectionStats()
        self._local_port = 0
        self._live: Live | None = None

    def attach(self, session: TunnelSession) -> None:
        """Subscribe to a session's events and release the screen when it stops."""
        self._session = session
        self._state = session.state
        self._local_port = session.local_port
        session.add_state_hook(self._on_state)
        session.add_stats_hook(self._on_stats)
        session.add_close_hook(self.stop)

    def render(self) -> Group:
        height = self.console.size.height
        entries = self._session.requests.recent() if self._session else []
        return Group(
            render_header(),
            render_session(self._state, self._local_port, __version__),
            render_connections(self._stats),
            render_requests(entries, limit=max(height - RESERVED_ROWS, 0)),
        )

    def start(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            get_renderable=self.render,
            console=self.console,
            screen=True,
            transient=True,
            auto_refresh=False,
            redirect_stdout=False,
            redirect_stderr=False,
        )
        self._live.start(refresh=True)

    def stop(self) -> None:
        if self._live is None:
            return
        live, self._live = self._live, None
        live.stop()

    def refresh(self) -> None:
        if self._live is not None:
            self._live.refresh()

    def _on_state(self, state: TunnelState) -> None:
        self._state = state
        self.refresh()

    def _on_stats(self, stats: ConnectionStats) -> None:
        self._stats = stats
        self.refresh()
