"""Session panel: status, version, forwarding and certificate rows."""

from __future__ import annotations

from rich.padding import Padding
from rich.table import Table
from rich.text import Text

from pgrok.client.models import CertStatus, TunnelState, TunnelStatus

LABEL_WIDTH = 26
LABEL_STYLE = "grey53"

STATUS_DISPLAY: dict[TunnelStatus, tuple[str, str]] = {
    TunnelStatus.ONLINE: ("online", "green"),
    TunnelStatus.PROVISIONING_TLS: ("provisioning TLS...", "yellow"),
    TunnelStatus.ERROR: ("error", "red"),
    TunnelStatus.CONNECTING: ("connecting", "yellow"),
}

CERT_DISPLAY: dict[CertStatus, tuple[str, str]] = {
    CertStatus.READY: ("ready (Let's Encrypt)", "green"),
    CertStatus.WARNING: ("pending (will provision on first request)", "yellow"),
    CertStatus.PENDING: ("provisioning...", LABEL_STYLE),
}


def forwarding_text(state: TunnelState, local_port: int) -> str:
    """``<url> -> http://localhost:<port>`` once the relay has reported a URL."""
    if not state.url:
        return ""
    return f"{state.url} -> http://localhost:{local_port}"


def render_session(state: TunnelState, local_port: int, version: str) -> Padding:
    grid = Table.grid()
    grid.add_column(width=LABEL_WIDTH, style=LABEL_STYLE, no_wrap=True)
    grid.add_column()

    status_text, status_style = STATUS_DISPLAY[state.status]
    cert_text, cert_style = CERT_DISPLAY[state.cert_status]

    grid.add_row("Session Status", Text(status_text, style=status_style))
    if state.status is TunnelStatus.ERROR and state.error:
        grid.add_row("", Text(state.error, style="red"))
    grid.add_row("Version", Text(version, style="white"))
    grid.add_row("Forwarding", Text(forwarding_text(state, local_port), style="white"))
    grid.add_row("TLS Certificate", Text(cert_text, style=cert_style))
    return Padding(grid, (0, 2, 1, 2))
