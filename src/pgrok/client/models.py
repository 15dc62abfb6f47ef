"""Value types shared by the proxy, the tunnel manager and observers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TunnelStatus(str, Enum):
    """Session status as reported by the relay-side controller."""

    CONNECTING = "connecting"
    PROVISIONING_TLS = "provisioning_tls"
    ONLINE = "online"
    ERROR = "error"


class CertStatus(str, Enum):
    """TLS certificate status for the public hostname."""

    PENDING = "pending"
    READY = "ready"
    WARNING = "warning"


@dataclass(frozen=True)
class TunnelState:
    """Live state of the tunnel session.

    Never mutated in place; transitions produce a new value.
    """

    status: TunnelStatus = TunnelStatus.CONNECTING
    url: str | None = None
    cert_status: CertStatus = CertStatus.PENDING
    error: str | None = None


@dataclass(frozen=True)
class HttpRequest:
    """A completed (or failed) proxied HTTP exchange."""

    method: str
    path: str
    status_code: int
    status_text: str
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.now)
