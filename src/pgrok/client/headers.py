"""Header rewriting for proxied requests and responses."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from multidict import CIMultiDict

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Headers owned by the WebSocket handshake; the upstream client negotiates its own.
WEBSOCKET_HANDSHAKE = frozenset(
    {
        "host",
        "sec-websocket-key",
        "sec-websocket-version",
        "sec-websocket-extensions",
        "sec-websocket-protocol",
        "sec-websocket-accept",
    }
)

FORWARDED_PORT = "443"
DEFAULT_FORWARDED_PROTO = "https"


def connection_tokens(items: Iterable[tuple[str, str]]) -> set[str]:
    """Header names listed in any ``Connection`` header, lowercased."""
    tokens: set[str] = set()
    for key, value in items:
        if key.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def strip_hop_by_hop(items: Iterable[tuple[str, str]]) -> CIMultiDict[str]:
    """Copy headers without hop-by-hop fields.

    Removes the standard hop-by-hop set plus any header named in a
    ``Connection`` value. Repeated headers (e.g. ``Set-Cookie``) are preserved.
    """
    pairs = list(items)
    dropped = HOP_BY_HOP | connection_tokens(pairs)
    result: CIMultiDict[str] = CIMultiDict()
    for key, value in pairs:
        if key.lower() not in dropped:
            result.add(key, value)
    return result


def build_forward_headers(
    inbound: Mapping[str, str],
    target_host: str,
    remote: str | None,
) -> CIMultiDict[str]:
    """Headers sent to the local service for a proxied HTTP request.

    Args:
        inbound: Request headers as received (a multidict).
        target_host: ``host:port`` of the local service, used as ``Host``.
        remote: Address of the caller, appended to ``X-Forwarded-For``.
    """
    original_host = inbound.get("Host")
    proto = inbound.get("X-Forwarded-Proto") or DEFAULT_FORWARDED_PROTO
    chain = [v for v in _getall(inbound, "X-Forwarded-For") if v.strip()]
    if remote:
        chain.append(remote)

    headers = strip_hop_by_hop(inbound.items())
    headers["Host"] = target_host
    if chain:
        headers["X-Forwarded-For"] = ", ".join(chain)
    else:
        headers.popall("X-Forwarded-For", None)
    headers["X-Forwarded-Proto"] = proto
    if original_host:
        headers["X-Forwarded-Host"] = original_host
    headers["X-Forwarded-Port"] = FORWARDED_PORT
    # Ask for an identity body so Content-Encoding never disagrees with what is relayed.
    headers.popall("Accept-Encoding", None)
    return headers


def build_response_headers(items: Iterable[tuple[str, str]]) -> CIMultiDict[str]:
    """Headers relayed back to the caller for a proxied response.

    ``Content-Encoding`` and ``Content-Length`` are dropped: the body is relayed
    decoded, and the server recomputes framing.
    """
    headers = strip_hop_by_hop(items)
    headers.popall("Content-Encoding", None)
    headers.popall("Content-Length", None)
    return headers


def build_websocket_headers(inbound: Mapping[str, str]) -> list[tuple[str, str]]:
    """Headers passed to the upstream WebSocket handshake.

    ``Host`` is not copied; the upstream client sets it from the target URI,
    which is the local service address.
    """
    headers = strip_hop_by_hop(inbound.items())
    return [(k, v) for k, v in headers.items() if k.lower() not in WEBSOCKET_HANDSHAKE]


def requested_subprotocols(inbound: Mapping[str, str]) -> list[str]:
    """Subprotocols offered in ``Sec-WebSocket-Protocol``."""
    protocols: list[str] = []
    for value in _getall(inbound, "Sec-WebSocket-Protocol"):
        protocols.extend(p.strip() for p in value.split(",") if p.strip())
    return protocols


def is_websocket_upgrade(inbound: Mapping[str, str]) -> bool:
    return inbound.get("Upgrade", "").strip().lower() == "websocket"


def _getall(headers: Mapping[str, str], key: str) -> list[str]:
    getall = getattr(headers, "getall", None)
    if getall is not None:
        return list(getall(key, []))
    value = headers.get(key)
    return [value] if value is not None else []
