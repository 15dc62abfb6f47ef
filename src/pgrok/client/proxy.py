"""Local reverse proxy between the SSH tunnel and the exposed service.

Traffic arriving through the tunnel lands here first so every exchange can be
timed and reported before it is forwarded to ``localhost:<port>``.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable

import httpx
import structlog
import websockets
from aiohttp import WSMsgType, web

from pgrok.client.headers import (
    build_forward_headers,
    build_response_headers,
    build_websocket_headers,
    is_websocket_upgrade,
    requested_subprotocols,
)
from pgrok.client.models import HttpRequest
from pgrok.client.websocket import UpstreamWebSocket
from pgrok.observability.metrics import (
    ACTIVE_WEBSOCKETS,
    HTTP_REQUESTS,
    OPEN_CONNECTIONS,
    REQUEST_DURATION,
    WEBSOCKET_MESSAGES,
    bucket_status,
)

logger = structlog.get_logger()

CHUNK_SIZE = 65536
BAD_GATEWAY_BODY = "Bad Gateway - local service not running"

WS_CLOSE_NORMAL = 1000
WS_CLOSE_INTERNAL_ERROR = 1011
WS_CLOSE_GRACE = 1.0
# Codes that may be reported locally but never sent in a close frame.
_RESERVED_CLOSE_CODES = frozenset({1005, 1006, 1015})


def _sendable_close_code(code: int | None) -> int:
    if code is None or code in _RESERVED_CLOSE_CODES:
        return WS_CLOSE_NORMAL
    return code


class LocalProxy:
    """HTTP and WebSocket reverse proxy to a local port.

    Every forwarded HTTP exchange produces exactly one :class:`HttpRequest`
    event, including failures which are answered with 502.
    """

    def __init__(
        self,
        target_port: int,
        host: str = "127.0.0.1",
        target_host: str = "localhost",
        connect_timeout: float = 5.0,
        read_timeout: float | None = None,
        track_in_flight: Callable[[], Callable[[], None]] | None = None,
    ) -> None:
        """Initialize the proxy.

        Args:
            target_port: Port of the local service to forward to.
            host: Address the proxy listens on.
            target_host: Host name of the local service.
            connect_timeout: Timeout for connecting to the local service.
            read_timeout: Timeout between response chunks. None for indefinite.
            track_in_flight: Called when a request starts; returns the
                completion callback invoked when it ends.
        """
        self.target_port = target_port
        self.host = host
        self.target_host = target_host
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._track_in_flight = track_in_flight

        self._runner: web.AppRunner | None = None
        self._client: httpx.AsyncClient | None = None
        self._port: int | None = None

        self._request_hooks: list[Callable[[HttpRequest], None]] = []

        # Active WebSocket relays, keyed by a proxy-local id
        self._ws_relays: dict[int, UpstreamWebSocket] = {}
        self._next_ws_id = 0

    @property
    def port(self) -> int | None:
        """Port the proxy is bound to, once started."""
        return self._port

    @property
    def target_address(self) -> str:
        return f"{self.target_host}:{self.target_port}"

    @property
    def active_websockets(self) -> int:
        return len(self._ws_relays)

    def add_request_hook(self, hook: Callable[[HttpRequest], None]) -> None:
        """Add a hook called once per completed or failed HTTP exchange."""
        self._request_hooks.append(hook)

    def _create_http_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            connect=self._connect_timeout,
            read=self._read_timeout,
            write=None,
            pool=None,
        )
        # Redirects are relayed to the caller, never followed.
        client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
            trust_env=False,
        )
        # Only the caller's headers are forwarded.
        client.headers.clear()
        return client

    async def start(self, preferred_port: int | None = None) -> int:
        """Start listening.

        Args:
            preferred_port: Port to try first. When it is unusable an
                OS-assigned ephemeral port is used instead.

        Returns:
            The bound port.
        """
        self._client = self._create_http_client()

        app = web.Application()
        app.router.add_route("*", "/{path:.*}", self._handle_request)

        self._runner = web.AppRunner(app, access_log=None, handle_signals=False)
        await self._runner.setup()

        if preferred_port is not None and 1 <= preferred_port <= 65535:
            site = web.TCPSite(self._runner, self.host, preferred_port)
            try:
                await site.start()
                self._port = preferred_port
            except OSError as e:
                logger.info(
                    "Preferred proxy port unavailable",
                    port=preferred_port,
                    error=str(e),
                )
                with contextlib.suppress(Exception):
                    await site.stop()

        if self._port is None:
            site = web.TCPSite(self._runner, self.host, 0)
            await site.start()
            self._port = self._runner.addresses[0][1]

        logger.info(
            "Proxy started",
            host=self.host,
            port=self._port,
            target=self.target_address,
        )
        return self._port

    async def stop(self) -> None:
        """Stop listening and release the upstream client.

        In-flight exchanges are not aborted; they fail on their own once
        their connections close.
        """
        for relay in list(self._ws_relays.values()):
            self._discard_relay(relay)

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self._client:
            await self._client.aclose()
            self._client = None

        logger.info("Proxy stopped", port=self._port)

    def _emit(
        self,
        request: web.Request,
        status_code: int,
        status_text: str,
        started: float,
    ) -> HttpRequest:
        duration = time.perf_counter() - started
        record = HttpRequest(
            method=request.method,
            path=request.path,
            status_code=status_code,
            status_text=status_text,
            duration_ms=duration * 1000,
        )
        REQUEST_DURATION.observe(duration)
        HTTP_REQUESTS.labels(method=request.method, status=bucket_status(status_code)).inc()
        for hook in self._request_hooks:
            try:
                hook(record)
            except Exception as e:
                logger.warning("Request hook error", error=str(e))
        return record

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        if is_websocket_upgrade(request.headers):
            return await self._handle_websocket(request)

        started = time.perf_counter()
        done = self._track_in_flight() if self._track_in_flight else None
        OPEN_CONNECTIONS.inc()
        try:
            return await self._forward_http(request, started)
        finally:
            OPEN_CONNECTIONS.dec()
            if done:
                done()

    async def _forward_http(self, request: web.Request, started: float) -> web.StreamResponse:
        """Forward one HTTP request and stream the response back."""
        if self._client is None:
            raise RuntimeError("Proxy is not started")

        url = f"http://{self.target_address}{request.raw_path}"
        headers = build_forward_headers(request.headers, self.target_address, request.remote)
        content = request.content.iter_chunked(CHUNK_SIZE) if request.body_exists else None

        try:
            # aiohttp decodes header bytes as UTF-8; httpx would re-encode as ASCII.
            upstream_request = self._client.build_request(
                request.method,
                url,
                headers=[
                    (k.encode("latin-1"), v.encode("utf-8", "surrogateescape"))
                    for k, v in headers.items()
                ],
                content=content,
            )
            upstream = await self._client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            logger.warning(
                "Local service request failed",
                method=request.method,
                path=request.path,
                target=self.target_address,
                error=str(e) or type(e).__name__,
            )
            self._emit(request, 502, "Bad Gateway", started)
            return web.Response(status=502, text=BAD_GATEWAY_BODY, content_type="text/plain")
        except Exception as e:
            logger.warning(
                "Request forwarding failed",
                method=request.method,
                path=request.path,
                error=str(e) or type(e).__name__,
                exc_info=True,
            )
            self._emit(request, 502, "Bad Gateway", started)
            return web.Response(status=502, text=BAD_GATEWAY_BODY, content_type="text/plain")

        try:
            record = self._emit(request, upstream.status_code, upstream.reason_phrase, started)
            logger.info(
                "Proxied request",
                method=record.method,
                path=record.path,
                status=record.status_code,
                duration_ms=round(record.duration_ms, 2),
            )

            response = web.StreamResponse(
                status=upstream.status_code,
                reason=upstream.reason_phrase or None,
                headers=build_response_headers(upstream.headers.multi_items()),
            )
            await response.prepare(request)

            try:
                async for chunk in upstream.aiter_bytes(CHUNK_SIZE):
                    await response.write(chunk)
                await response.write_eof()
            except httpx.HTTPError as e:
                # Headers are already sent; the caller must see a truncated body.
                logger.warning(
                    "Response stream interrupted",
                    path=request.path,
                    error=str(e) or type(e).__name__,
                )
                if request.transport is not None:
                    request.transport.close()
            except ConnectionResetError:
                logger.debug("Caller disconnected mid-response", path=request.path)
            return response
        finally:
            await upstream.aclose()

    def _allocate_ws_id(self) -> int:
        self._next_ws_id += 1
        return self._next_ws_id

    def _discard_relay(self, relay: UpstreamWebSocket) -> None:
        relay.close()
        if self._ws_relays.pop(relay.id, None) is not None:
            ACTIVE_WEBSOCKETS.dec()

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Upgrade the caller, then relay messages to a new upstream connection."""
        headers = build_websocket_headers(request.headers)
        subprotocols = requested_subprotocols(request.headers)

        ws = web.WebSocketResponse(protocols=subprotocols)
        await ws.prepare(request)

        relay = UpstreamWebSocket(self._allocate_ws_id())
        self._ws_relays[relay.id] = relay
        ACTIVE_WEBSOCKETS.inc()

        url = f"ws://{self.target_address}{request.raw_path}"
        logger.info("WebSocket connected", relay_id=relay.id, path=request.path)

        upstream_task = asyncio.create_task(
            self._run_upstream(relay, ws, url, headers, subprotocols)
        )

        close_code: int | None = None
        close_reason = ""
        try:
            while True:
                msg = await ws.receive()
                if msg.type == WSMsgType.TEXT:
                    WEBSOCKET_MESSAGES.labels(direction="in", type="text").inc()
                    await relay.send(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    WEBSOCKET_MESSAGES.labels(direction="in", type="binary").inc()
                    await relay.send(msg.data)
                elif msg.type == WSMsgType.CLOSE:
                    close_code = msg.data
                    close_reason = msg.extra or ""
                    break
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        "Downstream WebSocket error",
                        relay_id=relay.id,
                        error=str(ws.exception()),
                    )
                    break
                elif msg.type in (WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break
        except websockets.ConnectionClosed:
            # Upstream went away mid-send; the upstream task closes the caller.
            pass
        finally:
            upstream = relay.upstream
            self._discard_relay(relay)
            if upstream is not None:
                with contextlib.suppress(Exception):
                    await upstream.close(
                        code=_sendable_close_code(close_code or ws.close_code),
                        reason=close_reason,
                    )
            # Let an upstream-initiated close finish before tearing down.
            await asyncio.wait({upstream_task}, timeout=WS_CLOSE_GRACE)
            upstream_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await upstream_task
            if not ws.closed:
                await ws.close()
            logger.info("WebSocket closed", relay_id=relay.id, code=close_code or ws.close_code)

        return ws

    async def _run_upstream(
        self,
        relay: UpstreamWebSocket,
        ws: web.WebSocketResponse,
        url: str,
        headers: list[tuple[str, str]],
        subprotocols: list[str],
    ) -> None:
        """Open the upstream connection and relay its messages to the caller."""
        try:
            upstream = await websockets.connect(
                url,
                additional_headers=headers,
                subprotocols=subprotocols or None,
                user_agent_header=None,
                open_timeout=self._connect_timeout,
                max_size=None,
            )
        except Exception as e:
            logger.warning(
                "Upstream WebSocket connect failed",
                relay_id=relay.id,
                url=url,
                error=str(e) or type(e).__name__,
            )
            self._discard_relay(relay)
            await ws.close(code=WS_CLOSE_INTERNAL_ERROR, message=b"Upstream connection failed")
            return

        if relay.closed:
            await upstream.close()
            return

        try:
            await relay.attach(upstream)
            async for message in upstream:
                if isinstance(message, str):
                    WEBSOCKET_MESSAGES.labels(direction="out", type="text").inc()
                    await ws.send_str(message)
                else:
                    WEBSOCKET_MESSAGES.labels(direction="out", type="binary").inc()
                    await ws.send_bytes(message)
        except websockets.ConnectionClosed as e:
            if e.rcvd is None:
                logger.warning("Upstream WebSocket dropped", relay_id=relay.id, error=str(e))
                self._discard_relay(relay)
                await ws.close(code=WS_CLOSE_INTERNAL_ERROR, message=b"Upstream connection lost")
                return
        except ConnectionResetError:
            # Caller went away; the downstream loop finalizes the relay.
            return
        except Exception as e:
            logger.error("Upstream WebSocket error", relay_id=relay.id, error=str(e))
            self._discard_relay(relay)
            with contextlib.suppress(Exception):
                await upstream.close()
            await ws.close(code=WS_CLOSE_INTERNAL_ERROR, message=b"Upstream error")
            return

        self._discard_relay(relay)
        code = _sendable_close_code(upstream.close_code)
        reason = upstream.close_reason or ""
        await ws.close(code=code, message=reason.encode("utf-8"))
