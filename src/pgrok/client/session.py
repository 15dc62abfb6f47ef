"""Tunnel session orchestration.

A session wires the local proxy, the SSH control channel and the statistics
tracker together, and republishes their events to observers such as the
dashboard.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from typing import Any

import structlog
from prometheus_client import start_http_server

from pgrok.client.models import HttpRequest, TunnelState
from pgrok.client.proxy import LocalProxy
from pgrok.client.tunnel import TunnelProcess, apply_exit, build_ssh_command, parse_tunnel_message
from pgrok.core.checksum import compute_remote_port
from pgrok.core.config import ClientConfig, SessionSettings, get_settings
from pgrok.observability.request_log import LoggedRequest, RequestLog
from pgrok.observability.stats import ConnectionStats, StatsTracker

logger = structlog.get_logger()


class TunnelSession:
    """One tunnel: ``https://<subdomain>.<domain>`` to ``localhost:<local_port>``.

    The session owns the tunnel state and the statistics window; observers
    only ever receive immutable snapshots through hooks.
    """

    def __init__(
        self,
        config: ClientConfig,
        subdomain: str,
        local_port: int,
        settings: SessionSettings | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Relay connection settings.
            subdomain: Validated subdomain label.
            local_port: Validated port of the service to expose.
            settings: Runtime tunables. Defaults to :func:`get_settings`.
        """
        self.config = config
        self.subdomain = subdomain
        self.local_port = local_port
        self.settings = settings or get_settings()

        self.remote_port = compute_remote_port(subdomain)
        self.state = TunnelState()
        self.stats = StatsTracker()
        self.requests = RequestLog(self.settings.request_log_size)

        self._proxy: LocalProxy | None = None
        self._tunnel: TunnelProcess | None = None
        self._stats_task: asyncio.Task | None = None
        self._metrics_server: Any | None = None
        self._exited = False
        self._started = False

        self._state_hooks: list[Callable[[TunnelState], None]] = []
        self._stats_hooks: list[Callable[[ConnectionStats], None]] = []
        self._request_hooks: list[Callable[[LoggedRequest], None]] = []
        self._close_hooks: list[Callable[[], None]] = []

    @property
    def proxy_port(self) -> int | None:
        return self._proxy.port if self._proxy else None

    @property
    def public_url(self) -> str:
        """URL reported by the relay, or the expected one until it is."""
        return self.state.url or f"https://{self.subdomain}.{self.config.domain}"

    @property
    def tunnel(self) -> TunnelProcess | None:
        return self._tunnel

    @property
    def exited(self) -> bool:
        return self._exited

    def add_state_hook(self, hook: Callable[[TunnelState], None]) -> None:
        """Add a hook called with every published tunnel state."""
        self._state_hooks.append(hook)

    def add_stats_hook(self, hook: Callable[[ConnectionStats], None]) -> None:
        """Add a hook called with every statistics snapshot."""
        self._stats_hooks.append(hook)

    def add_request_hook(self, hook: Callable[[LoggedRequest], None]) -> None:
        """Add a hook called for each logged HTTP request."""
        self._request_hooks.append(hook)

    def add_close_hook(self, hook: Callable[[], None]) -> None:
        """Add a hook run as the last shutdown step, e.g. releasing the display."""
        self._close_hooks.append(hook)

    async def start(self) -> None:
        """Start the proxy, then the control channel, then the stats timer.

        Raises:
            TunnelProcessError: If ssh cannot be started. The proxy is stopped
                before the error propagates.
        """
        if self._started:
            raise RuntimeError("Session already started")
        self._started = True

        self._proxy = LocalProxy(
            self.local_port,
            host=self.settings.proxy_host,
            target_host=self.settings.target_host,
            connect_timeout=self.settings.upstream_connect_timeout,
            read_timeout=self.settings.upstream_read_timeout,
            track_in_flight=self.stats.mark_in_flight,
        )
        self._proxy.add_request_hook(self._on_request)
        proxy_port = await self._proxy.start(self.local_port + self.settings.proxy_port_offset)

        command = build_ssh_command(
            self.config, self.settings, self.subdomain, self.remote_port, proxy_port
        )
        self._tunnel = TunnelProcess(command, terminate_timeout=self.settings.terminate_timeout)
        self._tunnel.add_line_hook(self._on_line)
        self._tunnel.add_exit_hook(self._on_exit)
        try:
            await self._tunnel.start()
        except Exception:
            await self._proxy.stop()
            raise

        logger.info(
            "Session started",
            subdomain=self.subdomain,
            local_port=self.local_port,
            proxy_port=proxy_port,
            remote_port=self.remote_port,
            relay=self.config.host,
        )

        self._stats_task = asyncio.create_task(self._stats_loop())

        if self.settings.metrics_port is not None:
            try:
                self._metrics_server, _ = start_http_server(
                    self.settings.metrics_port, addr="127.0.0.1"
                )
                logger.info("Metrics server started", port=self.settings.metrics_port)
            except OSError as e:
                logger.warning(
                    "Metrics server failed to start",
                    port=self.settings.metrics_port,
                    error=str(e),
                )

        self._publish_state()
        self._publish_stats()

    async def _stats_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.stats_interval)
            self._publish_stats()

    def _on_request(self, request: HttpRequest) -> None:
        self.stats.record_request(request.duration_ms)
        entry = self.requests.add(request)
        for hook in self._request_hooks:
            try:
                hook(entry)
            except Exception as e:
                logger.warning("Request hook error", error=str(e))
        self._publish_stats()

    def _on_line(self, line: str) -> None:
        logger.debug("Tunnel output", line=line)
        if self._exited:
            return
        self.state = parse_tunnel_message(line, self.state)
        self._publish_state()

    def _on_exit(self, code: int | None) -> None:
        self._exited = True
        self.state = apply_exit(self.state, code)
        logger.error("Tunnel closed", code=code, subdomain=self.subdomain)
        self._publish_state()

    def _publish_state(self) -> None:
        for hook in self._state_hooks:
            try:
                hook(self.state)
            except Exception as e:
                logger.warning("State hook error", error=str(e))

    def _publish_stats(self) -> None:
        snapshot = self.stats.snapshot()
        for hook in self._stats_hooks:
            try:
                hook(snapshot)
            except Exception as e:
                logger.warning("Stats hook error", error=str(e))

    async def wait(self) -> int | None:
        """Wait for the control channel to exit."""
        if self._tunnel is None:
            return None
        return await self._tunnel.wait()

    async def stop(self) -> None:
        """Tear the session down.

        Stops the stats timer, terminates ssh, stops the proxy, then runs close
        hooks. Every step runs even if an earlier one fails.
        """
        if self._stats_task is not None:
            try:
                self._stats_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._stats_task
            except Exception as e:
                logger.error("Error stopping stats timer", error=str(e))
            self._stats_task = None

        if self._tunnel is not None:
            try:
                await self._tunnel.terminate()
            except Exception as e:
                logger.error("Error terminating tunnel process", error=str(e))

        if self._proxy is not None:
            try:
                await self._proxy.stop()
            except Exception as e:
                logger.error("Error stopping proxy", error=str(e))

        if self._metrics_server is not None:
            try:
                self._metrics_server.shutdown()
                self._metrics_server.server_close()
            except Exception as e:
                logger.error("Error stopping metrics server", error=str(e))
            self._metrics_server = None

        for hook in self._close_hooks:
            try:
                hook()
            except Exception as e:
                logger.error("Close hook error", error=str(e))

        self._state_hooks.clear()
        self._stats_hooks.clear()
        self._request_hooks.clear()
        self._close_hooks.clear()
        logger.info("Session stopped", subdomain=self.subdomain)
