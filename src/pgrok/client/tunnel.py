"""SSH control channel.

The relay-side controller reports progress as free-form text lines on the SSH
session's output. :func:`parse_tunnel_message` folds those lines into a
:class:`TunnelState`; :class:`TunnelProcess` owns the ssh subprocess and feeds
its output through the parser.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from collections.abc import Callable, Sequence

import structlog

from pgrok.client.models import CertStatus, TunnelState, TunnelStatus
from pgrok.core.config import ClientConfig, SessionSettings
from pgrok.core.exceptions import TunnelProcessError
from pgrok.core.lines import LineSplitter

logger = structlog.get_logger()

ACTIVE_MARKER = "pgrok tunnel active:"
PROVISIONING_PREFIX = "Provisioning TLS certificate"
CERT_READY_LINE = "TLS certificate ready."
CERT_WARNING_PREFIX = "Warning: TLS certificate not yet ready"
ERROR_PREFIX = "Error:"
READ_SIZE = 4096


def parse_tunnel_message(line: str, state: TunnelState) -> TunnelState:
    """Apply one controller output line to the tunnel state.

    The first matching rule wins; unrecognised lines leave the state unchanged.

    Args:
        line: One trimmed line of controller output.
        state: Current state.

    Returns:
        The new state (``state`` itself when nothing matched).
    """
    if line.startswith(PROVISIONING_PREFIX):
        return dataclasses.replace(
            state, status=TunnelStatus.PROVISIONING_TLS, cert_status=CertStatus.PENDING
        )
    if line == CERT_READY_LINE:
        return dataclasses.replace(state, cert_status=CertStatus.READY)
    if line.startswith(CERT_WARNING_PREFIX):
        return dataclasses.replace(state, cert_status=CertStatus.WARNING)
    if line.startswith(ACTIVE_MARKER):
        url = line[len(ACTIVE_MARKER):].strip()
        return dataclasses.replace(state, status=TunnelStatus.ONLINE, url=url)
    if line.startswith(ERROR_PREFIX):
        return dataclasses.replace(state, status=TunnelStatus.ERROR, error=line)
    return state


def format_exit_message(code: int | None) -> str:
    """Error text shown when the control channel exits."""
    return f"SSH connection lost (exit code {code})"


def apply_exit(state: TunnelState, code: int | None) -> TunnelState:
    """Terminal transition for control-channel exit."""
    return dataclasses.replace(state, status=TunnelStatus.ERROR, error=format_exit_message(code))


def build_ssh_command(
    config: ClientConfig,
    settings: SessionSettings,
    subdomain: str,
    remote_port: int,
    proxy_port: int,
) -> list[str]:
    """Build the ssh argv for a session.

    The reverse forward binds ``remote_port`` on the relay's loopback and
    sends its traffic to the local proxy. The remote command announces the
    subdomain and port to the relay-side controller.
    """
    command = [
        settings.ssh_binary,
        "-T",
        "-o", f"ServerAliveInterval={settings.keepalive_interval}",
        "-o", f"ServerAliveCountMax={settings.keepalive_count_max}",
        "-o", f"ConnectTimeout={settings.connect_timeout}",
        "-o", f"LogLevel={settings.ssh_log_level}",
    ]  # fmt: skip
    if config.ssh_key is not None:
        command += ["-i", str(config.ssh_key)]
    command += [
        "-R", f"{remote_port}:localhost:{proxy_port}",
        f"{config.user}@{config.host}",
        f"{settings.unbuffered_env}=1 {settings.remote_command} {subdomain} {remote_port}",
    ]  # fmt: skip
    return command


class TunnelProcess:
    """Supervises the ssh control-channel subprocess.

    Output from stdout and stderr is split into trimmed, non-empty lines and
    delivered to line hooks in arrival order per stream. Exit hooks fire once,
    after both streams are drained.
    """

    def __init__(self, command: Sequence[str], terminate_timeout: float = 5.0) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.terminate_timeout = terminate_timeout

        self._process: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task] = []
        self._monitor: asyncio.Task | None = None
        self._exit_code: int | None = None
        self._exited = asyncio.Event()

        self._line_hooks: list[Callable[[str], None]] = []
        self._exit_hooks: list[Callable[[int | None], None]] = []

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and not self._exited.is_set()

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    def add_line_hook(self, hook: Callable[[str], None]) -> None:
        """Add a hook called for each output line."""
        self._line_hooks.append(hook)

    def add_exit_hook(self, hook: Callable[[int | None], None]) -> None:
        """Add a hook called once with the exit code."""
        self._exit_hooks.append(hook)

    async def start(self) -> None:
        """Spawn the subprocess and start reading its output.

        Raises:
            TunnelProcessError: If the executable cannot be started.
        """
        if self._process is not None:
            raise RuntimeError("Tunnel process already started")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TunnelProcessError(f"Failed to start {self.command[0]}: {e}") from e

        logger.info("Tunnel process started", pid=self._process.pid, command=self.command[0])

        self._readers = [
            asyncio.create_task(self._read_stream(self._process.stdout, "stdout")),
            asyncio.create_task(self._read_stream(self._process.stderr, "stderr")),
        ]
        self._monitor = asyncio.create_task(self._watch(self._process))

    async def _read_stream(self, stream: asyncio.StreamReader | None, name: str) -> None:
        if stream is None:
            return
        splitter = LineSplitter()
        while True:
            chunk = await stream.read(READ_SIZE)
            if not chunk:
                break
            for line in splitter.feed(chunk):
                self._dispatch_line(line)
        for line in splitter.flush():
            self._dispatch_line(line)
        logger.debug("Tunnel stream closed", stream=name)

    def _dispatch_line(self, line: str) -> None:
        for hook in self._line_hooks:
            try:
                hook(line)
            except Exception as e:
                logger.warning("Line hook error", error=str(e))

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.gather(*self._readers, return_exceptions=True)
        code = await process.wait()
        self._exit_code = code
        self._exited.set()
        logger.info("Tunnel process exited", code=code)
        for hook in self._exit_hooks:
            try:
                hook(code)
            except Exception as e:
                logger.warning("Exit hook error", error=str(e))

    async def wait(self) -> int | None:
        """Wait until the process has exited and its output is drained."""
        await self._exited.wait()
        return self._exit_code

    async def terminate(self) -> None:
        """Ask the process to stop, killing it after ``terminate_timeout``."""
        process = self._process
        if process is None or self._exited.is_set():
            return

        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
            except TimeoutError:
                logger.warning("Tunnel process did not exit, killing", pid=process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if self._monitor is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor
