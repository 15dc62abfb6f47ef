"""Tests for the control-channel parser, line splitting and process supervision."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from pgrok.client.models import CertStatus, TunnelState, TunnelStatus
from pgrok.client.tunnel import (
    TunnelProcess,
    apply_exit,
    build_ssh_command,
    format_exit_message,
    parse_tunnel_message,
)
from pgrok.core.config import ClientConfig, SessionSettings
from pgrok.core.exceptions import TunnelProcessError
from pgrok.core.lines import LineSplitter


class TestParseTunnelMessage:
    """Test the line-driven state machine."""

    def test_initial_state(self) -> None:
        """Test a new state is connecting with a pending certificate."""
        state = TunnelState()
        assert state.status is TunnelStatus.CONNECTING
        assert state.cert_status is CertStatus.PENDING
        assert state.url is None
        assert state.error is None

    def test_provisioning(self) -> None:
        """Test provisioning line."""
        state = parse_tunnel_message("Provisioning TLS certificate for myapp...", TunnelState())
        assert state.status is TunnelStatus.PROVISIONING_TLS
        assert state.cert_status is CertStatus.PENDING

    def test_cert_ready_keeps_status(self) -> None:
        """Test certificate ready only changes cert status."""
        start = TunnelState(status=TunnelStatus.PROVISIONING_TLS)
        state = parse_tunnel_message("TLS certificate ready.", start)
        assert state.cert_status is CertStatus.READY
        assert state.status is TunnelStatus.PROVISIONING_TLS

    def test_cert_ready_requires_exact_line(self) -> None:
        """Test certificate ready is matched exactly."""
        start = TunnelState()
        assert parse_tunnel_message("TLS certificate ready. maybe", start) is start

    def test_cert_warning(self) -> None:
        """Test certificate warning line."""
        state = parse_tunnel_message(
            "Warning: TLS certificate not yet ready, continuing", TunnelState()
        )
        assert state.cert_status is CertStatus.WARNING
        assert state.status is TunnelStatus.CONNECTING

    def test_active(self) -> None:
        """Test active line sets online and the URL."""
        state = parse_tunnel_message("pgrok tunnel active: https://x.example.com", TunnelState())
        assert state.status is TunnelStatus.ONLINE
        assert state.url == "https://x.example.com"

    def test_active_url_trimmed(self) -> None:
        """Test surrounding whitespace is removed from the URL."""
        state = parse_tunnel_message("pgrok tunnel active:   https://a.b.c  ", TunnelState())
        assert state.url == "https://a.b.c"

    def test_error(self) -> None:
        """Test error line sets status and keeps the full line."""
        line = "Error: Subdomain 'myapp' is already in use."
        state = parse_tunnel_message(line, TunnelState(status=TunnelStatus.ONLINE))
        assert state.status is TunnelStatus.ERROR
        assert state.error == line

    @pytest.mark.parametrize(
        "line",
        [
            "Connecting to relay",
            "random noise",
            "  Error: indented lines are not errors",
            "TLS certificate ready",
            "warning: lowercase",
        ],
    )
    def test_unrecognised_line_is_identity(self, line: str) -> None:
        """Test unknown lines return the state unchanged."""
        start = TunnelState(status=TunnelStatus.ONLINE, url="https://a.example.com")
        assert parse_tunnel_message(line, start) is start

    def test_does_not_mutate_input(self) -> None:
        """Test transitions produce a new value."""
        start = TunnelState()
        parse_tunnel_message("pgrok tunnel active: https://x", start)
        assert start.status is TunnelStatus.CONNECTING

    def test_full_sequence(self) -> None:
        """Test a typical startup sequence."""
        state = TunnelState()
        for line in (
            "Provisioning TLS certificate for demo.example.com...",
            "TLS certificate ready.",
            "pgrok tunnel active: https://demo.example.com",
        ):
            state = parse_tunnel_message(line, state)
        assert state == TunnelState(
            status=TunnelStatus.ONLINE,
            url="https://demo.example.com",
            cert_status=CertStatus.READY,
        )

    def test_exit(self) -> None:
        """Test exit transition."""
        state = apply_exit(TunnelState(status=TunnelStatus.ONLINE, url="https://x"), 255)
        assert state.status is TunnelStatus.ERROR
        assert state.error == "SSH connection lost (exit code 255)"
        assert state.url == "https://x"
        assert format_exit_message(0) == "SSH connection lost (exit code 0)"


class TestLineSplitter:
    """Test LineSplitter."""

    def test_newlines(self) -> None:
        """Test splitting on newline."""
        splitter = LineSplitter()
        assert splitter.feed(b"one\ntwo\n") == ["one", "two"]
        assert splitter.pending == ""

    def test_carriage_returns(self) -> None:
        """Test bare carriage return and CRLF terminate lines."""
        splitter = LineSplitter()
        assert splitter.feed(b"a\rb\r\nc\n") == ["a", "b", "c"]

    def test_crlf_split_across_chunks(self) -> None:
        """Test CRLF split across reads does not produce an extra line."""
        splitter = LineSplitter()
        assert splitter.feed(b"a\r") == ["a"]
        assert splitter.feed(b"\nb\n") == ["b"]

    def test_partial_line_buffered(self) -> None:
        """Test partial lines wait for a terminator."""
        splitter = LineSplitter()
        assert splitter.feed(b"pgrok tunnel ") == []
        assert splitter.pending == "pgrok tunnel "
        assert splitter.feed(b"active: https://x\n") == ["pgrok tunnel active: https://x"]

    def test_flush_trailing(self) -> None:
        """Test unterminated tail is delivered at end of stream."""
        splitter = LineSplitter()
        splitter.feed(b"done\nlast")
        assert splitter.flush() == ["last"]
        assert splitter.flush() == []

    def test_blank_lines_dropped(self) -> None:
        """Test empty and whitespace-only lines are skipped."""
        splitter = LineSplitter()
        assert splitter.feed(b"\n  \nx\n\n") == ["x"]

    def test_multibyte_split(self) -> None:
        """Test UTF-8 sequences split across chunks decode correctly."""
        splitter = LineSplitter()
        data = "héllo\n".encode()
        assert splitter.feed(data[:2]) == []
        assert splitter.feed(data[2:]) == ["héllo"]


class TestBuildSshCommand:
    """Test ssh argv construction."""

    def test_without_key(self) -> None:
        """Test argv without an identity file."""
        config = ClientConfig(host="relay.example.com", domain="example.com")
        command = build_ssh_command(config, SessionSettings(), "myapp", 30603, 14000)
        assert command == [
            "ssh",
            "-T",
            "-o", "ServerAliveInterval=30",
            "-o", "ServerAliveCountMax=3",
            "-o", "ConnectTimeout=10",
            "-o", "LogLevel=ERROR",
            "-R", "30603:localhost:14000",
            "pgrok@relay.example.com",
            "PYTHONUNBUFFERED=1 /usr/local/bin/pgrok-tunnel myapp 30603",
        ]  # fmt: skip

    def test_with_key(self, tmp_path: Path) -> None:
        """Test identity file is passed with -i before the forward."""
        key = tmp_path / "id_ed25519"
        config = ClientConfig(host="h", domain="d", user="deploy", ssh_key=key)
        command = build_ssh_command(config, SessionSettings(), "api", 16273, 13000)
        index = command.index("-i")
        assert command[index + 1] == str(key)
        assert index < command.index("-R")
        assert "deploy@h" in command


def _python_command(script: str) -> list[str]:
    return [sys.executable, "-c", script]


class TestTunnelProcess:
    """Test TunnelProcess with a stand-in child process."""

    @pytest.mark.asyncio
    async def test_lines_and_exit(self) -> None:
        """Test lines from stdout and stderr are delivered, then the exit code."""
        script = (
            "import sys\n"
            "sys.stdout.write('Provisioning TLS certificate\\n'); sys.stdout.flush()\n"
            "sys.stderr.write('Error: boom\\r'); sys.stderr.flush()\n"
            "sys.stdout.write('tail-without-newline'); sys.stdout.flush()\n"
            "sys.exit(3)\n"
        )
        process = TunnelProcess(_python_command(script))
        lines: list[str] = []
        codes: list[int | None] = []
        process.add_line_hook(lines.append)
        process.add_exit_hook(codes.append)

        await process.start()
        code = await asyncio.wait_for(process.wait(), timeout=10)

        assert code == 3
        assert codes == [3]
        assert sorted(lines) == sorted(
            ["Provisioning TLS certificate", "Error: boom", "tail-without-newline"]
        )
        assert lines.index("Provisioning TLS certificate") < lines.index("tail-without-newline")
        assert not process.running

    @pytest.mark.asyncio
    async def test_terminate(self) -> None:
        """Test terminate stops a long-running process."""
        process = TunnelProcess(
            _python_command("import time\ntime.sleep(60)"), terminate_timeout=5
        )
        codes: list[int | None] = []
        process.add_exit_hook(codes.append)
        await process.start()
        assert process.running
        assert process.pid is not None

        await asyncio.wait_for(process.terminate(), timeout=10)

        assert not process.running
        assert len(codes) == 1

    @pytest.mark.asyncio
    async def test_hook_errors_do_not_stop_reading(self) -> None:
        """Test a failing hook does not prevent other hooks from running."""
        process = TunnelProcess(_python_command("print('a'); print('b')"))
        lines: list[str] = []

        def broken(line: str) -> None:
            raise RuntimeError("hook failed")

        process.add_line_hook(broken)
        process.add_line_hook(lines.append)
        await process.start()
        await asyncio.wait_for(process.wait(), timeout=10)
        assert lines == ["a", "b"]

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path) -> None:
        """Test spawn failure raises TunnelProcessError."""
        process = TunnelProcess([str(tmp_path / "no-such-ssh")])
        with pytest.raises(TunnelProcessError):
            await process.start()

    def test_empty_command_rejected(self) -> None:
        """Test empty argv is rejected."""
        with pytest.raises(ValueError):
            TunnelProcess([])

    @pytest.mark.asyncio
    async def test_second_start_rejected(self) -> None:
        """Test a process object cannot be started twice."""
        process = TunnelProcess(_python_command("pass"))
        await process.start()
        with pytest.raises(RuntimeError):
            await process.start()
        assert await asyncio.wait_for(process.wait(), timeout=10) == 0
