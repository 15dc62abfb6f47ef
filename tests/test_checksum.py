"""Tests for the POSIX cksum implementation and remote port derivation."""

from __future__ import annotations

import pytest

from pgrok.core.checksum import (
    REMOTE_PORT_BASE,
    REMOTE_PORT_SPAN,
    compute_remote_port,
    posix_cksum,
)

# Reference values from `printf '%s' <input> | cksum`
CKSUM_VECTORS = [
    ("", 4294967295),
    ("a", 1220704766),
    ("myapp", 3057370603),
    ("api", 2083206273),
    ("pgrok", 3081955989),
    ("hello world", 1135714720),
    ("123456789", 930766865),
    ("my-app-2", 1976555900),
]


class TestPosixCksum:
    """Test posix_cksum against the cksum utility."""

    @pytest.mark.parametrize("text,expected", CKSUM_VECTORS)
    def test_matches_reference(self, text: str, expected: int) -> None:
        """Test known cksum outputs."""
        assert posix_cksum(text) == expected

    def test_bytes_and_str_agree(self) -> None:
        """Test str input is hashed as its UTF-8 bytes."""
        assert posix_cksum("pgrok") == posix_cksum(b"pgrok")

    def test_result_is_32_bit(self) -> None:
        """Test results fit in an unsigned 32-bit integer."""
        for text in ("x" * 300, "z" * 70000):
            assert 0 <= posix_cksum(text) <= 0xFFFFFFFF

    def test_length_is_part_of_checksum(self) -> None:
        """Test inputs differing only by trailing NULs hash differently."""
        assert posix_cksum(b"a") != posix_cksum(b"a\x00")


class TestComputeRemotePort:
    """Test remote port derivation."""

    def test_known_ports(self) -> None:
        """Test ports for known subdomains."""
        assert compute_remote_port("myapp") == 30603
        assert compute_remote_port("api") == 16273
        assert compute_remote_port("") == 27295

    def test_port_in_range(self) -> None:
        """Test every derived port is within the relay's forwarding range."""
        for name in ("a", "myapp", "api", "pgrok", "x" * 63, "a-b-c-1-2-3"):
            port = compute_remote_port(name)
            assert REMOTE_PORT_BASE <= port < REMOTE_PORT_BASE + REMOTE_PORT_SPAN

    def test_deterministic(self) -> None:
        """Test the same subdomain always maps to the same port."""
        assert compute_remote_port("demo") == compute_remote_port("demo")

    def test_formula(self) -> None:
        """Test port is base plus checksum modulo span."""
        assert compute_remote_port("pgrok") == 10000 + 3081955989 % 50000
