"""POSIX ``cksum`` CRC and remote port derivation.

The relay side derives the forwarded port with ``printf '%s' <sub> | cksum``, so
the CRC here must match that utility bit for bit: MSB-first CRC-32 with polynomial
0x04C11DB7, seed 0, the byte length appended least-significant byte first, and the
result complemented.
"""

from __future__ import annotations

POLYNOMIAL = 0x04C11DB7
MASK = 0xFFFFFFFF

REMOTE_PORT_BASE = 10000
REMOTE_PORT_SPAN = 50000


def _build_table() -> tuple[int, ...]:
    table = []
    for i in range(256):
        crc = i << 24
        for _ in range(8):
            if crc & 0x80000000:
                crc = ((crc << 1) ^ POLYNOMIAL) & MASK
            else:
                crc = (crc << 1) & MASK
        table.append(crc)
    return tuple(table)


CRC_TABLE = _build_table()


def _update(crc: int, byte: int) -> int:
    return ((crc << 8) ^ CRC_TABLE[((crc >> 24) ^ byte) & 0xFF]) & MASK


def posix_cksum(data: str | bytes) -> int:
    """Compute the POSIX ``cksum`` checksum.

    Args:
        data: Input text (encoded as UTF-8) or raw bytes. No trailing newline
            is added.

    Returns:
        The unsigned 32-bit checksum ``cksum`` prints for the same bytes.
    """
    payload = data.encode("utf-8") if isinstance(data, str) else data

    crc = 0
    for byte in payload:
        crc = _update(crc, byte)

    length = len(payload)
    while length > 0:
        crc = _update(crc, length & 0xFF)
        length >>= 8

    return ~crc & MASK


def compute_remote_port(subdomain: str) -> int:
    """Derive the relay-side port for a subdomain.

    Distinct subdomains may collide; the relay accepts whichever session binds
    the port last.
    """
    return REMOTE_PORT_BASE + posix_cksum(subdomain) % REMOTE_PORT_SPAN
