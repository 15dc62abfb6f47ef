"""Tests for the queue-until-ready WebSocket relay."""

from __future__ import annotations

import pytest

from pgrok.client.websocket import RelayState, UpstreamWebSocket


class FakeUpstream:
    def __init__(self) -> None:
        self.sent: list[str | bytes] = []

    async def send(self, message: str | bytes) -> None:
        self.sent.append(message)


class TestUpstreamWebSocket:
    """Test UpstreamWebSocket ordering."""

    @pytest.mark.asyncio
    async def test_queues_until_attached(self) -> None:
        """Test messages before open are held, then flushed in order."""
        relay = UpstreamWebSocket(1)
        await relay.send("first")
        await relay.send(b"second")
        assert relay.state is RelayState.PENDING
        assert relay.queued == 2

        upstream = FakeUpstream()
        await relay.attach(upstream)
        await relay.send("third")

        assert upstream.sent == ["first", b"second", "third"]
        assert relay.ready
        assert relay.queued == 0

    @pytest.mark.asyncio
    async def test_messages_during_flush_keep_order(self) -> None:
        """Test a message arriving mid-flush is sent after queued ones."""
        relay = UpstreamWebSocket(1)
        await relay.send("a")
        await relay.send("b")

        class SlowUpstream(FakeUpstream):
            async def send(self, message: str | bytes) -> None:
                if message == "a":
                    await relay.send("c")
                await super().send(message)

        upstream = SlowUpstream()
        await relay.attach(upstream)
        assert upstream.sent == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_closed_relay_drops_messages(self) -> None:
        """Test sends after close are ignored and attach is a no-op."""
        relay = UpstreamWebSocket(7)
        await relay.send("x")
        relay.close()
        await relay.send("y")
        upstream = FakeUpstream()
        await relay.attach(upstream)

        assert relay.closed
        assert relay.queued == 0
        assert upstream.sent == []
        assert relay.upstream is None
