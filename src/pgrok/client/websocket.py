"""Per-connection state for relaying a WebSocket to the local service.

The downstream socket is upgraded before the upstream connection exists, so
messages from the caller may arrive early. They are queued and flushed in
arrival order once the upstream opens; afterwards messages pass straight through.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Any

Message = str | bytes


class RelayState(Enum):
    """Upstream readiness."""

    PENDING = "pending"
    FLUSHING = "flushing"
    PASSTHROUGH = "passthrough"
    CLOSED = "closed"


class UpstreamWebSocket:
    """Queue-until-ready wrapper around the upstream connection."""

    def __init__(self, relay_id: int) -> None:
        self.id = relay_id
        self.upstream: Any | None = None
        self.state = RelayState.PENDING
        self._queue: deque[Message] = deque()

    @property
    def ready(self) -> bool:
        return self.state is RelayState.PASSTHROUGH

    @property
    def closed(self) -> bool:
        return self.state is RelayState.CLOSED

    @property
    def queued(self) -> int:
        return len(self._queue)

    async def send(self, message: Message) -> None:
        """Send a downstream message upstream, or queue it until the upstream is ready."""
        if self.state is RelayState.CLOSED:
            return
        if self.state is not RelayState.PASSTHROUGH:
            self._queue.append(message)
            return
        await self.upstream.send(message)

    async def attach(self, upstream: Any) -> None:
        """Bind the opened upstream connection and flush queued messages.

        Messages queued while flushing are sent in the same pass, so nothing
        sent after the upstream opened can overtake an earlier message.
        """
        if self.state is RelayState.CLOSED:
            return
        self.upstream = upstream
        self.state = RelayState.FLUSHING
        while self._queue:
            await upstream.send(self._queue.popleft())
            if self.state is RelayState.CLOSED:
                return
        self.state = RelayState.PASSTHROUGH

    def close(self) -> None:
        """Mark the relay finished and drop anything still queued."""
        self.state = RelayState.CLOSED
        self._queue.clear()
