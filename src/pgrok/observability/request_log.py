"""Bounded in-memory log of proxied HTTP requests."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

from pgrok.client.models import HttpRequest

DEFAULT_MAX_ENTRIES = 500


@dataclass(frozen=True)
class LoggedRequest:
    """A request record with its log-local identifier."""

    id: int
    request: HttpRequest


class RequestLog:
    """Keeps the most recent requests; the oldest are dropped beyond ``max_entries``."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._entries: deque[LoggedRequest] = deque(maxlen=max_entries)
        self._next_id = 0

    def add(self, request: HttpRequest) -> LoggedRequest:
        self._next_id += 1
        entry = LoggedRequest(id=self._next_id, request=request)
        self._entries.append(entry)
        return entry

    def recent(self, limit: int | None = None) -> list[LoggedRequest]:
        """Return entries oldest first, optionally only the last ``limit``."""
        entries = list(self._entries)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LoggedRequest]:
        return iter(list(self._entries))
