"""Rolling-window request statistics for the connections panel."""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

WINDOW_SECONDS = 300.0
SHORT_WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class ConnectionStats:
    """A point-in-time view of request statistics."""

    total_requests: int = 0
    open_connections: int = 0
    rate_1m: float = 0.0  # requests per second over the last minute
    rate_5m: float = 0.0  # requests per second over the last five minutes
    p50_ms: float = 0.0
    p90_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert snapshot to JSON-serializable dict."""
        return {
            "total_requests": self.total_requests,
            "open_connections": self.open_connections,
            "rate_1m": round(self.rate_1m, 2),
            "rate_5m": round(self.rate_5m, 2),
            "p50_ms": self.p50_ms,
            "p90_ms": self.p90_ms,
        }


@dataclass(frozen=True)
class _Timing:
    timestamp: float
    duration_ms: float


class StatsTracker:
    """Records request durations and in-flight requests.

    Durations are kept for five minutes and pruned on every read and write, so
    the window is bounded by time rather than by count. Percentiles are
    computed by sorting the window on demand.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._timings: deque[_Timing] = deque()
        self._in_flight = 0
        self._total = 0

    @property
    def total_requests(self) -> int:
        return self._total

    @property
    def open_connections(self) -> int:
        return self._in_flight

    def record_request(self, duration_ms: float) -> None:
        """Record a completed request with its duration."""
        self._total += 1
        self._timings.append(_Timing(self._clock(), duration_ms))
        self._prune()

    def mark_in_flight(self) -> Callable[[], None]:
        """Mark a request as in-flight.

        Returns:
            Callback to invoke when the request completes. Extra calls never
            drive the counter below zero.
        """
        self._in_flight += 1

        def done() -> None:
            self._in_flight = max(0, self._in_flight - 1)

        return done

    def snapshot(self) -> ConnectionStats:
        """Compute current statistics."""
        self._prune()
        now = self._clock()
        recent = sum(1 for t in self._timings if t.timestamp > now - SHORT_WINDOW_SECONDS)
        durations = sorted(t.duration_ms for t in self._timings)

        return ConnectionStats(
            total_requests=self._total,
            open_connections=self._in_flight,
            rate_1m=recent / SHORT_WINDOW_SECONDS,
            rate_5m=len(durations) / WINDOW_SECONDS,
            p50_ms=_percentile(durations, 0.5),
            p90_ms=_percentile(durations, 0.9),
        )

    def _prune(self) -> None:
        cutoff = self._clock() - WINDOW_SECONDS
        # Entries are appended in clock order, so expired ones sit at the front.
        while self._timings and self._timings[0].timestamp <= cutoff:
            self._timings.popleft()


def _percentile(sorted_values: list[float], fraction: float) -> float:
    if not sorted_values:
        return 0.0
    return round(sorted_values[math.floor(len(sorted_values) * fraction)], 2)
