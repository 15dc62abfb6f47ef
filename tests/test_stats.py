"""Tests for the request statistics tracker."""

from __future__ import annotations

from pgrok.observability.stats import ConnectionStats, StatsTracker


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestStatsTracker:
    """Test StatsTracker."""

    def test_empty_snapshot(self) -> None:
        """Test an unused tracker reports zeros."""
        snapshot = StatsTracker().snapshot()
        assert snapshot == ConnectionStats()

    def test_percentiles(self) -> None:
        """Test p50 and p90 use floor(n * fraction) indexing."""
        tracker = StatsTracker(clock=FakeClock())
        for duration in (50, 10, 40, 20, 30):
            tracker.record_request(duration)

        snapshot = tracker.snapshot()
        assert snapshot.p50_ms == 30
        assert snapshot.p90_ms == 50

    def test_percentiles_rounded(self) -> None:
        """Test percentiles are rounded to two decimal places."""
        tracker = StatsTracker(clock=FakeClock())
        tracker.record_request(12.34567)
        assert tracker.snapshot().p50_ms == 12.35

    def test_rates(self) -> None:
        """Test one-minute and five-minute rates."""
        clock = FakeClock()
        tracker = StatsTracker(clock=clock)
        for _ in range(6):
            tracker.record_request(1)
        clock.advance(120)
        for _ in range(3):
            tracker.record_request(1)

        snapshot = tracker.snapshot()
        assert snapshot.rate_1m == 3 / 60
        assert snapshot.rate_5m == 9 / 300

    def test_window_pruned_after_five_minutes(self) -> None:
        """Test entries older than five minutes leave the window."""
        clock = FakeClock()
        tracker = StatsTracker(clock=clock)
        tracker.record_request(500)
        clock.advance(301)
        tracker.record_request(10)

        snapshot = tracker.snapshot()
        assert snapshot.rate_5m == 1 / 300
        assert snapshot.p50_ms == 10
        assert snapshot.p90_ms == 10

    def test_rates_decay_without_requests(self) -> None:
        """Test rates drop to zero once the window has passed."""
        clock = FakeClock()
        tracker = StatsTracker(clock=clock)
        tracker.record_request(5)
        clock.advance(61)
        assert tracker.snapshot().rate_1m == 0
        clock.advance(300)
        snapshot = tracker.snapshot()
        assert snapshot.rate_5m == 0
        assert snapshot.p50_ms == 0

    def test_total_is_monotonic(self) -> None:
        """Test total counts every call and survives pruning."""
        clock = FakeClock()
        tracker = StatsTracker(clock=clock)
        for i in range(10):
            tracker.record_request(i)
            assert tracker.snapshot().total_requests == i + 1
        clock.advance(1000)
        assert tracker.snapshot().total_requests == 10

    def test_in_flight(self) -> None:
        """Test in-flight counter increments and decrements."""
        tracker = StatsTracker()
        done_a = tracker.mark_in_flight()
        done_b = tracker.mark_in_flight()
        assert tracker.snapshot().open_connections == 2

        done_a()
        assert tracker.open_connections == 1
        done_b()
        assert tracker.open_connections == 0

    def test_double_completion_never_negative(self) -> None:
        """Test calling a completion callback twice floors at zero."""
        tracker = StatsTracker()
        done = tracker.mark_in_flight()
        done()
        done()
        assert tracker.snapshot().open_connections == 0

    def test_to_dict(self) -> None:
        """Test snapshot serialization."""
        tracker = StatsTracker(clock=FakeClock())
        tracker.record_request(10)
        data = tracker.snapshot().to_dict()
        assert data["total_requests"] == 1
        assert data["p50_ms"] == 10
