"""Request statistics, request log, metrics and log capture."""

from pgrok.observability.logging import LogBuffer, configure_logging
from pgrok.observability.stats import ConnectionStats, StatsTracker

__all__ = [
    "ConnectionStats",
    "StatsTracker",
    "LogBuffer",
    "configure_logging",
]
