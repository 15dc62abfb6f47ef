from __future__ import annotations

from rich.padding import Padding
from rich.table import Table

from pgrok.observability.stats import ConnectionStats

LABEL_WIDTH = 26
COLUMN_WIDTH = 8
COLUMNS = ("ttl", "opn", "rt1", "rt5", "p50", "p90")


def stats_values(stats: ConnectionStats) -> list[str]:
    """Connection statistics formatted in column order."""
    return [
        str(stats.total_requests),
        str(stats.open_connections),
        f"{stats.rate_1m:.2f}",
        f"{stats.rate_5m:.2f}",
        f"{stats.p50_ms:.2f}",
        f"{stats.p90_ms:.2f}",
    ]


def render_connections(stats: ConnectionStats) -> Padding:
    grid = Table.grid()
    grid.add_column(width=LABEL_WIDTH, style="grey53", no_wrap=True)
    for _ in COLUMNS:
        grid.add_column(width=COLUMN_WIDTH, no_wrap=True)

    grid.add_row("Connections", *COLUMNS, style="grey53")
    grid.add_row("", *stats_values(stats), style="white")
    return Padding(grid, (0, 2, 1, 2))
