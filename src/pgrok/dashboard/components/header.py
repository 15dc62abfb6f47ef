from __future__ import annotations

from rich.padding import Padding
from rich.table import Table
from rich.text import Text


def render_header() -> Padding:
    grid = Table.grid(expand=True)
    grid.add_column(justify="left")
    grid.add_column(justify="right")
    grid.add_row(Text("pgrok", style="bold green"), Text("(Ctrl+C to quit)", style="grey42"))
    return Padding(grid, (0, 2, 1, 2))
