"""Terminal dashboard for a running tunnel session."""

from pgrok.dashboard.app import Dashboard

__all__ = ["Dashboard"]
