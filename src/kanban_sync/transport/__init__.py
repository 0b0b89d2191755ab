"""Long-lived event transport with backoff, heartbeat and session dispatch."""

from __future__ import annotations

from .client import Transport
from .state import ConnectionState, backoff_delay

__all__ = ["ConnectionState", "Transport", "backoff_delay"]
