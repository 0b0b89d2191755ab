"""Connection states and the reconnect backoff schedule."""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before reconnect number ``attempt + 1``: ``min(base * 2**attempt, cap)``."""
    if attempt < 0:
        raise ValueError("attempt must be non-negative")
    # Past ~64 doublings the product only overflows; the cap has long applied.
    if attempt >= 64:
        return cap
    return min(base * (2 ** attempt), cap)
