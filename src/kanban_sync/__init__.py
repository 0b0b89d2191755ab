"""Provide the public `kanban_sync` package exports."""

from __future__ import annotations

from .board.session import BoardSession
from .sessions import SessionStore
from .transport.client import Transport

__all__ = ["BoardSession", "SessionStore", "Transport"]
