"""Configure the logger and render compact summaries for log lines."""

from __future__ import annotations

import json
import sys
from typing import Any

from loguru import logger


_MAX_FIELD_CHARS = 240


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def _clip(text: str) -> str:
    return (text[:_MAX_FIELD_CHARS] + "…") if len(text) > _MAX_FIELD_CHARS else text


def summarize_message(message: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a transport message.

    Args:
        message: A parsed message model, a plain dict, raw text, or None.

    Returns:
        A dictionary suitable for logging.
    """
    if message is None:
        return {"type": None}

    if hasattr(message, "model_dump"):
        message = message.model_dump()

    if isinstance(message, (bytes, bytearray)):
        message = bytes(message).decode("utf-8", errors="replace")

    if isinstance(message, str):
        return {"type": None, "raw": _clip(message), "raw_len": len(message)}

    if not isinstance(message, dict):
        return {"type": None, "raw": _clip(str(message))}

    d: dict[str, Any] = {"type": message.get("type")}
    session_id = message.get("session_id") or message.get("sessionId")
    if session_id:
        d["session_id"] = session_id
    session = message.get("session")
    if isinstance(session, dict):
        status = session.get("status")
        if status:
            d["status"] = status
    timestamp = message.get("timestamp")
    if timestamp is not None:
        d["timestamp"] = timestamp
    extra = sorted(k for k in message if k not in {"type", "session_id", "sessionId", "session", "timestamp"})
    if extra:
        d["fields"] = extra
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
