"""Load optional sync configuration from `.kanban_sync/config.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .constants import (
    API_URL_ENV,
    CONFIG_FILE,
    DEFAULT_API_URL,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_MAX_RECONNECT_DELAY,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_SECURE_WS_PATH,
    DEFAULT_WS_URL,
    STATE_DIR_NAME,
    WS_URL_ENV,
)
from .io_utils import _load_data_with_error


class TransportSettings(BaseModel):
    """Connection target and timing for the event transport."""

    url: str = DEFAULT_WS_URL
    secure_path: str = DEFAULT_SECURE_WS_PATH
    reconnect_delay: float = Field(default=DEFAULT_RECONNECT_DELAY, gt=0)
    max_reconnect_delay: float = Field(default=DEFAULT_MAX_RECONNECT_DELAY, gt=0)
    heartbeat_interval: float = Field(default=DEFAULT_HEARTBEAT_INTERVAL, gt=0)


class ApiSettings(BaseModel):
    """Board API used for mutation calls and snapshot polling."""

    base_url: str = DEFAULT_API_URL
    timeout: float = Field(default=DEFAULT_HTTP_TIMEOUT, gt=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)


def load_sync_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional sync config file.

    Args:
        project_dir: Directory holding the `.kanban_sync/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        json_path = path.with_suffix(".json")
        if not json_path.exists():
            return {}, None
        path = json_path
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_transport_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `transport` block, or an empty dict if absent."""
    raw = _get_nested(config, "transport")
    return raw if isinstance(raw, dict) else {}


def get_api_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `api` block, or an empty dict if absent."""
    raw = _get_nested(config, "api")
    return raw if isinstance(raw, dict) else {}


def transport_settings(
    config: dict[str, Any],
    env: Optional[Mapping[str, str]] = None,
) -> TransportSettings:
    """Build transport settings from config, letting the environment override the URL.

    Invalid values are logged and replaced by defaults rather than raised.
    """
    env = os.environ if env is None else env
    raw = dict(get_transport_config(config))
    env_url = (env.get(WS_URL_ENV) or "").strip()
    if env_url:
        raw["url"] = env_url
    try:
        return TransportSettings(**raw)
    except ValidationError as exc:
        logger.warning("Invalid transport config, using defaults: {}", exc)
        return TransportSettings(url=env_url or DEFAULT_WS_URL)


def api_settings(
    config: dict[str, Any],
    env: Optional[Mapping[str, str]] = None,
) -> ApiSettings:
    env = os.environ if env is None else env
    raw = dict(get_api_config(config))
    env_url = (env.get(API_URL_ENV) or "").strip()
    if env_url:
        raw["base_url"] = env_url
    try:
        return ApiSettings(**raw)
    except ValidationError as exc:
        logger.warning("Invalid api config, using defaults: {}", exc)
        return ApiSettings(base_url=env_url or DEFAULT_API_URL)


def resolve_ws_url(settings: TransportSettings, page_origin: Optional[str] = None) -> str:
    """Pick the event endpoint for the page the board is served from.

    A secure origin must reach the event source through the same host over
    ``wss``; anything else addresses the configured backend directly.
    """
    if page_origin:
        parts = urlsplit(page_origin)
        if parts.scheme == "https" and parts.netloc:
            path = settings.secure_path if settings.secure_path.startswith("/") else f"/{settings.secure_path}"
            return f"wss://{parts.netloc}{path}"
    return settings.url
