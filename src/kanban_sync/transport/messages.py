"""Wire messages for the event transport.

Every message is a JSON object with a ``type`` discriminator.  Session
lifecycle messages (``session.started`` ...) are dispatched; anything else
is kept only as the transport's last message.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import PING_TYPE, SESSION_EVENT_TYPES
from ..utils import _now_iso


class MalformedMessageError(ValueError):
    """The payload is not a JSON object with a string ``type``."""


class TransportMessage(BaseModel):
    """Any message received from the event source; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    type: str

    @property
    def is_session_event(self) -> bool:
        return self.type in SESSION_EVENT_TYPES


class SessionEvent(TransportMessage):
    """A session lifecycle event for the dispatch sink."""

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    session: Optional[dict[str, Any]] = None
    timestamp: Optional[Union[str, int, float]] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        if value not in SESSION_EVENT_TYPES:
            raise ValueError(f"not a session event type: {value}")
        return value

    @field_validator("session_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        # Some emitters send numeric session ids.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def resolved_session_id(self) -> Optional[str]:
        if self.session_id:
            return self.session_id
        if self.session:
            sid = self.session.get("id") or self.session.get("key") or self.session.get("sessionKey")
            return str(sid) if sid else None
        return None


class PingMessage(BaseModel):
    type: Literal["ping"] = PING_TYPE
    timestamp: str = Field(default_factory=_now_iso)


def parse_message(raw: Union[str, bytes, bytearray]) -> TransportMessage:
    """Decode one frame into a :class:`SessionEvent` or generic :class:`TransportMessage`.

    Raises :class:`MalformedMessageError` for anything that is not a JSON
    object carrying a string ``type``.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessageError(f"payload is not UTF-8: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedMessageError(f"payload is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedMessageError(f"expected a JSON object, got {type(data).__name__}")
    if not isinstance(data.get("type"), str):
        raise MalformedMessageError("message has no string 'type'")

    try:
        if data["type"] in SESSION_EVENT_TYPES:
            return SessionEvent.model_validate(data)
        return TransportMessage.model_validate(data)
    except ValidationError as exc:
        raise MalformedMessageError(str(exc)) from exc
