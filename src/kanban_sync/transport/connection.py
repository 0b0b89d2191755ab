"""The socket underneath the transport.

:class:`Transport` only talks to the :class:`Connection` interface, so the
state machine can be driven by a real ``websockets`` client or by a fake.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed as WsConnectionClosed
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from ..constants import CLEAN_CLOSE_CODE


class ConnectionFailed(Exception):
    """Opening the connection failed."""


class ConnectionClosed(Exception):
    """The peer or the network ended the connection.

    ``was_clean`` is True only for a close handshake that both sides
    completed with a normal close code.
    """

    def __init__(self, was_clean: bool, code: Optional[int] = None, reason: str = "") -> None:
        super().__init__(f"connection closed (clean={was_clean}, code={code}, reason={reason!r})")
        self.was_clean = was_clean
        self.code = code
        self.reason = reason


class Connection(ABC):
    @abstractmethod
    async def send(self, data: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def recv(self) -> Union[str, bytes]:
        """Return the next frame, or raise :class:`ConnectionClosed`."""
        raise NotImplementedError

    @abstractmethod
    async def close(self, code: int = CLEAN_CLOSE_CODE, reason: str = "") -> None:
        raise NotImplementedError


Connector = Callable[[str], Awaitable[Connection]]


def _translate_closed(exc: WsConnectionClosed) -> ConnectionClosed:
    frame = exc.rcvd or exc.sent
    code = frame.code if frame is not None else None
    reason = frame.reason if frame is not None else ""
    return ConnectionClosed(isinstance(exc, ConnectionClosedOK), code, reason)


class WebsocketsConnection(Connection):
    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    async def send(self, data: str) -> None:
        try:
            await self._ws.send(data)
        except WsConnectionClosed as exc:
            raise _translate_closed(exc) from exc

    async def recv(self) -> Union[str, bytes]:
        try:
            return await self._ws.recv()
        except WsConnectionClosed as exc:
            raise _translate_closed(exc) from exc

    async def close(self, code: int = CLEAN_CLOSE_CODE, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)


async def open_websocket(url: str, *, open_timeout: float = 10.0) -> Connection:
    """Default connector.

    Keep-alive pings of the library are disabled: liveness is the
    transport's own application-level ``ping`` message.
    """
    try:
        ws = await connect(url, open_timeout=open_timeout, ping_interval=None)
    except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
        raise ConnectionFailed(f"{exc.__class__.__name__}: {exc}") from exc
    return WebsocketsConnection(ws)
