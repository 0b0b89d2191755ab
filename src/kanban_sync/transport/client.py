"""Resilient event transport.

State machine::

    disconnected -> connecting -> connected
    connected --(unclean close)--> reconnecting --(backoff)--> connected
                                                          \\-> reconnecting (failed again)

A clean close leaves the transport ``disconnected``.  Unclean closes retry
forever with capped exponential backoff; the only ways out of
``reconnecting`` are a successful connect or :meth:`Transport.disconnect`.

Usage::

    transport = Transport(url, dispatch=sessions.handle_event)
    await transport.connect()
    ...
    await transport.disconnect()   # teardown: no more dispatch or timers
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger
from pydantic import BaseModel

from ..config import TransportSettings, resolve_ws_url
from ..constants import CLEAN_CLOSE_CODE
from ..logging_utils import summarize_message
from .connection import Connection, ConnectionClosed, ConnectionFailed, Connector, open_websocket
from .messages import MalformedMessageError, PingMessage, SessionEvent, TransportMessage, parse_message
from .state import ConnectionState, backoff_delay


DispatchSink = Callable[[SessionEvent], None]
StateListener = Callable[[ConnectionState], None]
Sleep = Callable[[float], Awaitable[Any]]


class Transport:
    """Owned, explicitly constructed connection to the session event source.

    Parameters
    ----------
    url:
        Endpoint to connect to.
    dispatch:
        Sink for session lifecycle events.
    connector:
        Coroutine opening a :class:`Connection`; defaults to ``websockets``.
    settings:
        Backoff and heartbeat timing.
    sleep:
        Timer used for the heartbeat and the reconnect backoff.
    """

    def __init__(
        self,
        url: str,
        *,
        dispatch: Optional[DispatchSink] = None,
        connector: Connector = open_websocket,
        settings: Optional[TransportSettings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.url = url
        self._dispatch = dispatch
        self._connector = connector
        self._settings = settings or TransportSettings(url=url)
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts = 0
        self._conn: Optional[Connection] = None
        self._opening = False
        self._closing = False
        self._reader: Optional[asyncio.Task[None]] = None
        self._heartbeat: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._listeners: list[StateListener] = []
        self.last_message: Optional[TransportMessage] = None

    @classmethod
    def from_settings(
        cls,
        settings: TransportSettings,
        *,
        page_origin: Optional[str] = None,
        **kwargs: Any,
    ) -> "Transport":
        return cls(resolve_ws_url(settings, page_origin), settings=settings, **kwargs)

    # -- observable state --------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a state-change callback; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # -- lifecycle ---------------------------------------------------------

    async def __aenter__(self) -> "Transport":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Open the connection unless it is already open or opening."""
        if self._state == ConnectionState.CONNECTED or self._opening:
            return
        self._closing = False
        retry = self._reconnect_attempts > 0
        self._set_state(ConnectionState.RECONNECTING if retry else ConnectionState.CONNECTING)

        self._opening = True
        try:
            conn = await self._connector(self.url)
        except (ConnectionFailed, OSError) as exc:
            self._opening = False
            logger.error("Failed to connect to {}: {}", self.url, exc)
            self.on_error(exc)
            # A failed open is an unclean close as far as the state machine goes.
            self.on_close(False)
            return
        finally:
            self._opening = False

        if self._closing:
            # Torn down while the handshake was in flight.
            await self._close_quietly(conn, "teardown")
            return

        self._conn = conn
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to {}", self.url)

        loop = asyncio.get_running_loop()
        self._reader = loop.create_task(self._read_loop(conn))
        self._heartbeat = loop.create_task(self._heartbeat_loop(conn))

    async def disconnect(self) -> None:
        """Clean close: stop timers, close the socket and never auto-reconnect."""
        self._closing = True
        await self._shutdown("client disconnect")
        self._set_state(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> None:
        """Force-close, reset the attempt counter and connect immediately."""
        self._closing = True
        await self._shutdown("manual reconnect")
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.DISCONNECTED)
        await self.connect()

    async def send(self, message: Union[BaseModel, dict[str, Any]]) -> bool:
        """Send now or not at all; nothing is queued while disconnected."""
        conn = self._conn
        if self._state != ConnectionState.CONNECTED or conn is None:
            logger.warning("Cannot send message, not connected (state={})", self._state.value)
            return False
        if isinstance(message, BaseModel):
            payload = message.model_dump_json()
        else:
            payload = json.dumps(message)
        try:
            await conn.send(payload)
        except (ConnectionClosed, OSError) as exc:
            logger.warning("Send failed: {}", exc)
            return False
        return True

    # -- event handlers ----------------------------------------------------

    def on_message(self, raw: Union[str, bytes]) -> Optional[TransportMessage]:
        """Parse a frame, remember it, and dispatch session lifecycle events."""
        if self._closing:
            return None
        try:
            message = parse_message(raw)
        except MalformedMessageError as exc:
            logger.warning("Dropping malformed message: {} {}", exc, summarize_message(raw))
            return None

        self.last_message = message
        if isinstance(message, SessionEvent):
            logger.debug("Dispatching {}", summarize_message(message))
            if self._dispatch is not None:
                try:
                    self._dispatch(message)
                except Exception:
                    logger.exception("Session event handler failed for {}", message.type)
        return message

    def on_close(self, was_clean: bool, code: Optional[int] = None, reason: str = "") -> None:
        """Connection ended: stop the heartbeat, then reconnect unless the close was clean."""
        logger.info("Connection closed (clean={}, code={}, reason={!r})", was_clean, code, reason)
        self._clear_heartbeat()
        self._conn = None
        self._reader = None

        if was_clean or self._closing:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        delay = backoff_delay(
            self._reconnect_attempts,
            self._settings.reconnect_delay,
            self._settings.max_reconnect_delay,
        )
        self._reconnect_attempts += 1
        logger.info("Reconnecting in {:.1f}s (attempt {})", delay, self._reconnect_attempts)
        self._set_state(ConnectionState.RECONNECTING)
        self._schedule_reconnect(delay)

    def on_error(self, exc: BaseException) -> None:
        """Record the error; :meth:`on_close` decides whether to reconnect."""
        logger.error("Transport error: {}", exc)
        self._set_state(ConnectionState.DISCONNECTED)

    # -- internals ---------------------------------------------------------

    async def _read_loop(self, conn: Connection) -> None:
        try:
            while True:
                raw = await conn.recv()
                self.on_message(raw)
        except ConnectionClosed as exc:
            if conn is not self._conn:
                return
            self.on_close(exc.was_clean, exc.code, exc.reason)
        except OSError as exc:
            if conn is not self._conn:
                return
            self.on_error(exc)
            self.on_close(False)

    async def _heartbeat_loop(self, conn: Connection) -> None:
        while True:
            await self._sleep(self._settings.heartbeat_interval)
            if conn is not self._conn or self._state != ConnectionState.CONNECTED:
                return
            logger.debug("Heartbeat ping")
            await self.send(PingMessage())

    def _schedule_reconnect(self, delay: float) -> None:
        pending = self._reconnect_task
        if pending is not None and pending is not asyncio.current_task():
            pending.cancel()
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._closing:
            return
        self._reconnect_task = None
        await self.connect()

    def _clear_heartbeat(self) -> None:
        heartbeat = self._heartbeat
        self._heartbeat = None
        if heartbeat is not None and heartbeat is not asyncio.current_task():
            heartbeat.cancel()

    async def _shutdown(self, reason: str) -> None:
        current = asyncio.current_task()
        tasks = [t for t in (self._reconnect_task, self._heartbeat, self._reader) if t is not None]
        self._reconnect_task = None
        self._heartbeat = None
        self._reader = None
        conn = self._conn
        self._conn = None

        stopping = [t for t in tasks if t is not current and not t.done()]
        for task in stopping:
            task.cancel()
        if stopping:
            await asyncio.gather(*stopping, return_exceptions=True)

        if conn is not None:
            await self._close_quietly(conn, reason)

    async def _close_quietly(self, conn: Connection, reason: str) -> None:
        try:
            await conn.close(CLEAN_CLOSE_CODE, reason)
        except (ConnectionClosed, OSError) as exc:
            logger.debug("Ignoring error while closing connection: {}", exc)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Transport state listener failed")
