"""Push sources for the authoritative task collection.

A source delivers whole snapshots, never diffs.  Consumers only ever care
about the newest one, so a slow consumer may skip intermediate values.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx
from loguru import logger

from ..constants import DEFAULT_HTTP_TIMEOUT, DEFAULT_POLL_INTERVAL
from .model import Snapshot, snapshot_from_payload


class CollectionSource(ABC):
    @abstractmethod
    def subscribe(self, project_id: str) -> AsyncIterator[Snapshot]:
        """Yield the project's grouped tasks every time they change upstream."""
        raise NotImplementedError

    @abstractmethod
    async def aclose(self) -> None:
        raise NotImplementedError


def _freeze(snapshot: Snapshot) -> Snapshot:
    return {status: list(column) for status, column in snapshot.items()}


class SnapshotChannel(CollectionSource):
    """In-process latest-value channel.

    A producer calls :meth:`publish`; every subscriber sees the most recent
    snapshot, starting with the current one if any was published.
    """

    def __init__(self) -> None:
        self._latest: Optional[Snapshot] = None
        self._version = 0
        self._closed = False
        self._changed = asyncio.Event()

    @property
    def latest(self) -> Optional[Snapshot]:
        return self._latest

    def publish(self, snapshot: Snapshot) -> None:
        if self._closed:
            logger.debug("Dropping snapshot published to a closed channel")
            return
        self._latest = _freeze(snapshot)
        self._version += 1
        self._changed.set()

    def close(self) -> None:
        self._closed = True
        self._changed.set()

    async def aclose(self) -> None:
        self.close()

    async def subscribe(self, project_id: str = "") -> AsyncIterator[Snapshot]:
        seen = 0
        while True:
            if self._version > seen and self._latest is not None:
                seen = self._version
                yield self._latest
                continue
            if self._closed:
                return
            self._changed.clear()
            if self._version > seen or self._closed:
                continue
            await self._changed.wait()


class PollingCollectionSource(CollectionSource):
    """Poll the board API and publish a snapshot whenever the payload changes.

    Fetch errors are logged and polling continues on the next tick.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._interval = interval
        self._sleep = sleep
        self._closed = False

    async def subscribe(self, project_id: str) -> AsyncIterator[Snapshot]:
        last_payload: Any = None
        while not self._closed:
            payload = await self._fetch(project_id)
            if payload is not None and payload != last_payload:
                try:
                    snapshot = snapshot_from_payload(payload)
                except (TypeError, ValueError) as exc:
                    logger.warning("Ignoring malformed task payload for {}: {}", project_id, exc)
                else:
                    last_payload = payload
                    yield snapshot
            if self._closed:
                break
            await self._sleep(self._interval)

    async def aclose(self) -> None:
        self._closed = True
        if self._owns_client:
            await self._client.aclose()

    async def _fetch(self, project_id: str) -> Any:
        try:
            resp = await self._client.get("/api/tasks", params={"projectId": project_id})
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            logger.warning("Task poll failed for {}: {}", project_id, exc)
        except ValueError as exc:
            logger.warning("Task poll returned non-JSON for {}: {}", project_id, exc)
        return None
