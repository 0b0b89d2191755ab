"""Tie a snapshot source, the overlay and the transport to one board view.

The session's lifetime is the view's lifetime: :meth:`BoardSession.stop`
tears down the subscription, detaches the overlay and closes the transport
so nothing is dispatched to a view that is gone.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from loguru import logger

from ..transport.client import Transport
from .dependencies import DependencyGraph
from .model import Snapshot, TaskStatus
from .mutations import MutationClient, MutationError
from .overlay import OptimisticOverlay
from .reorder import DropOutcome, DropResult, ReorderEngine
from .source import CollectionSource


class BoardSession:
    def __init__(
        self,
        project_id: str,
        source: CollectionSource,
        mutations: MutationClient,
        *,
        transport: Optional[Transport] = None,
        on_error: Optional[Callable[[str, MutationError], None]] = None,
    ) -> None:
        self.project_id = project_id
        self.transport = transport
        self.overlay = OptimisticOverlay(mutations)
        self.graph = DependencyGraph(mutations)
        self.reorder = ReorderEngine(self.overlay, mutations, on_error=on_error)
        self._source = source
        self._consumer: Optional[asyncio.Task[None]] = None
        self._snapshots_seen = 0
        self._snapshot_arrived: Optional[asyncio.Event] = None

    async def __aenter__(self) -> "BoardSession":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def snapshots_seen(self) -> int:
        return self._snapshots_seen

    async def start(self) -> None:
        if self._consumer is not None:
            return
        self._snapshot_arrived = asyncio.Event()
        self._consumer = asyncio.get_running_loop().create_task(self._consume())
        if self.transport is not None:
            await self.transport.connect()
        logger.info("Board session started for project {}", self.project_id)

    async def stop(self) -> None:
        consumer = self._consumer
        self._consumer = None
        if consumer is not None and not consumer.done():
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
        await self._source.aclose()
        self.overlay.close()
        if self.transport is not None:
            await self.transport.disconnect()
        logger.info("Board session stopped for project {}", self.project_id)

    async def wait_for_snapshot(self, timeout: Optional[float] = None) -> Snapshot:
        """Wait until at least one snapshot has been applied."""
        if self._snapshot_arrived is None:
            raise RuntimeError("session not started")
        await asyncio.wait_for(self._snapshot_arrived.wait(), timeout)
        return self.overlay.snapshot

    def columns(self) -> Snapshot:
        return self.overlay.columns()

    def handle_drop(self, result: DropResult) -> DropOutcome:
        return self.reorder.handle_drop(result)

    def move(self, task_id: str, target_status: TaskStatus) -> None:
        self.overlay.record_move(task_id, target_status)

    async def _consume(self) -> None:
        try:
            async for snapshot in self._source.subscribe(self.project_id):
                self.overlay.apply_snapshot(snapshot)
                self.graph.load_snapshot(snapshot)
                self._snapshots_seen += 1
                if self._snapshot_arrived is not None:
                    self._snapshot_arrived.set()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Snapshot subscription for {} failed", self.project_id)
