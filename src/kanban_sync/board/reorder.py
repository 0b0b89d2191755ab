"""Translate drag-and-drop gestures into reorder or move mutations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from .model import TaskStatus
from .mutations import MutationClient, MutationError
from .overlay import OptimisticOverlay


@dataclass(frozen=True)
class DropLocation:
    column: TaskStatus
    index: int


@dataclass(frozen=True)
class DropResult:
    """What the drag library reports when a card is released.

    ``destination`` is None when the card was dropped outside every column.
    """

    task_id: str
    source: DropLocation
    destination: Optional[DropLocation]


class DropOutcome(str, Enum):
    NOOP = "noop"
    REORDER = "reorder"
    MOVE = "move"


ErrorHandler = Callable[[str, MutationError], None]


class ReorderEngine:
    """Decide what a drop means and issue the matching mutation.

    Same-column drops send the destination index and leave renumbering to
    the store; the next snapshot shows the new order.  Cross-column drops are
    handed to the overlay, which appends the card to the target column until
    the store places it.
    """

    def __init__(
        self,
        overlay: OptimisticOverlay,
        mutations: MutationClient,
        *,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self._overlay = overlay
        self._mutations = mutations
        self._on_error = on_error
        self._inflight: set[asyncio.Task[None]] = set()

    def handle_drop(self, result: DropResult) -> DropOutcome:
        destination = result.destination
        if destination is None:
            return DropOutcome.NOOP

        source_column = TaskStatus.coerce(result.source.column)
        dest_column = TaskStatus.coerce(destination.column)

        if dest_column == source_column:
            if destination.index == result.source.index:
                return DropOutcome.NOOP
            self._schedule_reorder(result.task_id, dest_column, destination.index)
            return DropOutcome.REORDER

        # Cross-column: the destination index is deliberately not sent.
        self._overlay.record_move(result.task_id, dest_column)
        return DropOutcome.MOVE

    def move_to_top(self, task_id: str) -> DropOutcome:
        return self._move_within_column(task_id, to_top=True)

    def move_to_bottom(self, task_id: str) -> DropOutcome:
        return self._move_within_column(task_id, to_top=False)

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # -- internals ---------------------------------------------------------

    def _locate(self, task_id: str) -> Optional[DropLocation]:
        for status, column in self._overlay.columns().items():
            for index, task in enumerate(column):
                if task.id == task_id:
                    return DropLocation(status, index)
        return None

    def _move_within_column(self, task_id: str, *, to_top: bool) -> DropOutcome:
        source = self._locate(task_id)
        if source is None:
            logger.warning("Cannot reorder {}: not on the board", task_id)
            return DropOutcome.NOOP
        column_length = len(self._overlay.column_view(source.column))
        dest_index = 0 if to_top else column_length - 1
        return self.handle_drop(DropResult(task_id, source, DropLocation(source.column, dest_index)))

    def _schedule_reorder(self, task_id: str, status: TaskStatus, new_index: int) -> None:
        job = asyncio.get_running_loop().create_task(self._issue_reorder(task_id, status, new_index))
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)

    async def _issue_reorder(self, task_id: str, status: TaskStatus, new_index: int) -> None:
        try:
            await self._mutations.reorder_task(task_id, status, new_index)
        except MutationError as exc:
            logger.warning("Reorder of {} in {} to index {} failed: {}", task_id, status.value, new_index, exc)
            if self._on_error is not None and not self._overlay.closed:
                self._on_error(task_id, exc)
        else:
            logger.debug("Reorder of {} in {} to index {} accepted", task_id, status.value, new_index)
