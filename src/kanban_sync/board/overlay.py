"""Optimistic overlay: reconcile the authoritative snapshot with unconfirmed moves.

The overlay never edits the snapshot.  Each render recomputes the effective
columns from two inputs:

* the latest snapshot pushed by the store (most-recent-wins), and
* the pending cross-column moves the user made that the store has not
  reflected yet.

Because the set of *active* moves is derived from scratch every time, an
entry stops having any effect the moment a snapshot shows the task in its
target column, with no cleanup call required.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Mapping, Optional, Union

from loguru import logger

from .model import (
    BOARD_COLUMNS,
    PendingMove,
    Snapshot,
    Task,
    TaskStatus,
    empty_snapshot,
)
from .mutations import MutationClient, MutationError


Listener = Callable[[], None]


# ---------------------------------------------------------------------------
# Pure reconciliation
# ---------------------------------------------------------------------------

def _target_of(entry: Union[PendingMove, TaskStatus, str]) -> TaskStatus:
    if isinstance(entry, PendingMove):
        return entry.target_status
    return TaskStatus.coerce(entry)


def _ordered_statuses(snapshot: Mapping[TaskStatus, list[Task]]) -> list[TaskStatus]:
    extra = [s for s in snapshot if s not in BOARD_COLUMNS]
    return list(BOARD_COLUMNS) + extra


def derive_active_moves(
    pending: Mapping[str, Union[PendingMove, TaskStatus, str]],
    snapshot: Mapping[TaskStatus, list[Task]],
) -> dict[str, TaskStatus]:
    """Return the pending moves the snapshot has not caught up with yet.

    A move for ``task_id`` is dropped as soon as the snapshot lists that task
    under the move's target status.
    """
    active: dict[str, TaskStatus] = {}
    for task_id, entry in pending.items():
        target = _target_of(entry)
        confirmed = any(t.id == task_id for t in snapshot.get(target, ()))
        if not confirmed:
            active[task_id] = target
    return active


def column_view(
    status: TaskStatus,
    snapshot: Mapping[TaskStatus, list[Task]],
    active_moves: Mapping[str, TaskStatus],
) -> list[Task]:
    """Tasks to render in *status* right now.

    With no active moves this is the snapshot column verbatim.  Otherwise
    every task is placed exactly once: in its move target if it has an
    active move, else in the column the snapshot lists it under.  Incoming
    tasks are appended after the column's own tasks, keeping snapshot order.
    """
    status = TaskStatus.coerce(status)
    if not active_moves:
        return list(snapshot.get(status, ()))

    own: list[Task] = []
    incoming: list[Task] = []
    for column_status in _ordered_statuses(snapshot):
        for task in snapshot.get(column_status, ()):
            effective = active_moves.get(task.id, column_status)
            if effective != status:
                continue
            if column_status == status:
                own.append(task)
            else:
                incoming.append(task)
    return own + incoming


def effective_columns(
    snapshot: Mapping[TaskStatus, list[Task]],
    active_moves: Mapping[str, TaskStatus],
) -> Snapshot:
    return {status: column_view(status, snapshot, active_moves) for status in _ordered_statuses(snapshot)}


# ---------------------------------------------------------------------------
# Overlay
# ---------------------------------------------------------------------------

class OptimisticOverlay:
    """Owns the pending-move set and renders the effective board.

    Parameters
    ----------
    mutations:
        Client used to issue the move mutation for each recorded move.
    snapshot:
        Initial authoritative snapshot, if one is already known.
    """

    def __init__(self, mutations: MutationClient, *, snapshot: Optional[Snapshot] = None) -> None:
        self._mutations = mutations
        self._snapshot: Snapshot = snapshot if snapshot is not None else empty_snapshot()
        self._pending: dict[str, PendingMove] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._listeners: list[Listener] = []
        self._closed = False

    # -- read side ---------------------------------------------------------

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def pending(self) -> dict[str, PendingMove]:
        return dict(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def is_pending(self, task_id: str) -> bool:
        return task_id in self.active_moves()

    def active_moves(self) -> dict[str, TaskStatus]:
        return derive_active_moves(self._pending, self._snapshot)

    def column_view(self, status: TaskStatus) -> list[Task]:
        return column_view(status, self._snapshot, self.active_moves())

    def columns(self) -> Snapshot:
        return effective_columns(self._snapshot, self.active_moves())

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a change callback; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # -- write side --------------------------------------------------------

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """Adopt a newer authoritative snapshot and forget confirmed moves."""
        if self._closed:
            return
        self._snapshot = snapshot
        active = derive_active_moves(self._pending, snapshot)
        confirmed = [task_id for task_id in self._pending if task_id not in active]
        for task_id in confirmed:
            self._pending.pop(task_id, None)
        if confirmed:
            logger.debug("Snapshot confirmed moves: {}", confirmed)
        self._notify()

    def record_move(self, task_id: str, target_status: TaskStatus) -> Optional[asyncio.Task[None]]:
        """Show *task_id* in *target_status* now and ask the store to move it.

        Replaces any earlier pending move for the same task.  The mutation
        runs in the background; if it fails the move is rolled back.
        Must be called from the running event loop.
        """
        if self._closed:
            logger.debug("Ignoring move of {} on a closed overlay", task_id)
            return None
        move = PendingMove(task_id=task_id, target_status=TaskStatus.coerce(target_status))
        self._pending[task_id] = move
        self._notify()

        job = asyncio.get_running_loop().create_task(self._issue_move(move))
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)
        return job

    def rollback_move(self, task_id: str) -> bool:
        """Drop the pending move for *task_id*; the card returns to its snapshot column."""
        removed = self._pending.pop(task_id, None)
        if removed is None:
            return False
        logger.info("Rolled back move of {} to {}", task_id, removed.target_status.value)
        self._notify()
        return True

    async def drain(self) -> None:
        """Wait for every in-flight move mutation to settle."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def close(self) -> None:
        """Detach from the view.  In-flight mutations finish but their results are ignored."""
        self._closed = True
        self._listeners.clear()

    # -- internals ---------------------------------------------------------

    async def _issue_move(self, move: PendingMove) -> None:
        try:
            await self._mutations.move_task(move.task_id, move.target_status)
        except MutationError as exc:
            self._on_move_failed(move, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error moving {}", move.task_id)
            self._on_move_failed(move, f"{exc.__class__.__name__}: {exc}")
        else:
            logger.debug("Move of {} to {} accepted", move.task_id, move.target_status.value)

    def _on_move_failed(self, move: PendingMove, reason: str) -> None:
        if self._closed:
            return
        logger.warning("Move of {} to {} failed: {}", move.task_id, move.target_status.value, reason)
        # A newer move for the same task must survive an older move's failure.
        if self._pending.get(move.task_id) is move:
            self.rollback_move(move.task_id)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Overlay listener failed")
