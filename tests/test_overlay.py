"""Tests for the optimistic overlay (board/overlay.py)."""

from __future__ import annotations

import asyncio

from conftest import FakeMutations, make_snapshot, make_task, settle

from kanban_sync.board.model import BOARD_COLUMNS, TaskStatus, snapshot_from_payload
from kanban_sync.board.overlay import (
    OptimisticOverlay,
    column_view,
    derive_active_moves,
    effective_columns,
)


def _ids(tasks) -> list[str]:
    return [t.id for t in tasks]


def _board():
    return make_snapshot(
        make_task("t1", TaskStatus.BACKLOG, 0),
        make_task("t2", TaskStatus.BACKLOG, 1),
        make_task("t3", TaskStatus.READY, 0),
        make_task("t4", TaskStatus.IN_PROGRESS, 0),
    )


class TestPureReconciliation:
    def test_no_moves_returns_snapshot_columns_verbatim(self) -> None:
        # Grouped payloads keep the store's order even when it disagrees with position.
        snapshot = snapshot_from_payload({
            "backlog": [{"id": "b", "position": 5}, {"id": "a", "position": 0}],
            "ready": [],
        })
        assert _ids(column_view(TaskStatus.BACKLOG, snapshot, {})) == ["b", "a"]

    def test_move_places_task_in_target_only(self) -> None:
        snapshot = _board()
        active = {"t1": TaskStatus.READY}
        assert _ids(column_view(TaskStatus.BACKLOG, snapshot, active)) == ["t2"]
        assert _ids(column_view(TaskStatus.READY, snapshot, active)) == ["t3", "t1"]

    def test_every_task_appears_exactly_once(self) -> None:
        snapshot = _board()
        active = {"t1": TaskStatus.DONE, "t3": TaskStatus.BACKLOG, "t4": TaskStatus.IN_PROGRESS}
        columns = effective_columns(snapshot, active)
        seen = [t.id for status in BOARD_COLUMNS for t in columns[status]]
        assert sorted(seen) == ["t1", "t2", "t3", "t4"]
        assert len(seen) == len(set(seen))

    def test_confirmed_move_is_not_active(self) -> None:
        snapshot = make_snapshot(make_task("t1", TaskStatus.READY))
        assert derive_active_moves({"t1": TaskStatus.READY}, snapshot) == {}
        assert derive_active_moves({"t1": "done"}, snapshot) == {"t1": TaskStatus.DONE}


class TestOptimisticOverlay:
    def test_record_move_shows_card_in_target_immediately(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            overlay = OptimisticOverlay(mutations, snapshot=_board())
            notified: list[int] = []
            overlay.add_listener(lambda: notified.append(1))

            overlay.record_move("t1", TaskStatus.READY)
            assert _ids(overlay.column_view(TaskStatus.READY)) == ["t3", "t1"]
            assert _ids(overlay.column_view(TaskStatus.BACKLOG)) == ["t2"]
            assert overlay.is_pending("t1")
            assert notified

            await overlay.drain()
            assert mutations.calls == [("move_task", "t1", TaskStatus.READY)]

        asyncio.run(_run())

    def test_backlog_to_ready_confirmed_by_snapshot(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            overlay = OptimisticOverlay(mutations, snapshot=_board())
            overlay.record_move("t1", TaskStatus.READY)
            await overlay.drain()

            # Mutation accepted but the store has not pushed yet: the move stays visible.
            assert overlay.is_pending("t1")
            assert _ids(overlay.column_view(TaskStatus.READY)) == ["t3", "t1"]

            # The store places the task at the head of ready.
            overlay.apply_snapshot(make_snapshot(
                make_task("t1", TaskStatus.READY, 0),
                make_task("t2", TaskStatus.BACKLOG, 1),
                make_task("t3", TaskStatus.READY, 1),
                make_task("t4", TaskStatus.IN_PROGRESS, 0),
            ))
            assert overlay.pending == {}
            assert not overlay.is_pending("t1")
            assert _ids(overlay.column_view(TaskStatus.READY)) == ["t1", "t3"]

        asyncio.run(_run())

    def test_stale_snapshot_keeps_move_active(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            overlay = OptimisticOverlay(mutations, snapshot=_board())
            overlay.record_move("t1", TaskStatus.DONE)
            overlay.apply_snapshot(_board())
            assert overlay.active_moves() == {"t1": TaskStatus.DONE}
            assert "t1" in _ids(overlay.column_view(TaskStatus.DONE))
            await overlay.drain()

        asyncio.run(_run())

    def test_failed_move_rolls_back(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            mutations.failing_moves.add(("t1", TaskStatus.READY))
            overlay = OptimisticOverlay(mutations, snapshot=_board())
            overlay.record_move("t1", TaskStatus.READY)
            await overlay.drain()

            assert overlay.pending == {}
            assert _ids(overlay.column_view(TaskStatus.BACKLOG)) == ["t1", "t2"]
            assert _ids(overlay.column_view(TaskStatus.READY)) == ["t3"]

        asyncio.run(_run())

    def test_newer_move_survives_older_failure(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            gate = mutations.hold("t1", TaskStatus.READY)
            mutations.failing_moves.add(("t1", TaskStatus.READY))
            overlay = OptimisticOverlay(mutations, snapshot=_board())

            overlay.record_move("t1", TaskStatus.READY)
            await settle()
            overlay.record_move("t1", TaskStatus.IN_PROGRESS)
            await settle()

            gate.set()
            await overlay.drain()

            assert overlay.active_moves() == {"t1": TaskStatus.IN_PROGRESS}
            assert _ids(overlay.column_view(TaskStatus.IN_PROGRESS)) == ["t4", "t1"]

        asyncio.run(_run())

    def test_rollback_unknown_task_is_noop(self, mutations: FakeMutations) -> None:
        overlay = OptimisticOverlay(mutations, snapshot=_board())
        assert overlay.rollback_move("missing") is False

    def test_closed_overlay_ignores_late_failure(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            gate = mutations.hold("t1", TaskStatus.READY)
            mutations.failing_moves.add(("t1", TaskStatus.READY))
            overlay = OptimisticOverlay(mutations, snapshot=_board())
            notified: list[int] = []
            overlay.add_listener(lambda: notified.append(1))

            overlay.record_move("t1", TaskStatus.READY)
            await settle()
            overlay.close()
            notified.clear()

            gate.set()
            await overlay.drain()
            assert notified == []
            assert "t1" in overlay.pending
            assert overlay.record_move("t2", TaskStatus.READY) is None

        asyncio.run(_run())

    def test_listener_can_be_removed(self, mutations: FakeMutations) -> None:
        overlay = OptimisticOverlay(mutations, snapshot=_board())
        notified: list[int] = []
        remove = overlay.add_listener(lambda: notified.append(1))
        remove()
        overlay.apply_snapshot(_board())
        assert notified == []


class TestScenarios:
    def test_in_flight_move_then_failure(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            gate = mutations.hold("A", TaskStatus.READY)
            mutations.failing_moves.add(("A", TaskStatus.READY))
            overlay = OptimisticOverlay(mutations, snapshot=make_snapshot(make_task("A", TaskStatus.BACKLOG)))

            overlay.record_move("A", TaskStatus.READY)
            await settle()
            assert overlay.column_view(TaskStatus.BACKLOG) == []
            assert _ids(overlay.column_view(TaskStatus.READY)) == ["A"]

            gate.set()
            await overlay.drain()
            assert _ids(overlay.column_view(TaskStatus.BACKLOG)) == ["A"]
            assert overlay.column_view(TaskStatus.READY) == []

        asyncio.run(_run())

    def test_rollback_restores_every_snapshot_column(self, mutations: FakeMutations) -> None:
        async def _run() -> None:
            snapshot = _board()
            mutations.failing_moves.add(("t2", TaskStatus.DONE))
            overlay = OptimisticOverlay(mutations, snapshot=snapshot)

            overlay.record_move("t2", TaskStatus.DONE)
            await overlay.drain()

            for status in BOARD_COLUMNS:
                assert overlay.column_view(status) == snapshot[status]

        asyncio.run(_run())
