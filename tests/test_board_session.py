"""Tests for the board session wiring (board/session.py)."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock, FakeConnector, FakeMutations, make_snapshot, make_task, settle

from kanban_sync.board.model import TaskStatus
from kanban_sync.board.reorder import DropLocation, DropOutcome, DropResult
from kanban_sync.board.session import BoardSession
from kanban_sync.board.source import SnapshotChannel
from kanban_sync.config import TransportSettings
from kanban_sync.transport.client import Transport
from kanban_sync.transport.state import ConnectionState


def _ids(tasks) -> list[str]:
    return [t.id for t in tasks]


def test_snapshots_flow_into_overlay_and_graph(mutations: FakeMutations) -> None:
    async def _run() -> None:
        channel = SnapshotChannel()
        async with BoardSession("proj-1", channel, mutations) as board:
            channel.publish(make_snapshot(
                make_task("a", TaskStatus.BACKLOG, depends_on_ids=["b"]),
                make_task("b", TaskStatus.IN_PROGRESS),
            ))
            await board.wait_for_snapshot(timeout=1)

            assert _ids(board.columns()[TaskStatus.BACKLOG]) == ["a"]
            assert board.graph.blocked_task_ids() == {"a"}

            board.move("a", TaskStatus.READY)
            assert _ids(board.columns()[TaskStatus.READY]) == ["a"]
            await board.overlay.drain()

            channel.publish(make_snapshot(
                make_task("a", TaskStatus.READY, depends_on_ids=["b"]),
                make_task("b", TaskStatus.DONE),
            ))
            await settle()

            assert board.snapshots_seen == 2
            assert board.overlay.pending == {}
            assert board.graph.blocked_task_ids() == set()

        assert board.overlay.closed
        assert channel.latest is not None

    asyncio.run(_run())


def test_drop_is_routed_through_reorder_engine(mutations: FakeMutations) -> None:
    async def _run() -> None:
        channel = SnapshotChannel()
        channel.publish(make_snapshot(make_task("a", TaskStatus.READY, 0), make_task("b", TaskStatus.READY, 1)))
        async with BoardSession("proj-1", channel, mutations) as board:
            await board.wait_for_snapshot(timeout=1)
            outcome = board.handle_drop(DropResult(
                "a", DropLocation(TaskStatus.READY, 0), DropLocation(TaskStatus.READY, 1),
            ))
            await board.reorder.drain()

        assert outcome is DropOutcome.REORDER
        assert mutations.calls == [("reorder_task", "a", TaskStatus.READY, 1)]

    asyncio.run(_run())


def test_stop_disconnects_transport(mutations: FakeMutations, connector: FakeConnector, clock: FakeClock) -> None:
    async def _run() -> None:
        transport = Transport(
            "ws://board.test/ws", connector=connector, sleep=clock.sleep,
            settings=TransportSettings(heartbeat_interval=45),
        )
        channel = SnapshotChannel()
        board = BoardSession("proj-1", channel, mutations, transport=transport)

        await board.start()
        assert transport.state == ConnectionState.CONNECTED

        await board.stop()
        assert transport.state == ConnectionState.DISCONNECTED
        assert clock.pending == []
        assert connector.connections[0].closed_with is not None

    asyncio.run(_run())


def test_wait_before_start_raises(mutations: FakeMutations) -> None:
    board = BoardSession("proj-1", SnapshotChannel(), mutations)
    with pytest.raises(RuntimeError):
        asyncio.run(board.wait_for_snapshot(timeout=0.1))
