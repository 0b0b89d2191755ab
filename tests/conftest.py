"""Shared fakes for the board and transport tests."""

from __future__ import annotations

import asyncio
from typing import Optional, Union

import pytest

from kanban_sync.board.model import Snapshot, Task, TaskStatus, group_by_status
from kanban_sync.board.mutations import MutationClient, MutationError
from kanban_sync.transport.connection import Connection, ConnectionClosed, ConnectionFailed


def make_task(task_id: str, status: TaskStatus = TaskStatus.BACKLOG, position: int = 0, **kwargs) -> Task:
    kwargs.setdefault("title", task_id.upper())
    return Task(id=task_id, status=status, position=position, **kwargs)


def make_snapshot(*tasks: Task) -> Snapshot:
    return group_by_status(tasks)


async def settle(rounds: int = 20) -> None:
    """Let every ready callback and task run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

class FakeMutations(MutationClient):
    """Records calls; moves can be held on a gate or made to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.failing_moves: set[tuple[str, TaskStatus]] = set()
        self.gates: dict[tuple[str, TaskStatus], asyncio.Event] = {}
        self.fail_reorder = False
        self.fail_dependencies = False
        self._edge_seq = 0

    def hold(self, task_id: str, status: TaskStatus) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[(task_id, status)] = gate
        return gate

    async def move_task(self, task_id: str, target_status: TaskStatus) -> None:
        self.calls.append(("move_task", task_id, target_status))
        gate = self.gates.get((task_id, target_status))
        if gate is not None:
            await gate.wait()
        if (task_id, target_status) in self.failing_moves:
            raise MutationError("move_task", "Invalid status", status_code=400)

    async def reorder_task(self, task_id: str, status: TaskStatus, new_index: int) -> None:
        self.calls.append(("reorder_task", task_id, status, new_index))
        if self.fail_reorder:
            raise MutationError("reorder_task", "Task not found", status_code=404)

    async def add_dependency(self, task_id: str, depends_on_id: str) -> Optional[str]:
        self.calls.append(("add_dependency", task_id, depends_on_id))
        if self.fail_dependencies:
            raise MutationError("add_dependency", "Dependency already exists", status_code=409)
        self._edge_seq += 1
        return f"dep-{self._edge_seq}"

    async def remove_dependency(self, task_id: str, depends_on_id: str) -> None:
        self.calls.append(("remove_dependency", task_id, depends_on_id))
        if self.fail_dependencies:
            raise MutationError("remove_dependency", "boom", status_code=500)


@pytest.fixture
def mutations() -> FakeMutations:
    return FakeMutations()


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class FakeConnection(Connection):
    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed_with: Optional[tuple[int, str]] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, raw: Union[str, bytes]) -> None:
        self._inbox.put_nowait(raw)

    def drop(self, was_clean: bool = False, code: int = 1006, reason: str = "") -> None:
        self._inbox.put_nowait(ConnectionClosed(was_clean, code, reason))

    async def send(self, data: str) -> None:
        if self.closed_with is not None:
            raise ConnectionClosed(True, self.closed_with[0], self.closed_with[1])
        self.sent.append(data)

    async def recv(self) -> Union[str, bytes]:
        item = await self._inbox.get()
        if isinstance(item, ConnectionClosed):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)


class FakeConnector:
    """Connector returning :class:`FakeConnection` objects; the first ``failures`` opens fail."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []

    async def __call__(self, url: str) -> Connection:
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionFailed("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn


class FakeClock:
    """Sleep replacement: every sleep blocks until the test releases it."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future]] = []

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((delay, fut))
        await fut

    @property
    def pending(self) -> list[float]:
        return [delay for delay, fut in self._waiters if not fut.done()]

    def release(self, delay: Optional[float] = None) -> int:
        released = 0
        remaining: list[tuple[float, asyncio.Future]] = []
        for waited, fut in self._waiters:
            if fut.done():
                continue
            if delay is None or waited == delay:
                fut.set_result(None)
                released += 1
            else:
                remaining.append((waited, fut))
        self._waiters = remaining
        return released


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
