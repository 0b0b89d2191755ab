"""Terminal rendering of the effective board."""

from __future__ import annotations

from itertools import zip_longest
from typing import Optional

from rich.console import Group
from rich.table import Table
from rich.text import Text

from .board.dependencies import DependencyGraph
from .board.model import BOARD_COLUMNS, Snapshot, Task
from .sessions import SessionStore
from .transport.state import ConnectionState


COLUMN_TITLES = {
    "backlog": "Backlog",
    "ready": "Ready",
    "in_progress": "In Progress",
    "in_review": "Review",
    "done": "Done",
}

STATE_STYLES = {
    ConnectionState.CONNECTED: "green",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.RECONNECTING: "yellow",
    ConnectionState.DISCONNECTED: "red",
}


def connection_badge(state: ConnectionState) -> Text:
    return Text(f"● {state.value}", style=STATE_STYLES.get(state, "white"))


def _card(task: Task, *, blocked: bool, pending: bool) -> Text:
    label = task.title or task.id
    text = Text(label, style="dim" if blocked else "")
    if blocked:
        text.append(" ⛔", style="red")
    if pending:
        text.append(" …", style="yellow")
    return text


def render_board(
    columns: Snapshot,
    state: ConnectionState,
    graph: Optional[DependencyGraph] = None,
    *,
    pending_ids: frozenset[str] = frozenset(),
    sessions: Optional[SessionStore] = None,
) -> Group:
    """Build a renderable with one table column per board column.

    Blocked cards are dimmed; cards with an unconfirmed move are marked.
    """
    blocked = graph.blocked_task_ids() if graph is not None else set()
    table = Table(expand=True, show_lines=False)
    for status in BOARD_COLUMNS:
        count = len(columns.get(status, ()))
        table.add_column(f"{COLUMN_TITLES[status.value]} ({count})")

    stacks = [columns.get(status, []) for status in BOARD_COLUMNS]
    for row in zip_longest(*stacks):
        table.add_row(*[
            _card(task, blocked=task.id in blocked, pending=task.id in pending_ids) if task else Text("")
            for task in row
        ])

    header = Text("Connection: ")
    header.append_text(connection_badge(state))
    if sessions is not None:
        header.append(f"   Active sessions: {len(sessions.active())}")
    return Group(header, table)
