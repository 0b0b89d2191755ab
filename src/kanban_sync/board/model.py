"""Board data model shared by the overlay, reorder engine and dependency graph.

Tasks are owned by the authoritative store; the client only mirrors what a
snapshot delivers and never invents a task id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from ..utils import _coerce_ms, _now_ms


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Board-level status used for Kanban columns."""

    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"

    @classmethod
    def coerce(cls, raw: Any, default: Optional["TaskStatus"] = None) -> "TaskStatus":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw))
        except ValueError:
            if default is None:
                raise
            return default


BOARD_COLUMNS: tuple[TaskStatus, ...] = (
    TaskStatus.BACKLOG,
    TaskStatus.READY,
    TaskStatus.IN_PROGRESS,
    TaskStatus.IN_REVIEW,
    TaskStatus.DONE,
)

# status -> ordered tasks; always keyed by every board column
Snapshot = dict[TaskStatus, list["Task"]]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def _copy_ids(ids: Optional[list[str]]) -> Optional[list[str]]:
    return list(ids) if ids is not None else None


def _ids_or_none(raw: Any) -> Optional[list[str]]:
    if raw is None:
        return None
    return [str(x) for x in raw]


@dataclass(frozen=True)
class TaskSummary:
    id: str
    title: str
    status: TaskStatus

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "status": self.status.value}


@dataclass(frozen=True)
class TaskDependencySummary(TaskSummary):
    """A blocker of some task, with the id of the edge linking them."""

    dependency_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["dependency_id"] = self.dependency_id
        return data


@dataclass
class Task:
    """A card on the board as last reported by the authoritative store."""

    id: str
    title: str = ""
    status: TaskStatus = TaskStatus.BACKLOG
    position: int = 0
    updated_at: int = field(default_factory=_now_ms)
    completed_at: Optional[int] = None
    project_id: Optional[str] = None
    priority: Optional[str] = None
    # None when the payload did not carry the field at all
    depends_on_ids: Optional[list[str]] = None
    blocks_ids: Optional[list[str]] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict using the board API field names."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "position": self.position,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "project_id": self.project_id,
            "priority": self.priority,
            "depends_on_ids": _copy_ids(self.depends_on_ids),
            "blocks_ids": _copy_ids(self.blocks_ids),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully.

        Accepts both ``snake_case`` and the ``camelCase`` spellings the store
        pushes (``updatedAt``, ``dependsOnIds`` ...).
        """
        def _pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        task_id = _pick("id", "_id")
        if task_id is None:
            raise ValueError("task payload has no id")

        updated_at = _coerce_ms(_pick("updated_at", "updatedAt"))
        return cls(
            id=str(task_id),
            title=str(_pick("title", default="")),
            status=TaskStatus.coerce(_pick("status"), TaskStatus.BACKLOG),
            position=int(_pick("position", default=0) or 0),
            updated_at=updated_at if updated_at is not None else 0,
            completed_at=_coerce_ms(_pick("completed_at", "completedAt")),
            project_id=_pick("project_id", "projectId"),
            priority=_pick("priority"),
            depends_on_ids=_ids_or_none(_pick("depends_on_ids", "dependsOnIds")),
            blocks_ids=_ids_or_none(_pick("blocks_ids", "blocksIds")),
        )

    def summary(self) -> TaskSummary:
        return TaskSummary(id=self.id, title=self.title, status=self.status)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE


@dataclass(frozen=True)
class PendingMove:
    """A cross-column move the user made that the store has not confirmed yet."""

    task_id: str
    target_status: TaskStatus
    issued_at: int = field(default_factory=_now_ms)


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------

def empty_snapshot() -> Snapshot:
    return {status: [] for status in BOARD_COLUMNS}


def _done_sort_key(task: Task) -> int:
    return task.completed_at if task.completed_at is not None else task.updated_at


def group_by_status(tasks: Iterable[Task]) -> Snapshot:
    """Group tasks into board columns.

    Columns are ordered by ``position``; the done column shows the most
    recently completed task first.
    """
    snapshot = empty_snapshot()
    for task in tasks:
        snapshot[task.status].append(task)
    for status, column in snapshot.items():
        if status == TaskStatus.DONE:
            column.sort(key=_done_sort_key, reverse=True)
        else:
            column.sort(key=lambda t: t.position)
    return snapshot


def snapshot_from_payload(payload: Any) -> Snapshot:
    """Build a snapshot from a board API payload.

    Accepts ``{"tasks": [...]}``, a bare list of task dicts, or a mapping of
    ``status -> [task, ...]``. In the grouped form the column order sent by
    the store is kept as-is.
    """
    if isinstance(payload, list):
        return group_by_status(Task.from_dict(item) for item in payload)
    if not isinstance(payload, Mapping):
        raise ValueError(f"unsupported snapshot payload: {type(payload).__name__}")
    if "tasks" in payload:
        return group_by_status(Task.from_dict(item) for item in payload.get("tasks") or [])

    snapshot = empty_snapshot()
    for raw_status, items in payload.items():
        status = TaskStatus.coerce(raw_status)
        for item in items or []:
            task = item if isinstance(item, Task) else Task.from_dict(item)
            snapshot[status].append(task)
    return snapshot
