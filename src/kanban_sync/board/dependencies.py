"""Dependency graph: depends-on / blocks views and the derived blocked flag.

Edges are directed ``(task_id, depends_on_id)`` pairs indexed from both
ends.  This layer does not enforce acyclicity: dependencies are advisory
here, so ``A -> B`` followed later by ``B -> A`` is accepted.  Callers that
want to warn about it can ask :meth:`DependencyGraph.would_create_cycle`.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from loguru import logger

from .model import Snapshot, Task, TaskDependencySummary, TaskSummary
from .mutations import MutationClient


class DependencyError(ValueError):
    """An edge edit was rejected before reaching the store."""


class SelfDependencyError(DependencyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} cannot depend on itself")
        self.task_id = task_id


class DuplicateDependencyError(DependencyError):
    def __init__(self, task_id: str, depends_on_id: str) -> None:
        super().__init__(f"Task {task_id} already depends on {depends_on_id}")
        self.task_id = task_id
        self.depends_on_id = depends_on_id


@dataclass(frozen=True)
class DependencyEdge:
    task_id: str
    depends_on_id: str
    id: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class DependencyView:
    depends_on: list[TaskDependencySummary]
    blocks: list[TaskSummary]

    def to_dict(self) -> dict[str, list[dict[str, object]]]:
        return {
            "depends_on": [d.to_dict() for d in self.depends_on],
            "blocks": [b.to_dict() for b in self.blocks],
        }


RefreshListener = Callable[[set[str]], None]


class DependencyGraph:
    """Index of dependency edges over the tasks currently on the board.

    Parameters
    ----------
    mutations:
        Client used to persist edge edits.  Without one, edits only change
        the local index.
    """

    def __init__(self, mutations: Optional[MutationClient] = None) -> None:
        self._mutations = mutations
        self._tasks: dict[str, Task] = {}
        self._edges: list[DependencyEdge] = []
        self._by_task: dict[str, list[DependencyEdge]] = defaultdict(list)
        self._by_depends_on: dict[str, list[DependencyEdge]] = defaultdict(list)
        self._listeners: list[RefreshListener] = []

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, tasks: Iterable[Task], edges: Optional[Iterable[DependencyEdge]] = None) -> None:
        """Replace the task index and the edge set.

        When *edges* is omitted they are read from each task's
        ``depends_on_ids`` and ``blocks_ids``.
        """
        self._tasks = {t.id: t for t in tasks}
        if edges is None:
            derived: list[DependencyEdge] = []
            for task in self._tasks.values():
                derived.extend(DependencyEdge(task.id, dep_id) for dep_id in task.depends_on_ids or ())
                derived.extend(DependencyEdge(blocked_id, task.id) for blocked_id in task.blocks_ids or ())
            edges = derived

        self._edges = []
        self._by_task = defaultdict(list)
        self._by_depends_on = defaultdict(list)
        seen: set[tuple[str, str]] = set()
        for edge in edges:
            key = (edge.task_id, edge.depends_on_id)
            if key in seen:
                continue
            seen.add(key)
            self._index(edge)
        self._notify(set(self._tasks))

    def load_snapshot(self, snapshot: Snapshot) -> None:
        """Refresh from a board snapshot.

        Edges are rebuilt from the tasks whenever any task carries the
        dependency fields, even as empty lists, so an edge the store dropped
        is dropped here too.  Only when no task carries them at all are the
        current edges kept and just the task statuses refreshed.
        """
        tasks = [task for column in snapshot.values() for task in column]
        carries_edges = any(t.depends_on_ids is not None or t.blocks_ids is not None for t in tasks)
        self.load(tasks, None if carries_edges else list(self._edges))

    def add_listener(self, listener: RefreshListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def edges(self) -> list[DependencyEdge]:
        return list(self._edges)

    def has_edge(self, task_id: str, depends_on_id: str) -> bool:
        return any(e.depends_on_id == depends_on_id for e in self._by_task.get(task_id, ()))

    def edges_for(self, task_id: str) -> DependencyView:
        """Blockers of *task_id* and the tasks it blocks.

        Edges pointing at tasks that are not on the board are skipped.
        """
        depends_on: list[TaskDependencySummary] = []
        for edge in self._by_task.get(task_id, ()):
            dep = self._tasks.get(edge.depends_on_id)
            if dep is None:
                continue
            depends_on.append(
                TaskDependencySummary(id=dep.id, title=dep.title, status=dep.status, dependency_id=edge.id)
            )
        blocks: list[TaskSummary] = []
        for edge in self._by_depends_on.get(task_id, ()):
            blocked = self._tasks.get(edge.task_id)
            if blocked is not None:
                blocks.append(blocked.summary())
        return DependencyView(depends_on=depends_on, blocks=blocks)

    def incomplete_dependencies(self, task_id: str) -> list[TaskSummary]:
        blockers: list[TaskSummary] = []
        for edge in self._by_task.get(task_id, ()):
            dep = self._tasks.get(edge.depends_on_id)
            if dep is not None and not dep.is_done:
                blockers.append(dep.summary())
        return blockers

    def is_blocked(self, task_id: str) -> bool:
        """True iff at least one dependency of *task_id* is not done."""
        return bool(self.incomplete_dependencies(task_id))

    def blocked_task_ids(self) -> set[str]:
        return {tid for tid in self._tasks if self.is_blocked(tid)}

    def candidates(self, task_id: str, query: str = "") -> list[TaskSummary]:
        """Tasks that may be offered as a new dependency of *task_id*.

        Excludes the task itself and its existing dependencies.  Dependents
        are not excluded.
        """
        excluded = {task_id} | {e.depends_on_id for e in self._by_task.get(task_id, ())}
        needle = query.strip().lower()
        result: list[TaskSummary] = []
        for task in self._tasks.values():
            if task.id in excluded:
                continue
            if needle and needle not in task.title.lower():
                continue
            result.append(task.summary())
        return result

    def would_create_cycle(self, task_id: str, depends_on_id: str) -> bool:
        """Would adding ``task_id -> depends_on_id`` close a loop?  Advisory only."""
        if task_id == depends_on_id:
            return True
        visited: set[str] = set()
        queue: deque[str] = deque([depends_on_id])
        while queue:
            current = queue.popleft()
            if current == task_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            for edge in self._by_task.get(current, ()):
                if edge.depends_on_id not in visited:
                    queue.append(edge.depends_on_id)
        return False

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def validate_edge(self, task_id: str, depends_on_id: str) -> None:
        if task_id == depends_on_id:
            raise SelfDependencyError(task_id)
        if self.has_edge(task_id, depends_on_id):
            raise DuplicateDependencyError(task_id, depends_on_id)

    async def add_edge(self, task_id: str, depends_on_id: str) -> DependencyEdge:
        """Make *task_id* depend on *depends_on_id*.

        Raises :class:`SelfDependencyError` or :class:`DuplicateDependencyError`
        before any network call; a failed mutation raises
        :class:`~kanban_sync.board.mutations.MutationError` and leaves the
        graph unchanged.
        """
        self.validate_edge(task_id, depends_on_id)
        edge_id: Optional[str] = None
        if self._mutations is not None:
            edge_id = await self._mutations.add_dependency(task_id, depends_on_id)

        if self.has_edge(task_id, depends_on_id):
            # A concurrent add or a snapshot reload got there first.
            return next(e for e in self._by_task[task_id] if e.depends_on_id == depends_on_id)

        edge = DependencyEdge(task_id, depends_on_id, id=edge_id)
        self._index(edge)
        logger.debug("Added dependency {} -> {}", task_id, depends_on_id)
        self._notify({task_id, depends_on_id})
        return edge

    async def remove_edge(self, task_id: str, depends_on_id: str) -> bool:
        """Remove the edge; returns False without a network call if it is unknown."""
        if not self.has_edge(task_id, depends_on_id):
            logger.debug("No dependency {} -> {} to remove", task_id, depends_on_id)
            return False
        if self._mutations is not None:
            await self._mutations.remove_dependency(task_id, depends_on_id)

        self._edges = [e for e in self._edges if (e.task_id, e.depends_on_id) != (task_id, depends_on_id)]
        self._by_task[task_id] = [e for e in self._by_task[task_id] if e.depends_on_id != depends_on_id]
        self._by_depends_on[depends_on_id] = [
            e for e in self._by_depends_on[depends_on_id] if e.task_id != task_id
        ]
        logger.debug("Removed dependency {} -> {}", task_id, depends_on_id)
        self._notify({task_id, depends_on_id})
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _index(self, edge: DependencyEdge) -> None:
        self._edges.append(edge)
        self._by_task[edge.task_id].append(edge)
        self._by_depends_on[edge.depends_on_id].append(edge)

    def _notify(self, task_ids: set[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(set(task_ids))
            except Exception:
                logger.exception("Dependency listener failed")
