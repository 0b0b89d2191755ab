"""Client-side board state for the collaborative Kanban view.

This package holds the task model, the optimistic overlay that renders
unconfirmed moves, the drag-and-drop reorder engine and the dependency
graph.  Everything here reads snapshots pushed by the authoritative store
and writes back only through a :class:`~kanban_sync.board.mutations.MutationClient`.
"""
