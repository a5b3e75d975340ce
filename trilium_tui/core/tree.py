"""Lazily loaded note tree.

Nodes live in a flat arena keyed by note id; each node owns the ordered ids
of its children. Snapshots are immutable, and every edit returns a new
snapshot built by id lookup. `NoteTreeStore` owns the current snapshot, the
tree focus and the network side of expansion.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Iterator, Mapping, Protocol

from ..models import Note

logger = logging.getLogger(__name__)

MAX_DEPTH = 10


class ChildSource(Protocol):
    async def get_note(self, note_id: str) -> Note: ...

    async def get_child_notes(self, parent_id: str) -> list[Note]: ...


@dataclass(frozen=True)
class TreeNode:
    note: Note
    child_ids: tuple[str, ...] = ()
    is_expanded: bool = False
    children_loaded: bool = False
    depth: int = 0
    parent_id: str | None = None

    @property
    def note_id(self) -> str:
        return self.note.note_id

    @property
    def has_children(self) -> bool:
        if self.children_loaded:
            return bool(self.child_ids)
        return self.note.has_children


@dataclass(frozen=True)
class TreeSnapshot:
    nodes: Mapping[str, TreeNode] = field(default_factory=dict)
    root_ids: tuple[str, ...] = ()

    def get(self, node_id: str) -> TreeNode | None:
        return self.nodes.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)


@dataclass(frozen=True)
class FlatRow:
    """One visible line of the tree view."""

    note_id: str
    title: str
    depth: int
    is_expanded: bool
    has_children: bool


def single_root(note: Note) -> TreeSnapshot:
    return TreeSnapshot(nodes={note.note_id: TreeNode(note=note)}, root_ids=(note.note_id,))


def flatten(snapshot: TreeSnapshot, max_depth: int = MAX_DEPTH) -> tuple[FlatRow, ...]:
    """Pre-order rows for every node reachable through expanded parents.

    Each id is emitted at most once per call, so a note cloned under two
    parents, or a cycle in the server data, cannot repeat or loop.
    """
    rows: list[FlatRow] = []
    visited: set[str] = set()
    stack: list[tuple[str, int]] = [(rid, 0) for rid in reversed(snapshot.root_ids)]

    while stack:
        node_id, depth = stack.pop()
        if node_id in visited:
            continue
        node = snapshot.nodes.get(node_id)
        if node is None:
            continue
        visited.add(node_id)
        rows.append(
            FlatRow(
                note_id=node_id,
                title=node.note.title,
                depth=depth,
                is_expanded=node.is_expanded,
                has_children=node.has_children,
            )
        )
        if node.is_expanded and depth < max_depth:
            for child_id in reversed(node.child_ids):
                if child_id not in visited:
                    stack.append((child_id, depth + 1))

    return tuple(rows)


def iter_loaded(snapshot: TreeSnapshot) -> Iterator[TreeNode]:
    """Pre-order over every loaded node, expanded or not."""
    visited: set[str] = set()
    stack = list(reversed(snapshot.root_ids))
    while stack:
        node_id = stack.pop()
        if node_id in visited or node_id not in snapshot.nodes:
            continue
        visited.add(node_id)
        node = snapshot.nodes[node_id]
        yield node
        stack.extend(cid for cid in reversed(node.child_ids) if cid not in visited)


def set_expanded(snapshot: TreeSnapshot, node_id: str, expanded: bool) -> TreeSnapshot:
    node = snapshot.nodes.get(node_id)
    if node is None or node.is_expanded == expanded:
        return snapshot
    nodes = dict(snapshot.nodes)
    nodes[node_id] = replace(node, is_expanded=expanded)
    return TreeSnapshot(nodes=nodes, root_ids=snapshot.root_ids)


def with_children(snapshot: TreeSnapshot, node_id: str, children: Iterable[Note]) -> TreeSnapshot:
    """Attach freshly fetched children to `node_id` and mark it expanded.

    A child already present in the arena keeps its node (and its own
    expansion state and loaded children).
    """
    parent = snapshot.nodes.get(node_id)
    if parent is None:
        return snapshot

    nodes = dict(snapshot.nodes)
    child_ids: list[str] = []
    for note in children:
        if note.note_id in child_ids:
            continue
        child_ids.append(note.note_id)
        if note.note_id not in nodes:
            nodes[note.note_id] = TreeNode(note=note, depth=parent.depth + 1, parent_id=node_id)

    nodes[node_id] = replace(parent, child_ids=tuple(child_ids), children_loaded=True, is_expanded=True)
    return TreeSnapshot(nodes=nodes, root_ids=snapshot.root_ids)


def visible_descendants(snapshot: TreeSnapshot, node_id: str, max_depth: int = MAX_DEPTH) -> int:
    """Rows currently shown below `node_id` because it is expanded."""
    rows = flatten(snapshot, max_depth)
    for i, row in enumerate(rows):
        if row.note_id == node_id:
            n = 0
            for below in rows[i + 1 :]:
                if below.depth <= row.depth:
                    break
                n += 1
            return n
    return 0


class NoteTreeStore:
    """Owns the current tree snapshot, the tree focus and child fetching."""

    def __init__(self, api: ChildSource, *, max_depth: int = MAX_DEPTH) -> None:
        self.api = api
        self.max_depth = max_depth
        self.snapshot = TreeSnapshot()
        self.focus = 0
        self.fetch_count = 0
        self.generation = 0  # bumped by load_root; older fetches are discarded
        self._rows: tuple[FlatRow, ...] | None = None
        self._rows_for: TreeSnapshot | None = None
        self._inflight: dict[str, asyncio.Future] = {}

    def _set_snapshot(self, snapshot: TreeSnapshot) -> None:
        self.snapshot = snapshot
        self.focus = self._clamp(self.focus)

    def _clamp(self, index: int) -> int:
        count = len(self.flatten())
        if count == 0:
            return 0
        return max(0, min(index, count - 1))

    async def load_root(self, root_id: str = "root") -> TreeSnapshot:
        """Reset the arena to a single unexpanded root node."""
        note = await self.api.get_note(root_id)
        self.generation += 1
        self._inflight.clear()
        self.snapshot = single_root(note)
        self.focus = 0
        logger.info(f"Loaded tree root {root_id} ({note.title})")
        return self.snapshot

    async def expand(self, node_id: str) -> bool:
        """Expand `node_id`, fetching its children the first time only.

        Returns True if the snapshot changed. On a failed fetch the arena is
        left untouched and the error propagates.
        """
        node = self.snapshot.get(node_id)
        if node is None or node.is_expanded:
            return False
        if node.depth >= self.max_depth:
            logger.debug(f"Not expanding {node_id}: depth limit {self.max_depth} reached")
            return False
        if node.children_loaded:
            self._set_snapshot(set_expanded(self.snapshot, node_id, True))
            return True

        pending = self._inflight.get(node_id)
        if pending is not None:
            await pending
            return False

        generation = self.generation
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[node_id] = future
        try:
            self.fetch_count += 1
            children = await self.api.get_child_notes(node_id)
        except asyncio.CancelledError:
            future.set_result(None)
            raise
        except Exception as e:
            future.set_exception(e)
            future.exception()  # waiters re-raise it; nobody else needs to
            raise
        else:
            future.set_result(None)
        finally:
            if self._inflight.get(node_id) is future:
                del self._inflight[node_id]

        if generation != self.generation or node_id not in self.snapshot:
            return False
        self._set_snapshot(with_children(self.snapshot, node_id, children))
        logger.debug(f"Expanded {node_id}: {len(children)} children")
        return True

    def collapse(self, node_id: str) -> bool:
        node = self.snapshot.get(node_id)
        if node is None or not node.is_expanded:
            return False
        focused = self.focused_row()
        hidden: set[str] = set()
        if focused is not None and focused.note_id != node_id:
            hidden = {row.note_id for row in self._rows_below(node_id)}
        self._set_snapshot(set_expanded(self.snapshot, node_id, False))
        if focused is not None:
            target = node_id if focused.note_id in hidden else focused.note_id
            index = self.index_of(target)
            if index is not None:
                self.focus = index
        return True

    async def toggle(self, node_id: str) -> bool:
        node = self.snapshot.get(node_id)
        if node is None:
            return False
        if node.is_expanded:
            return self.collapse(node_id)
        return await self.expand(node_id)

    def _rows_below(self, node_id: str) -> tuple[FlatRow, ...]:
        rows = self.flatten()
        index = self.index_of(node_id)
        if index is None:
            return ()
        count = visible_descendants(self.snapshot, node_id, self.max_depth)
        return rows[index + 1 : index + 1 + count]

    def flatten(self) -> tuple[FlatRow, ...]:
        if self._rows_for is not self.snapshot:
            self._rows = flatten(self.snapshot, self.max_depth)
            self._rows_for = self.snapshot
        return self._rows or ()

    def move_focus(self, delta: int) -> int:
        self.focus = self._clamp(self.focus + delta)
        return self.focus

    def set_focus(self, index: int) -> int:
        self.focus = self._clamp(index)
        return self.focus

    def focused_row(self) -> FlatRow | None:
        rows = self.flatten()
        if not rows:
            return None
        return rows[self._clamp(self.focus)]

    def index_of(self, note_id: str) -> int | None:
        for i, row in enumerate(self.flatten()):
            if row.note_id == note_id:
                return i
        return None

    def parent_of(self, node_id: str) -> str | None:
        node = self.snapshot.get(node_id)
        return node.parent_id if node is not None else None

    def loaded_notes(self) -> list[Note]:
        return [node.note for node in iter_loaded(self.snapshot)]
