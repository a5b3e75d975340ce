"""Tests for the lazily loaded note tree."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeApi, make_note
from trilium_tui.core.tree import (
    MAX_DEPTH,
    NoteTreeStore,
    flatten,
    set_expanded,
    single_root,
    visible_descendants,
    with_children,
)
from trilium_tui.errors import NetworkError


def _titles(store: NoteTreeStore) -> list[str]:
    return [row.title for row in store.flatten()]


def test_expand_collapse_scenario(fake_api: FakeApi) -> None:
    async def scenario() -> NoteTreeStore:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        assert _titles(store) == ["root"]

        await store.expand("root")
        assert _titles(store) == ["root", "A", "B"]

        await store.expand("noteA")
        assert _titles(store) == ["root", "A", "A1", "A2", "B"]

        store.collapse("noteA")
        assert _titles(store) == ["root", "A", "B"]

        await store.expand("noteA")
        assert _titles(store) == ["root", "A", "A1", "A2", "B"]
        return store

    store = asyncio.run(scenario())
    assert fake_api.child_fetches["noteA"] == 1
    assert fake_api.child_fetches["root"] == 1
    assert store.fetch_count == 2


def test_flatten_is_pure(fake_api: FakeApi) -> None:
    async def build() -> NoteTreeStore:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        await store.expand("root")
        await store.expand("noteA")
        return store

    store = asyncio.run(build())
    snapshot = store.snapshot
    first = flatten(snapshot)
    assert flatten(snapshot) == first
    assert flatten(snapshot) == first
    assert store.snapshot is snapshot


def test_collapse_removes_exactly_visible_descendants(fake_api: FakeApi) -> None:
    async def build() -> NoteTreeStore:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        await store.expand("root")
        await store.expand("noteA")
        return store

    store = asyncio.run(build())
    before = len(store.flatten())
    hidden = visible_descendants(store.snapshot, "noteA")
    assert hidden == 2

    store.collapse("noteA")
    assert len(store.flatten()) == before - hidden


def test_expand_already_expanded_is_noop(fake_api: FakeApi) -> None:
    async def scenario() -> bool:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        await store.expand("root")
        return await store.expand("root")

    assert asyncio.run(scenario()) is False
    assert fake_api.child_fetches["root"] == 1


def test_failed_expand_leaves_arena_unchanged(fake_api: FakeApi) -> None:
    fake_api.child_errors["noteA"] = NetworkError("connection reset")

    async def scenario() -> NoteTreeStore:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        await store.expand("root")
        before = store.snapshot
        with pytest.raises(NetworkError):
            await store.expand("noteA")
        assert store.snapshot is before
        return store

    store = asyncio.run(scenario())
    node = store.snapshot.get("noteA")
    assert node is not None
    assert not node.is_expanded
    assert not node.children_loaded


def test_move_focus_clamps_without_wrapping(fake_api: FakeApi) -> None:
    async def build() -> NoteTreeStore:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        await store.expand("root")
        return store

    store = asyncio.run(build())
    assert store.move_focus(-1) == 0
    assert store.move_focus(10) == 2
    assert store.move_focus(1) == 2
    assert store.focused_row().title == "B"
    assert store.set_focus(-5) == 0


def test_collapse_moves_focus_off_hidden_rows(fake_api: FakeApi) -> None:
    async def build() -> NoteTreeStore:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        await store.expand("root")
        await store.expand("noteA")
        return store

    store = asyncio.run(build())
    store.set_focus(3)  # A2
    store.collapse("noteA")
    assert store.focused_row().note_id == "noteA"


def test_cycle_is_emitted_once() -> None:
    # loop -> child -> loop
    notes = [
        make_note("loop", "loop", ("child",)),
        make_note("child", "child", ("loop",), parent="loop"),
    ]
    snapshot = single_root(notes[0])
    snapshot = with_children(snapshot, "loop", [notes[1]])
    snapshot = with_children(snapshot, "child", [notes[0]])

    rows = flatten(snapshot)
    assert [r.note_id for r in rows] == ["loop", "child"]


def test_depth_cap_stops_expansion() -> None:
    chain = [make_note(f"n{i:04d}", f"level {i}", (f"n{i + 1:04d}",)) for i in range(MAX_DEPTH + 3)]
    api = FakeApi(chain)

    async def scenario() -> NoteTreeStore:
        store = NoteTreeStore(api)
        await store.load_root("n0000")
        for note in chain:
            await store.expand(note.note_id)
        return store

    store = asyncio.run(scenario())
    rows = store.flatten()
    assert max(r.depth for r in rows) == MAX_DEPTH
    assert api.child_fetches[f"n{MAX_DEPTH:04d}"] == 0


def test_set_expanded_returns_same_snapshot_when_unchanged() -> None:
    snapshot = single_root(make_note("root", "root"))
    assert set_expanded(snapshot, "root", False) is snapshot
    assert set_expanded(snapshot, "missing", True) is snapshot


def test_loaded_notes_are_in_tree_order(fake_api: FakeApi) -> None:
    async def build() -> NoteTreeStore:
        store = NoteTreeStore(fake_api)
        await store.load_root()
        await store.expand("root")
        await store.expand("noteA")
        store.collapse("noteA")
        return store

    store = asyncio.run(build())
    assert [n.title for n in store.loaded_notes()] == ["root", "A", "A1", "A2", "B"]
    assert store.parent_of("noteA1") == "noteA"
    assert store.parent_of("root") is None


def test_custom_depth_cap_collapse_moves_focus_from_deep_rows() -> None:
    depth = MAX_DEPTH + 2
    chain = [make_note(f"n{i:04d}", f"level {i}", (f"n{i + 1:04d}",)) for i in range(depth + 2)]

    async def scenario() -> NoteTreeStore:
        store = NoteTreeStore(FakeApi(chain), max_depth=depth)
        await store.load_root("n0000")
        for note in chain:
            await store.expand(note.note_id)
        return store

    store = asyncio.run(scenario())
    rows = store.flatten()
    assert rows[-1].depth == depth
    assert visible_descendants(store.snapshot, "n0000", depth) == len(rows) - 1

    store.set_focus(len(rows) - 1)
    store.collapse("n0001")
    assert store.focused_row().note_id == "n0001"
