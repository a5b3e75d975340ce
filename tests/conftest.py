"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections import Counter

import pytest

from trilium_tui.errors import NotFoundError
from trilium_tui.models import AppInfo, Branch, Note, SearchHit


def make_note(note_id: str, title: str, children: tuple[str, ...] = (), parent: str | None = None, **kwargs) -> Note:
    return Note(
        note_id=note_id,
        title=title,
        child_note_ids=tuple(children),
        parent_note_ids=(parent,) if parent else (),
        parent_branch_ids=(f"{parent}_{note_id}",) if parent else (),
        **kwargs,
    )


class FakeApi:
    """In-memory stand-in for EtapiClient that counts every fetch."""

    def __init__(self, notes: list[Note], contents: dict[str, str] | None = None) -> None:
        self.notes = {n.note_id: n for n in notes}
        self.contents = dict(contents or {})
        self.get_note_calls: Counter[str] = Counter()
        self.child_fetches: Counter[str] = Counter()
        self.child_errors: dict[str, Exception] = {}
        self.hits: list[SearchHit] = []
        self.search_calls: list[dict] = []
        self.saved: dict[str, str] = {}
        self.branch_updates: list[tuple[str, bool]] = []

    async def get_app_info(self) -> AppInfo:
        return AppInfo(app_version="0.63.7", db_version=228)

    async def get_note(self, note_id: str) -> Note:
        self.get_note_calls[note_id] += 1
        if note_id not in self.notes:
            raise NotFoundError(f"Not found: {note_id}", status=404)
        return self.notes[note_id]

    async def get_child_notes(self, parent_id: str) -> list[Note]:
        self.child_fetches[parent_id] += 1
        if parent_id in self.child_errors:
            raise self.child_errors[parent_id]
        parent = self.notes[parent_id]
        return [self.notes[c] for c in parent.child_note_ids if c in self.notes]

    async def get_note_content(self, note_id: str) -> str:
        if note_id not in self.notes:
            raise NotFoundError(f"Not found: {note_id}", status=404)
        return self.contents.get(note_id, "")

    async def update_note_content(self, note_id: str, content: str) -> None:
        self.saved[note_id] = content
        self.contents[note_id] = content

    async def search_notes(self, query, fast_search=False, include_archived=False, limit=50) -> list[SearchHit]:
        self.search_calls.append(
            {"query": query, "fast_search": fast_search, "include_archived": include_archived, "limit": limit}
        )
        return list(self.hits)

    async def update_branch(self, branch_id: str, *, is_expanded: bool) -> Branch:
        self.branch_updates.append((branch_id, is_expanded))
        note_id = branch_id.split("_", 1)[1]
        return Branch(branch_id=branch_id, note_id=note_id, parent_note_id="", is_expanded=is_expanded)


@pytest.fixture
def sample_notes() -> list[Note]:
    """root -> [A, B], A -> [A1, A2]."""
    return [
        make_note("root", "root", ("noteA", "noteB")),
        make_note("noteA", "A", ("noteA1", "noteA2"), parent="root"),
        make_note("noteB", "B", parent="root"),
        make_note("noteA1", "A1", parent="noteA"),
        make_note("noteA2", "A2", parent="noteA"),
    ]


@pytest.fixture
def fake_api(sample_notes: list[Note]) -> FakeApi:
    return FakeApi(
        sample_notes,
        contents={
            "noteA": "<p>Hello <strong>A</strong></p>",
            "noteB": "plain body of B",
            "noteA1": "# A1\n\nsome *markdown*",
        },
    )
