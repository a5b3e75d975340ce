"""Immutable UI state and the pure reducers that evolve it.

Reducers take a state (plus inputs) and return a new state; they never
touch the network, the terminal or the clock. `ViewModeController` is the
only place that calls them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Mapping

from ..core.content_format import ContentFormat
from ..core.history import NavigationHistory, StatusMessage, push_recent, toggle_bookmark
from ..core.search import SearchResult, clamp_selection
from ..core.tree import FlatRow, TreeSnapshot
from ..logs import LogEntry
from ..models import Note


class ViewMode(str, Enum):
    TREE = "tree"
    CONTENT = "content"
    SEARCH = "search"
    RECENT = "recent"
    BOOKMARKS = "bookmarks"
    SPLIT = "split"
    LOG_VIEWER = "logs"
    HELP = "help"


class InputMode(str, Enum):
    NORMAL = "normal"
    SEARCH = "search"  # server query prompt
    FUZZY_SEARCH = "fuzzy"
    COMMAND = "command"


class SearchKind(str, Enum):
    FUZZY = "fuzzy"
    SERVER = "server"


class SplitPane(str, Enum):
    TREE = "tree"
    CONTENT = "content"


# Tab / Shift-Tab order
VIEW_CYCLE = (
    ViewMode.TREE,
    ViewMode.CONTENT,
    ViewMode.SEARCH,
    ViewMode.RECENT,
    ViewMode.BOOKMARKS,
    ViewMode.SPLIT,
)

SPLIT_MIN = 0.1
SPLIT_MAX = 0.9
SPLIT_STEP = 0.05
PAGE_SIZE = 5


@dataclass(frozen=True)
class AppState:
    view: ViewMode = ViewMode.TREE
    previous_view: ViewMode | None = None
    input_mode: InputMode = InputMode.NORMAL
    input_buffer: str = ""
    selections: Mapping[ViewMode, int] = field(default_factory=dict)

    tree: TreeSnapshot = field(default_factory=TreeSnapshot)
    tree_rows: tuple[FlatRow, ...] = ()
    notes: Mapping[str, Note] = field(default_factory=dict)  # every note seen, for titles

    current_note_id: str | None = None
    content: str | None = None
    content_format: ContentFormat | None = None
    content_scroll: int = 0

    search_kind: SearchKind = SearchKind.FUZZY
    search_query: str = ""
    search_results: tuple[SearchResult, ...] = ()

    recent: tuple[str, ...] = ()
    bookmarks: tuple[str, ...] = ()
    split_ratio: float = 0.3
    split_pane: SplitPane = SplitPane.TREE
    history: NavigationHistory = field(default_factory=NavigationHistory)

    status: StatusMessage | None = None
    logs: tuple[LogEntry, ...] = ()
    loading: frozenset[str] = frozenset()
    debug: bool = False
    connected: bool = False
    server_version: str = ""
    running: bool = True

    @property
    def current_note(self) -> Note | None:
        if self.current_note_id is None:
            return None
        return self.notes.get(self.current_note_id)

    def selection(self, view: ViewMode | None = None) -> int:
        return self.selections.get(view or self.view, 0)

    def title_of(self, note_id: str) -> str:
        note = self.notes.get(note_id)
        return note.title if note is not None else note_id


def item_count(state: AppState, view: ViewMode) -> int:
    if view in (ViewMode.TREE, ViewMode.SPLIT):
        return len(state.tree_rows)
    if view is ViewMode.SEARCH:
        return len(state.search_results)
    if view is ViewMode.RECENT:
        return len(state.recent)
    if view is ViewMode.BOOKMARKS:
        return len(state.bookmarks)
    if view is ViewMode.LOG_VIEWER:
        return len(state.logs)
    return 0


def content_line_count(state: AppState) -> int:
    return len(state.content.splitlines()) if state.content else 0


def focused_note_id(state: AppState, view: ViewMode | None = None) -> str | None:
    """Note under the cursor in `view` (default: the active view)."""
    view = view or state.view
    index = state.selection(view)
    if view in (ViewMode.TREE, ViewMode.SPLIT, ViewMode.CONTENT, ViewMode.HELP, ViewMode.LOG_VIEWER):
        tree_index = state.selection(ViewMode.TREE)
        if 0 <= tree_index < len(state.tree_rows):
            return state.tree_rows[tree_index].note_id
        return None
    if view is ViewMode.SEARCH and 0 <= index < len(state.search_results):
        return state.search_results[index].note.note_id
    if view is ViewMode.RECENT and 0 <= index < len(state.recent):
        return state.recent[index]
    if view is ViewMode.BOOKMARKS and 0 <= index < len(state.bookmarks):
        return state.bookmarks[index]
    return None


# ---- views ----


def switch_view(state: AppState, view: ViewMode) -> AppState:
    if view is state.view:
        return state
    return replace(state, view=view, previous_view=state.view)


def go_back(state: AppState) -> AppState:
    """Return to the single remembered previous view."""
    if state.previous_view is None or state.previous_view is state.view:
        return state
    return replace(state, view=state.previous_view, previous_view=state.view)


def cycle_view(state: AppState, step: int) -> AppState:
    if state.view in VIEW_CYCLE:
        index = VIEW_CYCLE.index(state.view)
    else:
        # off-cycle views (Help, Logs) step into the cycle at Tree
        index = -1 if step > 0 else 1
    return switch_view(state, VIEW_CYCLE[(index + step) % len(VIEW_CYCLE)])


def toggle_view(state: AppState, view: ViewMode) -> AppState:
    """Enter `view`, or leave it again if it is already active."""
    if state.view is view:
        return switch_view(state, state.previous_view or ViewMode.TREE)
    return switch_view(state, view)


# ---- selection ----


def set_selection(state: AppState, view: ViewMode, index: int) -> AppState:
    key = ViewMode.TREE if view is ViewMode.SPLIT else view
    clamped = clamp_selection(index, item_count(state, key))
    if state.selection(key) == clamped:
        return state
    selections = dict(state.selections)
    selections[key] = clamped
    return replace(state, selections=selections)


def move_selection(state: AppState, delta: int) -> AppState:
    key = ViewMode.TREE if state.view is ViewMode.SPLIT else state.view
    return set_selection(state, key, state.selection(key) + delta)


def select_last(state: AppState) -> AppState:
    key = ViewMode.TREE if state.view is ViewMode.SPLIT else state.view
    return set_selection(state, key, item_count(state, key) - 1)


def scroll_content(state: AppState, delta: int) -> AppState:
    last = max(0, content_line_count(state) - 1)
    scroll = max(0, min(state.content_scroll + delta, last))
    return state if scroll == state.content_scroll else replace(state, content_scroll=scroll)


# ---- tree ----


def with_tree(state: AppState, snapshot: TreeSnapshot, rows: tuple[FlatRow, ...], focus: int) -> AppState:
    notes = dict(state.notes)
    for node in snapshot.nodes.values():
        notes[node.note.note_id] = node.note
    selections = dict(state.selections)
    selections[ViewMode.TREE] = clamp_selection(focus, len(rows))
    return replace(state, tree=snapshot, tree_rows=rows, notes=notes, selections=selections)


def remember_notes(state: AppState, notes: Iterable[Note]) -> AppState:
    known = dict(state.notes)
    for note in notes:
        known[note.note_id] = note
    return replace(state, notes=known)


# ---- content ----


def open_note(state: AppState, note_id: str, *, push_history: bool = True) -> AppState:
    """Make `note_id` the current note; its content arrives later."""
    history = state.history.push(note_id) if push_history else state.history
    same = note_id == state.current_note_id
    return replace(
        state,
        current_note_id=note_id,
        content=state.content if same else None,
        content_format=state.content_format if same else None,
        content_scroll=state.content_scroll if same else 0,
        history=history,
        recent=push_recent(state.recent, note_id),
    )


def content_loaded(state: AppState, note: Note, content: str, fmt: ContentFormat) -> AppState:
    state = remember_notes(state, [note])
    if note.note_id != state.current_note_id:
        return state
    return replace(state, content=content, content_format=fmt)


def history_step(state: AppState, forward: bool) -> AppState:
    history = state.history.forward() if forward else state.history.back()
    if history is state.history:
        return state
    return replace(state, history=history)


# ---- search ----


def begin_input(state: AppState, mode: InputMode, initial: str = "") -> AppState:
    return replace(state, input_mode=mode, input_buffer=initial)


def edit_input(state: AppState, text: str) -> AppState:
    return replace(state, input_buffer=text)


def end_input(state: AppState) -> AppState:
    return replace(state, input_mode=InputMode.NORMAL, input_buffer="")


def with_search_results(state: AppState, kind: SearchKind, query: str, results: Iterable[SearchResult]) -> AppState:
    results = tuple(results)
    state = remember_notes(state, (r.note for r in results))
    selections = dict(state.selections)
    selections[ViewMode.SEARCH] = clamp_selection(state.selection(ViewMode.SEARCH), len(results))
    return replace(state, search_kind=kind, search_query=query, search_results=results, selections=selections)


# ---- recent / bookmarks / split ----


def bookmark(state: AppState, note_id: str) -> tuple[AppState, bool]:
    bookmarks, added = toggle_bookmark(state.bookmarks, note_id)
    state = replace(state, bookmarks=bookmarks)
    return set_selection(state, ViewMode.BOOKMARKS, state.selection(ViewMode.BOOKMARKS)), added


def adjust_split(state: AppState, delta: float) -> AppState:
    ratio = round(min(SPLIT_MAX, max(SPLIT_MIN, state.split_ratio + delta)), 2)
    return state if ratio == state.split_ratio else replace(state, split_ratio=ratio)


def switch_pane(state: AppState, pane: SplitPane | None = None) -> AppState:
    if pane is None:
        pane = SplitPane.CONTENT if state.split_pane is SplitPane.TREE else SplitPane.TREE
    return replace(state, split_pane=pane)


# ---- misc ----


def set_status(state: AppState, message: StatusMessage | None) -> AppState:
    return replace(state, status=message)


def expire_status(state: AppState, now: float) -> AppState:
    if state.status is not None and state.status.is_expired(now):
        return replace(state, status=None)
    return state


def set_loading(state: AppState, slot: str, loading: bool) -> AppState:
    flags = state.loading | {slot} if loading else state.loading - {slot}
    return state if flags == state.loading else replace(state, loading=flags)


def with_logs(state: AppState, entries: tuple[LogEntry, ...]) -> AppState:
    state = replace(state, logs=entries)
    return set_selection(state, ViewMode.LOG_VIEWER, state.selection(ViewMode.LOG_VIEWER))


def reset_for_refresh(state: AppState) -> AppState:
    """Forget per-view positions and search results; keep bookmarks and recent."""
    return replace(
        state,
        selections={},
        search_query="",
        search_results=(),
        content_scroll=0,
        input_mode=InputMode.NORMAL,
        input_buffer="",
        loading=frozenset(),
    )
