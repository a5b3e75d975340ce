"""Turn an `AppState` into a rich renderable. Pure: no I/O, no clock."""

from __future__ import annotations

from rich.console import Group, RenderableType
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..core.content_format import ContentFormat, html_to_markdown
from ..core.history import StatusLevel
from ..errors import ValidationError
from ..models import Note, parse_local_datetime, parse_utc_datetime
from .keys import HELP_TEXT
from .state import AppState, InputMode, SearchKind, SplitPane, ViewMode

DEFAULT_HEIGHT = 24

_STATUS_STYLES = {
    StatusLevel.INFO: "cyan",
    StatusLevel.SUCCESS: "green",
    StatusLevel.WARNING: "yellow",
    StatusLevel.ERROR: "bold red",
}

_LEVEL_STYLES = {"DEBUG": "dim", "INFO": "cyan", "WARNING": "yellow", "ERROR": "red", "CRITICAL": "bold red"}

_PROMPTS = {
    InputMode.SEARCH: "Search: ",
    InputMode.FUZZY_SEARCH: "Fuzzy: ",
    InputMode.COMMAND: ":",
}

_VIEW_TITLES = {
    ViewMode.TREE: "Tree",
    ViewMode.CONTENT: "Content",
    ViewMode.SEARCH: "Search",
    ViewMode.RECENT: "Recent",
    ViewMode.BOOKMARKS: "Bookmarks",
    ViewMode.SPLIT: "Split",
    ViewMode.LOG_VIEWER: "Logs",
    ViewMode.HELP: "Help",
}


def _window(count: int, selected: int, size: int) -> tuple[int, int]:
    """Slice of `count` rows, `size` long, keeping `selected` visible."""
    if count <= size:
        return 0, count
    start = max(0, min(selected - size // 2, count - size))
    return start, start + size


def _header(state: AppState) -> Text:
    text = Text()
    text.append(" Trilium ", style="bold white on blue")
    text.append(f" {_VIEW_TITLES[state.view]} ", style="bold")
    if state.connected:
        text.append(f" server {state.server_version} ", style="green")
    else:
        text.append(" offline ", style="red")
    if state.loading:
        text.append(" loading: " + ", ".join(sorted(state.loading)) + " ", style="yellow")
    if state.debug:
        text.append(" DEBUG ", style="bold magenta")
    return text


def _footer(state: AppState) -> Text:
    if state.input_mode is not InputMode.NORMAL:
        text = Text(_PROMPTS[state.input_mode], style="bold")
        text.append(state.input_buffer)
        text.append("_", style="blink")
        return text
    if state.status is not None:
        return Text(state.status.text, style=_STATUS_STYLES[state.status.level])
    return Text("? help  / fuzzy  * search  Tab views  e edit  q quit", style="dim")


def _tree_lines(state: AppState, height: int) -> Text:
    rows = state.tree_rows
    if not rows:
        return Text("No notes loaded", style="dim")
    selected = state.selection(ViewMode.TREE)
    start, end = _window(len(rows), selected, height)
    text = Text()
    for i in range(start, end):
        row = rows[i]
        marker = ("▾ " if row.is_expanded else "▸ ") if row.has_children else "  "
        style = "reverse" if i == selected else ""
        if row.note_id == state.current_note_id:
            style = (style + " bold").strip()
        line = Text("  " * row.depth + marker + row.title, style=style)
        if row.note_id in state.bookmarks:
            line.append(" ★", style="yellow")
        text.append_text(line)
        if i < end - 1:
            text.append("\n")
    return text


def _content_text(state: AppState, height: int) -> Text:
    note = state.current_note
    if state.current_note_id is None:
        return Text("No note selected", style="dim")
    if state.content is None:
        if "content" in state.loading:
            return Text("Loading...", style="yellow")
        return Text("(no content)", style="dim")
    body = state.content
    if state.content_format is ContentFormat.HTML:
        body = html_to_markdown(body)
    lines = body.splitlines()
    visible = lines[state.content_scroll : state.content_scroll + height]
    text = Text("\n".join(visible))
    if note is not None and note.is_protected:
        text = Text("[protected]\n", style="red") + text
    return text


def _note_list(state: AppState, view: ViewMode, note_ids: tuple[str, ...], empty: str, height: int) -> RenderableType:
    if not note_ids:
        return Text(empty, style="dim")
    selected = state.selection(view)
    start, end = _window(len(note_ids), selected, height)
    text = Text()
    for i in range(start, end):
        note_id = note_ids[i]
        text.append(state.title_of(note_id), style="reverse" if i == selected else "")
        text.append(f"  {note_id}", style="dim")
        if i < end - 1:
            text.append("\n")
    return text


def _search(state: AppState, height: int) -> RenderableType:
    kind = "fuzzy" if state.search_kind is SearchKind.FUZZY else "server"
    header = Text(f"{kind} search: ", style="bold")
    header.append(state.search_query or "(none)")
    header.append(f"  {len(state.search_results)} result(s)", style="dim")
    if not state.search_results:
        hint = "Type / for fuzzy search or * for server search" if not state.search_query else "No matches"
        return Group(header, Text(hint, style="dim"))

    selected = state.selection(ViewMode.SEARCH)
    start, end = _window(len(state.search_results), selected, max(1, height - 1))
    text = Text()
    for i in range(start, end):
        result = state.search_results[i]
        line = Text(result.note.title, style="reverse" if i == selected else "")
        for s, e in result.highlights:
            line.stylize("bold yellow", s, e)
        line.append(f"  {result.score:.2f}", style="dim")
        text.append_text(line)
        if i < end - 1:
            text.append("\n")
    return Group(header, text)


def _logs(state: AppState, height: int) -> RenderableType:
    table = Table(expand=True, show_edge=False, pad_edge=False)
    table.add_column("Time", no_wrap=True, style="dim")
    table.add_column("Level", no_wrap=True)
    table.add_column("Operation", no_wrap=True)
    table.add_column("Message")
    selected = state.selection(ViewMode.LOG_VIEWER)
    start, end = _window(len(state.logs), selected, max(1, height - 2))
    for entry in state.logs[start:end]:
        table.add_row(
            entry.timestamp.strftime("%H:%M:%S"),
            Text(entry.level, style=_LEVEL_STYLES.get(entry.level, "")),
            entry.operation,
            entry.message,
        )
    if not state.logs:
        return Text("No log entries", style="dim")
    return table


def _help() -> RenderableType:
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Action")
    for key, description in HELP_TEXT:
        table.add_row(key, description)
    return table


def _content_title(note: Note | None) -> str:
    """Note title plus its last modification time, when the server sent one."""
    if note is None:
        return "Content"
    try:
        if note.date_modified:
            modified = parse_local_datetime(note.date_modified)
            return f"{note.title} (modified {modified:%Y-%m-%d %H:%M})"
        if note.utc_date_modified:
            modified = parse_utc_datetime(note.utc_date_modified)
            return f"{note.title} (modified {modified:%Y-%m-%d %H:%M} UTC)"
    except ValidationError:
        return note.title  # malformed dates are left out
    return note.title


def _panel(body: RenderableType, title: str, focused: bool = True) -> Panel:
    return Panel(body, title=title, title_align="left", border_style="blue" if focused else "dim")


def _body(state: AppState, height: int) -> RenderableType:
    inner = max(1, height - 2)
    view = state.view
    note = state.current_note
    content_title = _content_title(note)

    if view is ViewMode.TREE:
        return _panel(_tree_lines(state, inner), "Notes")
    if view is ViewMode.CONTENT:
        return _panel(_content_text(state, inner), content_title)
    if view is ViewMode.SEARCH:
        return _panel(_search(state, inner), "Search")
    if view is ViewMode.RECENT:
        return _panel(_note_list(state, view, state.recent, "No recent notes", inner), "Recent")
    if view is ViewMode.BOOKMARKS:
        return _panel(_note_list(state, view, state.bookmarks, "No bookmarks (press b)", inner), "Bookmarks")
    if view is ViewMode.LOG_VIEWER:
        return _panel(_logs(state, inner), "Logs")
    if view is ViewMode.HELP:
        return _panel(_help(), "Help")

    left = int(round(state.split_ratio * 100))
    split = Layout()
    split.split_row(
        Layout(_panel(_tree_lines(state, inner), "Notes", state.split_pane is SplitPane.TREE), ratio=left),
        Layout(_panel(_content_text(state, inner), content_title, state.split_pane is SplitPane.CONTENT), ratio=100 - left),
    )
    return split


def render(state: AppState, height: int | None = None) -> RenderableType:
    """Full frame: header line, active view, footer line."""
    height = height or DEFAULT_HEIGHT
    body_height = max(3, height - 2)
    layout = Layout(name="root")
    layout.split_column(
        Layout(_header(state), name="header", size=1),
        Layout(_body(state, body_height), name="body"),
        Layout(_footer(state), name="footer", size=1),
    )
    return layout
