"""Routes keys to reducers and schedules the async effects behind them.

The controller is the single owner of `AppState`. Keys go through
`lookup_action`; each action either reduces the state directly or spawns an
effect (tree fetch, search, content load, edit) that runs on a named slot of
the retry gateway. Effect results are reduced back in unless the gateway
reports them stale or cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Protocol

from ..config import TuiConfig
from ..core.content_format import detect_format
from ..core.editor import ExternalEditorSession
from ..core.history import StatusLevel, status
from ..core.retry import RetryableApiGateway, RetryOutcome
from ..core.search import fuzzy_search, search_server
from ..core.tree import NoteTreeStore
from ..errors import TriliumError, ValidationError
from ..logs import LogBuffer, set_debug
from ..models import AppInfo, Branch, Note, SearchHit, validate_entity_id
from . import state as st
from .keys import Action, lookup_action
from .state import AppState, InputMode, SearchKind, SplitPane, ViewMode

logger = logging.getLogger(__name__)

ROOT_NOTE_ID = "root"


class NoteApi(Protocol):
    async def get_app_info(self) -> AppInfo: ...

    async def get_note(self, note_id: str) -> Note: ...

    async def get_child_notes(self, parent_id: str) -> list[Note]: ...

    async def get_note_content(self, note_id: str) -> str: ...

    async def update_note_content(self, note_id: str, content: str) -> None: ...

    async def search_notes(
        self, query: str, fast_search: bool = ..., include_archived: bool = ..., limit: int = ...
    ) -> list[SearchHit]: ...

    async def update_branch(self, branch_id: str, *, is_expanded: bool) -> Branch: ...


class ViewModeController:
    """Finite state machine over view modes, driving the core services."""

    def __init__(
        self,
        api: NoteApi,
        *,
        config: TuiConfig | None = None,
        editor: ExternalEditorSession | None = None,
        log_buffer: LogBuffer | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_change: Callable[[], None] | None = None,
        debug: bool = False,
    ) -> None:
        self.api = api
        self.config = config or TuiConfig()
        self.editor = editor or ExternalEditorSession(command=None)
        self.log_buffer = log_buffer
        self.clock = clock
        self.on_change = on_change
        self.store = NoteTreeStore(api)
        self.gateway = RetryableApiGateway(
            max_attempts=self.config.max_attempts,
            base_delay=self.config.base_delay,
            multiplier=self.config.backoff_multiplier,
        )
        self.state = AppState(split_ratio=self.config.default_split_ratio, debug=debug)
        self._tasks: set[asyncio.Task] = set()
        self._log_version = -1

    # ---- plumbing ----

    def _set(self, new_state: AppState) -> None:
        if new_state is self.state:
            return
        self.state = new_state
        if self.on_change is not None:
            self.on_change()

    def _status(self, text: str, level: StatusLevel = StatusLevel.INFO) -> None:
        message = status(text, level, now=self.clock(), timeout=self.config.status_timeout)
        self._set(st.set_status(self.state, message))

    def _error(self, error: BaseException, context: str) -> None:
        logger.error(f"{context}: {error}")
        text = error.message if isinstance(error, TriliumError) else str(error)
        self._status(f"{context}: {text}", StatusLevel.ERROR)

    def _spawn(self, slot: str, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        self.gateway.registry.attach_task(slot, task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._error(error, "Unexpected failure")

    async def idle(self) -> None:
        """Wait until every spawned effect has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(
        self,
        slot: str,
        label: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> RetryOutcome:
        self._set(st.set_loading(self.state, slot, True))

        def on_retry(attempt: int, error: BaseException) -> None:
            self._status(
                f"{label} failed, retrying ({attempt}/{self.gateway.max_attempts - 1})...",
                StatusLevel.WARNING,
            )

        outcome = await self.gateway.execute(slot, operation, on_retry=on_retry)
        if outcome.stale:
            logger.debug(f"Dropping stale {slot} result (op {outcome.op_id})")
            return outcome
        self._set(st.set_loading(self.state, slot, False))
        if outcome.cancelled:
            logger.debug(f"{slot} cancelled")
        elif outcome.error is not None:
            self._error(outcome.error, label)
        return outcome

    def _sync_tree(self) -> None:
        self._set(st.with_tree(self.state, self.store.snapshot, self.store.flatten(), self.store.focus))

    # ---- lifecycle ----

    async def start(self) -> None:
        """Check the server and load the top of the tree."""
        outcome = await self._run("connect", "Connecting", self.api.get_app_info)
        if outcome.ok:
            info: AppInfo = outcome.value
            self._set(replace(self.state, connected=True, server_version=info.app_version))
            logger.info(f"Connected to Trilium {info.app_version}")
        await self.reload_tree()

    async def reload_tree(self) -> None:
        async def load() -> None:
            await self.store.load_root(ROOT_NOTE_ID)
            await self.store.expand(ROOT_NOTE_ID)

        outcome = await self._run("tree", "Loading tree", load)
        if outcome.ok:
            self._sync_tree()

    def tick(self) -> None:
        """Housekeeping between key presses: expire status, pull new logs."""
        self._set(st.expire_status(self.state, self.clock()))
        self.sync_logs()

    def sync_logs(self) -> None:
        if self.log_buffer is None or self.log_buffer.version == self._log_version:
            return
        self._log_version = self.log_buffer.version
        self._set(st.with_logs(self.state, self.log_buffer.entries()))

    def shutdown(self) -> None:
        self.gateway.cancel_all()
        for task in list(self._tasks):
            task.cancel()

    # ---- input ----

    def dispatch(self, key: str) -> None:
        action = lookup_action(key, self.state)
        if action is None:
            return
        try:
            self.handle(action, key)
        except TriliumError as e:
            self._error(e, action.value.replace("_", " ").capitalize())

    def handle(self, action: Action, key: str = "") -> None:
        if self.state.input_mode is not InputMode.NORMAL:
            self._handle_prompt(action, key)
            return

        handler = getattr(self, f"_on_{action.value}", None)
        if handler is not None:
            handler()

    def _handle_prompt(self, action: Action, key: str) -> None:
        s = self.state
        if action is Action.QUIT:
            self._on_quit()
        elif action is Action.INPUT_CANCEL:
            if s.input_mode in (InputMode.SEARCH, InputMode.FUZZY_SEARCH):
                self.gateway.cancel("search")
            self._set(st.end_input(s))
        elif action is Action.INPUT_BACKSPACE:
            self._set(st.edit_input(s, s.input_buffer[:-1]))
            self._after_input_change()
        elif action is Action.INPUT_CHAR:
            self._set(st.edit_input(s, s.input_buffer + (" " if key == "space" else key)))
            self._after_input_change()
        elif action is Action.INPUT_SUBMIT:
            mode, text = s.input_mode, s.input_buffer
            self._set(st.end_input(s))
            if mode is InputMode.FUZZY_SEARCH:
                self.run_fuzzy_search(text)
            elif mode is InputMode.SEARCH:
                self._spawn("search", self.run_server_search(text))
            elif mode is InputMode.COMMAND:
                self.run_command(text)

    def _after_input_change(self) -> None:
        if self.state.input_mode is InputMode.FUZZY_SEARCH:
            self.run_fuzzy_search(self.state.input_buffer)

    # ---- view switching ----

    def _enter(self, view: ViewMode) -> None:
        """Switch to `view`, cancelling work the old view no longer shows."""
        leaving = self.state.view
        focused = st.focused_note_id(self.state)
        self._set(st.switch_view(self.state, view))
        self._on_view_left(leaving)
        if view is ViewMode.CONTENT and focused is not None and focused != self.state.current_note_id:
            self.show_note(focused)
        elif view in (ViewMode.CONTENT, ViewMode.SPLIT) and self.state.content is None:
            target = self.state.current_note_id or st.focused_note_id(self.state, ViewMode.TREE)
            if target is not None:
                self.show_note(target, push_history=self.state.current_note_id is None)

    def _on_view_left(self, view: ViewMode) -> None:
        if view is self.state.view:
            return
        if view is ViewMode.SEARCH:
            self.gateway.cancel("search")
        if view in (ViewMode.CONTENT, ViewMode.SPLIT) and self.state.view not in (ViewMode.CONTENT, ViewMode.SPLIT):
            self.gateway.cancel("content")

    def _on_next_view(self) -> None:
        self._enter(st.cycle_view(self.state, 1).view)

    def _on_prev_view(self) -> None:
        self._enter(st.cycle_view(self.state, -1).view)

    def _on_help(self) -> None:
        self._toggle(ViewMode.HELP)

    def _on_logs(self) -> None:
        self.sync_logs()
        self._toggle(ViewMode.LOG_VIEWER)

    def _on_recent(self) -> None:
        self._toggle(ViewMode.RECENT)

    def _on_bookmarks(self) -> None:
        self._toggle(ViewMode.BOOKMARKS)

    def _on_split(self) -> None:
        self._toggle(ViewMode.SPLIT)

    def _toggle(self, view: ViewMode) -> None:
        self._enter(st.toggle_view(self.state, view).view)

    def _on_escape(self) -> None:
        cancelled = [slot for slot in ("search", "content", "edit") if self.gateway.cancel(slot)]
        if cancelled:
            for slot in cancelled:
                self._set(st.set_loading(self.state, slot, False))
            self._status("Cancelled")
            return
        leaving = self.state.view
        self._set(st.go_back(self.state))
        self._on_view_left(leaving)

    def _on_quit(self) -> None:
        logger.info("Quit requested")
        self.shutdown()
        self._set(replace(self.state, running=False))

    # ---- movement ----

    def _in_content_pane(self) -> bool:
        s = self.state
        return s.view is ViewMode.CONTENT or (s.view is ViewMode.SPLIT and s.split_pane is SplitPane.CONTENT)

    def _move(self, delta: int) -> None:
        if self._in_content_pane():
            self._set(st.scroll_content(self.state, delta))
            return
        if self.state.view in (ViewMode.TREE, ViewMode.SPLIT):
            self.store.set_focus(self.state.selection(ViewMode.TREE))
            self.store.move_focus(delta)
            self._sync_tree()
            return
        self._set(st.move_selection(self.state, delta))

    def _on_move_down(self) -> None:
        self._move(1)

    def _on_move_up(self) -> None:
        self._move(-1)

    def _on_page_down(self) -> None:
        self._set(st.scroll_content(self.state, st.PAGE_SIZE))

    def _on_page_up(self) -> None:
        self._set(st.scroll_content(self.state, -st.PAGE_SIZE))

    def _on_first(self) -> None:
        if self._in_content_pane():
            self._set(st.scroll_content(self.state, -self.state.content_scroll))
        else:
            self._set(st.set_selection(self.state, self.state.view, 0))

    def _on_last(self) -> None:
        if self._in_content_pane():
            self._set(st.scroll_content(self.state, st.content_line_count(self.state)))
        else:
            self._set(st.select_last(self.state))

    # ---- tree ----

    def _focused_tree_id(self) -> str | None:
        return st.focused_note_id(self.state, ViewMode.TREE)

    def _on_expand(self) -> None:
        if self.state.view is ViewMode.SPLIT:
            self._set(st.switch_pane(self.state, SplitPane.CONTENT))
            return
        node_id = self._focused_tree_id()
        if self.state.view is ViewMode.TREE and node_id is not None:
            self._spawn(f"expand:{node_id}", self.expand(node_id))

    def _on_collapse(self) -> None:
        if self.state.view is ViewMode.SPLIT:
            self._set(st.switch_pane(self.state, SplitPane.TREE))
            return
        node_id = self._focused_tree_id()
        if self.state.view is not ViewMode.TREE or node_id is None:
            return
        self.store.set_focus(self.state.selection(ViewMode.TREE))
        if self.store.collapse(node_id):
            self._sync_branch(node_id, False)
        else:
            parent = self.store.parent_of(node_id)
            index = self.store.index_of(parent) if parent else None
            if index is not None:
                self.store.set_focus(index)
        self._sync_tree()

    def _on_toggle(self) -> None:
        node_id = self._focused_tree_id()
        if self.state.view not in (ViewMode.TREE, ViewMode.SPLIT) or node_id is None:
            return
        self._spawn(f"expand:{node_id}", self.toggle(node_id))

    async def toggle(self, node_id: str) -> None:
        async def flip() -> bool:
            self.store.set_focus(self.state.selection(ViewMode.TREE))
            return await self.store.toggle(node_id)

        outcome = await self._run(f"expand:{node_id}", f"Toggling {self.state.title_of(node_id)}", flip)
        if not outcome.ok:
            return
        node = self.store.snapshot.get(node_id)
        expanded = node is not None and node.is_expanded
        if expanded:
            self.store.set_focus(self.state.selection(ViewMode.TREE))
        self._sync_tree()
        if outcome.value:
            self._sync_branch(node_id, expanded)

    async def expand(self, node_id: str) -> None:
        note = self.state.notes.get(node_id)
        label = f"Loading children of {note.title if note else node_id}"
        outcome = await self._run(f"expand:{node_id}", label, lambda: self.store.expand(node_id))
        if outcome.ok:
            self.store.set_focus(self.state.selection(ViewMode.TREE))
            self._sync_tree()
            if outcome.value:
                self._sync_branch(node_id, True)

    def _sync_branch(self, node_id: str, expanded: bool) -> None:
        """Mirror expansion to the server when configured to."""
        if not self.config.sync_branch_expansion:
            return
        parent = self.store.parent_of(node_id)
        note = self.state.notes.get(node_id)
        branch_id = note.branch_id_under(parent) if note is not None and parent else None
        if branch_id is None:
            return
        self._spawn("branch", self._run("branch", "Saving expansion", lambda: self.api.update_branch(branch_id, is_expanded=expanded)))

    # ---- notes and content ----

    def _on_open(self) -> None:
        if self.state.view in (ViewMode.CONTENT, ViewMode.HELP, ViewMode.LOG_VIEWER):
            return
        note_id = st.focused_note_id(self.state)
        if note_id is None:
            return
        if self.state.view is not ViewMode.SPLIT:
            self._set(st.switch_view(self.state, ViewMode.CONTENT))
        self.show_note(note_id)

    def show_note(self, note_id: str, *, push_history: bool = True) -> None:
        self._set(st.open_note(self.state, note_id, push_history=push_history))
        self._spawn("content", self.load_content(note_id))

    async def load_content(self, note_id: str) -> None:
        async def fetch() -> tuple[Note, str]:
            note = await self.api.get_note(note_id)
            return note, await self.api.get_note_content(note_id)

        outcome = await self._run("content", f"Loading {self.state.title_of(note_id)}", fetch)
        if outcome.ok:
            note, content = outcome.value
            self._set(st.content_loaded(self.state, note, content, detect_format(note, content)))

    def _on_back(self) -> None:
        self._step_history(forward=False)

    def _on_forward(self) -> None:
        self._step_history(forward=True)

    def _step_history(self, forward: bool) -> None:
        moved = st.history_step(self.state, forward)
        if moved is self.state:
            self._status("No further history")
            return
        self._set(moved)
        if moved.view not in (ViewMode.CONTENT, ViewMode.SPLIT):
            self._set(st.switch_view(self.state, ViewMode.CONTENT))
        self.show_note(moved.history.current, push_history=False)

    def _on_bookmark(self) -> None:
        note_id = self._target_note_id()
        if note_id is None:
            return
        new_state, added = st.bookmark(self.state, note_id)
        self._set(new_state)
        title = self.state.title_of(note_id)
        self._status(f"Bookmarked {title}" if added else f"Removed bookmark {title}", StatusLevel.SUCCESS)

    def _target_note_id(self) -> str | None:
        if self.state.view is ViewMode.CONTENT or self._in_content_pane():
            return self.state.current_note_id
        return st.focused_note_id(self.state)

    def _on_shrink_split(self) -> None:
        self._set(st.adjust_split(self.state, -st.SPLIT_STEP))

    def _on_grow_split(self) -> None:
        self._set(st.adjust_split(self.state, st.SPLIT_STEP))

    # ---- editing ----

    def _on_edit(self) -> None:
        note_id = self._target_note_id()
        if note_id is None:
            return
        self._spawn("edit", self.edit(note_id))

    async def edit(self, note_id: str) -> None:
        async def fetch() -> tuple[Note, str]:
            note = await self.api.get_note(note_id)
            return note, await self.api.get_note_content(note_id)

        outcome = await self._run("edit", "Loading note for editing", fetch)
        if not outcome.ok:
            return
        note, content = outcome.value

        # blocks the loop until the editor exits
        result, _ = self.editor.edit_note_content(note, content)
        if result.cancelled:
            self._status(f"Edit cancelled ({result.error.message})" if result.error else "Edit cancelled", StatusLevel.WARNING)
            return
        if not result.changed:
            self._status("No changes")
            return

        saved = await self._run("save", f"Saving {note.title}", lambda: self.api.update_note_content(note_id, result.content))
        if saved.ok:
            self._status(f"Saved {note.title}", StatusLevel.SUCCESS)
            if self.state.current_note_id == note_id:
                self._set(st.content_loaded(self.state, note, result.content, detect_format(note, result.content)))

    # ---- search and commands ----

    def _on_fuzzy_search(self) -> None:
        self._enter(ViewMode.SEARCH)
        self._set(st.begin_input(self.state, InputMode.FUZZY_SEARCH))

    def _on_server_search(self) -> None:
        self._enter(ViewMode.SEARCH)
        self._set(st.begin_input(self.state, InputMode.SEARCH))

    def _on_command(self) -> None:
        self._set(st.begin_input(self.state, InputMode.COMMAND))

    def run_fuzzy_search(self, query: str) -> None:
        results = fuzzy_search(query, self.store.loaded_notes(), limit=self.config.fuzzy_search_limit)
        self._set(st.with_search_results(self.state, SearchKind.FUZZY, query, results))

    async def run_server_search(self, query: str) -> None:
        if not query.strip():
            self._set(st.with_search_results(self.state, SearchKind.SERVER, query, ()))
            return
        outcome = await self._run(
            "search",
            f"Searching {query!r}",
            lambda: search_server(self.api, query, limit=self.config.server_search_limit),
        )
        if outcome.ok:
            self._set(st.with_search_results(self.state, SearchKind.SERVER, query, outcome.value))
            self._status(f"{len(outcome.value)} result(s) for {query!r}")

    def run_command(self, text: str) -> None:
        parts = text.split()
        if not parts:
            return
        name, args = parts[0].lower(), parts[1:]
        if name in ("q", "quit"):
            self._on_quit()
        elif name == "refresh":
            self._on_refresh()
        elif name == "goto":
            if len(args) != 1:
                raise ValidationError("Usage: goto <noteId>", field="noteId")
            note_id = validate_entity_id(args[0])
            if self.state.view is not ViewMode.SPLIT:
                self._set(st.switch_view(self.state, ViewMode.CONTENT))
            self.show_note(note_id)
        else:
            self._status(f"Unknown command: {name}", StatusLevel.WARNING)

    # ---- misc ----

    def _on_refresh(self) -> None:
        self.gateway.cancel_all()
        self._set(st.reset_for_refresh(self.state))
        self._spawn("tree", self.reload_tree())
        if self.state.current_note_id is not None:
            self._spawn("content", self.load_content(self.state.current_note_id))
        self._status("Refreshing...")

    def _on_clear_logs(self) -> None:
        if self.log_buffer is not None:
            self.log_buffer.clear()
            self.sync_logs()
        else:
            self._set(st.with_logs(self.state, ()))

    def _on_toggle_debug(self) -> None:
        enabled = not self.state.debug
        set_debug(enabled)
        self._set(replace(self.state, debug=enabled))
        self._status(f"Debug logging {'on' if enabled else 'off'}")
