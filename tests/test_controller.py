"""Scenario tests for ViewModeController, driven key by key."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from conftest import FakeApi
from trilium_tui.config import TuiConfig
from trilium_tui.core.content_format import ContentFormat
from trilium_tui.core.editor import ExternalEditorSession
from trilium_tui.core.history import StatusLevel
from trilium_tui.errors import NetworkError, NotFoundError
from trilium_tui.logs import LogBuffer
from trilium_tui.models import SearchHit
from trilium_tui.tui.controller import ViewModeController
from trilium_tui.tui.keys import decode_keys
from trilium_tui.tui.state import InputMode, SearchKind, ViewMode


def _controller(api: FakeApi, tmp_path: Path, **kwargs) -> ViewModeController:
    config = kwargs.pop("config", TuiConfig(base_delay=0.001))
    editor = kwargs.pop("editor", ExternalEditorSession(["true"], temp_dir=tmp_path))
    return ViewModeController(api, config=config, editor=editor, clock=lambda: 0.0, **kwargs)


def _press(controller: ViewModeController, *keys: str) -> None:
    for key in keys:
        controller.dispatch(key)


def _type(controller: ViewModeController, text: str) -> None:
    _press(controller, *decode_keys(text))


def _titles(controller: ViewModeController) -> list[str]:
    return [row.title for row in controller.state.tree_rows]


def test_start_connects_and_shows_top_level(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)
    asyncio.run(controller.start())

    assert controller.state.connected
    assert controller.state.server_version == "0.63.7"
    assert _titles(controller) == ["root", "A", "B"]
    assert controller.state.loading == frozenset()


def test_expand_collapse_and_parent_focus(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "l")
        await controller.idle()
        assert _titles(controller) == ["root", "A", "A1", "A2", "B"]

        _press(controller, "j", "h")  # A1 is a leaf: focus moves to A
        assert controller.state.selection(ViewMode.TREE) == 1

        _press(controller, "h")
        assert _titles(controller) == ["root", "A", "B"]

        _press(controller, "space")
        await controller.idle()
        assert _titles(controller) == ["root", "A", "A1", "A2", "B"]

    asyncio.run(scenario())
    assert fake_api.child_fetches["noteA"] == 1


def test_open_note_loads_content_and_records_history(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "enter")
        await controller.idle()

    asyncio.run(scenario())
    state = controller.state
    assert state.view is ViewMode.CONTENT
    assert state.current_note_id == "noteA"
    assert state.content == "<p>Hello <strong>A</strong></p>"
    assert state.content_format is ContentFormat.HTML
    assert state.history.entries == ("noteA",)
    assert state.recent == ("noteA",)


def test_tab_into_content_loads_focused_note(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "j", "tab")
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.view is ViewMode.CONTENT
    assert controller.state.current_note_id == "noteB"
    assert controller.state.content == "plain body of B"


def test_history_back_and_forward(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        controller.show_note("noteA")
        controller.show_note("noteB")
        await controller.idle()
        _press(controller, "[")
        await controller.idle()
        assert controller.state.current_note_id == "noteA"
        _press(controller, "]")
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.current_note_id == "noteB"
    assert controller.state.content == "plain body of B"
    assert controller.state.history.entries == ("noteA", "noteB")


def test_fuzzy_search_updates_live_and_opens_result(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "l")
        await controller.idle()

        _press(controller, "/")
        assert controller.state.view is ViewMode.SEARCH
        assert controller.state.input_mode is InputMode.FUZZY_SEARCH

        _type(controller, "ax")
        assert controller.state.search_results == ()
        _press(controller, "backspace")
        assert [r.note.title for r in controller.state.search_results] == ["A", "A1", "A2"]

        _type(controller, "1")
        _press(controller, "enter")
        assert controller.state.input_mode is InputMode.NORMAL
        assert [r.note.title for r in controller.state.search_results] == ["A1"]

        _press(controller, "enter")
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.current_note_id == "noteA1"
    assert controller.state.content_format is ContentFormat.MARKDOWN


def test_server_search(fake_api: FakeApi, tmp_path: Path) -> None:
    fake_api.hits = [
        SearchHit(note_id="noteA", title="A", score=1.0, position=0),
        SearchHit(note_id="noteB", title="B", score=2.0, position=1),
    ]
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "*")
        _type(controller, "b")
        assert fake_api.search_calls == []  # nothing until submitted
        _press(controller, "enter")
        await controller.idle()

    asyncio.run(scenario())
    state = controller.state
    assert state.search_kind is SearchKind.SERVER
    assert [r.note.note_id for r in state.search_results] == ["noteB", "noteA"]
    assert fake_api.search_calls[0]["limit"] == 100


class GatedApi(FakeApi):
    """Holds the first content request until `gate` is set."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.gate: asyncio.Event | None = None
        self.content_calls = 0

    async def get_note_content(self, note_id: str) -> str:
        self.content_calls += 1
        content = await super().get_note_content(note_id)
        if self.content_calls == 1 and self.gate is not None:
            await self.gate.wait()
        return content


def test_stale_content_is_dropped(sample_notes, tmp_path: Path) -> None:
    api = GatedApi(sample_notes, contents={"noteA": "old"})
    controller = _controller(api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        api.gate = asyncio.Event()
        controller.show_note("noteA")
        await asyncio.sleep(0.01)
        api.contents["noteA"] = "new"
        controller.show_note("noteA")
        await asyncio.sleep(0.01)
        api.gate.set()
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.content == "new"
    assert api.content_calls == 2


def test_escape_cancels_pending_load(sample_notes, tmp_path: Path) -> None:
    api = GatedApi(sample_notes, contents={"noteA": "body"})
    controller = _controller(api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        api.gate = asyncio.Event()
        controller.show_note("noteA")
        await asyncio.sleep(0.01)
        assert "content" in controller.state.loading
        _press(controller, "esc")
        assert "content" not in controller.state.loading
        api.gate.set()
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.content is None
    assert controller.state.status.text == "Cancelled"


def test_errors_become_status_messages(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        controller.show_note("gone")
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.status.level is StatusLevel.ERROR
    assert "gone" in controller.state.status.text
    assert controller.state.running


def test_transient_failure_is_retried(sample_notes, tmp_path: Path) -> None:
    class Flaky(FakeApi):
        failures = 1

        async def get_note_content(self, note_id: str) -> str:
            if self.failures:
                self.failures -= 1
                raise NetworkError("connection reset")
            return await super().get_note_content(note_id)

    api = Flaky(sample_notes, contents={"noteB": "B body"})
    controller = _controller(api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        controller.show_note("noteB")
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.content == "B body"
    assert controller.state.status.level is StatusLevel.WARNING


def test_edit_converts_and_saves(fake_api: FakeApi, tmp_path: Path) -> None:
    def runner(argv):
        Path(argv[-1]).write_text("Hello **B**", encoding="utf-8")

        class Done:
            returncode = 0

        return Done()

    editor = ExternalEditorSession(["ed"], temp_dir=tmp_path, runner=runner)
    controller = _controller(fake_api, tmp_path, editor=editor)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "e")
        await controller.idle()

    asyncio.run(scenario())
    assert fake_api.saved == {"noteA": "<p>Hello <strong>B</strong></p>"}
    assert controller.state.status.level is StatusLevel.SUCCESS


def test_failed_editor_is_reported_as_cancelled(fake_api: FakeApi, tmp_path: Path) -> None:
    editor = ExternalEditorSession(["false"], temp_dir=tmp_path)
    controller = _controller(fake_api, tmp_path, editor=editor)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "e")
        await controller.idle()

    asyncio.run(scenario())
    assert fake_api.saved == {}
    assert controller.state.status.text.startswith("Edit cancelled")
    assert list(tmp_path.glob("trilium-edit-*")) == []


def test_goto_command(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, ":")
        _type(controller, "goto noteB")
        _press(controller, "enter")
        await controller.idle()
        assert controller.state.content == "plain body of B"

        _press(controller, ":")
        _type(controller, "goto x")
        _press(controller, "enter")

    asyncio.run(scenario())
    assert controller.state.status.level is StatusLevel.ERROR
    assert controller.state.input_mode is InputMode.NORMAL


def test_bookmarks_and_recent_views(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "b", "j", "b", "B")

    asyncio.run(scenario())
    assert controller.state.bookmarks == ("noteA", "noteB")
    assert controller.state.view is ViewMode.BOOKMARKS

    _press(controller, "B")
    assert controller.state.view is ViewMode.TREE


def test_split_ratio_and_panes(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "s", ">", ">", "l")
        await controller.idle()

    asyncio.run(scenario())
    state = controller.state
    assert state.view is ViewMode.SPLIT
    assert state.split_ratio == 0.4
    assert state.split_pane.value == "content"
    assert state.current_note_id == "root"


def test_log_viewer_and_clear(fake_api: FakeApi, tmp_path: Path) -> None:
    buffer = LogBuffer(capacity=10)
    buffer.emit(logging.makeLogRecord({"name": "trilium_tui.core.tree", "levelname": "INFO", "msg": "hello"}))
    controller = _controller(fake_api, tmp_path, log_buffer=buffer)

    _press(controller, "ctrl+l")
    assert controller.state.view is ViewMode.LOG_VIEWER
    assert [e.message for e in controller.state.logs] == ["hello"]
    assert controller.state.logs[0].operation == "core.tree"

    _press(controller, "ctrl+k")
    assert controller.state.logs == ()
    assert buffer.entries() == ()


def test_refresh_reloads_tree_and_resets_positions(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "j", "r")
        await controller.idle()

    asyncio.run(scenario())
    assert fake_api.child_fetches["root"] == 2
    assert controller.state.selection(ViewMode.TREE) == 0


def test_branch_expansion_sync(fake_api: FakeApi, tmp_path: Path) -> None:
    config = TuiConfig(base_delay=0.001, sync_branch_expansion=True)
    controller = _controller(fake_api, tmp_path, config=config)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "l")
        await controller.idle()
        _press(controller, "h")
        await controller.idle()

    asyncio.run(scenario())
    assert fake_api.branch_updates == [("root_noteA", True), ("root_noteA", False)]


def test_space_toggles_and_syncs_branch(fake_api: FakeApi, tmp_path: Path) -> None:
    config = TuiConfig(base_delay=0.001, sync_branch_expansion=True)
    controller = _controller(fake_api, tmp_path, config=config)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "space")
        await controller.idle()
        assert _titles(controller) == ["root", "A", "A1", "A2", "B"]

        _press(controller, "j", "k", "space")
        await controller.idle()
        assert _titles(controller) == ["root", "A", "B"]
        assert controller.state.selection(ViewMode.TREE) == 1

        _press(controller, "space")
        await controller.idle()

    asyncio.run(scenario())
    assert _titles(controller) == ["root", "A", "A1", "A2", "B"]
    assert fake_api.child_fetches["noteA"] == 1
    assert fake_api.branch_updates == [("root_noteA", True), ("root_noteA", False), ("root_noteA", True)]


def test_leaving_search_cancels_pending_server_search(sample_notes, tmp_path: Path) -> None:
    class SlowSearch(FakeApi):
        gate: asyncio.Event | None = None

        async def search_notes(self, *args, **kwargs):
            await self.gate.wait()
            return await super().search_notes(*args, **kwargs)

    api = SlowSearch(sample_notes)
    api.hits = [SearchHit(note_id="noteB", title="B")]
    controller = _controller(api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        api.gate = asyncio.Event()
        _press(controller, "*")
        _type(controller, "b")
        _press(controller, "enter")
        await asyncio.sleep(0.01)
        assert "search" in controller.state.loading

        _press(controller, "tab")
        assert controller.state.view is ViewMode.RECENT
        api.gate.set()
        await controller.idle()

    asyncio.run(scenario())
    assert controller.state.search_results == ()
    assert "search" not in controller.state.loading
    assert len(api.search_calls) == 1


def test_quit(fake_api: FakeApi, tmp_path: Path) -> None:
    controller = _controller(fake_api, tmp_path)
    _press(controller, "q")
    assert controller.state.running is False


def test_missing_child_error_keeps_node_collapsed(fake_api: FakeApi, tmp_path: Path) -> None:
    fake_api.child_errors["noteA"] = NotFoundError("Not found: noteA", status=404)
    controller = _controller(fake_api, tmp_path)

    async def scenario() -> None:
        await controller.start()
        _press(controller, "j", "l")
        await controller.idle()

    asyncio.run(scenario())
    assert _titles(controller) == ["root", "A", "B"]
    assert controller.state.status.level is StatusLevel.ERROR
