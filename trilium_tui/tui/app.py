"""Interactive loop: raw tty input, rich Live output, one asyncio loop."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from rich.console import Console
from rich.live import Live

from ..api import EtapiClient
from ..config import Config
from ..core.editor import ExternalEditorSession, RawTerminal, resolve_editor
from ..logs import LogBuffer
from .controller import ViewModeController
from .keys import decode_keys
from .render import render

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.25


class LiveTerminal:
    """Terminal owner that also parks the Live display and the key reader.

    Used as the editor's `TerminalOwner`: releasing hands the screen, the
    tty mode and stdin to the child process, acquiring takes them back.
    """

    def __init__(self, raw: RawTerminal, live: Live, loop: asyncio.AbstractEventLoop, on_input) -> None:
        self.raw = raw
        self.live = live
        self.loop = loop
        self.on_input = on_input
        self.reading = False

    def start_reading(self) -> None:
        if not self.reading and self.raw.isatty():
            self.loop.add_reader(self.raw.fileno(), self.on_input)
            self.reading = True

    def stop_reading(self) -> None:
        if self.reading:
            self.loop.remove_reader(self.raw.fileno())
            self.reading = False

    def release_raw(self) -> None:
        self.stop_reading()
        self.live.stop()
        self.raw.release_raw()

    def acquire_raw(self) -> None:
        self.raw.acquire_raw()
        self.live.start(refresh=True)
        self.start_reading()


class TuiApp:
    def __init__(self, config: Config, *, log_buffer: LogBuffer | None = None, debug: bool = False) -> None:
        self.config = config
        self.log_buffer = log_buffer
        self.debug = debug
        self.console = Console()
        self.raw = RawTerminal(sys.stdin)
        self._quit = asyncio.Event()
        self._dirty = True
        self.live: Live | None = None
        self.terminal: LiveTerminal | None = None
        self.controller: ViewModeController | None = None

    def _mark_dirty(self) -> None:
        if self.controller is not None and not self.controller.state.running:
            self._quit.set()
        if not self._dirty:
            self._dirty = True
            asyncio.get_running_loop().call_soon(self._refresh)

    def _refresh(self) -> None:
        if not self._dirty or self.live is None or self.controller is None:
            return
        self._dirty = False
        self.live.update(render(self.controller.state, self.console.size.height), refresh=True)

    def _on_input(self) -> None:
        try:
            data = os.read(self.raw.fileno(), 1024)
        except OSError as e:
            logger.error(f"Reading keyboard failed: {e}")
            self._quit.set()
            return
        if not data:
            self._quit.set()
            return
        for key in decode_keys(data.decode("utf-8", errors="replace")):
            self.controller.dispatch(key)
        self._refresh()

    async def _ticker(self) -> None:
        while not self._quit.is_set():
            await asyncio.sleep(TICK_SECONDS)
            self.controller.tick()
            self._refresh()

    async def run(self) -> None:
        if not self.raw.isatty():
            raise RuntimeError("trilium-tui needs an interactive terminal")

        profile = self.config.profile
        loop = asyncio.get_running_loop()
        async with EtapiClient(profile.server_url, profile.api_token) as api:
            self.live = Live(console=self.console, screen=True, auto_refresh=False, transient=True)
            self.terminal = LiveTerminal(self.raw, self.live, loop, self._on_input)
            editor = ExternalEditorSession(resolve_editor(self.config.tui.editor), terminal=self.terminal)
            self.controller = ViewModeController(
                api,
                config=self.config.tui,
                editor=editor,
                log_buffer=self.log_buffer,
                on_change=self._mark_dirty,
                debug=self.debug,
            )

            with self.raw, self.live:
                self.terminal.start_reading()
                ticker = asyncio.ensure_future(self._ticker())
                startup = asyncio.ensure_future(self.controller.start())
                try:
                    self._refresh()
                    await self._quit.wait()
                finally:
                    self.terminal.stop_reading()
                    ticker.cancel()
                    startup.cancel()
                    self.controller.shutdown()
                    await asyncio.gather(ticker, startup, return_exceptions=True)
                    await self.controller.idle()


def run_app(config: Config, *, log_buffer: LogBuffer | None = None, debug: bool = False) -> None:
    app = TuiApp(config, log_buffer=log_buffer, debug=debug)
    asyncio.run(app.run())
