"""Hand the terminal to an external editor and read the result back.

While the editor runs it owns the terminal outright: raw mode is released
before the spawn and re-acquired afterwards on every path, and the temp file
holding the content is removed exactly once whatever happens.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import tempfile
import termios
import time
import tty
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Mapping, Protocol, Sequence, TextIO

from ..errors import EditorError
from ..models import Note
from .content_format import (
    ContentFormat,
    ConversionResult,
    extension_for,
    prepare_for_editing,
    prepare_for_saving,
    sanitize_filename,
)

logger = logging.getLogger(__name__)

DEFAULT_EDITOR = "nano"
TEMP_PREFIX = "trilium-edit-"


def resolve_editor(explicit: str | None = None, environ: Mapping[str, str] | None = None) -> list[str]:
    """Editor argv: configured value, then $VISUAL, then $EDITOR, then nano."""
    env = os.environ if environ is None else environ
    for candidate in (explicit, env.get("VISUAL"), env.get("EDITOR")):
        if candidate and candidate.strip():
            return shlex.split(candidate)
    return [DEFAULT_EDITOR]


class TerminalOwner(Protocol):
    def release_raw(self) -> None: ...

    def acquire_raw(self) -> None: ...


@contextmanager
def handed_off(owner: TerminalOwner | None) -> Iterator[None]:
    """Give the terminal away for the duration of the block."""
    if owner is None:
        yield
        return
    owner.release_raw()
    try:
        yield
    finally:
        owner.acquire_raw()


class RawTerminal:
    """Raw-mode ownership of a tty, restorable at any time."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stdin
        self._saved: list | None = None
        self.is_raw = False

    def isatty(self) -> bool:
        try:
            return self.stream.isatty()
        except (AttributeError, ValueError):
            return False

    def fileno(self) -> int:
        return self.stream.fileno()

    def acquire_raw(self) -> None:
        if self.is_raw or not self.isatty():
            return
        fd = self.fileno()
        try:
            self._saved = termios.tcgetattr(fd)
            tty.setraw(fd)
            # keep output processing so "\n" still returns the carriage
            mode = termios.tcgetattr(fd)
            mode[1] |= termios.OPOST
            termios.tcsetattr(fd, termios.TCSADRAIN, mode)
        except termios.error as e:
            logger.warning(f"Could not enter raw mode: {e}")
            return
        self.is_raw = True

    def release_raw(self) -> None:
        if not self.is_raw or self._saved is None:
            return
        try:
            termios.tcsetattr(self.fileno(), termios.TCSADRAIN, self._saved)
        except termios.error as e:
            logger.warning(f"Could not restore terminal mode: {e}")
        self.is_raw = False

    def __enter__(self) -> RawTerminal:
        self.acquire_raw()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_raw()


@dataclass(frozen=True)
class EditorResult:
    content: str
    changed: bool
    cancelled: bool = False
    error: EditorError | None = None


@dataclass(frozen=True)
class EditorSession:
    temp_path: Path
    original_content: str
    original_format: ContentFormat
    editing_format: ContentFormat


Runner = Callable[[Sequence[str]], subprocess.CompletedProcess]


def _run_attached(argv: Sequence[str]) -> subprocess.CompletedProcess:
    # inherits stdin/stdout/stderr, so the editor talks to the real terminal
    return subprocess.run(list(argv), check=False)


class ExternalEditorSession:
    """Launches the editor on a temp copy of some content."""

    def __init__(
        self,
        command: Sequence[str] | None = None,
        *,
        terminal: TerminalOwner | None = None,
        temp_dir: Path | None = None,
        runner: Runner = _run_attached,
    ) -> None:
        self.command = list(command) if command else resolve_editor()
        self.terminal = terminal
        self.temp_dir = temp_dir
        self.runner = runner
        self.active: EditorSession | None = None

    def _temp_file(self, suggested_name: str, fmt: ContentFormat) -> tuple[int, Path]:
        stem = sanitize_filename(suggested_name)[:40] or "note"
        prefix = f"{TEMP_PREFIX}{int(time.time() * 1000)}-{stem}-"
        fd, name = tempfile.mkstemp(prefix=prefix, suffix="." + extension_for(fmt), dir=self.temp_dir)
        return fd, Path(name)

    def open_in_editor(
        self,
        content: str,
        suggested_name: str = "note",
        fmt: ContentFormat = ContentFormat.PLAIN_TEXT,
        *,
        original_format: ContentFormat | None = None,
    ) -> EditorResult:
        """Block until the editor exits and return what it left in the file.

        Raises EditorError if the editor cannot be started or exits non-zero.
        """
        fd, path = self._temp_file(suggested_name, fmt)
        self.active = EditorSession(
            temp_path=path,
            original_content=content,
            original_format=original_format or fmt,
            editing_format=fmt,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)

            argv = [*self.command, str(path)]
            logger.info(f"Launching editor: {shlex.join(argv)}")
            with handed_off(self.terminal):
                try:
                    completed = self.runner(argv)
                except OSError as e:
                    raise EditorError(f"Failed to start editor {self.command[0]!r}: {e}", cause=e) from e

            if completed.returncode != 0:
                raise EditorError(
                    f"Editor exited with code {completed.returncode}",
                    exit_code=completed.returncode,
                )
            with open(path, encoding="utf-8", newline="") as fh:
                edited = fh.read()
        finally:
            path.unlink(missing_ok=True)
            self.active = None

        return EditorResult(content=edited, changed=edited != content)

    def edit_note_content(self, note: Note, content: str) -> tuple[EditorResult, ConversionResult]:
        """Edit a note body in its editing format and convert it back for saving.

        A failed or aborted editor comes back as a cancelled result rather
        than an exception.
        """
        conversion = prepare_for_editing(note, content)
        try:
            result = self.open_in_editor(
                conversion.content,
                note.title or note.note_id,
                conversion.editing_format,
                original_format=conversion.original_format,
            )
        except EditorError as e:
            logger.info(f"Edit of {note.note_id} cancelled: {e}")
            return EditorResult(content=content, changed=False, cancelled=True, error=e), conversion

        if not result.changed:
            return EditorResult(content=content, changed=False), conversion
        return EditorResult(content=prepare_for_saving(conversion, result.content), changed=True), conversion
