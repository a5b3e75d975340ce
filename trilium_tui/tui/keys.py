"""Key decoding and the keybinding table.

Keys are plain strings: a printable character stands for itself, everything
else has a name such as ``"enter"``, ``"up"``, ``"shift+tab"`` or
``"ctrl+l"``.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from .state import AppState, InputMode, ViewMode


class Action(str, Enum):
    MOVE_DOWN = "move_down"
    MOVE_UP = "move_up"
    FIRST = "first"
    LAST = "last"
    OPEN = "open"
    EXPAND = "expand"
    COLLAPSE = "collapse"
    TOGGLE = "toggle"
    NEXT_VIEW = "next_view"
    PREV_VIEW = "prev_view"
    FUZZY_SEARCH = "fuzzy_search"
    SERVER_SEARCH = "server_search"
    COMMAND = "command"
    HELP = "help"
    LOGS = "logs"
    CLEAR_LOGS = "clear_logs"
    TOGGLE_DEBUG = "toggle_debug"
    EDIT = "edit"
    BOOKMARK = "bookmark"
    RECENT = "recent"
    BOOKMARKS = "bookmarks"
    SPLIT = "split"
    SHRINK_SPLIT = "shrink_split"
    GROW_SPLIT = "grow_split"
    BACK = "back"
    FORWARD = "forward"
    PAGE_UP = "page_up"
    PAGE_DOWN = "page_down"
    REFRESH = "refresh"
    ESCAPE = "escape"
    QUIT = "quit"
    # prompt editing
    INPUT_CHAR = "input_char"
    INPUT_BACKSPACE = "input_backspace"
    INPUT_SUBMIT = "input_submit"
    INPUT_CANCEL = "input_cancel"


NORMAL_BINDINGS: dict[str, Action] = {
    "j": Action.MOVE_DOWN,
    "down": Action.MOVE_DOWN,
    "k": Action.MOVE_UP,
    "up": Action.MOVE_UP,
    "g": Action.FIRST,
    "home": Action.FIRST,
    "G": Action.LAST,
    "end": Action.LAST,
    "enter": Action.OPEN,
    "o": Action.OPEN,
    "l": Action.EXPAND,
    "right": Action.EXPAND,
    "h": Action.COLLAPSE,
    "left": Action.COLLAPSE,
    "space": Action.TOGGLE,
    "tab": Action.NEXT_VIEW,
    "shift+tab": Action.PREV_VIEW,
    "/": Action.FUZZY_SEARCH,
    "*": Action.SERVER_SEARCH,
    ":": Action.COMMAND,
    "?": Action.HELP,
    "ctrl+l": Action.LOGS,
    "D": Action.TOGGLE_DEBUG,
    "ctrl+alt+d": Action.TOGGLE_DEBUG,
    "e": Action.EDIT,
    "i": Action.EDIT,
    "b": Action.BOOKMARK,
    "R": Action.RECENT,
    "B": Action.BOOKMARKS,
    "s": Action.SPLIT,
    "<": Action.SHRINK_SPLIT,
    ">": Action.GROW_SPLIT,
    "[": Action.BACK,
    "]": Action.FORWARD,
    "pageup": Action.PAGE_UP,
    "pagedown": Action.PAGE_DOWN,
    "r": Action.REFRESH,
    "esc": Action.ESCAPE,
    "q": Action.QUIT,
    "ctrl+c": Action.QUIT,
}

VIEW_BINDINGS: Mapping[ViewMode, dict[str, Action]] = {
    ViewMode.LOG_VIEWER: {"ctrl+k": Action.CLEAR_LOGS},
}

PROMPT_BINDINGS: dict[str, Action] = {
    "backspace": Action.INPUT_BACKSPACE,
    "enter": Action.INPUT_SUBMIT,
    "esc": Action.INPUT_CANCEL,
    "ctrl+c": Action.QUIT,
    "space": Action.INPUT_CHAR,
}

# shown by the help view
HELP_TEXT: tuple[tuple[str, str], ...] = (
    ("j / k, arrows", "move selection"),
    ("g / G", "first / last item"),
    ("Enter, o", "open note"),
    ("l / h", "expand / collapse (split: switch pane)"),
    ("Space", "toggle expansion"),
    ("Tab / Shift-Tab", "next / previous view"),
    ("/", "fuzzy search loaded notes"),
    ("*", "server search"),
    (":", "command (goto <noteId>, refresh, quit)"),
    ("e", "edit note in external editor"),
    ("b", "toggle bookmark"),
    ("R / B", "recent notes / bookmarks"),
    ("s", "split view"),
    ("< / >", "resize split"),
    ("[ / ]", "history back / forward"),
    ("PgUp / PgDn", "scroll content"),
    ("r", "refresh"),
    ("Ctrl-L", "logs (Ctrl-K clears)"),
    ("D", "toggle debug logging"),
    ("?", "help"),
    ("Esc", "cancel / previous view"),
    ("q, Ctrl-C", "quit"),
)


def lookup_action(key: str, state: AppState) -> Action | None:
    """Map a key to an action for the current view and input mode."""
    if state.input_mode is not InputMode.NORMAL:
        action = PROMPT_BINDINGS.get(key)
        if action is not None:
            return action
        return Action.INPUT_CHAR if len(key) == 1 and key.isprintable() else None

    view_action = VIEW_BINDINGS.get(state.view, {}).get(key)
    if view_action is not None:
        return view_action
    return NORMAL_BINDINGS.get(key)


_CSI_KEYS = {
    "A": "up",
    "B": "down",
    "C": "right",
    "D": "left",
    "H": "home",
    "F": "end",
    "Z": "shift+tab",
    "1~": "home",
    "4~": "end",
    "5~": "pageup",
    "6~": "pagedown",
    "3~": "delete",
}

_SS3_KEYS = {"A": "up", "B": "down", "C": "right", "D": "left", "H": "home", "F": "end"}


def _control_name(ch: str) -> str | None:
    code = ord(ch)
    if ch in ("\r", "\n"):
        return "enter"
    if ch == "\t":
        return "tab"
    if ch in ("\x7f", "\x08"):
        return "backspace"
    if ch == " ":
        return "space"
    if 1 <= code <= 26:
        return "ctrl+" + chr(code + 96)
    return None


def decode_keys(data: str) -> list[str]:
    """Split raw terminal input into key names."""
    keys: list[str] = []
    i = 0
    n = len(data)
    while i < n:
        ch = data[i]
        if ch != "\x1b":
            name = _control_name(ch)
            if name is not None:
                keys.append(name)
            elif ch.isprintable():
                keys.append(ch)
            i += 1
            continue

        if i + 1 >= n:
            keys.append("esc")
            i += 1
            continue

        nxt = data[i + 1]
        if nxt == "[":
            j = i + 2
            while j < n and not ("\x40" <= data[j] <= "\x7e"):
                j += 1
            seq = data[i + 2 : j + 1]
            name = _CSI_KEYS.get(seq)
            if name is not None:
                keys.append(name)
            i = j + 1
        elif nxt == "O" and i + 2 < n:
            name = _SS3_KEYS.get(data[i + 2])
            if name is not None:
                keys.append(name)
            i += 3
        elif nxt == "\x1b":
            keys.append("esc")
            i += 1
        else:
            inner = _control_name(nxt)
            if inner is not None and inner.startswith("ctrl+"):
                keys.append("ctrl+alt+" + inner[len("ctrl+") :])
            else:
                keys.append("alt+" + (inner or nxt))
            i += 2
    return keys
