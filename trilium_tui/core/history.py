"""Back/forward navigation, recent notes, bookmarks and status messages.

All values here are immutable; every operation returns a new value.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

MAX_RECENT = 50


@dataclass(frozen=True)
class NavigationHistory:
    """Browser-style history of visited note ids."""

    entries: tuple[str, ...] = ()
    index: int = -1

    @property
    def current(self) -> str | None:
        if 0 <= self.index < len(self.entries):
            return self.entries[self.index]
        return None

    @property
    def can_go_back(self) -> bool:
        return self.index > 0

    @property
    def can_go_forward(self) -> bool:
        return self.index < len(self.entries) - 1

    def push(self, note_id: str) -> NavigationHistory:
        """Visit `note_id`, dropping any forward entries."""
        if self.current == note_id:
            return self
        entries = self.entries[: self.index + 1] + (note_id,)
        return NavigationHistory(entries=entries, index=len(entries) - 1)

    def back(self) -> NavigationHistory:
        if not self.can_go_back:
            return self
        return NavigationHistory(entries=self.entries, index=self.index - 1)

    def forward(self) -> NavigationHistory:
        if not self.can_go_forward:
            return self
        return NavigationHistory(entries=self.entries, index=self.index + 1)


def push_recent(recent: tuple[str, ...], note_id: str, limit: int = MAX_RECENT) -> tuple[str, ...]:
    """Most recent first, without duplicates, at most `limit` long."""
    return ((note_id,) + tuple(n for n in recent if n != note_id))[:limit]


def toggle_bookmark(bookmarks: tuple[str, ...], note_id: str) -> tuple[tuple[str, ...], bool]:
    """Add or remove `note_id`; the flag says whether it is now bookmarked."""
    if note_id in bookmarks:
        return tuple(b for b in bookmarks if b != note_id), False
    return bookmarks + (note_id,), True


class StatusLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class StatusMessage:
    text: str
    level: StatusLevel = StatusLevel.INFO
    expires_at: float | None = None  # monotonic seconds; None = sticky

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def status(text: str, level: StatusLevel = StatusLevel.INFO, *, now: float, timeout: float | None) -> StatusMessage:
    # errors stay until replaced
    if level is StatusLevel.ERROR or timeout is None:
        return StatusMessage(text=text, level=level)
    return StatusMessage(text=text, level=level, expires_at=now + timeout)
