"""Cancellation tokens and per-slot operation bookkeeping.

A *slot* is a named channel ("tree", "search", "content", ...). At most one
operation per slot is current; starting a new one cancels the previous
token and bumps the slot's operation id, so late results from the older
operation can be recognised and dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field


class CancelToken:
    """One-shot cancellation flag that can also be awaited."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def sleep(self, delay: float) -> bool:
        """Wait `delay` seconds; return False early if cancelled meanwhile."""
        if self.cancelled:
            return False
        if delay <= 0:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False


@dataclass(frozen=True)
class Ticket:
    """Handle for one operation started on a slot."""

    slot: str
    op_id: int
    token: CancelToken = field(compare=False)


class SlotRegistry:
    """Tracks the current operation id and token for every slot."""

    def __init__(self) -> None:
        self._op_ids: dict[str, int] = {}
        self._tokens: dict[str, CancelToken] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def begin(self, slot: str) -> Ticket:
        """Supersede whatever is running on `slot` and return a fresh ticket."""
        self.cancel(slot, reason="superseded")
        op_id = self._op_ids.get(slot, 0) + 1
        self._op_ids[slot] = op_id
        token = CancelToken()
        self._tokens[slot] = token
        return Ticket(slot=slot, op_id=op_id, token=token)

    def is_current(self, ticket: Ticket) -> bool:
        return self._op_ids.get(ticket.slot) == ticket.op_id and not ticket.token.cancelled

    def current_op_id(self, slot: str) -> int:
        return self._op_ids.get(slot, 0)

    def cancel(self, slot: str, reason: str = "cancelled") -> bool:
        """Cancel the live token on `slot`. Returns True if one was live."""
        token = self._tokens.pop(slot, None)
        if token is None or token.cancelled:
            return False
        token.cancel(reason)
        return True

    def cancel_all(self, reason: str = "cancelled") -> None:
        for slot in list(self._tokens):
            self.cancel(slot, reason)
        for task in list(self._tasks.values()):
            task.cancel()

    def finish(self, ticket: Ticket) -> None:
        """Forget the token once its operation has completed."""
        if self._tokens.get(ticket.slot) is ticket.token:
            del self._tokens[ticket.slot]

    def attach_task(self, slot: str, task: asyncio.Task) -> None:
        """Remember the asyncio task driving `slot` so shutdown can cancel it."""
        self._tasks[slot] = task
        task.add_done_callback(lambda t, s=slot: self._drop_task(s, t))

    def _drop_task(self, slot: str, task: asyncio.Task) -> None:
        if self._tasks.get(slot) is task:
            del self._tasks[slot]

    def pending(self) -> list[str]:
        """Slots with a live (uncancelled) token."""
        return sorted(s for s, t in self._tokens.items() if not t.cancelled)
