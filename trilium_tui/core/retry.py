"""Bounded, cancellable retry around backend calls.

Only transient failures (``error.retryable``, i.e. NetworkError) are retried.
Whatever happens, `execute` reports through a RetryOutcome instead of
raising, so the caller can reduce the result into UI state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, TypeVar

from .tasks import SlotRegistry, Ticket

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryObserver = Callable[[int, BaseException], None]


@dataclass
class RetrySlot:
    """Live retry bookkeeping for one slot."""

    name: str
    op_id: int = 0
    attempt: int = 0
    last_error: BaseException | None = None
    pending: bool = False  # an attempt or backoff wait is in flight
    retrying: bool = False  # currently waiting between attempts


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    slot: str
    op_id: int
    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    cancelled: bool = False
    stale: bool = False  # superseded by a newer operation on the same slot
    delays: tuple[float, ...] = field(default=(), compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled and not self.stale


def is_retryable(error: BaseException) -> bool:
    return bool(getattr(error, "retryable", False))


class RetryableApiGateway:
    """Runs operations with exponential backoff, one live operation per slot."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        registry: SlotRegistry | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.registry = registry or SlotRegistry()
        self.slots: dict[str, RetrySlot] = {}

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1`` (attempt is 1-based)."""
        return self.base_delay * self.multiplier ** (attempt - 1)

    def slot(self, name: str) -> RetrySlot:
        return self.slots.setdefault(name, RetrySlot(name=name))

    def cancel(self, slot: str) -> bool:
        cancelled = self.registry.cancel(slot)
        state = self.slots.get(slot)
        if state is not None:
            state.pending = False
            state.retrying = False
        return cancelled

    def cancel_all(self) -> None:
        self.registry.cancel_all()
        for state in self.slots.values():
            state.pending = False
            state.retrying = False

    def is_current(self, ticket: Ticket) -> bool:
        return self.registry.is_current(ticket)

    async def execute(
        self,
        slot: str,
        operation: Callable[[], Awaitable[T]],
        *,
        on_retry: RetryObserver | None = None,
    ) -> RetryOutcome[T]:
        """Run `operation` on `slot`, superseding any earlier operation there."""
        ticket = self.registry.begin(slot)
        state = self.slot(slot)
        state.op_id = ticket.op_id
        state.attempt = 0
        state.last_error = None
        state.pending = True
        state.retrying = False

        last_error: BaseException | None = None
        delays: list[float] = []
        attempt = 0

        try:
            while attempt < self.max_attempts:
                attempt += 1
                if self.registry.is_current(ticket):
                    state.attempt = attempt
                try:
                    value = await operation()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    last_error = e
                else:
                    return self._outcome(ticket, state, value=value, attempts=attempt, delays=delays)

                if self.registry.is_current(ticket):
                    state.last_error = last_error
                if ticket.token.cancelled:
                    break
                if not is_retryable(last_error) or attempt >= self.max_attempts:
                    break

                delay = self.delay_for(attempt)
                delays.append(delay)
                logger.warning(
                    f"{slot}: attempt {attempt}/{self.max_attempts} failed ({last_error}); "
                    f"retrying in {delay:.2f}s"
                )
                if on_retry is not None:
                    on_retry(attempt, last_error)
                state.retrying = True
                finished_wait = await ticket.token.sleep(delay)
                if self.registry.is_current(ticket):
                    state.retrying = False
                if not finished_wait:
                    break

            if last_error is not None and not ticket.token.cancelled:
                logger.error(f"{slot}: giving up after {attempt} attempt(s): {last_error}")
            return self._outcome(ticket, state, error=last_error, attempts=attempt, delays=delays)
        finally:
            self.registry.finish(ticket)

    def _outcome(
        self,
        ticket: Ticket,
        state: RetrySlot,
        *,
        value: T | None = None,
        error: BaseException | None = None,
        attempts: int,
        delays: list[float],
    ) -> RetryOutcome[T]:
        current = self.registry.current_op_id(ticket.slot) == ticket.op_id
        cancelled = ticket.token.cancelled
        if current:
            state.pending = False
            state.retrying = False
            state.last_error = error
        return RetryOutcome(
            slot=ticket.slot,
            op_id=ticket.op_id,
            value=value,
            error=error,
            attempts=attempts,
            cancelled=cancelled and current,
            stale=not current,
            delays=tuple(delays),
        )
