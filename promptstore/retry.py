"""
promptstore/retry.py -- Bounded retry policy.

Both places where the store retries on its own -- waiting for a contended
directory lock and re-stamping a stale entity version -- run through
``BoundedRetry``.  Each attempt either returns a value or raises one of the
retryable exceptions; between attempts an optional *resolve* callback gets a
chance to change what the next attempt does, then the fixed delay elapses.
When the budget is spent, *on_exhausted* builds the error that is raised.

Usage::

    policy = BoundedRetry(max_attempts=6, delay=0.2)
    value = await policy.run(
        attempt,
        retry_on=Busy,
        on_exhausted=lambda state: LockTimeoutError(path, state.attempt),
    )
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryState:
    """Tracks progress through one bounded-retry run."""
    max_attempts: int
    attempt: int = 0
    last_error: BaseException | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def remaining(self) -> int:
        return max(self.max_attempts - self.attempt, 0)


class BoundedRetry:
    """Run an async operation up to *max_attempts* times.

    Parameters
    ----------
    max_attempts : int
        Total number of attempts, including the first one.  Must be >= 1.
    delay : float
        Seconds to sleep between attempts.  Fixed; no backoff.
    """

    def __init__(self, max_attempts: int, delay: float = 0.0):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if delay < 0:
            raise ValueError(f"delay cannot be negative, got {delay}")
        self.max_attempts = max_attempts
        self.delay = delay

    async def run(
        self,
        operation: Callable[[RetryState], Awaitable[T]],
        *,
        retry_on: type[BaseException] | tuple[type[BaseException], ...],
        resolve: Callable[[RetryState, Any], Any] | None = None,
        on_exhausted: Callable[[RetryState], BaseException] | None = None,
    ) -> T:
        """Call *operation* until it succeeds or the budget runs out.

        Parameters
        ----------
        operation : callable
            ``async (state) -> value``.  Receives the live ``RetryState``.
        retry_on : exception type or tuple
            Exceptions that trigger another attempt.  Anything else
            propagates immediately.
        resolve : callable, optional
            ``(state, error) -> None`` (may be async).  Called before the
            next attempt, never after the last one.
        on_exhausted : callable, optional
            ``(state) -> exception`` raised, chained to the last error, once
            every attempt has failed.  Without it the last error is re-raised.
        """
        state = RetryState(max_attempts=self.max_attempts)
        while True:
            state.attempt += 1
            try:
                return await operation(state)
            except retry_on as exc:
                state.last_error = exc
                if state.exhausted:
                    logger.debug(
                        "Giving up after %d/%d attempts: %s",
                        state.attempt, state.max_attempts, exc,
                    )
                    if on_exhausted is not None:
                        raise on_exhausted(state) from exc
                    raise
                if resolve is not None:
                    outcome = resolve(state, exc)
                    if inspect.isawaitable(outcome):
                        await outcome
                if self.delay:
                    await asyncio.sleep(self.delay)
