"""
Polling - retry-with-interval loops with an injectable clock and sleeper.

A Poller yields attempt numbers. The caller performs one attempt per
iteration and stops iterating (break/return) on success; the poller
decides when to sleep and when the budget is spent:

    for attempt in poller.attempts(Bounded(300)):
        if try_join():
            return True
    return False        # deadline reached

The first attempt happens immediately. After a failed attempt the
deadline (or attempt budget) is checked before sleeping, so a bounded
loop never sleeps past its deadline only to give up.
"""

import time
from typing import Callable, Iterator, Optional

from .models import Bounded, JoinMode, Unbounded


class Poller:
    """Drives bounded and unbounded polling loops."""

    def __init__(self, interval: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleeper: Callable[[float], None] = time.sleep):
        """
        Args:
            interval: Seconds to sleep between attempts
            clock: Monotonic clock in seconds
            sleeper: Sleep primitive
        """
        if interval < 0:
            raise ValueError(f"poll interval must not be negative, got {interval}")
        self.interval = interval
        self.clock = clock
        self.sleeper = sleeper

    def attempts(self, mode: JoinMode) -> Iterator[int]:
        """Yield attempt numbers until the caller stops or the mode's deadline passes."""
        if isinstance(mode, Bounded):
            deadline: Optional[float] = self.clock() + mode.timeout
        elif isinstance(mode, Unbounded):
            deadline = None
        else:
            raise TypeError(f"unsupported join mode: {mode!r}")

        attempt = 0
        while True:
            attempt += 1
            yield attempt
            if deadline is not None and self.clock() >= deadline:
                return
            self.sleeper(self.interval)

    def limited(self, max_attempts: int) -> Iterator[int]:
        """Yield at most `max_attempts` attempt numbers, sleeping between them."""
        for attempt in range(1, max_attempts + 1):
            yield attempt
            if attempt < max_attempts:
                self.sleeper(self.interval)

    def with_interval(self, interval: float) -> 'Poller':
        """A poller sharing this clock and sleeper with a different interval."""
        return Poller(interval, clock=self.clock, sleeper=self.sleeper)


__all__ = ['Poller']
