"""
Tests for the Poller and the join modes.
"""

import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import FakeClock
from swarmlock.distributed.models import Bounded, Unbounded
from swarmlock.distributed.polling import Poller


# ===========================================================================
# Join Modes
# ===========================================================================

class TestJoinModes:
    """Tests for Bounded / Unbounded."""

    def test_bounded_requires_positive_timeout(self):
        with pytest.raises(ValueError):
            Bounded(0)
        with pytest.raises(ValueError):
            Bounded(-5)

    def test_modes_are_values(self):
        assert Bounded(300) == Bounded(300)
        assert Unbounded() == Unbounded()


# ===========================================================================
# Poller
# ===========================================================================

class TestPoller:
    """Tests for attempt iteration."""

    def test_first_attempt_is_immediate(self, fake_clock, poller):
        attempts = poller.attempts(Bounded(300))
        assert next(attempts) == 1
        assert fake_clock.sleeps == []

    def test_bounded_stops_at_deadline(self, fake_clock, poller):
        attempts = list(poller.attempts(Bounded(300)))

        assert attempts == list(range(1, 32))
        assert fake_clock.elapsed == 300.0

    def test_bounded_makes_one_attempt_past_deadline_then_stops(self):
        """The attempt after the last sleep may land past the deadline; none follow it."""
        clock = FakeClock()
        poller = Poller(10.0, clock=clock.monotonic, sleeper=clock.sleep)

        attempts = list(poller.attempts(Bounded(25)))

        assert attempts == [1, 2, 3, 4]
        assert clock.sleeps == [10.0, 10.0, 10.0]

    def test_unbounded_continues_until_caller_stops(self, fake_clock, poller):
        seen = []
        for attempt in poller.attempts(Unbounded()):
            seen.append(attempt)
            if attempt == 100:
                break

        assert seen[-1] == 100
        assert fake_clock.elapsed == 990.0

    def test_success_stops_without_sleep(self, fake_clock, poller):
        for attempt in poller.attempts(Bounded(300)):
            if attempt == 3:
                break

        assert fake_clock.sleeps == [10.0, 10.0]

    def test_unknown_mode_rejected(self, poller):
        with pytest.raises(TypeError):
            next(poller.attempts("forever"))

    def test_negative_interval_rejected(self):
        with pytest.raises(ValueError):
            Poller(-1)

    def test_limited_sleeps_between_attempts_only(self, fake_clock, poller):
        assert list(poller.limited(3)) == [1, 2, 3]
        assert fake_clock.sleeps == [10.0, 10.0]

    def test_with_interval_shares_clock(self, fake_clock, poller):
        fast = poller.with_interval(5.0)
        list(fast.limited(3))

        assert fast.interval == 5.0
        assert fake_clock.sleeps == [5.0, 5.0]
