"""A simple rolling 32 bit tick timer.

Poll it often enough that the counter does not wrap twice between
measurements.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

TICK_MAX = 0xFFFF_FFFF
MILLIS_PER_SECOND = 1_000
MICROS_PER_SECOND = 1_000_000


def since(now: int, other: int) -> int:
    """Ticks elapsed from ``other`` to ``now``, allowing for wrap-around."""
    return (now - other) & TICK_MAX


def _mul_then_div(value: int, mul: int, div: int) -> int:
    return min(value * mul // div, TICK_MAX)


class RollingTimer(ABC):
    """A free-running 32 bit counter; subclasses set TICKS_PER_SECOND."""

    TICKS_PER_SECOND: ClassVar[int]

    @abstractmethod
    def get_ticks(self) -> int:
        """Return the current tick count."""

    def ticks_since(self, rhs: int) -> int:
        """Ticks elapsed since the measurement ``rhs``."""
        return since(self.get_ticks(), rhs)

    def seconds_since(self, rhs: int) -> int:
        """Whole seconds elapsed since ``rhs``."""
        return self.ticks_since(rhs) // self.TICKS_PER_SECOND

    def millis_since(self, rhs: int) -> int:
        """Whole milliseconds since ``rhs``, saturating at the tick maximum."""
        return _mul_then_div(self.ticks_since(rhs), MILLIS_PER_SECOND, self.TICKS_PER_SECOND)

    def micros_since(self, rhs: int) -> int:
        """Whole microseconds since ``rhs``, saturating at the tick maximum."""
        return _mul_then_div(self.ticks_since(rhs), MICROS_PER_SECOND, self.TICKS_PER_SECOND)