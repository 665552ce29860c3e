"""
Clock and deadline helpers used by timed states.

Deadlines are advisory: nothing fires on its own, a state checks
``Deadline.expired`` when a message happens to arrive.
"""

import time
from dataclasses import dataclass
from typing import Callable

from typing_extensions import TypeAlias

# Returns seconds from an arbitrary, monotonically increasing origin
Clock: TypeAlias = Callable[[], float]


def monotonic_clock() -> float:
    """Default clock"""
    return time.monotonic()


@dataclass(frozen=True)
class Deadline:
    """An instant on a Clock's timeline"""
    at: float

    @classmethod
    def after(cls, now: float, seconds: float) -> "Deadline":
        return cls(at=now + seconds)

    def expired(self, now: float) -> bool:
        return now >= self.at

    def remaining(self, now: float) -> float:
        """Seconds left, never negative"""
        return max(0.0, self.at - now)
