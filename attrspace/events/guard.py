"""
Reentrancy guard bounding notification-triggered notifications.

Depth and the dispatching flag are shared by every event on one bus: any
publish made from inside a callback counts against the same budget.
"""

from contextlib import contextmanager
from typing import Iterator


class ReentrancyGuard:
    """
    Tracks nested dispatch depth for one bus.

    Args:
        max_depth: Depth past which re-entrant events are dropped
    """

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self.depth = 0
        self.dispatching = False

    def should_drop(self) -> bool:
        """True when a new event would exceed the bound mid-dispatch."""
        return self.dispatching and self.depth > self.max_depth

    @contextmanager
    def enter(self) -> Iterator[int]:
        """Hold one level of dispatch depth for the duration of the block."""
        self.dispatching = True
        self.depth += 1
        try:
            yield self.depth
        finally:
            self.depth -= 1
            if self.depth == 0:
                self.dispatching = False
