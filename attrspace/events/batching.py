"""
Time-windowed coalescing of change events.

Events sharing a batch key inside one window are folded into a single entry;
when the shared timer fires, each entry is dispatched once. Only one timer is
ever outstanding, no matter how many keys are pending.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from attrspace.events.models import ChangeEvent

logger = logging.getLogger(__name__)

BatchKey = Tuple[str, str, str]


def batch_key(event: ChangeEvent) -> BatchKey:
    """Derive the ``(type, entity_id, attribute_name)`` coalescing key."""
    return (
        str(event.type or "entity"),
        str(event.entity_id) if event.entity_id is not None else "unknown",
        str(event.attribute_name) if event.attribute_name is not None else "all",
    )


class BatchTimer:
    """
    Single-shot timer with explicit arm/cancel/fire.

    ``fire`` runs the armed callback immediately and disarms the timer, so a
    pending window can be closed deterministically without waiting.
    """

    def __init__(self):
        self._callback: Optional[Callable[[], Any]] = None

    @property
    def armed(self) -> bool:
        return self._callback is not None

    @property
    def stalled(self) -> bool:
        """Armed but not scheduled, while scheduling is now possible."""
        return False

    def arm(self, delay: float, callback: Callable[[], Any]) -> None:
        self._callback = callback
        self._schedule(delay)

    def cancel(self) -> None:
        self._unschedule()
        self._callback = None

    def fire(self) -> None:
        if self._callback is None:
            return
        callback = self._callback
        self.cancel()
        callback()

    def _schedule(self, delay: float) -> None:
        pass

    def _unschedule(self) -> None:
        pass


class ManualTimer(BatchTimer):
    """Timer that never fires on its own; tests call ``fire()``."""


class LoopTimer(BatchTimer):
    """
    Timer scheduled on the running asyncio event loop.

    Without a running loop the timer stays armed but unscheduled (``stalled``
    once a loop is available). The pending batch is delivered by the next
    explicit flush, or by the timer once an event added on a running loop
    schedules it.
    """

    def __init__(self):
        super().__init__()
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def stalled(self) -> bool:
        if not self.armed or self._handle is not None:
            return False
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def _schedule(self, delay: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop; batched notifications wait for an explicit flush"
            )
            return
        self._handle = loop.call_later(delay, self.fire)

    def _unschedule(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class BatchScheduler:
    """
    Coalesces events by batch key behind one shared timer.

    Args:
        dispatch: Called once per entry when a window closes
        delay: Window length in seconds
        timer: Timer implementation (LoopTimer by default)
    """

    def __init__(
        self,
        dispatch: Callable[[ChangeEvent], Any],
        delay: float,
        timer: Optional[BatchTimer] = None,
    ):
        self._dispatch = dispatch
        self._delay = delay
        self._timer = timer or LoopTimer()
        self._pending: Dict[BatchKey, ChangeEvent] = {}
        self.total_flushed = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_armed(self) -> bool:
        return self._timer.armed

    def add(self, event: ChangeEvent) -> None:
        """Fold ``event`` into its entry and arm the timer if idle."""
        key = batch_key(event)
        existing = self._pending.get(key)
        if existing is None:
            self._pending[key] = event.model_copy(update={"batch_count": 1})
        else:
            self._pending[key] = existing.merged_with(event)

        # A window opened outside an event loop is scheduled by the first
        # event added once a loop is running
        if not self._timer.armed or self._timer.stalled:
            self._timer.arm(self._delay, self.flush_due)

    def flush_due(self) -> int:
        """
        Close the current window.

        Snapshots and clears all entries, disarms the timer, then dispatches
        each entry. Events published by subscribers during this flush open a
        new window.

        Returns:
            Number of entries dispatched
        """
        entries = list(self._pending.values())
        self._pending.clear()
        self._timer.cancel()

        if not entries:
            return 0

        self.total_flushed += len(entries)
        for entry in entries:
            self._dispatch(entry)
        return len(entries)

    def force_flush(self) -> int:
        """Cancel the timer and flush now; no-op when nothing is pending."""
        if not self._pending:
            self._timer.cancel()
            return 0
        return self.flush_due()
