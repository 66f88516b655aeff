"""
Subscription registry for the notification bus.

The registry exclusively owns Subscription objects; callers only ever hold
the opaque subscription id returned by ``subscribe``.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from attrspace.events.models import ChangeEvent
from attrspace.events.patterns import Pattern, PatternMatcher, normalize_pattern
from attrspace.exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)

Callback = Callable[[ChangeEvent], Any]

# Shared across registries so ids stay unique within the process.
_subscription_ids = itertools.count(1)


@dataclass
class Subscription:
    """
    A live subscription.

    Attributes:
        id: Stable process-unique identifier ("sub_<n>")
        pattern: Normalized pattern
        callback: Invoked with each matching event
        created: When the subscription was registered
        match_count: Number of times the callback has been invoked
    """

    id: str
    pattern: Pattern
    callback: Callback
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    match_count: int = 0

    def info(self) -> "SubscriptionInfo":
        return SubscriptionInfo(
            id=self.id,
            pattern=self.pattern.describe(),
            created=self.created,
            match_count=self.match_count,
        )


@dataclass(frozen=True)
class SubscriptionInfo:
    """Read-only snapshot of a subscription, for introspection."""

    id: str
    pattern: Dict[str, Any]
    created: datetime
    match_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "created": self.created.isoformat(),
            "matchCount": self.match_count,
        }


class SubscriptionRegistry:
    """
    Owns the set of active subscriptions.

    Iteration order is insertion order; there is no prioritization.
    """

    def __init__(self, matcher: Optional[PatternMatcher] = None):
        self._subscriptions: Dict[str, Subscription] = {}
        self._matcher = matcher or PatternMatcher()
        self.total_created = 0

    def subscribe(self, pattern: Any, callback: Callback) -> str:
        """
        Register a subscription.

        Args:
            pattern: Mapping, pattern object, or a bare callable (legacy form)
            callback: Invoked with each matching ChangeEvent

        Returns:
            The new subscription id

        Raises:
            InvalidArgumentError: If callback is not callable or the pattern is malformed
        """
        if not callable(callback):
            raise InvalidArgumentError(
                "Subscription callback must be callable",
                {"received": type(callback).__name__},
            )

        normalized = normalize_pattern(pattern)
        subscription_id = f"sub_{next(_subscription_ids)}"
        self._subscriptions[subscription_id] = Subscription(
            id=subscription_id,
            pattern=normalized,
            callback=callback,
        )
        self.total_created += 1
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription; unknown ids are a no-op returning False."""
        return self._subscriptions.pop(subscription_id, None) is not None

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(subscription_id)

    def find_matching(self, event: ChangeEvent) -> List[Subscription]:
        """Return subscriptions whose pattern matches ``event``, in insertion order."""
        return [
            subscription
            for subscription in list(self._subscriptions.values())
            if self._matcher.matches(event, subscription.pattern, subscription.id)
        ]

    def clear(self) -> int:
        """Remove all subscriptions and return how many were removed."""
        count = len(self._subscriptions)
        self._subscriptions.clear()
        return count

    def snapshot(self) -> List[SubscriptionInfo]:
        return [subscription.info() for subscription in self._subscriptions.values()]

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, subscription_id: object) -> bool:
        return subscription_id in self._subscriptions
