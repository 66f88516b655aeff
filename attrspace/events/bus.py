"""
Notification bus for entity, relation and schema change facts.

Writers publish mutation facts after they are committed; readers subscribe
with structural, wildcard or predicate patterns. The bus:

- Enriches each event (timestamp, change type, event kind)
- Coalesces bursts sharing a batch key inside a short window
- Dispatches synchronously to every matching subscriber, isolating failures
- Bounds notification-triggered notifications with a reentrancy guard

Thread-Safety: single-threaded by design. Publish, subscribe and the batch
timer all run on the caller's thread / event loop; no locks are taken.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from attrspace.config import BusConfig, get_settings
from attrspace.events.batching import BatchScheduler, BatchTimer
from attrspace.events.guard import ReentrancyGuard
from attrspace.events.models import ChangeEvent, EventKind
from attrspace.events.patterns import PatternMatcher
from attrspace.events.registry import Callback, SubscriptionInfo, SubscriptionRegistry
from attrspace.exceptions import (
    CallbackFailure,
    InvalidArgumentError,
    LoopDetected,
    PredicateFailure,
)

logger = logging.getLogger(__name__)

EventInput = Union[ChangeEvent, Mapping[str, Any], None]


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of invoking one subscriber callback."""

    subscription_id: str
    ok: bool
    error: Optional[CallbackFailure] = None


@dataclass(frozen=True)
class BusStats:
    """
    Read-only snapshot of bus statistics.

    Lifetime counters never decrease; the ``active``/``pending`` fields and
    ``is_processing`` describe the bus at snapshot time.
    """

    total_subscriptions: int
    total_notifications: int
    batched_notifications: int
    dropped_notifications: int
    failed_callbacks: int
    failed_predicates: int
    active_subscriptions: int
    pending_notifications: int
    is_processing: bool
    config: BusConfig

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_subscriptions": self.total_subscriptions,
            "total_notifications": self.total_notifications,
            "batched_notifications": self.batched_notifications,
            "dropped_notifications": self.dropped_notifications,
            "failed_callbacks": self.failed_callbacks,
            "failed_predicates": self.failed_predicates,
            "active_subscriptions": self.active_subscriptions,
            "pending_notifications": self.pending_notifications,
            "is_processing": self.is_processing,
            "config": self.config.model_dump(),
        }


class NotificationBus:
    """
    In-process change-notification bus.

    Example:
        ```python
        bus = NotificationBus(enable_batching=False)

        def on_email(event: ChangeEvent):
            print(f"{event.entity_id}.email -> {event.new_value}")

        bus.subscribe({"entity_type": "Cliente", "attribute_name": "email"}, on_email)
        bus.publish(entity_type="Cliente", entity_id="c-1",
                    attribute_name="email", new_value="a@b.it")
        ```

    Args:
        config: Bus options; keyword options build one when omitted
        timer: Batch timer implementation (asyncio-backed by default)
    """

    def __init__(
        self,
        config: Optional[BusConfig] = None,
        *,
        timer: Optional[BatchTimer] = None,
        **options: Any,
    ):
        self.config = config or BusConfig(**options)

        self._failed_predicates = 0
        self._matcher = PatternMatcher(on_predicate_failure=self._record_predicate_failure)
        self._registry = SubscriptionRegistry(self._matcher)
        self._guard = ReentrancyGuard(self.config.max_loop_detection)
        self._batcher = BatchScheduler(
            dispatch=self._dispatch,
            delay=self.config.batch_delay_seconds,
            timer=timer,
        )
        self._tasks: Set[asyncio.Task] = set()

        # Lifetime statistics
        self._total_notifications = 0
        self._dropped_notifications = 0
        self._failed_callbacks = 0

        self._log("NotificationBus initialized: %s", self.config.model_dump())

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, pattern: Any, callback: Optional[Callback] = None) -> str:
        """
        Subscribe to change events.

        Args:
            pattern: Pattern mapping or object. A bare callable with no
                ``callback`` is the legacy form: it becomes the callback and
                receives every event.
            callback: Invoked synchronously with each matching ChangeEvent

        Returns:
            Subscription id for ``unsubscribe``

        Raises:
            InvalidArgumentError: If the callback is not callable or the
                pattern is malformed
        """
        if callback is None and callable(pattern):
            pattern, callback = None, pattern

        subscription_id = self._registry.subscribe(pattern, callback)
        subscription = self._registry.get(subscription_id)
        self._log(
            "Subscription registered: %s %s",
            subscription_id,
            subscription.pattern.describe(),
        )
        return subscription_id

    def subscribe_legacy(self, callback: Callback) -> str:
        """Subscribe ``callback`` to every event."""
        return self.subscribe(None, callback)

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription; returns False for unknown ids."""
        removed = self._registry.unsubscribe(subscription_id)
        if removed:
            self._log("Subscription removed: %s", subscription_id)
        return removed

    def get_active_subscriptions(self) -> List[SubscriptionInfo]:
        """List live subscriptions (for debugging and the admin API)."""
        return self._registry.snapshot()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: EventInput = None, **details: Any) -> List[DeliveryResult]:
        """
        Publish one change fact.

        Accepts a ChangeEvent, a mapping (snake_case or camelCase keys) and/or
        keyword details; keywords override fields of ``event``.

        Returns:
            Per-subscriber delivery results when dispatched immediately; an
            empty list when the event was batched or dropped.

        Raises:
            InvalidArgumentError: If the payload cannot be parsed. Subscriber
                failures are never raised here.
        """
        change = self._coerce(event, details)

        if self._guard.should_drop():
            self._dropped_notifications += 1
            dropped = LoopDetected(
                "Notification loop detected, event dropped",
                {"depth": self._guard.depth, "entity_id": change.entity_id},
            )
            logger.warning(
                str(dropped),
                extra={"entity_id": change.entity_id, "attribute_name": change.attribute_name},
            )
            return []

        self._total_notifications += 1
        enriched = change.enrich()

        if self.config.enable_batching:
            self._batcher.add(enriched)
            return []
        return self._dispatch(enriched)

    def publish_relation_change(self, details: EventInput = None, **extra: Any) -> List[DeliveryResult]:
        """Publish a relation change (``type`` is stamped as relation)."""
        return self._publish_kind(EventKind.RELATION, details, extra)

    def publish_schema_change(self, details: EventInput = None, **extra: Any) -> List[DeliveryResult]:
        """Publish a schema change (``type`` is stamped as schema)."""
        return self._publish_kind(EventKind.SCHEMA, details, extra)

    @property
    def loop_limit_reached(self) -> bool:
        """True when a publish made right now would be dropped by loop detection."""
        return self._guard.should_drop()

    def flush(self) -> int:
        """
        Deliver pending batches now.

        Returns:
            Number of batched notifications dispatched
        """
        flushed = self._batcher.force_flush()
        if flushed:
            self._log("Flushed %d batched notifications", flushed)
        return flushed

    # ------------------------------------------------------------------
    # Statistics and lifecycle
    # ------------------------------------------------------------------

    def stats(self) -> BusStats:
        """Get a read-only snapshot of bus statistics."""
        return BusStats(
            total_subscriptions=self._registry.total_created,
            total_notifications=self._total_notifications,
            batched_notifications=self._batcher.total_flushed,
            dropped_notifications=self._dropped_notifications,
            failed_callbacks=self._failed_callbacks,
            failed_predicates=self._failed_predicates,
            active_subscriptions=len(self._registry),
            pending_notifications=self._batcher.pending_count,
            is_processing=self._guard.dispatching,
            config=self.config,
        )

    def clear(self) -> int:
        """Remove all subscriptions, then flush pending batches."""
        count = self._registry.clear()
        self._batcher.force_flush()
        self._log("All subscriptions removed (%d)", count)
        return count

    def shutdown(self) -> None:
        """Flush pending batches and drop every subscription."""
        self.flush()
        self.clear()
        self._log("NotificationBus shutting down: %s", self.stats().to_dict())

    # Names kept from the first AttributeSpace API
    notify_change = publish
    notify_relation_change = publish_relation_change
    notify_schema_change = publish_schema_change
    flush_batch = flush
    clear_all_subscriptions = clear

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _publish_kind(self, kind: EventKind, details: EventInput, extra: Dict[str, Any]) -> List[DeliveryResult]:
        change = self._coerce(details, extra)
        return self.publish(change.with_type(kind))

    @staticmethod
    def _coerce(event: EventInput, details: Dict[str, Any]) -> ChangeEvent:
        if event is None:
            return ChangeEvent.coerce(details)
        change = ChangeEvent.coerce(event)
        if details:
            data = change.model_dump(exclude_none=True)
            data.update(ChangeEvent.coerce(details).model_dump(exclude_none=True))
            change = ChangeEvent.coerce(data)
        return change

    def _dispatch(self, event: ChangeEvent) -> List[DeliveryResult]:
        results: List[DeliveryResult] = []
        with self._guard.enter() as depth:
            matching = self._registry.find_matching(event)
            logger.debug(
                "Dispatching %s event to %d subscriptions",
                event.type,
                len(matching),
                extra={"entity_id": event.entity_id, "attribute_name": event.attribute_name, "depth": depth},
            )

            for subscription in matching:
                subscription.match_count += 1
                try:
                    outcome = subscription.callback(event)
                    if inspect.isawaitable(outcome):
                        self._spawn(outcome, subscription.id)
                except Exception as e:
                    failure = self._record_callback_failure(subscription.id, event, e)
                    results.append(DeliveryResult(subscription.id, False, failure))
                else:
                    results.append(DeliveryResult(subscription.id, True))
        return results

    def _spawn(self, awaitable: Any, subscription_id: str) -> None:
        """Run a coroutine returned by an async callback on the current loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise InvalidArgumentError(
                "Async subscriber callbacks need a running event loop",
                {"subscription_id": subscription_id},
            )
        task = loop.create_task(awaitable)
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                error = finished.exception()
                self._failed_callbacks += 1
                logger.error(
                    "Async subscriber callback failed: %s",
                    error,
                    exc_info=error,
                    extra={"subscription_id": subscription_id},
                )

        task.add_done_callback(_done)

    def _record_callback_failure(self, subscription_id: str, event: ChangeEvent, error: Exception) -> CallbackFailure:
        self._failed_callbacks += 1
        failure = CallbackFailure(
            "Subscriber callback raised",
            subscription_id,
            error,
            {"entity_id": event.entity_id, "attribute_name": event.attribute_name},
        )
        logger.error(str(failure), exc_info=error, extra={"subscription_id": subscription_id})
        return failure

    def _record_predicate_failure(self, failure: PredicateFailure) -> None:
        self._failed_predicates += 1

    def _log(self, message: str, *args: Any) -> None:
        if self.config.enable_logging:
            logger.info(message, *args)


# Application-wide bus, built from settings on first use
_notification_bus: Optional[NotificationBus] = None


def get_notification_bus(config: Optional[BusConfig] = None) -> NotificationBus:
    """
    Get the application notification bus.

    Creates the instance on first call, from ``config`` or else from the
    global Settings; later calls ignore ``config``. Independent buses can
    always be constructed directly; this accessor serves the API app.

    Returns:
        The application NotificationBus
    """
    global _notification_bus
    if _notification_bus is None:
        _notification_bus = NotificationBus(config or get_settings().bus_config())
    return _notification_bus


def reset_notification_bus() -> None:
    """Shut down and forget the application bus."""
    global _notification_bus
    if _notification_bus is not None:
        _notification_bus.shutdown()
        _notification_bus = None
