"""
Ready-made monitoring subscriptions.

- Audit: writes a line to the ``attrspace.audit`` logger whenever an
  attribute whose name matches a sensitive glob changes.
- Heavy changes: reports batches that folded many writes, and changes to
  computed attributes, which usually signal recomputation churn.
"""

import logging
from typing import Callable, Optional

from attrspace.events.bus import NotificationBus
from attrspace.events.models import ChangeEvent

audit_logger = logging.getLogger("attrspace.audit")
logger = logging.getLogger(__name__)

Sink = Callable[[ChangeEvent], None]


def watch_sensitive_attributes(
    bus: NotificationBus,
    pattern: str = "*password*",
    sink: Optional[Sink] = None,
) -> str:
    """
    Audit changes to attributes whose names match ``pattern``.

    Args:
        bus: Bus to subscribe on
        pattern: Case-insensitive glob over attribute names
        sink: Optional extra consumer of each audited event

    Returns:
        Subscription id
    """

    def on_sensitive_change(event: ChangeEvent) -> None:
        audit_logger.info(
            "Sensitive attribute changed: %s.%s (%s)",
            event.entity_id,
            event.attribute_name,
            event.change_type,
            extra={
                "entity_id": event.entity_id,
                "attribute_name": event.attribute_name,
                "change_type": event.change_type,
            },
        )
        if sink is not None:
            sink(event)

    return bus.subscribe({"attribute_name_pattern": pattern}, on_sensitive_change)


def watch_heavy_changes(
    bus: NotificationBus,
    batch_threshold: int = 5,
    prefix: str = "computed_",
    sink: Optional[Sink] = None,
) -> str:
    """
    Report large batches and computed-attribute changes.

    Args:
        bus: Bus to subscribe on
        batch_threshold: Report batches folding more events than this
        prefix: Attribute-name prefix of computed attributes
        sink: Optional extra consumer of each reported event

    Returns:
        Subscription id
    """

    def is_heavy(event: ChangeEvent) -> bool:
        if (event.batch_count or 0) > batch_threshold:
            return True
        return bool(event.attribute_name and event.attribute_name.startswith(prefix))

    def on_heavy_change(event: ChangeEvent) -> None:
        logger.info(
            "Heavy change on %s.%s: batch_count=%d",
            event.entity_id,
            event.attribute_name,
            event.batch_count or 1,
            extra={"entity_id": event.entity_id, "batch_count": event.batch_count or 1},
        )
        if sink is not None:
            sink(event)

    return bus.subscribe({"custom": is_heavy}, on_heavy_change)
