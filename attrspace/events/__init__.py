"""
Change-notification core.

This package provides:
- Change event model and enrichment
- Subscription patterns and matching
- Batching and reentrancy control
- The NotificationBus facade
"""

from attrspace.events.bus import (
    BusStats,
    DeliveryResult,
    NotificationBus,
    get_notification_bus,
    reset_notification_bus,
)
from attrspace.events.models import ChangeEvent, ChangeType, EventKind
from attrspace.events.patterns import PredicatePattern, StructuralPattern

__all__ = [
    "BusStats",
    "ChangeEvent",
    "ChangeType",
    "DeliveryResult",
    "EventKind",
    "NotificationBus",
    "PredicatePattern",
    "StructuralPattern",
    "get_notification_bus",
    "reset_notification_bus",
]
