"""
Domain-specific exception hierarchy for AttributeSpace.

The bus distinguishes two failure families:
- Caller errors (malformed subscribe calls, unusable event payloads) are
  raised synchronously to the caller.
- Subscriber errors (a failing predicate or callback) are wrapped, logged and
  counted, but never raised back to the publisher.

Loop detection is reported through LoopDetected, which the bus only logs.
"""

from typing import Any, Dict, Optional


# ============================================================================
# Base Exception Hierarchy
# ============================================================================


class AttributeSpaceError(Exception):
    """
    Base exception for all AttributeSpace errors.

    Single root exception allows catching all domain errors while letting
    system errors (MemoryError, KeyboardInterrupt) propagate.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error description
            details: Additional context for debugging (subscription_id, entity_id, etc.)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ============================================================================
# Caller Errors (raised synchronously)
# ============================================================================


class InvalidArgumentError(AttributeSpaceError, TypeError):
    """
    A call into the bus was malformed.

    Examples: non-callable subscription callback, unknown pattern field,
    event payload that cannot be parsed.
    """
    pass


# ============================================================================
# Subscriber Errors (recovered locally, never raised to publishers)
# ============================================================================


class SubscriberError(AttributeSpaceError):
    """
    Failure inside subscriber-owned code.

    Wraps the original exception so it can be logged and reported in
    delivery results without unwinding the dispatch loop.
    """

    def __init__(
        self,
        message: str,
        subscription_id: str,
        cause: BaseException,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = {"subscription_id": subscription_id}
        merged.update(details or {})
        super().__init__(message, merged)
        self.subscription_id = subscription_id
        self.cause = cause


class PredicateFailure(SubscriberError):
    """
    A custom pattern predicate raised while matching.

    RECOVERY: treated as a non-match for that subscription only.
    """
    pass


class CallbackFailure(SubscriberError):
    """
    A matched subscriber callback raised during dispatch.

    RECOVERY: sibling callbacks and later events are still processed.
    """
    pass


# ============================================================================
# Loop Detection
# ============================================================================


class LoopDetected(AttributeSpaceError):
    """
    Notification recursion exceeded the configured bound.

    The triggering event is dropped and counted in statistics.
    """
    pass
