"""
Pytest configuration and shared fixtures.
"""

from typing import List

import pytest

from attrspace.events.batching import ManualTimer
from attrspace.events.bus import NotificationBus
from attrspace.events.models import ChangeEvent


@pytest.fixture
def bus() -> NotificationBus:
    """Bus dispatching immediately (no batching)."""
    return NotificationBus(enable_batching=False, enable_logging=False)


@pytest.fixture
def manual_timer() -> ManualTimer:
    """Batch timer that only fires when told to."""
    return ManualTimer()


@pytest.fixture
def batched_bus(manual_timer: ManualTimer) -> NotificationBus:
    """Batching bus driven by a manual timer."""
    return NotificationBus(enable_batching=True, enable_logging=False, timer=manual_timer)


@pytest.fixture
def received() -> List[ChangeEvent]:
    """Collector list for callbacks."""
    return []


@pytest.fixture
def address_changes() -> List[dict]:
    """Four attribute changes on one entity, two of them address fields."""
    return [
        {"entity_id": "entity-1", "attribute_name": "indirizzo_via", "new_value": "Via Roma 1"},
        {"entity_id": "entity-1", "attribute_name": "indirizzo_citta", "new_value": "Milano"},
        {"entity_id": "entity-1", "attribute_name": "contatto_email", "new_value": "test@test.com"},
        {"entity_id": "entity-1", "attribute_name": "altro_campo", "new_value": "valore"},
    ]
