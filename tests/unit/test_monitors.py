"""
Test suite for attrspace/events/monitors.py
"""

import logging

from attrspace.events.monitors import watch_heavy_changes, watch_sensitive_attributes


class TestSensitiveAttributeAudit:
    """Test the audit monitor."""

    def test_matching_attribute_audited(self, bus, received, caplog):
        watch_sensitive_attributes(bus, sink=received.append)

        with caplog.at_level(logging.INFO, logger="attrspace.audit"):
            bus.publish(entity_id="user-1", attribute_name="user_password_hash", new_value="x")
            bus.publish(entity_id="user-1", attribute_name="email", new_value="a@b.it")

        assert [event.attribute_name for event in received] == ["user_password_hash"]
        audit = [r for r in caplog.records if r.name == "attrspace.audit"]
        assert len(audit) == 1
        assert audit[0].entity_id == "user-1"
        assert "user-1.user_password_hash" in audit[0].getMessage()

    def test_custom_pattern(self, bus, received):
        watch_sensitive_attributes(bus, pattern="codice_*", sink=received.append)

        bus.publish(entity_id="p1", attribute_name="CODICE_fiscale", new_value="RSSMRA")
        bus.publish(entity_id="p1", attribute_name="password", new_value="x")

        assert [event.attribute_name for event in received] == ["CODICE_fiscale"]

    def test_returns_subscription_id(self, bus):
        sub_id = watch_sensitive_attributes(bus)
        assert bus.unsubscribe(sub_id) is True


class TestHeavyChanges:
    """Test the heavy-change monitor."""

    def test_computed_prefix_reported(self, bus, received):
        watch_heavy_changes(bus, sink=received.append)

        bus.publish(entity_id="e1", attribute_name="computed_total", new_value=10)
        bus.publish(entity_id="e1", attribute_name="total", new_value=10)

        assert [event.attribute_name for event in received] == ["computed_total"]

    def test_large_batch_reported(self, batched_bus, received):
        watch_heavy_changes(batched_bus, batch_threshold=5, sink=received.append)

        for i in range(6):
            batched_bus.publish(entity_id="e1", attribute_name="counter", new_value=i)
        for i in range(5):
            batched_bus.publish(entity_id="e1", attribute_name="other", new_value=i)
        batched_bus.flush()

        assert len(received) == 1
        assert received[0].attribute_name == "counter"
        assert received[0].batch_count == 6

    def test_unbatched_event_not_heavy(self, bus, received):
        watch_heavy_changes(bus, batch_threshold=0, prefix="computed_", sink=received.append)

        bus.publish(entity_id="e1", attribute_name="plain", new_value=1)

        assert received == []
