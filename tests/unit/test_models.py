"""
Test suite for attrspace/events/models.py

Coverage targets:
- Change type inference
- Event kind inference
- Enrichment (timestamp)
- Mapping coercion (snake_case / camelCase / extra fields)
- Batch merge
- Wire rendering
"""

from datetime import datetime, timezone

import pytest

from attrspace.events.models import ChangeEvent, ChangeType, EventKind, infer_change_type
from attrspace.exceptions import InvalidArgumentError


class TestChangeTypeInference:
    """Test change type inference from old/new values."""

    def test_new_value_only_is_create(self):
        assert infer_change_type(None, "x") == ChangeType.CREATE

    def test_both_values_is_update(self):
        assert infer_change_type("a", "b") == ChangeType.UPDATE

    def test_old_value_only_is_delete(self):
        assert infer_change_type("a", None) == ChangeType.DELETE

    def test_neither_value_is_update(self):
        assert infer_change_type(None, None) == ChangeType.UPDATE

    def test_falsy_values_count_as_present(self):
        """Zero and empty strings are values, not absences."""
        assert infer_change_type(None, 0) == ChangeType.CREATE
        assert infer_change_type("", None) == ChangeType.DELETE


class TestEnrichment:
    """Test enrichment of published events."""

    def test_enrich_infers_change_type(self):
        event = ChangeEvent(entity_id="e1", attribute_name="nome", new_value="Mario").enrich()
        assert event.change_type == "create"

    def test_enrich_keeps_explicit_change_type(self):
        event = ChangeEvent(entity_id="e1", new_value="x", change_type="update").enrich()
        assert event.change_type == "update"

    def test_enrich_defaults_type_to_entity(self):
        assert ChangeEvent(entity_id="e1").enrich().type == "entity"

    def test_enrich_infers_relation_type(self):
        event = ChangeEvent(relation_type="Conosce").enrich()
        assert event.type == EventKind.RELATION.value

    def test_enrich_keeps_explicit_type(self):
        event = ChangeEvent(type="schema", relation_type="Conosce").enrich()
        assert event.type == "schema"

    def test_enrich_sets_timestamp(self):
        before = datetime.now(timezone.utc)
        event = ChangeEvent(entity_id="e1").enrich()
        assert event.timestamp >= before

    def test_enrich_keeps_caller_timestamp(self):
        stamp = datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert ChangeEvent(entity_id="e1", timestamp=stamp).enrich().timestamp == stamp

    def test_enrich_returns_new_instance(self):
        original = ChangeEvent(entity_id="e1")
        enriched = original.enrich()
        assert enriched is not original
        assert original.change_type is None


class TestCoercion:
    """Test building events from mappings."""

    def test_snake_case_mapping(self):
        event = ChangeEvent.coerce({"entity_id": "e1", "attribute_name": "email"})
        assert event.entity_id == "e1"
        assert event.attribute_name == "email"

    def test_camel_case_mapping(self):
        event = ChangeEvent.coerce({"entityId": "e1", "attributeName": "email", "newValue": 3})
        assert event.entity_id == "e1"
        assert event.attribute_name == "email"
        assert event.new_value == 3

    def test_extra_fields_preserved(self):
        event = ChangeEvent.coerce({"relationType": "Conosce", "relationId": "r-9"})
        assert event.model_extra["relationId"] == "r-9"

    def test_instance_passthrough(self):
        event = ChangeEvent(entity_id="e1")
        assert ChangeEvent.coerce(event) is event

    def test_invalid_type_rejected(self):
        with pytest.raises(InvalidArgumentError):
            ChangeEvent.coerce({"type": "document"})

    def test_non_mapping_rejected(self):
        with pytest.raises(InvalidArgumentError):
            ChangeEvent.coerce(["entity_id", "e1"])


class TestMergeAndRendering:
    """Test batch merge and wire rendering."""

    def test_merge_overwrites_defined_fields(self):
        first = ChangeEvent(entity_id="e1", attribute_name="campo1", new_value="v1", batch_count=1)
        later = ChangeEvent(entity_id="e1", attribute_name="campo1", new_value="v2")

        merged = first.merged_with(later)

        assert merged.new_value == "v2"
        assert merged.batch_count == 2

    def test_merge_keeps_descriptive_fields_missing_from_later_event(self):
        first = ChangeEvent(entity_id="e1", entity_type="Cliente", relation_type="Conosce", batch_count=1)
        later = ChangeEvent(entity_id="e1", new_value="new")

        merged = first.merged_with(later)

        assert merged.entity_type == "Cliente"
        assert merged.relation_type == "Conosce"
        assert merged.new_value == "new"

    def test_merge_takes_value_pair_from_later_event(self):
        first = ChangeEvent(entity_id="e1", old_value="old", new_value="mid", change_type="update", batch_count=1)
        later = ChangeEvent(entity_id="e1", old_value="mid")

        merged = first.merged_with(later)

        assert merged.old_value == "mid"
        assert merged.new_value is None
        assert merged.change_type == "delete"

    def test_numeric_ids_coerced_to_text(self):
        event = ChangeEvent.coerce({"entityId": 42, "attributeName": "a", "sourceEntityId": 7})

        assert event.entity_id == "42"
        assert event.source_entity_id == "7"

    def test_to_message_uses_camel_case(self):
        message = ChangeEvent(entity_id="e1", attribute_name="email", new_value="a@b.it").enrich().to_message()

        assert message["entityId"] == "e1"
        assert message["attributeName"] == "email"
        assert message["changeType"] == "create"
        assert isinstance(message["timestamp"], str)
        assert "oldValue" not in message

    def test_events_are_immutable(self):
        event = ChangeEvent(entity_id="e1")
        with pytest.raises(Exception):
            event.entity_id = "e2"
