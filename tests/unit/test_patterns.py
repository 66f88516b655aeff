"""
Test suite for attrspace/events/patterns.py

Coverage targets:
- Pattern normalization (legacy callable, mappings, predicate patterns)
- Structural matching with wildcards
- Glob matching of attribute names
- Relation-only filters
- Custom predicate override and failure handling
"""

import pytest

from attrspace.events.models import ChangeEvent, EventKind
from attrspace.events.patterns import (
    ALL_TYPES,
    WILDCARD,
    PatternMatcher,
    PredicatePattern,
    StructuralPattern,
    match_wildcard,
    normalize_pattern,
)
from attrspace.exceptions import InvalidArgumentError


def entity_event(**fields) -> ChangeEvent:
    return ChangeEvent(**fields).enrich()


class TestNormalizePattern:
    """Test normalization of every accepted pattern form."""

    def test_callable_is_all_wildcard(self):
        pattern = normalize_pattern(lambda event: None)

        assert isinstance(pattern, StructuralPattern)
        assert pattern.type == ALL_TYPES
        assert pattern.entity_id == WILDCARD
        assert pattern.attribute_name == WILDCARD
        assert pattern.change_type == WILDCARD

    def test_none_is_all_wildcard(self):
        assert normalize_pattern(None) == StructuralPattern()

    def test_mapping_fields_default_to_wildcards(self):
        pattern = normalize_pattern({"entity_type": "Cliente"})

        assert pattern.entity_type == "Cliente"
        assert pattern.type == ALL_TYPES
        assert pattern.relation_type == WILDCARD
        assert pattern.source_entity_type is None

    def test_star_type_normalizes_to_all(self):
        assert normalize_pattern({"type": "*"}).type == ALL_TYPES

    def test_enum_values_accepted(self):
        assert normalize_pattern({"type": EventKind.RELATION}).type == "relation"

    def test_camel_case_keys_accepted(self):
        pattern = normalize_pattern(
            {"entityType": "Cliente", "attributeNamePattern": "contatto_*", "sourceEntityType": "Persona"}
        )

        assert pattern.entity_type == "Cliente"
        assert pattern.attribute_name_pattern == "contatto_*"
        assert pattern.source_entity_type == "Persona"

    def test_numeric_values_become_text(self):
        pattern = normalize_pattern({"entity_id": 42})

        assert pattern.entity_id == "42"
        assert PatternMatcher().matches(entity_event(entity_id=42), pattern)

    def test_custom_key_makes_predicate_pattern(self):
        predicate = lambda event: True
        pattern = normalize_pattern({"custom": predicate, "entity_type": "Ignored"})

        assert isinstance(pattern, PredicatePattern)
        assert pattern.custom is predicate

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidArgumentError):
            normalize_pattern({"entityTpye": "Cliente"})

    def test_non_callable_custom_rejected(self):
        with pytest.raises(InvalidArgumentError):
            normalize_pattern({"custom": "not a function"})

    def test_unsupported_object_rejected(self):
        with pytest.raises(InvalidArgumentError):
            normalize_pattern(42)


class TestWildcardMatching:
    """Test glob matching of attribute names."""

    @pytest.mark.parametrize(
        "text,glob,expected",
        [
            ("indirizzo_via", "indirizzo_*", True),
            ("indirizzo_citta", "indirizzo_*", True),
            ("altro_campo", "indirizzo_*", False),
            ("INDIRIZZO_VIA", "indirizzo_*", True),
            ("nome", "n?me", True),
            ("nome", "n?e", False),
            ("user_password_hash", "*password*", True),
            ("a.b", "a.b", True),
            ("axb", "a.b", False),
            (None, "*", False),
            ("", "*", False),
        ],
    )
    def test_match_wildcard(self, text, glob, expected):
        assert match_wildcard(text, glob) is expected


class TestStructuralMatching:
    """Test equality-or-wildcard field matching."""

    @pytest.fixture
    def matcher(self):
        return PatternMatcher()

    def test_all_wildcard_matches_everything(self, matcher):
        pattern = StructuralPattern()
        for event in (
            entity_event(entity_id="e1"),
            entity_event(relation_type="Conosce"),
            entity_event(type="schema", entity_type="Cliente"),
        ):
            assert matcher.matches(event, pattern)

    def test_type_filter(self, matcher):
        pattern = normalize_pattern({"type": "relation"})

        assert matcher.matches(entity_event(relation_type="Lavora"), pattern)
        assert not matcher.matches(entity_event(entity_id="e1"), pattern)

    def test_entity_type_and_attribute(self, matcher):
        pattern = normalize_pattern({"entity_type": "Cliente", "attribute_name": "email"})

        assert matcher.matches(
            entity_event(entity_type="Cliente", attribute_name="email", new_value="x"), pattern
        )
        assert not matcher.matches(
            entity_event(entity_type="Persona", attribute_name="email", new_value="x"), pattern
        )
        assert not matcher.matches(
            entity_event(entity_type="Cliente", attribute_name="nome", new_value="x"), pattern
        )

    def test_change_type_filter(self, matcher):
        pattern = normalize_pattern({"change_type": "create"})

        assert matcher.matches(entity_event(entity_id="e1", new_value="x"), pattern)
        assert not matcher.matches(entity_event(entity_id="e1", old_value="x", new_value="y"), pattern)

    def test_attribute_name_pattern_must_also_match(self, matcher):
        pattern = normalize_pattern({"entity_id": "e1", "attribute_name_pattern": "contatto_*"})

        assert matcher.matches(entity_event(entity_id="e1", attribute_name="contatto_email"), pattern)
        assert not matcher.matches(entity_event(entity_id="e1", attribute_name="nome"), pattern)
        assert not matcher.matches(entity_event(entity_id="e2", attribute_name="contatto_email"), pattern)


class TestRelationMatching:
    """Test relation-only filters."""

    @pytest.fixture
    def matcher(self):
        return PatternMatcher()

    def test_relation_type(self, matcher):
        pattern = normalize_pattern({"type": "relation", "relation_type": "Conosce"})

        assert matcher.matches(entity_event(relation_type="Conosce"), pattern)
        assert not matcher.matches(entity_event(relation_type="Lavora"), pattern)

    def test_source_and_target_types(self, matcher):
        pattern = normalize_pattern(
            {"source_entity_type": "Persona", "target_entity_type": "Azienda"}
        )

        assert matcher.matches(
            entity_event(relation_type="Lavora", source_entity_type="Persona", target_entity_type="Azienda"),
            pattern,
        )
        assert not matcher.matches(
            entity_event(relation_type="Lavora", source_entity_type="Persona", target_entity_type="Persona"),
            pattern,
        )

    def test_absent_source_type_is_no_constraint(self, matcher):
        pattern = normalize_pattern({"target_entity_type": "Azienda"})

        assert matcher.matches(
            entity_event(relation_type="Lavora", target_entity_type="Azienda"), pattern
        )

    def test_relation_filters_ignored_for_entity_events(self, matcher):
        pattern = normalize_pattern({"relation_type": "Conosce", "source_entity_type": "Persona"})

        assert matcher.matches(entity_event(entity_id="e1", attribute_name="nome"), pattern)


class TestCustomPredicate:
    """Test the custom predicate override."""

    def test_custom_overrides_structural_fields(self):
        matcher = PatternMatcher()
        pattern = normalize_pattern(
            {"custom": lambda e: isinstance(e.new_value, (int, float)) and e.new_value > 100}
        )

        assert matcher.matches(entity_event(entity_type="Anything", attribute_name="valore", new_value=150), pattern)
        assert matcher.matches(entity_event(relation_type="Conosce", new_value=101), pattern)
        assert not matcher.matches(entity_event(attribute_name="valore", new_value=50), pattern)

    def test_truthy_result_coerced_to_bool(self):
        pattern = PredicatePattern(custom=lambda e: "yes")
        assert PatternMatcher().matches(entity_event(entity_id="e1"), pattern) is True

    def test_raising_predicate_is_non_match(self, caplog):
        failures = []
        matcher = PatternMatcher(on_predicate_failure=failures.append)

        def broken(event):
            raise KeyError("missing")

        result = matcher.matches(entity_event(entity_id="e1"), PredicatePattern(custom=broken), "sub_x")

        assert result is False
        assert len(failures) == 1
        assert failures[0].subscription_id == "sub_x"
        assert isinstance(failures[0].cause, KeyError)
        assert "Custom pattern predicate raised" in caplog.text
