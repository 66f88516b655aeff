"""
Subscription patterns and the matcher that evaluates them.

A pattern is either structural (a set of equality-or-wildcard filters plus an
optional glob on the attribute name) or a caller-supplied predicate. The
predicate form is an override, not an extra AND-term: when present it alone
decides whether an event matches.
"""

import logging
import re
from dataclasses import dataclass, fields
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Mapping, Optional, Pattern as RegexPattern, Union

from pydantic.alias_generators import to_camel

from attrspace.events.models import ChangeEvent, EventKind
from attrspace.exceptions import InvalidArgumentError, PredicateFailure

logger = logging.getLogger(__name__)

WILDCARD = "*"
# The ``type`` field uses its own wildcard value.
ALL_TYPES = "all"

Predicate = Callable[[ChangeEvent], Any]


@dataclass(frozen=True)
class StructuralPattern:
    """
    Field-by-field subscription filter.

    Every field defaults to its wildcard. ``source_entity_type`` and
    ``target_entity_type`` only apply to relation events, and ``None`` there
    means "no constraint" rather than "must be absent".
    """

    type: str = ALL_TYPES
    entity_type: str = WILDCARD
    entity_id: str = WILDCARD
    attribute_name: str = WILDCARD
    change_type: str = WILDCARD
    relation_type: str = WILDCARD
    attribute_name_pattern: Optional[str] = None
    source_entity_type: Optional[str] = None
    target_entity_type: Optional[str] = None

    def describe(self) -> dict:
        """Return the pattern as a plain dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class PredicatePattern:
    """Subscription filter decided entirely by a custom predicate."""

    custom: Predicate

    def describe(self) -> dict:
        """Return the pattern as a plain dictionary."""
        name = getattr(self.custom, "__name__", type(self.custom).__name__)
        return {"custom": name}


Pattern = Union[StructuralPattern, PredicatePattern]

_STRUCTURAL_FIELDS = frozenset(f.name for f in fields(StructuralPattern))

# Patterns take the same camelCase spellings as change events
_FIELD_ALIASES = {to_camel(name): name for name in _STRUCTURAL_FIELDS}


def _field_text(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    # Numeric ids are compared as text, as on ChangeEvent
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def normalize_pattern(pattern: Any) -> Pattern:
    """
    Normalize any accepted pattern form.

    Accepted forms:
    - a bare callable or None (legacy "receive everything")
    - an already-normalized StructuralPattern / PredicatePattern
    - a mapping of pattern fields (snake_case or camelCase); a ``custom`` key
      makes it a predicate pattern

    Raises:
        InvalidArgumentError: On unknown fields or an unusable pattern object
    """
    if pattern is None or callable(pattern):
        return StructuralPattern()

    if isinstance(pattern, (StructuralPattern, PredicatePattern)):
        return pattern

    if not isinstance(pattern, Mapping):
        raise InvalidArgumentError(
            "Pattern must be a mapping, a pattern object or a callable",
            {"received": type(pattern).__name__},
        )

    custom = pattern.get("custom")
    if custom is not None:
        if not callable(custom):
            raise InvalidArgumentError("Pattern 'custom' must be callable")
        return PredicatePattern(custom=custom)

    pattern = {_FIELD_ALIASES.get(key, key): value for key, value in pattern.items()}
    unknown = set(pattern) - _STRUCTURAL_FIELDS - {"custom"}
    if unknown:
        raise InvalidArgumentError(
            "Unknown pattern fields", {"fields": ", ".join(sorted(unknown))}
        )

    values = {k: _field_text(v) for k, v in pattern.items() if v is not None and k != "custom"}
    if values.get("type") == WILDCARD:
        values["type"] = ALL_TYPES
    return StructuralPattern(**values)


@lru_cache(maxsize=256)
def _compile_glob(glob: str) -> RegexPattern:
    """Translate a ``*``/``?`` glob into an anchored case-insensitive regex."""
    parts = []
    for char in glob:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def match_wildcard(text: Optional[str], glob: Optional[str]) -> bool:
    """Glob-match ``text``; missing text or an empty glob never matches."""
    if not text or not glob:
        return False
    return _compile_glob(glob).match(text) is not None


def _field_matches(expected: str, actual: Any, wildcard: str = WILDCARD) -> bool:
    return expected == wildcard or expected == actual


class PatternMatcher:
    """
    Decides whether a normalized pattern matches an event.

    Predicate failures are logged and reported through ``on_predicate_failure``
    so the owning bus can count them; they always evaluate to a non-match.
    """

    def __init__(self, on_predicate_failure: Optional[Callable[[PredicateFailure], None]] = None):
        self._on_predicate_failure = on_predicate_failure

    def matches(self, event: ChangeEvent, pattern: Pattern, subscription_id: str = "") -> bool:
        """
        Test ``event`` against ``pattern``.

        Args:
            event: Enriched change event
            pattern: Normalized pattern
            subscription_id: Owner of the pattern, used in failure reports

        Returns:
            True if the event matches
        """
        if isinstance(pattern, PredicatePattern):
            try:
                return bool(pattern.custom(event))
            except Exception as e:
                failure = PredicateFailure(
                    "Custom pattern predicate raised", subscription_id, e,
                    {"entity_id": event.entity_id},
                )
                logger.error(str(failure), exc_info=True, extra={"subscription_id": subscription_id})
                if self._on_predicate_failure is not None:
                    self._on_predicate_failure(failure)
                return False

        if not _field_matches(pattern.type, event.type, ALL_TYPES):
            return False
        if not _field_matches(pattern.entity_type, event.entity_type):
            return False
        if not _field_matches(pattern.entity_id, event.entity_id):
            return False
        if not _field_matches(pattern.attribute_name, event.attribute_name):
            return False
        if not _field_matches(pattern.change_type, event.change_type):
            return False

        if pattern.attribute_name_pattern and not match_wildcard(
            event.attribute_name, pattern.attribute_name_pattern
        ):
            return False

        if event.type == EventKind.RELATION.value:
            if not _field_matches(pattern.relation_type, event.relation_type):
                return False
            if pattern.source_entity_type and pattern.source_entity_type != event.source_entity_type:
                return False
            if pattern.target_entity_type and pattern.target_entity_type != event.target_entity_type:
                return False

        return True
