"""
Change event model for the notification bus.

A ChangeEvent is one mutation fact: an attribute of an entity changed, a
relation was created or removed, or a schema evolved. Producers fill in what
they know; the bus enriches the rest (timestamp, change type, event kind)
before dispatch.

Field names are snake_case in Python and camelCase on the wire. Unknown
fields supplied by producers (``sourceEntityId``, ``relationId``, ...) are
preserved so subscribers see everything the producer sent.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from attrspace.exceptions import InvalidArgumentError


class EventKind(str, Enum):
    """What part of the data model a change touches."""

    ENTITY = "entity"
    RELATION = "relation"
    SCHEMA = "schema"


class ChangeType(str, Enum):
    """Kind of mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """
    One normalized mutation fact flowing through the bus.

    Attributes:
        type: entity, relation or schema (inferred when absent)
        entity_type: Entity type name, e.g. "Cliente"
        entity_id: Identifier of the changed entity
        attribute_name: Changed attribute
        relation_type: Relation type name for relation events
        source_entity_type: Relation source entity type
        target_entity_type: Relation target entity type
        source_entity_id: Relation source entity
        target_entity_id: Relation target entity
        change_type: create, update or delete (inferred when absent)
        old_value: Value before the change
        new_value: Value after the change
        timestamp: When the bus enriched the event
        batch_count: Number of raw events merged into this one (batched delivery only)
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
        use_enum_values=True,
        # Producers may use numeric ids; they are compared as text
        coerce_numbers_to_str=True,
    )

    type: Optional[EventKind] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    attribute_name: Optional[str] = None
    relation_type: Optional[str] = None
    source_entity_type: Optional[str] = None
    target_entity_type: Optional[str] = None
    source_entity_id: Optional[str] = None
    target_entity_id: Optional[str] = None
    change_type: Optional[ChangeType] = None
    old_value: Any = None
    new_value: Any = None
    timestamp: Optional[datetime] = None
    batch_count: Optional[int] = None

    @classmethod
    def coerce(cls, event: Union["ChangeEvent", Mapping[str, Any]]) -> "ChangeEvent":
        """
        Build a ChangeEvent from an instance or a mapping.

        Mappings may use snake_case or camelCase keys.

        Raises:
            InvalidArgumentError: If the payload cannot be parsed
        """
        if isinstance(event, cls):
            return event
        if not isinstance(event, Mapping):
            raise InvalidArgumentError(
                "Change event must be a ChangeEvent or a mapping",
                {"received": type(event).__name__},
            )
        try:
            return cls.model_validate(dict(event))
        except ValidationError as e:
            raise InvalidArgumentError(
                "Invalid change event payload",
                {"errors": e.error_count(), "first": e.errors()[0]["msg"]},
            ) from e

    def enrich(self) -> "ChangeEvent":
        """Return a copy with timestamp, change_type and type filled in."""
        return self.model_copy(
            update={
                "timestamp": self.timestamp or datetime.now(timezone.utc),
                "change_type": self.change_type
                or infer_change_type(self.old_value, self.new_value).value,
                "type": self.type
                or (EventKind.RELATION.value if self.relation_type else EventKind.ENTITY.value),
            }
        )

    def with_type(self, kind: EventKind) -> "ChangeEvent":
        """Return a copy stamped with the given event kind."""
        return self.model_copy(update={"type": kind.value})

    def merged_with(self, later: "ChangeEvent") -> "ChangeEvent":
        """
        Fold a later event into this one.

        Fields defined on ``later`` overwrite this event's fields. The value
        pair and change type always come from ``later``, so a create followed
        by a delete folds into a delete with no ``new_value``. The merged
        batch_count is one more than this event's.
        """
        data = self.model_dump(exclude_none=True)
        data.update(later.model_dump(exclude_none=True))
        data["old_value"] = later.old_value
        data["new_value"] = later.new_value
        data["change_type"] = later.change_type or infer_change_type(later.old_value, later.new_value).value
        data["batch_count"] = (self.batch_count or 1) + 1
        return ChangeEvent.model_validate(data)

    def to_message(self) -> Dict[str, Any]:
        """Render the camelCase JSON form used on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def infer_change_type(old_value: Any, new_value: Any) -> ChangeType:
    """
    Derive the mutation kind from which values are present.

    Only a new value means create, only an old value means delete; anything
    else (both present, or neither) is an update.
    """
    if new_value is not None and old_value is None:
        return ChangeType.CREATE
    if new_value is None and old_value is not None:
        return ChangeType.DELETE
    return ChangeType.UPDATE
