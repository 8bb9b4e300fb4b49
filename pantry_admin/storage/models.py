"""
Data models for storage layer.

Defines stored records and the predicates used to select them.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

USER_ID_FIELD = "userId"

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class Record:
    """A single document read from a named collection.

    Records are snapshots: they hold no reference back into the store and
    mutating the source collection never changes an existing Record.
    """
    collection: str
    id: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    def get(self, name: str, default: Any = None) -> Any:
        """Return a field value, or ``default`` when absent."""
        return self.data.get(name, default)

    @property
    def user_id(self) -> Optional[str]:
        """The ``userId`` field when it is a non-empty string."""
        value = self.data.get(USER_ID_FIELD)
        if isinstance(value, str) and value:
            return value
        return None


@dataclass(frozen=True)
class FieldEquals:
    """Single-field equality predicate (``field == value``).

    This is the whole predicate language the record store has to support.
    """
    field: str
    value: Any

    def __post_init__(self):
        if not _FIELD_NAME.match(self.field):
            raise ValueError(f"Invalid field name: {self.field!r}")

    def matches(self, record: Record) -> bool:
        return record.get(self.field) == self.value


def user_id_equals(user_id: str) -> FieldEquals:
    """Predicate selecting records whose ``userId`` equals ``user_id``."""
    return FieldEquals(USER_ID_FIELD, user_id)


def check_user_id(user_id: str) -> None:
    """Raise ValueError unless ``user_id`` is a non-blank string."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValueError("user_id is required and cannot be empty")
