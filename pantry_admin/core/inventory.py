"""
Collection inventory.

The single list of collections that can hold user data. Statistics and
deletion both read this list, so a collection added here is counted and
deleted; a collection missing here is neither.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Sequence, Tuple


class RelationKind(Enum):
    """How a collection refers to its owning user."""
    KEYED_BY_USER_ID = "keyed-by-userId"  # record key is the user id
    FIELD_REFERENCES_USER_ID = "fieldReferences-userId"  # records carry a userId field


@dataclass(frozen=True)
class CollectionInventoryEntry:
    """A collection that may contain records belonging to a user."""
    name: str
    relation_kind: RelationKind

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("collection name cannot be empty")

    @property
    def is_keyed(self) -> bool:
        return self.relation_kind is RelationKind.KEYED_BY_USER_ID


@dataclass(frozen=True)
class CollectionInventory:
    """Ordered, duplicate-free set of user-bearing collections.

    Order is significant: it is the deterministic scan order used to break
    ties between conflicting identity attributes.
    """
    entries: Tuple[CollectionInventoryEntry, ...]
    usage_collection: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "entries", tuple(self.entries))
        if not self.entries:
            raise ValueError("inventory must contain at least one collection")

        names = [entry.name for entry in self.entries]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate collections in inventory: {duplicates}")

        if self.usage_collection is not None:
            entry = self.get(self.usage_collection)
            if entry is None:
                raise ValueError(f"Usage collection not in inventory: {self.usage_collection}")
            if entry.is_keyed:
                raise ValueError("Usage collection must reference users by field")

    def __iter__(self) -> Iterator[CollectionInventoryEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(entry.name for entry in self.entries)

    @property
    def keyed(self) -> Tuple[CollectionInventoryEntry, ...]:
        return tuple(entry for entry in self.entries if entry.is_keyed)

    @property
    def field_referencing(self) -> Tuple[CollectionInventoryEntry, ...]:
        return tuple(entry for entry in self.entries if not entry.is_keyed)

    @property
    def attribute_source(self) -> Optional[CollectionInventoryEntry]:
        """The settings-like collection whose attributes take precedence."""
        keyed = self.keyed
        return keyed[0] if keyed else None

    def get(self, name: str) -> Optional[CollectionInventoryEntry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


def build_inventory(
    keyed: Sequence[str],
    field_referencing: Sequence[str],
    usage_collection: Optional[str] = None
) -> CollectionInventory:
    """Build an inventory with keyed collections first, in the given order."""
    entries = [CollectionInventoryEntry(name, RelationKind.KEYED_BY_USER_ID) for name in keyed]
    entries += [
        CollectionInventoryEntry(name, RelationKind.FIELD_REFERENCES_USER_ID)
        for name in field_referencing
    ]
    return CollectionInventory(tuple(entries), usage_collection=usage_collection)


DEFAULT_INVENTORY = build_inventory(
    keyed=["userSettings"],
    field_referencing=[
        "foodItems",
        "shoppingLists",
        "shoppingList",
        "userItems",
        "userCategories",
        "mealPlans",
        "leftoverMeals",
        "favoriteRecipes",
        "unplannedEvents",
        "analyticsEvents",
        "aiUsage",
    ],
    usage_collection="aiUsage",
)
