"""
Identity reconciliation across user-bearing collections.

No collection is authoritative for "who the users are". A user may appear
only as the key of a settings record, only as a ``userId`` field on items,
or both. Reconciliation scans every inventory collection and merges what it
finds into one identifier set plus one set of display attributes per user.
"""

from dataclasses import dataclass, field
from functools import partial
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Set, Tuple

from pantry_admin.config.logging_config import get_logger
from pantry_admin.storage.models import Record
from pantry_admin.storage.repository import RecordStore

from .authorization import IdentityClaims
from .concurrency import gather_bounded
from .errors import PartialFailure
from .inventory import CollectionInventory, CollectionInventoryEntry

logger = get_logger(__name__)

DISPLAY_NAME_FIELD = "username"
CONTACT_FIELD = "email"


@dataclass(frozen=True)
class IdentityAttributes:
    """Secondary attributes resolved for one user."""
    display_name: Optional[str] = None
    contact: Optional[str] = None
    display_name_derived: bool = False

    @property
    def is_complete(self) -> bool:
        return bool(self.display_name) and bool(self.contact)


NO_ATTRIBUTES = IdentityAttributes()


def derive_display_name(contact: Optional[str]) -> Optional[str]:
    """Derive a display name from a contact address.

    Takes the local part of an address-like string, trimmed and lower-cased.
    Strings without ``@`` are used whole. This is a naming policy, not a
    unique mapping: ``ann@a.com`` and ``ann@b.com`` both give ``ann``.
    """
    if not contact or not contact.strip():
        return None
    trimmed = contact.strip().lower()
    local, at, _ = trimmed.partition("@")
    if not at:
        return trimmed
    return local.strip() or trimmed


@dataclass
class ReconciliationResult:
    """Merged identities from one reconciliation pass."""
    user_ids: FrozenSet[str]
    attributes: Dict[str, IdentityAttributes]
    collection_totals: Dict[str, int]
    failures: List[PartialFailure] = field(default_factory=list)
    collections_total: int = 0

    @property
    def unavailable(self) -> Tuple[str, ...]:
        return tuple(f.collection for f in self.failures if f.collection)

    @property
    def is_complete(self) -> bool:
        """False when some collection could not be scanned."""
        return not self.failures

    @property
    def succeeded_count(self) -> int:
        return len(self.collection_totals)

    @property
    def attempted_count(self) -> int:
        return self.collections_total

    def attributes_for(self, user_id: str) -> IdentityAttributes:
        return self.attributes.get(user_id, NO_ATTRIBUTES)


class _AttributeCandidates:
    """First-seen-wins accumulator for identity attributes."""

    def __init__(self):
        self.display_names: Dict[str, str] = {}
        self.contacts: Dict[str, str] = {}

    def offer(self, user_id: str, display_name: Optional[str], contact: Optional[str], source: str):
        _offer(self.display_names, user_id, display_name, "display_name", source)
        _offer(self.contacts, user_id, contact, "contact", source)


def _offer(values: Dict[str, str], user_id: str, value: Optional[str], attribute: str, source: str):
    if not value:
        return
    existing = values.get(user_id)
    if existing is None:
        values[user_id] = value
    elif existing != value:
        logger.debug(
            "Attribute conflict resolved by precedence",
            user_id=user_id,
            attribute=attribute,
            kept=existing,
            ignored=value,
            source=source,
        )


def _text(record: Record, name: str) -> Optional[str]:
    value = record.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class IdentityReconciler:
    """Builds the canonical user set from every inventory collection."""

    def __init__(
        self,
        store: RecordStore,
        inventory: CollectionInventory,
        max_in_flight: Optional[int] = None,
        display_name_field: str = DISPLAY_NAME_FIELD,
        contact_field: str = CONTACT_FIELD,
        derive_display_names: bool = True
    ):
        self.store = store
        self.inventory = inventory
        self.max_in_flight = max(1, min(max_in_flight or len(inventory), len(inventory)))
        self.display_name_field = display_name_field
        self.contact_field = contact_field
        self.derive_display_names = derive_display_names

    async def reconcile(
        self,
        current_identity: Optional[IdentityClaims] = None
    ) -> ReconciliationResult:
        """Scan every collection and merge the identities found.

        A failed scan is recorded and the remaining collections still
        contribute. Attributes are merged after all scans finish, walking
        keyed collections first and then the rest in inventory order, so the
        outcome never depends on which scan returned first.

        Args:
            current_identity: Claims of the signed-in caller, used only to
                fill attributes that no collection supplied

        Returns:
            ReconciliationResult with identifiers, attributes and failures
        """
        entries = list(self.inventory)
        outcomes = await gather_bounded(
            [partial(self.store.scan, entry.name) for entry in entries],
            self.max_in_flight
        )

        scanned: Dict[str, List[Record]] = {}
        failures: List[PartialFailure] = []
        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "Collection scan failed during reconciliation",
                    collection=entry.name,
                    error=str(outcome),
                )
                failures.append(PartialFailure.collection_unavailable(entry.name, outcome))
            else:
                scanned[entry.name] = outcome

        user_ids = set()
        candidates = _AttributeCandidates()
        for entry in self.inventory.keyed + self.inventory.field_referencing:
            records = scanned.get(entry.name, ())
            user_ids.update(self._offer_records(candidates, entry, records))
        self._offer_hint(candidates, current_identity)

        attributes = self._resolve(candidates)

        logger.info(
            "Identity reconciliation complete",
            users=len(user_ids),
            collections_scanned=len(scanned),
            collections_failed=len(failures),
        )

        return ReconciliationResult(
            user_ids=frozenset(user_ids),
            attributes=attributes,
            collection_totals={name: len(records) for name, records in scanned.items()},
            failures=failures,
            collections_total=len(entries),
        )

    async def fetch_keyed(self, user_id: str) -> Tuple[Dict[str, List[Record]], List[PartialFailure]]:
        """Look up ``user_id`` by key in every keyed collection.

        Returns:
            Records found per collection name, and one failure per lookup
            that could not be completed
        """
        entries = self.inventory.keyed
        outcomes = await gather_bounded(
            [partial(self.store.get_by_key, entry.name, user_id) for entry in entries],
            self.max_in_flight
        )

        found: Dict[str, List[Record]] = {}
        failures: List[PartialFailure] = []
        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "Attribute lookup failed",
                    user_id=user_id,
                    collection=entry.name,
                    error=str(outcome),
                )
                failures.append(PartialFailure.collection_unavailable(entry.name, outcome))
            else:
                found[entry.name] = [outcome] if outcome is not None else []
        return found, failures

    def resolve_user(
        self,
        user_id: str,
        records: Mapping[str, Sequence[Record]],
        current_identity: Optional[IdentityClaims] = None
    ) -> IdentityAttributes:
        """Resolve one user's attributes from records already fetched.

        Applies the same precedence as ``reconcile``; records belonging to
        other users are ignored.

        Args:
            user_id: User identifier
            records: Records per collection name; missing collections are skipped
            current_identity: Claims of the signed-in caller
        """
        candidates = _AttributeCandidates()
        for entry in self.inventory.keyed + self.inventory.field_referencing:
            owned = [r for r in records.get(entry.name, ()) if self._owner(entry, r) == user_id]
            self._offer_records(candidates, entry, owned)
        if current_identity is not None and current_identity.user_id == user_id:
            self._offer_hint(candidates, current_identity)
        return self._resolve(candidates).get(user_id, NO_ATTRIBUTES)

    def _offer_records(
        self,
        candidates: _AttributeCandidates,
        entry: CollectionInventoryEntry,
        records: Sequence[Record]
    ) -> Set[str]:
        owners = set()
        for record in sorted(records, key=lambda r: r.id):
            user_id = self._owner(entry, record)
            if user_id is None:
                continue
            owners.add(user_id)
            candidates.offer(
                user_id,
                _text(record, self.display_name_field),
                _text(record, self.contact_field),
                entry.name,
            )
        return owners

    def _offer_hint(self, candidates: _AttributeCandidates, current_identity: Optional[IdentityClaims]):
        if current_identity is not None and current_identity.user_id and current_identity.email:
            candidates.offer(current_identity.user_id, None, current_identity.email.strip(), "current_identity")

    def _owner(self, entry: CollectionInventoryEntry, record: Record) -> Optional[str]:
        if entry.is_keyed:
            return record.id or None
        return record.user_id

    def _resolve(self, candidates: _AttributeCandidates) -> Dict[str, IdentityAttributes]:
        attributes = {}
        for user_id in set(candidates.display_names) | set(candidates.contacts):
            display_name = candidates.display_names.get(user_id)
            contact = candidates.contacts.get(user_id)
            derived = False
            if display_name is None and self.derive_display_names:
                display_name = derive_display_name(contact)
                derived = display_name is not None
            attributes[user_id] = IdentityAttributes(display_name, contact, derived)
        return attributes
