"""
Backfill of missing identity attributes.

Copies each user's contact address from the identity provider into their
settings record and derives a display name from it, for users whose settings
lack either value.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import yaml

from pantry_admin.config.logging_config import get_logger
from pantry_admin.storage.models import USER_ID_FIELD
from pantry_admin.storage.repository import RecordStore

from .concurrency import gather_bounded
from .errors import IdentityNotFound
from .identity import CONTACT_FIELD, DISPLAY_NAME_FIELD, derive_display_name
from .inventory import CollectionInventory

logger = get_logger(__name__)


class IdentityProvider(ABC):
    """Read access to the identity provider's user accounts."""

    @abstractmethod
    async def lookup_contact(self, user_id: str) -> Optional[str]:
        """Return the account's contact address, or None if it has none.

        Raises:
            IdentityNotFound: If no account exists for ``user_id``
        """


class DirectoryIdentityProvider(IdentityProvider):
    """Identity provider backed by a static ``user_id -> email`` mapping."""

    def __init__(self, directory: Mapping[str, Optional[str]]):
        self.directory = dict(directory)

    @classmethod
    def from_yaml(cls, path: str) -> "DirectoryIdentityProvider":
        """Load a directory from a YAML mapping of user ids to emails.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not a mapping of strings
        """
        directory_path = Path(path)
        if not directory_path.exists():
            raise FileNotFoundError(f"Identity directory not found: {path}")

        with open(directory_path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise ValueError("Identity directory must be a mapping of user ids to emails")
        for user_id, email in raw.items():
            if not isinstance(user_id, str) or (email is not None and not isinstance(email, str)):
                raise ValueError(f"Invalid identity directory entry: {user_id!r}")
        return cls(raw)

    async def lookup_contact(self, user_id: str) -> Optional[str]:
        if user_id not in self.directory:
            raise IdentityNotFound(user_id)
        return self.directory[user_id]


class BackfillStatus(Enum):
    UPDATED = "updated"
    ALREADY_HAS_DATA = "already_has_data"
    NOT_FOUND = "not_found"
    NO_CONTACT = "no_contact"
    FAILED = "failed"


@dataclass(frozen=True)
class BackfillDetail:
    user_id: str
    status: BackfillStatus
    contact: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BackfillResult:
    """Per-user outcome of a backfill batch."""
    details: List[BackfillDetail] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.details)

    @property
    def updated(self) -> int:
        return sum(1 for d in self.details if d.status is BackfillStatus.UPDATED)

    @property
    def errors(self) -> int:
        return sum(
            1 for d in self.details
            if d.status in (BackfillStatus.NOT_FOUND, BackfillStatus.NO_CONTACT, BackfillStatus.FAILED)
        )

    def summary(self) -> str:
        return f"{self.processed - self.errors} of {self.processed} users processed without error"


class AttributeBackfill:
    """Fills missing contact and display name fields in settings records."""

    def __init__(
        self,
        store: RecordStore,
        inventory: CollectionInventory,
        provider: IdentityProvider,
        max_in_flight: int = 5,
        display_name_field: str = DISPLAY_NAME_FIELD,
        contact_field: str = CONTACT_FIELD
    ):
        source = inventory.attribute_source
        if source is None:
            raise ValueError("inventory has no keyed collection to hold identity attributes")
        self.store = store
        self.collection = source.name
        self.provider = provider
        self.max_in_flight = max(1, max_in_flight)
        self.display_name_field = display_name_field
        self.contact_field = contact_field

    async def populate(self, user_ids: Iterable[str]) -> BackfillResult:
        """Populate missing attributes for each user id.

        One user's failure never stops the others.

        Args:
            user_ids: Users to process (duplicates are processed once)

        Returns:
            BackfillResult with one detail per distinct user id

        Raises:
            ValueError: If ``user_ids`` is empty
        """
        ids = list(dict.fromkeys(uid for uid in user_ids if uid))
        if not ids:
            raise ValueError("user_ids must be a non-empty list")

        outcomes = await gather_bounded(
            [partial(self._populate_one, user_id) for user_id in ids],
            self.max_in_flight
        )

        result = BackfillResult()
        for user_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Attribute backfill failed", user_id=user_id, error=str(outcome))
                outcome = BackfillDetail(user_id, BackfillStatus.FAILED, error=str(outcome))
            result.details.append(outcome)

        logger.info(
            "Attribute backfill complete",
            processed=result.processed,
            updated=result.updated,
            errors=result.errors,
        )
        return result

    async def _populate_one(self, user_id: str) -> BackfillDetail:
        try:
            contact = await self.provider.lookup_contact(user_id)
        except IdentityNotFound as e:
            return BackfillDetail(user_id, BackfillStatus.NOT_FOUND, error=e.message)

        if not contact or not contact.strip():
            return BackfillDetail(user_id, BackfillStatus.NO_CONTACT, error="account has no contact address")
        contact = contact.strip()

        existing = await self.store.get_by_key(self.collection, user_id)
        if existing is not None and existing.get(self.contact_field) and existing.get(self.display_name_field):
            return BackfillDetail(user_id, BackfillStatus.ALREADY_HAS_DATA, contact=existing.get(self.contact_field))

        fields: Dict[str, str] = {
            self.contact_field: contact,
            self.display_name_field: derive_display_name(contact),
        }
        if existing is None:
            fields[USER_ID_FIELD] = user_id
        await self.store.upsert_by_key(self.collection, user_id, fields)
        return BackfillDetail(user_id, BackfillStatus.UPDATED, contact=contact)
