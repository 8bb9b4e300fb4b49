"""
Per-user and system-wide statistics.

System totals come from one reconciliation pass. Per-user figures come from
one filtered query per field-referencing collection; the usage collection's
query doubles as the usage lookup that feeds the cost estimate.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, FrozenSet, List, Optional, Tuple

from pantry_admin.config.logging_config import get_logger
from pantry_admin.storage.models import Record, check_user_id, user_id_equals
from pantry_admin.storage.repository import RecordStore

from .authorization import IdentityClaims
from .concurrency import gather_bounded
from .errors import PartialFailure
from .identity import IdentityAttributes, IdentityReconciler, ReconciliationResult
from .inventory import CollectionInventory
from .pricing import CostEstimate, PRICING_TABLE, PricingTable, estimate_usage_cost
from .usage import UsageRecord, UsageSummary, summarize_usage

logger = get_logger(__name__)


@dataclass
class SystemStats:
    """System-wide counts. ``total_users`` counts each identifier once."""
    total_users: int
    collection_totals: Dict[str, int]
    failures: List[PartialFailure] = field(default_factory=list)
    collections_total: int = 0

    @property
    def unavailable(self) -> List[str]:
        return [f.collection for f in self.failures if f.collection]

    @property
    def is_complete(self) -> bool:
        return not self.failures

    @property
    def succeeded_count(self) -> int:
        return len(self.collection_totals)

    @property
    def attempted_count(self) -> int:
        return self.collections_total

    def summary(self) -> str:
        return f"{self.succeeded_count} of {self.attempted_count} collections scanned"


@dataclass
class UserRecord:
    """Statistics for one user, built fresh for each request.

    A collection listed in ``unavailable`` has a count of 0 that means
    "could not be loaded", not "confirmed empty".
    """
    id: str
    display_name: Optional[str] = None
    contact: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=dict)
    unavailable: FrozenSet[str] = frozenset()
    usage: Optional[UsageSummary] = None
    cost: Optional[CostEstimate] = None
    failures: List[PartialFailure] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(self.counts.values())

    @property
    def is_partial(self) -> bool:
        return bool(self.unavailable)

    @property
    def succeeded_count(self) -> int:
        return len(self.counts) - len(self.unavailable)

    @property
    def attempted_count(self) -> int:
        return len(self.counts)

    def summary(self) -> str:
        return f"{self.succeeded_count} of {self.attempted_count} counts loaded"


@dataclass
class UserStatsReport:
    """Statistics for every reconciled user."""
    users: List[UserRecord]
    reconciliation: ReconciliationResult

    @property
    def is_partial(self) -> bool:
        return not self.reconciliation.is_complete or any(u.is_partial for u in self.users)

    @property
    def failures(self) -> List[PartialFailure]:
        failures = list(self.reconciliation.failures)
        for user in self.users:
            failures.extend(user.failures)
        return failures


class StatisticsAggregator:
    """Builds statistics from the record store."""

    def __init__(
        self,
        store: RecordStore,
        inventory: CollectionInventory,
        reconciler: IdentityReconciler,
        pricing: PricingTable = PRICING_TABLE,
        max_in_flight: Optional[int] = None
    ):
        self.store = store
        self.inventory = inventory
        self.reconciler = reconciler
        self.pricing = pricing
        self.max_in_flight = max(1, max_in_flight or len(inventory))

    async def aggregate_system_stats(
        self,
        current_identity: Optional[IdentityClaims] = None
    ) -> SystemStats:
        """Count every collection and the distinct users across them.

        Returns:
            SystemStats; collections that failed to scan are listed as
            unavailable and contribute no users
        """
        reconciliation = await self.reconciler.reconcile(current_identity)
        return SystemStats(
            total_users=len(reconciliation.user_ids),
            collection_totals=dict(reconciliation.collection_totals),
            failures=list(reconciliation.failures),
            collections_total=reconciliation.collections_total,
        )

    async def aggregate_user_stats(
        self,
        user_id: str,
        attributes: Optional[IdentityAttributes] = None,
        current_identity: Optional[IdentityClaims] = None
    ) -> UserRecord:
        """Count one user's records in every field-referencing collection.

        Unknown users get all-zero counts. A failed query degrades to a zero
        count marked unavailable; it never raises.

        Without ``attributes`` the user's settings are looked up by key and
        combined with the records the count queries return, so no collection
        is scanned in full.

        Args:
            user_id: User identifier
            attributes: Display attributes from a prior reconciliation
            current_identity: Claims of the signed-in caller, used only to
                fill attributes that no collection supplied

        Returns:
            UserRecord for the user

        Raises:
            ValueError: If ``user_id`` is empty
        """
        check_user_id(user_id)
        if attributes is not None:
            return await self._user_stats(user_id, attributes, None)

        (keyed, lookup_failures), (found, failures) = await asyncio.gather(
            self.reconciler.fetch_keyed(user_id),
            self._scan_user(user_id, None),
        )
        attributes = self.reconciler.resolve_user(user_id, {**found, **keyed}, current_identity)
        return self._build_record(user_id, attributes, found, lookup_failures + failures)

    async def aggregate_all_user_stats(
        self,
        current_identity: Optional[IdentityClaims] = None
    ) -> UserStatsReport:
        """Reconcile users, then build statistics for each of them.

        Users are ordered by total record count (descending), then by id.
        All per-user queries share one in-flight limit.
        """
        reconciliation = await self.reconciler.reconcile(current_identity)
        shared = asyncio.Semaphore(self.max_in_flight)
        user_ids = sorted(reconciliation.user_ids)

        outcomes = await gather_bounded(
            [
                partial(self._user_stats, user_id, reconciliation.attributes_for(user_id), shared)
                for user_id in user_ids
            ],
            self.max_in_flight
        )

        users = []
        for user_id, outcome in zip(user_ids, outcomes):
            if isinstance(outcome, Exception):
                logger.error("User statistics failed", user_id=user_id, error=str(outcome))
                attrs = reconciliation.attributes_for(user_id)
                outcome = UserRecord(
                    id=user_id,
                    display_name=attrs.display_name,
                    contact=attrs.contact,
                    counts={e.name: 0 for e in self.inventory.field_referencing},
                    unavailable=frozenset(e.name for e in self.inventory.field_referencing),
                    failures=[PartialFailure.collection_unavailable(None, outcome)],
                )
            users.append(outcome)

        users.sort(key=lambda u: (-u.total_records, u.id))
        return UserStatsReport(users=users, reconciliation=reconciliation)

    async def _user_stats(
        self,
        user_id: str,
        attributes: IdentityAttributes,
        shared: Optional[asyncio.Semaphore]
    ) -> UserRecord:
        found, failures = await self._scan_user(user_id, shared)
        return self._build_record(user_id, attributes, found, failures)

    async def _scan_user(
        self,
        user_id: str,
        shared: Optional[asyncio.Semaphore]
    ) -> Tuple[Dict[str, List[Record]], List[PartialFailure]]:
        entries = self.inventory.field_referencing
        predicate = user_id_equals(user_id)
        outcomes = await gather_bounded(
            [partial(self.store.scan, entry.name, predicate) for entry in entries],
            self.max_in_flight,
            shared
        )

        found: Dict[str, List[Record]] = {}
        failures: List[PartialFailure] = []
        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "User count query failed",
                    user_id=user_id,
                    collection=entry.name,
                    error=str(outcome),
                )
                failures.append(PartialFailure.collection_unavailable(entry.name, outcome))
            else:
                found[entry.name] = outcome
        return found, failures

    def _build_record(
        self,
        user_id: str,
        attributes: IdentityAttributes,
        found: Dict[str, List[Record]],
        failures: List[PartialFailure]
    ) -> UserRecord:
        names = [entry.name for entry in self.inventory.field_referencing]
        counts = {name: len(found.get(name, ())) for name in names}
        unavailable = frozenset(name for name in names if name not in found)

        usage = None
        cost = None
        failures = list(failures)
        usage_records = found.get(self.inventory.usage_collection)
        if usage_records is not None:
            usage = summarize_usage(UsageRecord.from_record(r) for r in usage_records)
            cost = estimate_usage_cost(usage, self.pricing)
            failures.extend(cost.failures)
            if cost.approximate:
                logger.debug("Cost estimate is approximate", user_id=user_id)

        return UserRecord(
            id=user_id,
            display_name=attributes.display_name,
            contact=attributes.contact,
            counts=counts,
            unavailable=unavailable,
            usage=usage,
            cost=cost,
            failures=failures,
        )
