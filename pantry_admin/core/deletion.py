"""
Cascading deletion of a user's records.

Deletion is planned and executed in one call: the plan is always built from
a fresh scan of every inventory collection, then every planned record is
deleted with bounded concurrency. Nothing is retried automatically; because
deleting a missing record counts as success, re-running the whole operation
after a partial failure is safe and converges.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

from pantry_admin.config.logging_config import get_logger
from pantry_admin.storage.models import check_user_id, user_id_equals
from pantry_admin.storage.repository import RecordStore

from .concurrency import gather_bounded
from .errors import FailureKind, PartialFailure
from .inventory import CollectionInventory, CollectionInventoryEntry

logger = get_logger(__name__)

DEFAULT_MAX_IN_FLIGHT_DELETES = 50
DEFAULT_MAX_DELETES_PER_COLLECTION = 10


@dataclass(frozen=True)
class DeletionTarget:
    """Records to delete from one collection."""
    collection: str
    record_ids: Tuple[str, ...]


@dataclass
class DeletionPlan:
    """What would be deleted for a user, as of the moment it was built.

    ``failures`` lists collections whose records could not be enumerated;
    they have no target and are reported as failed when executed.
    """
    user_id: str
    targets: List[DeletionTarget] = field(default_factory=list)
    failures: List[PartialFailure] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return sum(len(t.record_ids) for t in self.targets)


@dataclass
class CollectionOutcome:
    """Per-collection delete tally. ``attempted == succeeded + failed``."""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def record_success(self) -> None:
        self.attempted += 1
        self.succeeded += 1

    def record_failure(self, message: str) -> None:
        self.attempted += 1
        self.failed += 1
        self.errors.append(message)


@dataclass
class DeletionResult:
    """Outcome of deleting one user's data across every collection."""
    user_id: str
    per_collection: Dict[str, CollectionOutcome] = field(default_factory=dict)

    @property
    def overall_succeeded(self) -> bool:
        """True only if every targeted record in every collection was deleted."""
        return all(outcome.failed == 0 for outcome in self.per_collection.values())

    @property
    def attempted_count(self) -> int:
        return sum(o.attempted for o in self.per_collection.values())

    @property
    def succeeded_count(self) -> int:
        return sum(o.succeeded for o in self.per_collection.values())

    @property
    def failed_count(self) -> int:
        return sum(o.failed for o in self.per_collection.values())

    @property
    def failures(self) -> List[PartialFailure]:
        return [
            PartialFailure(FailureKind.RECORD_DELETE_FAILED, name, error)
            for name, outcome in self.per_collection.items()
            for error in outcome.errors
        ]

    def summary(self) -> str:
        return f"{self.succeeded_count} of {self.attempted_count} deletes succeeded"

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form for audit logs and API responses."""
        return {
            "user_id": self.user_id,
            "overall_succeeded": self.overall_succeeded,
            "per_collection": {
                name: {
                    "attempted": o.attempted,
                    "succeeded": o.succeeded,
                    "failed": o.failed,
                    "errors": list(o.errors),
                }
                for name, o in self.per_collection.items()
            },
        }


class CascadingDeletionEngine:
    """Deletes every record referencing a user across the inventory."""

    def __init__(
        self,
        store: RecordStore,
        inventory: CollectionInventory,
        max_in_flight_deletes: int = DEFAULT_MAX_IN_FLIGHT_DELETES,
        max_deletes_per_collection: int = DEFAULT_MAX_DELETES_PER_COLLECTION,
        max_in_flight_scans: Optional[int] = None
    ):
        if max_in_flight_deletes < 1 or max_deletes_per_collection < 1:
            raise ValueError("delete concurrency limits must be >= 1")
        self.store = store
        self.inventory = inventory
        self.max_in_flight_deletes = max_in_flight_deletes
        self.max_deletes_per_collection = max_deletes_per_collection
        self.max_in_flight_scans = max(1, min(max_in_flight_scans or len(inventory), len(inventory)))

    async def plan(self, user_id: str) -> DeletionPlan:
        """Enumerate the user's records in every inventory collection.

        Keyed collections are checked with a key lookup, the rest with a
        ``userId`` filtered scan.

        Args:
            user_id: User identifier

        Returns:
            DeletionPlan reflecting the store's current contents
        """
        check_user_id(user_id)
        entries = list(self.inventory)
        outcomes = await gather_bounded(
            [partial(self._enumerate, entry, user_id) for entry in entries],
            self.max_in_flight_scans
        )

        plan = DeletionPlan(user_id=user_id)
        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "Could not enumerate records for deletion",
                    user_id=user_id,
                    collection=entry.name,
                    error=str(outcome),
                )
                plan.failures.append(PartialFailure.collection_unavailable(entry.name, outcome))
            else:
                plan.targets.append(DeletionTarget(entry.name, outcome))
        return plan

    async def execute(self, plan: DeletionPlan) -> DeletionResult:
        """Delete every record in ``plan``.

        Collections are processed concurrently and independently; a failure
        in one never cancels deletes in flight elsewhere.

        Args:
            plan: Plan from ``plan()``

        Returns:
            DeletionResult with one outcome per inventory collection
        """
        shared = asyncio.Semaphore(self.max_in_flight_deletes)
        outcomes = await asyncio.gather(
            *(self._delete_target(target, shared) for target in plan.targets)
        )

        per_collection: Dict[str, CollectionOutcome] = dict(
            zip((t.collection for t in plan.targets), outcomes)
        )
        for failure in plan.failures:
            outcome = CollectionOutcome()
            outcome.record_failure(f"could not enumerate records: {failure.message}")
            per_collection[failure.collection] = outcome

        ordered = {
            name: per_collection[name] for name in self.inventory.names if name in per_collection
        }
        return DeletionResult(user_id=plan.user_id, per_collection=ordered)

    async def delete_all_user_data(self, user_id: str) -> DeletionResult:
        """Permanently delete every record referencing ``user_id``.

        Args:
            user_id: User identifier

        Returns:
            DeletionResult; ``overall_succeeded`` is False if any record or
            any collection enumeration failed
        """
        check_user_id(user_id)
        logger.warning("User data deletion initiated", user_id=user_id)

        plan = await self.plan(user_id)
        result = await self.execute(plan)

        log = logger.info if result.overall_succeeded else logger.error
        log(
            "User data deletion finished",
            user_id=user_id,
            overall_succeeded=result.overall_succeeded,
            attempted=result.attempted_count,
            succeeded=result.succeeded_count,
            failed=result.failed_count,
        )
        return result

    async def _enumerate(self, entry: CollectionInventoryEntry, user_id: str) -> Tuple[str, ...]:
        if entry.is_keyed:
            record = await self.store.get_by_key(entry.name, user_id)
            return (record.id,) if record is not None else ()
        records = await self.store.scan(entry.name, user_id_equals(user_id))
        return tuple(sorted(record.id for record in records))

    async def _delete_target(
        self,
        target: DeletionTarget,
        shared: asyncio.Semaphore
    ) -> CollectionOutcome:
        results = await gather_bounded(
            [partial(self.store.delete_by_key, target.collection, rid) for rid in target.record_ids],
            self.max_deletes_per_collection,
            shared
        )

        outcome = CollectionOutcome()
        for record_id, result in zip(target.record_ids, results):
            if isinstance(result, Exception):
                outcome.record_failure(f"{record_id}: {result}")
            else:
                outcome.record_success()
        return outcome
