"""
Administrative entry points.

Every method checks the caller against the authorization gate before doing
any work, then delegates to the read path (reconciler and aggregator) or the
write path (deletion engine and attribute backfill). All components share
one collection inventory.
"""

from typing import Iterable, Optional

from pantry_admin.config.loader import AdminConfig
from pantry_admin.config.logging_config import get_logger
from pantry_admin.storage.repository import RecordStore

from .authorization import AuthorizationGate, IdentityClaims
from .backfill import AttributeBackfill, BackfillResult, IdentityProvider
from .deletion import CascadingDeletionEngine, DeletionResult
from .identity import IdentityReconciler
from .stats import StatisticsAggregator, SystemStats, UserRecord, UserStatsReport

logger = get_logger(__name__)


class AdminService:
    """Gated facade over the admin subsystem."""

    def __init__(
        self,
        config: AdminConfig,
        store: RecordStore,
        identity_provider: Optional[IdentityProvider] = None
    ):
        self.config = config
        self.store = store
        self.identity_provider = identity_provider
        self.gate = AuthorizationGate(config.admin_emails)

        limits = config.concurrency
        self.reconciler = IdentityReconciler(
            store,
            config.inventory,
            max_in_flight=limits.max_in_flight_scans,
            display_name_field=config.identity.display_name_field,
            contact_field=config.identity.contact_field,
            derive_display_names=config.identity.derive_display_names,
        )
        self.aggregator = StatisticsAggregator(
            store,
            config.inventory,
            self.reconciler,
            pricing=config.pricing,
            max_in_flight=limits.max_in_flight_scans,
        )
        self.deletion_engine = CascadingDeletionEngine(
            store,
            config.inventory,
            max_in_flight_deletes=limits.max_in_flight_deletes,
            max_deletes_per_collection=limits.max_deletes_per_collection,
            max_in_flight_scans=limits.max_in_flight_scans,
        )

    @property
    def inventory(self):
        return self.config.inventory

    def _authorize(self, claims: Optional[IdentityClaims], operation: str) -> None:
        if not self.gate.is_authorized(claims):
            logger.warning(
                "Unauthorized admin request rejected",
                operation=operation,
                email=claims.email if claims is not None else None,
            )
        self.gate.require(claims)

    async def system_stats(self, claims: Optional[IdentityClaims]) -> SystemStats:
        self._authorize(claims, "system_stats")
        return await self.aggregator.aggregate_system_stats(claims)

    async def user_stats(self, claims: Optional[IdentityClaims], user_id: str) -> UserRecord:
        """Statistics for one user, with attributes looked up by key."""
        self._authorize(claims, "user_stats")
        return await self.aggregator.aggregate_user_stats(user_id, current_identity=claims)

    async def all_user_stats(self, claims: Optional[IdentityClaims]) -> UserStatsReport:
        self._authorize(claims, "all_user_stats")
        return await self.aggregator.aggregate_all_user_stats(claims)

    async def delete_user(self, claims: Optional[IdentityClaims], user_id: str) -> DeletionResult:
        self._authorize(claims, "delete_user")
        logger.warning("Admin requested user deletion", admin=claims.email, user_id=user_id)
        return await self.deletion_engine.delete_all_user_data(user_id)

    async def populate_missing_identity_attributes(
        self,
        claims: Optional[IdentityClaims],
        user_ids: Iterable[str]
    ) -> BackfillResult:
        self._authorize(claims, "populate_missing_identity_attributes")
        if self.identity_provider is None:
            raise ValueError("no identity provider configured")
        backfill = AttributeBackfill(
            self.store,
            self.config.inventory,
            self.identity_provider,
            max_in_flight=self.config.concurrency.max_in_flight_scans,
            display_name_field=self.config.identity.display_name_field,
            contact_field=self.config.identity.contact_field,
        )
        return await backfill.populate(user_ids)
