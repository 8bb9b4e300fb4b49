"""
Shared fixtures for Pantry Admin tests.
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pytest

from pantry_admin.core.errors import RecordStoreError
from pantry_admin.core.inventory import build_inventory
from pantry_admin.core.pricing import ModelPricing, PricingTable
from pantry_admin.storage.models import FieldEquals, Record
from pantry_admin.storage.repository import RecordStore, initialize_schema


class MemoryRecordStore(RecordStore):
    """In-memory record store with injectable failures.

    ``fail_deletes`` holds collection names (every delete fails) or
    ``(collection, record_id)`` pairs (that record's delete fails). ``calls``
    logs ``(operation, collection, key)``; for scans the key is the predicate.
    """

    def __init__(
        self,
        records: Iterable[Record] = (),
        fail_scans: Iterable[str] = (),
        fail_gets: Iterable[str] = (),
        fail_deletes: Iterable[Any] = (),
        fail_upserts: Iterable[str] = ()
    ):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for record in records:
            self.put(record)
        self.fail_scans = set(fail_scans)
        self.fail_gets = set(fail_gets)
        self.fail_deletes = set(fail_deletes)
        self.fail_upserts = set(fail_upserts)
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def put(self, record: Record) -> None:
        self.collections.setdefault(record.collection, {})[record.id] = dict(record.data)

    def ids_for(self, collection: str, user_id: str) -> List[str]:
        return sorted(
            rid for rid, data in self.collections.get(collection, {}).items()
            if data.get("userId") == user_id
        )

    async def _enter(self, operation: str, collection: str, key: Any = None) -> None:
        self.calls.append((operation, collection, key))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)

    async def scan(self, collection: str, predicate: Optional[FieldEquals] = None) -> List[Record]:
        await self._enter("scan", collection, predicate)
        try:
            if collection in self.fail_scans:
                raise RecordStoreError(f"scan failed on {collection}", collection, "scan")
            records = [
                Record(collection, rid, data)
                for rid, data in sorted(self.collections.get(collection, {}).items())
            ]
            if predicate is not None:
                records = [r for r in records if predicate.matches(r)]
            return records
        finally:
            self.in_flight -= 1

    async def get_by_key(self, collection: str, key: str) -> Optional[Record]:
        await self._enter("get_by_key", collection, key)
        try:
            if collection in self.fail_gets:
                raise RecordStoreError(f"get failed on {collection}", collection, "get_by_key")
            data = self.collections.get(collection, {}).get(key)
            return Record(collection, key, data) if data is not None else None
        finally:
            self.in_flight -= 1

    async def delete_by_key(self, collection: str, key: str) -> bool:
        await self._enter("delete_by_key", collection, key)
        try:
            if collection in self.fail_deletes or (collection, key) in self.fail_deletes:
                raise RecordStoreError(f"delete failed for {key}", collection, "delete_by_key")
            return self.collections.get(collection, {}).pop(key, None) is not None
        finally:
            self.in_flight -= 1

    async def upsert_by_key(self, collection: str, key: str, fields: Mapping[str, Any]) -> Record:
        await self._enter("upsert_by_key", collection, key)
        try:
            if collection in self.fail_upserts:
                raise RecordStoreError(f"upsert failed on {collection}", collection, "upsert_by_key")
            data = self.collections.setdefault(collection, {}).setdefault(key, {})
            data.update(fields)
            return Record(collection, key, data)
        finally:
            self.in_flight -= 1


@pytest.fixture
def make_store():
    """Factory for in-memory stores."""
    return MemoryRecordStore


@pytest.fixture
def inventory():
    """Small inventory: one settings collection, three item collections, usage."""
    return build_inventory(
        keyed=["userSettings"],
        field_referencing=["foodItems", "shoppingLists", "userItems", "aiUsage"],
        usage_collection="aiUsage",
    )


@pytest.fixture
def pricing():
    """Price table with round numbers for hand-checkable costs."""
    return PricingTable(
        prices={
            "base": ModelPricing(Decimal("0.50"), Decimal("1.50")),
            "premium": ModelPricing(Decimal("2.00"), Decimal("4.00")),
        },
        default_model="base",
    )


@pytest.fixture
def db_path(tmp_path):
    """Initialized SQLite record store path."""
    path = str(tmp_path / "records.db")
    initialize_schema(path)
    return path
