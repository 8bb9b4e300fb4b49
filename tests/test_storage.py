"""
Unit tests for storage layer.

Tests schema creation, record insertion, and the SQLite record store.
"""

import os
import tempfile

import pytest

from pantry_admin.core.errors import RecordStoreError
from pantry_admin.storage.db import get_connection
from pantry_admin.storage.models import FieldEquals, Record, user_id_equals
from pantry_admin.storage.repository import (
    SqliteRecordStore,
    get_store,
    initialize_schema,
    insert_records
)


RECORDS = [
    Record("userSettings", "user-1", {"userId": "user-1", "email": "one@example.com"}),
    Record("foodItems", "food-b", {"userId": "user-1", "name": "Milk"}),
    Record("foodItems", "food-a", {"userId": "user-1", "name": "Eggs"}),
    Record("foodItems", "food-c", {"userId": "user-2", "name": "Bread"}),
]


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify table is created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name='record'
                """)
                tables = cursor.fetchall()
                assert len(tables) == 1

                cursor = conn.execute("PRAGMA table_info(record)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == ['collection', 'id', 'data']
            finally:
                conn.close()

    def test_schema_creation_is_repeatable(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestRecordModel:
    """Test record snapshots and predicates."""

    def test_record_data_is_read_only(self):
        record = Record("foodItems", "food-1", {"userId": "user-1"})
        with pytest.raises(TypeError):
            record.data["userId"] = "user-2"

    def test_record_is_a_snapshot(self):
        source = {"userId": "user-1"}
        record = Record("foodItems", "food-1", source)
        source["userId"] = "user-2"
        assert record.user_id == "user-1"

    def test_user_id_ignores_non_strings(self):
        assert Record("foodItems", "f", {"userId": 42}).user_id is None
        assert Record("foodItems", "f", {"userId": ""}).user_id is None
        assert Record("foodItems", "f", {}).user_id is None

    def test_invalid_field_name_rejected(self):
        with pytest.raises(ValueError, match="Invalid field name"):
            FieldEquals("userId') OR 1=1 --", "x")

    def test_predicate_matches(self):
        record = Record("foodItems", "f", {"userId": "user-1"})
        assert user_id_equals("user-1").matches(record)
        assert not user_id_equals("user-2").matches(record)


class TestSqliteRecordStore:
    """Test the SQLite-backed record store."""

    def setup_method(self):
        """Set up test database."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.db")
        initialize_schema(self.db_path)
        insert_records(RECORDS, self.db_path)
        self.store = SqliteRecordStore(self.db_path)

    def teardown_method(self):
        """Clean up test database."""
        self.temp_dir.cleanup()

    @pytest.mark.asyncio
    async def test_scan_returns_records_in_id_order(self):
        records = await self.store.scan("foodItems")
        assert [r.id for r in records] == ["food-a", "food-b", "food-c"]
        assert records[0].get("name") == "Eggs"

    @pytest.mark.asyncio
    async def test_scan_with_predicate(self):
        records = await self.store.scan("foodItems", user_id_equals("user-1"))
        assert [r.id for r in records] == ["food-a", "food-b"]

    @pytest.mark.asyncio
    async def test_scan_unknown_collection_is_empty(self):
        assert await self.store.scan("mealPlans") == []

    @pytest.mark.asyncio
    async def test_get_by_key(self):
        record = await self.store.get_by_key("userSettings", "user-1")
        assert record is not None
        assert record.get("email") == "one@example.com"
        assert await self.store.get_by_key("userSettings", "user-9") is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self):
        assert await self.store.delete_by_key("foodItems", "food-a") is True
        assert await self.store.delete_by_key("foodItems", "food-a") is False
        remaining = await self.store.scan("foodItems")
        assert [r.id for r in remaining] == ["food-b", "food-c"]

    @pytest.mark.asyncio
    async def test_upsert_merges_fields(self):
        record = await self.store.upsert_by_key("userSettings", "user-1", {"username": "one"})
        assert record.get("email") == "one@example.com"
        assert record.get("username") == "one"

        stored = await self.store.get_by_key("userSettings", "user-1")
        assert stored.get("username") == "one"

    @pytest.mark.asyncio
    async def test_upsert_creates_missing_record(self):
        await self.store.upsert_by_key("userSettings", "user-2", {"userId": "user-2"})
        stored = await self.store.get_by_key("userSettings", "user-2")
        assert stored is not None
        assert stored.user_id == "user-2"

    @pytest.mark.asyncio
    async def test_delete_matching(self):
        outcomes = await self.store.delete_matching("foodItems", user_id_equals("user-1"))
        assert [o.record_id for o in outcomes] == ["food-a", "food-b"]
        assert all(o.ok for o in outcomes)
        remaining = await self.store.scan("foodItems")
        assert [r.id for r in remaining] == ["food-c"]

    @pytest.mark.asyncio
    async def test_store_errors_are_wrapped(self):
        """A database without the schema raises RecordStoreError, not sqlite3.Error."""
        store = SqliteRecordStore(os.path.join(self.temp_dir.name, "empty.db"))
        with pytest.raises(RecordStoreError) as exc_info:
            await store.scan("foodItems")
        assert exc_info.value.collection == "foodItems"
        assert exc_info.value.operation == "scan"


class TestRecordInsertion:
    """Test bulk record insertion."""

    def test_insert_empty_record_list(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            insert_records([], db_path)

            conn = get_connection(db_path)
            try:
                count = conn.execute("SELECT COUNT(*) FROM record").fetchone()[0]
                assert count == 0
            finally:
                conn.close()

    def test_insert_replaces_existing(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            insert_records([Record("foodItems", "f", {"name": "old"})], db_path)
            insert_records([Record("foodItems", "f", {"name": "new"})], db_path)

            conn = get_connection(db_path)
            try:
                rows = conn.execute("SELECT data FROM record").fetchall()
                assert len(rows) == 1
                assert '"new"' in rows[0]["data"]
            finally:
                conn.close()


class TestGetStore:
    """Test the shared store accessor."""

    def test_same_path_returns_same_store(self):
        assert get_store("a.db") is get_store("a.db")

    def test_new_path_replaces_store(self):
        first = get_store("a.db")
        second = get_store("b.db")
        assert second is not first
        assert second.db_path == "b.db"
