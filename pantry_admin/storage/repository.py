"""
Repository pattern for data access.

Defines the record store interface the admin subsystem talks to and a
SQLite-backed document store implementing it.
"""

import asyncio
import json
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pantry_admin.core.errors import RecordStoreError

from .db import DEFAULT_DB_PATH, get_connection
from .models import FieldEquals, Record


@dataclass(frozen=True)
class DeleteOutcome:
    """Outcome of deleting one record; ``error`` is None on success."""
    record_id: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RecordStore(ABC):
    """Asynchronous client for a store of named record collections.

    Each call is independent: there are no joins and no multi-collection
    transactions. Any call may fail with RecordStoreError.
    """

    @abstractmethod
    async def scan(
        self,
        collection: str,
        predicate: Optional[FieldEquals] = None
    ) -> List[Record]:
        """Return every record in ``collection`` matching ``predicate``."""

    @abstractmethod
    async def get_by_key(self, collection: str, key: str) -> Optional[Record]:
        """Return the record stored under ``key``, or None when absent."""

    @abstractmethod
    async def delete_by_key(self, collection: str, key: str) -> bool:
        """Delete the record stored under ``key``.

        Deleting an absent record is not an error.

        Returns:
            True if a record was removed, False if none existed
        """

    @abstractmethod
    async def upsert_by_key(
        self,
        collection: str,
        key: str,
        fields: Mapping[str, Any]
    ) -> Record:
        """Merge ``fields`` into the record under ``key``, creating it if needed."""

    async def delete_matching(
        self,
        collection: str,
        predicate: FieldEquals
    ) -> List[DeleteOutcome]:
        """Delete every record matching ``predicate``, one outcome per record."""
        records = await self.scan(collection, predicate)
        outcomes = []
        for record in records:
            try:
                await self.delete_by_key(collection, record.id)
                outcomes.append(DeleteOutcome(record.id))
            except RecordStoreError as e:
                outcomes.append(DeleteOutcome(record.id, error=str(e)))
        return outcomes


class SqliteRecordStore(RecordStore):
    """Document store keeping JSON records in a single SQLite table.

    Blocking sqlite calls run in worker threads so the event loop is only
    suspended at store boundaries.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    async def scan(
        self,
        collection: str,
        predicate: Optional[FieldEquals] = None
    ) -> List[Record]:
        return await self._run("scan", collection, self._scan, collection, predicate)

    async def get_by_key(self, collection: str, key: str) -> Optional[Record]:
        return await self._run("get_by_key", collection, self._get, collection, key)

    async def delete_by_key(self, collection: str, key: str) -> bool:
        return await self._run("delete_by_key", collection, self._delete, collection, key)

    async def upsert_by_key(
        self,
        collection: str,
        key: str,
        fields: Mapping[str, Any]
    ) -> Record:
        return await self._run(
            "upsert_by_key", collection, self._upsert, collection, key, dict(fields)
        )

    async def _run(self, operation: str, collection: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            raise RecordStoreError(
                f"{operation} failed on {collection}: {e}",
                collection=collection,
                operation=operation
            ) from e

    def _scan(self, collection: str, predicate: Optional[FieldEquals]) -> List[Record]:
        conn = get_connection(self.db_path)
        try:
            query = "SELECT id, data FROM record WHERE collection = ?"
            params: List[Any] = [collection]
            if predicate is not None:
                query += f" AND json_extract(data, '$.{predicate.field}') = ?"
                params.append(predicate.value)
            query += " ORDER BY id"
            cursor = conn.execute(query, params)
            return [
                Record(collection=collection, id=row["id"], data=json.loads(row["data"]))
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def _get(self, collection: str, key: str) -> Optional[Record]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, data FROM record WHERE collection = ? AND id = ?",
                (collection, key)
            ).fetchone()
            if row is None:
                return None
            return Record(collection=collection, id=row["id"], data=json.loads(row["data"]))
        finally:
            conn.close()

    def _delete(self, collection: str, key: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM record WHERE collection = ? AND id = ?",
                (collection, key)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def _upsert(self, collection: str, key: str, fields: Dict[str, Any]) -> Record:
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT data FROM record WHERE collection = ? AND id = ?",
                (collection, key)
            ).fetchone()
            data = json.loads(row["data"]) if row is not None else {}
            data.update(fields)
            conn.execute(
                "INSERT OR REPLACE INTO record (collection, id, data) VALUES (?, ?, ?)",
                (collection, key, _dump(data))
            )
            conn.commit()
            return Record(collection=collection, id=key, data=data)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def _dump(data: Mapping[str, Any]) -> str:
    return json.dumps(dict(data), sort_keys=True, default=str)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the record table if it doesn't exist.

    Every collection shares one table; a record is addressed by
    ``(collection, id)`` and its fields are stored as a JSON document.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS record (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            )
        """)
        conn.commit()
    finally:
        conn.close()


def insert_records(records: Iterable[Record], db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert or replace records atomically.

    Args:
        records: Records to write
        db_path: Path to SQLite database file
    """
    records = list(records)
    if not records:
        return

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        for record in records:
            conn.execute(
                "INSERT OR REPLACE INTO record (collection, id, data) VALUES (?, ?, ?)",
                (record.collection, record.id, _dump(record.data))
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# Global store instance
_default_store: Optional[SqliteRecordStore] = None


def get_store(db_path: str = DEFAULT_DB_PATH) -> SqliteRecordStore:
    """Get a store instance.

    Returns a shared SqliteRecordStore, replacing it when a different
    database path is requested.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of SqliteRecordStore
    """
    global _default_store
    if _default_store is None or _default_store.db_path != db_path:
        _default_store = SqliteRecordStore(db_path)
    return _default_store
