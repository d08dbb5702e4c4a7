"""
SQLite Record Store - JSON documents with per-document atomic updates

Backs the CLI and single-node deployments. Each document is one row;
conditional updates run inside BEGIN IMMEDIATE so the read-check-write of
a compare-and-set cannot interleave with another connection's write.

Schema:
- records table: (collection, id) unique, insertion sequence for ordering
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from urgentfix.kernel.errors import (
    DuplicateRecordError,
    RecordNotFoundError,
    RecordStoreError,
)
from urgentfix.kernel.ids import IdFactory, default_id_factory
from urgentfix.kernel.retry import retry_on_sqlite_lock
from urgentfix.kernel.time import RealTimeProvider, TimeProvider
from urgentfix.store.base import Record, id_prefix
from urgentfix.store.query import Where, matches


class SQLiteRecordStore:
    """
    SQLite-based record store

    Uses WAL mode for crash safety and concurrent readers. Filtering is
    done in Python with the same matcher as the in-memory store, so both
    stores answer every query identically.
    """

    def __init__(
        self,
        db_path: str | Path,
        time_provider: TimeProvider | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        """
        Args:
            db_path: Path to SQLite database file (created if missing)
            time_provider: Clock for created_at/updated_at
            id_factory: Id generator for records created without an id
        """
        self.db_path = Path(db_path)
        self.time_provider = time_provider or RealTimeProvider()
        self.id_factory = id_factory or default_id_factory
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,

                    UNIQUE(collection, id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_collection "
                "ON records(collection, seq)"
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Autocommit mode: transactions are opened explicitly where needed.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=5.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def find(self, collection: str, where: Where | None = None) -> list[Record]:
        try:
            rows = self._select_collection(collection)
        except sqlite3.Error as e:
            raise RecordStoreError(f"Failed to query {collection}: {e}") from e
        docs = [json.loads(row["data_json"]) for row in rows]
        return [doc for doc in docs if matches(doc, where)]

    def find_by_id(self, collection: str, record_id: str) -> Record | None:
        try:
            with self._connect() as conn:
                row = self._select_one(conn, collection, record_id)
        except sqlite3.Error as e:
            raise RecordStoreError(f"Failed to load {collection}/{record_id}: {e}") from e
        return json.loads(row["data_json"]) if row else None

    def create(self, collection: str, data: Record) -> Record:
        now = self.time_provider.now().isoformat()
        doc = dict(data)
        doc["id"] = doc.get("id") or self.id_factory.generate(id_prefix(collection))
        doc.setdefault("created_at", now)
        doc["updated_at"] = now

        try:
            self._insert(collection, doc)
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(collection, doc["id"]) from e
        except sqlite3.Error as e:
            raise RecordStoreError(f"Failed to create {collection}/{doc['id']}: {e}") from e
        return doc

    def update(
        self,
        collection: str,
        record_id: str,
        data: Record,
        expected: Where | None = None,
    ) -> Record | None:
        try:
            return self._conditional_update(collection, record_id, data, expected)
        except sqlite3.Error as e:
            raise RecordStoreError(f"Failed to update {collection}/{record_id}: {e}") from e

    def count(self, collection: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT COUNT(*) FROM records WHERE collection = ?", (collection,)
            )
            return cursor.fetchone()[0]

    # ------------------------------------------------------------------------
    # Internal helpers (raise raw sqlite3 errors so lock contention is retried)
    # ------------------------------------------------------------------------

    @retry_on_sqlite_lock()
    def _select_collection(self, collection: str) -> list[sqlite3.Row]:
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT data_json FROM records WHERE collection = ? ORDER BY seq ASC",
                (collection,),
            )
            return cursor.fetchall()

    def _select_one(
        self, conn: sqlite3.Connection, collection: str, record_id: str
    ) -> sqlite3.Row | None:
        cursor = conn.execute(
            "SELECT data_json FROM records WHERE collection = ? AND id = ?",
            (collection, record_id),
        )
        return cursor.fetchone()

    @retry_on_sqlite_lock()
    def _insert(self, collection: str, doc: Record) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO records (collection, id, data_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (
                    collection,
                    doc["id"],
                    json.dumps(doc),
                    doc["created_at"],
                    doc["updated_at"],
                ),
            )

    @retry_on_sqlite_lock()
    def _conditional_update(
        self,
        collection: str,
        record_id: str,
        data: Record,
        expected: Where | None,
    ) -> Record | None:
        now = self.time_provider.now().isoformat()
        with self._connect() as conn:
            # Take the write lock before reading so the check and the write are atomic
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._select_one(conn, collection, record_id)
                if row is None:
                    raise RecordNotFoundError(collection, record_id)

                current = json.loads(row["data_json"])
                if expected is not None and not matches(current, expected):
                    conn.execute("ROLLBACK")
                    return None

                updated = {**current, **data, "id": record_id, "updated_at": now}
                conn.execute(
                    "UPDATE records SET data_json = ?, updated_at = ? "
                    "WHERE collection = ? AND id = ?",
                    (json.dumps(updated), now, collection, record_id),
                )
                conn.execute("COMMIT")
                return updated
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
