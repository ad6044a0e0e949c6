"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). Records are JSON documents keyed by id; all monetary
values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from contextlib import contextmanager

from .errors import StoreUnavailableError


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record, returning whether it existed"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         expected: Dict[str, Any]) -> bool:
        """
        Replace a record only if every field in ``expected`` still holds the
        given value. Returns False when the record is missing or any field
        differs; nothing is written in that case.
        """
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @property
    def supports_transactions(self) -> bool:
        """Whether rollback() actually undoes writes"""
        return False

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


def _copy(data: Any) -> Any:
    # JSON round trip doubles as a deep copy and a serialisability check
    return json.loads(json.dumps(data, default=str))


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    Transactions hold the storage lock from begin to commit/rollback, so a
    transaction is isolated from every other thread. Rollback replays an
    undo log of the prior values of the records written inside it.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._undo: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def _remember(self, table: str, record_id: str) -> None:
        """Keep the first prior value of a record written in a transaction"""
        key = (table, record_id)
        if self._tx_depth > 0 and key not in self._undo:
            # Stored dicts are replaced, never mutated, so no copy is needed
            self._undo[key] = self._data[table].get(record_id)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._remember(table, record_id)
            self._data[table][record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table, in insertion order"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id not in self._data[table]:
                return False
            self._remember(table, record_id)
            del self._data[table][record_id]
            return True

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [
                _copy(record) for record in self._data[table].values()
                if _matches(record, filters)
            ]

    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         expected: Dict[str, Any]) -> bool:
        """Conditionally replace a record"""
        with self._lock:
            self._ensure_table(table)
            current = self._data[table].get(record_id)
            if current is None or not _matches(current, expected):
                return False
            self._remember(table, record_id)
            self._data[table][record_id] = _copy(data)
            return True

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            for record_id in self._data[table]:
                self._remember(table, record_id)
            self._data[table] = {}

    @property
    def supports_transactions(self) -> bool:
        return True

    def begin_transaction(self) -> None:
        """Acquire the storage lock; writes are journaled until it ends"""
        self._lock.acquire()
        self._tx_depth += 1

    def commit(self) -> None:
        """Drop the undo log and release the lock"""
        try:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._undo = {}
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Restore prior record values and release the lock"""
        try:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                for (table, record_id), prior in self._undo.items():
                    records = self._data.setdefault(table, {})
                    if prior is None:
                        records.pop(record_id, None)
                    else:
                        records[record_id] = prior
                self._undo = {}
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._tables = set()
        try:
            # isolation_level='DEFERRED' leaves transaction control to us
            self._connection = sqlite3.connect(
                self.db_path, check_same_thread=False, isolation_level='DEFERRED'
            )
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open SQLite database {self.db_path}: {e}")

    @property
    def _in_transaction(self) -> bool:
        return self._tx_depth > 0

    @contextmanager
    def _guard(self):
        """Serialize access and translate driver errors"""
        with self._lock:
            if self._connection is None:
                raise StoreUnavailableError("SQLite storage is closed")
            try:
                yield self._connection
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"SQLite error: {e}")

    def _maybe_commit(self, connection: sqlite3.Connection) -> None:
        if not self._in_transaction:
            connection.commit()

    def _ensure_table(self, connection: sqlite3.Connection, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._maybe_commit(connection)
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._guard() as connection:
            self._ensure_table(connection, table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates, keeping the original created_at
            connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))
            self._maybe_commit(connection)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            row = connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,)).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            cursor = connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            row = connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,)).fetchone()
            return row is not None

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            cursor = connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._maybe_commit(connection)
            return cursor.rowcount > 0

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            conditions, params = self._json_conditions(filters)
            where_clause = f"WHERE {conditions}" if conditions else ""
            cursor = connection.execute(f"""
                SELECT data FROM {table} {where_clause}
                ORDER BY created_at, rowid
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def compare_and_save(self, table: str, record_id: str, data: Dict[str, Any],
                         expected: Dict[str, Any]) -> bool:
        """Single UPDATE guarded by the expected field values"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            conditions, params = self._json_conditions(expected)
            guard = f"AND {conditions}" if conditions else ""
            cursor = connection.execute(f"""
                UPDATE {table} SET data = ?, updated_at = ?
                WHERE id = ? {guard}
            """, [
                json.dumps(data, default=str),
                datetime.now(timezone.utc).isoformat(),
                record_id,
                *params,
            ])
            self._maybe_commit(connection)
            return cursor.rowcount > 0

    @staticmethod
    def _json_conditions(filters: Dict[str, Any]):
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            conditions.append("json_extract(data, ?) = ?")
            params.extend([f"$.{key}", value])
        return " AND ".join(conditions), params

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            row = connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """).fetchone()
            return row['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard() as connection:
            self._ensure_table(connection, table)
            connection.execute(f"DELETE FROM {table}")
            self._maybe_commit(connection)

    @property
    def supports_transactions(self) -> bool:
        return True

    def begin_transaction(self) -> None:
        """Start a database transaction, holding the lock until it ends"""
        self._lock.acquire()
        self._tx_depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        try:
            self._tx_depth -= 1
            if self._tx_depth == 0 and self._connection is not None:
                try:
                    self._connection.commit()
                except sqlite3.Error as e:
                    self._connection.rollback()
                    raise StoreUnavailableError(f"SQLite commit failed: {e}")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        try:
            self._tx_depth -= 1
            if self._tx_depth == 0 and self._connection is not None:
                self._connection.rollback()
                # DDL is transactional in SQLite; tables created inside may be gone
                self._tables.clear()
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Create a storage backend from a URL.

    Supported forms: ``memory://``, ``sqlite:///:memory:``,
    ``sqlite:///relative/path.db`` and ``sqlite:////absolute/path.db``.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
