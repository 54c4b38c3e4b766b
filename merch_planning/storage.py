"""
Storage Backend Module

Provides the abstract storage interface used by the workflow engine and two
implementations: in-memory (testing) and SQLite (persistence). Records are
JSON documents keyed by id within a table.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Enum):
                result[key] = value.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        # Convert ISO strings back to datetime objects
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


def _matches(record: Dict[str, Any], expected: Dict[str, Any]) -> bool:
    """True when every expected key is present with an equal value"""
    for key, value in expected.items():
        if key not in record or record[key] != value:
            return False
    return True


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
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def compare_and_set(self, table: str, record_id: str,
                        expected: Dict[str, Any], updates: Dict[str, Any]) -> bool:
        """
        Apply ``updates`` to a record only if it currently matches ``expected``.

        Returns False (and writes nothing) when the record is missing or any
        expected field differs.
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
        except Exception:
            self.rollback()
            raise
        self.commit()


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    ``atomic()`` holds the storage lock for the whole block, so concurrent
    writers are serialized and a failed block is restored from a snapshot.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [
                json.loads(json.dumps(record))
                for record in self._data[table].values()
                if _matches(record, filters)
            ]

    def compare_and_set(self, table: str, record_id: str,
                        expected: Dict[str, Any], updates: Dict[str, Any]) -> bool:
        """Conditionally update a record under the storage lock"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is None or not _matches(record, expected):
                return False
            merged = dict(record)
            merged.update(json.loads(json.dumps(updates, default=str)))
            self._data[table][record_id] = merged
            return True

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def begin_transaction(self) -> None:
        """Take the storage lock and snapshot the data for rollback"""
        self._lock.acquire()
        if self._tx_depth == 0:
            self._snapshot = json.loads(json.dumps(self._data))
        self._tx_depth += 1

    def commit(self) -> None:
        """Drop the snapshot and release the storage lock"""
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        """Restore the snapshot and release the storage lock"""
        self._tx_depth -= 1
        if self._tx_depth == 0 and self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._known_tables = set()
        # Tables created inside an open transaction; forgotten on rollback
        self._pending_tables = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @property
    def _in_transaction(self) -> bool:
        return self._tx_depth > 0

    def _maybe_commit(self) -> None:
        # Only commit if not in transaction
        if not self._in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._known_tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._maybe_commit()
            if self._in_transaction:
                self._pending_tables.add(table)
            else:
                self._known_tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))
            self._maybe_commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                if _matches(record, filters):
                    results.append(record)

            return results

    def compare_and_set(self, table: str, record_id: str,
                        expected: Dict[str, Any], updates: Dict[str, Any]) -> bool:
        """
        Conditionally update a record.

        The UPDATE is guarded on the exact document that was checked, so a
        concurrent writer on another connection makes it affect zero rows.
        """
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row is None:
                return False

            current_json = row['data']
            record = json.loads(current_json)
            if not _matches(record, expected):
                return False

            record.update(json.loads(json.dumps(updates, default=str)))
            cursor = self._connection.execute(f"""
                UPDATE {table} SET data = ?, updated_at = ?
                WHERE id = ? AND data = ?
            """, (json.dumps(record, default=str), datetime.now(timezone.utc).isoformat(),
                  record_id, current_json))
            self._maybe_commit()
            return cursor.rowcount == 1

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._maybe_commit()

    def begin_transaction(self) -> None:
        """Start a database transaction, holding the connection lock until it ends"""
        self._lock.acquire()
        # SQLite with isolation_level='DEFERRED' starts the transaction on the first write
        self._tx_depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        try:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                try:
                    self._connection.commit()
                    self._known_tables.update(self._pending_tables)
                except sqlite3.Error:
                    self._connection.rollback()
                    raise
                finally:
                    self._pending_tables.clear()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        try:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._connection.rollback()
                self._pending_tables.clear()
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
    Build a storage backend from a database URL.

    ``memory`` (or an empty URL) gives InMemoryStorage; ``sqlite:///path``
    gives SQLiteStorage.
    """
    if not database_url or database_url == "memory":
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
