"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Multi-record changes go through save_many(), which applies a batch of
PendingWrite objects atomically and enforces per-record version conditions,
so a batch either lands completely or not at all.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


class StorageError(Exception):
    """Raised when the storage backend fails"""


class VersionConflictError(StorageError):
    """Raised when a conditional write finds an unexpected stored version"""

    def __init__(self, table: str, record_id: str, reason: str):
        self.table = table
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Conflict on {table}/{record_id}: {reason}")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


@dataclass(frozen=True)
class PendingWrite:
    """
    One record write inside an atomic batch

    expected_version:
        None -- unconditional upsert
        0    -- the record must not exist yet (insert-only)
        n    -- the stored record's "version" field must equal n
    """
    table: str
    record_id: str
    data: Dict[str, Any]
    expected_version: Optional[int] = None


def check_expected_version(current: Optional[Dict[str, Any]], write: PendingWrite) -> None:
    """Raise VersionConflictError if the stored record does not satisfy the write's condition"""
    if write.expected_version is None:
        return

    if write.expected_version == 0:
        if current is not None:
            raise VersionConflictError(write.table, write.record_id, "record already exists")
        return

    if current is None:
        raise VersionConflictError(write.table, write.record_id, "record does not exist")

    if current.get('version') != write.expected_version:
        raise VersionConflictError(
            write.table, write.record_id,
            f"expected version {write.expected_version}, found {current.get('version')}"
        )


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save_many(self, writes: Iterable[PendingWrite]) -> None:
        """Apply a batch of writes atomically, checking every version condition first"""
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
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
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
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save_many(self, writes: Iterable[PendingWrite]) -> None:
        """Check all conditions, then apply all writes under one lock acquisition"""
        writes = list(writes)
        with self._lock:
            for write in writes:
                self._ensure_table(write.table)
                check_expected_version(self._data[write.table].get(write.record_id), write)

            # Serialize everything before touching the tables so a bad payload
            # cannot leave the batch half-applied
            prepared = [
                (write.table, write.record_id, json.loads(json.dumps(write.data, default=str)))
                for write in writes
            ]
            for table, record_id, data in prepared:
                self._data[table][record_id] = data

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

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(json.loads(json.dumps(record)))
            return results

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


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._in_transaction = False
        self._known_tables = set()

        with self._translate_errors():
            # isolation_level='DEFERRED' lets us drive transactions by hand
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                with self._lock:
                    self._connection.execute("PRAGMA journal_mode = WAL")
                    self._connection.execute("PRAGMA synchronous = NORMAL")
                    self._connection.commit()

    @contextmanager
    def _translate_errors(self):
        """Re-raise driver errors as StorageError"""
        try:
            yield
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite error: {exc}") from exc

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
            if not self._in_transaction:
                self._connection.commit()
            self._known_tables.add(table)

    def _upsert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        data_json = json.dumps(data, default=str)

        # Use INSERT OR REPLACE to handle updates, keeping the original created_at
        self._connection.execute(f"""
            INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
            VALUES (?, ?,
                COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                ?)
        """, (record_id, data_json, record_id, now, now))

    def _load_row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        cursor = self._connection.execute(f"""
            SELECT data FROM {table} WHERE id = ?
        """, (record_id,))
        row = cursor.fetchone()
        if row:
            return json.loads(row['data'])
        return None

    def save_many(self, writes: Iterable[PendingWrite]) -> None:
        """Apply the batch inside one SQLite transaction; any failure rolls it all back"""
        writes = list(writes)
        with self._lock, self._translate_errors():
            for table in {write.table for write in writes}:
                self._ensure_table(table)

            with self.atomic():
                for write in writes:
                    check_expected_version(self._load_row(write.table, write.record_id), write)
                    self._upsert(write.table, write.record_id, write.data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            return self._load_row(table, record_id)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

            if not self._in_transaction:
                self._connection.commit()

    def begin_transaction(self) -> None:
        """Start a database transaction holding the write lock"""
        with self._lock:
            if not self._in_transaction:
                if not self._connection.in_transaction:
                    # IMMEDIATE takes the write lock now, so version checks
                    # and writes cannot interleave with another connection
                    self._connection.execute("BEGIN IMMEDIATE")
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Create a storage backend from a URL

    memory://          -> InMemoryStorage
    sqlite://          -> SQLiteStorage on an in-memory database
    sqlite:///path.db  -> SQLiteStorage on a file
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()

    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")

    raise ValueError(f"Unsupported database URL: {database_url}")
