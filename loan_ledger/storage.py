"""
Storage Backend Module

Provides the abstract storage interface and implementations for in-memory
(testing) and SQLite (persistence). All monetary values stored as Decimal
strings.

Every record carries a ``_version`` counter. Writes may be made conditional on
the version read earlier (optimistic concurrency), and batches may be inserted
under a unique guard key so that a second insert of the same batch is refused
by the store itself.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, date, timezone
import copy
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict, fields
from enum import Enum
from pathlib import Path
from contextlib import contextmanager

from .errors import ConcurrencyConflict, PersistenceError


VERSION_KEY = "_version"


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # The store owns the version counter
        result.pop('version', None)
        return {key: _encode_value(value) for key, value in result.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary, ignoring keys the record does not declare"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        known = {f.name for f in fields(cls)}
        if 'version' in known:
            data['version'] = data.get(VERSION_KEY, 0)
        return cls(**{key: value for key, value in data.items() if key in known})


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any],
             expected_version: Optional[int] = None) -> int:
        """
        Save a record and return its new version.

        With ``expected_version`` set the write only succeeds if the stored
        version still matches (0 means the record must not exist yet);
        otherwise ConcurrencyConflict is raised.
        """
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
    def insert_many_if_absent(self, table: str, records: List[Dict[str, Any]],
                              guard_key: str) -> bool:
        """
        Insert a batch of records unless a batch with the same guard key was
        already inserted. Returns False when the guard was already taken.
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
            self.commit()
        except Exception:
            self.rollback()
            raise


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._guards: set = set()
        self._lock = threading.RLock()
        self._depth = 0
        self._snapshot = None

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy through JSON to prevent external mutation
        return json.loads(json.dumps(data, default=str))

    def save(self, table: str, record_id: str, data: Dict[str, Any],
             expected_version: Optional[int] = None) -> int:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            existing = self._data[table].get(record_id)
            current = existing.get(VERSION_KEY, 0) if existing is not None else 0

            if expected_version is not None:
                if expected_version == 0 and existing is not None:
                    raise ConcurrencyConflict(f"{table}/{record_id} already exists")
                if expected_version != 0 and (existing is None or current != expected_version):
                    raise ConcurrencyConflict(
                        f"{table}/{record_id} changed (expected version {expected_version}, found {current})"
                    )

            record = self._copy(data)
            record[VERSION_KEY] = current + 1
            self._data[table][record_id] = record
            return record[VERSION_KEY]

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

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
            return [self._copy(record) for record in self._data[table].values()
                    if _matches(record, filters)]

    def insert_many_if_absent(self, table: str, records: List[Dict[str, Any]],
                              guard_key: str) -> bool:
        """Insert a guarded batch under the storage lock"""
        with self._lock:
            if guard_key in self._guards:
                return False
            self._ensure_table(table)
            for data in records:
                record = self._copy(data)
                record[VERSION_KEY] = 1
                self._data[table][record['id']] = record
            self._guards.add(guard_key)
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

    def begin_transaction(self) -> None:
        """Take the storage lock and snapshot state for rollback"""
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = (copy.deepcopy(self._data), set(self._guards))
        self._depth += 1

    def commit(self) -> None:
        """Keep changes and release the storage lock"""
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        """Restore the snapshot taken when the outermost transaction began"""
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._data, self._guards = self._snapshot
            self._snapshot = None
        self._lock.release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    GUARD_TABLE = "_batch_guards"

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._depth = 0
        self._tables: set = set()
        try:
            # Set isolation_level to 'DEFERRED' to enable manual transaction control
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False,
                                               isolation_level='DEFERRED')
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.GUARD_TABLE} (
                    guard_key TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
            """)
            self._connection.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open SQLite database {self.db_path}: {e}")

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite error: {e}")

    def _maybe_commit(self) -> None:
        # Only commit if not in transaction
        if self._depth == 0:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any],
             expected_version: Optional[int] = None) -> int:
        """Save a record to SQLite, conditionally on the stored version"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()

            row = self._connection.execute(
                f"SELECT version FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            current = row['version'] if row else 0

            if expected_version is not None:
                if expected_version == 0 and row is not None:
                    raise ConcurrencyConflict(f"{table}/{record_id} already exists")
                if expected_version != 0 and (row is None or current != expected_version):
                    raise ConcurrencyConflict(
                        f"{table}/{record_id} changed (expected version {expected_version}, found {current})"
                    )

            new_version = current + 1
            record = dict(data)
            record[VERSION_KEY] = new_version
            data_json = json.dumps(record, default=str)

            if row is None:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, version, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (record_id, data_json, new_version, now, now))
            else:
                cursor = self._connection.execute(f"""
                    UPDATE {table} SET data = ?, version = ?, updated_at = ?
                    WHERE id = ? AND version = ?
                """, (data_json, new_version, now, record_id, current))
                if cursor.rowcount == 0:
                    raise ConcurrencyConflict(f"{table}/{record_id} changed during write")

            self._maybe_commit()
            return new_version

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY created_at")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def insert_many_if_absent(self, table: str, records: List[Dict[str, Any]],
                              guard_key: str) -> bool:
        """Claim the guard key and insert the batch in one transaction"""
        with self.atomic(), self._translate_errors():
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            cursor = self._connection.execute(
                f"INSERT OR IGNORE INTO {self.GUARD_TABLE} (guard_key, created_at) VALUES (?, ?)",
                (guard_key, now)
            )
            if cursor.rowcount == 0:
                return False

            for data in records:
                record = dict(data)
                record[VERSION_KEY] = 1
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, version, created_at, updated_at)
                    VALUES (?, ?, 1, ?, ?)
                """, (record['id'], json.dumps(record, default=str), now, now))
            return True

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT COUNT(*) as count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock, self._translate_errors():
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._maybe_commit()

    def begin_transaction(self) -> None:
        """Start a database transaction, holding the connection lock until it ends"""
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        try:
            self._depth -= 1
            if self._depth == 0:
                with self._translate_errors():
                    self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        try:
            self._depth -= 1
            if self._depth == 0:
                # Tables created inside the transaction are gone as well
                self._tables.clear()
                with self._translate_errors():
                    self._connection.rollback()
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
