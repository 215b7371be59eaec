"""Durable key-value stores for scheduler state.

Any store with ``load(key)`` / ``save(key, value)`` will do. Values are
JSON-compatible dicts/lists. Writes are last-write-wins; there is one
scheduler instance per session, so no locking across processes.
"""

import json
import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from compoundefi.utils.exceptions import StorageError
from compoundefi.utils.logging import get_logger

logger = get_logger(__name__)


class SchedulerStore(ABC):
    """Abstract key-value store."""

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """Load a value.

        Args:
            key: Storage key

        Returns:
            Stored value, or None when absent

        Raises:
            StorageError: If the backend fails
        """
        pass

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Save a value, replacing any previous one.

        Raises:
            StorageError: If the backend fails
        """
        pass


class InMemoryStore(SchedulerStore):
    """Process-local store. Values are deep-copied through JSON."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def load(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key} is not JSON serializable: {e}") from e

    def keys(self):
        return list(self._data)


class JsonFileStore(SchedulerStore):
    """Single JSON file holding all keys.

    Writes go to a temporary file in the same directory that then replaces
    the original, so a crash mid-write never leaves a truncated file.
    """

    def __init__(self, path: str | Path):
        """Initialize file store.

        Args:
            path: Path to the JSON file (created on first save)
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt state file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"State file {self.path} does not hold a JSON object")
        return data

    def load(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(key)

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            try:
                payload = json.dumps(data, indent=2)
            except (TypeError, ValueError) as e:
                raise StorageError(f"Value for {key} is not JSON serializable: {e}") from e

            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_path, self.path)
            except OSError as e:
                logger.error("Failed to save %s to %s: %s", key, self.path, e)
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise StorageError(f"Failed to save {key}: {e}") from e


class SQLiteStore(SchedulerStore):
    """SQLite-backed key-value store.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """

    def __init__(self, db_path: str | Path):
        """Initialize database store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self.create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(self.db_path)
        return self._local.connection

    def create_tables(self) -> None:
        """Create the key-value table if it doesn't exist."""
        try:
            conn = self._get_connection()
            with conn:
                conn.execute(self.SCHEMA)
            logger.info("Scheduler store initialized at %s", self.db_path)
        except sqlite3.Error as e:
            logger.error("Failed to create tables: %s", e)
            raise StorageError(f"Database initialization failed: {e}") from e

    def load(self, key: str) -> Optional[Any]:
        try:
            row = self._get_connection().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load {key}: {e}") from e
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored value for {key} is not valid JSON: {e}") from e

    def save(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key} is not JSON serializable: {e}") from e

        conn = self._get_connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                    """,
                    (key, payload, datetime.now().isoformat()),
                )
        except sqlite3.Error as e:
            logger.error("Failed to save %s: %s", key, e)
            raise StorageError(f"Failed to save {key}: {e}") from e

    def close(self) -> None:
        """Close this thread's connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection


def create_store(config: Any) -> SchedulerStore:
    """Create the store named by ``storage.backend``.

    Args:
        config: Config instance

    Returns:
        SchedulerStore implementation
    """
    backend = config.get("storage.backend", "json")
    path = config.get("storage.path", "data/optimizer_state.json")

    if backend == "memory":
        return InMemoryStore()
    if backend == "json":
        return JsonFileStore(path)
    if backend == "sqlite":
        return SQLiteStore(path)
    raise StorageError(f"Unknown storage backend: {backend}")
