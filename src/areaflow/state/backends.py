"""Database backend abstraction for rule persistence."""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class DatabaseBackend(ABC):
    """Abstract base class for database backends."""

    @abstractmethod
    def execute(self, query: str, params: tuple = ()) -> Any:
        """Execute a query and return cursor."""
        pass

    @abstractmethod
    def executescript(self, script: str) -> None:
        """Execute multiple SQL statements."""
        pass

    @abstractmethod
    def fetchone(self, query: str, params: tuple = ()) -> dict | None:
        """Execute query and fetch one row as dict."""
        pass

    @abstractmethod
    def fetchall(self, query: str, params: tuple = ()) -> list[dict]:
        """Execute query and fetch all rows as dicts."""
        pass

    @abstractmethod
    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Context manager for transactions."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        pass


class SQLiteBackend(DatabaseBackend):
    """SQLite database backend with one connection per thread."""

    def __init__(self, db_path: str = "areaflow.db"):
        """Initialize SQLite backend.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._local = threading.local()
        # Serializes writers across threads; SQLite allows one writer anyway
        self._write_lock = threading.RLock()

    def _get_conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    def execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a query and return cursor."""
        conn = self._get_conn()
        return conn.execute(query, params)

    def executescript(self, script: str) -> None:
        """Execute multiple SQL statements."""
        conn = self._get_conn()
        conn.executescript(script)
        conn.commit()

    def fetchone(self, query: str, params: tuple = ()) -> dict | None:
        """Execute query and fetch one row as dict."""
        cursor = self.execute(query, params)
        row = cursor.fetchone()
        if row:
            return dict(row)
        return None

    def fetchall(self, query: str, params: tuple = ()) -> list[dict]:
        """Execute query and fetch all rows as dicts."""
        cursor = self.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """Context manager for transactions."""
        conn = self._get_conn()
        with self._write_lock:
            try:
                yield
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None


def create_backend(database_url: str) -> DatabaseBackend:
    """Create a backend from a database URL.

    Only ``sqlite:///path`` URLs are supported.
    """
    if database_url.startswith("sqlite:///"):
        return SQLiteBackend(db_path=database_url[len("sqlite:///") :])
    raise ValueError(f"Unsupported database URL: {database_url}")
