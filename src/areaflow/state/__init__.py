"""State persistence backends."""

from .backends import DatabaseBackend, SQLiteBackend, create_backend

__all__ = ["DatabaseBackend", "SQLiteBackend", "create_backend"]
