"""SQLite adapter - aiosqlite-backed record store."""

from .repository import SQLiteRecordStore

__all__ = ["SQLiteRecordStore"]
