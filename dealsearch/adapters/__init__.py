"""
Adapters - External service integrations.

All storage access is wrapped here to isolate domains from driver changes.
"""

from .sqlite import SQLiteRecordStore

__all__ = [
    "SQLiteRecordStore",
]
