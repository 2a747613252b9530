"""Database models"""

from shopstate.db.models.storage_entry import StorageEntry

__all__ = [
    "StorageEntry",
]
