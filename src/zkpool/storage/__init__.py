"""Storage layer for persistent data."""

from zkpool.storage.database import (
    DatabaseManager,
    CachedLeaf,
    StoredAccount,
    Base,
)

__all__ = [
    "DatabaseManager",
    "CachedLeaf",
    "StoredAccount",
    "Base",
]
