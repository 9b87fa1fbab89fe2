"""Storage Layer.

Persisted rebalancer state behind a transactional key-value interface.

Components:
- PortfolioStore: Abstract store (scalar slots + portfolio records)
- DataKey: Scalar slot identifiers
- InMemoryPortfolioStore: Dictionary-backed store
- SQLitePortfolioStore: SQLite-backed store
"""

from rebalancer.storage.base import DataKey, PortfolioStore
from rebalancer.storage.memory import InMemoryPortfolioStore
from rebalancer.storage.sqlite_store import SQLitePortfolioStore

__all__ = [
    "DataKey",
    "PortfolioStore",
    "InMemoryPortfolioStore",
    "SQLitePortfolioStore",
]
