"""Abstract base class for portfolio storage.

The rebalancer reads and writes all persisted state through a PortfolioStore:
portfolio records keyed by id, plus a handful of scalar slots identified by
DataKey. Stores must support ``transaction()`` so that a rejected operation
leaves no partial mutation behind.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any, Iterator, Optional

from rebalancer.portfolio.models import Portfolio


class DataKey(Enum):
    """Scalar storage slots."""

    ADMIN = "admin"
    ORACLE_ADDRESS = "oracle_address"
    EMERGENCY_STOP = "emergency_stop"
    INITIALIZED = "initialized"
    NEXT_PORTFOLIO_ID = "next_portfolio_id"


class PortfolioStore(ABC):
    """Abstract key-value store for rebalancer state.

    ``get_portfolio`` returns an independent copy; changes only become
    visible after ``set_portfolio``.

    Example:
        >>> store = InMemoryPortfolioStore()
        >>> with store.transaction():
        ...     store.set(DataKey.EMERGENCY_STOP, True)
        ...     store.set_portfolio(1, portfolio)
    """

    @abstractmethod
    def get(self, key: DataKey, default: Any = None) -> Any:
        """Read a scalar slot, or ``default`` when absent."""
        pass

    @abstractmethod
    def set(self, key: DataKey, value: Any) -> None:
        """Write a scalar slot."""
        pass

    @abstractmethod
    def get_portfolio(self, portfolio_id: int) -> Optional[Portfolio]:
        """Read a portfolio record, or None when absent."""
        pass

    @abstractmethod
    def set_portfolio(self, portfolio_id: int, portfolio: Portfolio) -> None:
        """Insert or replace a portfolio record."""
        pass

    @abstractmethod
    def portfolio_ids(self) -> list[int]:
        """Ids of all stored portfolios in ascending order."""
        pass

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Context manager grouping writes into one all-or-nothing unit.

        Writes inside the block are discarded if the block raises. Nested
        blocks join the outermost one.
        """
        pass

    def has(self, key: DataKey) -> bool:
        return self.get(key) is not None

    def iter_portfolios(self) -> Iterator[tuple[int, Portfolio]]:
        for portfolio_id in self.portfolio_ids():
            portfolio = self.get_portfolio(portfolio_id)
            if portfolio is not None:
                yield portfolio_id, portfolio
