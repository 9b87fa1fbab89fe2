"""In-memory portfolio store."""

from contextlib import contextmanager
from typing import Any, Iterator, Optional

from rebalancer.portfolio.models import Portfolio
from rebalancer.storage.base import DataKey, PortfolioStore


class InMemoryPortfolioStore(PortfolioStore):
    """Dictionary-backed store with snapshot/restore transactions."""

    def __init__(self):
        self._values: dict[DataKey, Any] = {}
        self._portfolios: dict[int, Portfolio] = {}
        self._depth = 0

    def get(self, key: DataKey, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: DataKey, value: Any) -> None:
        self._values[key] = value

    def get_portfolio(self, portfolio_id: int) -> Optional[Portfolio]:
        portfolio = self._portfolios.get(portfolio_id)
        return portfolio.copy() if portfolio is not None else None

    def set_portfolio(self, portfolio_id: int, portfolio: Portfolio) -> None:
        self._portfolios[portfolio_id] = portfolio.copy()

    def portfolio_ids(self) -> list[int]:
        return sorted(self._portfolios)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        values = dict(self._values)
        portfolios = dict(self._portfolios)
        self._depth = 1
        try:
            yield
        except BaseException:
            self._values = values
            self._portfolios = portfolios
            raise
        finally:
            self._depth = 0
