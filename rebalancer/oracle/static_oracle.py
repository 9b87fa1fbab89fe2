"""In-memory price oracle.

Holds a table of quotes that can be set programmatically or loaded from a YAML
price file. Used by tests, the CLI and any deployment that pushes prices in
instead of pulling them.
"""

from pathlib import Path
from typing import Optional

import yaml

from rebalancer.oracle.base import PriceOracle, PriceQuote
from rebalancer.utils.exceptions import DataProviderError
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


class StaticPriceOracle(PriceOracle):
    """Price oracle backed by a plain dictionary.

    Example:
        >>> oracle = StaticPriceOracle()
        >>> oracle.set_price("XLM", 12 * PRICE_SCALE, timestamp=1_700_000_000)
        >>> oracle.last_price("XLM").price
        1200000000000000
    """

    def __init__(self, quotes: Optional[dict[str, PriceQuote]] = None):
        self._quotes: dict[str, PriceQuote] = dict(quotes or {})

    def set_price(self, asset: str, price: int, timestamp: int) -> None:
        self._quotes[asset] = PriceQuote(asset=asset, price=price, timestamp=timestamp)

    def remove_price(self, asset: str) -> None:
        self._quotes.pop(asset, None)

    def last_price(self, asset: str) -> Optional[PriceQuote]:
        return self._quotes.get(asset)

    @classmethod
    def from_file(cls, filepath: str | Path) -> "StaticPriceOracle":
        """Load quotes from a YAML price file.

        Expected layout::

            prices:
              XLM: {price: 1200000000000000, timestamp: 1700000000}
              USDC: {price: 100000000000000, timestamp: 1700000000}

        Args:
            filepath: Path to the YAML price file

        Returns:
            StaticPriceOracle with the file's quotes

        Raises:
            DataProviderError: If the file is missing or malformed
        """
        path = Path(filepath)
        if not path.exists():
            raise DataProviderError(f"Price file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        quotes = {}
        for asset, entry in (data.get("prices") or {}).items():
            try:
                quotes[asset] = PriceQuote(
                    asset=asset,
                    price=int(entry["price"]),
                    timestamp=int(entry["timestamp"]),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise DataProviderError(
                    f"Malformed price entry for {asset} in {filepath}: {e}"
                ) from e

        logger.info("Loaded %d quotes from %s", len(quotes), filepath)
        return cls(quotes)
