"""Abstract base class for price oracles.

This module defines the read-only PriceOracle interface that the rebalancing
engine consumes, and the PriceQuote value it returns. Prices are integers
scaled by a fixed implicit exponent of 10^14; no floating point is involved.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

PRICE_DECIMALS = 14
PRICE_SCALE = 10**PRICE_DECIMALS


@dataclass(frozen=True)
class PriceQuote:
    """Last known price of an asset.

    Attributes:
        asset: Asset identifier
        price: Integer price scaled by 10^14
        timestamp: Time the quote was published (integer seconds)
    """

    asset: str
    price: int
    timestamp: int

    def age(self, now: int) -> int:
        """Seconds elapsed since the quote, never negative."""
        return max(now - self.timestamp, 0)

    def is_stale(self, now: int, max_age_seconds: int) -> bool:
        """Check if the quote is older than ``max_age_seconds``.

        A quote from the future counts as age 0.

        Example:
            >>> quote = PriceQuote("XLM", 12 * PRICE_SCALE, timestamp=1000)
            >>> quote.is_stale(now=4600, max_age_seconds=3600)
            False
            >>> quote.is_stale(now=4601, max_age_seconds=3600)
            True
        """
        return self.age(now) > max_age_seconds

    def to_decimal_price(self, decimals: int = PRICE_DECIMALS) -> int:
        """Drop ``decimals`` digits of scale using integer division."""
        return self.price // 10**decimals


class PriceOracle(ABC):
    """Abstract interface for external price feeds.

    Concrete oracles (static tables, HTTP feeds) implement ``last_price``.
    ``None`` means "no quote available", which is distinct from a stale quote.

    Example:
        >>> class MyOracle(PriceOracle):
        ...     def last_price(self, asset):
        ...         return PriceQuote(asset, 1 * PRICE_SCALE, 0)
    """

    @abstractmethod
    def last_price(self, asset: str) -> Optional[PriceQuote]:
        """Return the most recent quote for ``asset``.

        Args:
            asset: Asset identifier

        Returns:
            PriceQuote, or None if the feed has no price for the asset

        Raises:
            DataProviderError: If the feed cannot be reached
        """
        pass

    def decimals(self) -> int:
        """Number of implicit decimal digits in quoted prices."""
        return PRICE_DECIMALS

    def last_prices(self, assets) -> dict[str, PriceQuote]:
        """Fetch quotes for several assets, leaving out the unavailable ones."""
        quotes = {}
        for asset in assets:
            quote = self.last_price(asset)
            if quote is not None:
                quotes[asset] = quote
        return quotes
