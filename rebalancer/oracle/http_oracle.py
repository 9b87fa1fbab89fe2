"""HTTP price oracle.

This module reads last prices from a REST price feed. The feed is expected to
answer ``GET {base_url}/prices/{asset}`` with a JSON body::

    {"asset": "XLM", "price": "1200000000000000", "timestamp": 1700000000}

``price`` may be a JSON number or a decimal string (large scaled integers do
not survive a float round-trip in many JSON encoders). A 404 means the feed
has no quote for the asset.
"""

import time
from typing import Optional

import requests

from rebalancer.oracle.base import PriceOracle, PriceQuote
from rebalancer.utils.exceptions import DataProviderError
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


class HttpPriceOracle(PriceOracle):
    """Price oracle backed by a REST endpoint.

    Quotes can be cached for ``cache_seconds`` to limit request volume; the
    cache only shortens round-trips, staleness is still judged from the
    quote's own timestamp.

    Example:
        >>> oracle = HttpPriceOracle("https://prices.example.com", cache_seconds=120)
        >>> quote = oracle.last_price("XLM")
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10,
        cache_seconds: float = 0,
    ):
        """Initialize HTTP oracle.

        Args:
            base_url: Feed root URL (without trailing slash)
            api_key: Optional key sent as the ``X-API-Key`` header
            timeout: Request timeout in seconds
            cache_seconds: How long a fetched quote is reused (0 disables)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.cache_seconds = cache_seconds
        self._cache: dict[str, tuple[float, Optional[PriceQuote]]] = {}

        logger.debug("HttpPriceOracle initialized for %s", self.base_url)

    @classmethod
    def from_settings(cls, settings: dict) -> "HttpPriceOracle":
        """Build an oracle from ``load_oracle_config()`` output."""
        return cls(
            base_url=settings["base_url"],
            api_key=settings.get("api_key"),
            timeout=settings.get("timeout", 10),
            cache_seconds=settings.get("cache_seconds", 0),
        )

    def last_price(self, asset: str) -> Optional[PriceQuote]:
        """Fetch the last quote for ``asset``.

        Raises:
            DataProviderError: If the request fails or the body is malformed
        """
        if self.cache_seconds > 0:
            cached = self._cache.get(asset)
            if cached is not None and time.monotonic() - cached[0] < self.cache_seconds:
                return cached[1]

        quote = self._fetch(asset)

        if self.cache_seconds > 0:
            self._cache[asset] = (time.monotonic(), quote)
        return quote

    def clear_cache(self) -> None:
        self._cache.clear()

    def _fetch(self, asset: str) -> Optional[PriceQuote]:
        url = f"{self.base_url}/prices/{asset}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
            if response.status_code == 404:
                logger.info("No quote available for %s", asset)
                return None
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise DataProviderError(f"Failed to fetch price for {asset}: {e}") from e
        except ValueError as e:
            raise DataProviderError(f"Invalid JSON in price response for {asset}: {e}") from e

        try:
            price = body["price"]
            if isinstance(price, float):
                # Floats cannot represent scaled prices exactly
                raise ValueError(f"price must be an integer, got {price!r}")
            return PriceQuote(
                asset=asset,
                price=int(price),
                timestamp=int(body["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DataProviderError(f"Malformed price response for {asset}: {e}") from e
