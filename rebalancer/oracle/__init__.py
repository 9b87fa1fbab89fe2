"""Price Oracle Layer.

Read-only access to external price feeds. Prices are integers scaled by 10^14.

Components:
- PriceOracle: Abstract read contract (last price per asset, or None)
- PriceQuote: Price, timestamp and staleness helpers
- StaticPriceOracle: In-memory / YAML-file backed quotes
- HttpPriceOracle: REST feed client
- OracleRegistry: Resolves stored oracle addresses to adapters
"""

from rebalancer.oracle.base import PRICE_DECIMALS, PRICE_SCALE, PriceOracle, PriceQuote
from rebalancer.oracle.http_oracle import HttpPriceOracle
from rebalancer.oracle.registry import OracleRegistry
from rebalancer.oracle.static_oracle import StaticPriceOracle

__all__ = [
    "PRICE_DECIMALS",
    "PRICE_SCALE",
    "PriceOracle",
    "PriceQuote",
    "StaticPriceOracle",
    "HttpPriceOracle",
    "OracleRegistry",
]
