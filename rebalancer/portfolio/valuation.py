"""Valuation engine.

Converts balances and oracle quotes into integer values and percentage
shares. Every division truncates toward zero, matching fixed-point integer
semantics; Python's ``//`` floors instead, so it is never used directly on
signed operands here.

Assets without a quote contribute nothing to the total. A total of zero (or
one that is understated because quotes are missing) means "insufficient price
coverage", not "no drift".
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from rebalancer.oracle.base import PRICE_SCALE, PriceOracle
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


def div_trunc(numerator: int, denominator: int) -> int:
    """Integer division truncating toward zero.

    Raises:
        ZeroDivisionError: If ``denominator`` is 0
    """
    quotient = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -quotient
    return quotient


def asset_value(balance: int, price: int) -> int:
    """Value of ``balance`` units at a 10^14-scaled ``price``."""
    return div_trunc(balance * price, PRICE_SCALE)


def percent_of_total(value: int, total_value: int) -> int:
    """Whole-percent share of ``value`` in ``total_value``."""
    return div_trunc(value * 100, total_value)


def calculate_portfolio_value(
    balances: Mapping[str, int],
    oracle: PriceOracle,
) -> int:
    """Sum the value of every balance that has a price quote.

    Args:
        balances: Held amounts {asset: amount}
        oracle: Price source

    Returns:
        Total value; unpriced assets count as 0
    """
    total_value = 0
    for asset, balance in balances.items():
        quote = oracle.last_price(asset)
        if quote is None:
            logger.debug("No quote for %s, excluded from total value", asset)
            continue
        total_value += asset_value(balance, quote.price)
    return total_value


@dataclass(frozen=True)
class AssetValuation:
    """Valuation of one balance entry.

    Attributes:
        asset: Asset identifier
        balance: Held amount
        price: Quoted price, or None if no quote exists
        value: Balance value (0 when unpriced)
    """

    asset: str
    balance: int
    price: Optional[int]
    value: int

    @property
    def priced(self) -> bool:
        return self.price is not None


def value_breakdown(
    balances: Mapping[str, int],
    oracle: PriceOracle,
) -> list[AssetValuation]:
    """Per-asset valuation rows, in balance-map order."""
    rows = []
    for asset, balance in balances.items():
        quote = oracle.last_price(asset)
        if quote is None:
            rows.append(AssetValuation(asset, balance, None, 0))
        else:
            rows.append(
                AssetValuation(asset, balance, quote.price, asset_value(balance, quote.price))
            )
    return rows
