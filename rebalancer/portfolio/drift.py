"""Drift detection.

Compares each target asset's current percentage share with its target and
decides whether any asset has drifted past the portfolio's threshold.

Drift detection is advisory: assets without a quote are skipped because their
drift cannot be assessed. Execution (see ``rebalancer.risk.guard``) treats the
same condition as fatal.
"""

from dataclasses import dataclass
from typing import Optional

from rebalancer.oracle.base import PriceOracle
from rebalancer.portfolio.models import Portfolio
from rebalancer.portfolio.valuation import (
    asset_value,
    calculate_portfolio_value,
    percent_of_total,
)
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AssetDrift:
    """Drift of a single target asset.

    Attributes:
        asset: Asset identifier
        target_percent: Target share in whole percent
        current_percent: Current share, or None when the asset has no quote
        drift: abs(current - target), or None when the asset has no quote
        exceeds_threshold: Whether drift is strictly above the threshold
    """

    asset: str
    target_percent: int
    current_percent: Optional[int]
    drift: Optional[int]
    exceeds_threshold: bool = False

    @property
    def priced(self) -> bool:
        return self.current_percent is not None


def _asset_drift(
    portfolio: Portfolio,
    asset: str,
    target_percent: int,
    total_value: int,
    oracle: PriceOracle,
) -> AssetDrift:
    quote = oracle.last_price(asset)
    if quote is None:
        return AssetDrift(asset, target_percent, None, None)

    value = asset_value(portfolio.balance_of(asset), quote.price)
    current_percent = percent_of_total(value, total_value)
    drift = abs(current_percent - target_percent)
    return AssetDrift(
        asset=asset,
        target_percent=target_percent,
        current_percent=current_percent,
        drift=drift,
        exceeds_threshold=drift > portfolio.rebalance_threshold,
    )


def needs_rebalance(portfolio: Portfolio, oracle: PriceOracle) -> bool:
    """Check whether any target asset drifted beyond the threshold.

    Returns False when total value is 0, since drift cannot be assessed
    without value. Stops at the first offending asset.

    Args:
        portfolio: Portfolio to inspect
        oracle: Price source

    Returns:
        True if at least one priced target asset drifted strictly more than
        ``portfolio.rebalance_threshold`` percentage points

    Example:
        >>> # targets 50/50, threshold 5, balances A=200, B=100 at equal prices
        >>> needs_rebalance(portfolio, oracle)  # A holds 66%
        True
    """
    total_value = calculate_portfolio_value(portfolio.current_balances, oracle)
    if total_value == 0:
        logger.debug("Total value is 0, drift not assessable")
        return False

    for asset, target_percent in portfolio.target_allocations.items():
        result = _asset_drift(portfolio, asset, target_percent, total_value, oracle)
        if result.exceeds_threshold:
            logger.debug(
                "%s drifted %d points (threshold %d)",
                asset,
                result.drift,
                portfolio.rebalance_threshold,
            )
            return True

    return False


def calculate_drift(portfolio: Portfolio, oracle: PriceOracle) -> list[AssetDrift]:
    """Full per-asset drift report without short-circuiting.

    Returns an empty list when total value is 0.
    """
    total_value = calculate_portfolio_value(portfolio.current_balances, oracle)
    if total_value == 0:
        return []

    return [
        _asset_drift(portfolio, asset, target_percent, total_value, oracle)
        for asset, target_percent in portfolio.target_allocations.items()
    ]
