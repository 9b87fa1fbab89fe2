"""Execution-time slippage validation.

A caller proposes the balances it claims will result from executing the
rebalance elsewhere. For every target asset the validator derives the
expected balance from the current total value and the target share, and
rejects the whole proposal if any asset deviates by more than the portfolio's
tolerance (in basis points).

Assumes the guard already passed, so every target asset has a positive quote.
"""

from dataclasses import dataclass
from typing import List, Mapping

from rebalancer.oracle.base import PRICE_SCALE, PriceOracle
from rebalancer.portfolio.models import Portfolio
from rebalancer.portfolio.valuation import calculate_portfolio_value, div_trunc
from rebalancer.utils.exceptions import MissingPriceError, SlippageExceededError
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class AssetSlippage:
    """Measured deviation for one target asset.

    Attributes:
        asset: Asset identifier
        expected_balance: Balance implied by total value and target share
        actual_balance: Balance proposed by the caller
        slippage_bps: |expected - actual| * 10000 / |expected|
    """

    asset: str
    expected_balance: int
    actual_balance: int
    slippage_bps: int


def slippage_bps(expected_balance: int, actual_balance: int) -> int:
    """Deviation of ``actual_balance`` from a non-zero ``expected_balance``."""
    return div_trunc(
        abs(expected_balance - actual_balance) * BPS_DENOMINATOR,
        abs(expected_balance),
    )


class SlippageValidator:
    """Validates proposed post-trade balances against target allocations.

    Example:
        >>> validator = SlippageValidator()
        >>> report = validator.validate(portfolio, {"XLM": 150, "USDC": 150}, oracle)
    """

    def measure(
        self,
        portfolio: Portfolio,
        proposed_balances: Mapping[str, int],
        oracle: PriceOracle,
        total_value: int,
    ) -> List[AssetSlippage]:
        """Compute per-asset slippage without enforcing the tolerance.

        Assets whose expected balance is exactly 0 are left out, since the
        ratio is undefined for them.

        Raises:
            MissingPriceError: If a target asset has no quote
        """
        report = []
        for asset, target_percent in portfolio.target_allocations.items():
            quote = oracle.last_price(asset)
            if quote is None:
                raise MissingPriceError(f"Missing price data for {asset}", asset=asset)

            expected_value = div_trunc(total_value * target_percent, 100)
            expected_balance = div_trunc(expected_value * PRICE_SCALE, quote.price)
            if expected_balance == 0:
                continue

            actual_balance = proposed_balances.get(asset, 0)
            report.append(
                AssetSlippage(
                    asset=asset,
                    expected_balance=expected_balance,
                    actual_balance=actual_balance,
                    slippage_bps=slippage_bps(expected_balance, actual_balance),
                )
            )
        return report

    def validate(
        self,
        portfolio: Portfolio,
        proposed_balances: Mapping[str, int],
        oracle: PriceOracle,
    ) -> List[AssetSlippage]:
        """Reject the proposal if any asset deviates beyond tolerance.

        When total value is 0 there is nothing to compare against and the
        proposal is accepted with an empty report.

        Args:
            portfolio: Portfolio being rebalanced (current balances)
            proposed_balances: Caller-claimed resulting balances {asset: amount}
            oracle: Price source

        Returns:
            Per-asset slippage report

        Raises:
            SlippageExceededError: If any asset exceeds the tolerance
        """
        total_value = calculate_portfolio_value(portfolio.current_balances, oracle)
        if total_value == 0:
            logger.info("Total value is 0, slippage validation skipped")
            return []

        report = self.measure(portfolio, proposed_balances, oracle, total_value)
        for row in report:
            if row.slippage_bps > portfolio.slippage_tolerance:
                raise SlippageExceededError(
                    f"Slippage for {row.asset} is {row.slippage_bps} bps "
                    f"(tolerance {portfolio.slippage_tolerance} bps): "
                    f"expected {row.expected_balance}, proposed {row.actual_balance}",
                    asset=row.asset,
                    slippage_bps=row.slippage_bps,
                    tolerance_bps=portfolio.slippage_tolerance,
                )
        return report
