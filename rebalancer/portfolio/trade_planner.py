"""Advisory trade planning.

Computes, for each target asset, the signed amount that would move the current
balance to its target share of total value. Nothing is executed here; the
planned target balances are what a caller would submit to
``execute_rebalance`` as proposed balances.
"""

from typing import Dict

from rebalancer.oracle.base import PRICE_SCALE, PriceOracle
from rebalancer.portfolio.models import Portfolio
from rebalancer.portfolio.valuation import calculate_portfolio_value, div_trunc

DEFAULT_MIN_TRADE_AMOUNT = 1_000_000


def target_balances(portfolio: Portfolio, oracle: PriceOracle) -> Dict[str, int]:
    """Balance each priced target asset should hold at its target share.

    Assets with no quote or a non-positive price are left out.
    """
    total_value = calculate_portfolio_value(portfolio.current_balances, oracle)
    targets = {}
    for asset, target_percent in portfolio.target_allocations.items():
        quote = oracle.last_price(asset)
        if quote is None or quote.price <= 0:
            continue
        target_value = div_trunc(total_value * target_percent, 100)
        targets[asset] = div_trunc(target_value * PRICE_SCALE, quote.price)
    return targets


def plan_rebalance_trades(
    portfolio: Portfolio,
    oracle: PriceOracle,
    min_trade_amount: int = DEFAULT_MIN_TRADE_AMOUNT,
) -> Dict[str, int]:
    """Signed trade amounts per target asset (positive = buy).

    Trades whose absolute size is at or below ``min_trade_amount`` are
    dropped as dust.

    Args:
        portfolio: Portfolio to plan for
        oracle: Price source
        min_trade_amount: Dust threshold

    Returns:
        {asset: target_balance - current_balance}
    """
    trades = {}
    for asset, target_balance in target_balances(portfolio, oracle).items():
        trade_amount = target_balance - portfolio.balance_of(asset)
        if abs(trade_amount) > min_trade_amount:
            trades[asset] = trade_amount
    return trades
