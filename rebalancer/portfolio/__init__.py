"""Portfolio Layer.

Portfolio records and the pure computations over them.

Components:
- Portfolio: Persisted aggregate (targets, balances, thresholds)
- validate_allocations: Target percentages must sum to exactly 100
- calculate_portfolio_value: Integer valuation against oracle quotes
- needs_rebalance / calculate_drift: Drift detection
- plan_rebalance_trades: Advisory trade amounts toward target
"""

from rebalancer.portfolio.allocation import validate_allocations
from rebalancer.portfolio.drift import AssetDrift, calculate_drift, needs_rebalance
from rebalancer.portfolio.models import Portfolio, RebalanceResult
from rebalancer.portfolio.trade_planner import plan_rebalance_trades, target_balances
from rebalancer.portfolio.valuation import (
    AssetValuation,
    asset_value,
    calculate_portfolio_value,
    percent_of_total,
    value_breakdown,
)

__all__ = [
    "Portfolio",
    "RebalanceResult",
    "validate_allocations",
    "AssetValuation",
    "asset_value",
    "calculate_portfolio_value",
    "percent_of_total",
    "value_breakdown",
    "AssetDrift",
    "calculate_drift",
    "needs_rebalance",
    "plan_rebalance_trades",
    "target_balances",
]
