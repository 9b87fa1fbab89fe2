"""User-friendly Portfolio API for inspecting rebalancer portfolios.

This module provides a simple, high-level interface over PortfolioRebalancer
for reporting: summaries as dictionaries, allocation reports and event
history as DataFrames.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

import pandas as pd

from rebalancer.engine.events import EventType, RebalanceHistory
from rebalancer.engine.portfolio_rebalancer import PortfolioRebalancer
from rebalancer.portfolio.drift import calculate_drift, needs_rebalance
from rebalancer.portfolio.trade_planner import plan_rebalance_trades
from rebalancer.portfolio.valuation import percent_of_total, value_breakdown
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)

REPORT_COLUMNS = [
    "asset",
    "balance",
    "price",
    "value",
    "current_pct",
    "target_pct",
    "drift",
    "priced",
]
HISTORY_COLUMNS = ["timestamp", "event_type", "portfolio_id", "data"]


class PortfolioAPI:
    """High-level API for portfolio reporting.

    Read-only: nothing here changes rebalancer state.

    Example:
        >>> from rebalancer.api.portfolio_api import PortfolioAPI
        >>>
        >>> history = RebalanceHistory()
        >>> rebalancer = PortfolioRebalancer(store, oracles, auth, event_sink=history)
        >>> api = PortfolioAPI(rebalancer, history=history)
        >>>
        >>> report = api.allocation_report(1)
        >>> print(report[["asset", "current_pct", "target_pct", "drift"]])
    """

    def __init__(
        self,
        rebalancer: PortfolioRebalancer,
        history: Optional[RebalanceHistory] = None,
    ):
        """Initialize PortfolioAPI.

        Args:
            rebalancer: Rebalancer to report on
            history: Event history used by ``rebalance_history`` (optional)
        """
        self.rebalancer = rebalancer
        self.history = history

        logger.debug("PortfolioAPI initialized (history=%s)", history is not None)

    def summary(self, portfolio_id: int) -> Dict:
        """Summarize a portfolio.

        Args:
            portfolio_id: Portfolio to summarize

        Returns:
            Dictionary with:
                - portfolio_id, user, is_active
                - total_value: Live value from current quotes
                - cached_total_value: Value recorded at the last rebalance
                - last_rebalance / last_rebalance_at: Timestamp and ISO form
                - rebalance_threshold, slippage_tolerance
                - needs_rebalance: Current drift verdict
                - planned_trades: Advisory trades {asset: amount}
                - emergency_stop: Global stop flag

        Raises:
            PortfolioNotFoundError: If the id is unknown
        """
        portfolio = self.rebalancer.get_portfolio(portfolio_id)
        prices = self.rebalancer.price_snapshot(portfolio)
        total_value = sum(
            row.value for row in value_breakdown(portfolio.current_balances, prices)
        )

        return {
            "portfolio_id": portfolio_id,
            "user": portfolio.user,
            "is_active": portfolio.is_active,
            "total_value": total_value,
            "cached_total_value": portfolio.total_value,
            "last_rebalance": portfolio.last_rebalance,
            "last_rebalance_at": datetime.fromtimestamp(
                portfolio.last_rebalance, tz=timezone.utc
            ).isoformat(),
            "rebalance_threshold": portfolio.rebalance_threshold,
            "slippage_tolerance": portfolio.slippage_tolerance,
            "needs_rebalance": needs_rebalance(portfolio, prices),
            "planned_trades": plan_rebalance_trades(
                portfolio, prices, min_trade_amount=self.rebalancer.settings.min_trade_amount
            ),
            "emergency_stop": self.rebalancer.is_emergency_stopped(),
        }

    def allocation_report(self, portfolio_id: int) -> pd.DataFrame:
        """Per-asset allocation report.

        One row per target asset (in allocation order) followed by any held
        asset without a target. Amounts are kept as Python integers, so the
        frame has object dtype.

        Args:
            portfolio_id: Portfolio to report on

        Returns:
            DataFrame with columns asset, balance, price, value, current_pct,
            target_pct, drift, priced. ``price``, ``current_pct`` and
            ``drift`` are None where they cannot be computed.

        Example:
            >>> df = api.allocation_report(1)
            >>> df[df["drift"].notna()].sort_values("drift", ascending=False)
        """
        portfolio = self.rebalancer.get_portfolio(portfolio_id)
        oracle = self.rebalancer.price_snapshot(portfolio)

        valuations = {
            row.asset: row for row in value_breakdown(portfolio.current_balances, oracle)
        }
        total_value = sum(row.value for row in valuations.values())
        drifts = {row.asset: row for row in calculate_drift(portfolio, oracle)}

        assets = list(portfolio.target_allocations)
        assets += [a for a in portfolio.current_balances if a not in portfolio.target_allocations]

        rows = []
        for asset in assets:
            valuation = valuations.get(asset)
            if valuation is not None:
                balance, price, value = valuation.balance, valuation.price, valuation.value
            else:
                quote = oracle.last_price(asset)
                balance, price, value = 0, (quote.price if quote else None), 0

            priced = price is not None
            current_pct = None
            if priced and total_value > 0:
                current_pct = percent_of_total(value, total_value)

            drift = drifts.get(asset)
            rows.append(
                {
                    "asset": asset,
                    "balance": balance,
                    "price": price,
                    "value": value,
                    "current_pct": current_pct,
                    "target_pct": portfolio.target_allocations.get(asset, 0),
                    "drift": drift.drift if drift is not None else None,
                    "priced": priced,
                }
            )

        return pd.DataFrame(rows, columns=REPORT_COLUMNS, dtype=object)

    def check(self, portfolio_id: int) -> Dict:
        """Drift check with per-asset detail.

        Returns:
            Dictionary with:
                - portfolio_id
                - needs_rebalance: True if any asset exceeds the threshold
                - threshold: Portfolio threshold in percentage points
                - drift: List of {asset, target_pct, current_pct, drift,
                  exceeds_threshold} for every target asset
        """
        portfolio = self.rebalancer.get_portfolio(portfolio_id)
        drifts = calculate_drift(portfolio, self.rebalancer.price_snapshot(portfolio))

        return {
            "portfolio_id": portfolio_id,
            "needs_rebalance": any(row.exceeds_threshold for row in drifts),
            "threshold": portfolio.rebalance_threshold,
            "drift": [
                {
                    "asset": row.asset,
                    "target_pct": row.target_percent,
                    "current_pct": row.current_percent,
                    "drift": row.drift,
                    "exceeds_threshold": row.exceeds_threshold,
                }
                for row in drifts
            ],
        }

    def rebalance_history(self, portfolio_id: int, limit: int = 20) -> pd.DataFrame:
        """Recent executed rebalances of a portfolio, newest first.

        Args:
            portfolio_id: Portfolio to query
            limit: Maximum number of rows

        Returns:
            DataFrame with columns timestamp, event_type, portfolio_id, data.
            Empty when no history is attached.
        """
        if self.history is None:
            logger.warning("No event history attached, rebalance history unavailable")
            return pd.DataFrame(columns=HISTORY_COLUMNS)

        events = self.history.get_history(
            portfolio_id=portfolio_id, limit=limit, event_type=EventType.REBALANCED
        )
        if not events:
            return pd.DataFrame(columns=HISTORY_COLUMNS)

        data = [
            {
                "timestamp": e.timestamp,
                "event_type": e.event_type.value,
                "portfolio_id": e.portfolio_id,
                "data": dict(e.data),
            }
            for e in events
        ]
        return pd.DataFrame(data, columns=HISTORY_COLUMNS)
