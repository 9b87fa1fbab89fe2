"""Risk Layer.

Checks that gate a rebalance before anything is committed.

Components:
- RebalanceGuard: Emergency stop, cooldown and price freshness
- SlippageValidator: Proposed post-trade balances within tolerance
- AssetSlippage: Per-asset slippage measurement
"""

from rebalancer.risk.guard import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_MAX_PRICE_AGE_SECONDS,
    RebalanceGuard,
)
from rebalancer.risk.slippage import AssetSlippage, SlippageValidator, slippage_bps

__all__ = [
    "RebalanceGuard",
    "SlippageValidator",
    "AssetSlippage",
    "slippage_bps",
    "DEFAULT_COOLDOWN_SECONDS",
    "DEFAULT_MAX_PRICE_AGE_SECONDS",
]
