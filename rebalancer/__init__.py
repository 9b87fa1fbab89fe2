"""Portfolio rebalancing decision engine.

Tracks target allocations and balances of user portfolios, detects drift
from oracle prices, and authorizes rebalances under cooldown, price
freshness, slippage and emergency-stop guards.
"""

__version__ = "0.1.0"
