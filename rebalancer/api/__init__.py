"""User-friendly APIs for the portfolio rebalancer.

Components:
- PortfolioAPI: Portfolio summaries, allocation reports and history
"""

from rebalancer.api.portfolio_api import PortfolioAPI

__all__ = ["PortfolioAPI"]
