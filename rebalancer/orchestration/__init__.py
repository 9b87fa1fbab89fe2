"""Orchestration Layer - Background jobs around the rebalancer.

Components:
- RebalanceMonitor: Periodic drift check of all active portfolios
"""

from rebalancer.orchestration.monitor import RebalanceMonitor

__all__ = ["RebalanceMonitor"]
