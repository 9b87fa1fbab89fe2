"""Rebalancer Engine.

The public operation surface and its external collaborators.

Components:
- PortfolioRebalancer: Initialization, portfolios, deposits, rebalancing
- Authorizer: Caller identity checks (SessionAuthorizer, PermissiveAuthorizer)
- EventSink: Lifecycle event receivers (logging, history, JSON log)
"""

from rebalancer.engine.authorization import (
    Authorizer,
    PermissiveAuthorizer,
    SessionAuthorizer,
)
from rebalancer.engine.events import (
    CompositeEventSink,
    EventSink,
    EventType,
    JsonEventLog,
    LoggingEventSink,
    PortfolioEvent,
    RebalanceHistory,
)
from rebalancer.engine.portfolio_rebalancer import PortfolioRebalancer

__all__ = [
    "Authorizer",
    "PermissiveAuthorizer",
    "SessionAuthorizer",
    "CompositeEventSink",
    "EventSink",
    "EventType",
    "JsonEventLog",
    "LoggingEventSink",
    "PortfolioEvent",
    "RebalanceHistory",
    "PortfolioRebalancer",
]
