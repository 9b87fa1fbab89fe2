"""Event emission for portfolio lifecycle notifications.

Events are fire-and-forget: the rebalancer publishes them after a state
change has been committed, and a failing sink never undoes that change.

Sinks provided here:
- LoggingEventSink: one structured log line per event
- RebalanceHistory: in-memory, queryable per-portfolio history
- JsonEventLog: rotating JSON-lines file for later analysis
- CompositeEventSink: fans out to several sinks
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from rebalancer.utils.logging import create_rotating_handler, get_logger, log_with_context

logger = get_logger(__name__)


class EventType(Enum):
    """Types of portfolio events."""

    PORTFOLIO_CREATED = "created"
    DEPOSIT = "deposit"
    REBALANCED = "rebalanced"
    DRIFT_DETECTED = "drift_detected"
    EMERGENCY_STOP_CHANGED = "emergency_stop"


@dataclass(frozen=True)
class PortfolioEvent:
    """A published event.

    Attributes:
        event_type: What happened
        portfolio_id: Affected portfolio (None for global events)
        timestamp: Clock time of the operation that emitted it
        data: Event-specific payload
    """

    event_type: EventType
    portfolio_id: Optional[int]
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def topic(self) -> tuple[str, str]:
        return ("portfolio", self.event_type.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "portfolio_id": self.portfolio_id,
            "timestamp": self.timestamp,
            **self.data,
        }


class EventSink(ABC):
    """Receiver of published events."""

    @abstractmethod
    def publish(self, event: PortfolioEvent) -> None:
        pass


class LoggingEventSink(EventSink):
    """Writes each event as a context-annotated log line."""

    def __init__(self, level: str = "info"):
        self.level = level

    def publish(self, event: PortfolioEvent) -> None:
        log_with_context(
            logger,
            self.level,
            f"Event {'.'.join(event.topic)}",
            portfolio_id=event.portfolio_id,
            timestamp=event.timestamp,
            **event.data,
        )


class RebalanceHistory(EventSink):
    """In-memory event history, newest first.

    Keeps at most ``max_events_per_portfolio`` events per portfolio.

    Example:
        >>> history = RebalanceHistory()
        >>> rebalancer = PortfolioRebalancer(..., event_sink=history)
        >>> history.get_history(portfolio_id=1, limit=10)
    """

    def __init__(self, max_events_per_portfolio: int = 100):
        self.max_events_per_portfolio = max_events_per_portfolio
        self._events: Dict[Optional[int], List[tuple[int, PortfolioEvent]]] = {}
        self._sequence = 0

    def publish(self, event: PortfolioEvent) -> None:
        self._sequence += 1
        events = self._events.setdefault(event.portfolio_id, [])
        events.insert(0, (self._sequence, event))
        del events[self.max_events_per_portfolio:]

    def get_history(
        self,
        portfolio_id: Optional[int] = None,
        limit: int = 50,
        event_type: Optional[EventType] = None,
    ) -> List[PortfolioEvent]:
        """Return recent events, newest first.

        Args:
            portfolio_id: Restrict to one portfolio; None returns all portfolios
            limit: Maximum number of events returned
            event_type: Restrict to one event type

        Returns:
            List of events ordered from newest to oldest
        """
        if portfolio_id is not None:
            entries = list(self._events.get(portfolio_id, []))
        else:
            entries = [entry for group in self._events.values() for entry in group]
            entries.sort(key=lambda entry: entry[0], reverse=True)

        events = [event for _, event in entries]
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return events[:limit]

    def clear(self) -> None:
        self._events.clear()


class JsonEventLog(EventSink):
    """Rotating JSON-lines event log.

    Each event becomes one line of the form
    ``{"logged_at": ..., "level": "INFO", "event": {...}}``.

    Example:
        >>> sink = JsonEventLog(log_dir="logs")
        >>> sink.publish(event)
    """

    def __init__(
        self,
        log_dir: str | Path = "logs",
        filename: str = "events.log",
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 30,
    ):
        """Initialize JSON event log.

        Args:
            log_dir: Directory for log files
            filename: Log file name inside ``log_dir``
            max_bytes: Maximum size per log file (default 10 MB)
            backup_count: Number of rotated files to keep
        """
        self.log_dir = Path(log_dir)
        self.log_file = self.log_dir / filename

        self._logger = logging.getLogger(f"rebalancer.events.{self.log_file}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        self._handler = create_rotating_handler(self.log_file, max_bytes, backup_count)
        self._logger.addHandler(self._handler)

    def publish(self, event: PortfolioEvent) -> None:
        payload = event.to_dict()
        payload["recorded_at"] = datetime.now(timezone.utc).isoformat()
        self._logger.info(json.dumps(payload, default=str))

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()


class CompositeEventSink(EventSink):
    """Forwards every event to each wrapped sink, in order."""

    def __init__(self, sinks: List[EventSink]):
        self.sinks = list(sinks)

    def publish(self, event: PortfolioEvent) -> None:
        for sink in self.sinks:
            sink.publish(event)
