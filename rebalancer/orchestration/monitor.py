"""Rebalance Monitor - APScheduler integration for periodic drift checks.

This module runs a background interval job that checks every active
portfolio for drift and announces the ones needing a rebalance. It never
executes a rebalance itself.
"""

from typing import List, Optional

import pytz
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rebalancer.engine.events import EventSink, EventType, PortfolioEvent
from rebalancer.engine.portfolio_rebalancer import PortfolioRebalancer
from rebalancer.portfolio.drift import calculate_drift
from rebalancer.utils.exceptions import RebalancerError
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 300
JOB_ID = "monitor_rebalance"


class RebalanceMonitor:
    """Periodic drift checker.

    Each cycle checks every active portfolio, records the ids that need a
    rebalance and publishes one DRIFT_DETECTED event per hit. The whole
    cycle is skipped while the emergency stop is active.

    Example:
        >>> monitor = RebalanceMonitor(rebalancer, interval_seconds=600)
        >>> monitor.start()
        >>> ...
        >>> monitor.last_flagged
        [2, 5]
        >>> monitor.stop()
    """

    def __init__(
        self,
        rebalancer: PortfolioRebalancer,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        event_sink: Optional[EventSink] = None,
    ):
        """Initialize monitor.

        Args:
            rebalancer: Rebalancer whose portfolios are checked
            interval_seconds: Seconds between two cycles
            event_sink: Receiver of drift events (defaults to the
                rebalancer's sink)
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self.rebalancer = rebalancer
        self.interval_seconds = interval_seconds
        self.event_sink = event_sink or rebalancer.event_sink

        self.last_flagged: List[int] = []
        self.cycles_run = 0

        self.scheduler = BackgroundScheduler(
            timezone=pytz.UTC,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )
        self.scheduler.add_listener(
            self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR
        )

        logger.info("RebalanceMonitor initialized (interval: %ds)", interval_seconds)

    @classmethod
    def from_config(
        cls,
        rebalancer: PortfolioRebalancer,
        config,
        event_sink: Optional[EventSink] = None,
    ) -> "RebalanceMonitor":
        """Build a monitor from the ``monitor`` section of a Config."""
        return cls(
            rebalancer,
            interval_seconds=config.get("monitor.interval_seconds", DEFAULT_INTERVAL_SECONDS),
            event_sink=event_sink,
        )

    def run_check_cycle(self) -> List[int]:
        """Check all active portfolios once.

        A failure on one portfolio is logged and does not stop the cycle.

        Returns:
            Ids of portfolios needing a rebalance, ascending
        """
        self.cycles_run += 1

        if self.rebalancer.is_emergency_stopped():
            logger.warning("Emergency stop active, skipping drift check cycle")
            self.last_flagged = []
            return []

        # Unresolvable oracle address aborts the cycle instead of failing per portfolio
        try:
            self.rebalancer.oracle()
        except RebalancerError as e:
            logger.error("Drift check cycle aborted: %s", e)
            self.last_flagged = []
            return []

        flagged = []
        checked = 0
        for portfolio_id, portfolio in self.rebalancer.store.iter_portfolios():
            if not portfolio.is_active:
                continue
            checked += 1

            try:
                drifts = calculate_drift(portfolio, self.rebalancer.price_snapshot(portfolio))
            except Exception as e:
                logger.error(
                    "Drift check failed for portfolio %d: %s", portfolio_id, e, exc_info=True
                )
                continue

            offenders = [row for row in drifts if row.exceeds_threshold]
            if not offenders:
                continue

            flagged.append(portfolio_id)
            self._publish(
                PortfolioEvent(
                    EventType.DRIFT_DETECTED,
                    portfolio_id,
                    self.rebalancer.clock(),
                    {
                        "assets": [row.asset for row in offenders],
                        "max_drift": max(row.drift for row in offenders),
                        "threshold": portfolio.rebalance_threshold,
                    },
                )
            )

        self.last_flagged = flagged
        logger.info(
            "Drift check cycle complete: %d checked, %d need rebalance", checked, len(flagged)
        )
        return flagged

    def _publish(self, event: PortfolioEvent) -> None:
        try:
            self.event_sink.publish(event)
        except Exception as e:
            logger.warning("Event sink failed for drift event: %s", e, exc_info=True)

    def _on_job_executed(self, event):
        """Event listener for job execution/errors.

        Args:
            event: APScheduler event object
        """
        if event.exception:
            logger.error(
                "Job '%s' raised exception: %s",
                event.job_id,
                event.exception,
                exc_info=event.exception,
            )
        else:
            logger.debug("Job '%s' executed successfully", event.job_id)

    def start(self):
        """Schedule the check job and start the scheduler (non-blocking)."""
        if self.scheduler.running:
            logger.warning("Monitor already running")
            return

        self.scheduler.add_job(
            func=self.run_check_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=pytz.UTC),
            id=JOB_ID,
            name=JOB_ID,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Monitor started (every %ds)", self.interval_seconds)

    def stop(self):
        """Stop the scheduler, waiting for a running cycle to finish."""
        if not self.scheduler.running:
            logger.warning("Monitor not running")
            return

        logger.info("Shutting down monitor...")
        self.scheduler.shutdown(wait=True)
        logger.info("Monitor stopped")

    def is_running(self) -> bool:
        return self.scheduler.running
