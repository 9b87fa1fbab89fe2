"""Rebalance guard with pre-execution checks.

This module implements the preconditions that must all hold before a
rebalance may execute. Checks are applied in a fixed order and the first
failure raises:

1. Emergency stop not active
2. Cooldown window since the last rebalance elapsed
3. Every target asset has a fresh, positive price quote

Unlike drift detection, execution does not tolerate partial price coverage:
a single missing or stale quote rejects the whole operation.
"""

from rebalancer.oracle.base import PriceOracle
from rebalancer.portfolio.models import Portfolio
from rebalancer.utils.exceptions import (
    CooldownActiveError,
    EmergencyStopError,
    InvalidPriceError,
    MissingPriceError,
    StalePriceError,
)
from rebalancer.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_COOLDOWN_SECONDS = 3600
DEFAULT_MAX_PRICE_AGE_SECONDS = 3600


class RebalanceGuard:
    """Enforces emergency stop, cooldown and price freshness.

    The guard never mutates anything; it only raises a GuardError subclass.

    Example:
        >>> guard = RebalanceGuard()
        >>> guard.check(portfolio, now=1_700_007_200, oracle=oracle)
    """

    def __init__(
        self,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        max_price_age_seconds: int = DEFAULT_MAX_PRICE_AGE_SECONDS,
    ):
        """Initialize guard.

        Args:
            cooldown_seconds: Minimum time between rebalances
            max_price_age_seconds: Quotes strictly older than this are stale
        """
        if cooldown_seconds < 0:
            raise ValueError(f"cooldown_seconds must be >= 0, got {cooldown_seconds}")
        if max_price_age_seconds < 0:
            raise ValueError(
                f"max_price_age_seconds must be >= 0, got {max_price_age_seconds}"
            )

        self.cooldown_seconds = cooldown_seconds
        self.max_price_age_seconds = max_price_age_seconds

    def check_emergency_stop(self, emergency_stop: bool) -> None:
        if emergency_stop:
            raise EmergencyStopError("Emergency stop active")

    def check_cooldown(self, portfolio: Portfolio, now: int) -> None:
        ready_at = portfolio.last_rebalance + self.cooldown_seconds
        if now < ready_at:
            raise CooldownActiveError(
                f"Cooldown active: next rebalance allowed at {ready_at} "
                f"({ready_at - now}s remaining)",
                retry_after=ready_at,
            )

    def check_prices(self, portfolio: Portfolio, now: int, oracle: PriceOracle) -> None:
        for asset in portfolio.target_allocations:
            quote = oracle.last_price(asset)
            if quote is None:
                raise MissingPriceError(f"Missing price data for {asset}", asset=asset)
            if quote.price <= 0:
                raise InvalidPriceError(
                    f"Non-positive price {quote.price} for {asset}", asset=asset
                )
            if quote.is_stale(now, self.max_price_age_seconds):
                age = quote.age(now)
                raise StalePriceError(
                    f"Stale price data for {asset}: {age}s old "
                    f"(max {self.max_price_age_seconds}s)",
                    asset=asset,
                    age=age,
                )

    def check(
        self,
        portfolio: Portfolio,
        now: int,
        oracle: PriceOracle,
        emergency_stop: bool = False,
    ) -> None:
        """Run all guard checks in order.

        Args:
            portfolio: Portfolio about to be rebalanced
            now: Current timestamp
            oracle: Price source
            emergency_stop: Current emergency-stop flag

        Raises:
            EmergencyStopError: If the emergency stop is active
            CooldownActiveError: If the cooldown window has not elapsed
            MissingPriceError: If a target asset has no quote
            InvalidPriceError: If a target asset's price is not positive
            StalePriceError: If a target asset's quote is too old
        """
        self.check_emergency_stop(emergency_stop)
        self.check_cooldown(portfolio, now)
        self.check_prices(portfolio, now, oracle)
        logger.debug("Guard checks passed at %d", now)
