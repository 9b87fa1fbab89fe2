"""Portfolio rebalancer: the public operation surface.

This module wires the pure components (allocation validation, valuation,
drift detection, guard, slippage validation) to the external collaborators
(store, oracle, authorizer, event sink, clock).

Every operation is atomic: all checks run before anything is written, writes
happen inside ``store.transaction()``, and events are published only after
the commit. A rejected call leaves no trace in the store.
"""

import time
from typing import Callable, Dict, Mapping, Optional

from rebalancer.engine.authorization import Authorizer
from rebalancer.engine.events import EventSink, EventType, LoggingEventSink, PortfolioEvent
from rebalancer.oracle.base import PriceOracle
from rebalancer.oracle.registry import OracleRegistry
from rebalancer.oracle.static_oracle import StaticPriceOracle
from rebalancer.portfolio.allocation import validate_allocations
from rebalancer.portfolio.drift import needs_rebalance
from rebalancer.portfolio.models import I128_MAX, Portfolio, RebalanceResult
from rebalancer.portfolio.trade_planner import plan_rebalance_trades
from rebalancer.portfolio.valuation import calculate_portfolio_value
from rebalancer.risk.guard import RebalanceGuard
from rebalancer.risk.slippage import SlippageValidator
from rebalancer.storage.base import DataKey, PortfolioStore
from rebalancer.utils.config import RebalancerSettings
from rebalancer.utils.exceptions import (
    AlreadyInitializedError,
    BalanceOverflowError,
    EmergencyStopError,
    GuardError,
    InvalidAllocationError,
    InvalidAmountError,
    InvalidSlippageToleranceError,
    InvalidThresholdError,
    NotInitializedError,
    PortfolioNotFoundError,
    SlippageExceededError,
)
from rebalancer.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)

MIN_THRESHOLD = 1
MAX_THRESHOLD = 50
MIN_SLIPPAGE_TOLERANCE = 10
MAX_SLIPPAGE_TOLERANCE = 500


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _system_clock() -> int:
    return int(time.time())


class PortfolioRebalancer:
    """Creates portfolios, tracks deposits and authorizes rebalances.

    Example:
        >>> store = InMemoryPortfolioStore()
        >>> oracles = OracleRegistry({"reflector": StaticPriceOracle()})
        >>> auth = SessionAuthorizer()
        >>> rebalancer = PortfolioRebalancer(store, oracles, auth)
        >>> rebalancer.initialize(admin="admin", oracle_address="reflector")
        >>> with auth.acting_as("alice"):
        ...     pid = rebalancer.create_portfolio("alice", {"XLM": 60, "USDC": 40}, 5, 100)
        ...     rebalancer.deposit(pid, "XLM", 1_000)
        >>> rebalancer.check_rebalance_needed(pid)
    """

    def __init__(
        self,
        store: PortfolioStore,
        oracles: OracleRegistry,
        authorizer: Authorizer,
        event_sink: Optional[EventSink] = None,
        clock: Optional[Callable[[], int]] = None,
        settings: Optional[RebalancerSettings] = None,
    ):
        """Initialize rebalancer.

        Args:
            store: Persisted state
            oracles: Resolves the oracle address stored at initialization
            authorizer: Caller identity checks
            event_sink: Receiver of lifecycle events (defaults to logging)
            clock: Returns the current time in integer seconds
            settings: Engine parameters (defaults to 3600s windows)
        """
        self.store = store
        self.oracles = oracles
        self.authorizer = authorizer
        self.event_sink = event_sink or LoggingEventSink()
        self.clock = clock or _system_clock
        self.settings = settings or RebalancerSettings()

        self.guard = RebalanceGuard(
            cooldown_seconds=self.settings.cooldown_seconds,
            max_price_age_seconds=self.settings.max_price_age_seconds,
        )
        self.slippage_validator = SlippageValidator()

    # ------------------------------------------------------------------
    # Global state
    # ------------------------------------------------------------------

    def initialize(self, admin: str, oracle_address: str) -> None:
        """Record the admin identity and oracle address, once.

        Raises:
            AlreadyInitializedError: On any call after the first
        """
        with self.store.transaction():
            if self.store.get(DataKey.INITIALIZED, False):
                raise AlreadyInitializedError("Rebalancer already initialized")
            self.store.set(DataKey.ADMIN, admin)
            self.store.set(DataKey.ORACLE_ADDRESS, oracle_address)
            self.store.set(DataKey.INITIALIZED, True)

        logger.info("Rebalancer initialized (admin=%s, oracle=%s)", admin, oracle_address)

    def set_emergency_stop(self, stop: bool) -> None:
        """Toggle the emergency stop. Admin only.

        Raises:
            NotInitializedError: If no admin was recorded
            AuthorizationError: If the caller is not the admin
        """
        admin = self.store.get(DataKey.ADMIN)
        if admin is None:
            raise NotInitializedError("Rebalancer not initialized: no admin")
        self.authorizer.require_caller_is(admin)

        with self.store.transaction():
            self.store.set(DataKey.EMERGENCY_STOP, bool(stop))

        if stop:
            logger.warning("EMERGENCY STOP ACTIVATED - deposits and rebalances blocked")
        else:
            logger.info("Emergency stop cleared")
        self._publish(
            PortfolioEvent(EventType.EMERGENCY_STOP_CHANGED, None, self.clock(), {"active": bool(stop)})
        )

    def is_emergency_stopped(self) -> bool:
        return bool(self.store.get(DataKey.EMERGENCY_STOP, False))

    # ------------------------------------------------------------------
    # Portfolio lifecycle
    # ------------------------------------------------------------------

    def create_portfolio(
        self,
        user: str,
        target_allocations: Mapping[str, int],
        rebalance_threshold: int,
        slippage_tolerance: int,
    ) -> int:
        """Create a portfolio and return its id.

        Ids come from a stored counter starting at 1, so two portfolios
        created at the same clock tick still get distinct ids.

        Args:
            user: Owner identity (must be the caller)
            target_allocations: {asset: percentage}, summing to exactly 100
            rebalance_threshold: Drift trigger in percentage points, 1-50
            slippage_tolerance: Execution tolerance in basis points, 10-500

        Returns:
            New portfolio id

        Raises:
            AuthorizationError: If the caller is not ``user``
            InvalidAllocationError: If percentages do not sum to 100
            InvalidThresholdError: If the threshold is out of range
            InvalidSlippageToleranceError: If the tolerance is out of range
        """
        self.authorizer.require_caller_is(user)

        if not validate_allocations(target_allocations):
            raise InvalidAllocationError(
                f"Target allocations must be unsigned integers summing to 100, "
                f"got {dict(target_allocations)}"
            )
        if not _is_int(rebalance_threshold) or not (
            MIN_THRESHOLD <= rebalance_threshold <= MAX_THRESHOLD
        ):
            raise InvalidThresholdError(
                f"rebalance_threshold must be in [{MIN_THRESHOLD}, {MAX_THRESHOLD}], "
                f"got {rebalance_threshold!r}"
            )
        if not _is_int(slippage_tolerance) or not (
            MIN_SLIPPAGE_TOLERANCE <= slippage_tolerance <= MAX_SLIPPAGE_TOLERANCE
        ):
            raise InvalidSlippageToleranceError(
                f"slippage_tolerance must be in [{MIN_SLIPPAGE_TOLERANCE}, "
                f"{MAX_SLIPPAGE_TOLERANCE}] bps, got {slippage_tolerance!r}"
            )

        now = self.clock()
        portfolio = Portfolio(
            user=user,
            target_allocations=dict(target_allocations),
            rebalance_threshold=rebalance_threshold,
            slippage_tolerance=slippage_tolerance,
            last_rebalance=now,
        )

        with self.store.transaction():
            portfolio_id = self.store.get(DataKey.NEXT_PORTFOLIO_ID, 1)
            self.store.set(DataKey.NEXT_PORTFOLIO_ID, portfolio_id + 1)
            self.store.set_portfolio(portfolio_id, portfolio)

        log_with_context(
            logger,
            "info",
            "Portfolio created",
            portfolio_id=portfolio_id,
            user=user,
            assets=len(target_allocations),
        )
        self._publish(
            PortfolioEvent(EventType.PORTFOLIO_CREATED, portfolio_id, now, {"user": user})
        )
        return portfolio_id

    def get_portfolio(self, portfolio_id: int) -> Portfolio:
        """Return a copy of the stored portfolio.

        Raises:
            PortfolioNotFoundError: If the id is unknown
        """
        return self._load(portfolio_id)

    def deposit(self, portfolio_id: int, asset: str, amount: int) -> None:
        """Add ``amount`` to the portfolio's balance of ``asset``.

        Any asset may be deposited, including ones without a target
        allocation; such balances count toward total value but are never
        checked for drift.

        Raises:
            InvalidAmountError: If amount is not a positive integer
            EmergencyStopError: If the emergency stop is active
            PortfolioNotFoundError: If the id is unknown
            AuthorizationError: If the caller is not the owner
            BalanceOverflowError: If the new balance leaves the 128-bit range
        """
        if not _is_int(amount) or amount <= 0:
            raise InvalidAmountError(f"Amount must be positive, got {amount!r}")
        if self.is_emergency_stopped():
            raise EmergencyStopError("Emergency stop active")

        portfolio = self._load(portfolio_id)
        self.authorizer.require_caller_is(portfolio.user)

        new_balance = portfolio.balance_of(asset) + amount
        if new_balance > I128_MAX:
            raise BalanceOverflowError(
                f"Deposit of {amount} {asset} would overflow the balance"
            )
        if asset not in portfolio.target_allocations:
            logger.info(
                "Deposit into portfolio %d for %s, which has no target allocation",
                portfolio_id,
                asset,
            )

        portfolio.current_balances[asset] = new_balance
        with self.store.transaction():
            self.store.set_portfolio(portfolio_id, portfolio)

        self._publish(
            PortfolioEvent(
                EventType.DEPOSIT,
                portfolio_id,
                self.clock(),
                {"asset": asset, "amount": amount},
            )
        )

    # ------------------------------------------------------------------
    # Rebalancing
    # ------------------------------------------------------------------

    def check_rebalance_needed(self, portfolio_id: int) -> bool:
        """Whether any target asset drifted beyond the portfolio's threshold.

        Read-only. Returns False when no value can be computed.

        Raises:
            PortfolioNotFoundError: If the id is unknown
            NotInitializedError: If no oracle address was recorded
        """
        portfolio = self._load(portfolio_id)
        return needs_rebalance(portfolio, self.price_snapshot(portfolio))

    def plan_rebalance(self, portfolio_id: int) -> Dict[str, int]:
        """Advisory trade amounts that would restore the target allocation.

        Returns:
            {asset: signed amount}; positive means buy
        """
        portfolio = self._load(portfolio_id)
        return plan_rebalance_trades(
            portfolio,
            self.price_snapshot(portfolio),
            min_trade_amount=self.settings.min_trade_amount,
        )

    def execute_rebalance(
        self,
        portfolio_id: int,
        proposed_balances: Mapping[str, int],
    ) -> RebalanceResult:
        """Authorize a rebalance whose outcome is ``proposed_balances``.

        Runs the guard (emergency stop, cooldown, price freshness), then the
        slippage check, and only then records the rebalance time. Balances
        themselves are not changed here; moving assets is the caller's job.

        Args:
            portfolio_id: Portfolio to rebalance
            proposed_balances: Balances the caller claims will result
                {asset: amount}; missing target assets count as 0

        Returns:
            RebalanceResult with the new timestamp and measured slippage

        Raises:
            EmergencyStopError: If the emergency stop is active
            PortfolioNotFoundError: If the id is unknown
            AuthorizationError: If the caller is not the owner
            CooldownActiveError: If the cooldown window has not elapsed
            MissingPriceError / StalePriceError / InvalidPriceError:
                If any target asset lacks a usable quote
            SlippageExceededError: If any asset deviates beyond tolerance
        """
        if self.is_emergency_stopped():
            log_with_context(
                logger, "warning", "Rebalance rejected", portfolio_id=portfolio_id,
                reason="emergency_stop",
            )
            raise EmergencyStopError("Emergency stop active")

        portfolio = self._load(portfolio_id)
        self.authorizer.require_caller_is(portfolio.user)

        for asset, balance in proposed_balances.items():
            if not _is_int(balance):
                raise InvalidAmountError(
                    f"Proposed balance for {asset} must be an integer, got {balance!r}"
                )

        now = self.clock()
        try:
            self.guard.check_cooldown(portfolio, now)
            prices = self.price_snapshot(portfolio)
            self.guard.check_prices(portfolio, now, prices)
            report = self.slippage_validator.validate(portfolio, proposed_balances, prices)
        except (GuardError, SlippageExceededError) as e:
            log_with_context(
                logger, "warning", "Rebalance rejected", portfolio_id=portfolio_id,
                reason=type(e).__name__, detail=e,
            )
            raise

        portfolio.last_rebalance = now
        portfolio.total_value = calculate_portfolio_value(portfolio.current_balances, prices)
        with self.store.transaction():
            self.store.set_portfolio(portfolio_id, portfolio)

        result = RebalanceResult(
            portfolio_id=portfolio_id,
            timestamp=now,
            total_value=portfolio.total_value,
            slippage_bps={row.asset: row.slippage_bps for row in report},
        )
        log_with_context(
            logger, "info", "Rebalance executed", portfolio_id=portfolio_id,
            timestamp=now, total_value=portfolio.total_value,
        )
        self._publish(
            PortfolioEvent(
                EventType.REBALANCED,
                portfolio_id,
                now,
                {"total_value": portfolio.total_value},
            )
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def oracle(self) -> PriceOracle:
        """The price oracle resolved from the stored address."""
        return self._oracle()

    def price_snapshot(self, portfolio: Portfolio) -> StaticPriceOracle:
        """Read every quote the portfolio needs exactly once.

        All checks and valuations of a single operation run against the
        returned snapshot, so a feed that moves mid-call cannot make the
        guard and the slippage math disagree.

        Args:
            portfolio: Portfolio whose target and held assets are quoted

        Returns:
            StaticPriceOracle holding the quotes available right now

        Raises:
            NotInitializedError: If no oracle address was recorded
            DataProviderError: If the feed cannot be reached
        """
        assets = list(portfolio.target_allocations)
        assets += [a for a in portfolio.current_balances if a not in portfolio.target_allocations]
        return StaticPriceOracle(self._oracle().last_prices(assets))

    def _load(self, portfolio_id: int) -> Portfolio:
        portfolio = self.store.get_portfolio(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)
        return portfolio

    def _oracle(self) -> PriceOracle:
        address = self.store.get(DataKey.ORACLE_ADDRESS)
        if address is None:
            raise NotInitializedError("Rebalancer not initialized: no oracle address")
        return self.oracles.resolve(address)

    def _publish(self, event: PortfolioEvent) -> None:
        try:
            self.event_sink.publish(event)
        except Exception as e:
            # State is already committed; a sink failure must not surface
            logger.warning(
                "Event sink failed for %s: %s", ".".join(event.topic), e, exc_info=True
            )
