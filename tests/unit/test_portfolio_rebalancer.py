"""Unit tests for PortfolioRebalancer.

Covers every public operation plus the end-to-end drift, cooldown,
staleness, emergency-stop and slippage scenarios.
"""

from collections import Counter
from unittest.mock import Mock

import pytest

from rebalancer.engine.authorization import SessionAuthorizer
from rebalancer.engine.events import EventType, RebalanceHistory
from rebalancer.engine.portfolio_rebalancer import PortfolioRebalancer
from rebalancer.oracle.base import PRICE_SCALE, PriceOracle, PriceQuote
from rebalancer.oracle.registry import OracleRegistry
from rebalancer.oracle.static_oracle import StaticPriceOracle
from rebalancer.portfolio.models import I128_MAX, RebalanceResult
from rebalancer.storage.base import DataKey
from rebalancer.storage.memory import InMemoryPortfolioStore
from rebalancer.utils.config import RebalancerSettings
from rebalancer.utils.exceptions import (
    AlreadyInitializedError,
    AuthorizationError,
    BalanceOverflowError,
    ConfigurationError,
    CooldownActiveError,
    EmergencyStopError,
    InvalidAllocationError,
    InvalidAmountError,
    InvalidSlippageToleranceError,
    InvalidThresholdError,
    MissingPriceError,
    NotInitializedError,
    PortfolioNotFoundError,
    SlippageExceededError,
    StalePriceError,
)

T0 = 1_700_000_000
PRICE = 100 * PRICE_SCALE


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle(clock):
    """Create an oracle quoting A and B at 100, published now."""
    oracle = StaticPriceOracle()
    oracle.set_price("A", PRICE, timestamp=clock.now)
    oracle.set_price("B", PRICE, timestamp=clock.now)
    return oracle


@pytest.fixture
def store():
    return InMemoryPortfolioStore()


@pytest.fixture
def auth():
    return SessionAuthorizer()


@pytest.fixture
def history():
    return RebalanceHistory()


@pytest.fixture
def rebalancer(store, oracle, auth, history, clock):
    """Create an initialized rebalancer with admin 'admin' and oracle 'reflector'."""
    rebalancer = PortfolioRebalancer(
        store=store,
        oracles=OracleRegistry({"reflector": oracle}),
        authorizer=auth,
        event_sink=history,
        clock=clock,
    )
    rebalancer.initialize(admin="admin", oracle_address="reflector")
    return rebalancer


def create_as(rebalancer, auth, user="alice", allocations=None, threshold=5, slippage=100):
    """Create a portfolio acting as ``user``."""
    with auth.acting_as(user):
        return rebalancer.create_portfolio(
            user, allocations or {"A": 50, "B": 50}, threshold, slippage
        )


def deposit_as(rebalancer, auth, portfolio_id, asset, amount, user="alice"):
    """Deposit acting as ``user``."""
    with auth.acting_as(user):
        rebalancer.deposit(portfolio_id, asset, amount)


@pytest.fixture
def funded(rebalancer, auth):
    """Create a 50/50 portfolio holding A=200, B=100 (A at 66%)."""
    portfolio_id = create_as(rebalancer, auth)
    deposit_as(rebalancer, auth, portfolio_id, "A", 200)
    deposit_as(rebalancer, auth, portfolio_id, "B", 100)
    return portfolio_id


def refresh_prices(oracle, clock) -> None:
    """Republish both quotes at the current clock time."""
    oracle.set_price("A", PRICE, timestamp=clock.now)
    oracle.set_price("B", PRICE, timestamp=clock.now)


class TestInitialize:
    """Test cases for initialize."""

    def test_records_admin_and_oracle(self, rebalancer, store) -> None:
        """Test admin, oracle and initialized flag are stored."""
        assert store.get(DataKey.ADMIN) == "admin"
        assert store.get(DataKey.ORACLE_ADDRESS) == "reflector"
        assert store.get(DataKey.INITIALIZED) is True

    def test_second_call_rejected(self, rebalancer, store) -> None:
        """Test initialize succeeds only once."""
        with pytest.raises(AlreadyInitializedError):
            rebalancer.initialize(admin="mallory", oracle_address="elsewhere")

        assert store.get(DataKey.ADMIN) == "admin"

    def test_operations_need_oracle(self, store, auth, clock) -> None:
        """Test drift checks fail without an initialized oracle address."""
        rebalancer = PortfolioRebalancer(store, OracleRegistry(), auth, clock=clock)
        portfolio_id = create_as(rebalancer, auth)

        with pytest.raises(NotInitializedError):
            rebalancer.check_rebalance_needed(portfolio_id)

    def test_unknown_oracle_address(self, store, auth, clock) -> None:
        """Test an address with no registered adapter is a configuration error."""
        rebalancer = PortfolioRebalancer(store, OracleRegistry(), auth, clock=clock)
        rebalancer.initialize(admin="admin", oracle_address="missing")
        portfolio_id = create_as(rebalancer, auth)

        with pytest.raises(ConfigurationError):
            rebalancer.check_rebalance_needed(portfolio_id)


class TestCreatePortfolio:
    """Test cases for create_portfolio."""

    def test_ids_start_at_one_and_increase(self, rebalancer, auth) -> None:
        """Test ids are sequential even within the same clock tick."""
        ids = [create_as(rebalancer, auth) for _ in range(3)]

        assert ids == [1, 2, 3]

    def test_stored_fields(self, rebalancer, auth, clock) -> None:
        """Test the new record's fields."""
        portfolio_id = create_as(rebalancer, auth, allocations={"A": 60, "B": 40}, threshold=7, slippage=50)
        portfolio = rebalancer.get_portfolio(portfolio_id)

        assert portfolio.user == "alice"
        assert portfolio.target_allocations == {"A": 60, "B": 40}
        assert portfolio.current_balances == {}
        assert portfolio.rebalance_threshold == 7
        assert portfolio.slippage_tolerance == 50
        assert portfolio.last_rebalance == clock.now
        assert portfolio.total_value == 0
        assert portfolio.is_active is True

    def test_requires_owner_as_caller(self, rebalancer, auth) -> None:
        """Test a portfolio cannot be created for someone else."""
        with auth.acting_as("bob"):
            with pytest.raises(AuthorizationError):
                rebalancer.create_portfolio("alice", {"A": 100}, 5, 100)

    def test_invalid_allocation(self, rebalancer, auth, store) -> None:
        """Test allocations not summing to 100 are rejected without consuming an id."""
        with pytest.raises(InvalidAllocationError):
            create_as(rebalancer, auth, allocations={"A": 60, "B": 30})

        assert store.get(DataKey.NEXT_PORTFOLIO_ID) is None
        assert create_as(rebalancer, auth) == 1

    @pytest.mark.parametrize("threshold", [0, 51, -5])
    def test_invalid_threshold(self, rebalancer, auth, threshold) -> None:
        """Test thresholds outside 1-50 are rejected."""
        with pytest.raises(InvalidThresholdError):
            create_as(rebalancer, auth, threshold=threshold)

    @pytest.mark.parametrize("threshold", [1, 50])
    def test_threshold_bounds(self, rebalancer, auth, threshold) -> None:
        """Test threshold bounds are inclusive."""
        create_as(rebalancer, auth, threshold=threshold)

    @pytest.mark.parametrize("slippage", [9, 501])
    def test_invalid_slippage(self, rebalancer, auth, slippage) -> None:
        """Test tolerances outside 10-500 bps are rejected."""
        with pytest.raises(InvalidSlippageToleranceError):
            create_as(rebalancer, auth, slippage=slippage)

    @pytest.mark.parametrize("slippage", [10, 500])
    def test_slippage_bounds(self, rebalancer, auth, slippage) -> None:
        """Test tolerance bounds are inclusive."""
        create_as(rebalancer, auth, slippage=slippage)

    def test_publishes_created_event(self, rebalancer, auth, history) -> None:
        """Test a created event is published."""
        portfolio_id = create_as(rebalancer, auth)

        event = history.get_history(portfolio_id=portfolio_id)[0]
        assert event.topic == ("portfolio", "created")
        assert event.data == {"user": "alice"}


class TestGetPortfolio:
    """Test cases for get_portfolio."""

    def test_unknown_id(self, rebalancer) -> None:
        """Test unknown ids raise PortfolioNotFoundError."""
        with pytest.raises(PortfolioNotFoundError):
            rebalancer.get_portfolio(99)

    def test_returns_copy(self, rebalancer, auth) -> None:
        """Test changes to the returned record are not persisted."""
        portfolio_id = create_as(rebalancer, auth)
        rebalancer.get_portfolio(portfolio_id).current_balances["A"] = 10

        assert rebalancer.get_portfolio(portfolio_id).current_balances == {}


class TestDeposit:
    """Test cases for deposit."""

    def test_deposits_accumulate(self, rebalancer, auth) -> None:
        """Test two deposits of 10 yield 20."""
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", 10)
        deposit_as(rebalancer, auth, portfolio_id, "A", 10)

        assert rebalancer.get_portfolio(portfolio_id).current_balances == {"A": 20}

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount(self, rebalancer, auth, amount) -> None:
        """Test non-positive amounts are rejected with no change."""
        portfolio_id = create_as(rebalancer, auth)

        with pytest.raises(InvalidAmountError):
            deposit_as(rebalancer, auth, portfolio_id, "A", amount)

        assert rebalancer.get_portfolio(portfolio_id).current_balances == {}

    def test_amount_checked_before_lookup(self, rebalancer, auth) -> None:
        """Test a bad amount is reported even for an unknown portfolio."""
        with pytest.raises(InvalidAmountError):
            deposit_as(rebalancer, auth, 99, "A", 0)

    def test_unknown_portfolio(self, rebalancer, auth) -> None:
        """Test deposits into unknown ids are rejected."""
        with pytest.raises(PortfolioNotFoundError):
            deposit_as(rebalancer, auth, 99, "A", 10)

    def test_requires_owner(self, rebalancer, auth) -> None:
        """Test only the owner can deposit."""
        portfolio_id = create_as(rebalancer, auth)

        with pytest.raises(AuthorizationError):
            deposit_as(rebalancer, auth, portfolio_id, "A", 10, user="bob")

    def test_blocked_by_emergency_stop(self, rebalancer, auth) -> None:
        """Test deposits are rejected while stopped."""
        portfolio_id = create_as(rebalancer, auth)
        with auth.acting_as("admin"):
            rebalancer.set_emergency_stop(True)

        with pytest.raises(EmergencyStopError):
            deposit_as(rebalancer, auth, portfolio_id, "A", 10)

    def test_untargeted_asset_accepted(self, rebalancer, auth) -> None:
        """Test assets outside the target allocation can be deposited."""
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "C", 10)

        assert rebalancer.get_portfolio(portfolio_id).current_balances == {"C": 10}

    def test_overflow_rejected(self, rebalancer, auth) -> None:
        """Test a balance beyond the 128-bit range is rejected with no change."""
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", I128_MAX)

        with pytest.raises(BalanceOverflowError):
            deposit_as(rebalancer, auth, portfolio_id, "A", 1)

        assert rebalancer.get_portfolio(portfolio_id).current_balances["A"] == I128_MAX

    def test_publishes_deposit_event(self, rebalancer, auth, history) -> None:
        """Test a deposit event carries asset and amount."""
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", 10)

        event = history.get_history(portfolio_id=portfolio_id, event_type=EventType.DEPOSIT)[0]
        assert event.data == {"asset": "A", "amount": 10}


class TestCheckRebalanceNeeded:
    """Test cases for check_rebalance_needed."""

    def test_drifted_portfolio(self, rebalancer, funded) -> None:
        """Test A at 66% against 50% with threshold 5 needs rebalancing."""
        assert rebalancer.check_rebalance_needed(funded) is True

    def test_balanced_portfolio(self, rebalancer, auth) -> None:
        """Test 100/100 at equal prices does not."""
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", 100)
        deposit_as(rebalancer, auth, portfolio_id, "B", 100)

        assert rebalancer.check_rebalance_needed(portfolio_id) is False

    def test_empty_portfolio(self, rebalancer, auth) -> None:
        """Test zero total value never needs rebalancing."""
        portfolio_id = create_as(rebalancer, auth)

        assert rebalancer.check_rebalance_needed(portfolio_id) is False

    def test_unknown_portfolio(self, rebalancer) -> None:
        """Test unknown ids raise PortfolioNotFoundError."""
        with pytest.raises(PortfolioNotFoundError):
            rebalancer.check_rebalance_needed(42)

    def test_read_only(self, rebalancer, funded) -> None:
        """Test checking does not change the record."""
        before = rebalancer.get_portfolio(funded)
        rebalancer.check_rebalance_needed(funded)

        assert rebalancer.get_portfolio(funded) == before


class TestPlanRebalance:
    """Test cases for plan_rebalance."""

    def test_plan_uses_min_trade_amount(self, store, oracle, auth, clock) -> None:
        """Test advisory trades honour the configured dust threshold."""
        rebalancer = PortfolioRebalancer(
            store,
            OracleRegistry({"reflector": oracle}),
            auth,
            clock=clock,
            settings=RebalancerSettings(min_trade_amount=10),
        )
        rebalancer.initialize(admin="admin", oracle_address="reflector")
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", 200)
        deposit_as(rebalancer, auth, portfolio_id, "B", 100)

        assert rebalancer.plan_rebalance(portfolio_id) == {"A": -50, "B": 50}

    def test_default_drops_small_trades(self, rebalancer, funded) -> None:
        """Test default dust threshold drops trades of 50 units."""
        assert rebalancer.plan_rebalance(funded) == {}


class TestExecuteRebalance:
    """Test cases for execute_rebalance."""

    def test_success(self, rebalancer, auth, funded, oracle, clock, history) -> None:
        """Test exact proposal after the cooldown succeeds."""
        clock.advance(3600)
        refresh_prices(oracle, clock)

        with auth.acting_as("alice"):
            result = rebalancer.execute_rebalance(funded, {"A": 150, "B": 150})

        assert result == RebalanceResult(
            portfolio_id=funded,
            timestamp=T0 + 3600,
            total_value=30_000,
            slippage_bps={"A": 0, "B": 0},
        )
        portfolio = rebalancer.get_portfolio(funded)
        assert portfolio.last_rebalance == T0 + 3600
        assert portfolio.total_value == 30_000
        assert portfolio.current_balances == {"A": 200, "B": 100}

        event = history.get_history(portfolio_id=funded, event_type=EventType.REBALANCED)[0]
        assert event.topic == ("portfolio", "rebalanced")
        assert event.timestamp == T0 + 3600

    def test_cooldown(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test a rebalance inside the cooldown is rejected and changes nothing."""
        clock.advance(3599)
        refresh_prices(oracle, clock)

        with auth.acting_as("alice"):
            with pytest.raises(CooldownActiveError) as exc_info:
                rebalancer.execute_rebalance(funded, {"A": 150, "B": 150})

        assert exc_info.value.retry_after == T0 + 3600
        assert rebalancer.get_portfolio(funded).last_rebalance == T0

    def test_stale_price(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test one stale quote rejects even when the other is fresh."""
        clock.advance(3601)
        oracle.set_price("B", PRICE, timestamp=clock.now)

        with auth.acting_as("alice"):
            with pytest.raises(StalePriceError) as exc_info:
                rebalancer.execute_rebalance(funded, {"A": 150, "B": 150})

        assert exc_info.value.asset == "A"
        assert rebalancer.get_portfolio(funded).last_rebalance == T0

    def test_missing_price(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test a target without a quote rejects execution."""
        clock.advance(3600)
        refresh_prices(oracle, clock)
        oracle.remove_price("B")

        with auth.acting_as("alice"):
            with pytest.raises(MissingPriceError):
                rebalancer.execute_rebalance(funded, {"A": 150, "B": 150})

    def test_emergency_stop_first(self, rebalancer, auth, funded, oracle) -> None:
        """Test emergency stop wins over every other check."""
        oracle.remove_price("A")
        with auth.acting_as("admin"):
            rebalancer.set_emergency_stop(True)

        # Inside cooldown, missing price, wrong caller, unknown id
        with auth.acting_as("bob"):
            with pytest.raises(EmergencyStopError):
                rebalancer.execute_rebalance(funded, {})
            with pytest.raises(EmergencyStopError):
                rebalancer.execute_rebalance(999, {})

    def test_slippage_exceeded(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test a proposal 333 bps off against 100 bps tolerance is rejected."""
        clock.advance(3600)
        refresh_prices(oracle, clock)

        with auth.acting_as("alice"):
            with pytest.raises(SlippageExceededError) as exc_info:
                rebalancer.execute_rebalance(funded, {"A": 150, "B": 155})

        assert exc_info.value.slippage_bps == 333
        portfolio = rebalancer.get_portfolio(funded)
        assert portfolio.last_rebalance == T0
        assert portfolio.total_value == 0

    def test_empty_proposal_rejected(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test an empty proposal validates every target as 0."""
        clock.advance(3600)
        refresh_prices(oracle, clock)

        with auth.acting_as("alice"):
            with pytest.raises(SlippageExceededError):
                rebalancer.execute_rebalance(funded, {})

    def test_empty_portfolio_passes(self, rebalancer, auth, clock, oracle) -> None:
        """Test a portfolio without value skips the slippage comparison."""
        portfolio_id = create_as(rebalancer, auth)
        clock.advance(3600)
        refresh_prices(oracle, clock)

        with auth.acting_as("alice"):
            result = rebalancer.execute_rebalance(portfolio_id, {})

        assert result.total_value == 0
        assert result.slippage_bps == {}

    def test_requires_owner(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test only the owner can execute."""
        clock.advance(3600)
        refresh_prices(oracle, clock)

        with auth.acting_as("bob"):
            with pytest.raises(AuthorizationError):
                rebalancer.execute_rebalance(funded, {"A": 150, "B": 150})

    def test_non_integer_proposal(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test non-integer proposed balances are rejected."""
        clock.advance(3600)
        refresh_prices(oracle, clock)

        with auth.acting_as("alice"):
            with pytest.raises(InvalidAmountError):
                rebalancer.execute_rebalance(funded, {"A": 150.0, "B": 150})

    def test_second_rebalance_needs_new_cooldown(self, rebalancer, auth, funded, oracle, clock) -> None:
        """Test the cooldown restarts from the executed rebalance."""
        clock.advance(3600)
        refresh_prices(oracle, clock)
        with auth.acting_as("alice"):
            rebalancer.execute_rebalance(funded, {"A": 150, "B": 150})

            clock.advance(1800)
            refresh_prices(oracle, clock)
            with pytest.raises(CooldownActiveError):
                rebalancer.execute_rebalance(funded, {"A": 150, "B": 150})

    def test_custom_windows(self, store, oracle, auth, clock) -> None:
        """Test cooldown and price age come from settings."""
        rebalancer = PortfolioRebalancer(
            store,
            OracleRegistry({"reflector": oracle}),
            auth,
            clock=clock,
            settings=RebalancerSettings(cooldown_seconds=60, max_price_age_seconds=60),
        )
        rebalancer.initialize(admin="admin", oracle_address="reflector")
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", 150)
        deposit_as(rebalancer, auth, portfolio_id, "B", 150)

        clock.advance(61)
        with auth.acting_as("alice"):
            with pytest.raises(StalePriceError):
                rebalancer.execute_rebalance(portfolio_id, {"A": 150, "B": 150})

            refresh_prices(oracle, clock)
            rebalancer.execute_rebalance(portfolio_id, {"A": 150, "B": 150})


class ShiftingOracle(PriceOracle):
    """Feed whose quotes change after the first read of each asset."""

    def __init__(self, first: dict, later: dict, timestamp: int):
        self.first = first
        self.later = later
        self.timestamp = timestamp
        self.reads = Counter()

    def last_price(self, asset):
        self.reads[asset] += 1
        prices = self.first if self.reads[asset] == 1 else self.later
        if asset not in prices:
            return None
        return PriceQuote(asset, prices[asset], self.timestamp)


class TestPriceSnapshot:
    """Test each operation reads the feed once per asset."""

    def fund(self, store, auth, clock, feed) -> tuple:
        """Create a 50/50 portfolio holding A=150, B=150 with the feed installed late."""
        stable = StaticPriceOracle()
        registry = OracleRegistry({"reflector": stable})
        rebalancer = PortfolioRebalancer(store, registry, auth, clock=clock)
        rebalancer.initialize(admin="admin", oracle_address="reflector")
        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", 150)
        deposit_as(rebalancer, auth, portfolio_id, "B", 150)
        registry.register("reflector", feed)
        return rebalancer, portfolio_id

    def test_price_drop_after_first_read(self, store, auth, clock) -> None:
        """Test a quote falling to zero mid-call cannot reach the slippage math."""
        feed = ShiftingOracle(
            first={"A": PRICE, "B": PRICE},
            later={"A": PRICE, "B": 0},
            timestamp=T0 + 3600,
        )
        rebalancer, portfolio_id = self.fund(store, auth, clock, feed)
        clock.advance(3600)

        with auth.acting_as("alice"):
            result = rebalancer.execute_rebalance(portfolio_id, {"A": 150, "B": 150})

        assert result.total_value == 30_000
        assert result.slippage_bps == {"A": 0, "B": 0}

    def test_quote_vanishing_after_first_read(self, store, auth, clock) -> None:
        """Test a quote disappearing mid-call does not fail an approved rebalance."""
        feed = ShiftingOracle(
            first={"A": PRICE, "B": PRICE},
            later={},
            timestamp=T0 + 3600,
        )
        rebalancer, portfolio_id = self.fund(store, auth, clock, feed)
        clock.advance(3600)

        with auth.acting_as("alice"):
            rebalancer.execute_rebalance(portfolio_id, {"A": 150, "B": 150})

        assert rebalancer.get_portfolio(portfolio_id).last_rebalance == T0 + 3600

    def test_one_read_per_asset(self, store, auth, clock) -> None:
        """Test execute, check and plan each read every quote exactly once."""
        feed = ShiftingOracle(
            first={"A": PRICE, "B": PRICE},
            later={"A": PRICE, "B": PRICE},
            timestamp=T0 + 3600,
        )
        rebalancer, portfolio_id = self.fund(store, auth, clock, feed)
        clock.advance(3600)

        with auth.acting_as("alice"):
            rebalancer.execute_rebalance(portfolio_id, {"A": 150, "B": 150})
        assert feed.reads == {"A": 1, "B": 1}

        rebalancer.check_rebalance_needed(portfolio_id)
        assert feed.reads == {"A": 2, "B": 2}

        rebalancer.plan_rebalance(portfolio_id)
        assert feed.reads == {"A": 3, "B": 3}

    def test_untargeted_holdings_included(self, rebalancer, auth, funded, oracle) -> None:
        """Test the snapshot quotes held assets outside the target allocation."""
        oracle.set_price("C", PRICE, timestamp=0)
        deposit_as(rebalancer, auth, funded, "C", 5)

        snapshot = rebalancer.price_snapshot(rebalancer.get_portfolio(funded))

        assert snapshot.last_prices(["A", "B", "C"]).keys() == {"A", "B", "C"}

    def test_cooldown_reported_before_feed_read(self, store, auth, clock) -> None:
        """Test a rebalance inside the cooldown does not touch the feed."""
        feed = ShiftingOracle(first={}, later={}, timestamp=T0)
        rebalancer, portfolio_id = self.fund(store, auth, clock, feed)

        with auth.acting_as("alice"):
            with pytest.raises(CooldownActiveError):
                rebalancer.execute_rebalance(portfolio_id, {"A": 150, "B": 150})

        assert feed.reads == {}


class TestEmergencyStop:
    """Test cases for the emergency stop."""

    def test_default_off(self, rebalancer) -> None:
        """Test the stop is off after initialization."""
        assert rebalancer.is_emergency_stopped() is False

    def test_toggle(self, rebalancer, auth, history) -> None:
        """Test the admin can set and clear the stop."""
        with auth.acting_as("admin"):
            rebalancer.set_emergency_stop(True)
            assert rebalancer.is_emergency_stopped() is True

            rebalancer.set_emergency_stop(False)
            assert rebalancer.is_emergency_stopped() is False

        events = history.get_history(event_type=EventType.EMERGENCY_STOP_CHANGED)
        assert [e.data["active"] for e in events] == [False, True]

    def test_requires_admin(self, rebalancer, auth) -> None:
        """Test non-admins cannot toggle the stop."""
        with auth.acting_as("alice"):
            with pytest.raises(AuthorizationError):
                rebalancer.set_emergency_stop(True)

        assert rebalancer.is_emergency_stopped() is False

    def test_requires_initialization(self, store, auth) -> None:
        """Test toggling before initialize fails."""
        rebalancer = PortfolioRebalancer(store, OracleRegistry(), auth)

        with auth.acting_as("admin"):
            with pytest.raises(NotInitializedError):
                rebalancer.set_emergency_stop(True)

    def test_reads_allowed_while_stopped(self, rebalancer, auth, funded) -> None:
        """Test drift checks still work while stopped."""
        with auth.acting_as("admin"):
            rebalancer.set_emergency_stop(True)

        assert rebalancer.check_rebalance_needed(funded) is True


class TestEventSinkFailures:
    """Test event publication is best-effort."""

    def test_sink_failure_does_not_undo(self, store, oracle, auth, clock) -> None:
        """Test a raising sink leaves the committed state in place."""
        sink = Mock()
        sink.publish.side_effect = RuntimeError("sink down")
        rebalancer = PortfolioRebalancer(
            store, OracleRegistry({"reflector": oracle}), auth, event_sink=sink, clock=clock
        )
        rebalancer.initialize(admin="admin", oracle_address="reflector")

        portfolio_id = create_as(rebalancer, auth)
        deposit_as(rebalancer, auth, portfolio_id, "A", 10)

        assert rebalancer.get_portfolio(portfolio_id).current_balances == {"A": 10}
        assert sink.publish.call_count == 2
