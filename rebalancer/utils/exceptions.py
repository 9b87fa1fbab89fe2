"""Custom exceptions for the portfolio rebalancer.

This module defines the exception hierarchy for the application. Every
rejection path raises one of these before any state is persisted, so a caller
can always tell validation, authorization, state, guard and economic failures
apart.
"""

from typing import Optional


class RebalancerError(Exception):
    """Base exception for all rebalancer errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(RebalancerError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing required configuration keys
        - Cooldown or price-age window that is not a positive integer
        - Configuration file not found
    """

    pass


class ValidationError(RebalancerError):
    """Base exception for rejected user input.

    Raised before any mutation takes place.
    """

    pass


class InvalidAllocationError(ValidationError):
    """Raised when target allocations do not sum to exactly 100."""

    pass


class InvalidThresholdError(ValidationError):
    """Raised when the rebalance threshold is outside [1, 50]."""

    pass


class InvalidSlippageToleranceError(ValidationError):
    """Raised when the slippage tolerance is outside [10, 500] basis points."""

    pass


class InvalidAmountError(ValidationError):
    """Raised when a deposit amount is not a positive integer."""

    pass


class BalanceOverflowError(InvalidAmountError):
    """Raised when a deposit would push a balance outside the 128-bit range."""

    pass


class AuthorizationError(RebalancerError):
    """Raised when the caller does not match the required identity.

    Examples:
        - Depositing into another user's portfolio
        - Toggling the emergency stop without being the admin
    """

    pass


class StateError(RebalancerError):
    """Base exception for operations invalid in the current state."""

    pass


class AlreadyInitializedError(StateError):
    """Raised when initialize is called a second time."""

    pass


class NotInitializedError(StateError):
    """Raised when an operation needs admin or oracle data that was never set."""

    pass


class PortfolioNotFoundError(StateError):
    """Raised when a portfolio id has no stored record."""

    def __init__(self, portfolio_id: int):
        super().__init__(f"Portfolio {portfolio_id} not found")
        self.portfolio_id = portfolio_id


class GuardError(RebalancerError):
    """Base exception for rebalance preconditions that are not met.

    Guard errors are recoverable: retrying once the condition clears is safe.
    """

    pass


class EmergencyStopError(GuardError):
    """Raised when the emergency stop is active."""

    pass


class CooldownActiveError(GuardError):
    """Raised when a rebalance is attempted inside the cooldown window.

    Attributes:
        retry_after: Earliest timestamp at which a retry can pass this guard
    """

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class PriceDataError(GuardError):
    """Base exception for unusable price data.

    Attributes:
        asset: Asset whose quote was rejected
    """

    def __init__(self, message: str, asset: str):
        super().__init__(message)
        self.asset = asset


class MissingPriceError(PriceDataError):
    """Raised when the oracle has no quote for a target asset."""

    pass


class StalePriceError(PriceDataError):
    """Raised when a quote is older than the allowed price age.

    Attributes:
        age: Age of the quote in seconds at the time of the check
    """

    def __init__(self, message: str, asset: str, age: int):
        super().__init__(message, asset)
        self.age = age


class InvalidPriceError(PriceDataError):
    """Raised when a quote carries a zero or negative price."""

    pass


class SlippageExceededError(RebalancerError):
    """Raised when a proposed post-trade balance deviates beyond tolerance.

    The proposal should be recomputed, not retried verbatim.

    Attributes:
        asset: First asset found beyond tolerance
        slippage_bps: Measured deviation in basis points
        tolerance_bps: Portfolio's configured tolerance
    """

    def __init__(
        self,
        message: str,
        asset: Optional[str] = None,
        slippage_bps: Optional[int] = None,
        tolerance_bps: Optional[int] = None,
    ):
        super().__init__(message)
        self.asset = asset
        self.slippage_bps = slippage_bps
        self.tolerance_bps = tolerance_bps


class DataProviderError(RebalancerError):
    """Raised when a price oracle cannot be reached or returns garbage.

    Examples:
        - Network connection failed
        - Non-JSON or malformed response body
    """

    pass


class StorageError(RebalancerError):
    """Raised when store operations fail.

    Examples:
        - Database connection failed
        - Stored record cannot be decoded
    """

    pass
