"""Portfolio data structures.

A Portfolio is the persisted aggregate: one per (owner, creation event),
identified by an integer id assigned by the rebalancer. All amounts are plain
Python integers; balances are kept within the signed 128-bit range so records
remain portable to fixed-width stores.
"""

from dataclasses import dataclass, field
from typing import Any, Dict

I128_MIN = -(2**127)
I128_MAX = 2**127 - 1
U32_MAX = 2**32 - 1


@dataclass
class Portfolio:
    """Target allocation and balances of a single user portfolio.

    Attributes:
        user: Owning identity
        target_allocations: Target percentages {asset: pct}, summing to 100
        current_balances: Held amounts {asset: amount}; may include assets
            without a target
        rebalance_threshold: Allowed drift in percentage points (1-50)
        slippage_tolerance: Allowed execution deviation in basis points (10-500)
        last_rebalance: Timestamp of creation or of the last executed rebalance
        total_value: Total value cached at the last executed rebalance
        is_active: Deactivation flag; portfolios are never deleted
    """

    user: str
    target_allocations: Dict[str, int]
    rebalance_threshold: int
    slippage_tolerance: int
    last_rebalance: int
    current_balances: Dict[str, int] = field(default_factory=dict)
    total_value: int = 0
    is_active: bool = True

    def balance_of(self, asset: str) -> int:
        return self.current_balances.get(asset, 0)

    def copy(self) -> "Portfolio":
        """Independent copy, safe to mutate before committing."""
        return Portfolio(
            user=self.user,
            target_allocations=dict(self.target_allocations),
            rebalance_threshold=self.rebalance_threshold,
            slippage_tolerance=self.slippage_tolerance,
            last_rebalance=self.last_rebalance,
            current_balances=dict(self.current_balances),
            total_value=self.total_value,
            is_active=self.is_active,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user,
            "target_allocations": dict(self.target_allocations),
            "current_balances": dict(self.current_balances),
            "rebalance_threshold": self.rebalance_threshold,
            "slippage_tolerance": self.slippage_tolerance,
            "last_rebalance": self.last_rebalance,
            "total_value": self.total_value,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Portfolio":
        return cls(
            user=data["user"],
            target_allocations={k: int(v) for k, v in data["target_allocations"].items()},
            current_balances={k: int(v) for k, v in data.get("current_balances", {}).items()},
            rebalance_threshold=int(data["rebalance_threshold"]),
            slippage_tolerance=int(data["slippage_tolerance"]),
            last_rebalance=int(data["last_rebalance"]),
            total_value=int(data.get("total_value", 0)),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass(frozen=True)
class RebalanceResult:
    """Outcome of a committed rebalance.

    Attributes:
        portfolio_id: Rebalanced portfolio
        timestamp: New ``last_rebalance`` value
        total_value: Total value the slippage check was measured against
        slippage_bps: Measured deviation per checked asset
    """

    portfolio_id: int
    timestamp: int
    total_value: int
    slippage_bps: Dict[str, int] = field(default_factory=dict)
