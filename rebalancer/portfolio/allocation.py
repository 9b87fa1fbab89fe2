"""Target allocation validation."""

from typing import Mapping

from rebalancer.portfolio.models import U32_MAX

TOTAL_PERCENT = 100


def is_valid_percentage(value) -> bool:
    """True for a non-bool integer inside the unsigned 32-bit range."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= U32_MAX
    )


def validate_allocations(allocations: Mapping[str, int]) -> bool:
    """Check that target percentages sum to exactly 100.

    Each percentage must be an unsigned 32-bit integer; an entry outside that
    range invalidates the whole map rather than wrapping. An empty map sums
    to 0 and is therefore invalid.

    Args:
        allocations: Target allocation {asset: percentage}

    Returns:
        True if the allocation is well-formed

    Example:
        >>> validate_allocations({"XLM": 60, "USDC": 40})
        True
        >>> validate_allocations({"XLM": 60, "USDC": 30})
        False
    """
    total = 0
    for percentage in allocations.values():
        if not is_valid_percentage(percentage):
            return False
        total += percentage
    return total == TOTAL_PERCENT
