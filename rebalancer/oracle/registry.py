"""Resolution of stored oracle addresses to oracle adapters."""

from typing import Optional

from rebalancer.oracle.base import PriceOracle
from rebalancer.utils.exceptions import ConfigurationError


class OracleRegistry:
    """Maps oracle addresses (as stored by ``initialize``) to adapters.

    Example:
        >>> registry = OracleRegistry({"reflector": StaticPriceOracle()})
        >>> oracle = registry.resolve("reflector")
    """

    def __init__(self, oracles: Optional[dict[str, PriceOracle]] = None):
        self._oracles: dict[str, PriceOracle] = dict(oracles or {})

    def register(self, address: str, oracle: PriceOracle) -> None:
        self._oracles[address] = oracle

    def resolve(self, address: str) -> PriceOracle:
        """Return the adapter registered for ``address``.

        Raises:
            ConfigurationError: If nothing is registered under the address
        """
        try:
            return self._oracles[address]
        except KeyError:
            raise ConfigurationError(
                f"No price oracle registered for address {address!r}"
            ) from None

    def __contains__(self, address: str) -> bool:
        return address in self._oracles
