"""Caller authorization.

The rebalancer never decides who the caller is; it only asserts that the
caller matches an identity through an Authorizer supplied by the surrounding
execution context.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional

from rebalancer.utils.exceptions import AuthorizationError


class Authorizer(ABC):
    """Identity check collaborator."""

    @abstractmethod
    def require_caller_is(self, identity: str) -> None:
        """Fail the call unless the current caller is ``identity``.

        Raises:
            AuthorizationError: If the caller does not match
        """
        pass


class SessionAuthorizer(Authorizer):
    """Authorizer holding the identity of the current caller.

    Example:
        >>> auth = SessionAuthorizer()
        >>> with auth.acting_as("alice"):
        ...     rebalancer.deposit(1, "XLM", 500)
    """

    def __init__(self, caller: Optional[str] = None):
        self.caller = caller

    @contextmanager
    def acting_as(self, identity: str) -> Iterator[None]:
        previous = self.caller
        self.caller = identity
        try:
            yield
        finally:
            self.caller = previous

    def require_caller_is(self, identity: str) -> None:
        if self.caller is None:
            raise AuthorizationError(f"Unauthenticated call, {identity} required")
        if self.caller != identity:
            raise AuthorizationError(
                f"Caller {self.caller} is not authorized to act as {identity}"
            )


class PermissiveAuthorizer(Authorizer):
    """Accepts every identity. For local tooling and tests."""

    def require_caller_is(self, identity: str) -> None:
        return None
