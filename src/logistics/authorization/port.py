"""Authorization port — the boolean capability check callers gate on.

The order core never calls this itself: every entry point (HTTP routes,
CLIs) is expected to ask before invoking a mutating operation.
"""

from abc import ABC, abstractmethod


class AuthorizationPort(ABC):
    """Abstract interface for authorization adapters."""

    @abstractmethod
    def can(self, permission_key: str, actor=None) -> bool:
        """Whether ``actor`` holds ``permission_key`` (e.g. ``"warehouse.close"``)."""
        ...
