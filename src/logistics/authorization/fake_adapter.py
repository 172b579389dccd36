"""Fake authorizer — allows everything unless told otherwise.

Tests restrict it with ``configure(permissions={...})`` to exercise the
403 paths of the HTTP layer.
"""

from logistics.authorization.port import AuthorizationPort


class FakeAuthorizer(AuthorizationPort):
    def __init__(self):
        self.permissions = None

    def configure(self, permissions: set[str] | None = None):
        """Restrict to ``permissions``; ``None`` grants everything again."""
        self.permissions = set(permissions) if permissions is not None else None

    def can(self, permission_key: str, actor=None) -> bool:
        if self.permissions is None:
            return True
        return permission_key in self.permissions
