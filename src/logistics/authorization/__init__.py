"""Authorization adapter — pluggable permission check for the HTTP layer."""

import os

_authorizer_instance = None


def get_authorizer():
    """Return the configured authorizer (singleton).

    Uses FakeAuthorizer by default. In production, configure via
    AUTHORIZER_ADAPTER environment variable.
    """
    global _authorizer_instance
    if _authorizer_instance is None:
        adapter = os.environ.get("AUTHORIZER_ADAPTER", "fake")
        if adapter == "fake":
            from logistics.authorization.fake_adapter import FakeAuthorizer

            _authorizer_instance = FakeAuthorizer()
        else:
            raise ValueError(f"Unknown authorizer adapter: {adapter}")
    return _authorizer_instance


def reset_authorizer():
    """Reset the authorizer singleton (useful for testing)."""
    global _authorizer_instance
    _authorizer_instance = None
