import os

import pytest


@pytest.fixture(scope="session")
def _logistics_domain(request):
    """Initialize the logistics domain once per session."""
    os.environ["PROTEAN_ENV"] = request.config.option.env

    from logistics.domain import logistics

    logistics.init()
    return logistics


@pytest.fixture(scope="session", autouse=True)
def setup_db(_logistics_domain):
    from logistics.utils.db import drop_db, setup_db

    setup_db(_logistics_domain)

    yield

    drop_db(_logistics_domain)


@pytest.fixture(autouse=True)
def run_around_tests(_logistics_domain):
    """Push domain context before each test, cleanup after."""
    ctx = _logistics_domain.domain_context()
    ctx.push()

    yield

    from logistics.authorization import reset_authorizer
    from protean import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()
    reset_authorizer()
    ctx.pop()

