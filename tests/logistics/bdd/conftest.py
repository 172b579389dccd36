"""Shared BDD fixtures and step definitions for the Logistics domain."""

import pytest
from logistics.order.order import Order, ProductKey
from logistics.order.service import OrderUpdateService
from logistics.shared.actor import Actor
from protean import current_domain
from pytest_bdd import given, parsers, then

_PRODUCTS = {
    "Tomate": ProductKey("TOM", "kg", "Tomate"),
    "Cebola": ProductKey("CEB", "kg", "Cebola"),
}


def product(name: str) -> ProductKey:
    return _PRODUCTS[name]


def load(order_id: str) -> Order:
    return current_domain.repository_for(Order).get(order_id)


def order_spec(client_id: str, **quantities) -> dict:
    return {
        "client_id": client_id,
        "client_name": f"Client {client_id}",
        "date": "2026-03-10",
        "carrier": "CTT",
        "items": [{**product(name).as_dict(), "qty": qty} for name, qty in quantities.items()],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def service():
    return OrderUpdateService()


@pytest.fixture()
def actor():
    return Actor(role="armazem", user_id="wh-1", name="Armazém 1")


@pytest.fixture()
def error():
    """Container for captured validation errors."""
    return {"exc": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse('a bulk order with sub-orders requesting {first:d} and {second:d} kg of "{name}"'),
    target_fixture="bulk",
)
def bulk_order(service, actor, first, second, name):
    batch_id, sub_ids = service.create_bulk_order(
        [order_spec("A", **{name: first}), order_spec("B", **{name: second})],
        actor,
    )
    service.start_warehouse_job(batch_id, actor)
    return {"batch_id": batch_id, "sub_ids": sub_ids}


@given("a bulk sub-order in preparation", target_fixture="order_id")
def bulk_sub_order_in_preparation(service, actor):
    batch_id, sub_ids = service.create_bulk_order(
        [order_spec("A", Tomate=10), order_spec("B", Tomate=5)],
        actor,
    )
    service.start_warehouse_job(batch_id, actor)
    return sub_ids[0]


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def order_status_is(order_id, status):
    assert load(order_id).status == status
