"""BDD tests for bulk consolidation and distribution."""

from logistics.order.order import Order, ProductKey
from logistics.order.transitions import OrderStatus
from protean import current_domain
from pytest_bdd import given, parsers, scenarios, then, when

scenarios("features/bulk_consolidation.feature")


def product(name):
    return ProductKey("TOM", "kg", name)


def load(order_id):
    return current_domain.repository_for(Order).get(order_id)


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the warehouse prepared {prepared:d} kg of "{name}" and purchased {purchased:d} kg'))
def warehouse_prepared(service, actor, bulk, prepared, name, purchased):
    key = product(name)
    service.save_warehouse_progress(bulk["batch_id"], [{**key.as_dict(), "prepared_qty": prepared}], actor)

    batch = load(bulk["batch_id"])
    batch.item_for(key).purchased_qty = float(purchased)
    current_domain.repository_for(Order).add(batch)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the batch is closed")
@when("the batch is closed again")
def close_batch(service, actor, bulk):
    service.close_bulk_batch(bulk["batch_id"], actor)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the batch requests {qty:d} kg of "{name}"'))
def batch_requests(bulk, qty, name):
    assert load(bulk["batch_id"]).item_for(product(name)).qty == qty


@then(parsers.cfparse('the sub-orders received {first:d} and {second:d} kg of "{name}"'))
def sub_orders_received(bulk, first, second, name):
    key = product(name)
    received = [load(sub_id).item_for(key).prepared_qty for sub_id in bulk["sub_ids"]]
    assert received == [first, second]
    assert sum(received) == first + second


@then("the batch is archived")
def batch_is_archived(bulk):
    batch = load(bulk["batch_id"])
    assert batch.is_archived_batch
    assert batch.status == OrderStatus.ENTREGUE.value
