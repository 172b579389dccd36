"""Bulk consolidation — one warehouse job for many customer orders.

A bulk order is created as one BULK_BATCH holding the summed quantities per
product, plus one BULK_SUB per customer order holding its own quantities.
The warehouse prepares the batch. Closing the batch hands each sub-order
its proportional share of the prepared quantities, archives the batch and
advances every sub-order, all in the same Unit of Work:

    share = round(batch_prepared * sub_qty / batch_qty, 2)   (0 if batch_qty == 0)

Shares are assigned, never added, and an archived batch is never closed
again, so replaying a close cannot double-apply quantities.
"""

import json
from decimal import Decimal

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from logistics.domain import logger, logistics
from logistics.guide import issuer
from logistics.order.order import Order, OrderKind, ProductKey
from logistics.order.preparation import closing_status, is_missing, normalize_qty, round_share, to_decimal
from logistics.order.transitions import OrderStatus, StatusChange, classify
from logistics.shared.actor import Actor, actor_from

_ORDER_FIELDS = ("client_id", "client_name", "contract_id", "location_id", "date", "carrier", "notes")

# Batch status -> sub-order statuses that follow it there
_CASCADES = {
    OrderStatus.PREP: {OrderStatus.ESPERA},
    OrderStatus.ESPERA: {OrderStatus.PREP, OrderStatus.CANCELADA},
    OrderStatus.CANCELADA: {OrderStatus.ESPERA, OrderStatus.PREP},
}


# ---------------------------------------------------------------------------
# Consolidation
# ---------------------------------------------------------------------------
def consolidate(sub_order_specs: list[dict]) -> list[dict]:
    """Sum requested quantities per product key across all sub-order specs."""
    groups: dict[ProductKey, dict] = {}
    for spec in sub_order_specs:
        for item in spec.get("items") or []:
            key = ProductKey.from_dict(item)
            group = groups.setdefault(
                key,
                {**key.as_dict(), "qty": Decimal(0), "unit_price": item.get("unit_price") or 0.0},
            )
            group["qty"] += normalize_qty(item.get("qty"))
    return [{**group, "qty": float(group["qty"])} for group in groups.values()]


def create_batch(sub_order_specs: list[dict]) -> tuple[Order, list[Order]]:
    """Build (without persisting) the batch and its linked sub-orders."""
    if not sub_order_specs:
        raise ValidationError({"sub_orders": ["A bulk order needs at least one sub-order"]})

    first = sub_order_specs[0]
    dates = sorted(spec["date"] for spec in sub_order_specs if spec.get("date"))
    batch = Order.create(
        client_id=first.get("client_id"),
        items_data=consolidate(sub_order_specs),
        kind=OrderKind.BULK_BATCH,
        client_name=first.get("client_name"),
        contract_id=first.get("contract_id"),
        location_id=first.get("location_id"),
        date=dates[0] if dates else None,
        carrier=first.get("carrier"),
    )

    sub_orders = [
        Order.create(
            items_data=spec.get("items") or [],
            kind=OrderKind.BULK_SUB,
            linked_to_bulk_batch_id=str(batch.id),
            **{name: spec.get(name) for name in _ORDER_FIELDS},
        )
        for spec in sub_order_specs
    ]
    batch.attach_sub_orders([str(sub.id) for sub in sub_orders])
    return batch, sub_orders


# ---------------------------------------------------------------------------
# Distribution
# ---------------------------------------------------------------------------
def distribute_shares(batch: Order, sub_orders: list[Order]) -> dict[str, dict[ProductKey, Decimal]]:
    """Compute each sub-order's share of the batch's prepared quantities."""
    aggregated = {item.product_key: item for item in (batch.items or [])}
    result = {}
    for sub in sub_orders:
        shares = {}
        for item in sub.items or []:
            batch_item = aggregated.get(item.product_key)
            if batch_item is None:
                raise ValidationError(
                    {"items": [f"Sub-order {sub.id} holds {item.product_name}, which batch {batch.id} does not"]}
                )
            batch_qty = to_decimal(batch_item.qty)
            if batch_qty == 0:
                shares[item.product_key] = Decimal(0)
            else:
                prepared = to_decimal(batch_item.prepared_qty)
                shares[item.product_key] = round_share(prepared * to_decimal(item.qty) / batch_qty)
        result[str(sub.id)] = shares
    return result


def _load_sub_orders(batch: Order, expected_status: OrderStatus | None = None) -> list[Order]:
    """Fetch and verify every sub-order before anything is mutated."""
    sub_ids = batch.sub_order_ids
    if not sub_ids:
        raise ValidationError({"bulk_sub_order_ids": [f"Bulk batch {batch.id} has no linked sub-orders"]})

    repo = current_domain.repository_for(Order)
    sub_orders = [repo.get(sub_id) for sub_id in sub_ids]
    for sub in sub_orders:
        if not sub.is_bulk_sub or str(sub.linked_to_bulk_batch_id) != str(batch.id):
            raise ValidationError({"bulk_sub_order_ids": [f"Order {sub.id} is not linked to batch {batch.id}"]})
        if expected_status is not None and OrderStatus(sub.status) != expected_status:
            raise ValidationError(
                {"status": [f"Sub-order {sub.id} is in {sub.status}, expected {expected_status.value}"]}
            )
    return sub_orders


def active_batch_for(sub: Order) -> Order | None:
    """The batch still driving ``sub``; ``None`` once archived or cancelled."""
    if not sub.is_bulk_sub or not sub.linked_to_bulk_batch_id:
        return None
    batch = current_domain.repository_for(Order).get(sub.linked_to_bulk_batch_id)
    if batch.is_archived_batch or OrderStatus(batch.status) == OrderStatus.CANCELADA:
        return None
    return batch


def reject_delegated(order: Order) -> None:
    """Refuse individual warehouse work on a sub-order its batch still drives."""
    batch = active_batch_for(order)
    if batch is not None:
        raise ValidationError(
            {"linked_to_bulk_batch_id": [f"Order {order.id} is prepared through bulk batch {batch.id}"]}
        )


def cascade_to_sub_orders(batch: Order, target: OrderStatus) -> list[StatusChange]:
    """Move the sub-orders that follow ``batch`` into ``target`` with it."""
    followers = _CASCADES.get(target)
    if not followers:
        return []

    repo = current_domain.repository_for(Order)
    changes = []
    for sub in _load_sub_orders(batch):
        if OrderStatus(sub.status) not in followers:
            continue
        old = sub.change_status(target)
        repo.add(sub)
        changes.append(
            StatusChange(
                order_id=str(sub.id),
                from_status=old.value,
                to_status=target.value,
                event_type=classify(old, target).value,
                meta={"bulk_batch_id": str(batch.id)},
            )
        )
    return changes


def close_batch(batch: Order, actor: Actor) -> list[StatusChange]:
    """Distribute, archive and advance — the only way a batch is closed.

    Raises before the first mutation if the batch or any sub-order is not in
    a closable state, including when a sub-order cannot be fetched.
    """
    if batch.is_archived_batch:
        logger.info("bulk_batch_already_closed", batch_id=str(batch.id))
        return []
    if not batch.is_bulk_batch:
        raise ValidationError({"kind": [f"Order {batch.id} is not a bulk batch"]})
    if OrderStatus(batch.status) != OrderStatus.PREP:
        raise ValidationError({"status": [f"Cannot close a bulk batch in {batch.status}"]})
    if is_missing(batch.items or []):
        raise ValidationError({"items": ["Bulk batch still has missing items"]})

    sub_orders = _load_sub_orders(batch, OrderStatus.PREP)
    shares = distribute_shares(batch, sub_orders)

    repo = current_domain.repository_for(Order)
    changes = []
    for sub in sub_orders:
        sub.assign_prepared_shares(str(batch.id), shares[str(sub.id)])
        target = closing_status(sub.items or [])
        old = sub.change_status(target)
        sub.stamp_warehouse_close(actor)
        guide = issuer.on_transition(sub, old, target, actor)
        repo.add(sub)
        changes.append(
            StatusChange(
                order_id=str(sub.id),
                from_status=old.value,
                to_status=target.value,
                event_type=classify(old, target).value,
                meta={
                    "bulk_batch_id": str(batch.id),
                    "guide_id": str(guide.id) if guide else None,
                },
            )
        )

    old = batch.archive_batch()
    batch.stamp_warehouse_close(actor)
    repo.add(batch)
    changes.insert(
        0,
        StatusChange(
            order_id=str(batch.id),
            from_status=old.value,
            to_status=batch.status,
            event_type=classify(old, OrderStatus.A_FATURAR).value,
            meta={"archived": True, "sub_order_ids": batch.sub_order_ids},
        ),
    )
    logger.info(
        "bulk_batch_closed",
        batch_id=str(batch.id),
        sub_orders=len(sub_orders),
        short=[c.order_id for c in changes[1:] if c.to_status == OrderStatus.FALTAS.value],
    )
    return changes


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@logistics.command(part_of="Order")
class CreateBulkOrder:
    """Consolidate several customer orders into one warehouse job."""

    sub_orders = Text(required=True)  # JSON list of order specs
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command(part_of="Order")
class CloseBulkBatch:
    """Distribute a prepared batch to its sub-orders and archive it."""

    batch_id = Identifier(required=True)
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class BulkOrderHandler:
    @handle(CreateBulkOrder)
    def create_bulk_order(self, command):
        specs = json.loads(command.sub_orders) if isinstance(command.sub_orders, str) else command.sub_orders
        batch, sub_orders = create_batch(specs)

        repo = current_domain.repository_for(Order)
        repo.add(batch)
        for sub in sub_orders:
            repo.add(sub)

        logger.info("bulk_batch_created", batch_id=str(batch.id), sub_orders=len(sub_orders))
        return str(batch.id), [str(sub.id) for sub in sub_orders]

    @handle(CloseBulkBatch)
    def close_bulk_batch(self, command):
        batch = current_domain.repository_for(Order).get(command.batch_id)
        batch.check_revision(command.expected_revision)
        return close_batch(batch, actor_from(command))
