"""Generic order update — patch fields and change status in one commit.

``apply_status`` is the single place where a status change fans out:

- classification of the change for the audit log,
- a shipping guide when a bulk-linked order becomes ready to bill,
- the batch close when a BULK_BATCH moves PREP → A_FATURAR,
- sub-orders following their batch (start, send back, cancel, reactivate).

Everything it touches is added to the current Unit of Work, so the order,
its sub-orders and any guide commit together or not at all.
"""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from logistics.domain import logger, logistics
from logistics.guide import issuer
from logistics.order.bulk import active_batch_for, cascade_to_sub_orders, close_batch, reject_delegated
from logistics.order.order import PATCHABLE_FIELDS, Order
from logistics.order.transitions import OrderStatus, StatusChange, classify
from logistics.shared.actor import Actor, actor_from


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError({"status": [f"Unknown status {value!r}"]}) from None


def apply_status(order: Order, target: OrderStatus, actor: Actor) -> list[StatusChange]:
    """Move ``order`` to ``target`` with every side effect of that change.

    Returns the status changes to record, the order's own change first.
    """
    current = OrderStatus(order.status)

    if order.is_archived_batch and target in (OrderStatus.A_FATURAR, OrderStatus.ENTREGUE):
        logger.info("bulk_batch_already_closed", batch_id=str(order.id))
        return []
    if current == target:
        return []

    if order.is_bulk_batch and current == OrderStatus.PREP and target == OrderStatus.A_FATURAR:
        return close_batch(order, actor)

    if order.is_bulk_sub and target == OrderStatus.CANCELADA and active_batch_for(order) is not None:
        raise ValidationError(
            {"status": ["A sub-order cannot be cancelled while its bulk batch is active; cancel the batch instead"]}
        )
    if order.is_bulk_sub and target == OrderStatus.PREP:
        reject_delegated(order)

    old = order.change_status(target)
    guide = issuer.on_transition(order, old, target, actor)
    changes = [
        StatusChange(
            order_id=str(order.id),
            from_status=old.value,
            to_status=target.value,
            event_type=classify(old, target).value,
            meta={"guide_id": str(guide.id)} if guide else {},
        )
    ]
    if order.is_bulk_batch:
        changes.extend(cascade_to_sub_orders(order, target))
    return changes


@logistics.command(part_of="Order")
class UpdateOrder:
    """Patch an order's status and/or logistics fields."""

    order_id = Identifier(required=True)
    patch = Text(required=True)  # JSON dict: status, carrier, date, notes, route_id, pickup_id
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class UpdateOrderHandler:
    @handle(UpdateOrder)
    def update_order(self, command):
        patch = json.loads(command.patch) if isinstance(command.patch, str) else command.patch
        unknown = sorted(set(patch) - {"status", *PATCHABLE_FIELDS})
        if unknown:
            raise ValidationError({"patch": [f"Unsupported fields: {', '.join(unknown)}"]})

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)

        order.apply_details(patch)
        changes = []
        if patch.get("status"):
            changes = apply_status(order, parse_status(patch["status"]), actor_from(command))

        repo.add(order)
        return changes
