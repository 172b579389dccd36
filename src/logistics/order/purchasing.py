"""Purchasing — allocate restocked quantities to orders short of items.

Incoming stock of one product is spread first-in first-out over the orders
in FALTAS, oldest requested date first. An order whose shortfall is fully
covered goes back to PREP so the warehouse can finish it.
"""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, String
from protean.utils.globals import current_domain

from logistics.domain import logger, logistics
from logistics.order.order import Order, ProductKey
from logistics.order.preparation import is_missing, normalize_qty
from logistics.order.transitions import EventType, OrderStatus, StatusChange
from logistics.order.update import apply_status
from logistics.shared.actor import actor_from
from logistics.utils.db import fetch_all


def orders_short_of_items() -> list[Order]:
    """FALTAS orders in allocation order: requested date, then creation time."""
    repo = current_domain.repository_for(Order)
    orders = fetch_all(repo._dao.query.filter(status=OrderStatus.FALTAS.value))
    return sorted(orders, key=lambda o: (o.date or "", o.created_at))


@logistics.command(part_of="Order")
class ReceivePurchase:
    """Register restocked quantity of a product."""

    product_id = String(required=True, max_length=100)
    unit = String(max_length=20)
    product_name = String(required=True, max_length=200)
    qty = Float(required=True, min_value=0)
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class PurchasingHandler:
    @handle(ReceivePurchase)
    def receive_purchase(self, command):
        remaining = normalize_qty(command.qty)
        if remaining <= 0:
            raise ValidationError({"qty": ["Received quantity must be positive"]})

        key = ProductKey(command.product_id, command.unit or "", command.product_name)
        actor = actor_from(command)
        repo = current_domain.repository_for(Order)

        allocations = []
        changes = []
        for order in orders_short_of_items():
            if remaining <= 0:
                break

            taken = order.allocate_purchase(key, remaining)
            if taken <= 0:
                continue
            remaining -= taken
            allocations.append({"order_id": str(order.id), "qty": float(taken)})
            changes.append(
                StatusChange(
                    order_id=str(order.id),
                    from_status=order.status,
                    to_status=order.status,
                    event_type=EventType.PURCHASE_RECEIVED.value,
                    meta={**key.as_dict(), "qty": float(taken)},
                )
            )

            if not is_missing(order.items or []):
                order.flag_for_completion()
                changes.extend(apply_status(order, OrderStatus.PREP, actor))
            repo.add(order)

        logger.info(
            "purchase_received",
            product_id=key.product_id,
            allocated=len(allocations),
            remaining=float(remaining),
        )
        return {"allocations": allocations, "remaining": float(remaining), "changes": changes}
