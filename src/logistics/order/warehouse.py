"""Warehouse preparation — start, save progress and close a warehouse job.

Closing applies the warehouse draft, then routes the order to FALTAS when
anything is still missing and to A_FATURAR otherwise. A BULK_BATCH with
nothing missing is closed through the bulk procedure, which distributes
its quantities to the sub-orders.
"""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from logistics.domain import logger, logistics
from logistics.order.bulk import close_batch, reject_delegated
from logistics.order.order import Order
from logistics.order.preparation import LOW_PROGRESS_THRESHOLD, closing_status, progress
from logistics.order.transitions import OrderStatus
from logistics.order.update import apply_status
from logistics.shared.actor import actor_from


def _draft(command) -> list[dict]:
    if not command.items:
        return []
    return json.loads(command.items) if isinstance(command.items, str) else command.items


@logistics.command(part_of="Order")
class StartWarehouseJob:
    """Begin preparing an order in the warehouse."""

    order_id = Identifier(required=True)
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command(part_of="Order")
class SaveWarehouseProgress:
    """Save prepared quantities without closing the job."""

    order_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of {product_id, unit, product_name, prepared_qty, obs}
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command(part_of="Order")
class CloseWarehouseJob:
    """Close preparation; the order moves on to FALTAS or A_FATURAR."""

    order_id = Identifier(required=True)
    items = Text()  # JSON list, same shape as SaveWarehouseProgress.items
    confirm_low_progress = Boolean(default=False)
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class WarehouseHandler:
    @handle(StartWarehouseJob)
    def start_warehouse_job(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)
        reject_delegated(order)

        actor = actor_from(command)
        current = OrderStatus(order.status)
        if current == OrderStatus.ESPERA:
            changes = apply_status(order, OrderStatus.PREP, actor)
        elif current == OrderStatus.PREP:
            changes = []
        else:
            raise ValidationError({"status": [f"Cannot start preparing an order in {current.value}"]})

        order.stamp_warehouse_start(actor)
        repo.add(order)
        return changes

    @handle(SaveWarehouseProgress)
    def save_warehouse_progress(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)
        reject_delegated(order)

        order.apply_preparation_draft(_draft(command))
        order.record_progress_saved()
        repo.add(order)
        return []

    @handle(CloseWarehouseJob)
    def close_warehouse_job(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)
        reject_delegated(order)

        order.apply_preparation_draft(_draft(command))
        percent = progress(order.items or []).percent
        if percent < LOW_PROGRESS_THRESHOLD and not command.confirm_low_progress:
            raise ValidationError(
                {
                    "items": [
                        f"Preparation is only {percent}% complete; "
                        f"confirm to close below {LOW_PROGRESS_THRESHOLD}%"
                    ]
                }
            )

        actor = actor_from(command)
        target = closing_status(order.items or [])
        if order.is_bulk_batch and target == OrderStatus.A_FATURAR:
            changes = close_batch(order, actor)
        else:
            changes = apply_status(order, target, actor)
            order.stamp_warehouse_close(actor)

        repo.add(order)
        logger.info("warehouse_job_closed", order_id=str(order.id), status=order.status, percent=percent)
        return changes
