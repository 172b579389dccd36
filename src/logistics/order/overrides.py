"""Operator overrides — reactivation and forced partial closes."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from logistics.domain import logger, logistics
from logistics.guide import issuer
from logistics.order.bulk import cascade_to_sub_orders, reject_delegated
from logistics.order.order import Order
from logistics.order.transitions import EventType, OrderStatus, StatusChange
from logistics.order.update import parse_status
from logistics.shared.actor import actor_from


@logistics.command(part_of="Order")
class ReactivateOrder:
    """Put a cancelled or undelivered order back in the queue."""

    order_id = Identifier(required=True)
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command(part_of="Order")
class ForcePartial:
    """Close preparation short of items, on an operator's decision."""

    order_id = Identifier(required=True)
    target_status = String(required=True, max_length=20)
    notes = String(max_length=500)
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class OverridesHandler:
    @handle(ReactivateOrder)
    def reactivate_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)

        old = order.reactivate()
        changes = [
            StatusChange(
                order_id=str(order.id),
                from_status=old.value,
                to_status=OrderStatus.ESPERA.value,
                event_type=EventType.REACTIVATED.value,
                meta={},
            )
        ]
        if order.is_bulk_batch:
            changes.extend(cascade_to_sub_orders(order, OrderStatus.ESPERA))
        repo.add(order)
        return changes

    @handle(ForcePartial)
    def force_partial(self, command):
        target = parse_status(command.target_status)
        actor = actor_from(command)

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)

        reject_delegated(order)
        old = order.force_partial(target, command.notes, actor)
        guide = issuer.on_transition(order, old, target, actor)
        repo.add(order)
        logger.info("partial_close_forced", order_id=str(order.id), to_status=target.value)
        return [
            StatusChange(
                order_id=str(order.id),
                from_status=old.value,
                to_status=target.value,
                event_type=EventType.FORCED_PARTIAL.value,
                meta={"notes": command.notes, "guide_id": str(guide.id) if guide else None},
            )
        ]
