"""Delivery — record the outcome at the customer and settle discrepancies."""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from logistics.domain import logistics
from logistics.order.order import DeliveryOutcome, Order, RectificationKind
from logistics.order.transitions import EventType, OrderStatus, StatusChange
from logistics.shared.actor import actor_from


def _parse_outcome(value) -> DeliveryOutcome:
    try:
        return DeliveryOutcome(value)
    except ValueError:
        raise ValidationError({"outcome": [f"Unknown delivery outcome {value!r}"]}) from None


@logistics.command(part_of="Order")
class RecordDelivery:
    """Record what was delivered, returned or refused."""

    order_id = Identifier(required=True)
    outcome = String(required=True, max_length=20)
    lines = Text()  # JSON list of {product_id, unit, product_name, delivered_qty, returned_qty, return_reason}
    notes = String(max_length=500)
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command(part_of="Order")
class AddRectification:
    """Attach a credit note or complementary invoice to a delivery."""

    order_id = Identifier(required=True)
    kind = String(required=True, max_length=30)
    reference = String(max_length=100)
    amount = Float()
    notes = String(max_length=500)
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class DeliveryHandler:
    @handle(RecordDelivery)
    def record_delivery(self, command):
        outcome = _parse_outcome(command.outcome)
        lines = json.loads(command.lines) if command.lines else None

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)

        order.record_delivery(outcome, lines, command.notes)
        target = OrderStatus.NAOENTREGUE if outcome == DeliveryOutcome.NAOENTREGUE else OrderStatus.ENTREGUE
        old = order.change_status(target)
        repo.add(order)
        return [
            StatusChange(
                order_id=str(order.id),
                from_status=old.value,
                to_status=target.value,
                event_type=EventType.DELIVERY_RECORDED.value,
                meta={
                    "outcome": outcome.value,
                    "has_delivery_issues": order.has_delivery_issues,
                    "discrepancy_status": order.discrepancy_status,
                },
            )
        ]

    @handle(AddRectification)
    def add_rectification(self, command):
        try:
            kind = RectificationKind(command.kind)
        except ValueError:
            raise ValidationError({"kind": [f"Unknown rectification kind {command.kind!r}"]}) from None

        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.add_rectification(
            kind,
            actor_from(command),
            reference=command.reference,
            amount=command.amount,
            notes=command.notes,
        )
        repo.add(order)
        return [
            StatusChange(
                order_id=str(order.id),
                from_status=order.status,
                to_status=order.status,
                event_type=EventType.RECTIFICATION_ADDED.value,
                meta={"kind": kind.value, "reference": command.reference, "amount": command.amount},
            )
        ]
