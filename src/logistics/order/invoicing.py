"""Invoicing — command and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from logistics.domain import logistics
from logistics.order.order import Order
from logistics.order.transitions import OrderStatus
from logistics.order.update import apply_status
from logistics.shared.actor import actor_from


@logistics.command(part_of="Order")
class InvoiceOrder:
    """Invoice an order ready to bill; it then waits for dispatch."""

    order_id = Identifier(required=True)
    expected_revision = Integer()
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class InvoicingHandler:
    @handle(InvoiceOrder)
    def invoice_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.check_revision(command.expected_revision)

        order.invoice()
        changes = apply_status(order, OrderStatus.A_EXPEDIR, actor_from(command))
        changes[0].meta["invoice_number"] = order.invoice_number
        repo.add(order)
        return changes
