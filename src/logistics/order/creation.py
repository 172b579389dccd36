"""Order creation — command and handler."""

import json

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from logistics.domain import logistics
from logistics.order.order import Order


@logistics.command(part_of="Order")
class CreateOrder:
    """Register a customer order, waiting for preparation."""

    client_id = Identifier(required=True)
    client_name = String(max_length=200)
    contract_id = Identifier()
    location_id = Identifier()
    date = String(max_length=10)
    carrier = String(max_length=50)
    notes = Text()
    items = Text(required=True)  # JSON list of item dicts
    actor_id = String(max_length=100)
    actor_name = String(max_length=200)
    actor_role = String(max_length=20)


@logistics.command_handler(part_of=Order)
class CreateOrderHandler:
    @handle(CreateOrder)
    def create_order(self, command):
        items_data = json.loads(command.items) if isinstance(command.items, str) else command.items
        order = Order.create(
            client_id=command.client_id,
            items_data=items_data,
            client_name=command.client_name,
            contract_id=command.contract_id,
            location_id=command.location_id,
            date=command.date,
            carrier=command.carrier,
            notes=command.notes,
        )
        current_domain.repository_for(Order).add(order)
        return str(order.id)
