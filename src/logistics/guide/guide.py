"""ShippingGuide aggregate — immutable invoicing hand-off for bulk sub-orders.

A guide snapshots the order's items at the moment it became ready to
invoice. It is written once and never mutated afterwards; billing works
from the snapshot, not from the live order.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, String, Text, ValueObject

from logistics.domain import logistics
from logistics.guide.events import ShippingGuideIssued
from logistics.shared.actor import Actor


class GuideStatus(Enum):
    PENDENTE = "PENDENTE"
    FATURADA = "FATURADA"
    CANCELADA = "CANCELADA"


@logistics.aggregate
class ShippingGuide:
    order_id = Identifier(required=True)
    bulk_batch_id = Identifier()
    client_id = Identifier()
    client_name = String(max_length=200)
    contract_id = Identifier()
    location_id = Identifier()
    items = Text(required=True)  # JSON snapshot of the order's items
    status = String(max_length=20, choices=GuideStatus, default=GuideStatus.PENDENTE.value)
    source_type = String(max_length=20, default="bulk")
    created_at = DateTime()
    created_by = ValueObject(Actor)

    @classmethod
    def issue(cls, order, actor: Actor | None = None):
        """Snapshot ``order`` into a new pending guide."""
        now = datetime.now(UTC)
        items = order.items_snapshot()
        guide = cls(
            order_id=str(order.id),
            bulk_batch_id=order.linked_to_bulk_batch_id,
            client_id=order.client_id,
            client_name=order.client_name,
            contract_id=order.contract_id,
            location_id=order.location_id,
            items=json.dumps(items),
            status=GuideStatus.PENDENTE.value,
            created_at=now,
            created_by=actor,
        )
        guide.raise_(
            ShippingGuideIssued(
                guide_id=str(guide.id),
                order_id=str(order.id),
                bulk_batch_id=order.linked_to_bulk_batch_id,
                item_count=len(items),
                issued_at=now,
            )
        )
        return guide

    @property
    def item_list(self) -> list[dict]:
        return json.loads(self.items) if self.items else []
