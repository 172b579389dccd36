"""OrderEvent aggregate — append-only audit record of an order's lifecycle."""

import json
from datetime import UTC, datetime

from protean.fields import DateTime, Identifier, String, Text

from logistics.domain import logistics
from logistics.shared.actor import SYSTEM_NAME, Actor


@logistics.aggregate
class OrderEvent:
    order_id = Identifier(required=True)
    type = String(required=True, max_length=50)
    actor_role = String(max_length=20)
    actor_id = String(max_length=100)
    actor_name = String(max_length=200, default=SYSTEM_NAME)
    at = DateTime(required=True)
    meta = Text()  # JSON dict

    @classmethod
    def record(cls, order_id: str, event_type: str, actor: Actor | None, meta: dict | None = None):
        return cls(
            order_id=str(order_id),
            type=event_type,
            actor_role=actor.role if actor else None,
            actor_id=actor.user_id if actor else None,
            actor_name=(actor.name if actor else None) or SYSTEM_NAME,
            at=datetime.now(UTC),
            meta=json.dumps(meta or {}, default=str),
        )

    @property
    def meta_data(self) -> dict:
        return json.loads(self.meta) if self.meta else {}
