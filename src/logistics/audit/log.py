"""Audit log — best-effort recording and client-side ordered reads.

Recording happens after the order mutation has committed. A failure here is
logged and swallowed: it never unwinds or blocks the mutation it describes.
"""

from protean.utils.globals import current_domain

from logistics.audit.order_event import OrderEvent
from logistics.domain import logger
from logistics.shared.actor import Actor
from logistics.utils.db import fetch_all


class AuditLog:
    def record(
        self,
        order_id: str,
        event_type: str,
        actor: Actor | None,
        meta: dict | None = None,
    ) -> OrderEvent | None:
        """Append one event. Returns ``None`` if it could not be stored."""
        if not order_id or not event_type:
            logger.warning("audit_record_skipped", order_id=order_id, type=event_type)
            return None

        try:
            event = OrderEvent.record(order_id, event_type, actor, meta)
            current_domain.repository_for(OrderEvent).add(event)
            return event
        except Exception as exc:
            logger.warning(
                "audit_record_failed",
                order_id=str(order_id),
                type=event_type,
                error=str(exc),
            )
            return None

    def timeline(self, order_id: str) -> list[OrderEvent]:
        """All events of an order, oldest first.

        Sorted here rather than by the store so no secondary index is needed.
        """
        repo = current_domain.repository_for(OrderEvent)
        events = fetch_all(repo._dao.query.filter(order_id=str(order_id)))
        return sorted(events, key=lambda e: e.at)
