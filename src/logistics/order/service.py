"""OrderUpdateService — entry point for every order mutation.

Each operation builds a command and processes it synchronously; the command
handler does all store work inside one Unit of Work and returns the status
changes it committed. Only after that commit does the service append audit
records and notify subscribers, both best-effort: a failure there is logged
and never reaches the caller or unwinds the committed mutation.

Callers are expected to have checked permissions already. Every mutating
operation takes the acting ``Actor`` explicitly.
"""

import json
from typing import Callable

from protean.utils.globals import current_domain

from logistics.audit.log import AuditLog
from logistics.domain import logger
from logistics.guide.guide import ShippingGuide
from logistics.order.bulk import CloseBulkBatch, CreateBulkOrder
from logistics.order.creation import CreateOrder
from logistics.order.delivery import AddRectification, RecordDelivery
from logistics.order.invoicing import InvoiceOrder
from logistics.order.order import Order, ProductKey
from logistics.order.overrides import ForcePartial, ReactivateOrder
from logistics.order.preparation import Progress, progress
from logistics.order.purchasing import ReceivePurchase
from logistics.order.transitions import EventType, StatusChange
from logistics.order.update import UpdateOrder
from logistics.order.warehouse import CloseWarehouseJob, SaveWarehouseProgress, StartWarehouseJob
from logistics.shared.actor import Actor, actor_fields
from logistics.utils.db import fetch_all

Listener = Callable[[list[StatusChange]], None]


class OrderUpdateService:
    def __init__(self, audit_log: AuditLog | None = None):
        self.audit_log = audit_log or AuditLog()
        self._listeners: list[Listener] = []

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the committed changes of every operation.

        Returns a function that removes the subscription.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _after_commit(self, changes: list[StatusChange], actor: Actor | None) -> list[StatusChange]:
        for change in changes:
            meta = {"from_status": change.from_status, "to_status": change.to_status, **(change.meta or {})}
            self.audit_log.record(change.order_id, change.event_type, actor, meta)

        if changes:
            for listener in list(self._listeners):
                try:
                    listener(changes)
                except Exception as exc:
                    logger.warning("order_listener_failed", listener=repr(listener), error=str(exc))
        return changes

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------
    def create_order(self, spec: dict, actor: Actor | None = None) -> str:
        order_id = current_domain.process(
            CreateOrder(
                client_id=spec.get("client_id"),
                client_name=spec.get("client_name"),
                contract_id=spec.get("contract_id"),
                location_id=spec.get("location_id"),
                date=spec.get("date"),
                carrier=spec.get("carrier"),
                notes=spec.get("notes"),
                items=json.dumps(spec.get("items") or []),
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        self._after_commit(
            [StatusChange(order_id, "", "ESPERA", EventType.CREATED.value, {"kind": "NORMAL"})],
            actor,
        )
        return order_id

    def create_bulk_order(self, sub_order_specs: list[dict], actor: Actor | None = None) -> tuple[str, list[str]]:
        batch_id, sub_order_ids = current_domain.process(
            CreateBulkOrder(sub_orders=json.dumps(sub_order_specs), **actor_fields(actor)),
            asynchronous=False,
        )
        changes = [
            StatusChange(
                batch_id,
                "",
                "ESPERA",
                EventType.BULK_BATCH_CREATED.value,
                {"sub_order_ids": sub_order_ids},
            )
        ]
        changes.extend(
            StatusChange(sub_id, "", "ESPERA", EventType.CREATED.value, {"kind": "BULK_SUB", "bulk_batch_id": batch_id})
            for sub_id in sub_order_ids
        )
        self._after_commit(changes, actor)
        return batch_id, sub_order_ids

    # -------------------------------------------------------------------
    # Generic update
    # -------------------------------------------------------------------
    def update_order_status(
        self,
        order_id: str,
        patch: dict,
        actor: Actor | None = None,
        expected_revision: int | None = None,
    ) -> list[StatusChange]:
        changes = current_domain.process(
            UpdateOrder(
                order_id=order_id,
                patch=json.dumps(patch),
                expected_revision=expected_revision,
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    # -------------------------------------------------------------------
    # Warehouse
    # -------------------------------------------------------------------
    def start_warehouse_job(
        self, order_id: str, actor: Actor | None = None, expected_revision: int | None = None
    ) -> list[StatusChange]:
        changes = current_domain.process(
            StartWarehouseJob(order_id=order_id, expected_revision=expected_revision, **actor_fields(actor)),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    def save_warehouse_progress(
        self,
        order_id: str,
        items_draft: list[dict],
        actor: Actor | None = None,
        expected_revision: int | None = None,
    ) -> Progress:
        current_domain.process(
            SaveWarehouseProgress(
                order_id=order_id,
                items=json.dumps(items_draft),
                expected_revision=expected_revision,
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        return self.warehouse_progress(order_id)

    def close_warehouse_job(
        self,
        order_id: str,
        items_draft: list[dict] | None,
        actor: Actor | None = None,
        confirm_low_progress: bool = False,
        expected_revision: int | None = None,
    ) -> list[StatusChange]:
        changes = current_domain.process(
            CloseWarehouseJob(
                order_id=order_id,
                items=json.dumps(items_draft or []),
                confirm_low_progress=confirm_low_progress,
                expected_revision=expected_revision,
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    def close_bulk_batch(
        self, batch_id: str, actor: Actor | None = None, expected_revision: int | None = None
    ) -> list[StatusChange]:
        changes = current_domain.process(
            CloseBulkBatch(batch_id=batch_id, expected_revision=expected_revision, **actor_fields(actor)),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    # -------------------------------------------------------------------
    # Purchasing, invoicing, delivery
    # -------------------------------------------------------------------
    def receive_purchase(self, product_key: ProductKey, qty: float, actor: Actor | None = None) -> dict:
        result = current_domain.process(
            ReceivePurchase(
                product_id=product_key.product_id,
                unit=product_key.unit,
                product_name=product_key.product_name,
                qty=qty,
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        self._after_commit(result["changes"], actor)
        return result

    def invoice_order(
        self, order_id: str, actor: Actor | None = None, expected_revision: int | None = None
    ) -> list[StatusChange]:
        changes = current_domain.process(
            InvoiceOrder(order_id=order_id, expected_revision=expected_revision, **actor_fields(actor)),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    def record_delivery(
        self,
        order_id: str,
        outcome: str,
        actor: Actor | None = None,
        lines: list[dict] | None = None,
        notes: str | None = None,
        expected_revision: int | None = None,
    ) -> list[StatusChange]:
        changes = current_domain.process(
            RecordDelivery(
                order_id=order_id,
                outcome=outcome,
                lines=json.dumps(lines) if lines else None,
                notes=notes,
                expected_revision=expected_revision,
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    def add_rectification(
        self,
        order_id: str,
        kind: str,
        actor: Actor | None = None,
        reference: str | None = None,
        amount: float | None = None,
        notes: str | None = None,
    ) -> list[StatusChange]:
        changes = current_domain.process(
            AddRectification(
                order_id=order_id,
                kind=kind,
                reference=reference,
                amount=amount,
                notes=notes,
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    # -------------------------------------------------------------------
    # Overrides
    # -------------------------------------------------------------------
    def reactivate_order(
        self, order_id: str, actor: Actor | None = None, expected_revision: int | None = None
    ) -> list[StatusChange]:
        changes = current_domain.process(
            ReactivateOrder(order_id=order_id, expected_revision=expected_revision, **actor_fields(actor)),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    def force_partial(
        self,
        order_id: str,
        target_status: str,
        notes: str | None = None,
        actor: Actor | None = None,
        expected_revision: int | None = None,
    ) -> list[StatusChange]:
        changes = current_domain.process(
            ForcePartial(
                order_id=order_id,
                target_status=target_status,
                notes=notes,
                expected_revision=expected_revision,
                **actor_fields(actor),
            ),
            asynchronous=False,
        )
        return self._after_commit(changes, actor)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_order(self, order_id: str) -> Order:
        return current_domain.repository_for(Order).get(order_id)

    def warehouse_progress(self, order_id: str) -> Progress:
        return progress(self.get_order(order_id).items or [])

    def timeline(self, order_id: str):
        return self.audit_log.timeline(order_id)

    def shipping_guides(self, order_id: str | None = None, status: str | None = None) -> list[ShippingGuide]:
        query = current_domain.repository_for(ShippingGuide)._dao.query
        if order_id:
            query = query.filter(order_id=order_id)
        if status:
            query = query.filter(status=status)
        guides = fetch_all(query)
        return sorted(guides, key=lambda g: g.created_at)
