"""Order aggregate (CQRS) — the core of the logistics domain.

An Order is one of three kinds:

- NORMAL: a customer order prepared on its own.
- BULK_BATCH: a synthetic order summing several customers' quantities into
  one warehouse job. It lists its sub-orders in ``bulk_sub_order_ids``.
- BULK_SUB: a customer order whose preparation is delegated to a batch. It
  points back through ``linked_to_bulk_batch_id``.

Legal status edges live in ``logistics.order.transitions``. Every mutation
bumps ``revision``, which callers can pass back as ``expected_revision`` to
detect concurrent writers.
"""

import json
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import NamedTuple
from uuid import uuid4

from protean.exceptions import ExpectedVersionError, ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from logistics.domain import logistics
from logistics.order.events import (
    BulkBatchClosed,
    BulkBatchCreated,
    DeliveryRecorded,
    OrderCreated,
    OrderDetailsChanged,
    OrderInvoiced,
    OrderReactivated,
    OrderStatusChanged,
    PartialCloseForced,
    PreparedQuantityDistributed,
    PurchaseAllocated,
    RectificationAdded,
    WarehouseJobClosed,
    WarehouseJobStarted,
    WarehouseProgressSaved,
)
from logistics.order.preparation import missing_qty, normalize_qty, progress, round_share, to_decimal
from logistics.order.transitions import (
    CARRIER_REQUIRED_STATUSES,
    OrderStatus,
    assert_transition,
)
from logistics.shared.actor import Actor


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderKind(Enum):
    NORMAL = "NORMAL"
    BULK_BATCH = "BULK_BATCH"
    BULK_SUB = "BULK_SUB"


class DeliveryOutcome(Enum):
    OK = "OK"
    NAOENTREGUE = "NAOENTREGUE"
    DEVOLVIDO = "DEVOLVIDO"
    DANIFICADO = "DANIFICADO"
    ERRO_FAT = "ERRO_FAT"


class DiscrepancyStatus(Enum):
    PENDENTE = "pendente"
    RESOLVIDA = "resolvida"


class RectificationKind(Enum):
    CREDIT_NOTE = "CREDIT_NOTE"
    COMPLEMENTARY_INVOICE = "COMPLEMENTARY_INVOICE"


# Patchable through the generic update path, besides ``status``
PATCHABLE_FIELDS = ("carrier", "date", "notes", "route_id", "pickup_id")

_REACTIVATABLE_STATUSES = {OrderStatus.CANCELADA, OrderStatus.NAOENTREGUE}
_DELIVERED_STATUSES = {OrderStatus.ENTREGUE, OrderStatus.NAOENTREGUE}
_FORCE_PARTIAL_SOURCES = {OrderStatus.PREP, OrderStatus.FALTAS}
_FORCE_PARTIAL_TARGETS = {OrderStatus.A_FATURAR, OrderStatus.A_EXPEDIR}


class ProductKey(NamedTuple):
    """Composite identity of an item line: product, unit and display name."""

    product_id: str
    unit: str
    product_name: str

    @classmethod
    def from_dict(cls, data: dict) -> "ProductKey":
        return cls(
            product_id=str(data.get("product_id") or ""),
            unit=str(data.get("unit") or ""),
            product_name=str(data.get("product_name") or ""),
        )

    def as_dict(self) -> dict:
        return self._asdict()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@logistics.entity(part_of="Order")
class OrderItem:
    """A requested product line and how much of it has been prepared."""

    product_id = String(required=True, max_length=100)
    unit = String(max_length=20, default="")
    product_name = String(required=True, max_length=200)
    qty = Float(required=True, min_value=0)
    prepared_qty = Float(default=0.0, min_value=0)
    purchased_qty = Float(default=0.0, min_value=0)
    unit_price = Float(default=0.0, min_value=0)
    obs = String(max_length=500)

    @property
    def product_key(self) -> ProductKey:
        return ProductKey(self.product_id, self.unit or "", self.product_name)

    def snapshot(self) -> dict:
        return {
            **self.product_key.as_dict(),
            "qty": self.qty,
            "prepared_qty": self.prepared_qty or 0.0,
            "purchased_qty": self.purchased_qty or 0.0,
            "obs": self.obs or "",
        }


@logistics.entity(part_of="Order")
class DeliveryLine:
    """Quantities invoiced, delivered and returned for one item at delivery."""

    product_id = String(required=True, max_length=100)
    unit = String(max_length=20, default="")
    product_name = String(required=True, max_length=200)
    invoiced_qty = Float(default=0.0, min_value=0)
    delivered_qty = Float(default=0.0, min_value=0)
    returned_qty = Float(default=0.0, min_value=0)
    return_reason = String(max_length=200)

    @property
    def has_discrepancy(self) -> bool:
        delivered = to_decimal(self.delivered_qty)
        return delivered != to_decimal(self.invoiced_qty) or to_decimal(self.returned_qty) > 0


@logistics.entity(part_of="Order")
class Rectification:
    """Credit note or complementary invoice settling a delivery discrepancy."""

    kind = String(required=True, max_length=30, choices=RectificationKind)
    reference = String(max_length=100)
    amount = Float(default=0.0)
    notes = String(max_length=500)
    added_at = DateTime()
    added_by = String(max_length=200)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@logistics.aggregate
class Order:
    kind = String(max_length=20, choices=OrderKind, default=OrderKind.NORMAL.value)
    status = String(max_length=20, choices=OrderStatus, default=OrderStatus.ESPERA.value)
    client_id = Identifier(required=True)
    client_name = String(max_length=200)
    contract_id = Identifier()
    location_id = Identifier()
    date = String(max_length=10)  # requested delivery date, ISO format
    items = HasMany(OrderItem)
    carrier = String(max_length=50)
    route_id = Identifier()
    pickup_id = Identifier()
    notes = Text()

    # Bulk linkage
    linked_to_bulk_batch_id = Identifier()
    bulk_sub_order_ids = Text()  # JSON list of BULK_SUB order IDs
    bulk_batch_internal = Boolean(default=False)
    bulk_batch_closed_at = DateTime()

    # Warehouse audit
    warehouse_started_at = DateTime()
    warehouse_started_by = ValueObject(Actor)
    warehouse_closed_at = DateTime()
    warehouse_closed_by = ValueObject(Actor)
    warehouse_last_update_at = DateTime()
    needs_warehouse_completion = Boolean(default=False)

    # Forced partial close
    forced_partial = Boolean(default=False)
    forced_partial_notes = String(max_length=500)
    forced_partial_at = DateTime()
    forced_partial_by = ValueObject(Actor)

    # Invoicing
    invoice_number = String(max_length=30)
    invoice_date = String(max_length=10)
    invoice_total = Float()

    # Delivery
    delivery_outcome = String(max_length=20, choices=DeliveryOutcome)
    delivery_notes = String(max_length=500)
    delivered_at = DateTime()
    delivery_lines = HasMany(DeliveryLine)
    has_delivery_issues = Boolean(default=False)
    discrepancy_status = String(max_length=20, choices=DiscrepancyStatus)
    rectifications = HasMany(Rectification)

    revision = Integer(default=0)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        client_id: str,
        items_data: list[dict],
        kind: OrderKind = OrderKind.NORMAL,
        client_name: str | None = None,
        contract_id: str | None = None,
        location_id: str | None = None,
        date: str | None = None,
        carrier: str | None = None,
        notes: str | None = None,
        linked_to_bulk_batch_id: str | None = None,
    ):
        """Create a new order waiting for preparation."""
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})
        if kind == OrderKind.BULK_SUB and not linked_to_bulk_batch_id:
            raise ValidationError({"linked_to_bulk_batch_id": ["A bulk sub-order must reference its batch"]})

        keys = [ProductKey.from_dict(data) for data in items_data]
        if len(set(keys)) != len(keys):
            raise ValidationError({"items": ["Each product/unit/name combination may appear only once"]})

        now = datetime.now(UTC)
        order = cls(
            kind=kind.value,
            status=OrderStatus.ESPERA.value,
            client_id=client_id,
            client_name=client_name,
            contract_id=contract_id,
            location_id=location_id,
            date=date,
            carrier=carrier,
            notes=notes,
            linked_to_bulk_batch_id=linked_to_bulk_batch_id,
            bulk_sub_order_ids=json.dumps([]),
            revision=1,
            created_at=now,
            updated_at=now,
        )
        for data in items_data:
            order.add_items(
                OrderItem(
                    product_id=data["product_id"],
                    unit=data.get("unit") or "",
                    product_name=data["product_name"],
                    qty=float(normalize_qty(data.get("qty"))),
                    prepared_qty=float(normalize_qty(data.get("prepared_qty"))),
                    purchased_qty=float(normalize_qty(data.get("purchased_qty"))),
                    unit_price=float(to_decimal(data.get("unit_price"))),
                    obs=data.get("obs"),
                )
            )
        order.raise_(
            OrderCreated(
                order_id=str(order.id),
                kind=kind.value,
                client_id=client_id,
                status=OrderStatus.ESPERA.value,
                date=date or "",
                linked_to_bulk_batch_id=linked_to_bulk_batch_id or "",
                item_count=len(items_data),
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_bulk_batch(self) -> bool:
        return self.kind == OrderKind.BULK_BATCH.value

    @property
    def is_bulk_sub(self) -> bool:
        return self.kind == OrderKind.BULK_SUB.value

    @property
    def is_archived_batch(self) -> bool:
        return self.is_bulk_batch and bool(self.bulk_batch_internal)

    @property
    def sub_order_ids(self) -> list[str]:
        return json.loads(self.bulk_sub_order_ids) if self.bulk_sub_order_ids else []

    def item_for(self, key: ProductKey):
        return next((i for i in (self.items or []) if i.product_key == key), None)

    def items_snapshot(self) -> list[dict]:
        return [item.snapshot() for item in (self.items or [])]

    # -------------------------------------------------------------------
    # Concurrency
    # -------------------------------------------------------------------
    def check_revision(self, expected_revision: int | None) -> None:
        """Reject the operation when the caller read a stale revision."""
        if expected_revision is not None and expected_revision != self.revision:
            raise ExpectedVersionError(
                f"Order {self.id} is at revision {self.revision}, expected {expected_revision}"
            )

    def _touch(self, now: datetime) -> None:
        self.updated_at = now
        self.revision = (self.revision or 0) + 1

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------
    def change_status(self, target: OrderStatus, forced: bool = False) -> OrderStatus | None:
        """Move to ``target`` if the edge is legal.

        Returns the previous status, or ``None`` when the order is already
        in ``target`` (nothing to record).
        """
        current = OrderStatus(self.status)
        if current == target:
            return None

        assert_transition(current, target, forced=forced)
        if target in CARRIER_REQUIRED_STATUSES and not self.carrier:
            raise ValidationError({"carrier": [f"A carrier is required before {target.value}"]})

        self._set_status(current, target)
        return current

    def _set_status(self, current: OrderStatus, target: OrderStatus) -> None:
        now = datetime.now(UTC)
        self.status = target.value
        self._touch(now)
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                from_status=current.value,
                to_status=target.value,
                changed_at=now,
            )
        )

    def apply_details(self, patch: dict) -> dict:
        """Apply non-status fields of a patch; returns the fields that changed."""
        changed = {}
        for field_name in PATCHABLE_FIELDS:
            if field_name in patch and patch[field_name] != getattr(self, field_name):
                setattr(self, field_name, patch[field_name])
                changed[field_name] = patch[field_name]

        if changed:
            now = datetime.now(UTC)
            self._touch(now)
            self.raise_(
                OrderDetailsChanged(
                    order_id=str(self.id),
                    changes=json.dumps(changed),
                    changed_at=now,
                )
            )
        return changed

    # -------------------------------------------------------------------
    # Bulk linkage
    # -------------------------------------------------------------------
    def attach_sub_orders(self, sub_order_ids: list[str]) -> None:
        """Record the sub-orders consolidated into this batch."""
        if not self.is_bulk_batch:
            raise ValidationError({"kind": ["Only a bulk batch can hold sub-orders"]})
        if not sub_order_ids:
            raise ValidationError({"bulk_sub_order_ids": ["A bulk batch needs at least one sub-order"]})

        now = datetime.now(UTC)
        self.bulk_sub_order_ids = json.dumps([str(sid) for sid in sub_order_ids])
        self._touch(now)
        self.raise_(
            BulkBatchCreated(
                batch_id=str(self.id),
                sub_order_ids=self.bulk_sub_order_ids,
                item_count=len(self.items or []),
                created_at=now,
            )
        )

    def assign_prepared_shares(self, batch_id: str, shares: dict[ProductKey, Decimal]) -> None:
        """Set each item's prepared quantity to its distributed share.

        Assignment, not increment: applying the same shares twice leaves the
        order unchanged.
        """
        now = datetime.now(UTC)
        for item in self.items or []:
            if item.product_key in shares:
                item.prepared_qty = float(shares[item.product_key])
        self._touch(now)
        self.raise_(
            PreparedQuantityDistributed(
                order_id=str(self.id),
                batch_id=batch_id,
                items=json.dumps(
                    [{**item.product_key.as_dict(), "prepared_qty": item.prepared_qty} for item in (self.items or [])]
                ),
                distributed_at=now,
            )
        )

    def archive_batch(self) -> OrderStatus:
        """Retire a fully distributed batch from the active warehouse views."""
        current = OrderStatus(self.status)
        if not self.is_bulk_batch or current != OrderStatus.PREP:
            raise ValidationError({"status": [f"Cannot archive a {self.kind} order in {current.value}"]})

        now = datetime.now(UTC)
        self.bulk_batch_internal = True
        self.bulk_batch_closed_at = now
        self._set_status(current, OrderStatus.ENTREGUE)
        self.raise_(
            BulkBatchClosed(
                batch_id=str(self.id),
                sub_order_ids=self.bulk_sub_order_ids,
                closed_at=now,
            )
        )
        return current

    # -------------------------------------------------------------------
    # Warehouse
    # -------------------------------------------------------------------
    def stamp_warehouse_start(self, actor: Actor) -> None:
        if self.warehouse_started_at:
            return
        now = datetime.now(UTC)
        self.warehouse_started_at = now
        self.warehouse_started_by = actor
        self._touch(now)
        self.raise_(
            WarehouseJobStarted(
                order_id=str(self.id),
                started_by=actor.name if actor else "",
                started_at=now,
            )
        )

    def apply_preparation_draft(self, draft: list[dict]) -> None:
        """Overwrite prepared quantities (and notes) from a warehouse draft."""
        if OrderStatus(self.status) != OrderStatus.PREP:
            raise ValidationError({"status": ["Preparation can only be recorded during PREP"]})

        updates = []
        for entry in draft or []:
            key = ProductKey.from_dict(entry)
            item = self.item_for(key)
            if item is None:
                raise ValidationError({"items": [f"Unknown item {key.product_name} ({key.unit})"]})
            updates.append((item, entry))

        for item, entry in updates:
            if "prepared_qty" in entry:
                item.prepared_qty = float(normalize_qty(entry["prepared_qty"]))
            if "obs" in entry:
                item.obs = entry["obs"]

        now = datetime.now(UTC)
        self.warehouse_last_update_at = now
        self._touch(now)

    def record_progress_saved(self) -> None:
        self.raise_(
            WarehouseProgressSaved(
                order_id=str(self.id),
                percent=progress(self.items or []).percent,
                saved_at=self.updated_at,
            )
        )

    def stamp_warehouse_close(self, actor: Actor) -> None:
        now = datetime.now(UTC)
        self.warehouse_closed_at = now
        self.warehouse_closed_by = actor
        self.warehouse_last_update_at = now
        self.needs_warehouse_completion = False
        self._touch(now)
        self.raise_(
            WarehouseJobClosed(
                order_id=str(self.id),
                status=self.status,
                percent=progress(self.items or []).percent,
                closed_by=actor.name if actor else "",
                closed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Purchasing
    # -------------------------------------------------------------------
    def allocate_purchase(self, key: ProductKey, available: Decimal) -> Decimal:
        """Cover this order's shortfall of ``key`` from restocked quantity.

        Returns the quantity taken, at most ``available``.
        """
        item = self.item_for(key)
        if item is None or available <= 0:
            return Decimal(0)

        taken = min(missing_qty(item), available)
        if taken <= 0:
            return Decimal(0)

        now = datetime.now(UTC)
        item.purchased_qty = float(to_decimal(item.purchased_qty) + taken)
        self._touch(now)
        self.raise_(
            PurchaseAllocated(
                order_id=str(self.id),
                product_id=key.product_id,
                unit=key.unit,
                product_name=key.product_name,
                qty=float(taken),
                allocated_at=now,
            )
        )
        return taken

    def flag_for_completion(self) -> None:
        self.needs_warehouse_completion = True

    # -------------------------------------------------------------------
    # Invoicing
    # -------------------------------------------------------------------
    def invoice(self) -> None:
        """Issue the invoice number and total for an order ready to bill."""
        if OrderStatus(self.status) != OrderStatus.A_FATURAR:
            raise ValidationError({"status": ["Only orders in A_FATURAR can be invoiced"]})

        now = datetime.now(UTC)
        total = sum(
            (to_decimal(i.prepared_qty or i.qty) * to_decimal(i.unit_price) for i in (self.items or [])),
            Decimal(0),
        )
        self.invoice_number = f"FAT-{now.year}-{uuid4().hex[:9].upper()}"
        self.invoice_date = now.date().isoformat()
        self.invoice_total = float(round_share(total))
        self._touch(now)
        self.raise_(
            OrderInvoiced(
                order_id=str(self.id),
                invoice_number=self.invoice_number,
                total=self.invoice_total,
                invoiced_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------
    def record_delivery(self, outcome: DeliveryOutcome, lines_data: list[dict] | None, notes: str | None) -> None:
        """Record what the driver delivered. Status is set by the caller."""
        if OrderStatus(self.status) != OrderStatus.EXPEDIDA:
            raise ValidationError({"status": ["Deliveries can only be recorded for EXPEDIDA orders"]})

        lines = self._delivery_lines(lines_data)
        has_discrepancy = any(line.has_discrepancy for line in lines)

        now = datetime.now(UTC)
        for line in lines:
            self.add_delivery_lines(line)
        self.delivery_outcome = outcome.value
        self.delivery_notes = notes or ""
        self.delivered_at = now
        self.has_delivery_issues = has_discrepancy or outcome != DeliveryOutcome.OK
        self.discrepancy_status = DiscrepancyStatus.PENDENTE.value if has_discrepancy else None
        self._touch(now)
        self.raise_(
            DeliveryRecorded(
                order_id=str(self.id),
                outcome=outcome.value,
                has_discrepancy=has_discrepancy,
                delivered_at=now,
            )
        )

    def _delivery_lines(self, lines_data: list[dict] | None) -> list[DeliveryLine]:
        if not lines_data:
            lines_data = [item.product_key.as_dict() for item in (self.items or [])]

        lines = []
        for data in lines_data:
            key = ProductKey.from_dict(data)
            item = self.item_for(key)
            if item is None:
                raise ValidationError({"lines": [f"Unknown item {key.product_name} ({key.unit})"]})

            invoiced = to_decimal(data.get("invoiced_qty", item.prepared_qty or item.qty))
            delivered = to_decimal(data.get("delivered_qty", invoiced))
            returned = to_decimal(data.get("returned_qty", max(Decimal(0), invoiced - delivered)))
            lines.append(
                DeliveryLine(
                    product_id=key.product_id,
                    unit=key.unit,
                    product_name=key.product_name,
                    invoiced_qty=float(invoiced),
                    delivered_qty=float(delivered),
                    returned_qty=float(returned),
                    return_reason=data.get("return_reason"),
                )
            )
        return lines

    def add_rectification(
        self,
        kind: RectificationKind,
        actor: Actor,
        reference: str | None = None,
        amount: float | None = None,
        notes: str | None = None,
    ) -> None:
        """Settle a pending delivery discrepancy."""
        if OrderStatus(self.status) not in _DELIVERED_STATUSES:
            raise ValidationError({"status": ["Rectifications apply to delivered orders only"]})
        if not self.discrepancy_status:
            raise ValidationError({"discrepancy_status": ["This delivery has no discrepancy to rectify"]})

        now = datetime.now(UTC)
        self.add_rectifications(
            Rectification(
                kind=kind.value,
                reference=reference,
                amount=amount or 0.0,
                notes=notes,
                added_at=now,
                added_by=actor.name if actor else None,
            )
        )
        self.discrepancy_status = DiscrepancyStatus.RESOLVIDA.value
        self.has_delivery_issues = False
        self._touch(now)
        self.raise_(
            RectificationAdded(
                order_id=str(self.id),
                kind=kind.value,
                reference=reference or "",
                amount=amount or 0.0,
                added_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Operator overrides
    # -------------------------------------------------------------------
    def reactivate(self) -> OrderStatus:
        """Put a cancelled or undelivered order back in the queue."""
        current = OrderStatus(self.status)
        if current not in _REACTIVATABLE_STATUSES:
            raise ValidationError({"status": [f"Cannot reactivate an order in {current.value}"]})

        self.change_status(OrderStatus.ESPERA)
        self.route_id = None
        self.pickup_id = None
        self.raise_(
            OrderReactivated(
                order_id=str(self.id),
                from_status=current.value,
                reactivated_at=self.updated_at,
            )
        )
        return current

    def force_partial(self, target: OrderStatus, notes: str | None, actor: Actor) -> OrderStatus:
        """Close preparation short of items on an operator's decision."""
        if self.is_bulk_batch:
            raise ValidationError({"kind": ["A bulk batch cannot be force-closed"]})

        if OrderStatus(self.status) not in _FORCE_PARTIAL_SOURCES:
            raise ValidationError({"status": [f"Cannot force a partial close of an order in {self.status}"]})
        if target not in _FORCE_PARTIAL_TARGETS:
            raise ValidationError({"target_status": [f"A partial close cannot move an order to {target.value}"]})

        current = self.change_status(target, forced=True)
        if current is None:
            raise ValidationError({"status": [f"Order is already in {target.value}"]})

        now = datetime.now(UTC)
        self.forced_partial = True
        self.forced_partial_notes = notes
        self.forced_partial_at = now
        self.forced_partial_by = actor
        self.stamp_warehouse_close(actor)
        self.raise_(
            PartialCloseForced(
                order_id=str(self.id),
                to_status=target.value,
                notes=notes or "",
                forced_at=now,
            )
        )
        return current
