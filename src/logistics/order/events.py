"""Order domain events — immutable facts about order lifecycle changes.

All events are past tense, versioned, and carry enough data for read-only
consumers (notifications, dashboards) to stay in sync without re-reading
the order.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, Text

from logistics.domain import logistics


@logistics.event(part_of="Order")
class OrderCreated:
    """An order entered the system, waiting for preparation."""

    __version__ = 1

    order_id = Identifier(required=True)
    kind = String(required=True)
    client_id = Identifier(required=True)
    status = String(required=True)
    date = String()
    linked_to_bulk_batch_id = String()
    item_count = Integer(required=True)
    created_at = DateTime(required=True)


@logistics.event(part_of="Order")
class OrderStatusChanged:
    """An order moved from one status to another."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    changed_at = DateTime(required=True)


@logistics.event(part_of="Order")
class OrderDetailsChanged:
    """Non-status order fields (carrier, date, route, notes) were patched."""

    __version__ = 1

    order_id = Identifier(required=True)
    changes = Text(required=True)  # JSON dict of field -> new value
    changed_at = DateTime(required=True)


@logistics.event(part_of="Order")
class WarehouseJobStarted:
    """The warehouse began preparing an order."""

    __version__ = 1

    order_id = Identifier(required=True)
    started_by = String()
    started_at = DateTime(required=True)


@logistics.event(part_of="Order")
class WarehouseProgressSaved:
    """Prepared quantities were saved without closing the job."""

    __version__ = 1

    order_id = Identifier(required=True)
    percent = Integer(required=True)
    saved_at = DateTime(required=True)


@logistics.event(part_of="Order")
class WarehouseJobClosed:
    """The warehouse closed the preparation of an order."""

    __version__ = 1

    order_id = Identifier(required=True)
    status = String(required=True)
    percent = Integer(required=True)
    closed_by = String()
    closed_at = DateTime(required=True)


@logistics.event(part_of="Order")
class BulkBatchCreated:
    """Several orders were consolidated into one warehouse job."""

    __version__ = 1

    batch_id = Identifier(required=True)
    sub_order_ids = Text(required=True)  # JSON list of order IDs
    item_count = Integer(required=True)
    created_at = DateTime(required=True)


@logistics.event(part_of="Order")
class BulkBatchClosed:
    """A bulk batch was distributed to its sub-orders and archived."""

    __version__ = 1

    batch_id = Identifier(required=True)
    sub_order_ids = Text(required=True)  # JSON list of order IDs
    closed_at = DateTime(required=True)


@logistics.event(part_of="Order")
class PreparedQuantityDistributed:
    """A sub-order received its share of a bulk batch's prepared quantities."""

    __version__ = 1

    order_id = Identifier(required=True)
    batch_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of {product_id, unit, product_name, prepared_qty}
    distributed_at = DateTime(required=True)


@logistics.event(part_of="Order")
class PurchaseAllocated:
    """Restocked quantity was allocated to an order short of items."""

    __version__ = 1

    order_id = Identifier(required=True)
    product_id = String(required=True)
    unit = String()
    product_name = String()
    qty = Float(required=True)
    allocated_at = DateTime(required=True)


@logistics.event(part_of="Order")
class OrderInvoiced:
    """An invoice was issued for the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    invoice_number = String(required=True)
    total = Float(required=True)
    invoiced_at = DateTime(required=True)


@logistics.event(part_of="Order")
class DeliveryRecorded:
    """The driver recorded the delivery outcome."""

    __version__ = 1

    order_id = Identifier(required=True)
    outcome = String(required=True)
    has_discrepancy = Boolean(default=False)
    delivered_at = DateTime(required=True)


@logistics.event(part_of="Order")
class RectificationAdded:
    """A credit note or complementary invoice settled a delivery discrepancy."""

    __version__ = 1

    order_id = Identifier(required=True)
    kind = String(required=True)
    reference = String()
    amount = Float()
    added_at = DateTime(required=True)


@logistics.event(part_of="Order")
class OrderReactivated:
    """A cancelled or undelivered order was put back in the queue."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    reactivated_at = DateTime(required=True)


@logistics.event(part_of="Order")
class PartialCloseForced:
    """An order skipped the missing-items check on an operator's decision."""

    __version__ = 1

    order_id = Identifier(required=True)
    to_status = String(required=True)
    notes = String()
    forced_at = DateTime(required=True)
