"""Shipping guide domain events."""

from protean.fields import DateTime, Identifier, Integer

from logistics.domain import logistics


@logistics.event(part_of="ShippingGuide")
class ShippingGuideIssued:
    """A bulk-linked order became ready to invoice and was handed to billing."""

    __version__ = 1

    guide_id = Identifier(required=True)
    order_id = Identifier(required=True)
    bulk_batch_id = Identifier()
    item_count = Integer(required=True)
    issued_at = DateTime(required=True)
