"""Shipping guide issuer — fires once when a bulk-linked order is ready to bill."""

from protean.utils.globals import current_domain

from logistics.domain import logger
from logistics.guide.guide import ShippingGuide
from logistics.order.transitions import OrderStatus


def should_issue(order, old_status, new_status) -> bool:
    return (
        bool(order.linked_to_bulk_batch_id)
        and OrderStatus(old_status) == OrderStatus.PREP
        and OrderStatus(new_status) == OrderStatus.A_FATURAR
    )


def guide_for(order_id: str) -> ShippingGuide | None:
    repo = current_domain.repository_for(ShippingGuide)
    return repo._dao.query.filter(order_id=str(order_id)).all().first


def on_transition(order, old_status, new_status, actor=None) -> ShippingGuide | None:
    """Issue a guide for ``order`` if this transition calls for one.

    Must run inside the Unit of Work that persists the transition, so the
    guide and the status change commit together. Returns the new guide, or
    ``None`` when nothing was issued.
    """
    if not should_issue(order, old_status, new_status):
        return None

    if guide_for(order.id) is not None:
        logger.info("shipping_guide_exists", order_id=str(order.id))
        return None

    guide = ShippingGuide.issue(order, actor)
    current_domain.repository_for(ShippingGuide).add(guide)
    logger.info(
        "shipping_guide_issued",
        order_id=str(order.id),
        guide_id=str(guide.id),
        bulk_batch_id=str(order.linked_to_bulk_batch_id),
    )
    return guide
