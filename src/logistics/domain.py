"""Logistics bounded context — order lifecycle from intake to delivery.

Covers warehouse preparation, bulk consolidation of orders into a single
warehouse job, purchasing of missing stock, invoicing and delivery. Uses CQRS:
orders are mutated in place through commands, and every multi-order operation
is one command so that the Unit of Work commits it atomically.
"""

from protean.domain import Domain

from logistics.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

# Domain Composition Root
logistics = Domain(name="logistics")
