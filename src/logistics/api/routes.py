"""FastAPI routes for the Logistics domain.

Every route asks the authorization adapter before touching the order
service; the service itself trusts its callers.
"""

from fastapi import APIRouter, Depends, Header, HTTPException

from logistics.api.schemas import (
    AddRectificationRequest,
    BulkOrderResponse,
    ChangesResponse,
    CloseWarehouseJobRequest,
    CreateBulkOrderRequest,
    CreateOrderRequest,
    ForcePartialRequest,
    ItemResponse,
    OrderEventResponse,
    OrderIdResponse,
    OrderResponse,
    ProgressResponse,
    PurchaseResponse,
    ReceivePurchaseRequest,
    RecordDeliveryRequest,
    RevisionRequest,
    ShippingGuideResponse,
    StatusChangeResponse,
    UpdateOrderRequest,
    WarehouseDraftRequest,
)
from logistics.authorization import get_authorizer
from logistics.order.order import ProductKey
from logistics.order.service import OrderUpdateService
from logistics.shared.actor import SYSTEM_NAME, Actor, ActorRole
from logistics.utils.logging import bind_actor

service = OrderUpdateService()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def current_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    actor = Actor(
        role=x_actor_role or ActorRole.SISTEMA.value,
        user_id=x_actor_id,
        name=x_actor_name or SYSTEM_NAME,
    )
    bind_actor(actor)
    return actor


def require(permission_key: str):
    """Dependency that answers 403 unless the actor holds ``permission_key``."""

    def check(actor: Actor = Depends(current_actor)) -> Actor:
        if not get_authorizer().can(permission_key, actor):
            raise HTTPException(status_code=403, detail=f"Missing permission: {permission_key}")
        return actor

    return check


def _changes(changes) -> ChangesResponse:
    return ChangesResponse(
        changes=[
            StatusChangeResponse(
                order_id=c.order_id,
                from_status=c.from_status,
                to_status=c.to_status,
                event_type=c.event_type,
                meta=c.meta or {},
            )
            for c in changes
        ]
    )


def _order(order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        kind=order.kind,
        status=order.status,
        client_id=str(order.client_id),
        client_name=order.client_name,
        date=order.date,
        carrier=order.carrier,
        linked_to_bulk_batch_id=order.linked_to_bulk_batch_id,
        bulk_sub_order_ids=order.sub_order_ids,
        bulk_batch_internal=bool(order.bulk_batch_internal),
        revision=order.revision,
        items=[ItemResponse(**item.snapshot()) for item in (order.items or [])],
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def create_order(body: CreateOrderRequest, actor: Actor = Depends(require("orders.create"))) -> OrderIdResponse:
    """Register a customer order."""
    order_id = service.create_order(body.model_dump(), actor)
    return OrderIdResponse(order_id=order_id)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str, _: Actor = Depends(require("orders.view"))) -> OrderResponse:
    return _order(service.get_order(order_id))


@order_router.patch("/{order_id}", response_model=ChangesResponse)
async def update_order(
    order_id: str,
    body: UpdateOrderRequest,
    actor: Actor = Depends(require("orders.status")),
) -> ChangesResponse:
    """Patch status and logistics fields of an order."""
    patch = body.model_dump(exclude_unset=True, exclude={"expected_revision"})
    changes = service.update_order_status(order_id, patch, actor, expected_revision=body.expected_revision)
    return _changes(changes)


@order_router.put("/{order_id}/warehouse/start", response_model=ChangesResponse)
async def start_warehouse_job(
    order_id: str,
    body: RevisionRequest | None = None,
    actor: Actor = Depends(require("warehouse.prepare")),
) -> ChangesResponse:
    """Begin preparing an order."""
    expected = body.expected_revision if body else None
    return _changes(service.start_warehouse_job(order_id, actor, expected_revision=expected))


@order_router.put("/{order_id}/warehouse/progress", response_model=ProgressResponse)
async def save_warehouse_progress(
    order_id: str,
    body: WarehouseDraftRequest,
    actor: Actor = Depends(require("warehouse.prepare")),
) -> ProgressResponse:
    """Save prepared quantities without closing the job."""
    result = service.save_warehouse_progress(
        order_id,
        [item.model_dump(exclude_unset=True) for item in body.items],
        actor,
        expected_revision=body.expected_revision,
    )
    return ProgressResponse(**result._asdict())


@order_router.get("/{order_id}/warehouse/progress", response_model=ProgressResponse)
async def warehouse_progress(order_id: str, _: Actor = Depends(require("warehouse.view"))) -> ProgressResponse:
    return ProgressResponse(**service.warehouse_progress(order_id)._asdict())


@order_router.put("/{order_id}/warehouse/close", response_model=ChangesResponse)
async def close_warehouse_job(
    order_id: str,
    body: CloseWarehouseJobRequest,
    actor: Actor = Depends(require("warehouse.close")),
) -> ChangesResponse:
    """Close preparation; the order moves to FALTAS or A_FATURAR."""
    changes = service.close_warehouse_job(
        order_id,
        [item.model_dump(exclude_unset=True) for item in body.items],
        actor,
        confirm_low_progress=body.confirm_low_progress,
        expected_revision=body.expected_revision,
    )
    return _changes(changes)


@order_router.put("/{order_id}/invoice", response_model=ChangesResponse)
async def invoice_order(
    order_id: str,
    body: RevisionRequest | None = None,
    actor: Actor = Depends(require("invoicing.create")),
) -> ChangesResponse:
    expected = body.expected_revision if body else None
    return _changes(service.invoice_order(order_id, actor, expected_revision=expected))


@order_router.put("/{order_id}/delivery", response_model=ChangesResponse)
async def record_delivery(
    order_id: str,
    body: RecordDeliveryRequest,
    actor: Actor = Depends(require("deliveries.register")),
) -> ChangesResponse:
    """Record the delivery outcome reported by the driver."""
    changes = service.record_delivery(
        order_id,
        body.outcome,
        actor,
        lines=[line.model_dump(exclude_none=True) for line in body.lines] if body.lines else None,
        notes=body.notes,
        expected_revision=body.expected_revision,
    )
    return _changes(changes)


@order_router.post("/{order_id}/rectifications", status_code=201, response_model=ChangesResponse)
async def add_rectification(
    order_id: str,
    body: AddRectificationRequest,
    actor: Actor = Depends(require("invoicing.edit")),
) -> ChangesResponse:
    changes = service.add_rectification(
        order_id,
        body.kind,
        actor,
        reference=body.reference,
        amount=body.amount,
        notes=body.notes,
    )
    return _changes(changes)


@order_router.put("/{order_id}/reactivate", response_model=ChangesResponse)
async def reactivate_order(
    order_id: str,
    body: RevisionRequest | None = None,
    actor: Actor = Depends(require("orders.edit")),
) -> ChangesResponse:
    expected = body.expected_revision if body else None
    return _changes(service.reactivate_order(order_id, actor, expected_revision=expected))


@order_router.put("/{order_id}/force-partial", response_model=ChangesResponse)
async def force_partial(
    order_id: str,
    body: ForcePartialRequest,
    actor: Actor = Depends(require("warehouse.close")),
) -> ChangesResponse:
    changes = service.force_partial(
        order_id,
        body.target_status,
        notes=body.notes,
        actor=actor,
        expected_revision=body.expected_revision,
    )
    return _changes(changes)


@order_router.get("/{order_id}/events", response_model=list[OrderEventResponse])
async def order_timeline(order_id: str, _: Actor = Depends(require("orders.view"))) -> list[OrderEventResponse]:
    """Audit trail of an order, oldest first."""
    return [
        OrderEventResponse(
            order_id=str(event.order_id),
            type=event.type,
            actor_role=event.actor_role,
            actor_id=event.actor_id,
            actor_name=event.actor_name,
            at=event.at.isoformat(),
            meta=event.meta_data,
        )
        for event in service.timeline(order_id)
    ]


# ---------------------------------------------------------------------------
# Bulk Order Router
# ---------------------------------------------------------------------------
bulk_router = APIRouter(prefix="/bulk-orders", tags=["bulk-orders"])


@bulk_router.post("", status_code=201, response_model=BulkOrderResponse)
async def create_bulk_order(
    body: CreateBulkOrderRequest,
    actor: Actor = Depends(require("orders.create")),
) -> BulkOrderResponse:
    """Consolidate several customer orders into one warehouse job."""
    batch_id, sub_order_ids = service.create_bulk_order([sub.model_dump() for sub in body.sub_orders], actor)
    return BulkOrderResponse(batch_id=batch_id, sub_order_ids=sub_order_ids)


@bulk_router.put("/{batch_id}/close", response_model=ChangesResponse)
async def close_bulk_batch(
    batch_id: str,
    body: RevisionRequest | None = None,
    actor: Actor = Depends(require("warehouse.close")),
) -> ChangesResponse:
    """Distribute a prepared batch to its sub-orders and archive it."""
    expected = body.expected_revision if body else None
    return _changes(service.close_bulk_batch(batch_id, actor, expected_revision=expected))


# ---------------------------------------------------------------------------
# Purchase Router
# ---------------------------------------------------------------------------
purchase_router = APIRouter(prefix="/purchases", tags=["purchases"])


@purchase_router.post("", response_model=PurchaseResponse)
async def receive_purchase(
    body: ReceivePurchaseRequest,
    actor: Actor = Depends(require("purchases.restock")),
) -> PurchaseResponse:
    """Allocate restocked quantity to orders waiting in FALTAS."""
    key = ProductKey(body.product_id, body.unit, body.product_name)
    result = service.receive_purchase(key, body.qty, actor)
    return PurchaseResponse(
        allocations=result["allocations"],
        remaining=result["remaining"],
        changes=_changes(result["changes"]).changes,
    )


# ---------------------------------------------------------------------------
# Shipping Guide Router
# ---------------------------------------------------------------------------
guide_router = APIRouter(prefix="/shipping-guides", tags=["shipping-guides"])


@guide_router.get("", response_model=list[ShippingGuideResponse])
async def list_shipping_guides(
    order_id: str | None = None,
    status: str | None = None,
    _: Actor = Depends(require("invoicing.view")),
) -> list[ShippingGuideResponse]:
    return [
        ShippingGuideResponse(
            guide_id=str(guide.id),
            order_id=str(guide.order_id),
            bulk_batch_id=guide.bulk_batch_id,
            client_id=guide.client_id,
            status=guide.status,
            items=guide.item_list,
            created_at=guide.created_at.isoformat() if guide.created_at else None,
        )
        for guide in service.shipping_guides(order_id=order_id, status=status)
    ]


routers = [order_router, bulk_router, purchase_router, guide_router]
