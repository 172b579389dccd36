"""Pydantic API schemas for the Logistics domain.

These are the external API contracts — separate from domain commands.
The API layer translates between these schemas and the order service.
"""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class OrderItemRequest(BaseModel):
    product_id: str
    unit: str = ""
    product_name: str
    qty: float = Field(ge=0)
    unit_price: float = 0.0
    obs: str | None = None


class CreateOrderRequest(BaseModel):
    client_id: str
    client_name: str | None = None
    contract_id: str | None = None
    location_id: str | None = None
    date: str | None = None
    carrier: str | None = None
    notes: str | None = None
    items: list[OrderItemRequest]


class CreateBulkOrderRequest(BaseModel):
    sub_orders: list[CreateOrderRequest]


class UpdateOrderRequest(BaseModel):
    status: str | None = None
    carrier: str | None = None
    date: str | None = None
    notes: str | None = None
    route_id: str | None = None
    pickup_id: str | None = None
    expected_revision: int | None = None


class ItemDraftRequest(BaseModel):
    product_id: str
    unit: str = ""
    product_name: str
    prepared_qty: float | None = None
    obs: str | None = None


class WarehouseDraftRequest(BaseModel):
    items: list[ItemDraftRequest] = []
    expected_revision: int | None = None


class CloseWarehouseJobRequest(WarehouseDraftRequest):
    confirm_low_progress: bool = False


class RevisionRequest(BaseModel):
    expected_revision: int | None = None


class ReceivePurchaseRequest(BaseModel):
    product_id: str
    unit: str = ""
    product_name: str
    qty: float = Field(gt=0)


class DeliveryLineRequest(BaseModel):
    product_id: str
    unit: str = ""
    product_name: str
    delivered_qty: float
    returned_qty: float | None = None
    return_reason: str | None = None


class RecordDeliveryRequest(BaseModel):
    outcome: str
    lines: list[DeliveryLineRequest] | None = None
    notes: str | None = None
    expected_revision: int | None = None


class AddRectificationRequest(BaseModel):
    kind: str
    reference: str | None = None
    amount: float | None = None
    notes: str | None = None


class ForcePartialRequest(BaseModel):
    target_status: str
    notes: str | None = None
    expected_revision: int | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class OrderIdResponse(BaseModel):
    order_id: str


class BulkOrderResponse(BaseModel):
    batch_id: str
    sub_order_ids: list[str]


class StatusChangeResponse(BaseModel):
    order_id: str
    from_status: str
    to_status: str
    event_type: str
    meta: dict = {}


class ChangesResponse(BaseModel):
    changes: list[StatusChangeResponse]


class ItemResponse(BaseModel):
    product_id: str
    unit: str
    product_name: str
    qty: float
    prepared_qty: float
    purchased_qty: float
    obs: str


class OrderResponse(BaseModel):
    order_id: str
    kind: str
    status: str
    client_id: str
    client_name: str | None = None
    date: str | None = None
    carrier: str | None = None
    linked_to_bulk_batch_id: str | None = None
    bulk_sub_order_ids: list[str] = []
    bulk_batch_internal: bool = False
    revision: int
    items: list[ItemResponse]


class ProgressResponse(BaseModel):
    total_qty: float
    done_qty: float
    percent: int


class AllocationResponse(BaseModel):
    order_id: str
    qty: float


class PurchaseResponse(BaseModel):
    allocations: list[AllocationResponse]
    remaining: float
    changes: list[StatusChangeResponse]


class OrderEventResponse(BaseModel):
    order_id: str
    type: str
    actor_role: str | None = None
    actor_id: str | None = None
    actor_name: str | None = None
    at: str
    meta: dict = {}


class ShippingGuideResponse(BaseModel):
    guide_id: str
    order_id: str
    bulk_batch_id: str | None = None
    client_id: str | None = None
    status: str
    items: list[dict]
    created_at: str | None = None
