from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from services.commerce_service.app.models import OrderStatus, PayMethod
from services.commerce_service.app.schemas.wallet import IDEMPOTENCY_KEY_PATTERN


class OrderLineRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)


class PlaceOrderRequest(BaseModel):
    customer_id: int = Field(..., gt=0)
    pay_method: PayMethod
    items: list[OrderLineRequest] = Field(..., min_length=1)
    discount: int = Field(0, ge=0, description="Discount in minor units")
    idempotency_key: str = Field(..., pattern=IDEMPOTENCY_KEY_PATTERN)
    channel: str = Field("", max_length=32)
    remark: str = ""
    assigned_to: int = Field(0, ge=0)
    source_ref: str | None = Field(None, max_length=64)


class RefundOrderRequest(BaseModel):
    reason: str = Field("", max_length=255)
    # Supply to make a retried refund safe; without it every refund attempt is one-shot.
    idempotency_key: str | None = Field(None, pattern=IDEMPOTENCY_KEY_PATTERN)


class CancelOrderRequest(BaseModel):
    reason: str = Field("", max_length=255)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name_snapshot: str
    unit_price_snapshot: int
    duration_min_snapshot: int
    quantity: int
    final_price: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_no: str
    customer_id: int
    status: OrderStatus
    pay_method: PayMethod
    total_amount: int
    discount_amount: int
    final_amount: int
    remark: str
    channel: str
    assigned_to: int
    source_ref: str | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse] = Field(default_factory=list)
    replayed: bool = False


class OrderSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_no: str
    customer_id: int
    status: OrderStatus
    pay_method: PayMethod
    final_amount: int
    created_at: datetime


class OrderListResponse(BaseModel):
    items: list[OrderSummaryResponse]
    total: int
    page: int
    page_size: int
