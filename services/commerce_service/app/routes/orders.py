from __future__ import annotations

from fastapi import APIRouter, Query, Response, status

from services.commerce_service.app.dependencies import OpContextDep, ServicesDep
from services.commerce_service.app.models import OrderStatus
from services.commerce_service.app.schemas import (
    CancelOrderRequest,
    OrderListResponse,
    OrderResponse,
    PlaceOrderRequest,
    RefundOrderRequest,
)
from services.commerce_service.app.services.sales import OrderLine, PlaceOrderCommand

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: PlaceOrderRequest, response: Response, ctx: OpContextDep, services: ServicesDep
) -> OrderResponse:
    command = PlaceOrderCommand(
        customer_id=payload.customer_id,
        pay_method=payload.pay_method,
        items=[OrderLine(product_id=item.product_id, quantity=item.quantity) for item in payload.items],
        idempotency_key=payload.idempotency_key,
        discount=payload.discount,
        channel=payload.channel,
        remark=payload.remark,
        assigned_to=payload.assigned_to,
        source_ref=payload.source_ref,
    )
    # A concurrent call with the same key may still be in flight; retry the whole placement.
    order = await services.tx.run_with_retry(ctx, services.sales.place_order, command)
    if order.replayed:
        # Existing order returned for a repeated idempotency key
        response.status_code = status.HTTP_200_OK
    return order


@router.get("", response_model=OrderListResponse)
async def list_orders(
    ctx: OpContextDep,
    services: ServicesDep,
    customer_id: int | None = Query(None, gt=0),
    order_status: OrderStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    return await services.sales.list_orders(
        ctx, customer_id=customer_id, status=order_status, page=page, page_size=page_size
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, ctx: OpContextDep, services: ServicesDep) -> OrderResponse:
    return await services.sales.get_order(ctx, order_id)


@router.post("/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: int, payload: RefundOrderRequest, ctx: OpContextDep, services: ServicesDep
) -> OrderResponse:
    return await services.sales.refund_order(ctx, order_id, payload.reason, idem=payload.idempotency_key)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int, payload: CancelOrderRequest, ctx: OpContextDep, services: ServicesDep
) -> OrderResponse:
    return await services.sales.cancel_order(ctx, order_id, payload.reason)


@router.post("/{order_id}/confirm-payment", response_model=OrderResponse)
async def confirm_payment(order_id: int, ctx: OpContextDep, services: ServicesDep) -> OrderResponse:
    return await services.sales.confirm_payment(ctx, order_id)


@router.post("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(order_id: int, ctx: OpContextDep, services: ServicesDep) -> OrderResponse:
    return await services.sales.complete_order(ctx, order_id)
