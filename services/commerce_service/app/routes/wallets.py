from __future__ import annotations

from fastapi import APIRouter, Query

from services.commerce_service.app.dependencies import OpContextDep, ServicesDep
from services.commerce_service.app.schemas import (
    AdjustRequest,
    BalanceResponse,
    CreditRequest,
    ReconcileResponse,
    WalletHistoryResponse,
    WalletOperationResult,
    WalletResponse,
    WalletStatusRequest,
)

router = APIRouter()


@router.post("/{customer_id}/credit", response_model=WalletOperationResult)
async def credit_wallet(
    customer_id: int, payload: CreditRequest, ctx: OpContextDep, services: ServicesDep
) -> WalletOperationResult:
    return await services.billing.credit(
        ctx,
        customer_id,
        payload.amount,
        payload.reason,
        payload.idempotency_key,
        bonus_amount=payload.bonus_amount,
    )


@router.post("/{customer_id}/adjust", response_model=WalletOperationResult)
async def adjust_wallet(
    customer_id: int, payload: AdjustRequest, ctx: OpContextDep, services: ServicesDep
) -> WalletOperationResult:
    return await services.billing.adjust(
        ctx,
        customer_id,
        payload.direction,
        payload.amount,
        payload.reason_code,
        payload.note,
        payload.idempotency_key,
    )


@router.put("/{customer_id}/status", response_model=WalletResponse)
async def set_wallet_status(
    customer_id: int, payload: WalletStatusRequest, ctx: OpContextDep, services: ServicesDep
) -> WalletResponse:
    return await services.billing.set_status(ctx, customer_id, payload.active)


@router.get("/{customer_id}", response_model=WalletResponse)
async def get_wallet(customer_id: int, ctx: OpContextDep, services: ServicesDep) -> WalletResponse:
    return await services.billing.get_wallet(ctx, customer_id)


@router.get("/{customer_id}/balance", response_model=BalanceResponse)
async def get_balance(customer_id: int, ctx: OpContextDep, services: ServicesDep) -> BalanceResponse:
    balance = await services.billing.get_balance(ctx, customer_id)
    return BalanceResponse(customer_id=customer_id, balance=balance)


@router.get("/{customer_id}/transactions", response_model=WalletHistoryResponse)
async def get_history(
    customer_id: int,
    ctx: OpContextDep,
    services: ServicesDep,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> WalletHistoryResponse:
    return await services.billing.get_history(ctx, customer_id, page=page, page_size=page_size)


@router.get("/{customer_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_wallet(customer_id: int, ctx: OpContextDep, services: ServicesDep) -> ReconcileResponse:
    return await services.billing.reconcile(ctx, customer_id)
