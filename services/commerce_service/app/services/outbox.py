from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping

from services.commerce_service.app.errors import InternalError
from services.commerce_service.app.models import Order, OutboxEvent, WalletTransaction
from services.commerce_service.app.services.idgen import Clock
from services.commerce_service.app.services.tx import OpContext

ORDER_PLACED = "order.placed"
ORDER_PAID = "order.paid"
ORDER_REFUNDED = "order.refunded"
ORDER_CANCELLED = "order.cancelled"
WALLET_CREDITED = "wallet.credited"
WALLET_DEBITED = "wallet.debited"
CUSTOMER_CREATED = "customer.created"
CUSTOMER_UPDATED = "customer.updated"

EVENT_TYPES = frozenset(
    {
        ORDER_PLACED,
        ORDER_PAID,
        ORDER_REFUNDED,
        ORDER_CANCELLED,
        WALLET_CREDITED,
        WALLET_DEBITED,
        CUSTOMER_CREATED,
        CUSTOMER_UPDATED,
    }
)


def _epoch(value: datetime | int) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def encode_payload(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_payload(raw: bytes) -> dict[str, Any]:
    return json.loads(raw.decode("utf-8"))


class OutboxWriter:
    """Appends event rows to the transaction bound to the context."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock

    async def append(
        self,
        ctx: OpContext,
        event_type: str,
        payload: Mapping[str, Any],
        *,
        created_at: int | None = None,
    ) -> OutboxEvent:
        if event_type not in EVENT_TYPES:
            raise InternalError(f"unknown outbox event type: {event_type}")
        session = ctx.session
        event = OutboxEvent(
            event_type=event_type,
            payload=encode_payload(payload),
            created_at=self._clock.now() if created_at is None else created_at,
        )
        session.add(event)
        await session.flush()
        return event


def order_placed_payload(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_no": order.order_no,
        "customer_id": order.customer_id,
        "total_amount": order.total_amount,
        "discount_amount": order.discount_amount,
        "final_amount": order.final_amount,
        "pay_method": order.pay_method,
        "created_at": _epoch(order.created_at),
    }


def order_paid_payload(order: Order, paid_at: int) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_no": order.order_no,
        "customer_id": order.customer_id,
        "paid_amount": order.final_amount,
        "pay_method": order.pay_method,
        "paid_at": paid_at,
    }


def order_refunded_payload(order: Order, reason: str, refunded_at: int) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_no": order.order_no,
        "customer_id": order.customer_id,
        "refund_amount": order.final_amount,
        "reason": reason,
        "refunded_at": refunded_at,
    }


def order_cancelled_payload(order: Order, reason: str, cancelled_at: int) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_no": order.order_no,
        "customer_id": order.customer_id,
        "reason": reason,
        "cancelled_at": cancelled_at,
    }


def wallet_movement_payload(customer_id: int, row: WalletTransaction) -> dict[str, Any]:
    """Payload for ``wallet.credited`` / ``wallet.debited``."""
    at_key = "credited_at" if row.direction.value == "credit" else "debited_at"
    return {
        "customer_id": customer_id,
        "wallet_id": row.wallet_id,
        "transaction_id": row.id,
        "amount": row.amount,
        "transaction_type": row.type.value,
        "biz_ref_type": row.biz_ref_type,
        "biz_ref_id": row.biz_ref_id,
        at_key: row.created_at,
    }
