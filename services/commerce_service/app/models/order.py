from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.commerce_service.app.db.base import Base, BigIntPK, MinorUnits


class OrderStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    completed = "completed"
    refunded = "refunded"
    cancelled = "cancelled"


class PayMethod(str, Enum):
    wallet = "wallet"
    cash = "cash"
    online = "online"


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.paid, OrderStatus.cancelled}),
    OrderStatus.paid: frozenset({OrderStatus.completed, OrderStatus.refunded}),
    OrderStatus.completed: frozenset({OrderStatus.refunded}),
    OrderStatus.refunded: frozenset(),
    OrderStatus.cancelled: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    try:
        return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]
    except ValueError:
        return False


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("order_no", name="uq_orders_order_no"),
        UniqueConstraint("customer_id", "idempotency_key", name="uq_orders_customer_idem"),
        CheckConstraint("final_amount >= 0", name="ck_orders_final_non_negative"),
        Index("ix_orders_created", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_no: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=OrderStatus.pending.value)
    pay_method: Mapped[str] = mapped_column(String(16), nullable=False)
    total_amount: Mapped[int] = mapped_column(MinorUnits, nullable=False)
    discount_amount: Mapped[int] = mapped_column(MinorUnits, nullable=False, default=0)
    final_amount: Mapped[int] = mapped_column(MinorUnits, nullable=False)
    remark: Mapped[str] = mapped_column(Text, nullable=False, default="")
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    assigned_to: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    source_ref: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        order_by="OrderItem.id",
        lazy="raise",
    )


class OrderItem(Base):
    """Line of an order. The ``*_snapshot`` columns are written once, at placement."""

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), index=True, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_name_snapshot: Mapped[str] = mapped_column(String(128), nullable=False)
    unit_price_snapshot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration_min_snapshot: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    final_price: Mapped[int] = mapped_column(MinorUnits, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items", lazy="raise")
