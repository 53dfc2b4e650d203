from __future__ import annotations

from enum import Enum

from sqlalchemy import BigInteger, CheckConstraint, Enum as SAEnum, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from services.commerce_service.app.db.base import Base, BigIntPK


class Direction(str, Enum):
    credit = "credit"
    debit = "debit"


class TransactionType(str, Enum):
    recharge = "recharge"
    order_pay = "order_pay"
    order_refund = "order_refund"
    adjust_in = "adjust_in"
    adjust_out = "adjust_out"
    correction = "correction"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class WalletTransaction(Base):
    """Append-only ledger row; the source of truth for every wallet balance."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        Index("ix_wallet_tx_wallet_created", "wallet_id", "created_at"),
        UniqueConstraint("idempotency_key", name="uq_wallet_tx_idem"),
        CheckConstraint("amount > 0", name="ck_wallet_tx_amount_positive"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), index=True, nullable=False)
    direction: Mapped[Direction] = mapped_column(
        SAEnum(Direction, name="wallet_tx_direction", values_callable=_enum_values),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType, name="wallet_tx_type", values_callable=_enum_values),
        nullable=False,
    )
    biz_ref_type: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    biz_ref_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False)
    operator_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    reason_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    note: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.direction == Direction.credit else -self.amount
