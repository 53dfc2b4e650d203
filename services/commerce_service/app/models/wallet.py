from __future__ import annotations

from enum import IntEnum

from sqlalchemy import BigInteger, CheckConstraint, SmallInteger, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from services.commerce_service.app.db.base import Base, BigIntPK


class WalletStatus(IntEnum):
    frozen = 0
    active = 1


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("customer_id", name="uq_wallets_customer"),
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Cached sum of the ledger, in minor units. Only BillingService writes it.
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=WalletStatus.active.value, server_default=text("1")
    )
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status == WalletStatus.active
