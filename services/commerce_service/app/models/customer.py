from __future__ import annotations

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from services.commerce_service.app.db.base import Base, BigIntPK


class Customer(Base):
    """Customer identity as seen by the commerce core; owned by the CRM side."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
