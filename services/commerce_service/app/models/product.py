from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from services.commerce_service.app.db.base import Base, BigIntPK


class Product(Base):
    """Catalog row. The commerce core only reads it; ``stock`` is informational."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # minor units
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sellable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
