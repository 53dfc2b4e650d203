from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select

from services.commerce_service.app.models import Product
from services.commerce_service.app.services.tx import OpContext, TxRunner


@dataclass(frozen=True)
class ProductView:
    id: int
    name: str
    price: int
    duration_min: int
    sellable: bool


class CatalogReader:
    """Read-only port over the product catalog."""

    def __init__(self, tx: TxRunner) -> None:
        self._tx = tx

    async def batch_get(self, ctx: OpContext, product_ids: Iterable[int]) -> dict[int, ProductView]:
        """Fetch the distinct ``product_ids`` in one query. Unknown ids are absent from the result."""
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        async with self._tx.transaction(ctx) as tx_ctx:
            result = await tx_ctx.session.execute(select(Product).where(Product.id.in_(ids)))
            return {
                product.id: ProductView(
                    id=product.id,
                    name=product.name,
                    price=product.price,
                    duration_min=product.duration_min,
                    sellable=product.sellable,
                )
                for product in result.scalars()
            }
