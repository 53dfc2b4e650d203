from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from services.commerce_service.app.db.session import build_engine, build_session_factory
from services.commerce_service.app.services.billing import BillingService
from services.commerce_service.app.services.catalog import CatalogReader
from services.commerce_service.app.services.idempotency import KeyDeriver
from services.commerce_service.app.services.idgen import Clock, OrderNumberGenerator, SystemClock
from services.commerce_service.app.services.outbox import OutboxWriter
from services.commerce_service.app.services.sales import SalesService
from services.commerce_service.app.services.tx import TxRunner
from services.commerce_service.app.settings import CommerceSettings


@dataclass
class CommerceServices:
    settings: CommerceSettings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    tx: TxRunner
    clock: Clock
    billing: BillingService
    sales: SalesService
    catalog: CatalogReader

    async def dispose(self) -> None:
        await self.engine.dispose()


def build_services(
    settings: CommerceSettings,
    *,
    engine: AsyncEngine | None = None,
    clock: Clock | None = None,
    order_numbers: OrderNumberGenerator | None = None,
) -> CommerceServices:
    """Wire every collaborator once. Tests pass their own engine and clock."""
    engine = engine or build_engine(settings=settings)
    session_factory = build_session_factory(engine)
    clock = clock or SystemClock()
    tx = TxRunner(session_factory)
    keys = KeyDeriver(settings.idempotency_hash)
    outbox = OutboxWriter(clock)
    catalog = CatalogReader(tx)
    billing = BillingService(tx, outbox, clock, keys)
    sales = SalesService(
        tx,
        catalog,
        billing,
        outbox,
        order_numbers or OrderNumberGenerator(clock),
        clock,
        keys,
    )
    return CommerceServices(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        tx=tx,
        clock=clock,
        billing=billing,
        sales=sales,
        catalog=catalog,
    )
