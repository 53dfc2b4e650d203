from __future__ import annotations

from sqlalchemy import func, select

from services.commerce_service.app.models import (
    Customer,
    Direction,
    OutboxEvent,
    Product,
    TransactionType,
    Wallet,
    WalletTransaction,
)
from services.commerce_service.app.services.idgen import Clock
from services.commerce_service.app.services.sales import OrderLine, PlaceOrderCommand

# 2025-11-20T00:00:00Z
START_SECONDS = 1_763_596_800


class FakeClock(Clock):
    """Deterministic clock; each ``now_ns`` call moves forward by one microsecond."""

    def __init__(self, seconds: int = START_SECONDS) -> None:
        self.current_ns = seconds * 1_000_000_000

    def now_ns(self) -> int:
        self.current_ns += 1_000
        return self.current_ns

    def advance(self, seconds: int) -> None:
        self.current_ns += seconds * 1_000_000_000


async def seed(services, *rows) -> None:
    async with services.session_factory() as session:
        async with session.begin():
            session.add_all(rows)


async def seed_catalog(services) -> None:
    """Customers 1 and 2 plus the products used by the order scenarios."""
    await seed(
        services,
        Customer(id=1, name="Alice", created_at=START_SECONDS),
        Customer(id=2, name="Bob", created_at=START_SECONDS),
        Product(id=100, name="Deep tissue massage", price=15000, duration_min=60, sellable=True, stock=5),
        Product(id=101, name="Aroma oil", price=2500, duration_min=0, sellable=True),
        Product(id=102, name="Retired package", price=9900, duration_min=90, sellable=False),
    )


async def seed_wallet(services, customer_id: int, balance: int, *, status: int = 1) -> None:
    """Wallet plus the recharge row explaining its balance, without outbox rows."""
    async with services.session_factory() as session:
        async with session.begin():
            wallet = Wallet(customer_id=customer_id, balance=balance, status=status, updated_at=START_SECONDS)
            session.add(wallet)
            await session.flush()
            if balance:
                session.add(
                    WalletTransaction(
                        wallet_id=wallet.id,
                        direction=Direction.credit,
                        amount=balance,
                        type=TransactionType.recharge,
                        biz_ref_type="manual",
                        biz_ref_id=0,
                        idempotency_key=f"seed-{customer_id}",
                        created_at=START_SECONDS,
                    )
                )


def order_command(idem: str, *, pay_method: str = "wallet", items=((100, 1),), discount: int = 0, customer_id: int = 1):
    return PlaceOrderCommand(
        customer_id=customer_id,
        pay_method=pay_method,
        items=[OrderLine(product_id=pid, quantity=qty) for pid, qty in items],
        idempotency_key=idem,
        discount=discount,
        channel="front-desk",
        remark="walk-in",
    )


async def count_rows(services, model, *criteria) -> int:
    async with services.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*criteria))


async def fetch_all(services, stmt):
    async with services.session_factory() as session:
        return list((await session.scalars(stmt)).all())


async def outbox_types(services) -> list[str]:
    rows = await fetch_all(services, select(OutboxEvent).order_by(OutboxEvent.id))
    return [row.event_type for row in rows]


async def wallet_balance(services, customer_id: int) -> int | None:
    async with services.session_factory() as session:
        return await session.scalar(select(Wallet.balance).where(Wallet.customer_id == customer_id))


async def ledger_sum(services, customer_id: int) -> int:
    rows = await fetch_all(
        services,
        select(WalletTransaction).join(Wallet, Wallet.id == WalletTransaction.wallet_id).where(
            Wallet.customer_id == customer_id
        ),
    )
    return sum(row.signed_amount for row in rows)
