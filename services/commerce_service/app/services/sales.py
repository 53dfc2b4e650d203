from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from services.commerce_service.app.errors import (
    CustomerNotFound,
    InternalError,
    InvalidParamError,
    OrderCannotRefund,
    OrderNotFound,
    OrderStatusInvalid,
    ProductNotFound,
    ProductNotSellable,
    TransientError,
    is_unique_violation,
    translate_store_errors,
)
from services.commerce_service.app.metrics import (
    order_transitions_total,
    orders_idempotency_replay_total,
    orders_placed_total,
    orders_refunded_total,
)
from services.commerce_service.app.models import (
    Customer,
    Order,
    OrderItem,
    OrderStatus,
    PayMethod,
    can_transition,
)
from services.commerce_service.app.schemas import OrderListResponse, OrderResponse, OrderSummaryResponse
from services.commerce_service.app.services.billing import BillingService, check_page
from services.commerce_service.app.services.catalog import CatalogReader, ProductView
from services.commerce_service.app.services.idempotency import (
    ORDER_PAY_TAG,
    ORDER_REFUND_TAG,
    KeyDeriver,
    validate_key,
)
from services.commerce_service.app.services.idgen import Clock, OrderNumberGenerator
from services.commerce_service.app.services.outbox import (
    ORDER_CANCELLED,
    ORDER_PAID,
    ORDER_PLACED,
    ORDER_REFUNDED,
    OutboxWriter,
    order_cancelled_payload,
    order_paid_payload,
    order_placed_payload,
    order_refunded_payload,
)
from services.commerce_service.app.services.tx import OpContext, TxRunner

ORDER_NO_ATTEMPTS = 3
REFUNDABLE = (OrderStatus.paid.value, OrderStatus.completed.value)


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PlaceOrderCommand:
    customer_id: int
    pay_method: PayMethod | str
    items: Sequence[OrderLine]
    idempotency_key: str
    discount: int = 0
    channel: str = ""
    remark: str = ""
    assigned_to: int = 0
    source_ref: str | None = None


@dataclass
class _Pricing:
    lines: list[tuple[OrderLine, ProductView]] = field(default_factory=list)
    total: int = 0


def _validate_command(command: PlaceOrderCommand) -> PayMethod:
    if not isinstance(command.customer_id, int) or command.customer_id <= 0:
        raise InvalidParamError("customer_id must be a positive integer")
    try:
        pay_method = PayMethod(command.pay_method)
    except ValueError as exc:
        raise InvalidParamError("pay_method must be one of wallet, cash, online") from exc
    if not command.items:
        raise InvalidParamError("an order needs at least one item")
    for line in command.items:
        if not isinstance(line.product_id, int) or line.product_id <= 0:
            raise InvalidParamError("product_id must be a positive integer")
        if not isinstance(line.quantity, int) or line.quantity < 1:
            raise InvalidParamError("quantity must be >= 1")
    if not isinstance(command.discount, int) or command.discount < 0:
        raise InvalidParamError("discount must be >= 0")
    validate_key(command.idempotency_key)
    if len(command.channel or "") > 32:
        raise InvalidParamError("channel is too long")
    if command.assigned_to < 0:
        raise InvalidParamError("assigned_to must be >= 0")
    if command.source_ref is not None and len(command.source_ref) > 64:
        raise InvalidParamError("source_ref is too long")
    return pay_method


def _price(command: PlaceOrderCommand, products: dict[int, ProductView]) -> _Pricing:
    pricing = _Pricing()
    for line in command.items:
        product = products.get(line.product_id)
        if product is None:
            raise ProductNotFound(f"product {line.product_id} not found")
        if not product.sellable:
            raise ProductNotSellable(f"product {line.product_id} is not sellable")
        pricing.lines.append((line, product))
        pricing.total += product.price * line.quantity
    return pricing


class SalesService:
    """Order lifecycle: placement, payment, refund, cancellation and reads."""

    def __init__(
        self,
        tx: TxRunner,
        catalog: CatalogReader,
        billing: BillingService,
        outbox: OutboxWriter,
        order_numbers: OrderNumberGenerator,
        clock: Clock,
        keys: KeyDeriver,
    ) -> None:
        self._tx = tx
        self._catalog = catalog
        self._billing = billing
        self._outbox = outbox
        self._order_numbers = order_numbers
        self._clock = clock
        self._keys = keys

    @translate_store_errors
    async def place_order(self, ctx: OpContext, command: PlaceOrderCommand) -> OrderResponse:
        """Create an order, snapshot its products and, for wallet orders, pay it.

        Idempotent on ``(customer_id, idempotency_key)``: a repeated call returns the
        first order with ``replayed`` set and writes nothing.
        """
        pay_method = _validate_command(command)

        async with self._tx.transaction(ctx) as tx_ctx:
            replay = await self._find_by_idem(tx_ctx.session, command.customer_id, command.idempotency_key)
        if replay is not None:
            return self._replayed(ctx, replay)

        products = await self._catalog.batch_get(ctx, (line.product_id for line in command.items))

        async with self._tx.transaction(ctx) as tx_ctx:
            session = tx_ctx.session
            replay = await self._find_by_idem(session, command.customer_id, command.idempotency_key)
            if replay is not None:
                return self._replayed(ctx, replay)

            if await session.get(Customer, command.customer_id) is None:
                raise CustomerNotFound()
            pricing = _price(command, products)
            if command.discount > pricing.total:
                raise InvalidParamError("discount exceeds order total")
            final_amount = pricing.total - command.discount

            now_dt = self._clock.now_datetime()
            now = int(now_dt.timestamp())
            order = await self._insert_order(tx_ctx, command, pay_method, pricing.total, final_amount, now_dt)
            if order is None:
                # A concurrent call with the same key won the insert.
                replay = await self._find_by_idem(session, command.customer_id, command.idempotency_key)
                if replay is None:
                    raise TransientError("concurrent order with the same idempotency key is still in flight")
                return self._replayed(ctx, replay)

            session.add_all(
                [
                    OrderItem(
                        order_id=order.id,
                        product_id=product.id,
                        product_name_snapshot=product.name,
                        unit_price_snapshot=product.price,
                        duration_min_snapshot=product.duration_min,
                        quantity=line.quantity,
                        final_price=product.price * line.quantity,
                    )
                    for line, product in pricing.lines
                ]
            )
            await session.flush()

            paid = pay_method is PayMethod.wallet and final_amount > 0
            if paid:
                await self._billing.debit_for_order(
                    tx_ctx,
                    command.customer_id,
                    order.id,
                    final_amount,
                    self._keys.derive(ORDER_PAY_TAG, order.id, command.idempotency_key),
                )
                order.status = OrderStatus.paid.value
                await session.flush()

            await self._outbox.append(tx_ctx, ORDER_PLACED, order_placed_payload(order), created_at=now)
            if paid:
                await self._outbox.append(tx_ctx, ORDER_PAID, order_paid_payload(order, paid_at=now), created_at=now)

            orders_placed_total.labels(pay_method=pay_method.value).inc()
            logger.bind(request_id=ctx.request_id).info(
                f"order.placed order_no={order.order_no} customer_id={order.customer_id} "
                f"final_amount={final_amount} status={order.status}"
            )
            return await self._load_response(session, order.id)

    @translate_store_errors
    async def refund_order(self, ctx: OpContext, order_id: int, reason: str, *, idem: str | None = None) -> OrderResponse:
        """Refund a paid or completed order, crediting the wallet for wallet-paid orders.

        Without ``idem`` the wallet credit key includes the current nanosecond
        timestamp, so such a refund is one-shot.
        """
        _require_order_id(order_id)
        reason = reason or ""
        if len(reason) > 255:
            raise InvalidParamError("reason is too long")
        if idem is not None:
            validate_key(idem)

        async with self._tx.transaction(ctx) as tx_ctx:
            session = tx_ctx.session
            # Wallet row before order row. Customer, pay method and amount never change after placement.
            head = (
                await session.execute(
                    select(Order.customer_id, Order.pay_method, Order.final_amount).where(Order.id == order_id)
                )
            ).one_or_none()
            if head is None:
                raise OrderNotFound()
            if head.pay_method == PayMethod.wallet.value and head.final_amount > 0:
                await self._billing.lock_wallet(tx_ctx, head.customer_id)
            order = await self._lock_order(session, order_id)
            if order.status == OrderStatus.refunded.value:
                raise OrderStatusInvalid("order is already refunded")
            if order.status not in REFUNDABLE:
                raise OrderCannotRefund()

            now = self._clock.now()
            order.status = OrderStatus.refunded.value
            order.updated_at = self._clock.now_datetime()
            await session.flush()

            if order.pay_method == PayMethod.wallet.value and order.final_amount > 0:
                key = self._keys.derive(
                    ORDER_REFUND_TAG, order.id, idem if idem is not None else self._clock.now_ns()
                )
                await self._billing.credit_for_refund(tx_ctx, order.customer_id, order.id, order.final_amount, key)

            await self._outbox.append(
                tx_ctx, ORDER_REFUNDED, order_refunded_payload(order, reason, refunded_at=now), created_at=now
            )
            orders_refunded_total.labels(pay_method=order.pay_method).inc()
            order_transitions_total.labels(status=OrderStatus.refunded.value).inc()
            logger.bind(request_id=ctx.request_id).info(f"order.refunded order_no={order.order_no}")
            return await self._load_response(session, order.id)

    @translate_store_errors
    async def cancel_order(self, ctx: OpContext, order_id: int, reason: str = "") -> OrderResponse:
        _require_order_id(order_id)
        reason = reason or ""
        if len(reason) > 255:
            raise InvalidParamError("reason is too long")
        async with self._tx.transaction(ctx) as tx_ctx:
            order = await self._transition(tx_ctx, order_id, OrderStatus.cancelled)
            now = int(order.updated_at.timestamp())
            await self._outbox.append(
                tx_ctx, ORDER_CANCELLED, order_cancelled_payload(order, reason, cancelled_at=now), created_at=now
            )
            return await self._load_response(tx_ctx.session, order.id)

    @translate_store_errors
    async def confirm_payment(self, ctx: OpContext, order_id: int) -> OrderResponse:
        """Mark a pending order paid once the money arrived outside the wallet."""
        _require_order_id(order_id)
        async with self._tx.transaction(ctx) as tx_ctx:
            order = await self._transition(
                tx_ctx,
                order_id,
                OrderStatus.paid,
                # Wallet orders with something to pay were settled at placement.
                guard=lambda o: o.pay_method != PayMethod.wallet.value or o.final_amount == 0,
            )
            now = int(order.updated_at.timestamp())
            await self._outbox.append(tx_ctx, ORDER_PAID, order_paid_payload(order, paid_at=now), created_at=now)
            return await self._load_response(tx_ctx.session, order.id)

    @translate_store_errors
    async def complete_order(self, ctx: OpContext, order_id: int) -> OrderResponse:
        _require_order_id(order_id)
        async with self._tx.transaction(ctx) as tx_ctx:
            order = await self._transition(tx_ctx, order_id, OrderStatus.completed)
            return await self._load_response(tx_ctx.session, order.id)

    @translate_store_errors
    async def get_order(self, ctx: OpContext, order_id: int) -> OrderResponse:
        _require_order_id(order_id)
        async with self._tx.transaction(ctx) as tx_ctx:
            return await self._load_response(tx_ctx.session, order_id)

    @translate_store_errors
    async def list_orders(
        self,
        ctx: OpContext,
        customer_id: int | None = None,
        status: OrderStatus | str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> OrderListResponse:
        check_page(page, page_size)
        filters = []
        if customer_id is not None:
            filters.append(Order.customer_id == customer_id)
        if status is not None:
            try:
                filters.append(Order.status == OrderStatus(status).value)
            except ValueError as exc:
                raise InvalidParamError("unknown order status") from exc

        async with self._tx.transaction(ctx) as tx_ctx:
            session = tx_ctx.session
            total = await session.scalar(select(func.count()).select_from(Order).where(*filters))
            rows = await session.scalars(
                select(Order)
                .where(*filters)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return OrderListResponse(
                items=[OrderSummaryResponse.model_validate(row) for row in rows],
                total=total or 0,
                page=page,
                page_size=page_size,
            )

    # -- helpers -------------------------------------------------------------

    async def _insert_order(
        self,
        ctx: OpContext,
        command: PlaceOrderCommand,
        pay_method: PayMethod,
        total: int,
        final_amount: int,
        now_dt,
    ) -> Order | None:
        """Insert the pending order row. Returns None when the idempotency key is already taken."""
        session = ctx.session
        for attempt in range(1, ORDER_NO_ATTEMPTS + 1):
            order = Order(
                order_no=self._order_numbers.next(int(now_dt.timestamp())),
                customer_id=command.customer_id,
                status=OrderStatus.pending.value,
                pay_method=pay_method.value,
                total_amount=total,
                discount_amount=command.discount,
                final_amount=final_amount,
                remark=command.remark or "",
                channel=command.channel or "",
                assigned_to=command.assigned_to,
                source_ref=command.source_ref,
                idempotency_key=command.idempotency_key,
                created_at=now_dt,
                updated_at=now_dt,
            )
            try:
                async with self._tx.savepoint(ctx):
                    session.add(order)
                    await session.flush()
                return order
            except IntegrityError as exc:
                if is_unique_violation(exc, "uq_orders_customer_idem", "orders.customer_id, orders.idempotency_key"):
                    return None
                if is_unique_violation(exc, "uq_orders_order_no", "orders.order_no") and attempt < ORDER_NO_ATTEMPTS:
                    logger.bind(request_id=ctx.request_id).warning("order.order_no.collision; regenerating")
                    continue
                raise InternalError("unexpected order constraint violation") from exc
        raise InternalError("could not allocate an order number")  # pragma: no cover

    async def _transition(self, ctx: OpContext, order_id: int, target: OrderStatus, guard=None) -> Order:
        session = ctx.session
        order = await self._lock_order(session, order_id)
        if not can_transition(order.status, target.value) or (guard is not None and not guard(order)):
            raise OrderStatusInvalid(f"cannot move order from {order.status} to {target.value}")
        order.status = target.value
        order.updated_at = self._clock.now_datetime()
        await session.flush()
        order_transitions_total.labels(status=target.value).inc()
        logger.bind(request_id=ctx.request_id).info(f"order.{target.value} order_no={order.order_no}")
        return order

    async def _lock_order(self, session: AsyncSession, order_id: int) -> Order:
        order = await session.scalar(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if order is None:
            raise OrderNotFound()
        return order

    async def _find_by_idem(self, session: AsyncSession, customer_id: int, key: str) -> OrderResponse | None:
        order_id = await session.scalar(
            select(Order.id).where(Order.customer_id == customer_id, Order.idempotency_key == key)
        )
        if order_id is None:
            return None
        return await self._load_response(session, order_id)

    async def _load_response(self, session: AsyncSession, order_id: int) -> OrderResponse:
        order = await session.scalar(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if order is None:
            raise OrderNotFound()
        return OrderResponse.model_validate(order)

    def _replayed(self, ctx: OpContext, response: OrderResponse) -> OrderResponse:
        orders_idempotency_replay_total.inc()
        logger.bind(request_id=ctx.request_id).info(f"order.idempotency.replay order_no={response.order_no}")
        return response.model_copy(update={"replayed": True})


def _require_order_id(order_id: int) -> None:
    if not isinstance(order_id, int) or isinstance(order_id, bool) or order_id <= 0:
        raise InvalidParamError("order_id must be a positive integer")
