from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.commerce_service.app.errors import (
    CustomerNotFound,
    InsufficientBalance,
    InternalError,
    InvalidParamError,
    WalletFrozen,
    WalletNotFound,
    is_unique_violation,
    translate_store_errors,
)
from services.commerce_service.app.metrics import (
    wallet_credit_total,
    wallet_debit_total,
    wallet_idempotency_replay_total,
    wallet_insufficient_funds_total,
    wallet_status_change_total,
)
from services.commerce_service.app.models import (
    Customer,
    Direction,
    TransactionType,
    Wallet,
    WalletStatus,
    WalletTransaction,
)
from services.commerce_service.app.schemas import (
    ReconcileResponse,
    WalletHistoryResponse,
    WalletOperationResult,
    WalletResponse,
    WalletTransactionResponse,
)
from services.commerce_service.app.services.idempotency import CORRECTION_TAG, KeyDeriver, validate_key
from services.commerce_service.app.services.idgen import Clock
from services.commerce_service.app.services.outbox import (
    WALLET_CREDITED,
    WALLET_DEBITED,
    OutboxWriter,
    wallet_movement_payload,
)
from services.commerce_service.app.services.tx import OpContext, TxRunner

MAX_PAGE_SIZE = 100
MANUAL_REF = "manual"
ORDER_REF = "order"


def check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise InvalidParamError("page must be >= 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise InvalidParamError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")


def _require_id(value: int, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidParamError(f"{name} must be a positive integer")


def _require_amount(value: int, name: str = "amount") -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidParamError(f"{name} must be a positive number of minor units")


@dataclass(frozen=True)
class LedgerChange:
    customer_id: int
    direction: Direction
    type: TransactionType
    amount: int
    idempotency_key: str
    biz_ref_type: str = MANUAL_REF
    biz_ref_id: int = 0
    operator_id: int = 0
    reason_code: str = ""
    note: str = ""


@dataclass
class _Applied:
    wallet: Wallet
    row: WalletTransaction
    replayed: bool

    def result(self) -> WalletOperationResult:
        return WalletOperationResult(
            wallet=WalletResponse.model_validate(self.wallet),
            transaction=WalletTransactionResponse.model_validate(self.row),
            replayed=self.replayed,
        )


class BillingService:
    """Wallet ledger operations.

    Every balance change is one appended ``WalletTransaction`` plus the matching
    update of the cached ``Wallet.balance``, both under the wallet row lock and in
    the caller's transaction when there is one.
    """

    def __init__(self, tx: TxRunner, outbox: OutboxWriter, clock: Clock, keys: KeyDeriver) -> None:
        self._tx = tx
        self._outbox = outbox
        self._clock = clock
        self._keys = keys

    # -- mutating operations -------------------------------------------------

    @translate_store_errors
    async def credit(
        self,
        ctx: OpContext,
        customer_id: int,
        amount: int,
        reason: str,
        idem: str,
        *,
        bonus_amount: int = 0,
        operator_id: int | None = None,
    ) -> WalletOperationResult:
        """Recharge a wallet, creating it on first use.

        ``bonus_amount`` is booked as a separate ``correction`` row keyed off ``idem``.
        The returned wallet is the state after the whole call, bonus included, so a
        replay with the same key answers with the same wallet and recharge row.
        """
        _require_id(customer_id, "customer_id")
        _require_amount(amount)
        if not isinstance(bonus_amount, int) or bonus_amount < 0:
            raise InvalidParamError("bonus_amount must be >= 0")
        idem = validate_key(idem)
        reason = reason or ""
        if len(reason) > 255:
            raise InvalidParamError("reason is too long")
        operator = ctx.operator_id if operator_id is None else operator_id

        async with self._tx.transaction(ctx) as tx_ctx:
            now = self._clock.now()
            applied = await self._apply(
                tx_ctx,
                LedgerChange(
                    customer_id=customer_id,
                    direction=Direction.credit,
                    type=TransactionType.recharge,
                    amount=amount,
                    idempotency_key=idem,
                    operator_id=operator,
                    reason_code=TransactionType.recharge.value,
                    note=reason,
                ),
                now=now,
                create_wallet=True,
            )
            if applied.replayed:
                return applied.result()
            await self._outbox.append(
                tx_ctx, WALLET_CREDITED, wallet_movement_payload(customer_id, applied.row), created_at=now
            )

            if bonus_amount:
                bonus = await self._apply(
                    tx_ctx,
                    LedgerChange(
                        customer_id=customer_id,
                        direction=Direction.credit,
                        type=TransactionType.correction,
                        amount=bonus_amount,
                        idempotency_key=self._keys.derive(CORRECTION_TAG, customer_id, idem),
                        operator_id=operator,
                        reason_code="bonus",
                        note=reason,
                    ),
                    now=now,
                    create_wallet=False,
                )
                if not bonus.replayed:
                    await self._outbox.append(
                        tx_ctx, WALLET_CREDITED, wallet_movement_payload(customer_id, bonus.row), created_at=now
                    )
            return applied.result()

    @translate_store_errors
    async def debit_for_order(
        self, ctx: OpContext, customer_id: int, order_id: int, amount: int, idem: str
    ) -> WalletOperationResult:
        _require_id(customer_id, "customer_id")
        _require_id(order_id, "order_id")
        _require_amount(amount)
        idem = validate_key(idem, allow_reserved=True)
        async with self._tx.transaction(ctx) as tx_ctx:
            applied = await self._apply(
                tx_ctx,
                LedgerChange(
                    customer_id=customer_id,
                    direction=Direction.debit,
                    type=TransactionType.order_pay,
                    amount=amount,
                    idempotency_key=idem,
                    biz_ref_type=ORDER_REF,
                    biz_ref_id=order_id,
                    operator_id=ctx.operator_id,
                    reason_code=TransactionType.order_pay.value,
                ),
                now=self._clock.now(),
                create_wallet=False,
            )
            return applied.result()

    @translate_store_errors
    async def credit_for_refund(
        self, ctx: OpContext, customer_id: int, order_id: int, amount: int, idem: str
    ) -> WalletOperationResult:
        _require_id(customer_id, "customer_id")
        _require_id(order_id, "order_id")
        _require_amount(amount)
        idem = validate_key(idem, allow_reserved=True)
        async with self._tx.transaction(ctx) as tx_ctx:
            applied = await self._apply(
                tx_ctx,
                LedgerChange(
                    customer_id=customer_id,
                    direction=Direction.credit,
                    type=TransactionType.order_refund,
                    amount=amount,
                    idempotency_key=idem,
                    biz_ref_type=ORDER_REF,
                    biz_ref_id=order_id,
                    operator_id=ctx.operator_id,
                    reason_code=TransactionType.order_refund.value,
                ),
                now=self._clock.now(),
                create_wallet=True,
            )
            return applied.result()

    @translate_store_errors
    async def adjust(
        self,
        ctx: OpContext,
        customer_id: int,
        direction: Direction | str,
        amount: int,
        reason_code: str,
        note: str,
        idem: str,
        operator_id: int | None = None,
    ) -> WalletOperationResult:
        """Manual balance correction by an operator (``adjust_in`` / ``adjust_out``)."""
        _require_id(customer_id, "customer_id")
        _require_amount(amount)
        try:
            direction = Direction(direction)
        except ValueError as exc:
            raise InvalidParamError("direction must be 'credit' or 'debit'") from exc
        if not reason_code or len(reason_code) > 64:
            raise InvalidParamError("reason_code must be 1-64 characters")
        note = note or ""
        if len(note) > 255:
            raise InvalidParamError("note is too long")
        idem = validate_key(idem)
        incoming = direction is Direction.credit

        async with self._tx.transaction(ctx) as tx_ctx:
            now = self._clock.now()
            applied = await self._apply(
                tx_ctx,
                LedgerChange(
                    customer_id=customer_id,
                    direction=direction,
                    type=TransactionType.adjust_in if incoming else TransactionType.adjust_out,
                    amount=amount,
                    idempotency_key=idem,
                    operator_id=ctx.operator_id if operator_id is None else operator_id,
                    reason_code=reason_code,
                    note=note,
                ),
                now=now,
                create_wallet=incoming,
            )
            if not applied.replayed:
                await self._outbox.append(
                    tx_ctx,
                    WALLET_CREDITED if incoming else WALLET_DEBITED,
                    wallet_movement_payload(customer_id, applied.row),
                    created_at=now,
                )
            return applied.result()

    @translate_store_errors
    async def set_status(self, ctx: OpContext, customer_id: int, active: bool) -> WalletResponse:
        """Freeze or unfreeze a wallet. Frozen wallets refuse debits but accept credits."""
        _require_id(customer_id, "customer_id")
        async with self._tx.transaction(ctx) as tx_ctx:
            wallet = await self._lock_wallet(tx_ctx.session, customer_id)
            if wallet is None:
                raise WalletNotFound()
            target = WalletStatus.active if active else WalletStatus.frozen
            if wallet.status != target:
                wallet.status = target.value
                wallet.updated_at = self._clock.now()
                await tx_ctx.session.flush()
                wallet_status_change_total.labels(status=target.name).inc()
                logger.bind(request_id=ctx.request_id).info(
                    f"wallet.status.changed customer_id={customer_id} status={target.name}"
                )
            return WalletResponse.model_validate(wallet)

    async def lock_wallet(self, ctx: OpContext, customer_id: int) -> Wallet | None:
        """Take the wallet row lock inside the caller's transaction."""
        return await self._lock_wallet(ctx.session, customer_id)

    # -- reads ---------------------------------------------------------------

    @translate_store_errors
    async def get_balance(self, ctx: OpContext, customer_id: int) -> int:
        _require_id(customer_id, "customer_id")
        async with self._tx.transaction(ctx) as tx_ctx:
            balance = await tx_ctx.session.scalar(select(Wallet.balance).where(Wallet.customer_id == customer_id))
        return balance or 0

    @translate_store_errors
    async def get_wallet(self, ctx: OpContext, customer_id: int) -> WalletResponse:
        _require_id(customer_id, "customer_id")
        async with self._tx.transaction(ctx) as tx_ctx:
            wallet = await tx_ctx.session.scalar(select(Wallet).where(Wallet.customer_id == customer_id))
            if wallet is None:
                raise WalletNotFound()
            return WalletResponse.model_validate(wallet)

    @translate_store_errors
    async def get_history(
        self, ctx: OpContext, customer_id: int, page: int = 1, page_size: int = 20
    ) -> WalletHistoryResponse:
        _require_id(customer_id, "customer_id")
        check_page(page, page_size)
        async with self._tx.transaction(ctx) as tx_ctx:
            session = tx_ctx.session
            wallet_id = await session.scalar(select(Wallet.id).where(Wallet.customer_id == customer_id))
            if wallet_id is None:
                return WalletHistoryResponse(customer_id=customer_id, items=[], total=0, page=page, page_size=page_size)
            total = await session.scalar(
                select(func.count()).select_from(WalletTransaction).where(WalletTransaction.wallet_id == wallet_id)
            )
            rows = await session.scalars(
                select(WalletTransaction)
                .where(WalletTransaction.wallet_id == wallet_id)
                .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return WalletHistoryResponse(
                customer_id=customer_id,
                items=[WalletTransactionResponse.model_validate(row) for row in rows],
                total=total or 0,
                page=page,
                page_size=page_size,
            )

    @translate_store_errors
    async def reconcile(self, ctx: OpContext, customer_id: int) -> ReconcileResponse:
        """Compare the cached balance with the sum of the ledger."""
        _require_id(customer_id, "customer_id")
        async with self._tx.transaction(ctx) as tx_ctx:
            session = tx_ctx.session
            wallet = await session.scalar(select(Wallet).where(Wallet.customer_id == customer_id))
            if wallet is None:
                raise WalletNotFound()
            signed = case(
                (WalletTransaction.direction == Direction.credit, WalletTransaction.amount),
                else_=-WalletTransaction.amount,
            )
            ledger_sum = await session.scalar(
                select(func.coalesce(func.sum(signed), 0)).where(WalletTransaction.wallet_id == wallet.id)
            )
            ledger_sum = int(ledger_sum or 0)
            consistent = ledger_sum == wallet.balance
            if not consistent:
                logger.bind(request_id=ctx.request_id).error(
                    f"wallet.reconcile.mismatch customer_id={customer_id} balance={wallet.balance} ledger={ledger_sum}"
                )
            return ReconcileResponse(
                customer_id=customer_id,
                wallet_id=wallet.id,
                balance=wallet.balance,
                ledger_sum=ledger_sum,
                consistent=consistent,
            )

    # -- ledger core ---------------------------------------------------------

    async def _apply(self, ctx: OpContext, change: LedgerChange, *, now: int, create_wallet: bool) -> _Applied:
        session = ctx.session
        log = logger.bind(request_id=ctx.request_id)

        existing = await self._find_by_key(session, change.idempotency_key)
        if existing is not None:
            return await self._replay(session, existing, change)

        wallet = await self._lock_wallet(session, change.customer_id)
        if wallet is None:
            if not create_wallet:
                raise WalletNotFound()
            wallet = await self._create_wallet(ctx, change.customer_id, now)

        if change.direction is Direction.debit:
            if not wallet.is_active:
                raise WalletFrozen()
            if wallet.balance < change.amount:
                wallet_insufficient_funds_total.labels(type=change.type.value).inc()
                log.info(
                    f"wallet.debit.rejected customer_id={change.customer_id} "
                    f"amount={change.amount} reason=insufficient_balance"
                )
                raise InsufficientBalance()

        row = WalletTransaction(
            wallet_id=wallet.id,
            direction=change.direction,
            amount=change.amount,
            type=change.type,
            biz_ref_type=change.biz_ref_type,
            biz_ref_id=change.biz_ref_id,
            idempotency_key=change.idempotency_key,
            operator_id=change.operator_id,
            reason_code=change.reason_code,
            note=change.note,
            created_at=now,
        )
        try:
            async with self._tx.savepoint(ctx):
                session.add(row)
                await session.flush()
        except IntegrityError as exc:
            if not is_unique_violation(exc, "uq_wallet_tx_idem", "wallet_transactions.idempotency_key"):
                raise InternalError("unexpected ledger constraint violation") from exc
            existing = await self._find_by_key(session, change.idempotency_key)
            if existing is None:
                raise InternalError("idempotency key conflict without a visible row") from exc
            return await self._replay(session, existing, change)

        delta = change.amount if change.direction is Direction.credit else -change.amount
        wallet.balance = wallet.balance + delta
        wallet.updated_at = now
        await session.flush()

        if change.direction is Direction.credit:
            wallet_credit_total.labels(type=change.type.value).inc()
        else:
            wallet_debit_total.labels(type=change.type.value).inc()
        log.info(
            f"wallet.{change.direction.value}.applied customer_id={change.customer_id} "
            f"type={change.type.value} amount={change.amount} balance={wallet.balance}"
        )
        return _Applied(wallet=wallet, row=row, replayed=False)

    async def _replay(self, session: AsyncSession, existing: WalletTransaction, change: LedgerChange) -> _Applied:
        wallet_idempotency_replay_total.labels(type=change.type.value).inc()
        logger.debug(f"wallet.idempotency.replay key={change.idempotency_key}")
        wallet = await session.get(Wallet, existing.wallet_id, populate_existing=True)
        if wallet is None:
            raise InternalError("ledger row without wallet")
        return _Applied(wallet=wallet, row=existing, replayed=True)

    async def _find_by_key(self, session: AsyncSession, key: str) -> WalletTransaction | None:
        return await session.scalar(select(WalletTransaction).where(WalletTransaction.idempotency_key == key))

    async def _lock_wallet(self, session: AsyncSession, customer_id: int) -> Wallet | None:
        stmt = (
            select(Wallet)
            .where(Wallet.customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return await session.scalar(stmt)

    async def _create_wallet(self, ctx: OpContext, customer_id: int, now: int) -> Wallet:
        session = ctx.session
        if await session.get(Customer, customer_id) is None:
            raise CustomerNotFound()
        wallet = Wallet(customer_id=customer_id, balance=0, status=WalletStatus.active.value, updated_at=now)
        try:
            async with self._tx.savepoint(ctx):
                session.add(wallet)
                await session.flush()
        except IntegrityError as exc:
            if not is_unique_violation(exc, "uq_wallets_customer", "wallets.customer_id"):
                raise InternalError("unexpected wallet constraint violation") from exc
            # Another transaction created it first; take its lock instead.
            wallet = await self._lock_wallet(session, customer_id)
            if wallet is None:
                raise InternalError("wallet vanished after concurrent create") from exc
            return wallet
        logger.bind(request_id=ctx.request_id).info(f"wallet.created customer_id={customer_id}")
        return wallet
