from __future__ import annotations

import asyncio
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.commerce_service.app.errors import InternalError, OperationTimeout, TransientError
from services.commerce_service.app.metrics import tx_retry_total

T = TypeVar("T")


@dataclass(frozen=True)
class OpContext:
    """Per-call context handed to every service operation.

    ``deadline`` is a ``time.monotonic()`` instant. ``bound_session`` is only set on
    the copies yielded by :class:`TxRunner`; code inside a transactional block reaches
    the store through :attr:`session`.
    """

    request_id: str = ""
    operator_id: int = 0
    deadline: float | None = None
    bound_session: AsyncSession | None = field(default=None, repr=False, compare=False)

    @classmethod
    def with_timeout(cls, seconds: float | None, *, request_id: str = "", operator_id: int = 0) -> "OpContext":
        deadline = time.monotonic() + seconds if seconds is not None else None
        return cls(request_id=request_id, operator_id=operator_id, deadline=deadline)

    @property
    def in_transaction(self) -> bool:
        return self.bound_session is not None

    @property
    def session(self) -> AsyncSession:
        if self.bound_session is None:
            raise InternalError("store access outside of a transaction")
        return self.bound_session

    def bind(self, session: AsyncSession) -> "OpContext":
        return replace(self, bound_session=session)

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()


class TxRunner:
    """Scoped transactional boundary over one session factory.

    Nesting is flat: a block opened while a transaction is already bound to the
    context joins it. :meth:`savepoint` is the explicit nested mode.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self, ctx: OpContext) -> AsyncIterator[OpContext]:
        if ctx.in_transaction:
            yield ctx
            return

        remaining = ctx.remaining()
        if remaining is not None and remaining <= 0:
            raise OperationTimeout("deadline exceeded before the transaction started")

        try:
            async with asyncio.timeout(remaining):
                async with self._session_factory() as session:
                    async with session.begin():
                        yield ctx.bind(session)
        except TimeoutError as exc:
            logger.bind(request_id=ctx.request_id).warning("tx.deadline_exceeded")
            raise OperationTimeout("deadline exceeded, transaction rolled back") from exc
        except OperationalError as exc:
            logger.bind(request_id=ctx.request_id).warning(f"tx.store_unavailable: {exc.orig}")
            raise TransientError() from exc

    @asynccontextmanager
    async def savepoint(self, ctx: OpContext) -> AsyncIterator[OpContext]:
        """Run a block that can fail without aborting the enclosing transaction."""
        if not ctx.in_transaction:
            async with self.transaction(ctx) as tx_ctx:
                yield tx_ctx
            return
        async with ctx.session.begin_nested():
            yield ctx

    async def run(self, ctx: OpContext, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        async with self.transaction(ctx) as tx_ctx:
            return await fn(tx_ctx, *args, **kwargs)

    async def run_with_retry(
        self,
        ctx: OpContext,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        attempts: int = 3,
        base_delay: float = 0.05,
        **kwargs: Any,
    ) -> T:
        """Like :meth:`run`, retrying the whole block on transient store errors.

        Only the outermost scope retries; inside an ambient transaction the block
        runs once and errors propagate to the owner of that transaction.
        """
        if ctx.in_transaction:
            return await fn(ctx, *args, **kwargs)

        for attempt in range(1, attempts + 1):
            try:
                return await self.run(ctx, fn, *args, **kwargs)
            except OperationTimeout:
                raise
            except TransientError:
                if attempt >= attempts:
                    raise
                delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay)
                remaining = ctx.remaining()
                if remaining is not None and remaining <= delay:
                    raise
                tx_retry_total.inc()
                logger.bind(request_id=ctx.request_id).info(
                    f"tx.retry attempt={attempt}/{attempts} delay={delay:.3f}s"
                )
                await asyncio.sleep(delay)
        raise InternalError("retry loop exhausted")  # pragma: no cover
