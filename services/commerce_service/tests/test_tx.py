from __future__ import annotations

import asyncio
import time

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from services.commerce_service.app.errors import InternalError, OperationTimeout, TransientError
from services.commerce_service.app.models import Customer, OutboxEvent
from services.commerce_service.app.services.outbox import OutboxWriter, decode_payload
from services.commerce_service.app.services.tx import OpContext
from services.commerce_service.tests.support import count_rows, fetch_all


def test_unbound_context_refuses_store_access():
    ctx = OpContext(request_id="r-1")
    assert not ctx.in_transaction
    with pytest.raises(InternalError):
        _ = ctx.session


def test_with_timeout_sets_monotonic_deadline():
    ctx = OpContext.with_timeout(5, request_id="r-2", operator_id=3)
    assert ctx.operator_id == 3
    assert 4 < ctx.remaining() <= 5
    assert OpContext().remaining() is None


@pytest.mark.asyncio
async def test_transaction_commits_on_success(services, ctx):
    async with services.tx.transaction(ctx) as tx_ctx:
        assert tx_ctx.in_transaction
        assert tx_ctx.request_id == ctx.request_id
        tx_ctx.session.add(Customer(id=10, name="Committed", created_at=0))
    assert not ctx.in_transaction
    assert await count_rows(services, Customer, Customer.id == 10) == 1


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(services, ctx):
    with pytest.raises(RuntimeError):
        async with services.tx.transaction(ctx) as tx_ctx:
            tx_ctx.session.add(Customer(id=11, name="Rolled back", created_at=0))
            await tx_ctx.session.flush()
            raise RuntimeError("boom")
    assert await count_rows(services, Customer, Customer.id == 11) == 0


@pytest.mark.asyncio
async def test_nested_transaction_joins_the_outer_one(services, ctx):
    with pytest.raises(RuntimeError):
        async with services.tx.transaction(ctx) as outer:
            async with services.tx.transaction(outer) as inner:
                assert inner is outer
                inner.session.add(Customer(id=12, name="Inner", created_at=0))
            # inner exit must not have committed
            raise RuntimeError("abort outer")
    assert await count_rows(services, Customer, Customer.id == 12) == 0


@pytest.mark.asyncio
async def test_savepoint_rollback_keeps_outer_transaction(services, ctx):
    async with services.tx.transaction(ctx) as tx_ctx:
        tx_ctx.session.add(Customer(id=13, name="Outer", created_at=0))
        await tx_ctx.session.flush()
        with pytest.raises(RuntimeError):
            async with services.tx.savepoint(tx_ctx):
                tx_ctx.session.add(Customer(id=14, name="Savepoint", created_at=0))
                await tx_ctx.session.flush()
                raise RuntimeError("undo savepoint")
    assert await count_rows(services, Customer, Customer.id == 13) == 1
    assert await count_rows(services, Customer, Customer.id == 14) == 0


@pytest.mark.asyncio
async def test_savepoint_without_ambient_transaction_opens_one(services, ctx):
    async with services.tx.savepoint(ctx) as tx_ctx:
        assert tx_ctx.in_transaction
        tx_ctx.session.add(Customer(id=15, name="Own tx", created_at=0))
    assert await count_rows(services, Customer, Customer.id == 15) == 1


@pytest.mark.asyncio
async def test_expired_deadline_fails_before_begin(services):
    expired = OpContext(request_id="late", deadline=time.monotonic() - 1)
    with pytest.raises(OperationTimeout):
        async with services.tx.transaction(expired) as tx_ctx:
            tx_ctx.session.add(Customer(id=16, name="Never", created_at=0))
    assert await count_rows(services, Customer, Customer.id == 16) == 0


@pytest.mark.asyncio
async def test_deadline_inside_transaction_rolls_back(services):
    ctx = OpContext.with_timeout(0.05, request_id="slow")
    with pytest.raises(OperationTimeout):
        async with services.tx.transaction(ctx) as tx_ctx:
            tx_ctx.session.add(Customer(id=17, name="Too slow", created_at=0))
            await tx_ctx.session.flush()
            await asyncio.sleep(1)
    assert await count_rows(services, Customer, Customer.id == 17) == 0


@pytest.mark.asyncio
async def test_operational_error_becomes_transient(services, ctx):
    with pytest.raises(TransientError):
        async with services.tx.transaction(ctx):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_run_passes_bound_context(services, ctx):
    async def body(tx_ctx, customer_id, *, name):
        tx_ctx.session.add(Customer(id=customer_id, name=name, created_at=0))
        return customer_id

    assert await services.tx.run(ctx, body, 18, name="Run") == 18
    assert await count_rows(services, Customer, Customer.id == 18) == 1


@pytest.mark.asyncio
async def test_run_with_retry_retries_transient_errors(services, ctx):
    attempts = []

    async def flaky(tx_ctx):
        attempts.append(tx_ctx.session)
        if len(attempts) < 3:
            raise TransientError()
        tx_ctx.session.add(Customer(id=19, name="Third time", created_at=0))
        return "ok"

    assert await services.tx.run_with_retry(ctx, flaky, attempts=3, base_delay=0) == "ok"
    assert len(attempts) == 3
    # every attempt ran in a fresh transaction
    assert len({id(session) for session in attempts}) == 3
    assert await count_rows(services, Customer, Customer.id == 19) == 1


@pytest.mark.asyncio
async def test_run_with_retry_gives_up_and_skips_business_errors(services, ctx):
    calls = 0

    async def always_transient(tx_ctx):
        nonlocal calls
        calls += 1
        raise TransientError()

    with pytest.raises(TransientError):
        await services.tx.run_with_retry(ctx, always_transient, attempts=2, base_delay=0)
    assert calls == 2

    async def broken(tx_ctx):
        nonlocal calls
        calls += 1
        raise InternalError("not retryable")

    calls = 0
    with pytest.raises(InternalError):
        await services.tx.run_with_retry(ctx, broken, attempts=3, base_delay=0)
    assert calls == 1


@pytest.mark.asyncio
async def test_outbox_append_requires_transaction(services, ctx, clock):
    writer = OutboxWriter(clock)
    with pytest.raises(InternalError):
        await writer.append(ctx, "order.placed", {"order_id": 1})

    async with services.tx.transaction(ctx) as tx_ctx:
        await writer.append(tx_ctx, "order.placed", {"order_id": 1, "b": "é"}, created_at=123)

    [event] = await fetch_all(services, select(OutboxEvent))
    assert event.event_type == "order.placed"
    assert event.created_at == 123
    assert event.processed_at is None
    assert event.payload == '{"b":"é","order_id":1}'.encode("utf-8")
    assert decode_payload(event.payload) == {"order_id": 1, "b": "é"}


@pytest.mark.asyncio
async def test_outbox_append_rejects_unknown_event_type(services, ctx, clock):
    writer = OutboxWriter(clock)
    with pytest.raises(InternalError):
        async with services.tx.transaction(ctx) as tx_ctx:
            await writer.append(tx_ctx, "order.shipped", {"order_id": 1})

    async with services.tx.transaction(ctx) as tx_ctx:
        await writer.append(tx_ctx, "customer.created", {"customer_id": 1})

    assert [event.event_type for event in await fetch_all(services, select(OutboxEvent))] == ["customer.created"]
