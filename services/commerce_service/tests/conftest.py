from __future__ import annotations

import pytest
import pytest_asyncio

from services.commerce_service.app.container import build_services
from services.commerce_service.app.db.base import Base
from services.commerce_service.app.db.session import build_engine
from services.commerce_service.app.services.tx import OpContext
from services.commerce_service.app.settings import CommerceSettings
from services.commerce_service.tests.support import FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def ctx() -> OpContext:
    return OpContext(request_id="test-request", operator_id=7)


@pytest_asyncio.fixture()
async def services(tmp_path, clock):
    settings = CommerceSettings()
    # File-backed so concurrent transactions get their own connections
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'commerce.db'}", settings=settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    services = build_services(settings, engine=engine, clock=clock)
    yield services
    await services.dispose()
