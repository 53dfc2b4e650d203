from fastapi import APIRouter, FastAPI

from .orders import router as orders_router
from .wallets import router as wallets_router
from . import system


def register_routes(app: FastAPI) -> None:
    router = APIRouter(prefix="/api/v1")
    router.include_router(orders_router, prefix="/orders", tags=["orders"])
    router.include_router(wallets_router, prefix="/wallets", tags=["wallets"])
    router.include_router(system.router, tags=["system"])
    app.include_router(router)
