from .tx import OpContext, TxRunner
from .idgen import Clock, SystemClock, OrderNumberGenerator
from .idempotency import KeyDeriver, derive, validate_key
from .outbox import OutboxWriter
from .catalog import CatalogReader, ProductView
from .billing import BillingService
from .sales import OrderLine, PlaceOrderCommand, SalesService

__all__ = [
    "OpContext",
    "TxRunner",
    "Clock",
    "SystemClock",
    "OrderNumberGenerator",
    "KeyDeriver",
    "derive",
    "validate_key",
    "OutboxWriter",
    "CatalogReader",
    "ProductView",
    "BillingService",
    "OrderLine",
    "PlaceOrderCommand",
    "SalesService",
]
