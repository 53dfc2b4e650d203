from .customer import Customer
from .product import Product
from .wallet import Wallet, WalletStatus
from .wallet_transaction import WalletTransaction, Direction, TransactionType
from .order import Order, OrderItem, OrderStatus, PayMethod, ALLOWED_TRANSITIONS, can_transition
from .outbox_event import OutboxEvent

__all__ = [
    "Customer",
    "Product",
    "Wallet",
    "WalletStatus",
    "WalletTransaction",
    "Direction",
    "TransactionType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PayMethod",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "OutboxEvent",
]
