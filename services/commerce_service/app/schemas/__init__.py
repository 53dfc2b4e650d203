from .wallet import (
    AdjustRequest,
    BalanceResponse,
    CreditRequest,
    ReconcileResponse,
    WalletHistoryResponse,
    WalletOperationResult,
    WalletResponse,
    WalletStatusRequest,
    WalletTransactionResponse,
)
from .order import (
    CancelOrderRequest,
    OrderItemResponse,
    OrderLineRequest,
    OrderListResponse,
    OrderResponse,
    OrderSummaryResponse,
    PlaceOrderRequest,
    RefundOrderRequest,
)

__all__ = [
    "AdjustRequest",
    "BalanceResponse",
    "CreditRequest",
    "ReconcileResponse",
    "WalletHistoryResponse",
    "WalletOperationResult",
    "WalletResponse",
    "WalletStatusRequest",
    "WalletTransactionResponse",
    "CancelOrderRequest",
    "OrderItemResponse",
    "OrderLineRequest",
    "OrderListResponse",
    "OrderResponse",
    "OrderSummaryResponse",
    "PlaceOrderRequest",
    "RefundOrderRequest",
]
