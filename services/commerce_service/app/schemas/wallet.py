from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from services.commerce_service.app.models import Direction, TransactionType

IDEMPOTENCY_KEY_PATTERN = r"^[A-Za-z0-9_:.-]{1,64}$"


class CreditRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Amount in minor units")
    reason: str = Field("", max_length=255)
    idempotency_key: str = Field(..., pattern=IDEMPOTENCY_KEY_PATTERN)
    bonus_amount: int = Field(0, ge=0, description="Optional promotional credit, recorded as a correction row")


class AdjustRequest(BaseModel):
    direction: Direction
    amount: int = Field(..., gt=0)
    reason_code: str = Field(..., min_length=1, max_length=64)
    note: str = Field("", max_length=255)
    idempotency_key: str = Field(..., pattern=IDEMPOTENCY_KEY_PATTERN)


class WalletStatusRequest(BaseModel):
    active: bool


class WalletResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    balance: int
    status: int
    updated_at: int


class BalanceResponse(BaseModel):
    customer_id: int
    balance: int


class WalletTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_id: int
    direction: Direction
    amount: int
    type: TransactionType
    biz_ref_type: str
    biz_ref_id: int
    idempotency_key: str
    operator_id: int
    reason_code: str
    note: str
    created_at: int


class WalletOperationResult(BaseModel):
    """Outcome of a mutating wallet call. ``replayed`` is set when the key was already applied."""

    wallet: WalletResponse
    transaction: WalletTransactionResponse | None = None
    replayed: bool = False


class WalletHistoryResponse(BaseModel):
    customer_id: int
    items: list[WalletTransactionResponse]
    total: int
    page: int
    page_size: int


class ReconcileResponse(BaseModel):
    customer_id: int
    wallet_id: int
    balance: int
    ledger_sum: int
    consistent: bool
