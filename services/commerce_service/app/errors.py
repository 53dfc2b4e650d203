from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, TypeVar

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from shared.errors import error_response

T = TypeVar("T")


class CommerceError(Exception):
    """Base class for every error the commerce core surfaces to callers.

    ``code`` is a stable machine-readable string, ``kind`` groups codes for retry
    decisions and ``status`` is the HTTP status the API layer answers with.
    """

    status: int = 500
    kind: str = "internal"
    code: str = "INTERNAL_ERROR"
    default_message: str = "internal error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InvalidParamError(CommerceError):
    status = 400
    kind = "invalid_param"
    code = "INVALID_PARAM"
    default_message = "invalid parameter"


class NotFoundError(CommerceError):
    status = 404
    kind = "not_found"
    code = "NOT_FOUND"
    default_message = "resource not found"


class CustomerNotFound(NotFoundError):
    code = "CUSTOMER_NOT_FOUND"
    default_message = "customer not found"


class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"
    default_message = "product not found"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"
    default_message = "order not found"


class WalletNotFound(NotFoundError):
    code = "WALLET_NOT_FOUND"
    default_message = "wallet not found"


class ConflictError(CommerceError):
    status = 409
    kind = "conflict"
    code = "CONFLICT"
    default_message = "conflicting state"


class ProductNotSellable(ConflictError):
    code = "PRODUCT_NOT_SELLABLE"
    default_message = "product is not sellable"


class OrderStatusInvalid(ConflictError):
    code = "ORDER_STATUS_INVALID"
    default_message = "order status does not allow this operation"


class OrderCannotRefund(ConflictError):
    code = "ORDER_CANNOT_REFUND"
    default_message = "order cannot be refunded"


class BusinessRuleError(CommerceError):
    status = 422
    kind = "business_rule"
    code = "BUSINESS_RULE"
    default_message = "business rule violated"


class InsufficientBalance(BusinessRuleError):
    code = "INSUFFICIENT_BALANCE"
    default_message = "insufficient wallet balance"


class WalletFrozen(BusinessRuleError):
    code = "WALLET_FROZEN"
    default_message = "wallet is frozen"


class TransientError(CommerceError):
    """Safe to retry with the same idempotency key."""

    status = 503
    kind = "transient"
    code = "TRANSIENT_STORE_ERROR"
    default_message = "store temporarily unavailable, retry later"


class OperationTimeout(TransientError):
    code = "TIMEOUT"
    default_message = "operation deadline exceeded"


class InternalError(CommerceError):
    pass


def is_unique_violation(exc: BaseException, constraint_name: str, columns: str | None = None) -> bool:
    """Tell whether ``exc`` is a uniqueness violation of one named constraint.

    PostgreSQL reports the constraint name; SQLite only reports the columns, as
    ``table.col[, table.col]``, so callers pass both.
    """
    if not isinstance(exc, IntegrityError):
        return False
    message = str(exc.orig)
    if constraint_name in message:
        return True
    return columns is not None and f"UNIQUE constraint failed: {columns}" in message


def translate_store_errors(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Map store exceptions escaping a service method onto the commerce taxonomy."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except CommerceError:
            raise
        except OperationalError as exc:
            logger.bind(operation=fn.__qualname__).warning(f"store.transient_error: {exc.orig}")
            raise TransientError() from exc
        except SQLAlchemyError as exc:
            logger.bind(operation=fn.__qualname__).error(f"store.unexpected_error: {exc}")
            raise InternalError() from exc

    return wrapper


async def commerce_exception_handler(request: Request, exc: CommerceError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    if exc.status >= 500:
        logger.bind(request_id=request_id).warning(f"request failed: {exc!r}")
    return error_response(exc.status, error=exc.code, detail=exc.message, request_id=request_id)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return error_response(400, error=InvalidParamError.code, detail=problems, request_id=request_id)
