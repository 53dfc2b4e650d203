from __future__ import annotations

import hashlib
import re

from services.commerce_service.app.errors import InvalidParamError

MAX_KEY_LENGTH = 64
KEY_PATTERN = re.compile(r"^[A-Za-z0-9_:.-]{1,64}$")

ORDER_PAY_TAG = "order_pay"
ORDER_REFUND_TAG = "order_refund"
CORRECTION_TAG = "correction"
RESERVED_PREFIXES = tuple(f"{tag}:" for tag in (ORDER_PAY_TAG, ORDER_REFUND_TAG, CORRECTION_TAG))


def validate_key(key: str | None, *, allow_reserved: bool = False) -> str:
    """Return ``key`` when it is a well-formed idempotency key, else raise InvalidParam."""
    if not key or not isinstance(key, str):
        raise InvalidParamError("idempotency key is required")
    if not KEY_PATTERN.match(key):
        raise InvalidParamError("idempotency key must be 1-64 characters of [A-Za-z0-9_:.-]")
    if not allow_reserved and key.startswith(RESERVED_PREFIXES):
        raise InvalidParamError("idempotency key uses a reserved prefix")
    return key


def derive(tag: str, ref_id: int, key: str | int, *, hash_name: str = "sha256") -> str:
    """Derive the sub-operation key ``"{tag}:{ref_id}:{key}"``.

    Results longer than the ledger column keep their ``tag:ref_id:`` prefix and
    replace the key part by its hex digest, cut to 64 characters.
    """
    derived = f"{tag}:{ref_id}:{key}"
    if len(derived) <= MAX_KEY_LENGTH:
        return derived
    digest = hashlib.new(hash_name, str(key).encode("utf-8")).hexdigest()
    return f"{tag}:{ref_id}:{digest}"[:MAX_KEY_LENGTH]


class KeyDeriver:
    """:func:`derive` bound to the configured hash."""

    def __init__(self, hash_name: str = "sha256") -> None:
        hashlib.new(hash_name)
        self.hash_name = hash_name

    def derive(self, tag: str, ref_id: int, key: str | int) -> str:
        return derive(tag, ref_id, key, hash_name=self.hash_name)
