"""Named failure kinds raised by the ledger rules.

Every rejection carries a machine-readable :class:`ErrorCode`, a human-readable
message and a structured ``detail`` mapping (offending field, expected versus
actual values) so callers can react or localize without parsing text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ErrorCode(str, Enum):
    """Enumerate every machine-readable rejection code."""

    # Payload shape
    MISSING_TRANSACTION_ID = "MISSING_TRANSACTION_ID"
    INVALID_TRANSACTION_DATE = "INVALID_TRANSACTION_DATE"
    MISSING_CUSTOMER_NAME = "MISSING_CUSTOMER_NAME"
    MISSING_CUSTOMER_PHONE = "MISSING_CUSTOMER_PHONE"
    INVALID_CUSTOMER_PHONE = "INVALID_CUSTOMER_PHONE"
    INVALID_TRANSACTION_TYPE = "INVALID_TRANSACTION_TYPE"
    EMPTY_ITEMS = "EMPTY_ITEMS"
    INVALID_UPFRONT_ORDER = "INVALID_UPFRONT_ORDER"
    INVALID_CATEGORY = "INVALID_CATEGORY"
    INVALID_PRODUCT = "INVALID_PRODUCT"
    # Uniqueness
    DUPLICATE_CUSTOMER_PHONE = "DUPLICATE_CUSTOMER_PHONE"
    DUPLICATE_TRANSACTION_ID = "DUPLICATE_TRANSACTION_ID"
    DUPLICATE_BARCODE = "DUPLICATE_BARCODE"
    DUPLICATE_PRODUCT_ID = "DUPLICATE_PRODUCT_ID"
    DUPLICATE_CUSTOMER_ID = "DUPLICATE_CUSTOMER_ID"
    DUPLICATE_UPFRONT_ORDER_ID = "DUPLICATE_UPFRONT_ORDER_ID"
    DUPLICATE_CATEGORY = "DUPLICATE_CATEGORY"
    # Compatibility
    INVALID_PAYMENT_METHOD = "INVALID_PAYMENT_METHOD"
    PAYMENT_METHOD_NOT_ALLOWED = "PAYMENT_METHOD_NOT_ALLOWED"
    STORE_CREDIT_REQUIRES_CUSTOMER = "STORE_CREDIT_REQUIRES_CUSTOMER"
    CREDIT_REQUIRES_CUSTOMER = "CREDIT_REQUIRES_CUSTOMER"
    PAYMENT_REQUIRES_CUSTOMER = "PAYMENT_REQUIRES_CUSTOMER"
    # Financial consistency
    INVALID_ITEM_QUANTITY = "INVALID_ITEM_QUANTITY"
    INVALID_ITEM_PRICE = "INVALID_ITEM_PRICE"
    INVALID_DISCOUNT = "INVALID_DISCOUNT"
    DISCOUNT_EXCEEDS_GROSS = "DISCOUNT_EXCEEDS_GROSS"
    INVALID_TAX_RATE = "INVALID_TAX_RATE"
    TOTAL_MISMATCH = "TOTAL_MISMATCH"
    INVALID_PAYMENT_AMOUNT = "INVALID_PAYMENT_AMOUNT"
    ADVANCE_EXCEEDS_TOTAL = "ADVANCE_EXCEEDS_TOTAL"
    # Inventory
    UNKNOWN_PRODUCT = "UNKNOWN_PRODUCT"
    OVERSALE_STOCK = "OVERSALE_STOCK"
    RETURN_EXCEEDS_SOLD = "RETURN_EXCEEDS_SOLD"
    RETURN_EXCEEDS_PURCHASED = "RETURN_EXCEEDS_PURCHASED"
    # Balances
    NEGATIVE_DUE = "NEGATIVE_DUE"
    NEGATIVE_STORE_CREDIT = "NEGATIVE_STORE_CREDIT"
    # Settlement
    SETTLEMENT_MISMATCH = "SETTLEMENT_MISMATCH"
    # Referential
    UNKNOWN_CUSTOMER = "UNKNOWN_CUSTOMER"
    UNKNOWN_UPFRONT_ORDER = "UNKNOWN_UPFRONT_ORDER"
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a ledger constraint."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.detail: Dict[str, Any] = dict(detail or {})

    def to_dict(self) -> Dict[str, Any]:
        """Return the rejection as a flat, serializable payload."""

        return {"code": self.code.value, "message": self.message, **self.detail}

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return (self.code, self.message, self.detail) == (other.code, other.message, other.detail)

    def __hash__(self) -> int:
        return hash((type(self), self.code, self.message))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value!r}, {self.message!r}, {self.detail!r})"


class PayloadError(BusinessRuleViolation):
    """Raised when a customer, transaction or order payload is malformed."""


class UniquenessError(BusinessRuleViolation):
    """Raised when a value that must be unique already exists."""


class CompatibilityError(BusinessRuleViolation):
    """Raised when a payment method or flag does not fit the transaction."""


class FinancialConsistencyError(BusinessRuleViolation):
    """Raised when quantities, prices, discounts, tax or totals disagree."""


class InventoryError(BusinessRuleViolation):
    """Raised when a transaction would oversell or over-return stock."""


class BalanceError(BusinessRuleViolation):
    """Raised when a customer's due or store credit would go negative."""


class SettlementMismatchError(BusinessRuleViolation):
    """Raised when a caller-supplied return settlement disagrees with ours."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced customer, order or category is unknown."""


__all__ = [
    "ErrorCode",
    "BusinessRuleViolation",
    "PayloadError",
    "UniquenessError",
    "CompatibilityError",
    "FinancialConsistencyError",
    "InventoryError",
    "BalanceError",
    "SettlementMismatchError",
    "MissingReferenceError",
]
