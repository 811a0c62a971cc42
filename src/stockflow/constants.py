"""Enumerations and fixed values shared across the StockFlow ledger.

Centralises domain constants so that the snapshot store, the ledger rules and
the command-line front-end rely on a single source of truth for identifiers
that end up persisted in the store workbook.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Money comparisons never use exact equality; totals are recomputed.
MONEY_TOLERANCE = Decimal("0.01")

MINOR_UNITS_PER_MAJOR = 100

# Each category owns this many generated barcode numbers.
BARCODE_BAND_SIZE = 500
GENERATED_BARCODE_PREFIX = "GEN-"

DELETED_CATEGORY_PREFIX = "deleted category "


class TransactionType(str, Enum):
    """Enumerate the business events the ledger accepts."""

    SALE = "sale"
    RETURN = "return"
    PAYMENT = "payment"


class PaymentMethod(str, Enum):
    """Enumerate how money changes hands for a transaction."""

    CASH = "Cash"
    CREDIT = "Credit"
    ONLINE = "Online"


class ExcessMode(str, Enum):
    """Enumerate how a return's value beyond the customer's due is settled."""

    STORE_CREDIT = "store_credit"
    CASH_REFUND = "cash_refund"

    @classmethod
    def parse(cls, value: Optional[object]) -> "ExcessMode":
        """Resolve a requested mode, falling back to store credit."""

        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.STORE_CREDIT


class CreditEntryType(str, Enum):
    """Enumerate the kinds of rows written to the store-credit ledger."""

    CREDIT_USED = "credit_used"
    CREDIT_ISSUED = "credit_issued"


class UpfrontOrderStatus(str, Enum):
    """Enumerate the derived states of an advance order."""

    UNPAID = "unpaid"
    CLEARED = "cleared"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the snapshot store."""

    PRODUCTS = "Products"
    CUSTOMERS = "Customers"
    TRANSACTIONS = "Transactions"
    TRANSACTION_ITEMS = "TransactionItems"
    CREDIT_LEDGER = "CreditLedger"
    UPFRONT_ORDERS = "UpfrontOrders"
    CATEGORIES = "Categories"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "MONEY_TOLERANCE",
    "MINOR_UNITS_PER_MAJOR",
    "BARCODE_BAND_SIZE",
    "GENERATED_BARCODE_PREFIX",
    "DELETED_CATEGORY_PREFIX",
    "TransactionType",
    "PaymentMethod",
    "ExcessMode",
    "CreditEntryType",
    "UpfrontOrderStatus",
    "SheetName",
]
