"""Immutable records manipulated by the ledger.

Every record is a frozen dataclass and every collection inside a
:class:`StoreSnapshot` is a tuple, so an operation can only ever produce a new
snapshot; the snapshot it received stays untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Tuple

from .constants import (
    CreditEntryType,
    ExcessMode,
    PaymentMethod,
    TransactionType,
    UpfrontOrderStatus,
)
from .money import ZERO, sum_money


@dataclass(frozen=True)
class Product:
    """A sellable catalog item."""

    product_id: str
    name: str
    barcode: str
    category: str
    buy_price: Decimal
    sell_price: Decimal
    stock: int = 0
    total_sold: int = 0
    hsn: Optional[str] = None
    image: Optional[str] = None


@dataclass(frozen=True)
class Customer:
    """A known buyer together with the balances the store tracks for them."""

    customer_id: str
    name: str
    phone: str
    total_spend: Decimal = ZERO
    total_due: Decimal = ZERO
    store_credit_balance: Decimal = ZERO
    visit_count: int = 0
    last_visit: Optional[datetime] = None


@dataclass(frozen=True)
class LineItem:
    """One product line on a sale or return."""

    product_id: str
    name: str
    sell_price: Decimal
    quantity: int
    barcode: str = ""
    discount_amount: Decimal = ZERO

    @property
    def gross(self) -> Decimal:
        return self.sell_price * self.quantity


@dataclass(frozen=True)
class ReturnSettlement:
    """How a return's value was split between due, cash and store credit."""

    applied_to_due: Decimal
    refunded_cash: Decimal
    credited_amount: Decimal
    excess_mode: ExcessMode

    @property
    def total(self) -> Decimal:
        return sum_money((self.applied_to_due, self.refunded_cash, self.credited_amount))


@dataclass(frozen=True)
class Transaction:
    """An immutable record of one sale, return or payment.

    ``settlement`` and ``store_credit_applied`` are filled in by the
    transaction processor; callers may pre-supply a settlement, in which case
    it is cross-checked rather than trusted.
    """

    transaction_id: str
    timestamp: Optional[datetime]
    transaction_type: TransactionType
    total: Decimal
    items: Tuple[LineItem, ...] = ()
    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    tax_rate: Decimal = ZERO
    tax: Decimal = ZERO
    tax_label: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    use_store_credit: bool = False
    return_excess_mode: Optional[ExcessMode] = None
    settlement: Optional[ReturnSettlement] = None
    store_credit_applied: Decimal = ZERO


@dataclass(frozen=True)
class CreditLedgerEntry:
    """Append-only audit row for store credit consumed or issued."""

    entry_id: str
    customer_id: str
    transaction_id: str
    timestamp: datetime
    entry_type: CreditEntryType
    amount: Decimal
    balance_after: Decimal
    note: str = ""


@dataclass(frozen=True)
class UpfrontOrder:
    """A pre-paid order whose status is always derived from its balance."""

    order_id: str
    customer_id: str
    product_description: str
    quantity: int
    total_cost: Decimal
    advance_paid: Decimal
    remaining_amount: Decimal
    status: UpfrontOrderStatus
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class StoreSnapshot:
    """Complete in-memory state of one store.

    ``transactions`` and ``credit_ledger`` are ordered newest-first.
    ``categories`` order is significant: it assigns each category its
    generated-barcode band.
    """

    products: Tuple[Product, ...] = ()
    customers: Tuple[Customer, ...] = ()
    transactions: Tuple[Transaction, ...] = ()
    credit_ledger: Tuple[CreditLedgerEntry, ...] = ()
    categories: Tuple[str, ...] = ()
    upfront_orders: Tuple[UpfrontOrder, ...] = ()
    _index: Dict[str, Dict[str, object]] = field(default_factory=dict, init=False, repr=False, compare=False)

    def products_by_id(self) -> Dict[str, Product]:
        return self._lookup("products", self.products, "product_id")  # type: ignore[return-value]

    def customers_by_id(self) -> Dict[str, Customer]:
        return self._lookup("customers", self.customers, "customer_id")  # type: ignore[return-value]

    def orders_by_id(self) -> Dict[str, UpfrontOrder]:
        return self._lookup("upfront_orders", self.upfront_orders, "order_id")  # type: ignore[return-value]

    def _lookup(self, name: str, rows: Tuple[object, ...], key: str) -> Dict[str, object]:
        bucket = self._index.get(name)
        if bucket is None:
            bucket = {getattr(row, key): row for row in rows}
            self._index[name] = bucket
        return bucket


__all__ = [
    "Product",
    "Customer",
    "LineItem",
    "ReturnSettlement",
    "Transaction",
    "CreditLedgerEntry",
    "UpfrontOrder",
    "StoreSnapshot",
]
