"""Precondition checks guarding every ledger mutation.

Each check is a pure function of its inputs. A check either returns quietly
(some return the values they derived along the way) or raises a specific
:class:`~stockflow.errors.BusinessRuleViolation` subclass whose ``detail``
names the offending field and the expected versus actual values. Nothing here
mutates a snapshot.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Sequence, Type

from . import log
from .constants import MONEY_TOLERANCE, PaymentMethod, TransactionType, UpfrontOrderStatus
from .errors import (
    BusinessRuleViolation,
    CompatibilityError,
    ErrorCode,
    FinancialConsistencyError,
    InventoryError,
    MissingReferenceError,
    PayloadError,
    UniquenessError,
)
from .models import Customer, LineItem, Product, StoreSnapshot, Transaction, UpfrontOrder
from .money import as_decimal, exceeds_tolerance, money_equal, quantize_money, to_minor_units


_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class FinancialSummary:
    """Figures derived from a cart's line items and tax rate."""

    subtotal: Decimal
    discount: Decimal
    taxable: Decimal
    tax: Decimal
    expected_total: Decimal


# ---------------------------------------------------------------------------
# Customer payload
# ---------------------------------------------------------------------------


def normalize_phone(phone: str) -> str:
    """Strip every non-digit character from ``phone``."""

    return _NON_DIGITS.sub("", phone or "")


def validate_customer_payload(name: str, phone: str, existing: Iterable[Customer]) -> None:
    """Validate a new customer's name and phone against existing customers.

    Args:
        name (str): Display name; must be non-empty after trimming.
        phone (str): Phone number in any formatting; must contain at least one
            digit after non-digits are removed.
        existing (Iterable[Customer]): Customers already registered with the
            store.

    Raises:
        PayloadError: If the name or phone is missing or the phone carries no
            digits.
        UniquenessError: If another customer already has the same
            digits-only phone number.
    """

    if not (name or "").strip():
        raise PayloadError(ErrorCode.MISSING_CUSTOMER_NAME, "Customer name is required", {"field": "name"})
    if not (phone or "").strip():
        raise PayloadError(ErrorCode.MISSING_CUSTOMER_PHONE, "Customer phone is required", {"field": "phone"})

    digits = normalize_phone(phone)
    if not digits:
        raise PayloadError(
            ErrorCode.INVALID_CUSTOMER_PHONE,
            "Customer phone must contain at least one digit",
            {"field": "phone", "actual": phone},
        )

    for customer in existing:
        if normalize_phone(customer.phone) == digits:
            log.warning("Duplicate customer phone '%s' (existing customer '%s')", digits, customer.customer_id)
            raise UniquenessError(
                ErrorCode.DUPLICATE_CUSTOMER_PHONE,
                "A customer with this phone number already exists",
                {"field": "phone", "phone": digits, "existing_customer_id": customer.customer_id},
            )


# ---------------------------------------------------------------------------
# Transaction structure and compatibility
# ---------------------------------------------------------------------------


def validate_transaction_structure(transaction: Transaction, history: Sequence[Transaction] = ()) -> TransactionType:
    """Check identifier, timestamp and type, returning the resolved type."""

    if not (transaction.transaction_id or "").strip():
        raise PayloadError(ErrorCode.MISSING_TRANSACTION_ID, "Transaction id is required", {"field": "transaction_id"})
    if not isinstance(transaction.timestamp, datetime):
        raise PayloadError(
            ErrorCode.INVALID_TRANSACTION_DATE,
            "Transaction timestamp is missing or invalid",
            {"field": "timestamp", "actual": repr(transaction.timestamp)},
        )
    try:
        transaction_type = TransactionType(transaction.transaction_type)
    except ValueError as exc:
        raise PayloadError(
            ErrorCode.INVALID_TRANSACTION_TYPE,
            f"Unsupported transaction type: {transaction.transaction_type}",
            {"field": "transaction_type", "actual": str(transaction.transaction_type)},
        ) from exc

    for prior in history:
        if prior.transaction_id == transaction.transaction_id:
            raise UniquenessError(
                ErrorCode.DUPLICATE_TRANSACTION_ID,
                f"Transaction '{transaction.transaction_id}' is already recorded",
                {"field": "transaction_id", "transaction_id": transaction.transaction_id},
            )
    return transaction_type


def resolve_payment_method(value: Optional[object]) -> Optional[PaymentMethod]:
    """Resolve a loosely typed payment method into the enumeration.

    Raises:
        CompatibilityError: If ``value`` is present but not Cash, Credit or
            Online.
    """

    if value is None:
        return None
    try:
        return PaymentMethod(value)
    except ValueError as exc:
        raise CompatibilityError(
            ErrorCode.INVALID_PAYMENT_METHOD,
            f"Unsupported payment method: {value}",
            {"field": "payment_method", "actual": str(value), "expected": [m.value for m in PaymentMethod]},
        ) from exc


def validate_payment_method(transaction: Transaction) -> Optional[PaymentMethod]:
    """Check the payment method against the transaction type.

    Collecting on an existing due can never itself be put on credit, and a
    credit sale needs a customer to carry the due.
    """

    method = resolve_payment_method(transaction.payment_method)
    transaction_type = TransactionType(transaction.transaction_type)

    if transaction_type is TransactionType.PAYMENT and method is PaymentMethod.CREDIT:
        raise CompatibilityError(
            ErrorCode.PAYMENT_METHOD_NOT_ALLOWED,
            "A payment cannot be collected on credit",
            {"field": "payment_method", "actual": method.value, "transaction_type": transaction_type.value},
        )
    if transaction_type is TransactionType.SALE and method is PaymentMethod.CREDIT and not transaction.customer_id:
        raise CompatibilityError(
            ErrorCode.CREDIT_REQUIRES_CUSTOMER,
            "A credit sale requires a customer",
            {"field": "customer_id"},
        )
    if transaction_type is TransactionType.PAYMENT and not transaction.customer_id:
        raise CompatibilityError(
            ErrorCode.PAYMENT_REQUIRES_CUSTOMER,
            "A payment must reference the customer whose due it settles",
            {"field": "customer_id"},
        )
    return method


def validate_store_credit_usage(transaction: Transaction) -> None:
    if transaction.use_store_credit and not transaction.customer_id:
        raise CompatibilityError(
            ErrorCode.STORE_CREDIT_REQUIRES_CUSTOMER,
            "Store credit can only be applied for a known customer",
            {"field": "use_store_credit"},
        )


def validate_customer_reference(transaction: Transaction, customers: Mapping[str, Customer]) -> Optional[Customer]:
    """Return the referenced customer, or ``None`` for walk-in transactions."""

    if not transaction.customer_id:
        return None
    customer = customers.get(transaction.customer_id)
    if customer is None:
        log.warning("Transaction '%s' references unknown customer '%s'", transaction.transaction_id, transaction.customer_id)
        raise MissingReferenceError(
            ErrorCode.UNKNOWN_CUSTOMER,
            f"Unknown customer id: {transaction.customer_id}",
            {"field": "customer_id", "customer_id": transaction.customer_id},
        )
    return customer


# ---------------------------------------------------------------------------
# Financial consistency
# ---------------------------------------------------------------------------


def summarize_items(items: Sequence[LineItem], tax_rate: object, transaction_type: TransactionType) -> FinancialSummary:
    """Derive subtotal, discount, tax and the signed total for a cart.

    Line items are validated on the way: quantities must be positive
    integers, prices and discounts non-negative, and the summed discount may
    not exceed the summed gross. Returns carry a negative expected total.

    Raises:
        PayloadError: If ``items`` is empty.
        FinancialConsistencyError: On any invalid quantity, price, discount or
            tax rate.
    """

    if not items:
        raise PayloadError(ErrorCode.EMPTY_ITEMS, "At least one line item is required", {"field": "items"})

    rate = _require_tax_rate(tax_rate)
    subtotal = Decimal("0")
    discount = Decimal("0")
    for index, item in enumerate(items):
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise FinancialConsistencyError(
                ErrorCode.INVALID_ITEM_QUANTITY,
                f"Quantity for '{item.product_id}' must be a positive whole number",
                {"item_id": item.product_id, "index": index, "actual": str(quantity)},
            )
        price = _require_non_negative(
            item.sell_price, ErrorCode.INVALID_ITEM_PRICE, "Sell price", item.product_id, index
        )
        line_discount = _require_non_negative(
            item.discount_amount, ErrorCode.INVALID_DISCOUNT, "Discount", item.product_id, index
        )
        subtotal += price * quantity
        discount += line_discount

    if to_minor_units(discount) > to_minor_units(subtotal):
        raise FinancialConsistencyError(
            ErrorCode.DISCOUNT_EXCEEDS_GROSS,
            "Total discount exceeds the gross value of the items",
            {"discount": str(discount), "gross": str(subtotal)},
        )

    taxable = subtotal - discount
    tax = taxable * rate / Decimal("100")
    magnitude = taxable + tax
    expected_total = -magnitude if transaction_type is TransactionType.RETURN else magnitude
    return FinancialSummary(
        subtotal=subtotal,
        discount=discount,
        taxable=taxable,
        tax=tax,
        expected_total=expected_total,
    )


def validate_financials(transaction: Transaction) -> FinancialSummary:
    """Recompute a sale or return total and compare it with the supplied one."""

    transaction_type = TransactionType(transaction.transaction_type)
    summary = summarize_items(transaction.items, transaction.tax_rate, transaction_type)
    try:
        supplied = as_decimal(transaction.total)
    except ValueError:
        supplied = None
    if supplied is None or not money_equal(supplied, summary.expected_total):
        log.warning(
            "Total mismatch on '%s': supplied=%s expected=%s",
            transaction.transaction_id,
            transaction.total,
            summary.expected_total,
        )
        raise FinancialConsistencyError(
            ErrorCode.TOTAL_MISMATCH,
            "Transaction total does not match its items, discount and tax",
            {
                "field": "total",
                "expected": str(summary.expected_total.quantize(Decimal("0.01"))),
                "actual": str(transaction.total),
            },
        )
    return summary


def validate_payment_amount(transaction: Transaction) -> Decimal:
    """Return the absolute amount of a ``payment`` transaction."""

    try:
        amount = abs(as_decimal(transaction.total))
    except ValueError:
        amount = Decimal("0")
    if to_minor_units(amount) <= 0:
        raise FinancialConsistencyError(
            ErrorCode.INVALID_PAYMENT_AMOUNT,
            "Payment amount must be greater than zero",
            {"field": "total", "actual": str(transaction.total)},
        )
    return amount


def _require_tax_rate(tax_rate: object) -> Decimal:
    try:
        rate = as_decimal(tax_rate)  # type: ignore[arg-type]
    except ValueError:
        rate = None
    if rate is None or rate < 0:
        raise FinancialConsistencyError(
            ErrorCode.INVALID_TAX_RATE,
            "Tax rate must be zero or positive",
            {"field": "tax_rate", "actual": str(tax_rate)},
        )
    return rate


def _require_non_negative(value: object, code: ErrorCode, label: str, item_id: str, index: int) -> Decimal:
    try:
        amount = as_decimal(value)  # type: ignore[arg-type]
    except ValueError:
        amount = None
    if amount is None or amount < 0:
        raise FinancialConsistencyError(
            code,
            f"{label} for '{item_id}' must be zero or positive",
            {"item_id": item_id, "index": index, "actual": str(value)},
        )
    return amount


def require_money(
    value: object,
    field: str,
    code: ErrorCode,
    *,
    error: Type[BusinessRuleViolation] = FinancialConsistencyError,
) -> Decimal:
    """Quantize ``value`` to cents or raise ``error`` naming ``field``."""

    try:
        return quantize_money(value)  # type: ignore[arg-type]
    except ValueError as exc:
        raise error(
            code,
            f"{field.replace('_', ' ').capitalize()} is not a valid amount",
            {"field": field, "actual": str(value)},
        ) from exc


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def aggregate_quantities(items: Iterable[LineItem]) -> Dict[str, int]:
    """Sum requested quantities per product, preserving first-seen order."""

    totals: Dict[str, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def customer_net_purchases(transactions: Iterable[Transaction], customer_id: str, product_id: str) -> int:
    """Units of ``product_id`` bought by ``customer_id`` minus units returned."""

    net = 0
    for transaction in transactions:
        if transaction.customer_id != customer_id:
            continue
        if transaction.transaction_type == TransactionType.SALE:
            sign = 1
        elif transaction.transaction_type == TransactionType.RETURN:
            sign = -1
        else:
            continue
        for item in transaction.items:
            if item.product_id == product_id:
                net += sign * item.quantity
    return net


def validate_inventory(
    transaction: Transaction,
    products: Mapping[str, Product],
    history: Sequence[Transaction] = (),
) -> Dict[str, int]:
    """Check stock and return limits, returning the aggregated quantities.

    Sales may not exceed current stock. Returns may not exceed the product's
    cumulative units sold and, for a known customer, that customer's own net
    purchases of the product.

    Raises:
        InventoryError: On an unknown product or any exceeded limit.
    """

    transaction_type = TransactionType(transaction.transaction_type)
    requested = aggregate_quantities(transaction.items)

    for product_id, quantity in requested.items():
        product = products.get(product_id)
        if product is None:
            raise InventoryError(
                ErrorCode.UNKNOWN_PRODUCT,
                f"Unknown product id: {product_id}",
                {"item_id": product_id},
            )

        if transaction_type is TransactionType.SALE:
            if quantity > product.stock:
                log.warning("Oversale of '%s': requested=%d stock=%d", product_id, quantity, product.stock)
                raise InventoryError(
                    ErrorCode.OVERSALE_STOCK,
                    f"Only {product.stock} unit(s) of '{product.name}' in stock",
                    {"item_id": product_id, "requested_quantity": quantity, "available_stock": product.stock},
                )
            continue

        if quantity > product.total_sold:
            log.warning("Return of '%s' exceeds units sold: requested=%d sold=%d", product_id, quantity, product.total_sold)
            raise InventoryError(
                ErrorCode.RETURN_EXCEEDS_SOLD,
                f"Only {product.total_sold} unit(s) of '{product.name}' have been sold",
                {"item_id": product_id, "requested_quantity": quantity, "total_sold": product.total_sold},
            )
        if transaction.customer_id:
            purchased = customer_net_purchases(history, transaction.customer_id, product_id)
            if quantity > purchased:
                log.warning(
                    "Return of '%s' exceeds purchases of customer '%s': requested=%d purchased=%d",
                    product_id,
                    transaction.customer_id,
                    quantity,
                    purchased,
                )
                raise InventoryError(
                    ErrorCode.RETURN_EXCEEDS_PURCHASED,
                    f"Customer has only {max(purchased, 0)} unit(s) of '{product.name}' available to return",
                    {
                        "item_id": product_id,
                        "customer_id": transaction.customer_id,
                        "requested_quantity": quantity,
                        "purchased_quantity": purchased,
                    },
                )
    return requested


# ---------------------------------------------------------------------------
# Upfront orders
# ---------------------------------------------------------------------------


def derive_order_status(remaining_amount: Decimal) -> UpfrontOrderStatus:
    """Return ``cleared`` once the remaining amount is within tolerance of zero."""

    return UpfrontOrderStatus.UNPAID if exceeds_tolerance(remaining_amount) else UpfrontOrderStatus.CLEARED


def validate_upfront_order(order: UpfrontOrder, customers: Mapping[str, Customer]) -> None:
    """Validate an advance order's references, amounts and derived fields.

    Raises:
        MissingReferenceError: If the customer is unknown.
        PayloadError: If the description is empty or the quantity invalid.
        FinancialConsistencyError: If the cost, advance, remaining amount or
            status are inconsistent with one another.
    """

    if order.customer_id not in customers:
        raise MissingReferenceError(
            ErrorCode.UNKNOWN_CUSTOMER,
            f"Unknown customer id: {order.customer_id}",
            {"field": "customer_id", "customer_id": order.customer_id},
        )
    if not (order.product_description or "").strip():
        raise PayloadError(
            ErrorCode.INVALID_UPFRONT_ORDER,
            "Upfront order needs a product description",
            {"field": "product_description"},
        )
    if isinstance(order.quantity, bool) or not isinstance(order.quantity, int) or order.quantity <= 0:
        raise PayloadError(
            ErrorCode.INVALID_UPFRONT_ORDER,
            "Upfront order quantity must be a positive whole number",
            {"field": "quantity", "actual": str(order.quantity)},
        )

    total_cost = require_money(order.total_cost, "total_cost", ErrorCode.INVALID_UPFRONT_ORDER)
    advance = require_money(order.advance_paid, "advance_paid", ErrorCode.INVALID_UPFRONT_ORDER)
    if total_cost <= 0:
        raise FinancialConsistencyError(
            ErrorCode.INVALID_UPFRONT_ORDER,
            "Upfront order total cost must be greater than zero",
            {"field": "total_cost", "actual": str(order.total_cost)},
        )
    if advance < 0:
        raise FinancialConsistencyError(
            ErrorCode.INVALID_UPFRONT_ORDER,
            "Advance paid cannot be negative",
            {"field": "advance_paid", "actual": str(order.advance_paid)},
        )
    if advance > total_cost + MONEY_TOLERANCE:
        raise FinancialConsistencyError(
            ErrorCode.ADVANCE_EXCEEDS_TOTAL,
            "Advance paid exceeds the order's total cost",
            {"field": "advance_paid", "actual": str(advance), "total_cost": str(total_cost)},
        )

    expected_remaining = max(Decimal("0"), total_cost - advance)
    remaining = require_money(order.remaining_amount, "remaining_amount", ErrorCode.INVALID_UPFRONT_ORDER)
    if not money_equal(remaining, expected_remaining):
        raise FinancialConsistencyError(
            ErrorCode.INVALID_UPFRONT_ORDER,
            "Remaining amount must equal total cost minus advance paid",
            {"field": "remaining_amount", "expected": str(expected_remaining), "actual": str(order.remaining_amount)},
        )
    expected_status = derive_order_status(expected_remaining)
    try:
        status = UpfrontOrderStatus(order.status)
    except ValueError:
        status = None
    if status is not expected_status:
        raise FinancialConsistencyError(
            ErrorCode.INVALID_UPFRONT_ORDER,
            "Upfront order status does not match its balance",
            {"field": "status", "expected": expected_status.value, "actual": str(order.status)},
        )


# ---------------------------------------------------------------------------
# Full battery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidatedTransaction:
    """What the rule set learned while accepting a transaction."""

    transaction_type: TransactionType
    payment_method: Optional[PaymentMethod]
    customer: Optional[Customer]
    quantities: Dict[str, int]
    amount: Decimal


def validate_transaction(transaction: Transaction, snapshot: StoreSnapshot) -> ValidatedTransaction:
    """Run every precondition for ``transaction`` against ``snapshot``.

    The first failing rule raises; nothing is evaluated past it.

    Returns:
        ValidatedTransaction: Resolved type, payment method, customer,
            per-product quantities and the absolute amount of the transaction.
    """

    transaction_type = validate_transaction_structure(transaction, snapshot.transactions)
    method = validate_payment_method(transaction)
    validate_store_credit_usage(transaction)
    customer = validate_customer_reference(transaction, snapshot.customers_by_id())

    if transaction_type is TransactionType.PAYMENT:
        amount = validate_payment_amount(transaction)
        quantities: Dict[str, int] = {}
    else:
        validate_financials(transaction)
        amount = quantize_money(abs(as_decimal(transaction.total)))
        quantities = validate_inventory(transaction, snapshot.products_by_id(), snapshot.transactions)

    return ValidatedTransaction(
        transaction_type=transaction_type,
        payment_method=method,
        customer=customer,
        quantities=quantities,
        amount=amount,
    )


__all__ = [
    "FinancialSummary",
    "ValidatedTransaction",
    "normalize_phone",
    "validate_customer_payload",
    "validate_transaction_structure",
    "resolve_payment_method",
    "validate_payment_method",
    "validate_store_credit_usage",
    "validate_customer_reference",
    "summarize_items",
    "validate_financials",
    "validate_payment_amount",
    "require_money",
    "aggregate_quantities",
    "customer_net_purchases",
    "validate_inventory",
    "derive_order_status",
    "validate_upfront_order",
    "validate_transaction",
]
