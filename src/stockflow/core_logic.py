"""Business logic layer for the StockFlow ledger.

The heart of this module is :func:`process_transaction`, the state-transition
function that validates a sale, return or payment and derives the next
:class:`~stockflow.models.StoreSnapshot`. Every operation here is a pure
function over an explicit snapshot: it returns a new snapshot or raises a
:class:`~stockflow.errors.BusinessRuleViolation`, and the snapshot it was
given is never modified. Loading and persisting snapshots is delegated to the
workbook-backed store in :mod:`stockflow.data_manager` through a
:class:`RuntimeContext` owned by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .barcodes import next_barcode
from .constants import (
    DELETED_CATEGORY_PREFIX,
    EXPECTED_SCHEMA_VERSION,
    GENERATED_BARCODE_PREFIX,
    CreditEntryType,
    ExcessMode,
    PaymentMethod,
    TransactionType,
)
from .errors import (
    BalanceError,
    BusinessRuleViolation,
    ErrorCode,
    FinancialConsistencyError,
    InventoryError,
    MissingReferenceError,
    PayloadError,
    UniquenessError,
)
from .models import (
    CreditLedgerEntry,
    Customer,
    LineItem,
    Product,
    ReturnSettlement,
    StoreSnapshot,
    Transaction,
    UpfrontOrder,
)
from .money import MoneyLike, ZERO, as_decimal, exceeds_tolerance, from_minor_units, quantize_money, to_minor_units
from .settlement import apply_store_credit, resolve_return_settlement, verify_settlement
from .validation import (
    ValidatedTransaction,
    derive_order_status,
    normalize_phone,
    require_money,
    summarize_items,
    validate_customer_payload,
    validate_transaction,
    validate_upfront_order,
)


# Negative drift of at most one minor unit is rounding noise and is clamped.
_NEGATIVE_DRIFT_UNITS = 1


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the workbook backing a store."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``T20250101120000000000``.

    Args:
        prefix (str): Designator prepended to the identifier (``T`` for
            transactions, ``C`` for customers, ``O`` for upfront orders,
            ``P`` for products).
        when (datetime | None): Timestamp the identifier is derived from;
            defaults to the current UTC time.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


# ---------------------------------------------------------------------------
# Runtime context (caller-owned snapshot reference)
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the store workbook.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context bundling settings with a live workbook.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to operate on a workbook written for another schema version.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def load_snapshot(context: RuntimeContext) -> StoreSnapshot:
    """Return the store snapshot held by ``context``, reading it once."""

    snapshot = context._cache.get("snapshot")
    if snapshot is None:
        snapshot = data_manager.load_snapshot(context.workbook)
        context._cache["snapshot"] = snapshot
        log.debug(
            "Loaded snapshot with %d products, %d customers, %d transactions",
            len(snapshot.products),
            len(snapshot.customers),
            len(snapshot.transactions),
        )
    return snapshot


def commit_snapshot(context: RuntimeContext, snapshot: StoreSnapshot) -> None:
    """Write ``snapshot`` into the context's workbook and make it current."""

    data_manager.write_snapshot(context.workbook, snapshot)
    context._cache["snapshot"] = snapshot


def persist_context(context: RuntimeContext) -> None:
    """Save the context's workbook to its configured location."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk, discarding unsaved changes.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty snapshot cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Transaction composition
# ---------------------------------------------------------------------------


def compose_transaction(
    transaction_type: TransactionType,
    items: Sequence[LineItem],
    *,
    tax_rate: MoneyLike = 0,
    tax_label: Optional[str] = None,
    customer: Optional[Customer] = None,
    payment_method: Optional[PaymentMethod] = PaymentMethod.CASH,
    use_store_credit: bool = False,
    return_excess_mode: Optional[ExcessMode] = None,
    transaction_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Transaction:
    """Build a sale or return whose totals are derived from its items.

    Subtotal, discount, tax and the signed total are computed from the line
    items and tax rate; returns carry a negative total. Line items are
    validated while the figures are derived.

    Raises:
        PayloadError: If ``items`` is empty or the type is ``payment``.
        FinancialConsistencyError: On invalid quantities, prices, discounts or
            tax rate.
    """

    transaction_type = TransactionType(transaction_type)
    if transaction_type is TransactionType.PAYMENT:
        raise PayloadError(
            ErrorCode.INVALID_TRANSACTION_TYPE,
            "Use compose_payment for payment transactions",
            {"field": "transaction_type", "actual": transaction_type.value},
        )

    summary = summarize_items(items, tax_rate, transaction_type)
    moment = _resolve_timestamp(timestamp)
    is_return = transaction_type is TransactionType.RETURN
    return Transaction(
        transaction_id=transaction_id or generate_transaction_id(when=moment),
        timestamp=moment,
        transaction_type=transaction_type,
        total=quantize_money(summary.expected_total),
        items=tuple(items),
        subtotal=quantize_money(summary.subtotal),
        discount=quantize_money(summary.discount),
        tax_rate=as_decimal(tax_rate),
        tax=quantize_money(summary.tax),
        tax_label=tax_label,
        customer_id=customer.customer_id if customer else None,
        customer_name=customer.name if customer else None,
        payment_method=payment_method,
        use_store_credit=bool(use_store_credit) and not is_return,
        return_excess_mode=ExcessMode.parse(return_excess_mode) if is_return else None,
    )


def compose_payment(
    customer: Customer,
    amount: MoneyLike,
    *,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    transaction_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Transaction:
    """Build a ``payment`` transaction collecting ``amount`` of a customer's due."""

    moment = _resolve_timestamp(timestamp)
    return Transaction(
        transaction_id=transaction_id or generate_transaction_id(when=moment),
        timestamp=moment,
        transaction_type=TransactionType.PAYMENT,
        total=quantize_money(amount),
        customer_id=customer.customer_id,
        customer_name=customer.name,
        payment_method=payment_method,
    )


# ---------------------------------------------------------------------------
# Transaction processor
# ---------------------------------------------------------------------------


def process_transaction(
    snapshot: StoreSnapshot,
    transaction: Transaction,
    *,
    now: Optional[datetime] = None,
) -> StoreSnapshot:
    """Validate ``transaction`` and derive the snapshot that results from it.

    Steps, in order: every rule of the validation set runs first; stock and
    units sold move for each line item (not for payments); the referenced
    customer's spend, visits, due and store credit are updated, consuming or
    issuing store credit with a matching ledger row; finally the transaction,
    annotated with its settlement and applied store credit, is prepended to
    history.

    Args:
        snapshot (StoreSnapshot): Current store state. Never modified.
        transaction (Transaction): Proposed sale, return or payment.
        now (datetime | None): Moment recorded as the customer's last visit
            and on ledger rows. Defaults to the current UTC time.

    Returns:
        StoreSnapshot: New snapshot with products, customers, transactions and
            credit ledger updated.

    Raises:
        BusinessRuleViolation: If any rule rejects the transaction, including
            a due or store-credit balance that would turn meaningfully
            negative or a supplied return settlement that disagrees with the
            recomputed one. No partial state is ever produced.
    """

    try:
        return _process(snapshot, transaction, _resolve_timestamp(now))
    except BusinessRuleViolation as error:
        log.warning(
            "Rejected transaction '%s' [%s]: %s",
            transaction.transaction_id,
            error.code.value,
            error.message,
        )
        raise


def _process(snapshot: StoreSnapshot, transaction: Transaction, moment: datetime) -> StoreSnapshot:
    validated = validate_transaction(transaction, snapshot)
    transaction_type = validated.transaction_type

    products = snapshot.products
    if transaction_type is not TransactionType.PAYMENT:
        products = _apply_stock_changes(snapshot.products, transaction_type, validated.quantities)

    customers = snapshot.customers
    new_entries: List[CreditLedgerEntry] = []
    settlement: Optional[ReturnSettlement] = None
    credit_applied = ZERO

    customer = validated.customer
    if customer is not None:
        updated, settlement, credit_applied, new_entries = _apply_customer_changes(
            customer, transaction, validated, moment
        )
        customers = tuple(updated if row.customer_id == customer.customer_id else row for row in snapshot.customers)
    elif transaction_type is TransactionType.RETURN:
        # Walk-in returns have no balance to hold credit; the excess is cash.
        settlement = resolve_return_settlement(validated.amount, ZERO, ExcessMode.CASH_REFUND)
        verify_settlement(transaction.settlement, settlement)

    recorded = replace(
        transaction,
        transaction_type=transaction_type,
        payment_method=validated.payment_method,
        customer_name=transaction.customer_name or (customer.name if customer else None),
        use_store_credit=transaction.use_store_credit and transaction_type is TransactionType.SALE,
        return_excess_mode=ExcessMode.parse(transaction.return_excess_mode)
        if transaction_type is TransactionType.RETURN
        else None,
        settlement=settlement,
        store_credit_applied=credit_applied,
    )

    log.info(
        "Accepted %s '%s' (amount=%s, customer=%s)",
        transaction_type.value,
        transaction.transaction_id,
        validated.amount,
        transaction.customer_id or "walk-in",
    )
    return replace(
        snapshot,
        products=products,
        customers=customers,
        transactions=(recorded, *snapshot.transactions),
        credit_ledger=(*reversed(new_entries), *snapshot.credit_ledger),
    )


def _apply_stock_changes(
    products: Tuple[Product, ...],
    transaction_type: TransactionType,
    quantities: Dict[str, int],
) -> Tuple[Product, ...]:
    """Move stock and units sold for every product referenced by the cart."""

    updated: List[Product] = []
    for product in products:
        quantity = quantities.get(product.product_id)
        if quantity is None:
            updated.append(product)
        elif transaction_type is TransactionType.SALE:
            updated.append(replace(product, stock=product.stock - quantity, total_sold=product.total_sold + quantity))
        else:
            updated.append(
                replace(product, stock=product.stock + quantity, total_sold=max(0, product.total_sold - quantity))
            )
    return tuple(updated)


def _apply_customer_changes(
    customer: Customer,
    transaction: Transaction,
    validated: ValidatedTransaction,
    moment: datetime,
) -> Tuple[Customer, Optional[ReturnSettlement], Decimal, List[CreditLedgerEntry]]:
    """Derive a customer's new balances, all arithmetic in minor units."""

    amount_units = to_minor_units(validated.amount)
    spend_units = to_minor_units(customer.total_spend)
    due_units = to_minor_units(customer.total_due)
    credit_units = to_minor_units(customer.store_credit_balance)
    visit_count = customer.visit_count
    last_visit = customer.last_visit
    settlement: Optional[ReturnSettlement] = None
    applied_units = 0
    entries: List[CreditLedgerEntry] = []

    transaction_type = validated.transaction_type
    if transaction_type is TransactionType.SALE:
        spend_units += amount_units
        visit_count += 1
        last_visit = moment
        if transaction.use_store_credit and credit_units > 0:
            application = apply_store_credit(from_minor_units(credit_units), validated.amount)
            applied_units = to_minor_units(application.applied)
            credit_units -= applied_units
            if applied_units > 0:
                entries.append(
                    _ledger_entry(
                        customer,
                        transaction,
                        CreditEntryType.CREDIT_USED,
                        applied_units,
                        credit_units,
                        moment,
                        f"Store credit used on sale {transaction.transaction_id}",
                    )
                )
        if validated.payment_method is PaymentMethod.CREDIT:
            due_units += amount_units - applied_units

    elif transaction_type is TransactionType.RETURN:
        spend_units -= amount_units
        settlement = resolve_return_settlement(
            validated.amount,
            from_minor_units(due_units),
            transaction.return_excess_mode,
        )
        verify_settlement(transaction.settlement, settlement)
        due_units -= to_minor_units(settlement.applied_to_due)
        credited_units = to_minor_units(settlement.credited_amount)
        if credited_units > 0:
            credit_units += credited_units
            entries.append(
                _ledger_entry(
                    customer,
                    transaction,
                    CreditEntryType.CREDIT_ISSUED,
                    credited_units,
                    credit_units,
                    moment,
                    f"Store credit issued for return {transaction.transaction_id}",
                )
            )

    else:
        # Paying more than is owed settles the due; the surplus is not kept.
        if amount_units > due_units:
            log.info(
                "Payment '%s' of %s exceeds due %s of customer '%s'; due floored at zero",
                transaction.transaction_id,
                validated.amount,
                from_minor_units(due_units),
                customer.customer_id,
            )
        due_units = max(0, due_units - amount_units)
        last_visit = moment

    due_units = _require_non_negative_balance(due_units, ErrorCode.NEGATIVE_DUE, customer, transaction)
    credit_units = _require_non_negative_balance(
        credit_units, ErrorCode.NEGATIVE_STORE_CREDIT, customer, transaction
    )

    updated = replace(
        customer,
        total_spend=from_minor_units(spend_units),
        total_due=from_minor_units(due_units),
        store_credit_balance=from_minor_units(credit_units),
        visit_count=visit_count,
        last_visit=last_visit,
    )
    return updated, settlement, from_minor_units(applied_units), entries


def _require_non_negative_balance(
    units: int,
    code: ErrorCode,
    customer: Customer,
    transaction: Transaction,
) -> int:
    """Clamp rounding drift to zero; reject anything more negative."""

    if units >= 0:
        return units
    if units >= -_NEGATIVE_DRIFT_UNITS:
        log.debug("Clamping %s drift of %d minor unit(s) for '%s'", code.value, units, customer.customer_id)
        return 0

    balance = "total_due" if code is ErrorCode.NEGATIVE_DUE else "store_credit_balance"
    log.warning(
        "Transaction '%s' would leave %s of customer '%s' at %s",
        transaction.transaction_id,
        balance,
        customer.customer_id,
        from_minor_units(units),
    )
    raise BalanceError(
        code,
        f"Transaction would leave the customer's {balance.replace('_', ' ')} negative",
        {
            "field": balance,
            "customer_id": customer.customer_id,
            "resulting_balance": str(from_minor_units(units)),
        },
    )


def _ledger_entry(
    customer: Customer,
    transaction: Transaction,
    entry_type: CreditEntryType,
    amount_units: int,
    balance_units: int,
    moment: datetime,
    note: str,
) -> CreditLedgerEntry:
    return CreditLedgerEntry(
        entry_id=f"CL-{transaction.transaction_id}-{entry_type.value}",
        customer_id=customer.customer_id,
        transaction_id=transaction.transaction_id,
        timestamp=moment,
        entry_type=entry_type,
        amount=from_minor_units(amount_units),
        balance_after=from_minor_units(balance_units),
        note=note,
    )


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def register_customer(
    snapshot: StoreSnapshot,
    *,
    name: str,
    phone: str,
    customer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[StoreSnapshot, Customer]:
    """Validate and append a new customer with zero due and zero credit.

    Returns:
        tuple[StoreSnapshot, Customer]: The new snapshot and the stored
            customer record.

    Raises:
        PayloadError: If the name or phone is invalid.
        UniquenessError: If the phone or identifier is already registered.
    """

    validate_customer_payload(name, phone, snapshot.customers)
    moment = _resolve_timestamp(now)
    customer_id = customer_id or generate_transaction_id(prefix="C", when=moment)
    if customer_id in snapshot.customers_by_id():
        raise UniquenessError(
            ErrorCode.DUPLICATE_CUSTOMER_ID,
            f"Customer id '{customer_id}' is already registered",
            {"field": "customer_id", "customer_id": customer_id},
        )

    customer = Customer(
        customer_id=customer_id,
        name=name.strip(),
        phone=phone.strip(),
        last_visit=moment,
    )
    log.info("Registered customer '%s' (phone=%s)", customer_id, normalize_phone(phone))
    return replace(snapshot, customers=(*snapshot.customers, customer)), customer


def delete_customer(snapshot: StoreSnapshot, customer_id: str) -> StoreSnapshot:
    """Remove a customer record; their transactions and ledger entries remain.

    Raises:
        MissingReferenceError: If ``customer_id`` is unknown.
    """

    customer = snapshot.customers_by_id().get(customer_id)
    if customer is None:
        raise MissingReferenceError(
            ErrorCode.UNKNOWN_CUSTOMER,
            f"Unknown customer id: {customer_id}",
            {"field": "customer_id", "customer_id": customer_id},
        )
    if exceeds_tolerance(customer.total_due) or exceeds_tolerance(customer.store_credit_balance):
        log.warning(
            "Deleting customer '%s' with due %s and store credit %s",
            customer_id,
            customer.total_due,
            customer.store_credit_balance,
        )
    log.info("Deleted customer '%s'", customer_id)
    return replace(snapshot, customers=tuple(c for c in snapshot.customers if c.customer_id != customer_id))


def outstanding_dues(snapshot: StoreSnapshot) -> List[Customer]:
    """Customers who owe more than the money tolerance, largest due first."""

    debtors = [customer for customer in snapshot.customers if exceeds_tolerance(customer.total_due)]
    return sorted(debtors, key=lambda customer: customer.total_due, reverse=True)


# ---------------------------------------------------------------------------
# Upfront orders
# ---------------------------------------------------------------------------


def add_upfront_order(
    snapshot: StoreSnapshot,
    *,
    customer_id: str,
    product_description: str,
    quantity: int,
    total_cost: MoneyLike,
    advance_paid: MoneyLike = 0,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[StoreSnapshot, UpfrontOrder]:
    """Record an advance order with its remaining amount and status derived.

    Raises:
        MissingReferenceError: If the customer is unknown.
        PayloadError: If the description or quantity is invalid.
        FinancialConsistencyError: If the cost or advance is invalid.
        UniquenessError: If ``order_id`` is already used.
    """

    moment = _resolve_timestamp(now)
    order_id = order_id or generate_transaction_id(prefix="O", when=moment)
    if order_id in snapshot.orders_by_id():
        raise UniquenessError(
            ErrorCode.DUPLICATE_UPFRONT_ORDER_ID,
            f"Upfront order id '{order_id}' is already used",
            {"field": "order_id", "order_id": order_id},
        )

    cost = require_money(total_cost, "total_cost", ErrorCode.INVALID_UPFRONT_ORDER)
    advance = require_money(advance_paid, "advance_paid", ErrorCode.INVALID_UPFRONT_ORDER)
    remaining = max(ZERO, cost - advance)
    order = UpfrontOrder(
        order_id=order_id,
        customer_id=customer_id,
        product_description=(product_description or "").strip(),
        quantity=quantity,
        total_cost=cost,
        advance_paid=advance,
        remaining_amount=remaining,
        status=derive_order_status(remaining),
        created_at=moment,
    )
    validate_upfront_order(order, snapshot.customers_by_id())
    log.info("Recorded upfront order '%s' for customer '%s' (total=%s, advance=%s)", order_id, customer_id, cost, advance)
    return replace(snapshot, upfront_orders=(*snapshot.upfront_orders, order)), order


def collect_upfront_payment(snapshot: StoreSnapshot, order_id: str, amount: MoneyLike) -> StoreSnapshot:
    """Add ``amount`` to an order's advance and re-derive its balance.

    Raises:
        MissingReferenceError: If ``order_id`` is unknown.
        FinancialConsistencyError: If ``amount`` is not positive or the new
            advance would exceed the order's total cost.
    """

    order = snapshot.orders_by_id().get(order_id)
    if order is None:
        log.warning("Upfront payment for unknown order '%s'", order_id)
        raise MissingReferenceError(
            ErrorCode.UNKNOWN_UPFRONT_ORDER,
            f"Unknown upfront order id: {order_id}",
            {"field": "order_id", "order_id": order_id},
        )

    payment = require_money(amount, "amount", ErrorCode.INVALID_PAYMENT_AMOUNT)
    if payment <= 0:
        raise FinancialConsistencyError(
            ErrorCode.INVALID_PAYMENT_AMOUNT,
            "Upfront payment must be greater than zero",
            {"field": "amount", "actual": str(amount)},
        )

    advance = order.advance_paid + payment
    remaining = max(ZERO, order.total_cost - advance)
    updated = replace(
        order,
        advance_paid=advance,
        remaining_amount=remaining,
        status=derive_order_status(remaining),
    )
    validate_upfront_order(updated, snapshot.customers_by_id())
    log.info("Collected %s on upfront order '%s' (remaining=%s)", payment, order_id, remaining)
    return replace(
        snapshot,
        upfront_orders=tuple(updated if row.order_id == order_id else row for row in snapshot.upfront_orders),
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def add_category(snapshot: StoreSnapshot, name: str) -> StoreSnapshot:
    """Append a category; names are unique regardless of case."""

    name = _require_category_name(name)
    _reject_duplicate_category(snapshot.categories, name)
    return replace(snapshot, categories=(*snapshot.categories, name))


def rename_category(snapshot: StoreSnapshot, old_name: str, new_name: str) -> StoreSnapshot:
    """Rename a category in place, keeping its barcode band position."""

    _require_known_category(snapshot.categories, old_name)
    new_name = _require_category_name(new_name)
    _reject_duplicate_category([c for c in snapshot.categories if c != old_name], new_name)
    return replace(
        snapshot,
        categories=tuple(new_name if c == old_name else c for c in snapshot.categories),
        products=tuple(
            replace(p, category=new_name) if p.category == old_name else p for p in snapshot.products
        ),
    )


def delete_category(snapshot: StoreSnapshot, name: str) -> StoreSnapshot:
    """Retire a category, parking its products under ``deleted category <name>``.

    The parked entry takes the deleted category's position so every other
    category keeps its barcode band.
    """

    _require_known_category(snapshot.categories, name)
    others = [c for c in snapshot.categories if c != name]
    parked = _parked_category_name(others, name)
    log.info("Deleted category '%s'; products moved to '%s'", name, parked)
    return replace(
        snapshot,
        categories=tuple(parked if c == name else c for c in snapshot.categories),
        products=tuple(replace(p, category=parked) if p.category == name else p for p in snapshot.products),
    )


def _parked_category_name(categories: Sequence[str], name: str) -> str:
    taken = {c.lower() for c in categories}
    parked = f"{DELETED_CATEGORY_PREFIX}{name}"
    suffix = 2
    candidate = parked
    while candidate.lower() in taken:
        candidate = f"{parked} ({suffix})"
        suffix += 1
    return candidate


def add_product(
    snapshot: StoreSnapshot,
    *,
    name: str,
    category: str,
    buy_price: MoneyLike,
    sell_price: MoneyLike,
    stock: int = 0,
    barcode: Optional[str] = None,
    product_id: Optional[str] = None,
    hsn: Optional[str] = None,
    image: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[StoreSnapshot, Product]:
    """Append a catalog item with zero units sold.

    A product without a barcode receives the next generated barcode of its
    category.

    Raises:
        PayloadError: If the name, prices or stock are invalid.
        UniquenessError: If the identifier or barcode is already in use.
    """

    cleaned_name = _require_product_name(name)
    prices = _require_prices(buy_price, sell_price)
    _require_stock(stock)

    product_id = product_id or generate_transaction_id(prefix="P", when=_resolve_timestamp(now))
    if product_id in snapshot.products_by_id():
        raise UniquenessError(
            ErrorCode.DUPLICATE_PRODUCT_ID,
            f"Product id '{product_id}' is already in use",
            {"field": "product_id", "product_id": product_id},
        )

    barcode = (barcode or "").strip() or next_barcode(category, snapshot.products, snapshot.categories)
    _reject_duplicate_barcode(snapshot.products, barcode)

    product = Product(
        product_id=product_id,
        name=cleaned_name,
        barcode=barcode,
        category=category,
        buy_price=prices["buy_price"],
        sell_price=prices["sell_price"],
        stock=stock,
        total_sold=0,
        hsn=hsn,
        image=image,
    )
    log.info("Added product '%s' (%s) with barcode '%s'", product_id, product.name, barcode)
    return replace(snapshot, products=(*snapshot.products, product)), product


def update_product(
    snapshot: StoreSnapshot,
    product_id: str,
    *,
    name: Optional[str] = None,
    category: Optional[str] = None,
    buy_price: Optional[MoneyLike] = None,
    sell_price: Optional[MoneyLike] = None,
    stock: Optional[int] = None,
    barcode: Optional[str] = None,
    hsn: Optional[str] = None,
    image: Optional[str] = None,
) -> Tuple[StoreSnapshot, Product]:
    """Edit a catalog item in place; ``None`` leaves a field unchanged.

    Moving a product to another category re-allocates its barcode from the
    new category's band when the current barcode is generated or empty. An
    explicit ``barcode`` always wins. Units sold are never edited here.

    Raises:
        InventoryError: If ``product_id`` is unknown.
        PayloadError: If a new name, price or stock is invalid.
        UniquenessError: If the barcode is used by another product.
    """

    current = snapshot.products_by_id().get(product_id)
    if current is None:
        log.warning("Update requested for unknown product '%s'", product_id)
        raise InventoryError(
            ErrorCode.UNKNOWN_PRODUCT,
            f"Unknown product id: {product_id}",
            {"field": "product_id", "product_id": product_id},
        )

    others = [p for p in snapshot.products if p.product_id != product_id]
    prices = _require_prices(
        current.buy_price if buy_price is None else buy_price,
        current.sell_price if sell_price is None else sell_price,
    )
    new_stock = current.stock if stock is None else stock
    _require_stock(new_stock)
    new_category = current.category if category is None else category

    new_barcode = (barcode or "").strip()
    if not new_barcode:
        new_barcode = current.barcode or ""
        regenerate = not new_barcode or new_barcode.startswith(GENERATED_BARCODE_PREFIX)
        if new_category != current.category and regenerate:
            new_barcode = next_barcode(new_category, others, snapshot.categories)
    if new_barcode:
        _reject_duplicate_barcode(others, new_barcode)

    updated = replace(
        current,
        name=current.name if name is None else _require_product_name(name),
        category=new_category,
        buy_price=prices["buy_price"],
        sell_price=prices["sell_price"],
        stock=new_stock,
        barcode=new_barcode,
        hsn=current.hsn if hsn is None else hsn,
        image=current.image if image is None else image,
    )
    if updated.barcode != current.barcode:
        log.info("Product '%s' barcode changed from '%s' to '%s'", product_id, current.barcode, updated.barcode)
    log.info("Updated product '%s' (%s)", product_id, updated.name)
    return (
        replace(
            snapshot,
            products=tuple(updated if p.product_id == product_id else p for p in snapshot.products),
        ),
        updated,
    )


def delete_product(snapshot: StoreSnapshot, product_id: str) -> StoreSnapshot:
    """Remove a catalog item; transactions that sold it keep their line items."""

    if product_id not in snapshot.products_by_id():
        raise InventoryError(
            ErrorCode.UNKNOWN_PRODUCT,
            f"Unknown product id: {product_id}",
            {"field": "product_id", "product_id": product_id},
        )
    log.info("Deleted product '%s'", product_id)
    return replace(snapshot, products=tuple(p for p in snapshot.products if p.product_id != product_id))


def _require_product_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise PayloadError(ErrorCode.INVALID_PRODUCT, "Product name is required", {"field": "name"})
    return cleaned


def _require_prices(buy_price: MoneyLike, sell_price: MoneyLike) -> Dict[str, Decimal]:
    prices = {
        "buy_price": require_money(buy_price, "buy_price", ErrorCode.INVALID_PRODUCT, error=PayloadError),
        "sell_price": require_money(sell_price, "sell_price", ErrorCode.INVALID_PRODUCT, error=PayloadError),
    }
    for field_name, value in prices.items():
        if value < 0:
            raise PayloadError(
                ErrorCode.INVALID_PRODUCT,
                f"Product {field_name.replace('_', ' ')} cannot be negative",
                {"field": field_name, "actual": str(value)},
            )
    return prices


def _require_stock(stock: object) -> None:
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise PayloadError(
            ErrorCode.INVALID_PRODUCT,
            "Product stock must be a whole number of zero or more",
            {"field": "stock", "actual": str(stock)},
        )


def _reject_duplicate_barcode(products: Sequence[Product], barcode: str) -> None:
    for existing in products:
        if existing.barcode == barcode:
            raise UniquenessError(
                ErrorCode.DUPLICATE_BARCODE,
                f"Barcode '{barcode}' is already used by '{existing.name}'",
                {"field": "barcode", "barcode": barcode, "existing_product_id": existing.product_id},
            )


def _require_category_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise PayloadError(ErrorCode.INVALID_CATEGORY, "Category name is required", {"field": "name"})
    return cleaned


def _require_known_category(categories: Sequence[str], name: str) -> None:
    if name not in categories:
        raise MissingReferenceError(
            ErrorCode.UNKNOWN_CATEGORY,
            f"Unknown category: {name}",
            {"field": "category", "category": name},
        )


def _reject_duplicate_category(categories: Sequence[str], name: str) -> None:
    lowered = name.lower()
    if any(existing.lower() == lowered for existing in categories):
        raise UniquenessError(
            ErrorCode.DUPLICATE_CATEGORY,
            f"Category '{name}' already exists",
            {"field": "name", "category": name},
        )


__all__ = [
    "RuntimeContext",
    "generate_transaction_id",
    "load_runtime_context",
    "ensure_schema_version",
    "load_snapshot",
    "commit_snapshot",
    "persist_context",
    "refresh_context",
    "compose_transaction",
    "compose_payment",
    "process_transaction",
    "register_customer",
    "outstanding_dues",
    "add_upfront_order",
    "collect_upfront_payment",
    "add_category",
    "rename_category",
    "delete_category",
    "add_product",
    "update_product",
    "delete_product",
    "delete_customer",
]
