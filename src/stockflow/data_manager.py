"""Data access layer for the StockFlow ledger.

This module provides low-level helpers that read from and write to the store
workbook. Business logic belongs in :mod:`stockflow.core_logic`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Snapshot mapping: turning worksheet rows into a
   :class:`~stockflow.models.StoreSnapshot` and writing a snapshot back.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .constants import CreditEntryType, ExcessMode, PaymentMethod, SheetName, TransactionType, UpfrontOrderStatus
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
from .money import ZERO, quantize_money


CONFIG_FILE_NAME = "config.ini"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Name",
        "Barcode",
        "Category",
        "BuyPrice",
        "SellPrice",
        "Stock",
        "TotalSold",
        "HSN",
        "Image",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "Name",
        "Phone",
        "TotalSpend",
        "TotalDue",
        "StoreCreditBalance",
        "VisitCount",
        "LastVisit",
    ],
    SheetName.TRANSACTIONS.value: [
        "TransactionID",
        "Timestamp",
        "TransactionType",
        "CustomerID",
        "CustomerName",
        "PaymentMethod",
        "Subtotal",
        "Discount",
        "TaxRate",
        "Tax",
        "TaxLabel",
        "Total",
        "UseStoreCredit",
        "ReturnExcessMode",
        "StoreCreditApplied",
        "AppliedToDue",
        "RefundedCash",
        "CreditedAmount",
        "SettlementMode",
    ],
    SheetName.TRANSACTION_ITEMS.value: [
        "TransactionID",
        "LineNumber",
        "ProductID",
        "Name",
        "Barcode",
        "SellPrice",
        "Quantity",
        "DiscountAmount",
    ],
    SheetName.CREDIT_LEDGER.value: [
        "EntryID",
        "CustomerID",
        "TransactionID",
        "Timestamp",
        "EntryType",
        "Amount",
        "BalanceAfter",
        "Note",
    ],
    SheetName.UPFRONT_ORDERS.value: [
        "OrderID",
        "CustomerID",
        "ProductDescription",
        "Quantity",
        "TotalCost",
        "AdvancePaid",
        "RemainingAmount",
        "Status",
        "CreatedAt",
    ],
    SheetName.CATEGORIES.value: [
        "Name",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    default_tax_rate: Decimal = Decimal("0")


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` must define ``DataFile``, ``StoreName`` and ``SchemaVersion``.
    ``[Defaults] TaxRate`` is optional and defaults to zero. Relative data file
    paths are expanded against ``base_path`` (or the current working directory
    when omitted) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory anchoring a relative ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``TaxRate`` is not a non-negative number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    tax_raw = parser.get("Defaults", "TaxRate", fallback="0").strip() or "0"
    try:
        default_tax_rate = Decimal(tax_raw)
    except ArithmeticError as exc:
        raise ValueError(f"Invalid default tax rate: {tax_raw}") from exc
    if not default_tax_rate.is_finite() or default_tax_rate < 0:
        raise ValueError(f"Invalid default tax rate: {tax_raw}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        default_tax_rate=default_tax_rate,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Snapshot mapping
# ---------------------------------------------------------------------------


def load_snapshot(workbook: Workbook) -> StoreSnapshot:
    """Read every sheet of ``workbook`` into a :class:`StoreSnapshot`.

    Line items are attached to their transactions by ``TransactionID`` in
    ``LineNumber`` order. Row order on the ``Transactions`` and
    ``CreditLedger`` sheets is kept, so both stay newest-first.

    Raises:
        KeyError: If one of the expected worksheets is missing.
    """

    items_by_transaction: Dict[str, List[tuple[int, LineItem]]] = {}
    for raw in _iter_rows(workbook, SheetName.TRANSACTION_ITEMS):
        transaction_id, line_number, item = deserialize_line_item(raw)
        items_by_transaction.setdefault(transaction_id, []).append((line_number, item))

    transactions = []
    for raw in _iter_rows(workbook, SheetName.TRANSACTIONS):
        lines = sorted(items_by_transaction.get(str(raw[0]), []), key=lambda pair: pair[0])
        transactions.append(deserialize_transaction(raw, [item for _, item in lines]))

    snapshot = StoreSnapshot(
        products=tuple(deserialize_product(raw) for raw in _iter_rows(workbook, SheetName.PRODUCTS)),
        customers=tuple(deserialize_customer(raw) for raw in _iter_rows(workbook, SheetName.CUSTOMERS)),
        transactions=tuple(transactions),
        credit_ledger=tuple(
            deserialize_credit_entry(raw) for raw in _iter_rows(workbook, SheetName.CREDIT_LEDGER)
        ),
        categories=tuple(str(raw[0]) for raw in _iter_rows(workbook, SheetName.CATEGORIES)),
        upfront_orders=tuple(
            deserialize_upfront_order(raw) for raw in _iter_rows(workbook, SheetName.UPFRONT_ORDERS)
        ),
    )
    return snapshot


def write_snapshot(workbook: Workbook, snapshot: StoreSnapshot) -> None:
    """Replace the data rows of every sheet with the contents of ``snapshot``.

    Header rows are left in place. The workbook is modified in memory only;
    call :func:`save_workbook` to persist it.

    Raises:
        KeyError: If one of the expected worksheets is missing.
    """

    item_rows: List[list[object]] = []
    for transaction in snapshot.transactions:
        for line_number, item in enumerate(transaction.items, start=1):
            item_rows.append(serialize_line_item(transaction.transaction_id, line_number, item))

    _replace_rows(workbook, SheetName.PRODUCTS, [serialize_product(p) for p in snapshot.products])
    _replace_rows(workbook, SheetName.CUSTOMERS, [serialize_customer(c) for c in snapshot.customers])
    _replace_rows(workbook, SheetName.TRANSACTIONS, [serialize_transaction(t) for t in snapshot.transactions])
    _replace_rows(workbook, SheetName.TRANSACTION_ITEMS, item_rows)
    _replace_rows(workbook, SheetName.CREDIT_LEDGER, [serialize_credit_entry(e) for e in snapshot.credit_ledger])
    _replace_rows(workbook, SheetName.UPFRONT_ORDERS, [serialize_upfront_order(o) for o in snapshot.upfront_orders])
    _replace_rows(workbook, SheetName.CATEGORIES, [[name] for name in snapshot.categories])
    log.debug("Wrote snapshot to workbook (%d transactions)", len(snapshot.transactions))


def _sheet(workbook: Workbook, sheet: SheetName) -> Worksheet:
    if sheet.value not in workbook.sheetnames:
        raise KeyError(f"Worksheet not found: {sheet.value}")
    return workbook[sheet.value]


def _iter_rows(workbook: Workbook, sheet: SheetName) -> Iterable[tuple]:
    for raw in _sheet(workbook, sheet).iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield _pad(raw, len(SHEET_COLUMNS[sheet.value]))


def _replace_rows(workbook: Workbook, sheet: SheetName, rows: Iterable[list[object]]) -> None:
    worksheet = _sheet(workbook, sheet)
    if worksheet.max_row > 1:
        worksheet.delete_rows(2, worksheet.max_row - 1)
    for row in rows:
        worksheet.append(row)


def _pad(raw: Sequence[object], width: int) -> tuple:
    values = tuple(raw[:width])
    return values + (None,) * (width - len(values))


# ---------------------------------------------------------------------------
# Cell conversions
# ---------------------------------------------------------------------------


def _money(raw: object) -> Decimal:
    if raw is None or raw == "":
        return ZERO
    return quantize_money(Decimal(str(raw)))


def _decimal(raw: object) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    return Decimal(str(raw))


def _int(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def _text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw)
    return text if text else None


def _timestamp(raw: object) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _enum_value(value: object) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", str(value))


# ---------------------------------------------------------------------------
# Row serializers
# ---------------------------------------------------------------------------


def serialize_product(record: Product) -> list[object]:
    """Convert a product into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.name,
        record.barcode,
        record.category,
        record.buy_price,
        record.sell_price,
        record.stock,
        record.total_sold,
        record.hsn,
        record.image,
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw ``Products`` row into a :class:`Product`.

    Identifier, name and barcode are coerced to ``str`` so that values Excel
    interpreted as numbers still compare equal to their text form.
    """

    (product_id, name, barcode, category, buy_raw, sell_raw, stock, total_sold, hsn, image) = raw_row
    return Product(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        barcode=str(barcode) if barcode is not None else "",
        category=str(category) if category is not None else "",
        buy_price=_money(buy_raw),
        sell_price=_money(sell_raw),
        stock=_int(stock),
        total_sold=_int(total_sold),
        hsn=_text(hsn),
        image=_text(image),
    )


def serialize_customer(record: Customer) -> list[object]:
    return [
        record.customer_id,
        record.name,
        record.phone,
        record.total_spend,
        record.total_due,
        record.store_credit_balance,
        record.visit_count,
        _iso(record.last_visit),
    ]


def deserialize_customer(raw_row: Sequence[object]) -> Customer:
    (customer_id, name, phone, spend, due, credit, visits, last_visit) = raw_row
    return Customer(
        customer_id=str(customer_id),
        name=str(name) if name is not None else "",
        phone=str(phone) if phone is not None else "",
        total_spend=_money(spend),
        total_due=_money(due),
        store_credit_balance=_money(credit),
        visit_count=_int(visits),
        last_visit=_timestamp(last_visit),
    )


def serialize_transaction(record: Transaction) -> list[object]:
    """Convert a transaction header into the ``Transactions`` column order.

    Line items are written separately by :func:`serialize_line_item`. The
    settlement columns stay blank for transactions without a settlement.
    """

    settlement = record.settlement
    return [
        record.transaction_id,
        _iso(record.timestamp),
        _enum_value(record.transaction_type),
        record.customer_id,
        record.customer_name,
        _enum_value(record.payment_method),
        record.subtotal,
        record.discount,
        record.tax_rate,
        record.tax,
        record.tax_label,
        record.total,
        bool(record.use_store_credit),
        _enum_value(record.return_excess_mode),
        record.store_credit_applied,
        settlement.applied_to_due if settlement else None,
        settlement.refunded_cash if settlement else None,
        settlement.credited_amount if settlement else None,
        _enum_value(settlement.excess_mode) if settlement else None,
    ]


def deserialize_transaction(raw_row: Sequence[object], items: Sequence[LineItem] = ()) -> Transaction:
    """Convert a raw ``Transactions`` row plus its line items into a record.

    Args:
        raw_row (Sequence[object]): Cell values in worksheet order.
        items (Sequence[LineItem]): Line items already read from the
            ``TransactionItems`` sheet for this transaction.

    Returns:
        Transaction: Record with money columns as quantized
            :class:`~decimal.Decimal` values and timestamps parsed from ISO
            text.
    """

    (
        transaction_id,
        timestamp,
        transaction_type,
        customer_id,
        customer_name,
        payment_method,
        subtotal,
        discount,
        tax_rate,
        tax,
        tax_label,
        total,
        use_store_credit,
        return_excess_mode,
        store_credit_applied,
        applied_to_due,
        refunded_cash,
        credited_amount,
        settlement_mode,
    ) = raw_row

    settlement = None
    if applied_to_due is not None:
        settlement = ReturnSettlement(
            applied_to_due=_money(applied_to_due),
            refunded_cash=_money(refunded_cash),
            credited_amount=_money(credited_amount),
            excess_mode=ExcessMode.parse(settlement_mode),
        )

    return Transaction(
        transaction_id=str(transaction_id),
        timestamp=_timestamp(timestamp),
        transaction_type=TransactionType(str(transaction_type)),
        total=_money(total),
        items=tuple(items),
        subtotal=_money(subtotal),
        discount=_money(discount),
        tax_rate=_decimal(tax_rate),
        tax=_money(tax),
        tax_label=_text(tax_label),
        customer_id=_text(customer_id),
        customer_name=_text(customer_name),
        payment_method=PaymentMethod(str(payment_method)) if payment_method else None,
        use_store_credit=bool(use_store_credit),
        return_excess_mode=ExcessMode.parse(return_excess_mode) if return_excess_mode else None,
        settlement=settlement,
        store_credit_applied=_money(store_credit_applied),
    )


def serialize_line_item(transaction_id: str, line_number: int, record: LineItem) -> list[object]:
    return [
        transaction_id,
        line_number,
        record.product_id,
        record.name,
        record.barcode,
        record.sell_price,
        record.quantity,
        record.discount_amount,
    ]


def deserialize_line_item(raw_row: Sequence[object]) -> tuple[str, int, LineItem]:
    """Return ``(transaction_id, line_number, item)`` for a ``TransactionItems`` row."""

    (transaction_id, line_number, product_id, name, barcode, sell_price, quantity, discount) = raw_row
    item = LineItem(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        sell_price=_money(sell_price),
        quantity=_int(quantity),
        barcode=str(barcode) if barcode is not None else "",
        discount_amount=_money(discount),
    )
    return str(transaction_id), _int(line_number), item


def serialize_credit_entry(record: CreditLedgerEntry) -> list[object]:
    return [
        record.entry_id,
        record.customer_id,
        record.transaction_id,
        _iso(record.timestamp),
        _enum_value(record.entry_type),
        record.amount,
        record.balance_after,
        record.note,
    ]


def deserialize_credit_entry(raw_row: Sequence[object]) -> CreditLedgerEntry:
    (entry_id, customer_id, transaction_id, timestamp, entry_type, amount, balance_after, note) = raw_row
    return CreditLedgerEntry(
        entry_id=str(entry_id),
        customer_id=str(customer_id),
        transaction_id=str(transaction_id),
        timestamp=_timestamp(timestamp),  # type: ignore[arg-type]
        entry_type=CreditEntryType(str(entry_type)),
        amount=_money(amount),
        balance_after=_money(balance_after),
        note=str(note) if note is not None else "",
    )


def serialize_upfront_order(record: UpfrontOrder) -> list[object]:
    return [
        record.order_id,
        record.customer_id,
        record.product_description,
        record.quantity,
        record.total_cost,
        record.advance_paid,
        record.remaining_amount,
        _enum_value(record.status),
        _iso(record.created_at),
    ]


def deserialize_upfront_order(raw_row: Sequence[object]) -> UpfrontOrder:
    (order_id, customer_id, description, quantity, total_cost, advance, remaining, status, created_at) = raw_row
    return UpfrontOrder(
        order_id=str(order_id),
        customer_id=str(customer_id),
        product_description=str(description) if description is not None else "",
        quantity=_int(quantity),
        total_cost=_money(total_cost),
        advance_paid=_money(advance),
        remaining_amount=_money(remaining),
        status=UpfrontOrderStatus(str(status)),
        created_at=_timestamp(created_at),
    )


__all__ = [
    "CONFIG_FILE_NAME",
    "SHEET_COLUMNS",
    "ConfigSettings",
    "find_config_file",
    "read_config",
    "parse_settings",
    "open_workbook",
    "save_workbook",
    "refresh_workbook",
    "load_snapshot",
    "write_snapshot",
    "serialize_product",
    "deserialize_product",
    "serialize_customer",
    "deserialize_customer",
    "serialize_transaction",
    "deserialize_transaction",
    "serialize_line_item",
    "deserialize_line_item",
    "serialize_credit_entry",
    "deserialize_credit_entry",
    "serialize_upfront_order",
    "deserialize_upfront_order",
]
