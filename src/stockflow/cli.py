"""Command-line entry points for the StockFlow ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into calls on the business layer. Each write command
loads the current snapshot, applies exactly one core operation and hands the
resulting snapshot back to the workbook; the workbook is only saved when the
command succeeds.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, log
from .barcodes import next_barcode
from .constants import ExcessMode, PaymentMethod, TransactionType
from .errors import BusinessRuleViolation, ErrorCode, InventoryError, MissingReferenceError
from .models import LineItem, StoreSnapshot
from .settlement import available_store_credit


ItemSpec = Tuple[str, int, Decimal]


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    writes: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stockflow-cli",
        description="Command-line tools for the StockFlow store workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and returns."""
    specs = {
        "add-category": register_add_category_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "rename-category": register_rename_category_command(subparsers),
        "delete-category": register_delete_category_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "delete-customer": register_delete_customer_command(subparsers),
        "sale": register_sale_command(subparsers),
        "return": register_return_command(subparsers),
        "payment": register_payment_command(subparsers),
        "add-order": register_add_order_command(subparsers),
        "collect-order": register_collect_order_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "customers": register_customers_command(subparsers),
        "dues": register_dues_command(subparsers),
        "ledger": register_ledger_command(subparsers),
        "log": register_log_command(subparsers),
        "next-barcode": register_next_barcode_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Argument types
# ---------------------------------------------------------------------------


def parse_item_spec(value: str) -> ItemSpec:
    """Parse ``PRODUCT_ID:QTY[:DISCOUNT]`` into its parts."""

    parts = value.split(":")
    if len(parts) not in (2, 3) or not parts[0].strip():
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QTY[:DISCOUNT], got '{value}'")
    try:
        quantity = int(parts[1])
        discount = Decimal(parts[2]) if len(parts) == 3 else Decimal("0")
    except (ValueError, InvalidOperation) as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity or discount in '{value}'") from exc
    return parts[0].strip(), quantity, discount


def parse_money(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Not a valid amount: '{value}'") from exc
    if not amount.is_finite():
        raise argparse.ArgumentTypeError(f"Not a valid amount: '{value}'")
    return amount


def build_line_items(snapshot: StoreSnapshot, specs: Iterable[ItemSpec]) -> List[LineItem]:
    """Resolve item specs against the catalog, taking unit prices from it.

    Raises:
        InventoryError: If a product id is not in the catalog.
    """

    catalog = snapshot.products_by_id()
    items: List[LineItem] = []
    for product_id, quantity, discount in specs:
        product = catalog.get(product_id)
        if product is None:
            raise InventoryError(
                ErrorCode.UNKNOWN_PRODUCT,
                f"Unknown product id: {product_id}",
                {"item_id": product_id},
            )
        items.append(
            LineItem(
                product_id=product.product_id,
                name=product.name,
                sell_price=product.sell_price,
                quantity=quantity,
                barcode=product.barcode,
                discount_amount=discount,
            )
        )
    return items


def _require_customer(snapshot: StoreSnapshot, customer_id: Optional[str]):
    if not customer_id:
        return None
    customer = snapshot.customers_by_id().get(customer_id)
    if customer is None:
        raise MissingReferenceError(
            ErrorCode.UNKNOWN_CUSTOMER,
            f"Unknown customer id: {customer_id}",
            {"field": "customer_id", "customer_id": customer_id},
        )
    return customer


# ---------------------------------------------------------------------------
# Write commands
# ---------------------------------------------------------------------------


def register_add_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-category``."""
    name = "add-category"
    help_text = "Append a product category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_category, writes=True)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", required=True)
        parser.add_argument("--buy-price", type=parse_money, required=True)
        parser.add_argument("--sell-price", type=parse_money, required=True)
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--barcode", default=None, help="Leave empty to generate a GEN- barcode.")
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--hsn", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product, writes=True)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a new customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", required=True)
        parser.add_argument("--customer-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer, writes=True)


def register_rename_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rename-category``."""
    name = "rename-category"
    help_text = "Rename a category and move its products along."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--new-name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rename_category, writes=True)


def register_delete_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-category``."""
    name = "delete-category"
    help_text = "Retire a category; its products are parked, not deleted."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_category, writes=True)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Edit a product; omitted options keep their current value."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--buy-price", type=parse_money, default=None)
        parser.add_argument("--sell-price", type=parse_money, default=None)
        parser.add_argument("--stock", type=int, default=None)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--hsn", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product, writes=True)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product, writes=True)


def register_delete_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-customer``."""
    name = "delete-customer"
    help_text = "Remove a customer record; history is kept."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_customer, writes=True)


def _add_cart_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        type=parse_item_spec,
        required=True,
        metavar="PRODUCT_ID:QTY[:DISCOUNT]",
    )
    parser.add_argument("--customer-id", default=None)
    parser.add_argument("--tax-rate", type=parse_money, default=None, help="Percent; defaults to config TaxRate.")
    parser.add_argument("--tax-label", default=None)
    parser.add_argument(
        "--payment-method",
        choices=[member.value for member in PaymentMethod],
        default=PaymentMethod.CASH.value,
    )
    parser.add_argument("--transaction-id", default=None)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_cart_arguments(parser)
        parser.add_argument("--use-store-credit", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, writes=True)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return``."""
    name = "return"
    help_text = "Record a return of previously sold items."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_cart_arguments(parser)
        parser.add_argument(
            "--excess-mode",
            choices=[member.value for member in ExcessMode],
            default=ExcessMode.STORE_CREDIT.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return, writes=True)


def register_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payment``."""
    name = "payment"
    help_text = "Collect a payment against a customer's due."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", type=parse_money, required=True)
        parser.add_argument(
            "--payment-method",
            choices=[PaymentMethod.CASH.value, PaymentMethod.ONLINE.value],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--transaction-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payment, writes=True)


def register_add_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-order``."""
    name = "add-order"
    help_text = "Record an upfront order with an optional advance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--description", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--total-cost", type=parse_money, required=True)
        parser.add_argument("--advance", type=parse_money, default=Decimal("0"))
        parser.add_argument("--order-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_order, writes=True)


def register_collect_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``collect-order``."""
    name = "collect-order"
    help_text = "Collect a further payment on an upfront order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.add_argument("--amount", type=parse_money, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_collect_order, writes=True)


# ---------------------------------------------------------------------------
# Read commands
# ---------------------------------------------------------------------------


def _simple_read_command(name: str, help_text: str, execute) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    return _simple_read_command("stock", "Display current stock levels.", run_stock_report)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    return _simple_read_command("customers", "Display customers with their balances.", run_customers_report)


def register_dues_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dues``."""
    return _simple_read_command("dues", "Display outstanding customer dues.", run_dues_report)


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    name = "ledger"
    help_text = "Display the store-credit ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_ledger_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the transaction history, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_next_barcode_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``next-barcode``."""
    name = "next-barcode"
    help_text = "Show the next generated barcode for a category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_next_barcode)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    core_logic.commit_snapshot(context, core_logic.add_category(snapshot, args.name))
    print(f"Added category '{args.name.strip()}'")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    snapshot = core_logic.load_snapshot(context)
    updated, product = core_logic.add_product(
        snapshot,
        name=args.name,
        category=args.category,
        buy_price=args.buy_price,
        sell_price=args.sell_price,
        stock=args.stock,
        barcode=args.barcode,
        product_id=args.product_id,
        hsn=args.hsn,
    )
    core_logic.commit_snapshot(context, updated)
    print(f"Added product {product.product_id} '{product.name}' with barcode {product.barcode}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow in the BLL."""
    snapshot = core_logic.load_snapshot(context)
    updated, customer = core_logic.register_customer(
        snapshot,
        name=args.name,
        phone=args.phone,
        customer_id=args.customer_id,
    )
    core_logic.commit_snapshot(context, updated)
    print(f"Registered customer {customer.customer_id} '{customer.name}'")
    return 0


def run_rename_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    core_logic.commit_snapshot(context, core_logic.rename_category(snapshot, args.name, args.new_name))
    print(f"Renamed category '{args.name}' to '{args.new_name.strip()}'")
    return 0


def run_delete_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    updated = core_logic.delete_category(snapshot, args.name)
    core_logic.commit_snapshot(context, updated)
    position = snapshot.categories.index(args.name)
    print(f"Deleted category '{args.name}'; products moved to '{updated.categories[position]}'")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    snapshot = core_logic.load_snapshot(context)
    updated, product = core_logic.update_product(
        snapshot,
        args.product_id,
        name=args.name,
        category=args.category,
        buy_price=args.buy_price,
        sell_price=args.sell_price,
        stock=args.stock,
        barcode=args.barcode,
        hsn=args.hsn,
    )
    core_logic.commit_snapshot(context, updated)
    print(f"Updated product {product.product_id} '{product.name}' with barcode {product.barcode}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    core_logic.commit_snapshot(context, core_logic.delete_product(snapshot, args.product_id))
    print(f"Deleted product {args.product_id}")
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    core_logic.commit_snapshot(context, core_logic.delete_customer(snapshot, args.customer_id))
    print(f"Deleted customer {args.customer_id}")
    return 0


def _run_cart(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    transaction_type: TransactionType,
) -> int:
    snapshot = core_logic.load_snapshot(context)
    customer = _require_customer(snapshot, args.customer_id)
    tax_rate = args.tax_rate if args.tax_rate is not None else context.settings.default_tax_rate
    transaction = core_logic.compose_transaction(
        transaction_type,
        build_line_items(snapshot, args.items),
        tax_rate=tax_rate,
        tax_label=args.tax_label,
        customer=customer,
        payment_method=PaymentMethod(args.payment_method),
        use_store_credit=getattr(args, "use_store_credit", False),
        return_excess_mode=getattr(args, "excess_mode", None),
        transaction_id=args.transaction_id,
    )
    updated = core_logic.process_transaction(snapshot, transaction)
    core_logic.commit_snapshot(context, updated)

    recorded = updated.transactions[0]
    print(f"Recorded {transaction_type.value} {recorded.transaction_id}: total {recorded.total}")
    if recorded.store_credit_applied:
        print(f"  store credit applied: {recorded.store_credit_applied}")
    if recorded.settlement is not None:
        settlement = recorded.settlement
        print(
            f"  applied to due: {settlement.applied_to_due}, "
            f"cash refund: {settlement.refunded_cash}, "
            f"store credit: {settlement.credited_amount}"
        )
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    return _run_cart(context, args, TransactionType.SALE)


def run_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return workflow via the BLL."""
    return _run_cart(context, args, TransactionType.RETURN)


def run_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the due-collection workflow via the BLL."""
    snapshot = core_logic.load_snapshot(context)
    customer = _require_customer(snapshot, args.customer_id)
    transaction = core_logic.compose_payment(
        customer,
        args.amount,
        payment_method=PaymentMethod(args.payment_method),
        transaction_id=args.transaction_id,
    )
    updated = core_logic.process_transaction(snapshot, transaction)
    core_logic.commit_snapshot(context, updated)
    remaining = updated.customers_by_id()[customer.customer_id].total_due
    print(f"Recorded payment {transaction.transaction_id}: {transaction.total} (due now {remaining})")
    return 0


def run_add_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    updated, order = core_logic.add_upfront_order(
        snapshot,
        customer_id=args.customer_id,
        product_description=args.description,
        quantity=args.quantity,
        total_cost=args.total_cost,
        advance_paid=args.advance,
        order_id=args.order_id,
    )
    core_logic.commit_snapshot(context, updated)
    print(f"Recorded upfront order {order.order_id}: remaining {order.remaining_amount} ({order.status.value})")
    return 0


def run_collect_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    updated = core_logic.collect_upfront_payment(snapshot, args.order_id, args.amount)
    core_logic.commit_snapshot(context, updated)
    order = updated.orders_by_id()[args.order_id]
    print(f"Upfront order {order.order_id}: remaining {order.remaining_amount} ({order.status.value})")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every product with its stock and units sold."""
    for product in core_logic.load_snapshot(context).products:
        print(
            f"{product.product_id}\t{product.barcode}\t{product.name}\t{product.category}\t"
            f"stock={product.stock}\tsold={product.total_sold}"
        )
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    for customer in snapshot.customers:
        credit = available_store_credit(customer, snapshot.credit_ledger)
        print(
            f"{customer.customer_id}\t{customer.name}\t{customer.phone}\t"
            f"spend={customer.total_spend}\tdue={customer.total_due}\tcredit={credit}\t"
            f"visits={customer.visit_count}"
        )
    return 0


def run_dues_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for customer in core_logic.outstanding_dues(core_logic.load_snapshot(context)):
        print(f"{customer.customer_id}\t{customer.name}\t{customer.phone}\tdue={customer.total_due}")
    return 0


def run_ledger_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for entry in core_logic.load_snapshot(context).credit_ledger:
        if args.customer_id and entry.customer_id != args.customer_id:
            continue
        print(
            f"{entry.timestamp.isoformat() if entry.timestamp else ''}\t{entry.customer_id}\t"
            f"{entry.entry_type.value}\t{entry.amount}\tbalance={entry.balance_after}\t{entry.transaction_id}"
        )
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the transaction history, newest first."""
    transactions = core_logic.load_snapshot(context).transactions
    if args.limit is not None:
        transactions = transactions[: max(args.limit, 0)]
    for transaction in transactions:
        print(
            f"{transaction.transaction_id}\t{transaction.timestamp.isoformat() if transaction.timestamp else ''}\t"
            f"{transaction.transaction_type.value}\t{transaction.total}\t{transaction.customer_id or '-'}"
        )
    return 0


def run_next_barcode(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.load_snapshot(context)
    print(next_barcode(args.category, snapshot.products, snapshot.categories))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("[%s] %s", error.code.value, error.message)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].writes:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


__all__ = [
    "CommandSpec",
    "build_parser",
    "configure_subcommands",
    "parse_item_spec",
    "build_line_items",
    "dispatch_command",
    "build_command_table",
    "handle_cli_error",
    "main",
]
