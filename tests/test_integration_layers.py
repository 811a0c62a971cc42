"""Integration tests describing the end-to-end StockFlow workflows.

These scenarios document how setup, the snapshot store and the ledger rules
collaborate: a workbook is created from config, transactions are processed in
memory, and the results survive a save and reload.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from stockflow import cli, core_logic, setup_excel
from stockflow.constants import ExcessMode, PaymentMethod, TransactionType
from stockflow.errors import BusinessRuleViolation, ErrorCode
from stockflow.models import LineItem


def _write_config(directory: Path, *, categories: str = "Snacks, Drinks") -> Path:
    config_path = directory / "config.ini"
    config_path.write_text(
        "[System]\n"
        "DataFile = data/store.xlsx\n"
        "StoreName = Corner Shop\n"
        "SchemaVersion = 1.0.0\n\n"
        "[Defaults]\n"
        "TaxRate = 5\n"
        f"Categories = {categories}\n"
    )
    return config_path


def _items(snapshot, *specs) -> list[LineItem]:
    return cli.build_line_items(snapshot, [(pid, qty, Decimal("0")) for pid, qty in specs])


def test_setup_main_creates_workbook_from_config(tmp_path, capsys):
    """The setup script seeds categories and refuses to overwrite."""

    config_path = _write_config(tmp_path)

    assert setup_excel.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "data" / "store.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_setup_main_reports_missing_config(tmp_path, capsys):
    """A missing config file is reported, not raised."""

    assert setup_excel.main(["--config", str(tmp_path / "missing.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out


def test_sale_return_and_payment_lifecycle(tmp_path):
    """Walk a customer through credit sale, return and settlement on disk."""

    config_path = _write_config(tmp_path)
    setup_excel.run_from_config(config_path)

    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    assert context.settings.default_tax_rate == Decimal("5")

    snapshot = core_logic.load_snapshot(context)
    snapshot, _ = core_logic.add_product(
        snapshot, name="Chai", category="Drinks", buy_price="1.00", sell_price="3.00", stock=10, product_id="P1"
    )
    snapshot, _ = core_logic.register_customer(snapshot, name="Meera", phone="98450 12345", customer_id="C1")
    assert snapshot.products_by_id()["P1"].barcode == "GEN-501"
    core_logic.commit_snapshot(context, snapshot)

    # Persist and reload so each step reads what the previous one wrote.
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)
    snapshot = core_logic.load_snapshot(context)

    sale = core_logic.compose_transaction(
        TransactionType.SALE,
        _items(snapshot, ("P1", 4)),
        tax_rate=context.settings.default_tax_rate,
        customer=snapshot.customers_by_id()["C1"],
        payment_method=PaymentMethod.CREDIT,
        transaction_id="T1",
    )
    assert sale.total == Decimal("12.60")
    snapshot = core_logic.process_transaction(snapshot, sale)

    payment = core_logic.compose_payment(snapshot.customers_by_id()["C1"], "10.00", transaction_id="T2")
    snapshot = core_logic.process_transaction(snapshot, payment)
    assert snapshot.customers_by_id()["C1"].total_due == Decimal("2.60")

    returned = core_logic.compose_transaction(
        TransactionType.RETURN,
        _items(snapshot, ("P1", 1)),
        tax_rate=context.settings.default_tax_rate,
        customer=snapshot.customers_by_id()["C1"],
        return_excess_mode=ExcessMode.STORE_CREDIT,
        transaction_id="T3",
    )
    snapshot = core_logic.process_transaction(snapshot, returned)
    core_logic.commit_snapshot(context, snapshot)
    core_logic.persist_context(context)

    reloaded = core_logic.load_snapshot(core_logic.refresh_context(context))
    customer = reloaded.customers_by_id()["C1"]
    assert customer.total_due == Decimal("0.00")
    assert customer.store_credit_balance == Decimal("0.55")
    assert customer.total_spend == Decimal("9.45")
    assert reloaded.products_by_id()["P1"].stock == 7
    assert reloaded.products_by_id()["P1"].total_sold == 3
    assert [t.transaction_id for t in reloaded.transactions] == ["T3", "T2", "T1"]
    assert reloaded.transactions[0].settlement.applied_to_due == Decimal("2.60")
    assert reloaded.credit_ledger[0].balance_after == Decimal("0.55")


def test_store_credit_is_spent_on_next_sale(runtime_context):
    """Credit issued by a return pays part of a later sale."""

    snapshot = core_logic.load_snapshot(runtime_context)
    snapshot, _ = core_logic.add_product(
        snapshot, name="Widget", category="Snacks", buy_price="2", sell_price="10", stock=5, product_id="P1"
    )
    snapshot, _ = core_logic.register_customer(snapshot, name="Asha", phone="555 0101", customer_id="C1")

    for transaction_type, quantity, txn_id in ((TransactionType.SALE, 2, "T1"), (TransactionType.RETURN, 1, "T2")):
        snapshot = core_logic.process_transaction(
            snapshot,
            core_logic.compose_transaction(
                transaction_type,
                _items(snapshot, ("P1", quantity)),
                customer=snapshot.customers_by_id()["C1"],
                transaction_id=txn_id,
            ),
        )
    assert snapshot.customers_by_id()["C1"].store_credit_balance == Decimal("10.00")

    sale = core_logic.compose_transaction(
        TransactionType.SALE,
        _items(snapshot, ("P1", 1)),
        customer=snapshot.customers_by_id()["C1"],
        use_store_credit=True,
        transaction_id="T3",
    )
    snapshot = core_logic.process_transaction(snapshot, sale)

    assert snapshot.customers_by_id()["C1"].store_credit_balance == Decimal("0.00")
    assert snapshot.transactions[0].store_credit_applied == Decimal("10.00")
    assert [entry.entry_type.value for entry in snapshot.credit_ledger] == ["credit_used", "credit_issued"]


def test_rejected_transaction_keeps_committed_state(runtime_context):
    """A failed transaction leaves the committed snapshot usable."""

    snapshot = core_logic.load_snapshot(runtime_context)
    snapshot, _ = core_logic.add_product(
        snapshot, name="Widget", category="Snacks", buy_price="2", sell_price="10", stock=1, product_id="P1"
    )
    core_logic.commit_snapshot(runtime_context, snapshot)

    oversale = core_logic.compose_transaction(
        TransactionType.SALE, _items(snapshot, ("P1", 2)), transaction_id="T1"
    )
    with pytest.raises(BusinessRuleViolation) as excinfo:
        core_logic.process_transaction(snapshot, oversale)

    assert excinfo.value.code is ErrorCode.OVERSALE_STOCK
    assert core_logic.load_snapshot(runtime_context) is snapshot
    assert core_logic.load_snapshot(runtime_context).products_by_id()["P1"].stock == 1
