"""Shared pytest fixtures and utilities for StockFlow tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stockflow import constants, core_logic, data_manager  # noqa: E402
from stockflow.models import Customer, LineItem, Product, StoreSnapshot  # noqa: E402
from stockflow.setup_excel import create_store_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_CATEGORIES = ("Snacks", "Drinks")
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "TaxRate = {tax_rate}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Workbook and configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized store workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        categories: tuple[str, ...] = DEFAULT_CATEGORIES,
        filename: str = "store_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_store_workbook(workbook_path, categories=categories, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def store_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh store workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        tax_rate: str = "0",
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                tax_rate=tax_rate,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "store_workbook.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# Snapshot builders
# ---------------------------------------------------------------------------


@pytest.fixture
def moment() -> datetime:
    """A fixed point in time used for timestamps and last visits."""

    return datetime(2025, 3, 14, 10, 30, tzinfo=UTC)


@pytest.fixture
def product_factory() -> Callable[..., Product]:
    """Build catalog products with sensible defaults."""

    def _make(
        product_id: str = "P1",
        *,
        name: str = "Widget",
        price: str = "10.00",
        stock: int = 10,
        total_sold: int = 0,
        category: str = "Snacks",
        barcode: str | None = None,
    ) -> Product:
        return Product(
            product_id=product_id,
            name=name,
            barcode=barcode if barcode is not None else f"BC-{product_id}",
            category=category,
            buy_price=Decimal("1.00"),
            sell_price=Decimal(price),
            stock=stock,
            total_sold=total_sold,
        )

    return _make


@pytest.fixture
def customer_factory() -> Callable[..., Customer]:
    """Build customers with configurable balances."""

    def _make(
        customer_id: str = "C1",
        *,
        name: str = "Asha",
        phone: str = "555-0101",
        due: str = "0.00",
        credit: str = "0.00",
        spend: str = "0.00",
        visits: int = 0,
    ) -> Customer:
        return Customer(
            customer_id=customer_id,
            name=name,
            phone=phone,
            total_spend=Decimal(spend),
            total_due=Decimal(due),
            store_credit_balance=Decimal(credit),
            visit_count=visits,
        )

    return _make


@pytest.fixture
def line_item() -> Callable[..., LineItem]:
    """Build a line item from a product and quantity."""

    def _make(product: Product, quantity: int = 1, discount: str = "0") -> LineItem:
        return LineItem(
            product_id=product.product_id,
            name=product.name,
            sell_price=product.sell_price,
            quantity=quantity,
            barcode=product.barcode,
            discount_amount=Decimal(discount),
        )

    return _make


@pytest.fixture
def store(product_factory, customer_factory) -> StoreSnapshot:
    """A small store: two products, one customer, two categories."""

    return StoreSnapshot(
        products=(
            product_factory("P1", name="Widget", price="10.00", stock=10),
            product_factory("P2", name="Gadget", price="4.50", stock=5, category="Drinks"),
        ),
        customers=(customer_factory("C1"),),
        categories=DEFAULT_CATEGORIES,
    )


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="stockflow-cli", description="StockFlow CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")
