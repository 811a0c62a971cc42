"""Unit tests for return settlement and store-credit arithmetic."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from stockflow import settlement
from stockflow.constants import CreditEntryType, ExcessMode
from stockflow.errors import ErrorCode, SettlementMismatchError
from stockflow.models import CreditLedgerEntry, ReturnSettlement


def test_return_clears_due_before_issuing_credit():
    """A 3.15 return against a 1.58 due applies 1.58 and credits 1.57."""

    result = settlement.resolve_return_settlement("3.15", "1.58")

    assert result.applied_to_due == Decimal("1.58")
    assert result.credited_amount == Decimal("1.57")
    assert result.refunded_cash == Decimal("0.00")
    assert result.excess_mode is ExcessMode.STORE_CREDIT


def test_cash_refund_mode_refunds_the_excess():
    """The excess beyond due should be refunded when cash is requested."""

    result = settlement.resolve_return_settlement("157.50", "110.00", ExcessMode.CASH_REFUND)

    assert result.applied_to_due == Decimal("110.00")
    assert result.refunded_cash == Decimal("47.50")
    assert result.credited_amount == Decimal("0.00")


def test_return_smaller_than_due_only_reduces_due():
    """When due exceeds the return nothing is refunded or credited."""

    result = settlement.resolve_return_settlement("20.00", "50.00", "cash_refund")

    assert result.applied_to_due == Decimal("20.00")
    assert result.refunded_cash == Decimal("0.00")
    assert result.credited_amount == Decimal("0.00")


def test_unknown_excess_mode_falls_back_to_store_credit():
    """Unrecognised modes should be treated as store credit."""

    result = settlement.resolve_return_settlement("5.00", "0", "voucher")

    assert result.excess_mode is ExcessMode.STORE_CREDIT
    assert result.credited_amount == Decimal("5.00")


@pytest.mark.parametrize(
    "amount, due",
    [("3.15", "1.58"), ("0.01", "0.00"), ("99.99", "100.00"), ("-12.34", "5.00"), ("0.10", "0.07")],
)
def test_settlement_parts_always_sum_to_the_return(amount, due):
    """applied + refunded + credited must equal the absolute return amount."""

    for mode in ExcessMode:
        result = settlement.resolve_return_settlement(amount, due, mode)
        assert result.total == abs(Decimal(amount))
        assert result.applied_to_due <= max(Decimal(due), Decimal("0"))


def test_verify_settlement_accepts_missing_and_matching():
    """No supplied settlement, or one that agrees, should pass silently."""

    computed = settlement.resolve_return_settlement("3.15", "1.58")
    settlement.verify_settlement(None, computed)
    settlement.verify_settlement(
        ReturnSettlement(Decimal("1.58"), Decimal("0"), Decimal("1.57"), ExcessMode.STORE_CREDIT),
        computed,
    )


def test_verify_settlement_rejects_disagreement():
    """A supplied split that differs should raise with the offending fields."""

    computed = settlement.resolve_return_settlement("3.15", "1.58")
    supplied = ReturnSettlement(Decimal("0"), Decimal("3.15"), Decimal("0"), ExcessMode.CASH_REFUND)

    with pytest.raises(SettlementMismatchError) as excinfo:
        settlement.verify_settlement(supplied, computed)

    assert excinfo.value.code is ErrorCode.SETTLEMENT_MISMATCH
    assert set(excinfo.value.detail["fields"]) == {
        "applied_to_due",
        "refunded_cash",
        "credited_amount",
        "excess_mode",
    }
    assert excinfo.value.detail["expected"]["credited_amount"] == "1.57"


def test_apply_store_credit_caps_at_sale_total():
    """Credit larger than the sale should only cover the sale."""

    result = settlement.apply_store_credit("100.25", "47.50")

    assert result.applied == Decimal("47.50")
    assert result.remaining_credit == Decimal("52.75")
    assert result.payable == Decimal("0.00")


def test_apply_store_credit_partial_cover():
    """A 1.57 credit against an 18.90 sale leaves 17.33 payable."""

    result = settlement.apply_store_credit("1.57", "18.90")

    assert result.applied == Decimal("1.57")
    assert result.remaining_credit == Decimal("0.00")
    assert result.payable == Decimal("17.33")


def test_available_store_credit_prefers_larger_of_record_and_ledger(customer_factory):
    """The newest ledger balance wins when it is ahead of the customer record."""

    customer = customer_factory("C1", credit="1.00")
    ledger = (
        CreditLedgerEntry(
            entry_id="E2",
            customer_id="C1",
            transaction_id="T2",
            timestamp=datetime(2025, 1, 2, tzinfo=UTC),
            entry_type=CreditEntryType.CREDIT_ISSUED,
            amount=Decimal("3.00"),
            balance_after=Decimal("4.00"),
        ),
        CreditLedgerEntry(
            entry_id="E1",
            customer_id="C1",
            transaction_id="T1",
            timestamp=datetime(2025, 1, 1, tzinfo=UTC),
            entry_type=CreditEntryType.CREDIT_ISSUED,
            amount=Decimal("9.00"),
            balance_after=Decimal("9.00"),
        ),
    )

    assert settlement.available_store_credit(customer, ledger) == Decimal("4.00")
    assert settlement.available_store_credit(customer, ()) == Decimal("1.00")
    assert settlement.available_store_credit(None, ledger) == Decimal("0.00")
