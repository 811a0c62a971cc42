"""Return settlement and store-credit arithmetic.

All splits are computed in integer minor units and converted back only when
the result is handed to the caller. Nothing in this module touches a snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from . import log
from .constants import ExcessMode
from .errors import ErrorCode, SettlementMismatchError
from .models import CreditLedgerEntry, Customer, ReturnSettlement
from .money import MoneyLike, ZERO, from_minor_units, money_equal, to_minor_units


@dataclass(frozen=True)
class CreditApplication:
    """Outcome of spending store credit against a sale."""

    applied: Decimal
    remaining_credit: Decimal
    payable: Decimal


def resolve_return_settlement(
    return_amount: MoneyLike,
    current_due: MoneyLike,
    excess_mode: Optional[object] = None,
) -> ReturnSettlement:
    """Split a return's value between existing due and the excess.

    The portion that clears due is ``min(due, return_amount)``. Whatever is
    left becomes a cash refund when ``excess_mode`` is ``cash_refund`` and
    store credit otherwise; unknown or missing modes fall back to store
    credit.

    Args:
        return_amount (MoneyLike): Absolute value of the return's total.
        current_due (MoneyLike): Customer's due before the return.
        excess_mode (object | None): Requested handling of the excess.

    Returns:
        ReturnSettlement: Split whose parts sum to ``return_amount``.
    """

    mode = ExcessMode.parse(excess_mode)
    return_units = max(0, abs(to_minor_units(return_amount)))
    due_units = max(0, to_minor_units(current_due))

    applied = min(due_units, return_units)
    excess = return_units - applied
    if mode is ExcessMode.CASH_REFUND:
        refunded, credited = excess, 0
    else:
        refunded, credited = 0, excess

    return ReturnSettlement(
        applied_to_due=from_minor_units(applied),
        refunded_cash=from_minor_units(refunded),
        credited_amount=from_minor_units(credited),
        excess_mode=mode,
    )


def verify_settlement(supplied: Optional[ReturnSettlement], computed: ReturnSettlement) -> None:
    """Reject a caller-supplied settlement that disagrees with ``computed``.

    A missing settlement is accepted; the computed one becomes authoritative.

    Raises:
        SettlementMismatchError: If any part differs beyond the money
            tolerance or the excess modes differ.
    """

    if supplied is None:
        return

    mismatched = [
        name
        for name in ("applied_to_due", "refunded_cash", "credited_amount")
        if not money_equal(getattr(supplied, name), getattr(computed, name))
    ]
    if ExcessMode.parse(supplied.excess_mode) is not computed.excess_mode:
        mismatched.append("excess_mode")
    if not mismatched:
        return

    log.warning("Supplied return settlement disagrees on %s", ", ".join(mismatched))
    raise SettlementMismatchError(
        ErrorCode.SETTLEMENT_MISMATCH,
        "Supplied return settlement does not match the recomputed settlement",
        {
            "fields": mismatched,
            "expected": _settlement_payload(computed),
            "actual": _settlement_payload(supplied),
        },
    )


def apply_store_credit(available_credit: MoneyLike, sale_total: MoneyLike) -> CreditApplication:
    """Spend up to ``available_credit`` against the absolute sale total."""

    credit_units = max(0, to_minor_units(available_credit))
    sale_units = max(0, abs(to_minor_units(sale_total)))
    applied = min(credit_units, sale_units)
    return CreditApplication(
        applied=from_minor_units(applied),
        remaining_credit=from_minor_units(credit_units - applied),
        payable=from_minor_units(sale_units - applied),
    )


def available_store_credit(customer: Optional[Customer], credit_ledger: Iterable[CreditLedgerEntry]) -> Decimal:
    """Return the store credit to offer a customer at checkout.

    The newest ledger row for the customer (the ledger is newest-first) is
    compared with the balance on the customer record and the larger one wins,
    so a customer record that lags behind its ledger still shows the credit.
    """

    if customer is None:
        return ZERO

    balance = customer.store_credit_balance
    for entry in credit_ledger:
        if entry.customer_id == customer.customer_id:
            return max(balance, entry.balance_after)
    return balance


def _settlement_payload(settlement: ReturnSettlement) -> dict:
    return {
        "applied_to_due": str(settlement.applied_to_due),
        "refunded_cash": str(settlement.refunded_cash),
        "credited_amount": str(settlement.credited_amount),
        "excess_mode": ExcessMode.parse(settlement.excess_mode).value,
    }


__all__ = [
    "CreditApplication",
    "resolve_return_settlement",
    "verify_settlement",
    "apply_store_credit",
    "available_store_credit",
]
