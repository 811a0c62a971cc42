"""Exact money arithmetic for the ledger.

Balances (due, store credit, settlement splits) are computed in integer minor
units and converted back to two-place :class:`~decimal.Decimal` values only at
the boundary. Comparisons between amounts always go through
:data:`~stockflow.constants.MONEY_TOLERANCE` because transaction totals are
recomputed rather than trusted verbatim.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Union

from .constants import MINOR_UNITS_PER_MAJOR, MONEY_TOLERANCE


MoneyLike = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def as_decimal(amount: MoneyLike) -> Decimal:
    """Coerce a money-like value into a :class:`~decimal.Decimal`.

    Floats are routed through ``str`` so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        ValueError: If ``amount`` is not numeric or not finite.
    """

    if isinstance(amount, bool):
        raise ValueError(f"Not a money amount: {amount!r}")
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            value = Decimal(str(amount))
        except InvalidOperation as exc:
            raise ValueError(f"Not a money amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Money amounts must be finite: {amount!r}")
    return value


def to_minor_units(amount: MoneyLike) -> int:
    """Convert a major-unit amount into integer minor units.

    Half-way values round away from zero, so ``1.005`` becomes ``101`` and
    ``-1.005`` becomes ``-101``.

    Args:
        amount (MoneyLike): Amount in major units (for example rupees).

    Returns:
        int: Amount in minor units (for example paise).
    """

    scaled = as_decimal(amount) * MINOR_UNITS_PER_MAJOR
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(units: int) -> Decimal:
    """Convert integer minor units back into a two-place major amount."""

    return (Decimal(units) / MINOR_UNITS_PER_MAJOR).quantize(CENT)


def quantize_money(amount: MoneyLike) -> Decimal:
    """Round an amount to the nearest minor unit."""

    return from_minor_units(to_minor_units(amount))


def sum_money(amounts: Iterable[MoneyLike]) -> Decimal:
    """Sum amounts exactly in minor units."""

    return from_minor_units(sum(to_minor_units(amount) for amount in amounts))


def money_equal(left: MoneyLike, right: MoneyLike) -> bool:
    """Return ``True`` when two amounts agree within the money tolerance."""

    return abs(as_decimal(left) - as_decimal(right)) <= MONEY_TOLERANCE


def exceeds_tolerance(amount: MoneyLike) -> bool:
    """Return ``True`` when ``amount`` is strictly above the money tolerance."""

    return as_decimal(amount) > MONEY_TOLERANCE


__all__ = [
    "MoneyLike",
    "CENT",
    "ZERO",
    "as_decimal",
    "to_minor_units",
    "from_minor_units",
    "quantize_money",
    "sum_money",
    "money_equal",
    "exceeds_tolerance",
]
