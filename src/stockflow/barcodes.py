"""Allocation of generated ``GEN-###`` barcodes.

Each category owns a band of :data:`~stockflow.constants.BARCODE_BAND_SIZE`
numbers chosen by its position in the category list, so band ``n`` covers
``n * size + 1`` through ``(n + 1) * size - 1``. Bands are tied to list
positions: reordering categories can make two categories share a band.
"""

from __future__ import annotations

import random
from typing import Iterable, Optional, Sequence, Set

from . import log
from .constants import BARCODE_BAND_SIZE, GENERATED_BARCODE_PREFIX
from .models import Product

_RANDOM_ATTEMPTS = 20
_RANDOM_LOW = 1000
_RANDOM_HIGH = 9999


def parse_generated_barcode(barcode: str) -> Optional[int]:
    """Return the numeric suffix of a ``GEN-`` barcode, or ``None``."""

    if not barcode or not barcode.startswith(GENERATED_BARCODE_PREFIX):
        return None
    suffix = barcode[len(GENERATED_BARCODE_PREFIX):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def next_barcode(
    category: str,
    products: Iterable[Product],
    categories: Sequence[str],
    *,
    rng: Optional[random.Random] = None,
) -> str:
    """Return the next unused generated barcode for ``category``.

    The highest generated number already used inside the category's band is
    found and incremented. An unknown category gets a random four-digit code
    instead, redrawn until it does not clash with an existing barcode.

    Args:
        category (str): Category the new product belongs to.
        products (Iterable[Product]): Current catalog.
        categories (Sequence[str]): Ordered category list; the index of
            ``category`` selects its band.
        rng (random.Random | None): Source for the unknown-category fallback.

    Returns:
        str: Barcode such as ``GEN-001`` or ``GEN-503``.
    """

    products = list(products)
    try:
        index = list(categories).index(category)
    except ValueError:
        fallback = _random_free_barcode({product.barcode for product in products}, rng or random)
        log.info("Category '%s' is not registered; using random barcode '%s'", category, fallback)
        return fallback

    band_start = index * BARCODE_BAND_SIZE
    band_end = (index + 1) * BARCODE_BAND_SIZE

    highest = band_start
    for product in products:
        if product.category != category:
            continue
        number = parse_generated_barcode(product.barcode)
        if number is not None and highest < number < band_end:
            highest = number

    candidate = highest + 1
    if candidate >= band_end:
        log.warning("Barcode band for category '%s' is exhausted; '%d' spills into the next band", category, candidate)
    return f"{GENERATED_BARCODE_PREFIX}{candidate:03d}"


def _random_free_barcode(used: Set[str], generator: random.Random) -> str:
    # A few random draws, then the lowest free four-digit code.
    for _ in range(_RANDOM_ATTEMPTS):
        candidate = f"{GENERATED_BARCODE_PREFIX}{generator.randint(_RANDOM_LOW, _RANDOM_HIGH)}"
        if candidate not in used:
            return candidate
    for number in range(_RANDOM_LOW, _RANDOM_HIGH + 1):
        candidate = f"{GENERATED_BARCODE_PREFIX}{number}"
        if candidate not in used:
            return candidate
    raise ValueError("Every four-digit generated barcode is already in use")


__all__ = ["parse_generated_barcode", "next_barcode"]
