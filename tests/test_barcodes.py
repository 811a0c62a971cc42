"""Unit tests for generated barcode allocation."""

from __future__ import annotations

import random

import pytest

from stockflow import barcodes

CATEGORIES = ("Snacks", "Drinks", "Dairy")


def test_first_barcode_in_first_band_is_gen_001():
    """An empty first category starts at GEN-001."""

    assert barcodes.next_barcode("Snacks", [], CATEGORIES) == "GEN-001"


def test_band_is_selected_by_category_position():
    """The second category's band starts after the first 500 numbers."""

    assert barcodes.next_barcode("Drinks", [], CATEGORIES) == "GEN-501"
    assert barcodes.next_barcode("Dairy", [], CATEGORIES) == "GEN-1001"


def test_next_barcode_follows_highest_in_band(product_factory):
    """The highest generated number already used in the band is incremented."""

    products = [
        product_factory("P1", category="Drinks", barcode="GEN-501"),
        product_factory("P2", category="Drinks", barcode="GEN-507"),
        product_factory("P3", category="Drinks", barcode="8901234567890"),
        product_factory("P4", category="Snacks", barcode="GEN-012"),
    ]

    assert barcodes.next_barcode("Drinks", products, CATEGORIES) == "GEN-508"
    assert barcodes.next_barcode("Snacks", products, CATEGORIES) == "GEN-013"


def test_numbers_outside_the_band_are_ignored(product_factory):
    """A product carrying a number from another band does not move this one."""

    products = [product_factory("P1", category="Snacks", barcode="GEN-900")]

    assert barcodes.next_barcode("Snacks", products, CATEGORIES) == "GEN-001"


def test_exhausted_band_logs_warning(product_factory, caplog):
    """Running past the band end should still allocate but warn."""

    products = [product_factory("P1", category="Snacks", barcode="GEN-499")]

    with caplog.at_level("WARNING", logger="stockflow"):
        result = barcodes.next_barcode("Snacks", products, CATEGORIES)

    assert result == "GEN-500"
    assert "exhausted" in caplog.text


def test_unknown_category_gets_random_four_digit_code():
    """Unregistered categories fall back to a random GEN-#### code."""

    result = barcodes.next_barcode("Toys", [], CATEGORIES, rng=random.Random(7))

    assert result.startswith("GEN-")
    assert 1000 <= int(result[4:]) <= 9999


@pytest.mark.parametrize(
    "code, expected",
    [("GEN-042", 42), ("GEN-", None), ("GEN-4a", None), ("8901234", None), ("", None)],
)
def test_parse_generated_barcode(code, expected):
    """Only GEN- followed by digits is a generated barcode."""

    assert barcodes.parse_generated_barcode(code) == expected


class _ScriptedRandom(random.Random):
    """Returns the queued numbers in order, then falls back to the real draw."""

    def __init__(self, *numbers: int) -> None:
        super().__init__(0)
        self._queue = list(numbers)

    def randint(self, a: int, b: int) -> int:
        if self._queue:
            return self._queue.pop(0)
        return super().randint(a, b)


def test_random_fallback_redraws_on_collision(product_factory):
    """A random code already on a product is drawn again."""

    products = [product_factory("P1", category="Toys", barcode="GEN-4242")]

    result = barcodes.next_barcode("Toys", products, CATEGORIES, rng=_ScriptedRandom(4242, 4242, 5151))

    assert result == "GEN-5151"


def test_random_fallback_scans_when_draws_keep_colliding(product_factory):
    """After repeated collisions the lowest free four-digit code is used."""

    products = [
        product_factory("P1", category="Toys", barcode="GEN-1000"),
        product_factory("P2", category="Toys", barcode="GEN-1001"),
    ]

    result = barcodes.next_barcode("Toys", products, CATEGORIES, rng=_ScriptedRandom(*([1000] * 20)))

    assert result == "GEN-1002"
