"""Unit tests for free-text line-item parsing and revenue allocation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from venue_ledger.line_items import (
    LineItem,
    PatternLineItemParser,
    allocate_revenue,
    parse_line_items,
)


@pytest.fixture
def parser():
    return PatternLineItemParser()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def test_parse_extracts_products_and_drops_category(parser):
    """Quantity/name pairs are extracted and the trailing category ignored."""

    items = parser.parse("2x Pop UP + 1x Burn UP | Essen")

    assert items == [LineItem("Pop UP", 2), LineItem("Burn UP", 1)]


def test_parse_rejects_dates_person_counts_and_categories(parser):
    """A description without any ``<n>x`` pattern yields nothing."""

    assert parser.parse("PlayUP | 30.10. | 2P | Essen") == []


@pytest.mark.parametrize(
    "description",
    [
        "1x 30.10.",
        "2x 5.1.",
        "1x 4P",
        "3x essen",
        "1x TRINKEN",
        "2x Coins",
        "1x Sticker",
        "1x Figuren",
        "1x A",
        "2x ",
    ],
)
def test_parse_rejects_non_product_fragments(parser, description):
    """Fragments that are dates, head counts, categories or too short are skipped."""

    assert parser.parse(description) == []


def test_parse_keeps_repeated_products_separate(parser):
    """The same product mentioned twice produces two line items."""

    items = parser.parse("1x Cola + 2x Cola")

    assert items == [LineItem("Cola", 1), LineItem("Cola", 2)]


def test_parse_accepts_spacing_and_uppercase_x(parser):
    items = parser.parse("3 X Nachos| 10x  Pommes rot-weiss ")

    assert items == [LineItem("Nachos", 3), LineItem("Pommes rot-weiss", 10)]


def test_parse_preserves_case(parser):
    assert parser.parse("1x pop UP") == [LineItem("pop UP", 1)]


def test_parse_skips_zero_quantity(parser):
    assert parser.parse("0x Cola + 1x Fanta") == [LineItem("Fanta", 1)]


def test_parse_handles_empty_description(parser):
    assert parser.parse("") == []


def test_parse_is_deterministic(parser):
    description = "2x Pop UP + 1x Burn UP | Essen"

    assert parser.parse(description) == parser.parse(description)


def test_custom_stop_words_replace_defaults():
    parser = PatternLineItemParser(stop_words=frozenset({"Snacks"}))

    assert parser.parse("1x snacks + 1x Essen") == [LineItem("Essen", 1)]


def test_parse_line_items_logs_soft_fallback(caplog):
    """Unparseable descriptions are logged, not rejected."""

    caplog.set_level("INFO", logger="venue_ledger")

    assert parse_line_items("Trinkgeld") == []
    assert any("unattributed" in record.getMessage() for record in caplog.records)


def test_parse_line_items_uses_supplied_parser():
    class FixedParser:
        def parse(self, description):
            return [LineItem("Everything", 1)]

    assert parse_line_items("anything", FixedParser()) == [LineItem("Everything", 1)]


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


def test_allocate_splits_by_quantity():
    items = [LineItem("Pop UP", 2), LineItem("Burn UP", 1)]

    allocations = allocate_revenue(Decimal("900"), items)

    assert [(a.item.product_name, a.revenue) for a in allocations] == [
        ("Pop UP", Decimal("600")),
        ("Burn UP", Decimal("300")),
    ]


def test_allocate_returns_nothing_without_items():
    assert allocate_revenue(Decimal("12.50"), []) == []


@pytest.mark.parametrize(
    "amount, quantities",
    [
        ("10", [1, 1, 1]),
        ("0.01", [1, 2]),
        ("99.99", [3, 7, 11]),
        ("0", [1, 1]),
        ("1234.56", [1]),
    ],
)
def test_allocations_sum_to_amount(amount, quantities):
    """Allocated revenue always adds back up to the transaction amount."""

    items = [LineItem(f"P{index}", quantity) for index, quantity in enumerate(quantities)]

    allocations = allocate_revenue(Decimal(amount), items)

    assert sum(a.revenue for a in allocations) == Decimal(amount)
    assert len(allocations) == len(items)


def test_allocation_is_not_rounded():
    """Shares keep full precision; rounding happens only in reports."""

    allocations = allocate_revenue(Decimal("10"), [LineItem("A", 1), LineItem("B", 2)])

    assert allocations[0].revenue == Decimal("10") / Decimal("3")
