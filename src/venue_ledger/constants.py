"""Enumerations shared across Venue Ledger modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), analytics helpers, and the CLI rely on a single source of
truth for sheet names, deletion scopes, reporting periods, and loyalty tiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Smallest currency unit used when presenting monetary values.
CURRENCY_QUANTUM = Decimal("0.01")

# Category words staff type into descriptions that never denote a product.
CATEGORY_STOP_WORDS = frozenset({"essen", "trinken", "coins", "sticker", "figuren"})

TOP_PRODUCTS_LIMIT = 10
TOP_HOURS_LIMIT = 3


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    TRANSACTION_LOG = "TransactionLog"
    PRODUCTS = "Products"
    LOYALTY = "Loyalty"


class DeleteScope(str, Enum):
    """Enumerate the bulk-deletion scopes accepted by the ledger."""

    ALL = "all"
    PRODUCTS = "products"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


class Period(str, Enum):
    """Enumerate the named reporting windows used by statistics queries."""

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


# Trailing window length in days, inclusive of today. ``None`` means unbounded.
PERIOD_DAYS: dict[str, int | None] = {
    "today": 1,
    "week": 7,
    "month": 30,
    "all": None,
}


class TimelineGrouping(str, Enum):
    """Enumerate the bucket sizes supported by the revenue timeline."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class Tier(str, Enum):
    """Loyalty tiers ordered from lowest to highest."""

    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    PLATINUM = "Platinum"

    @property
    def rank(self) -> int:
        return list(Tier).index(self)


# Minimum point totals per tier, checked from the top down.
TIER_THRESHOLDS: tuple[tuple[int, Tier], ...] = (
    (200, Tier.PLATINUM),
    (150, Tier.GOLD),
    (75, Tier.SILVER),
)


class Topic(str, Enum):
    """Enumerate the channels the update publisher fans results out on."""

    SALES = "sales:update"
    PRODUCTS = "products:update"
    LOYALTY = "loyalty:update"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "CURRENCY_QUANTUM",
    "CATEGORY_STOP_WORDS",
    "TOP_PRODUCTS_LIMIT",
    "TOP_HOURS_LIMIT",
    "SheetName",
    "DeleteScope",
    "Period",
    "PERIOD_DAYS",
    "TimelineGrouping",
    "Tier",
    "TIER_THRESHOLDS",
    "Topic",
]
