"""Derived statistics over a snapshot of the transaction ledger.

Every function here is a pure derivation: it receives a list of
:class:`~venue_ledger.ledger.Transaction` objects (already copied out of the
runtime context) and returns plain dictionaries ready for a dashboard. None
of them raise on empty input; averages fall back to zero and best/worst
values to ``None``.

Monetary values are accumulated unrounded and quantized to the currency unit
only when the result dictionaries are built.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from . import log
from .constants import CURRENCY_QUANTUM, TOP_HOURS_LIMIT, TOP_PRODUCTS_LIMIT, TimelineGrouping
from .ledger import DateRange, Transaction, trailing_window
from .line_items import DEFAULT_PARSER, LineItemParser, allocate_revenue

ZERO = Decimal("0")
PERCENT_QUANTUM = Decimal("0.1")


def money(value: Decimal) -> Decimal:
    """Round a monetary amount to the currency unit (half-up).

    Precision is widened for totals too large for the default context.
    """

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + 3)
        return value.quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """Return ``part`` as a percentage of ``whole`` with one decimal place."""

    if whole == 0:
        return Decimal("0.0")
    return (part * 100 / whole).quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def resolve_range(
    period: Optional[str],
    *,
    today: date,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Optional[DateRange]:
    """Translate a named period and optional explicit bounds into a filter.

    Explicit ``start_date``/``end_date`` bounds take precedence over
    ``period``. ``None`` means "all time".

    Raises:
        KeyError: If ``period`` is not a known window name.
    """

    if start_date is not None or end_date is not None:
        return DateRange(start=start_date, end=end_date)
    if period is None:
        return None
    return trailing_window(period, today)


def filter_transactions(
    transactions: Iterable[Transaction], date_range: Optional[DateRange]
) -> List[Transaction]:
    if date_range is None:
        return list(transactions)
    return [entry for entry in transactions if date_range.contains(entry.date)]


def _daily_totals(transactions: Iterable[Transaction]) -> Dict[date, Decimal]:
    totals: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    for entry in transactions:
        totals[entry.date] += entry.amount
    return dict(sorted(totals.items()))


def overview(transactions: Sequence[Transaction]) -> Dict[str, object]:
    """Headline figures for a filtered set of transactions.

    ``best_day`` and ``worst_day`` keep the earliest date when several days
    share the same total. Both are ``None`` when there are no transactions.
    """

    total = sum((entry.amount for entry in transactions), ZERO)
    count = len(transactions)
    daily = _daily_totals(transactions)

    best: Optional[tuple[date, Decimal]] = None
    worst: Optional[tuple[date, Decimal]] = None
    for day, revenue in daily.items():
        if best is None or revenue > best[1]:
            best = (day, revenue)
        if worst is None or revenue < worst[1]:
            worst = (day, revenue)

    return {
        "total_revenue": money(total),
        "transaction_count": count,
        "average_transaction": money(total / count) if count else money(ZERO),
        "day_count": len(daily),
        "average_per_day": money(total / len(daily)) if daily else money(ZERO),
        "best_day": {"date": best[0].isoformat(), "revenue": money(best[1])} if best else None,
        "worst_day": {"date": worst[0].isoformat(), "revenue": money(worst[1])} if worst else None,
    }


def product_statistics(
    transactions: Sequence[Transaction], parser: LineItemParser = DEFAULT_PARSER
) -> List[Dict[str, object]]:
    """Per-product quantity, revenue and share of the filtered revenue.

    Line items are re-derived from each description so the figures respect
    the date filter. ``transaction_count`` counts transactions that mention
    the product at least once. Rows are sorted by revenue, highest first.
    """

    quantities: Dict[str, int] = defaultdict(int)
    revenues: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    touching: Dict[str, int] = defaultdict(int)

    for entry in transactions:
        mentioned = set()
        for allocation in allocate_revenue(entry.amount, parser.parse(entry.description)):
            name = allocation.item.product_name
            quantities[name] += allocation.item.quantity
            revenues[name] += allocation.revenue
            mentioned.add(name)
        for name in mentioned:
            touching[name] += 1

    total = sum((entry.amount for entry in transactions), ZERO)
    rows = [
        {
            "product_name": name,
            "quantity": quantities[name],
            "revenue": money(revenues[name]),
            "transaction_count": touching[name],
            "revenue_share": percentage(revenues[name], total),
            "average_unit_price": money(revenues[name] / quantities[name]),
        }
        for name in quantities
    ]
    rows.sort(key=lambda row: row["revenue"], reverse=True)
    return rows


def _week_key(day: date) -> str:
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


_BUCKET_KEYS: Dict[TimelineGrouping, Callable[[date], str]] = {
    TimelineGrouping.DAY: lambda day: day.isoformat(),
    TimelineGrouping.WEEK: _week_key,
    TimelineGrouping.MONTH: lambda day: f"{day.year:04d}-{day.month:02d}",
}


def timeline(transactions: Iterable[Transaction], group_by: TimelineGrouping) -> List[Dict[str, object]]:
    """Revenue and transaction count per day, ISO week, or calendar month.

    Bucket keys are ``YYYY-MM-DD``, ``YYYY-Www`` (ISO year and week) and
    ``YYYY-MM``; all three sort chronologically as strings.
    """

    key_for = _BUCKET_KEYS[group_by]
    revenue: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: Dict[str, int] = defaultdict(int)
    for entry in transactions:
        key = key_for(entry.date)
        revenue[key] += entry.amount
        counts[key] += 1

    return [
        {"period": key, "revenue": money(revenue[key]), "transaction_count": counts[key]}
        for key in sorted(revenue)
    ]


def rush_hour(transactions: Iterable[Transaction], *, current_hour: int) -> Dict[str, object]:
    """Histogram of revenue by hour of day.

    Uses the hour captured at ingestion. ``top_hours`` lists the three
    busiest hours by revenue; equal revenue keeps the lower hour first.
    """

    revenue = [ZERO] * 24
    counts = [0] * 24
    for entry in transactions:
        revenue[entry.hour] += entry.amount
        counts[entry.hour] += 1

    slots = [
        {"hour": hour, "revenue": money(revenue[hour]), "transaction_count": counts[hour]}
        for hour in range(24)
    ]
    ranked = sorted(range(24), key=lambda hour: revenue[hour], reverse=True)
    return {
        "hours": slots,
        "top_hours": ranked[:TOP_HOURS_LIMIT],
        "current_hour": current_hour,
        "current_hour_revenue": money(revenue[current_hour]),
    }


def top_products(
    transactions: Sequence[Transaction],
    parser: LineItemParser = DEFAULT_PARSER,
    *,
    limit: int = TOP_PRODUCTS_LIMIT,
) -> List[Dict[str, object]]:
    """Best sellers ranked by quantity sold, not by revenue.

    Products with equal quantity keep the order in which they first appear.
    Each row carries its share of the period's total revenue.
    """

    quantities: Dict[str, int] = {}
    revenues: Dict[str, Decimal] = {}
    for entry in transactions:
        for allocation in allocate_revenue(entry.amount, parser.parse(entry.description)):
            name = allocation.item.product_name
            quantities[name] = quantities.get(name, 0) + allocation.item.quantity
            revenues[name] = revenues.get(name, ZERO) + allocation.revenue

    total = sum((entry.amount for entry in transactions), ZERO)
    ranked = sorted(quantities, key=lambda name: quantities[name], reverse=True)[:limit]
    log.debug("Ranked %d products (limit %d)", len(quantities), limit)
    return [
        {
            "product_name": name,
            "quantity": quantities[name],
            "revenue": money(revenues[name]),
            "revenue_share": percentage(revenues[name], total),
        }
        for name in ranked
    ]


def daily_sales(transactions: Iterable[Transaction]) -> Dict[str, Dict[str, object]]:
    """Day-keyed view of the ledger with each day's total and raw entries."""

    days: Dict[str, Dict[str, object]] = {}
    for entry in sorted(transactions, key=lambda item: (item.date, item.timestamp)):
        bucket = days.setdefault(entry.date.isoformat(), {"total": ZERO, "entries": []})
        bucket["total"] += entry.amount
        bucket["entries"].append(
            {
                "transaction_id": entry.transaction_id,
                "description": entry.description,
                "amount": entry.amount,
                "timestamp": entry.timestamp.isoformat(),
            }
        )
    for bucket in days.values():
        bucket["total"] = money(bucket["total"])
    return days
