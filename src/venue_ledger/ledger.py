"""In-memory transaction ledger and running per-product totals.

The :class:`Ledger` is the append-only source of truth for recorded sales.
:class:`ProductAggregate` keeps cumulative quantity and revenue per product
and is updated with the allocations derived from each sale. Both objects are
owned by the runtime context in :mod:`venue_ledger.core_logic`, which
serialises every mutation; neither class does any locking of its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

from . import log
from .constants import PERIOD_DAYS, DeleteScope
from .line_items import DEFAULT_PARSER, Allocation, LineItemParser, allocate_revenue


@dataclass(frozen=True)
class Transaction:
    """Immutable ledger entry for one recorded sale.

    ``date`` and ``hour`` are captured in venue-local time when the sale is
    ingested and are never recomputed from ``timestamp`` afterwards.
    """

    transaction_id: str
    date: date
    timestamp: datetime
    hour: int
    amount: Decimal
    description: str


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar range. Either bound may be open."""

    start: Optional[date] = None
    end: Optional[date] = None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


def trailing_window(name: str, today: date) -> Optional[DateRange]:
    """Resolve ``today``/``week``/``month``/``all`` into a date range.

    Windows end on ``today`` and span the configured number of days including
    today. ``all`` resolves to ``None`` (no filtering).

    Raises:
        KeyError: If ``name`` is not a known window.
    """

    days = PERIOD_DAYS[name]
    if days is None:
        return None
    return DateRange(start=today - timedelta(days=days - 1), end=today)


def generate_transaction_id(*, prefix: str = "T", when: datetime) -> str:
    """Generate a sortable identifier from the recording instant.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """

    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


class Ledger:
    """Append-only sequence of :class:`Transaction` objects."""

    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._entries: List[Transaction] = list(transactions)
        self._ids: Set[str] = {entry.transaction_id for entry in self._entries}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def append(self, transaction: Transaction) -> Transaction:
        """Store ``transaction`` and return it.

        A transaction whose identifier is already taken is stored under the
        same identifier with a ``-N`` suffix so ids stay unique.
        """

        if transaction.transaction_id in self._ids:
            base = transaction.transaction_id
            suffix = 2
            while f"{base}-{suffix}" in self._ids:
                suffix += 1
            transaction = Transaction(
                transaction_id=f"{base}-{suffix}",
                date=transaction.date,
                timestamp=transaction.timestamp,
                hour=transaction.hour,
                amount=transaction.amount,
                description=transaction.description,
            )
        self._entries.append(transaction)
        self._ids.add(transaction.transaction_id)
        return transaction

    def query(
        self,
        date_range: Optional[DateRange] = None,
        scope: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> List[Transaction]:
        """Return transactions matching an explicit range and/or a named window.

        Args:
            date_range (DateRange | None): Inclusive calendar filter.
            scope (str | None): Named trailing window (``today``, ``week``,
                ``month`` or ``all``) evaluated against ``today``.
            today (date | None): Reference day for ``scope``. Required when a
                bounded scope is given.

        Returns:
            list[Transaction]: Matching entries in ledger order.
        """

        ranges = [date_range] if date_range is not None else []
        if scope is not None:
            window = trailing_window(scope, _require_today(today))
            if window is not None:
                ranges.append(window)
        return [entry for entry in self._entries if all(r.contains(entry.date) for r in ranges)]

    def delete_by_scope(self, scope: DeleteScope, *, today: date) -> List[Transaction]:
        """Remove the transactions covered by ``scope`` and return them.

        ``products`` removes nothing from the ledger; ``all`` removes every
        entry; the dated scopes remove entries inside their trailing window.
        """

        if scope is DeleteScope.PRODUCTS:
            return []
        if scope is DeleteScope.ALL:
            removed = self._entries
            self._entries = []
        else:
            window = trailing_window(scope.value, today)
            removed = [entry for entry in self._entries if window.contains(entry.date)]
            self._entries = [entry for entry in self._entries if not window.contains(entry.date)]
        self._ids = {entry.transaction_id for entry in self._entries}
        log.debug("Ledger scope '%s' removed %d transactions", scope.value, len(removed))
        return removed


def _require_today(today: Optional[date]) -> date:
    if today is None:
        raise ValueError("A reference day is required for scoped queries")
    return today


@dataclass
class ProductTotals:
    """Cumulative quantity and unrounded revenue for one product."""

    quantity: int = 0
    revenue: Decimal = Decimal("0")


class ProductAggregate:
    """Running ``{quantity, revenue}`` totals keyed by product name.

    Deltas are additive: applying the same delta twice counts it twice, so
    each transaction's allocations must be applied exactly once.
    """

    def __init__(self, totals: Optional[Dict[str, ProductTotals]] = None) -> None:
        self._totals: Dict[str, ProductTotals] = dict(totals or {})

    def __len__(self) -> int:
        return len(self._totals)

    def apply_delta(self, product_name: str, quantity_delta: int, revenue_delta: Decimal) -> None:
        totals = self._totals.setdefault(product_name, ProductTotals())
        totals.quantity += quantity_delta
        totals.revenue += revenue_delta
        if totals.quantity == 0 and totals.revenue == 0:
            del self._totals[product_name]

    def apply_transaction(self, transaction: Transaction, parser: LineItemParser = DEFAULT_PARSER) -> None:
        """Fold the allocations of ``transaction`` into the running totals."""

        self.apply_allocations(allocate_revenue(transaction.amount, parser.parse(transaction.description)))

    def apply_allocations(self, allocations: Iterable[Allocation]) -> None:
        for allocation in allocations:
            self.apply_delta(allocation.item.product_name, allocation.item.quantity, allocation.revenue)

    def rebuild(self, transactions: Iterable[Transaction], parser: LineItemParser = DEFAULT_PARSER) -> None:
        """Discard all totals and recompute them from ``transactions``."""

        self._totals = {}
        for transaction in transactions:
            self.apply_transaction(transaction, parser)
        log.debug("Rebuilt product aggregate with %d products", len(self._totals))

    def clear(self) -> int:
        """Drop every entry and return how many there were."""

        cleared = len(self._totals)
        self._totals = {}
        return cleared

    def items(self):
        return [(name, ProductTotals(t.quantity, t.revenue)) for name, t in self._totals.items()]

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        """Return a detached ``name -> {quantity, revenue}`` mapping."""

        return {
            name: {"quantity": totals.quantity, "revenue": totals.revenue}
            for name, totals in self._totals.items()
        }
