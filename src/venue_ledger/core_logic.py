"""Business logic layer for Venue Ledger.

This module owns the runtime state (ledger, product aggregate, loyalty
balances) and the workbook it is persisted to. Every mutation runs under the
context lock as one unit: validate, parse, allocate, append, update the
aggregate, persist, publish. Reads copy what they need under the same lock
and derive statistics outside it, so a query never sees half of a mutation.

If saving the workbook fails, the in-memory state and workbook are rolled
back to the last durable version and :class:`PersistenceUnavailable` is
raised. There is no retry.
"""

from __future__ import annotations

import math
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from openpyxl.workbook import Workbook

from . import analytics, data_manager, log
from .constants import CURRENCY_QUANTUM, EXPECTED_SCHEMA_VERSION, DeleteScope, Period, TimelineGrouping, Topic
from .ledger import (
    DateRange,
    Ledger,
    ProductAggregate,
    ProductTotals,
    Transaction,
    generate_transaction_id,
)
from .line_items import DEFAULT_PARSER, LineItemParser, allocate_revenue, parse_line_items
from .loyalty import LoyaltyLedger
from .publisher import LoggingPublisher, UpdatePublisher


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class InvalidAmount(BusinessRuleViolation):
    """Raised when a sale amount is negative or not a finite number."""


class InvalidTimestamp(BusinessRuleViolation):
    """Raised when a sale timestamp cannot be interpreted."""


class MissingName(BusinessRuleViolation):
    """Raised when a loyalty operation has no customer name."""


class InvalidPoints(BusinessRuleViolation):
    """Raised when a loyalty delta is not a whole number."""


class UnknownScope(BusinessRuleViolation):
    """Raised for an unsupported deletion scope, period, or grouping."""


class PersistenceUnavailable(RuntimeError):
    """Raised when the workbook could not be written to disk."""


TimestampInput = Union[datetime, int, float, str, None]


@dataclass
class LedgerState:
    """Mutable domain state held by a :class:`RuntimeContext`."""

    ledger: Ledger
    products: ProductAggregate
    loyalty: LoyaltyLedger

    def copy(self) -> "LedgerState":
        return LedgerState(
            ledger=Ledger(self.ledger),
            products=ProductAggregate(dict(self.products.items())),
            loyalty=LoyaltyLedger(self.loyalty.items()),
        )


@dataclass
class RuntimeContext:
    """Configuration, workbook, and state shared by all BLL operations.

    ``lock`` enforces a single writer; it is re-entrant so helpers can take
    it again while a mutation is in progress.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    state: LedgerState
    publisher: UpdatePublisher = field(default_factory=LoggingPublisher)
    parser: LineItemParser = DEFAULT_PARSER
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def load_state(workbook: Workbook) -> LedgerState:
    """Build the domain state from the rows stored in ``workbook``."""

    transactions = [
        Transaction(
            transaction_id=row.transaction_id,
            date=date.fromisoformat(row.date_iso),
            timestamp=datetime.fromisoformat(row.timestamp_iso),
            hour=row.hour,
            amount=row.amount,
            description=row.description,
        )
        for row in data_manager.iter_transactions(workbook)
    ]
    products = {
        row.product_name: ProductTotals(quantity=row.quantity, revenue=row.revenue)
        for row in data_manager.iter_products(workbook)
    }
    loyalty = [(row.customer_name, row.points) for row in data_manager.iter_loyalty(workbook)]
    log.debug(
        "Loaded state: %d transactions, %d products, %d loyalty accounts",
        len(transactions),
        len(products),
        len(loyalty),
    )
    return LedgerState(
        ledger=Ledger(transactions),
        products=ProductAggregate(products),
        loyalty=LoyaltyLedger(loyalty),
    )


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    publisher: Optional[UpdatePublisher] = None,
) -> RuntimeContext:
    """Load configuration, open the workbook and rebuild the in-memory state.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upwards from the current
            working directory.
        publisher (UpdatePublisher | None): Receiver for mutation results.
            Defaults to :class:`~venue_ledger.publisher.LoggingPublisher`.

    Returns:
        RuntimeContext: Fully populated context ready for the operations below.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    state = load_state(workbook)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        state=state,
        publisher=publisher or LoggingPublisher(),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save the workbook to the configured data file.

    Raises:
        PersistenceUnavailable: If the file cannot be written.
    """
    try:
        data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    except OSError as exc:
        log.error("Failed to persist workbook '%s': %s", context.settings.data_file, exc)
        raise PersistenceUnavailable(f"Unable to save {context.settings.data_file}: {exc}") from exc
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook and state from disk, dropping unsaved changes.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        state=load_state(workbook),
        publisher=context.publisher,
        parser=context.parser,
    )


def _sync_workbook(context: RuntimeContext) -> None:
    """Rewrite every sheet from the in-memory state."""

    state = context.state
    data_manager.replace_transactions(context.workbook, (_to_row(entry) for entry in state.ledger))
    _write_products(context)
    data_manager.replace_loyalty(
        context.workbook,
        (data_manager.LoyaltyRow(name, points) for name, points in state.loyalty.items()),
    )


def _write_products(context: RuntimeContext) -> None:
    data_manager.replace_products(
        context.workbook,
        (
            data_manager.ProductRow(name, totals.quantity, totals.revenue)
            for name, totals in context.state.products.items()
        ),
    )


@contextmanager
def _mutation(context: RuntimeContext) -> Iterator[None]:
    """Run a mutation under the writer lock with rollback on save failure."""

    with context.lock:
        backup = context.state.copy()
        try:
            yield
        except PersistenceUnavailable:
            context.state = backup
            _sync_workbook(context)
            log.warning("Rolled back in-memory state after failed save")
            raise


def _publish(context: RuntimeContext, topic: Topic, payload: Dict[str, Any]) -> None:
    context.publisher.publish(topic.value, payload)


def to_local(context: RuntimeContext, moment: datetime) -> datetime:
    """Express ``moment`` in the venue's time zone.

    Naive datetimes are taken to already be venue-local.
    """

    zone = context.settings.timezone
    if moment.tzinfo is None:
        return moment.replace(tzinfo=zone) if zone is not None else moment.astimezone()
    return moment.astimezone(zone) if zone is not None else moment.astimezone()


def venue_now(context: RuntimeContext) -> datetime:
    return to_local(context, _utc_now())


def _resolve_timestamp(candidate: TimestampInput) -> datetime:
    """Normalise a caller-supplied sale time.

    Accepts a ``datetime``, epoch milliseconds, or an ISO-8601 string. ``None``
    means "now".
    """

    if candidate is None:
        return _utc_now()
    if isinstance(candidate, datetime):
        return candidate
    if isinstance(candidate, bool):
        raise InvalidTimestamp(f"Unsupported timestamp: {candidate!r}")
    if isinstance(candidate, (int, float)):
        try:
            return datetime.fromtimestamp(candidate / 1000, UTC)
        except (OverflowError, OSError, ValueError) as exc:
            raise InvalidTimestamp(f"Timestamp out of range: {candidate!r}") from exc
    if isinstance(candidate, str):
        try:
            return datetime.fromisoformat(candidate.strip())
        except ValueError as exc:
            raise InvalidTimestamp(f"Unsupported timestamp: {candidate!r}") from exc
    raise InvalidTimestamp(f"Unsupported timestamp: {candidate!r}")


def coerce_amount(value: Any) -> Decimal:
    """Convert a submitted amount into a non-negative finite ``Decimal``.

    Raises:
        InvalidAmount: If ``value`` is missing, boolean, not numeric, not
            finite, negative, or too large to express in cents.
    """

    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"Amount must be a number, got {value!r}")
    try:
        if isinstance(value, float):
            if not math.isfinite(value):
                raise InvalidAmount(f"Amount must be finite, got {value!r}")
            amount = Decimal(str(value))
        else:
            amount = Decimal(str(value).strip() if isinstance(value, str) else value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f"Amount must be a number, got {value!r}") from exc

    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}")
    if amount < 0:
        log.warning("Rejected negative sale amount %s", amount)
        raise InvalidAmount(f"Amount must be zero or positive, got {value!r}")
    try:
        # must fit the default context once rounded to cents
        amount.quantize(CURRENCY_QUANTUM)
    except InvalidOperation as exc:
        log.warning("Rejected out-of-range sale amount %s", amount)
        raise InvalidAmount(f"Amount is too large, got {value!r}") from exc
    return amount


def require_name(name: Optional[str]) -> str:
    cleaned = name.strip() if isinstance(name, str) else ""
    if not cleaned:
        raise MissingName("Customer name is required")
    return cleaned


def coerce_points(delta: Any) -> int:
    """Accept whole-number point deltas given as ``int`` or text."""

    if isinstance(delta, bool):
        raise InvalidPoints(f"Points must be a whole number, got {delta!r}")
    if isinstance(delta, int):
        return delta
    if isinstance(delta, str):
        try:
            return int(delta.strip())
        except ValueError as exc:
            raise InvalidPoints(f"Points must be a whole number, got {delta!r}") from exc
    raise InvalidPoints(f"Points must be a whole number, got {delta!r}")


def _to_row(transaction: Transaction) -> data_manager.TransactionRow:
    return data_manager.TransactionRow(
        transaction_id=transaction.transaction_id,
        date_iso=transaction.date.isoformat(),
        timestamp_iso=transaction.timestamp.isoformat(),
        hour=transaction.hour,
        amount=transaction.amount,
        description=transaction.description,
    )


def record_sale(
    context: RuntimeContext,
    description: str,
    amount: Any,
    timestamp: TimestampInput = None,
) -> Dict[str, Any]:
    """Record one sale and attribute its amount to the products it mentions.

    The description is parsed into line items and the amount split across
    them by quantity. The transaction is appended to the ledger even when no
    line item is recognised; in that case no product totals change.

    Args:
        context (RuntimeContext): Runtime context owning state and workbook.
        description (str): Free-text sale record, e.g. ``"2x Pop UP | Essen"``.
        amount: Total amount of the sale. Anything ``Decimal`` can read.
        timestamp: When the sale happened; ``datetime``, epoch milliseconds,
            ISO-8601 text, or ``None`` for now.

    Returns:
        dict: ``day_key``, ``ledger_entry_id``, ``allocated_products`` (each
            with ``product_name``, ``quantity`` and rounded ``revenue``) and
            ``day_sales`` (the day's total and entries).

    Raises:
        InvalidAmount: If ``amount`` is negative or not numeric.
        InvalidTimestamp: If ``timestamp`` cannot be interpreted.
        PersistenceUnavailable: If the workbook could not be saved.
    """

    value = coerce_amount(amount)
    description = description or ""
    moment = to_local(context, _resolve_timestamp(timestamp))
    items = parse_line_items(description, context.parser)
    allocations = allocate_revenue(value, items)

    with _mutation(context):
        state = context.state
        transaction = state.ledger.append(
            Transaction(
                transaction_id=generate_transaction_id(when=moment),
                date=moment.date(),
                timestamp=moment,
                hour=moment.hour,
                amount=value,
                description=description,
            )
        )
        state.products.apply_allocations(allocations)

        data_manager.append_transaction(context.workbook, _to_row(transaction))
        _write_products(context)
        persist_context(context)

        day = transaction.date
        result = {
            "day_key": day.isoformat(),
            "ledger_entry_id": transaction.transaction_id,
            "allocated_products": [
                {
                    "product_name": allocation.item.product_name,
                    "quantity": allocation.item.quantity,
                    "revenue": analytics.money(allocation.revenue),
                }
                for allocation in allocations
            ],
            "day_sales": analytics.daily_sales(state.ledger.query(DateRange(day, day)))[day.isoformat()],
        }
        log.info(
            "Recorded sale '%s' on %s (amount=%s, products=%d)",
            transaction.transaction_id,
            result["day_key"],
            value,
            len(allocations),
        )
        _publish(context, Topic.SALES, result)
        _publish(context, Topic.PRODUCTS, state.products.snapshot())
    return result


def delete_by_scope(context: RuntimeContext, scope: str) -> Dict[str, Any]:
    """Bulk-delete ledger entries and/or product totals.

    ``all`` empties the ledger and the aggregate; ``products`` clears only
    the aggregate; ``today``, ``week`` and ``month`` drop transactions in the
    trailing window and recompute the aggregate from what remains.

    Returns:
        dict: ``scope``, ``deleted`` (transactions removed, or aggregate
            entries cleared for ``products``) and the resulting ``products``.

    Raises:
        UnknownScope: If ``scope`` is not one of the recognised values.
        PersistenceUnavailable: If the workbook could not be saved.
    """

    try:
        resolved = DeleteScope(scope)
    except ValueError as exc:
        log.warning("Rejected unknown deletion scope %r", scope)
        raise UnknownScope(f"Unknown scope: {scope!r}") from exc

    with _mutation(context):
        state = context.state
        today = venue_now(context).date()
        removed = state.ledger.delete_by_scope(resolved, today=today)
        if resolved is DeleteScope.PRODUCTS:
            deleted = state.products.clear()
        elif resolved is DeleteScope.ALL:
            state.products.clear()
            deleted = len(removed)
        else:
            state.products.rebuild(state.ledger, context.parser)
            deleted = len(removed)

        if removed:
            data_manager.replace_transactions(context.workbook, (_to_row(entry) for entry in state.ledger))
        _write_products(context)
        persist_context(context)

        result = {
            "scope": resolved.value,
            "deleted": deleted,
            "products": state.products.snapshot(),
        }
        log.info("Deleted scope '%s' (%d removed)", resolved.value, deleted)
        _publish(context, Topic.SALES, result)
        _publish(context, Topic.PRODUCTS, result["products"])
    return result


def add_loyalty_points(context: RuntimeContext, name: Optional[str], delta: Any) -> Dict[str, Any]:
    """Adjust a customer's balance and report any tier transition.

    Raises:
        MissingName: If ``name`` is empty.
        InvalidPoints: If ``delta`` is not a whole number.
        PersistenceUnavailable: If the workbook could not be saved.
    """

    customer = require_name(name)
    points = coerce_points(delta)

    with _mutation(context):
        change = context.state.loyalty.add_points(customer, points)
        data_manager.replace_loyalty(
            context.workbook,
            (data_manager.LoyaltyRow(n, p) for n, p in context.state.loyalty.items()),
        )
        persist_context(context)

        result = change.as_dict()
        result["accounts"] = context.state.loyalty.list()
        if change.tier_changed:
            log.info(
                "Customer '%s' moved from %s to %s",
                customer,
                change.old_tier.value,
                change.new_tier.value,
            )
        _publish(context, Topic.LOYALTY, result)
    return result


def remove_loyalty_account(context: RuntimeContext, name: Optional[str]) -> Dict[str, Any]:
    """Delete a customer's loyalty account; unknown names are a no-op.

    Raises:
        MissingName: If ``name`` is empty.
        PersistenceUnavailable: If the workbook could not be saved.
    """

    customer = require_name(name)

    with _mutation(context):
        removed = context.state.loyalty.remove(customer)
        if removed:
            data_manager.replace_loyalty(
                context.workbook,
                (data_manager.LoyaltyRow(n, p) for n, p in context.state.loyalty.items()),
            )
            persist_context(context)
            log.info("Removed loyalty account '%s'", customer)

        result = {
            "customer_name": customer,
            "removed": removed,
            "accounts": context.state.loyalty.list(),
        }
        _publish(context, Topic.LOYALTY, result)
    return result


def _parse_period(period: Optional[str]) -> Optional[str]:
    if period is None:
        return None
    try:
        return Period(period).value
    except ValueError as exc:
        raise UnknownScope(f"Unknown period: {period!r}") from exc


def _read_transactions(context: RuntimeContext) -> List[Transaction]:
    with context.lock:
        return list(context.state.ledger)


def _filtered(
    context: RuntimeContext,
    period: Optional[str],
    start_date: Optional[date],
    end_date: Optional[date],
) -> List[Transaction]:
    resolved = _parse_period(period)
    transactions = _read_transactions(context)
    date_range = analytics.resolve_range(
        resolved,
        today=venue_now(context).date(),
        start_date=start_date,
        end_date=end_date,
    )
    return analytics.filter_transactions(transactions, date_range)


def get_aggregate_snapshot(context: RuntimeContext) -> Dict[str, Dict[str, object]]:
    with context.lock:
        return context.state.products.snapshot()


def get_statistics_overview(
    context: RuntimeContext,
    period: Optional[str] = Period.ALL.value,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Dict[str, object]:
    """Headline revenue figures for a period or explicit date range."""

    return analytics.overview(_filtered(context, period, start_date, end_date))


def get_product_statistics(
    context: RuntimeContext,
    period: Optional[str] = Period.ALL.value,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Dict[str, object]]:
    return analytics.product_statistics(_filtered(context, period, start_date, end_date), context.parser)


def get_timeline(
    context: RuntimeContext,
    group_by: str = TimelineGrouping.DAY.value,
    period: Optional[str] = Period.ALL.value,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Dict[str, object]]:
    try:
        grouping = TimelineGrouping(group_by)
    except ValueError as exc:
        raise UnknownScope(f"Unknown timeline grouping: {group_by!r}") from exc
    return analytics.timeline(_filtered(context, period, start_date, end_date), grouping)


def get_rush_hour(
    context: RuntimeContext,
    period: Optional[str] = Period.ALL.value,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Dict[str, object]:
    """Hour-of-day histogram with the venue's current hour highlighted."""

    transactions = _filtered(context, period, start_date, end_date)
    return analytics.rush_hour(transactions, current_hour=venue_now(context).hour)


def get_top_products(context: RuntimeContext, period: str = Period.ALL.value) -> List[Dict[str, object]]:
    return analytics.top_products(_filtered(context, period, None, None), context.parser)


def get_daily_sales(context: RuntimeContext) -> Dict[str, Dict[str, object]]:
    return analytics.daily_sales(_read_transactions(context))


def list_loyalty_accounts(context: RuntimeContext) -> List[Dict[str, object]]:
    with context.lock:
        return context.state.loyalty.list()


def get_loyalty_statistics(context: RuntimeContext) -> Dict[str, object]:
    with context.lock:
        return context.state.loyalty.statistics()


def initial_sync(context: RuntimeContext) -> Dict[str, Any]:
    """Payloads a newly connected viewer receives, keyed by topic."""

    with context.lock:
        transactions = list(context.state.ledger)
        products = context.state.products.snapshot()
        accounts = context.state.loyalty.list()
    return {
        Topic.SALES.value: analytics.daily_sales(transactions),
        Topic.PRODUCTS.value: products,
        Topic.LOYALTY.value: accounts,
    }
