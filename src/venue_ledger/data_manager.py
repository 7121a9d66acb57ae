"""Data access layer for Venue Ledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending or replacing
   rows on the ``TransactionLog``, ``Products`` and ``Loyalty`` sheets.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import SheetName


CONFIG_FILE_NAME = "config.ini"
LOCAL_TIMEZONE = "local"
TRANSACTION_LOG_SHEET = SheetName.TRANSACTION_LOG.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
LOYALTY_SHEET = SheetName.LOYALTY.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about.

    ``timezone`` is ``None`` when the venue runs on the host's local zone.
    """

    data_file: Path
    venue_name: str
    schema_version: str
    timezone: Optional[ZoneInfo] = None


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``TransactionLog`` sheet."""

    transaction_id: str
    date_iso: str
    timestamp_iso: str
    hour: int
    amount: Decimal
    description: str


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_name: str
    quantity: int
    revenue: Decimal


@dataclass(frozen=True)
class LoyaltyRow:
    """In-memory view of a row from the ``Loyalty`` sheet."""

    customer_name: str
    points: int


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` (or the
    current working directory) and resolved. The optional ``Timezone`` entry
    names an IANA zone such as ``Europe/Berlin``; when it is absent or set to
    ``local`` the host's local zone is used.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required option is missing or the time zone is unknown.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        venue_name = parser.get("System", "VenueName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    timezone_raw = parser.get("System", "Timezone", fallback=LOCAL_TIMEZONE).strip()
    timezone: Optional[ZoneInfo] = None
    if timezone_raw and timezone_raw.lower() != LOCAL_TIMEZONE:
        try:
            timezone = ZoneInfo(timezone_raw)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise KeyError(f"Unknown time zone in configuration: {timezone_raw}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        venue_name=venue_name,
        schema_version=schema_version,
        timezone=timezone,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def _replace_sheet_rows(workbook: Workbook, sheet_name: str, rows: Iterable[list[object]]) -> int:
    """Drop every data row below the header and append ``rows`` instead."""

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    written = 0
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)
        written += 1
    return written


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream transaction records from the ``TransactionLog`` worksheet.

    Header and fully empty rows are skipped; each remaining row is converted
    via :func:`deserialize_transaction`.
    """

    for raw in _iter_sheet_rows(workbook, TRANSACTION_LOG_SHEET):
        yield deserialize_transaction(raw)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over the persisted per-product totals."""

    for raw in _iter_sheet_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_loyalty(workbook: Workbook) -> Iterable[LoyaltyRow]:
    """Iterate over loyalty balances in sheet order."""

    for raw in _iter_sheet_rows(workbook, LOYALTY_SHEET):
        yield deserialize_loyalty(raw)


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a transaction record to the ``TransactionLog`` worksheet."""

    workbook[TRANSACTION_LOG_SHEET].append(serialize_transaction(record))


def replace_transactions(workbook: Workbook, records: Iterable[TransactionRow]) -> int:
    """Rewrite the transaction log with ``records`` after a scoped deletion."""

    written = _replace_sheet_rows(workbook, TRANSACTION_LOG_SHEET, (serialize_transaction(r) for r in records))
    log.debug("Rewrote %s with %d rows", TRANSACTION_LOG_SHEET, written)
    return written


def replace_products(workbook: Workbook, records: Iterable[ProductRow]) -> int:
    """Rewrite the ``Products`` sheet with the current aggregate."""

    return _replace_sheet_rows(workbook, PRODUCTS_SHEET, (serialize_product(r) for r in records))


def replace_loyalty(workbook: Workbook, records: Iterable[LoyaltyRow]) -> int:
    """Rewrite the ``Loyalty`` sheet with the current balances."""

    return _replace_sheet_rows(workbook, LOYALTY_SHEET, (serialize_loyalty(r) for r in records))


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction dataclass into the transaction log column order.

    The amount is written as text so that it reloads as the exact
    :class:`~decimal.Decimal` that was recorded.
    """

    return [
        record.transaction_id,
        record.date_iso,
        record.timestamp_iso,
        record.hour,
        str(record.amount),
        record.description,
    ]


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into ``[ProductName, Quantity, Revenue]``.

    Revenue keeps its unrounded precision by being stored as text.
    """

    return [record.product_name, record.quantity, str(record.revenue)]


def serialize_loyalty(record: LoyaltyRow) -> list[object]:
    return [record.customer_name, record.points]


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal value: {raw!r}") from exc


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed transaction record.

    Amounts become :class:`~decimal.Decimal` instances, the hour an ``int``,
    and a blank description an empty string.
    """

    transaction_id, date_iso, timestamp_iso, hour, amount_raw, description = raw_row[:6]
    return TransactionRow(
        transaction_id=str(transaction_id),
        date_iso=str(date_iso) if date_iso is not None else "",
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        hour=int(hour) if hour is not None else 0,
        amount=_to_decimal(amount_raw),
        description=str(description) if description is not None else "",
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    product_name, quantity, revenue_raw = raw_row[:3]
    return ProductRow(
        product_name=str(product_name),
        quantity=int(quantity) if quantity is not None else 0,
        revenue=_to_decimal(revenue_raw),
    )


def deserialize_loyalty(raw_row: Sequence[object]) -> LoyaltyRow:
    customer_name, points = raw_row[:2]
    return LoyaltyRow(
        customer_name=str(customer_name),
        points=int(points) if points is not None else 0,
    )
