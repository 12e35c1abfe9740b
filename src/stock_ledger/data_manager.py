"""Data access layer for the stock ledger.

This module reads and writes the ledger workbook and the ``config.ini`` that
points at it. Business rules belong in :mod:`stock_ledger.core_logic`.

The workbook stores two independent sheets:

1. ``Transactions``: one row per ledger record.
2. ``OpeningStock``: one row per product with a known opening stock.

A missing workbook, a missing sheet or unreadable rows are treated as an empty
ledger for that sheet. Losing stored data is logged, never fatal, so the
application can always start.
"""


from __future__ import annotations

import configparser
import datetime
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Tuple, TypeVar
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import DEFAULT_LOG_LEVEL, log, resolve_log_level
from .constants import LOW_STOCK_THRESHOLD, ZERO, EntryKind, SheetName
from .models import Adjustment, LedgerState, Sale, Transaction
from .setup_workbook import build_ledger_workbook


CONFIG_FILE_NAME = "config.ini"
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
OPENING_STOCK_SHEET = SheetName.OPENING_STOCK.value

# Errors raised by openpyxl or by row conversion when stored data is damaged.
CORRUPT_DATA_ERRORS = (KeyError, ValueError, TypeError, InvalidOperation, BadZipFile, InvalidFileException)

_T = TypeVar("_T")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings."""

    data_file: Path
    dashboard_name: str
    schema_version: str
    low_stock_threshold: Decimal = LOW_STOCK_THRESHOLD
    log_level: str = DEFAULT_LOG_LEVEL


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate ``config.ini``.

    An explicit path is returned unchanged. Otherwise the search walks up from
    the current working directory and returns the first ``config.ini`` found.

    Raises:
        FileNotFoundError: If no directory up to the filesystem root holds the
            file.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System]`` must define ``DataFile``, ``DashboardName`` and
    ``SchemaVersion``. ``[System] LogLevel`` and ``[Reports]
    LowStockThreshold`` are optional. A relative ``DataFile`` is anchored at
    ``base_path`` (the config file's directory in normal use), falling back to
    the current working directory.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``LowStockThreshold`` is not a finite number or
            ``LogLevel`` is not a logging level name.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        dashboard_name = parser.get("System", "DashboardName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    threshold_raw = parser.get("Reports", "LowStockThreshold", fallback=str(LOW_STOCK_THRESHOLD))
    try:
        low_stock_threshold = Decimal(threshold_raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid LowStockThreshold: {threshold_raw!r}") from exc
    if not low_stock_threshold.is_finite():
        raise ValueError(f"Invalid LowStockThreshold: {threshold_raw!r}")

    log_level = parser.get("System", "LogLevel", fallback=DEFAULT_LOG_LEVEL).strip().upper()
    resolve_log_level(log_level)

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        dashboard_name=dashboard_name,
        schema_version=schema_version,
        low_stock_threshold=low_stock_threshold,
        log_level=log_level,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_transactions(workbook: Workbook) -> Iterable[Transaction]:
    """Yield one :class:`Transaction` per populated row of ``Transactions``."""

    sheet = workbook[TRANSACTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_transaction(raw)


def iter_opening_stocks(workbook: Workbook) -> Iterable[Tuple[str, Decimal]]:
    """Yield ``(product_name, opening_stock)`` pairs from ``OpeningStock``."""

    sheet = workbook[OPENING_STOCK_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_opening_stock(raw)


def _load_sheet(data_file: Path, sheet_name: str, loader: Callable[[], _T], empty: _T) -> _T:
    try:
        return loader()
    except CORRUPT_DATA_ERRORS as exc:
        log.warning("Sheet '%s' in '%s' is unreadable, treating it as empty: %s", sheet_name, data_file, exc)
        return empty


def load_state(data_file: Path) -> LedgerState:
    """Read the persisted ledger, falling back to empty on absent or corrupt data.

    Each sheet is loaded independently: damage to one does not discard the
    other. The returned state has not been replayed yet.
    """

    try:
        workbook = open_workbook(data_file)
    except FileNotFoundError:
        log.info("No ledger workbook at '%s'; starting with an empty ledger", data_file)
        return LedgerState()
    except (OSError, *CORRUPT_DATA_ERRORS) as exc:
        log.warning("Ledger workbook '%s' is unreadable, starting empty: %s", data_file, exc)
        return LedgerState()

    transactions = _load_sheet(
        data_file, TRANSACTIONS_SHEET, lambda: tuple(iter_transactions(workbook)), ()
    )
    opening_stocks = _load_sheet(
        data_file, OPENING_STOCK_SHEET, lambda: dict(iter_opening_stocks(workbook)), {}
    )
    log.debug(
        "Loaded %d transactions and %d opening stocks from '%s'",
        len(transactions),
        len(opening_stocks),
        data_file,
    )
    return LedgerState(transactions=transactions, opening_stocks=opening_stocks)


def save_state(state: LedgerState, data_file: Path) -> None:
    """Rewrite both sheets of the workbook from ``state``."""

    workbook = build_ledger_workbook()
    transactions_sheet = workbook[TRANSACTIONS_SHEET]
    for transaction in state.transactions:
        transactions_sheet.append(serialize_transaction(transaction))
    opening_sheet = workbook[OPENING_STOCK_SHEET]
    for product_name, quantity in state.opening_stocks.items():
        opening_sheet.append(serialize_opening_stock(product_name, quantity))
    save_workbook(workbook, data_file)


def serialize_transaction(record: Transaction) -> list[object]:
    """Convert a transaction into the ``Transactions`` column order.

    Values read back on load are written as exact decimal text, since openpyxl
    stores numbers as floats. Derived totals are written as numbers for people
    reading the sheet; they are ignored when the row is read back.
    """

    return [
        record.transaction_id,
        record.date.isoformat(),
        record.kind.value,
        record.product_name,
        _to_text(record.quantity_sold),
        _to_text(record.unit_cost),
        _to_text(record.unit_price),
        record.total_revenue,
        record.total_cost,
        record.profit,
        _to_text(record.stock_remaining),
    ]


def serialize_opening_stock(product_name: str, quantity: Decimal) -> list[object]:
    return [product_name, _to_text(quantity)]


def _to_text(value: Decimal) -> str:
    return str(value)


def _to_decimal(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else ZERO


def _to_date(raw: object) -> datetime.date:
    # openpyxl may hand back a datetime if the cell was edited in Excel
    if isinstance(raw, datetime.datetime):
        return raw.date()
    if isinstance(raw, datetime.date):
        return raw
    return datetime.date.fromisoformat(str(raw))


def deserialize_transaction(raw_row: Sequence[object]) -> Transaction:
    """Convert a raw ``Transactions`` row into a :class:`Transaction`.

    Raises:
        ValueError: If the row has the wrong width, an unknown entry kind, or
            an unparseable date.
        decimal.InvalidOperation: If a numeric cell holds text.
    """

    (
        transaction_id,
        date_raw,
        kind_raw,
        product_name,
        quantity_raw,
        unit_cost_raw,
        unit_price_raw,
        _total_revenue,
        _total_cost,
        _profit,
        stock_remaining_raw,
    ) = raw_row

    kind = EntryKind(str(kind_raw))
    stock_remaining = _to_decimal(stock_remaining_raw)
    if kind is EntryKind.ADJUSTMENT:
        entry: Sale | Adjustment = Adjustment(new_stock=stock_remaining)
    else:
        entry = Sale(
            quantity=_to_decimal(quantity_raw),
            unit_cost=_to_decimal(unit_cost_raw),
            unit_price=_to_decimal(unit_price_raw),
        )

    return Transaction(
        transaction_id=str(transaction_id),
        date=_to_date(date_raw),
        product_name=str(product_name),
        entry=entry,
        stock_remaining=stock_remaining,
    )


def deserialize_opening_stock(raw_row: Sequence[object]) -> Tuple[str, Decimal]:
    product_name, quantity_raw = raw_row[0], raw_row[1]
    return str(product_name), _to_decimal(quantity_raw)
