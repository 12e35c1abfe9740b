"""Enumerations and constants shared across the stock ledger modules.

The engine, the CSV codec, the workbook layer and the CLI all agree on column
names and thresholds through this module so that a rename happens in one
place.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Version of the workbook layout written by ``setup_workbook``.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Products whose current stock is below this value are reported as "low".
LOW_STOCK_THRESHOLD = Decimal("10")

ZERO = Decimal("0")


class EntryKind(str, Enum):
    """Enumerate the two kinds of ledger entries."""

    SALE = "SALE"
    ADJUSTMENT = "ADJUSTMENT"


class StockStatus(str, Enum):
    """Enumerate the stock-status buckets reported on the dashboard."""

    OUT = "out"
    LOW = "low"
    SAFE = "safe"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    TRANSACTIONS = "Transactions"
    OPENING_STOCK = "OpeningStock"


class CsvColumn(str, Enum):
    """CSV field names in declaration (export) order."""

    DATE = "date"
    PRODUCT_NAME = "product_name"
    QUANTITY_SOLD = "quantity_sold"
    UNIT_COST = "unit_cost"
    UNIT_PRICE = "unit_price"
    TOTAL_REVENUE = "total_revenue"
    TOTAL_COST = "total_cost"
    PROFIT = "profit"
    STOCK_REMAINING = "stock_remaining"


CSV_COLUMNS: tuple[str, ...] = tuple(column.value for column in CsvColumn)

NUMERIC_CSV_COLUMNS: frozenset[str] = frozenset(
    {
        CsvColumn.QUANTITY_SOLD.value,
        CsvColumn.UNIT_COST.value,
        CsvColumn.UNIT_PRICE.value,
        CsvColumn.TOTAL_REVENUE.value,
        CsvColumn.TOTAL_COST.value,
        CsvColumn.PROFIT.value,
        CsvColumn.STOCK_REMAINING.value,
    }
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_THRESHOLD",
    "ZERO",
    "EntryKind",
    "StockStatus",
    "SheetName",
    "CsvColumn",
    "CSV_COLUMNS",
    "NUMERIC_CSV_COLUMNS",
]
