"""CSV import and export for ledger transactions.

The wire format keeps the flat nine-column layout users already have in their
spreadsheets: a row whose ``quantity_sold`` is zero is a stock adjustment and
its ``stock_remaining`` cell is the new stock level. For sale rows the
``stock_remaining`` cell is read but discarded because the replay engine owns
that value.

Values are split on commas without any quoting support, so product names must
not contain commas.
"""

from __future__ import annotations

import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List

from . import log
from .constants import CSV_COLUMNS, NUMERIC_CSV_COLUMNS, ZERO, CsvColumn
from .errors import EmptyInputError, ParseError
from .models import Adjustment, Sale, Transaction, generate_transaction_id


DELIMITER = ","
LINE_SEPARATOR = "\n"
BYTE_ORDER_MARK = "\ufeff"


def parse_csv(text: str, *, id_prefix: str = "C") -> List[Transaction]:
    """Parse uploaded CSV text into transactions ready for replay.

    Args:
        text (str): Entire file content, already decoded from UTF-8.
        id_prefix (str): Prefix for the identifiers assigned to every row.

    Returns:
        list[Transaction]: One record per non-blank data row, in file order.

    Raises:
        EmptyInputError: If the text has no data rows.
        ParseError: If required header columns are missing, or a cell cannot
            be converted. The error carries the 1-based row number (the header
            is row 1) and the column name.
    """
    # spreadsheet "CSV UTF-8" exports start with a byte-order mark
    text = text.removeprefix(BYTE_ORDER_MARK)
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        log.warning("Rejected CSV without data rows (%d non-blank lines)", len(lines))
        raise EmptyInputError("CSV file is empty or contains only a header row.")

    header = [name.strip() for name in lines[0].split(DELIMITER)]
    missing = [column for column in CSV_COLUMNS if column not in header]
    if missing:
        log.warning("Rejected CSV header missing columns: %s", ", ".join(missing))
        raise ParseError(f"Invalid CSV header. Missing columns: {', '.join(missing)}")

    positions = {name: index for index, name in enumerate(header)}
    transactions = []
    for row_number, line in enumerate(lines[1:], start=2):
        values = [value.strip() for value in line.split(DELIMITER)]
        cells = {
            column: values[positions[column]] if positions[column] < len(values) else ""
            for column in CSV_COLUMNS
        }
        transactions.append(build_transaction(cells, row_number=row_number, id_prefix=id_prefix))

    log.debug("Parsed %d transactions from CSV", len(transactions))
    return transactions


def build_transaction(cells: Dict[str, str], *, row_number: int, id_prefix: str) -> Transaction:
    """Convert the raw cells of one CSV row into a :class:`Transaction`."""
    numbers = {
        column: parse_number(cells[column], row_number=row_number, column=column)
        for column in CSV_COLUMNS
        if column in NUMERIC_CSV_COLUMNS
    }
    when = parse_date(cells[CsvColumn.DATE.value], row_number=row_number)

    product_name = cells[CsvColumn.PRODUCT_NAME.value]
    if not product_name:
        raise ParseError(
            f"Empty value at row {row_number}, column '{CsvColumn.PRODUCT_NAME.value}'.",
            row=row_number,
            column=CsvColumn.PRODUCT_NAME.value,
        )

    for column in (CsvColumn.QUANTITY_SOLD, CsvColumn.UNIT_COST, CsvColumn.UNIT_PRICE):
        if numbers[column.value] < ZERO:
            raise ParseError(
                f"Negative value at row {row_number}, column '{column.value}'.",
                row=row_number,
                column=column.value,
            )

    transaction_id = generate_transaction_id(prefix=id_prefix)
    quantity = numbers[CsvColumn.QUANTITY_SOLD.value]
    if quantity == ZERO:
        new_stock = numbers[CsvColumn.STOCK_REMAINING.value]
        if new_stock < ZERO:
            raise ParseError(
                f"Negative stock adjustment at row {row_number}, column "
                f"'{CsvColumn.STOCK_REMAINING.value}'.",
                row=row_number,
                column=CsvColumn.STOCK_REMAINING.value,
            )
        return Transaction(
            transaction_id=transaction_id,
            date=when,
            product_name=product_name,
            entry=Adjustment(new_stock=new_stock),
            stock_remaining=new_stock,
        )

    transaction = Transaction(
        transaction_id=transaction_id,
        date=when,
        product_name=product_name,
        entry=Sale(
            quantity=quantity,
            unit_cost=numbers[CsvColumn.UNIT_COST.value],
            unit_price=numbers[CsvColumn.UNIT_PRICE.value],
        ),
    )
    stated = (
        numbers[CsvColumn.TOTAL_REVENUE.value],
        numbers[CsvColumn.TOTAL_COST.value],
        numbers[CsvColumn.PROFIT.value],
    )
    if stated != (transaction.total_revenue, transaction.total_cost, transaction.profit):
        log.warning(
            "Row %d: stated totals %s differ from derived totals; using derived values",
            row_number,
            stated,
        )
    return transaction


def parse_number(raw: str, *, row_number: int, column: str) -> Decimal:
    """Parse a numeric cell, rejecting blanks, text and non-finite values."""
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise ParseError(
            f"Invalid value at row {row_number}, column '{column}'. Please check your CSV file.",
            row=row_number,
            column=column,
        ) from exc
    if not value.is_finite():
        raise ParseError(
            f"Invalid value at row {row_number}, column '{column}'. Please check your CSV file.",
            row=row_number,
            column=column,
        )
    return value


def parse_date(raw: str, *, row_number: int) -> datetime.date:
    """Parse an ISO ``YYYY-MM-DD`` date cell."""
    try:
        return datetime.date.fromisoformat(raw)
    except ValueError as exc:
        raise ParseError(
            f"Invalid date at row {row_number}, column '{CsvColumn.DATE.value}'.",
            row=row_number,
            column=CsvColumn.DATE.value,
        ) from exc


def format_number(value: Decimal) -> str:
    """Render a decimal as a plain number without exponent or trailing zeros."""
    normalized = value.normalize()
    if normalized == ZERO:
        return "0"
    return f"{normalized:f}"


def serialize_row(transaction: Transaction) -> List[str]:
    """Convert a transaction into CSV cells in column declaration order."""
    return [
        transaction.date.isoformat(),
        transaction.product_name,
        format_number(transaction.quantity_sold),
        format_number(transaction.unit_cost),
        format_number(transaction.unit_price),
        format_number(transaction.total_revenue),
        format_number(transaction.total_cost),
        format_number(transaction.profit),
        format_number(transaction.stock_remaining),
    ]


def export_csv(transactions: Iterable[Transaction]) -> str:
    """Serialize validated transactions to CSV text (identifiers omitted).

    Values are joined as-is; nothing is quoted or escaped.
    """
    rows = [DELIMITER.join(CSV_COLUMNS)]
    rows.extend(DELIMITER.join(serialize_row(transaction)) for transaction in transactions)
    log.debug("Exported %d transactions to CSV", len(rows) - 1)
    return LINE_SEPARATOR.join(rows)


__all__ = [
    "parse_csv",
    "export_csv",
    "build_transaction",
    "parse_number",
    "parse_date",
    "format_number",
    "serialize_row",
]
