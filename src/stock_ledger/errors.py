"""Exception hierarchy surfaced by the ledger engine and the CSV codec."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base class for every recoverable ledger failure."""


class MissingReferenceError(LedgerError):
    """Raised when a referenced transaction id is unknown."""


class ParseError(LedgerError):
    """Raised when CSV text cannot be converted into transactions."""

    def __init__(self, message: str, *, row: Optional[int] = None, column: Optional[str] = None) -> None:
        super().__init__(message)
        self.row = row
        self.column = column


class EmptyInputError(ParseError):
    """Raised when a CSV carries no data rows."""


class ValidationError(LedgerError):
    """Raised when replaying a transaction would drive stock negative.

    The attributes identify the offending point of the replay so callers can
    show the user exactly which sale could not be fulfilled.
    """

    def __init__(self, product_name: str, when: date, stock_before: Decimal, quantity: Decimal) -> None:
        self.product_name = product_name
        self.date = when
        self.stock_before = stock_before
        self.quantity = quantity
        super().__init__(
            f"Insufficient stock for '{product_name}' on {when.isoformat()}: "
            f"stock before sale {stock_before}, quantity sold {quantity}. "
            "Stock cannot go negative."
        )


__all__ = [
    "LedgerError",
    "MissingReferenceError",
    "ParseError",
    "EmptyInputError",
    "ValidationError",
]
