"""Record model for the stock ledger.

A :class:`Transaction` wraps exactly one ledger entry: a :class:`Sale`, which
consumes stock, or an :class:`Adjustment`, which sets the stock of a product to
a stated level. Monetary totals are derived from the entry instead of being
stored, so a record can never carry revenue that disagrees with its quantity.
"""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional, Tuple, Union

from .constants import ZERO, EntryKind


@dataclass(frozen=True)
class Sale:
    """Stock leaving the shop at a unit cost and unit price."""

    quantity: Decimal
    unit_cost: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class Adjustment:
    """Authoritative stock level recorded for a product."""

    new_stock: Decimal


LedgerEntry = Union[Sale, Adjustment]


@dataclass(frozen=True)
class Transaction:
    """One row of the ledger.

    ``stock_remaining`` belongs to the replay engine: for sales it is
    recomputed on every replay and any value supplied on input is ignored.
    """

    transaction_id: str
    date: datetime.date
    product_name: str
    entry: LedgerEntry
    stock_remaining: Decimal = ZERO

    @property
    def kind(self) -> EntryKind:
        return EntryKind.ADJUSTMENT if isinstance(self.entry, Adjustment) else EntryKind.SALE

    @property
    def is_adjustment(self) -> bool:
        return isinstance(self.entry, Adjustment)

    @property
    def quantity_sold(self) -> Decimal:
        return self.entry.quantity if isinstance(self.entry, Sale) else ZERO

    @property
    def unit_cost(self) -> Decimal:
        return self.entry.unit_cost if isinstance(self.entry, Sale) else ZERO

    @property
    def unit_price(self) -> Decimal:
        return self.entry.unit_price if isinstance(self.entry, Sale) else ZERO

    @property
    def total_revenue(self) -> Decimal:
        return self.quantity_sold * self.unit_price

    @property
    def total_cost(self) -> Decimal:
        return self.quantity_sold * self.unit_cost

    @property
    def profit(self) -> Decimal:
        return self.total_revenue - self.total_cost


@dataclass(frozen=True)
class LedgerState:
    """Complete ledger owned by the application: records plus opening stocks."""

    transactions: Tuple[Transaction, ...] = ()
    opening_stocks: Mapping[str, Decimal] = field(default_factory=dict)


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime.datetime] = None) -> str:
    """Generate a unique transaction identifier.

    Args:
        prefix (str): Designator for the origin of the record, ``"C"`` for CSV
            imports and ``"M"`` for manual entries.
        when (datetime | None): Timestamp embedded in the identifier. Defaults
            to the current UTC time.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{hex8}``.

    A CSV batch creates many records within the same microsecond, so a random
    suffix keeps identifiers unique while the timestamp keeps them sortable.
    """
    when = when or datetime.datetime.now(datetime.UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:8]}"


def make_sale(
    product_name: str,
    when: datetime.date,
    *,
    quantity: Decimal,
    unit_cost: Decimal,
    unit_price: Decimal,
    transaction_id: Optional[str] = None,
) -> Transaction:
    """Build a sale record with a fresh identifier unless one is supplied."""
    return Transaction(
        transaction_id=transaction_id or generate_transaction_id(prefix="M"),
        date=when,
        product_name=product_name,
        entry=Sale(quantity=quantity, unit_cost=unit_cost, unit_price=unit_price),
    )


def make_adjustment(
    product_name: str,
    when: datetime.date,
    *,
    new_stock: Decimal,
    transaction_id: Optional[str] = None,
) -> Transaction:
    """Build an adjustment record whose stock already mirrors the new level."""
    return Transaction(
        transaction_id=transaction_id or generate_transaction_id(prefix="M"),
        date=when,
        product_name=product_name,
        entry=Adjustment(new_stock=new_stock),
        stock_remaining=new_stock,
    )


__all__ = [
    "Sale",
    "Adjustment",
    "LedgerEntry",
    "Transaction",
    "LedgerState",
    "generate_transaction_id",
    "make_sale",
    "make_adjustment",
]
