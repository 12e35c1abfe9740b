"""Read-only views derived from a validated ledger.

Nothing here is stored: the dashboard summary is recomputed from the replayed
transactions after every change, so it can never drift from the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from . import log
from .constants import LOW_STOCK_THRESHOLD, ZERO, CsvColumn, StockStatus
from .models import Transaction


@dataclass(frozen=True)
class StockLevel:
    """Current stock of one product."""

    product_name: str
    stock: Decimal


@dataclass(frozen=True)
class StockBuckets:
    """Products partitioned by how much stock they have left."""

    out: List[StockLevel] = field(default_factory=list)
    low: List[StockLevel] = field(default_factory=list)
    safe: List[StockLevel] = field(default_factory=list)

    def bucket(self, status: StockStatus) -> List[StockLevel]:
        return getattr(self, status.value)


@dataclass(frozen=True)
class ChartPoint:
    """Revenue and profit of one product, summed over the whole ledger."""

    product_name: str
    total_revenue: Decimal
    total_profit: Decimal


@dataclass(frozen=True)
class DashboardSummary:
    """Everything the dashboard shows about a ledger."""

    total_revenue: Decimal
    total_profit: Decimal
    best_seller: Optional[str]
    current_stock: Dict[str, Decimal]
    stock_status: StockBuckets
    chart_series: List[ChartPoint]


def compute_totals(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    """Sum revenue and profit across every record."""
    total_revenue = ZERO
    total_profit = ZERO
    for transaction in transactions:
        total_revenue += transaction.total_revenue
        total_profit += transaction.profit
    return {"total_revenue": total_revenue, "total_profit": total_profit}


def find_best_seller(transactions: Iterable[Transaction]) -> Optional[str]:
    """Return the product with the most units sold, or ``None`` without sales.

    Adjustments do not count. On a tie the product that appears first in the
    ledger wins.
    """
    sold: Dict[str, Decimal] = {}
    for transaction in transactions:
        if transaction.is_adjustment:
            continue
        sold[transaction.product_name] = sold.get(transaction.product_name, ZERO) + transaction.quantity_sold

    best_seller: Optional[str] = None
    best_quantity = ZERO
    for product_name, quantity in sold.items():
        if best_seller is None or quantity > best_quantity:
            best_seller, best_quantity = product_name, quantity
    return best_seller


def compute_current_stock(transactions: Iterable[Transaction]) -> Dict[str, Decimal]:
    """Return the stock left after each product's latest record.

    Records sharing the latest date resolve to the one that comes last in the
    input, which is the one the replay processed last.
    """
    latest: Dict[str, Transaction] = {}
    for transaction in transactions:
        previous = latest.get(transaction.product_name)
        if previous is None or transaction.date >= previous.date:
            latest[transaction.product_name] = transaction
    return {product_name: transaction.stock_remaining for product_name, transaction in latest.items()}


def classify_stock(stock: Decimal, *, threshold: Decimal = LOW_STOCK_THRESHOLD) -> StockStatus:
    if stock <= ZERO:
        return StockStatus.OUT
    if stock < threshold:
        return StockStatus.LOW
    return StockStatus.SAFE


def bucket_stock_levels(
    current_stock: Dict[str, Decimal],
    *,
    threshold: Decimal = LOW_STOCK_THRESHOLD,
) -> StockBuckets:
    """Partition products into out / low / safe stock buckets."""
    buckets = StockBuckets()
    for product_name, stock in current_stock.items():
        status = classify_stock(stock, threshold=threshold)
        buckets.bucket(status).append(StockLevel(product_name=product_name, stock=stock))
    return buckets


def build_chart_series(transactions: Iterable[Transaction]) -> List[ChartPoint]:
    """Sum revenue and profit per product, in order of first appearance."""
    revenue: Dict[str, Decimal] = {}
    profit: Dict[str, Decimal] = {}
    for transaction in transactions:
        name = transaction.product_name
        revenue[name] = revenue.get(name, ZERO) + transaction.total_revenue
        profit[name] = profit.get(name, ZERO) + transaction.profit
    return [
        ChartPoint(product_name=name, total_revenue=revenue[name], total_profit=profit[name])
        for name in revenue
    ]


def compute_aggregates(
    transactions: Sequence[Transaction],
    *,
    low_stock_threshold: Decimal = LOW_STOCK_THRESHOLD,
) -> DashboardSummary:
    """Derive the full dashboard summary from a validated ledger.

    Args:
        transactions (Sequence[Transaction]): Output of
            :func:`stock_ledger.core_logic.replay_ledger`.
        low_stock_threshold (Decimal): Stock below this value (and above
            zero) is reported as low.

    Returns:
        DashboardSummary: Totals, best seller, current stock, stock buckets and
            chart series.
    """
    totals = compute_totals(transactions)
    current_stock = compute_current_stock(transactions)
    summary = DashboardSummary(
        total_revenue=totals["total_revenue"],
        total_profit=totals["total_profit"],
        best_seller=find_best_seller(transactions),
        current_stock=current_stock,
        stock_status=bucket_stock_levels(current_stock, threshold=low_stock_threshold),
        chart_series=build_chart_series(transactions),
    )
    log.debug(
        "Computed aggregates: revenue=%s profit=%s products=%d",
        summary.total_revenue,
        summary.total_profit,
        len(current_stock),
    )
    return summary


_SORT_KEYS: Dict[str, Callable[[Transaction], object]] = {
    CsvColumn.DATE.value: lambda t: t.date,
    CsvColumn.PRODUCT_NAME.value: lambda t: t.product_name,
    CsvColumn.QUANTITY_SOLD.value: lambda t: t.quantity_sold,
    CsvColumn.UNIT_COST.value: lambda t: t.unit_cost,
    CsvColumn.UNIT_PRICE.value: lambda t: t.unit_price,
    CsvColumn.TOTAL_REVENUE.value: lambda t: t.total_revenue,
    CsvColumn.TOTAL_COST.value: lambda t: t.total_cost,
    CsvColumn.PROFIT.value: lambda t: t.profit,
    CsvColumn.STOCK_REMAINING.value: lambda t: t.stock_remaining,
}

SORTABLE_COLUMNS: tuple[str, ...] = tuple(_SORT_KEYS)


def sort_transactions(
    transactions: Iterable[Transaction],
    key: str,
    *,
    descending: bool = False,
) -> List[Transaction]:
    """Order ledger rows by one column for display.

    Raises:
        KeyError: If ``key`` is not one of :data:`SORTABLE_COLUMNS`.
    """
    if key not in _SORT_KEYS:
        raise KeyError(f"Unknown sort column: {key}")
    return sorted(transactions, key=_SORT_KEYS[key], reverse=descending)


__all__ = [
    "StockLevel",
    "StockBuckets",
    "ChartPoint",
    "DashboardSummary",
    "SORTABLE_COLUMNS",
    "compute_aggregates",
    "compute_totals",
    "find_best_seller",
    "compute_current_stock",
    "classify_stock",
    "bucket_stock_levels",
    "build_chart_series",
    "sort_transactions",
]
