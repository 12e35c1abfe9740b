"""Business logic layer for the stock ledger.

The module holds the ledger engine and the mutations built on it. The engine
is two pure functions: :func:`infer_opening_stocks`, which back-computes the
smallest opening stock that makes a new product's sales feasible, and
:func:`replay_ledger`, which folds the chronologically sorted transaction log
over the opening stocks and recomputes every ``stock_remaining``.

Every mutation (manual entry, deletion, CSV import, opening-stock edit) builds
a candidate ledger and replays it in full. A mutation returns a new
:class:`~stock_ledger.models.LedgerState` on success and raises on failure, so
the caller's previous state is never touched.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from . import csv_codec, data_manager, log, set_log_level
from .constants import EXPECTED_SCHEMA_VERSION, ZERO
from .errors import MissingReferenceError, ValidationError
from .models import Adjustment, LedgerState, Transaction, make_adjustment, make_sale


@dataclass
class RuntimeContext:
    """Configuration plus the ledger state currently owned by the application.

    ``state`` is replaced wholesale after each successful mutation; it is never
    edited in place.
    """

    settings: data_manager.ConfigSettings
    state: LedgerState


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a sale manually."""

    product_name: str
    quantity: Decimal
    unit_cost: Decimal
    unit_price: Decimal
    date: Optional[datetime.date] = None


@dataclass(frozen=True)
class AdjustmentCommand:
    """User intent for setting a product's stock to a counted level."""

    product_name: str
    new_stock: Decimal
    date: Optional[datetime.date] = None


# ---------------------------------------------------------------------------
# Ledger engine
# ---------------------------------------------------------------------------


def sort_chronologically(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Sort by date only; ``sorted`` is stable so same-day records keep input order."""
    return sorted(transactions, key=lambda transaction: transaction.date)


def infer_opening_stocks(
    new_transactions: Sequence[Transaction],
    known_opening_stocks: Mapping[str, Decimal],
) -> Dict[str, Decimal]:
    """Compute the minimum opening stock for products seen for the first time.

    Each product missing from ``known_opening_stocks`` is walked in date
    order, subtracting sold quantities from a running level that starts at
    zero. The deepest point the level reaches is the stock that must have been
    on hand before the first sale. Adjustments sell nothing and leave the
    running level untouched.

    Args:
        new_transactions (Sequence[Transaction]): Incoming batch, in any order.
        known_opening_stocks (Mapping[str, Decimal]): Opening stocks already
            set. Products present here are skipped.

    Returns:
        dict[str, Decimal]: Inferred opening stocks for new products only. The
            input mapping is not modified.
    """
    grouped: Dict[str, List[Transaction]] = {}
    for transaction in new_transactions:
        grouped.setdefault(transaction.product_name, []).append(transaction)

    inferred: Dict[str, Decimal] = {}
    for product_name, product_transactions in grouped.items():
        if product_name in known_opening_stocks:
            continue

        stock_level = ZERO
        lowest_level = ZERO
        for transaction in sort_chronologically(product_transactions):
            stock_level -= transaction.quantity_sold
            lowest_level = min(lowest_level, stock_level)

        inferred[product_name] = abs(lowest_level)

    log.debug("Inferred opening stocks for %d new products", len(inferred))
    return inferred


def replay_ledger(
    transactions: Iterable[Transaction],
    opening_stocks: Mapping[str, Decimal],
) -> List[Transaction]:
    """Replay the full transaction log and recompute remaining stock.

    Args:
        transactions (Iterable[Transaction]): Every record of the ledger, old
            and new, in any order.
        opening_stocks (Mapping[str, Decimal]): Stock on hand before the first
            record of each product. Missing products start at zero.

    Returns:
        list[Transaction]: Copies of the input records sorted by date, each
            with ``stock_remaining`` set to the replayed level.

    Raises:
        ValidationError: If a sale needs more stock than is on hand. Nothing is
            returned in that case; the batch is rejected as a whole.
    """
    current_stock: Dict[str, Decimal] = dict(opening_stocks)
    replayed: List[Transaction] = []

    for transaction in sort_chronologically(transactions):
        stock_before = current_stock.get(transaction.product_name, ZERO)
        if isinstance(transaction.entry, Adjustment):
            stock_after = transaction.entry.new_stock
        else:
            stock_after = stock_before - transaction.entry.quantity
            if stock_after < ZERO:
                log.error(
                    "Replay rejected: '%s' on %s has stock %s, sale of %s",
                    transaction.product_name,
                    transaction.date,
                    stock_before,
                    transaction.entry.quantity,
                )
                raise ValidationError(
                    transaction.product_name,
                    transaction.date,
                    stock_before,
                    transaction.entry.quantity,
                )

        current_stock[transaction.product_name] = stock_after
        replayed.append(replace(transaction, stock_remaining=stock_after))

    log.debug("Replayed %d transactions across %d products", len(replayed), len(current_stock))
    return replayed


# ---------------------------------------------------------------------------
# Ledger mutations
# ---------------------------------------------------------------------------


def _commit(transactions: Iterable[Transaction], opening_stocks: Mapping[str, Decimal]) -> LedgerState:
    """Replay a candidate ledger and wrap the result in a new state."""
    replayed = replay_ledger(transactions, opening_stocks)
    return LedgerState(transactions=tuple(replayed), opening_stocks=dict(opening_stocks))


def record_sale(state: LedgerState, command: SaleCommand) -> LedgerState:
    """Validate a manual sale and return the ledger with the sale replayed in.

    Raises:
        ValueError: If the product name is blank, the quantity is not
            positive, or a price is negative.
        ValidationError: If there is not enough stock for the sale on its
            date.
    """
    product_name = require_product_name(command.product_name)
    require_positive_quantity(command.quantity)
    require_nonnegative_money(command.unit_cost)
    require_nonnegative_money(command.unit_price)

    transaction = make_sale(
        product_name,
        command.date or datetime.date.today(),
        quantity=command.quantity,
        unit_cost=command.unit_cost,
        unit_price=command.unit_price,
    )
    new_state = _commit([*state.transactions, transaction], state.opening_stocks)
    log.info(
        "Recorded sale '%s' for '%s' (quantity=%s, price=%s)",
        transaction.transaction_id,
        product_name,
        command.quantity,
        command.unit_price,
    )
    return new_state


def record_adjustment(state: LedgerState, command: AdjustmentCommand) -> LedgerState:
    """Record a stock adjustment and return the replayed ledger."""
    product_name = require_product_name(command.product_name)
    require_nonnegative_stock(command.new_stock)

    transaction = make_adjustment(
        product_name,
        command.date or datetime.date.today(),
        new_stock=command.new_stock,
    )
    new_state = _commit([*state.transactions, transaction], state.opening_stocks)
    log.info(
        "Recorded adjustment '%s' setting '%s' to %s",
        transaction.transaction_id,
        product_name,
        command.new_stock,
    )
    return new_state


def import_transactions(state: LedgerState, new_transactions: Sequence[Transaction]) -> LedgerState:
    """Merge an imported batch into the ledger.

    Opening stocks are inferred for products the ledger has never had an
    opening stock for; existing entries always win over inferred ones. The
    merged log is then replayed in full.
    """
    inferred = infer_opening_stocks(new_transactions, state.opening_stocks)
    combined_stocks = {**inferred, **state.opening_stocks}
    new_state = _commit([*state.transactions, *new_transactions], combined_stocks)
    log.info(
        "Imported %d transactions (%d inferred opening stocks)",
        len(new_transactions),
        len(inferred),
    )
    return new_state


def import_csv(state: LedgerState, text: str) -> LedgerState:
    """Parse CSV text and import its rows; see :func:`import_transactions`."""
    return import_transactions(state, csv_codec.parse_csv(text))


def delete_transaction(state: LedgerState, transaction_id: str) -> LedgerState:
    """Remove a record and replay what remains.

    Deleting an adjustment can leave later sales unfulfillable, in which case
    the replay raises :class:`ValidationError` and the deletion is refused.
    """
    get_transaction(state, transaction_id)
    remaining = [t for t in state.transactions if t.transaction_id != transaction_id]
    new_state = _commit(remaining, state.opening_stocks)
    log.info("Deleted transaction '%s'", transaction_id)
    return new_state


def update_opening_stocks(state: LedgerState, opening_stocks: Mapping[str, object]) -> LedgerState:
    """Replace the opening-stock map and revalidate the whole ledger."""
    normalized = normalize_opening_stocks(opening_stocks)
    new_state = _commit(state.transactions, normalized)
    log.info("Updated opening stocks for %d products", len(normalized))
    return new_state


def set_opening_stock(state: LedgerState, product_name: str, quantity: object) -> LedgerState:
    """Add or edit the opening stock of a single product."""
    product_name = require_product_name(product_name)
    return update_opening_stocks(state, {**state.opening_stocks, product_name: quantity})


def clear_ledger() -> LedgerState:
    """Return an empty ledger; the caller persists it to wipe stored data."""
    log.info("Cleared ledger state")
    return LedgerState()


def revalidate_state(state: LedgerState) -> LedgerState:
    """Replay a freshly loaded state, dropping stored records that fail.

    Persisted data can be edited outside the application. When it no longer
    replays, the records are discarded and only the opening stocks are kept.
    """
    try:
        return _commit(state.transactions, state.opening_stocks)
    except ValidationError as exc:
        log.error("Stored ledger is invalid and was discarded: %s", exc)
        return LedgerState(opening_stocks=dict(state.opening_stocks))


def get_transaction(state: LedgerState, transaction_id: str) -> Transaction:
    """Resolve a transaction by identifier.

    Raises:
        MissingReferenceError: If no record carries ``transaction_id``.
    """
    for transaction in state.transactions:
        if transaction.transaction_id == transaction_id:
            return transaction
    log.warning("Transaction lookup failed for id '%s'", transaction_id)
    raise MissingReferenceError(f"Unknown transaction id: {transaction_id}")


def list_products(state: LedgerState) -> List[str]:
    """Return every known product name, from records and opening stocks."""
    names = {transaction.product_name for transaction in state.transactions}
    names.update(state.opening_stocks)
    return sorted(names)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load settings and the persisted ledger.

    The stored ledger is replayed before use so that the context always holds
    a validated state.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    set_log_level(settings.log_level)
    state = revalidate_state(data_manager.load_state(settings.data_file))
    log.info("Loaded ledger '%s' (%d transactions)", settings.data_file, len(state.transactions))
    return RuntimeContext(settings=settings, state=state)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Reject configurations written for a different workbook layout.

    Raises:
        RuntimeError: If ``SchemaVersion`` differs from
            ``EXPECTED_SCHEMA_VERSION``.
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


def persist_context(context: RuntimeContext) -> None:
    """Write the context's ledger state to the configured workbook."""
    data_manager.save_state(context.state, context.settings.data_file)
    log.info("Persisted ledger '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the ledger from disk, discarding the in-memory state."""
    state = revalidate_state(data_manager.load_state(context.settings.data_file))
    log.info("Reloaded ledger '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, state=state)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def require_product_name(product_name: str) -> str:
    """Return the trimmed product name, rejecting blank names with ``ValueError``."""
    trimmed = product_name.strip()
    if not trimmed:
        log.error("Product name validation failed: %r", product_name)
        raise ValueError("Product name must not be empty")
    return trimmed


def require_finite_number(value: object) -> Decimal:
    """Return ``value`` as a finite ``Decimal``.

    Raises:
        ValueError: If ``value`` is not numeric, or is NaN or infinite.
    """
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        log.error("Numeric validation failed: %r", value)
        raise ValueError(f"Not a number: {value!r}") from exc
    if not number.is_finite():
        log.error("Numeric validation failed: %r", value)
        raise ValueError(f"Number must be finite: {value!r}")
    return number


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a sold quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is not finite, zero or negative.
    """
    if require_finite_number(quantity) <= ZERO:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity sold must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a unit cost or unit price is finite and not negative."""
    if require_finite_number(amount) < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def require_nonnegative_stock(quantity: Decimal) -> None:
    """Validate that a stock level is finite and not negative."""
    if require_finite_number(quantity) < ZERO:
        log.error("Stock level validation failed: %s", quantity)
        raise ValueError("Stock level must not be negative")


def normalize_opening_stocks(opening_stocks: Mapping[str, object]) -> Dict[str, Decimal]:
    """Trim product names, convert values to ``Decimal`` and check they are valid stock levels.

    Raises:
        ValueError: If a name is blank, a value is not a finite number, or a
            value is negative.
    """
    normalized: Dict[str, Decimal] = {}
    for product_name, raw in opening_stocks.items():
        quantity = require_finite_number(raw)
        require_nonnegative_stock(quantity)
        normalized[require_product_name(product_name)] = quantity
    return normalized
