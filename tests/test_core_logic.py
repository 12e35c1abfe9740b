"""Unit tests for the ledger engine and the mutations built on it."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal
from unittest.mock import Mock

import pytest

from stock_ledger import constants, core_logic, data_manager
from stock_ledger.errors import MissingReferenceError, ParseError, ValidationError
from stock_ledger.models import LedgerState


def day(number: int) -> date:
    return date(2024, 1, number)


# ---------------------------------------------------------------------------
# Stock inference
# ---------------------------------------------------------------------------


def test_infer_returns_total_of_sales_for_new_product(sale):
    """Without adjustments the deepest point is the sum of all sales."""

    batch = [sale("A", day(1), 3), sale("A", day(2), 2)]

    assert core_logic.infer_opening_stocks(batch, {}) == {"A": Decimal("5")}


def test_infer_skips_products_with_known_opening_stock(sale):
    """Existing opening stocks are never overwritten or repeated."""

    batch = [sale("A", day(1), 3), sale("B", day(1), 4)]

    inferred = core_logic.infer_opening_stocks(batch, {"A": Decimal("1")})

    assert inferred == {"B": Decimal("4")}


def test_infer_ignores_adjustments(sale, adjustment):
    """Adjustments neither consume stock nor reset the running level."""

    batch = [sale("A", day(1), 5), adjustment("A", day(2), 10), sale("A", day(3), 3)]

    assert core_logic.infer_opening_stocks(batch, {}) == {"A": Decimal("8")}


def test_infer_adjustment_only_product_needs_no_stock(adjustment):
    batch = [adjustment("A", day(1), 10)]

    assert core_logic.infer_opening_stocks(batch, {}) == {"A": Decimal("0")}


def test_infer_empty_batch_returns_empty_mapping():
    assert core_logic.infer_opening_stocks([], {"A": Decimal("3")}) == {}


def test_infer_does_not_mutate_inputs(sale):
    batch = [sale("A", day(2), 1), sale("A", day(1), 2)]
    known = {"B": Decimal("1")}
    snapshot = list(batch)

    core_logic.infer_opening_stocks(batch, known)

    assert batch == snapshot
    assert known == {"B": Decimal("1")}


def test_inferred_stock_is_minimal(sale):
    """The inferred value replays successfully and one unit less does not."""

    batch = [sale("A", day(3), 4), sale("A", day(1), 2), sale("A", day(2), 1)]
    inferred = core_logic.infer_opening_stocks(batch, {})

    replayed = core_logic.replay_ledger(batch, inferred)
    assert replayed[-1].stock_remaining == Decimal("0")

    with pytest.raises(ValidationError):
        core_logic.replay_ledger(batch, {"A": inferred["A"] - 1})


# ---------------------------------------------------------------------------
# Ledger replay
# ---------------------------------------------------------------------------


def test_replay_rejects_sale_without_stock(sale):
    """Selling 5 from an opening stock of 0 cites the product and both amounts."""

    with pytest.raises(ValidationError) as excinfo:
        core_logic.replay_ledger([sale("A", day(1), 5)], {"A": Decimal("0")})

    error = excinfo.value
    assert error.product_name == "A"
    assert error.date == day(1)
    assert error.stock_before == Decimal("0")
    assert error.quantity == Decimal("5")
    assert "A" in str(error)


def test_replay_with_inferred_stock_reaches_zero(sale):
    batch = [sale("A", day(1), 5)]
    inferred = core_logic.infer_opening_stocks(batch, {})

    replayed = core_logic.replay_ledger(batch, inferred)

    assert replayed[0].stock_remaining == Decimal("0")


def test_replay_adjustment_then_sale(sale, adjustment):
    records = [adjustment("A", day(1), 10), sale("A", day(2), 3)]

    replayed = core_logic.replay_ledger(records, {})

    assert [t.stock_remaining for t in replayed] == [Decimal("10"), Decimal("7")]


def test_replay_after_deleting_sale_keeps_adjustment_level(adjustment):
    replayed = core_logic.replay_ledger([adjustment("A", day(1), 10)], {})

    assert replayed[0].stock_remaining == Decimal("10")


def test_replay_sorts_by_date(sale):
    late = sale("A", day(5), 1, transaction_id="late")
    early = sale("A", day(1), 2, transaction_id="early")

    replayed = core_logic.replay_ledger([late, early], {"A": Decimal("10")})

    assert [t.transaction_id for t in replayed] == ["early", "late"]
    assert [t.stock_remaining for t in replayed] == [Decimal("8"), Decimal("7")]


def test_replay_keeps_input_order_for_same_day_records(sale, adjustment):
    """Same-day records are applied in the order they were supplied."""

    sold = sale("A", day(1), 2, transaction_id="sold")
    counted = adjustment("A", day(1), 5, transaction_id="counted")

    sale_first = core_logic.replay_ledger([sold, counted], {"A": Decimal("3")})
    count_first = core_logic.replay_ledger([counted, sold], {"A": Decimal("3")})

    assert [(t.transaction_id, t.stock_remaining) for t in sale_first] == [
        ("sold", Decimal("1")),
        ("counted", Decimal("5")),
    ]
    assert [(t.transaction_id, t.stock_remaining) for t in count_first] == [
        ("counted", Decimal("5")),
        ("sold", Decimal("3")),
    ]


def test_replay_overwrites_supplied_stock_for_sales(sale):
    record = sale("A", day(1), 2, stock_remaining="999")

    replayed = core_logic.replay_ledger([record], {"A": Decimal("4")})

    assert replayed[0].stock_remaining == Decimal("2")
    assert record.stock_remaining == Decimal("999")


def test_replay_tracks_products_independently(sale):
    records = [sale("A", day(1), 1), sale("B", day(1), 2), sale("A", day(2), 1)]

    replayed = core_logic.replay_ledger(records, {"A": Decimal("2"), "B": Decimal("2")})

    assert [(t.product_name, t.stock_remaining) for t in replayed] == [
        ("A", Decimal("1")),
        ("B", Decimal("0")),
        ("A", Decimal("0")),
    ]


def test_replay_preserves_identity_and_other_fields(sale, adjustment):
    records = [sale("A", day(2), 1), adjustment("A", day(1), 3), sale("B", day(3), 1)]

    replayed = core_logic.replay_ledger(records, {"B": Decimal("1")})

    assert {t.transaction_id for t in replayed} == {t.transaction_id for t in records}
    by_id = {t.transaction_id: t for t in records}
    for transaction in replayed:
        original = by_id[transaction.transaction_id]
        assert replace(transaction, stock_remaining=original.stock_remaining) == original


def test_replay_is_idempotent(sale, adjustment):
    records = [
        sale("A", day(3), 2),
        adjustment("A", day(2), 6),
        sale("A", day(1), 1),
        sale("B", day(2), 3),
    ]
    stocks = {"A": Decimal("1"), "B": Decimal("3")}

    first = core_logic.replay_ledger(records, stocks)
    second = core_logic.replay_ledger(first, stocks)

    assert second == first


def test_replay_conserves_stock_after_last_adjustment(sale, adjustment):
    records = [
        sale("A", day(1), 2),
        sale("A", day(2), 3),
        adjustment("A", day(3), 20),
        sale("A", day(4), 5),
        sale("A", day(5), 1),
    ]

    replayed = core_logic.replay_ledger(records, {"A": Decimal("10")})

    assert replayed[1].stock_remaining == Decimal("5")
    assert replayed[-1].stock_remaining == Decimal("14")


def test_replay_does_not_mutate_opening_stocks(sale):
    stocks = {"A": Decimal("5")}

    core_logic.replay_ledger([sale("A", day(1), 5)], stocks)

    assert stocks == {"A": Decimal("5")}


def test_replay_allows_decimal_quantities(sale):
    replayed = core_logic.replay_ledger([sale("A", day(1), "1.5")], {"A": Decimal("2")})

    assert replayed[0].stock_remaining == Decimal("0.5")


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def _sale_command(**overrides) -> core_logic.SaleCommand:
    values = dict(
        product_name="A",
        quantity=Decimal("2"),
        unit_cost=Decimal("1.00"),
        unit_price=Decimal("2.50"),
        date=day(2),
    )
    values.update(overrides)
    return core_logic.SaleCommand(**values)


def test_record_sale_replays_with_existing_ledger(adjustment):
    state = LedgerState(transactions=(adjustment("A", day(1), 10),))

    new_state = core_logic.record_sale(state, _sale_command(product_name="  A  "))

    assert len(new_state.transactions) == 2
    recorded = new_state.transactions[-1]
    assert recorded.product_name == "A"
    assert recorded.stock_remaining == Decimal("8")
    assert recorded.total_revenue == Decimal("5.00")
    assert recorded.transaction_id.startswith("M")
    assert len(state.transactions) == 1


def test_record_sale_defaults_to_today():
    state = LedgerState(opening_stocks={"A": Decimal("5")})

    new_state = core_logic.record_sale(state, _sale_command(date=None))

    assert new_state.transactions[0].date == date.today()


def test_record_sale_rejects_insufficient_stock_and_keeps_state():
    state = LedgerState(opening_stocks={"A": Decimal("1")})

    with pytest.raises(ValidationError):
        core_logic.record_sale(state, _sale_command())

    assert state.transactions == ()


@pytest.mark.parametrize(
    "overrides",
    [
        {"quantity": Decimal("0")},
        {"quantity": Decimal("-1")},
        {"product_name": "   "},
        {"unit_cost": Decimal("-0.01")},
        {"unit_price": Decimal("-1")},
    ],
)
def test_record_sale_validates_input(overrides):
    state = LedgerState(opening_stocks={"A": Decimal("100")})

    with pytest.raises(ValueError):
        core_logic.record_sale(state, _sale_command(**overrides))


def test_record_adjustment_sets_level(sale):
    state = core_logic.import_transactions(LedgerState(), [sale("A", day(1), 4)])

    new_state = core_logic.record_adjustment(
        state,
        core_logic.AdjustmentCommand(product_name="A", new_stock=Decimal("12"), date=day(3)),
    )

    assert new_state.transactions[-1].is_adjustment
    assert new_state.transactions[-1].stock_remaining == Decimal("12")


def test_record_adjustment_rejects_negative_level():
    with pytest.raises(ValueError):
        core_logic.record_adjustment(
            LedgerState(),
            core_logic.AdjustmentCommand(product_name="A", new_stock=Decimal("-1")),
        )


def test_backdated_adjustment_can_invalidate_later_sales(sale, adjustment):
    """A new record in the past is checked against every later record."""

    state = core_logic.import_transactions(LedgerState(), [sale("A", day(5), 4)])

    with pytest.raises(ValidationError):
        core_logic.record_adjustment(
            state,
            core_logic.AdjustmentCommand(product_name="A", new_stock=Decimal("1"), date=day(3)),
        )


def test_import_transactions_infers_only_for_new_products(sale):
    state = LedgerState(opening_stocks={"A": Decimal("10")})
    batch = [sale("A", day(1), 3), sale("B", day(1), 2), sale("B", day(2), 2)]

    new_state = core_logic.import_transactions(state, batch)

    assert new_state.opening_stocks == {"A": Decimal("10"), "B": Decimal("4")}
    assert state.opening_stocks == {"A": Decimal("10")}


def test_import_transactions_rejects_batch_exceeding_known_stock(sale):
    state = LedgerState(opening_stocks={"A": Decimal("1")})

    with pytest.raises(ValidationError):
        core_logic.import_transactions(state, [sale("A", day(1), 2)])


def test_import_csv_parses_and_replays():
    text = (
        "date,product_name,quantity_sold,unit_cost,unit_price,total_revenue,total_cost,profit,stock_remaining\n"
        "2024-01-02,Tea,2,1,3,6,2,4,0\n"
        "2024-01-01,Tea,0,0,0,0,0,0,10\n"
    )

    state = core_logic.import_csv(LedgerState(), text)

    assert [t.stock_remaining for t in state.transactions] == [Decimal("10"), Decimal("8")]
    # inference ignores the adjustment, so the sale alone sizes the opening stock
    assert state.opening_stocks == {"Tea": Decimal("2")}


def test_import_csv_propagates_parse_errors():
    with pytest.raises(ParseError):
        core_logic.import_csv(LedgerState(), "date,product_name\n2024-01-01,Tea\n")


def test_delete_transaction_replays_remaining(sale, adjustment):
    state = core_logic.import_transactions(
        LedgerState(), [adjustment("A", day(1), 10), sale("A", day(2), 3, transaction_id="gone")]
    )

    new_state = core_logic.delete_transaction(state, "gone")

    assert [t.stock_remaining for t in new_state.transactions] == [Decimal("10")]


def test_delete_transaction_refuses_to_break_ledger(sale, adjustment):
    state = core_logic.import_transactions(
        LedgerState(opening_stocks={"A": Decimal("0")}),
        [adjustment("A", day(1), 10, transaction_id="count"), sale("A", day(2), 3)],
    )

    with pytest.raises(ValidationError):
        core_logic.delete_transaction(state, "count")


def test_delete_transaction_unknown_id():
    with pytest.raises(MissingReferenceError):
        core_logic.delete_transaction(LedgerState(), "nope")


def test_update_opening_stocks_revalidates(sale):
    state = core_logic.import_transactions(LedgerState(), [sale("A", day(1), 3)])

    raised = core_logic.update_opening_stocks(state, {"A": 5})
    assert raised.transactions[0].stock_remaining == Decimal("2")
    assert raised.opening_stocks == {"A": Decimal("5")}

    with pytest.raises(ValidationError):
        core_logic.update_opening_stocks(state, {"A": 2})


def test_update_opening_stocks_rejects_negative_values():
    with pytest.raises(ValueError):
        core_logic.update_opening_stocks(LedgerState(), {"A": -1})


def test_set_opening_stock_adds_single_entry():
    state = LedgerState(opening_stocks={"A": Decimal("1")})

    new_state = core_logic.set_opening_stock(state, " B ", 7)

    assert new_state.opening_stocks == {"A": Decimal("1"), "B": Decimal("7")}


def test_clear_ledger_returns_empty_state():
    assert core_logic.clear_ledger() == LedgerState()


def test_revalidate_state_discards_invalid_records(sale):
    broken = LedgerState(transactions=(sale("A", day(1), 5),), opening_stocks={"A": Decimal("1")})

    result = core_logic.revalidate_state(broken)

    assert result.transactions == ()
    assert result.opening_stocks == {"A": Decimal("1")}


def test_revalidate_state_recomputes_stock(sale):
    stored = LedgerState(
        transactions=(sale("A", day(1), 2, stock_remaining="42"),),
        opening_stocks={"A": Decimal("5")},
    )

    result = core_logic.revalidate_state(stored)

    assert result.transactions[0].stock_remaining == Decimal("3")


def test_list_products_merges_ledger_and_opening_stocks(sale):
    state = LedgerState(transactions=(sale("Tea", day(1), 1),), opening_stocks={"Coffee": Decimal("2")})

    assert core_logic.list_products(state) == ["Coffee", "Tea"]


def test_get_transaction_returns_record(sale):
    record = sale("A", day(1), 1, transaction_id="x1")

    assert core_logic.get_transaction(LedgerState(transactions=(record,)), "x1") is record


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path, sale):
    """load_runtime_context should assemble settings and a replayed state."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        dashboard_name="Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )
    stored = LedgerState(
        transactions=(sale("A", day(1), 1, stock_remaining="99"),),
        opening_stocks={"A": Decimal("4")},
    )

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    load_state = Mock(return_value=stored)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "load_state", load_state)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.state.transactions[0].stock_remaining == Decimal("3")
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    load_state.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(settings):
    context = core_logic.RuntimeContext(settings=replace(settings, schema_version="0.9"), state=LedgerState())

    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(context)


def test_ensure_schema_version_accepts_expected(settings):
    core_logic.ensure_schema_version(core_logic.RuntimeContext(settings=settings, state=LedgerState()))


def test_persist_and_refresh_round_trip(settings, sale):
    state = core_logic.import_transactions(LedgerState(), [sale("A", day(1), 2, transaction_id="t1")])
    context = core_logic.RuntimeContext(settings=settings, state=state)

    core_logic.persist_context(context)
    reloaded = core_logic.refresh_context(context)

    assert reloaded.state == state
    assert reloaded.settings is settings


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("value", [Decimal("NaN"), Decimal("Infinity"), Decimal("-Infinity"), "abc"])
@pytest.mark.parametrize(
    "validator",
    [
        core_logic.require_positive_quantity,
        core_logic.require_nonnegative_money,
        core_logic.require_nonnegative_stock,
    ],
)
def test_validators_reject_non_finite_numbers(validator, value):
    with pytest.raises(ValueError):
        validator(value)


def test_record_adjustment_rejects_infinite_level():
    with pytest.raises(ValueError):
        core_logic.record_adjustment(
            LedgerState(),
            core_logic.AdjustmentCommand(product_name="Tea", new_stock=Decimal("Infinity")),
        )


@pytest.mark.parametrize("raw", ["abc", "NaN", Decimal("Infinity"), None])
def test_update_opening_stocks_rejects_non_numeric_values(raw):
    with pytest.raises(ValueError):
        core_logic.update_opening_stocks(LedgerState(), {"Tea": raw})


def test_update_opening_stocks_trims_product_names():
    state = LedgerState(opening_stocks={"Tea": Decimal("0")})

    new_state = core_logic.update_opening_stocks(state, {" Tea ": 5})

    assert new_state.opening_stocks == {"Tea": Decimal("5")}
    with pytest.raises(ValueError):
        core_logic.update_opening_stocks(state, {"   ": 5})


def test_trimmed_opening_stock_funds_matching_sales(sale):
    state = LedgerState(transactions=(sale("Tea", day(1), 3),), opening_stocks={"Tea": Decimal("3")})

    new_state = core_logic.update_opening_stocks(state, {"  Tea": "4"})

    assert new_state.transactions[0].stock_remaining == Decimal("1")


def test_load_runtime_context_applies_configured_log_level(config_factory):
    bundle = config_factory(log_level="debug")

    context = core_logic.load_runtime_context(bundle.config_path)

    assert context.settings.log_level == "DEBUG"
    assert logging.getLogger("stock_ledger").level == logging.DEBUG
