"""Command-line entry points for the stock ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer, and printing the
derived reports. Mutating commands replace the context's ledger state and the
state is written back only after the command succeeds.
"""

from __future__ import annotations

import argparse
import datetime
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, csv_codec, log, reports
from .constants import StockStatus
from .errors import LedgerError


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def decimal_argument(value: str) -> Decimal:
    """argparse ``type`` converting text to a finite ``Decimal``."""
    try:
        number = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from exc
    if not number.is_finite():
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}")
    return number


def date_argument(value: str) -> datetime.date:
    """argparse ``type`` converting ``YYYY-MM-DD`` to a date."""
    try:
        return datetime.date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date (expected YYYY-MM-DD): {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Command-line tools for the stock ledger dashboard.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upwards from the current directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that change the ledger."""
    specs = {
        "import": register_import_command(subparsers),
        "sale": register_sale_command(subparsers),
        "adjust": register_adjust_command(subparsers),
        "delete": register_delete_command(subparsers),
        "set-stock": register_set_stock_command(subparsers),
        "clear": register_clear_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only report commands."""
    specs = {
        "summary": register_summary_command(subparsers),
        "stock": register_stock_command(subparsers),
        "chart": register_chart_command(subparsers),
        "log": register_log_command(subparsers),
        "export": register_export_command(subparsers),
        "products": register_products_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Import transactions from a CSV file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("csv_file", type=Path)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import, mutates=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product", required=True)
        parser.add_argument("--quantity", type=decimal_argument, required=True)
        parser.add_argument("--unit-cost", type=decimal_argument, required=True)
        parser.add_argument("--unit-price", type=decimal_argument, required=True)
        parser.add_argument("--date", type=date_argument, default=None, help="YYYY-MM-DD, defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def register_adjust_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust``."""
    name = "adjust"
    help_text = "Set a product's stock to a counted level."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product", required=True)
        parser.add_argument("--stock", type=decimal_argument, required=True)
        parser.add_argument("--date", type=date_argument, default=None, help="YYYY-MM-DD, defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust, mutates=True)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Delete a transaction by id."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("transaction_id")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete, mutates=True)


def register_set_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-stock``."""
    name = "set-stock"
    help_text = "Add or edit a product's opening stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("product")
        parser.add_argument("quantity", type=decimal_argument)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_stock, mutates=True)


def register_clear_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``clear``."""
    name = "clear"
    help_text = "Delete all transactions and opening stocks."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--yes", action="store_true", help="Confirm that all data should be removed.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_clear, mutates=True)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display revenue, profit and the best-selling product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock grouped into out / low / safe."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_chart_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``chart``."""
    name = "chart"
    help_text = "Display revenue and profit per product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_chart_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the transaction ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sort-by", choices=reports.SORTABLE_COLUMNS, default=None)
        parser.add_argument("--descending", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export the ledger as CSV."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None, help="File to write; prints to stdout when omitted.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List known products and their opening stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        product_name=args.product,
        quantity=args.quantity,
        unit_cost=args.unit_cost,
        unit_price=args.unit_price,
        date=args.date,
    )


def translate_adjust(args: argparse.Namespace) -> core_logic.AdjustmentCommand:
    """Translate CLI args into an adjustment command object."""
    return core_logic.AdjustmentCommand(
        product_name=args.product,
        new_stock=args.stock,
        date=args.date,
    )


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Import a CSV file through the business layer."""
    text = Path(args.csv_file).read_text(encoding="utf-8-sig")
    before = len(context.state.transactions)
    context.state = core_logic.import_csv(context.state, text)
    print(f"Imported {len(context.state.transactions) - before} transactions.")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record a manual sale."""
    context.state = core_logic.record_sale(context.state, translate_sale(args))
    return 0


def run_adjust(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record a manual stock adjustment."""
    context.state = core_logic.record_adjustment(context.state, translate_adjust(args))
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Delete a transaction by id."""
    context.state = core_logic.delete_transaction(context.state, args.transaction_id)
    return 0


def run_set_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Add or edit a product's opening stock."""
    context.state = core_logic.set_opening_stock(context.state, args.product, args.quantity)
    return 0


def run_clear(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Wipe the ledger once the user has confirmed."""
    if not args.yes:
        log.warning("Refusing to clear the ledger without --yes")
        return 1
    context.state = core_logic.clear_ledger()
    return 0


def _summary(context: core_logic.RuntimeContext) -> reports.DashboardSummary:
    return reports.compute_aggregates(
        context.state.transactions,
        low_stock_threshold=context.settings.low_stock_threshold,
    )


def _fmt(value: Decimal) -> str:
    return csv_codec.format_number(value)


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print totals and the best seller."""
    summary = _summary(context)
    print(context.settings.dashboard_name)
    print(f"Total revenue: {_fmt(summary.total_revenue)}")
    print(f"Total profit: {_fmt(summary.total_profit)}")
    print(f"Best seller: {summary.best_seller or 'N/A'}")
    print(f"Products tracked: {len(summary.current_stock)}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print current stock grouped by status."""
    buckets = _summary(context).stock_status
    for status in (StockStatus.OUT, StockStatus.LOW, StockStatus.SAFE):
        levels = buckets.bucket(status)
        print(f"[{status.value}] {len(levels)} products")
        for level in levels:
            print(f"  {level.product_name}: {_fmt(level.stock)}")
    return 0


def run_chart_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the per-product revenue and profit series."""
    print("product_name,total_revenue,total_profit")
    for point in _summary(context).chart_series:
        print(f"{point.product_name},{_fmt(point.total_revenue)},{_fmt(point.total_profit)}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the ledger, optionally sorted by a column."""
    transactions = list(context.state.transactions)
    if args.sort_by is not None:
        transactions = reports.sort_transactions(transactions, args.sort_by, descending=args.descending)
    for transaction in transactions:
        cells = csv_codec.serialize_row(transaction)
        print(f"{transaction.transaction_id} {transaction.kind.value:<10} " + " | ".join(cells))
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the ledger as CSV to a file or stdout."""
    if not context.state.transactions:
        log.warning("Ledger is empty; nothing to export")
        return 0
    text = csv_codec.export_csv(context.state.transactions)
    if args.output is None:
        print(text)
    else:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        log.info("Exported %d transactions to '%s'", len(context.state.transactions), args.output)
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every known product with its opening stock, if any."""
    opening_stocks = context.state.opening_stocks
    for product_name in core_logic.list_products(context.state):
        opening = opening_stocks.get(product_name)
        print(f"{product_name}: {_fmt(opening) if opening is not None else '-'}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into exit codes, logging the message verbatim."""
    log.error("%s", error)
    if isinstance(error, LedgerError):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    return 1


def persist_state(context: core_logic.RuntimeContext) -> None:
    """Persist the ledger after a successful mutation."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_state(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
