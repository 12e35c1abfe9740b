"""Shared pytest fixtures and utilities for stock ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stock_ledger import DEFAULT_LOG_LEVEL, cli, constants, core_logic, data_manager, models, set_log_level  # noqa: E402

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "DashboardName = {dashboard_name}\n"
    "SchemaVersion = {schema_version}\n"
    "LogLevel = {log_level}\n\n"
    "[Reports]\n"
    "LowStockThreshold = {threshold}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    dashboard_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _reset_log_level() -> Iterator[None]:
    """Undo log-level changes made by configs loaded during a test."""

    yield
    set_log_level(DEFAULT_LOG_LEVEL)


@pytest.fixture
def sale() -> Callable[..., models.Transaction]:
    """Factory for sale records with readable defaults."""

    def _make(
        product_name: str,
        when: date,
        quantity: str | int,
        *,
        unit_cost: str = "1",
        unit_price: str = "2",
        transaction_id: str | None = None,
        stock_remaining: str = "0",
    ) -> models.Transaction:
        return models.Transaction(
            transaction_id=transaction_id or f"S-{uuid.uuid4().hex[:8]}",
            date=when,
            product_name=product_name,
            entry=models.Sale(
                quantity=Decimal(str(quantity)),
                unit_cost=Decimal(unit_cost),
                unit_price=Decimal(unit_price),
            ),
            stock_remaining=Decimal(stock_remaining),
        )

    return _make


@pytest.fixture
def adjustment() -> Callable[..., models.Transaction]:
    """Factory for adjustment records."""

    def _make(
        product_name: str,
        when: date,
        new_stock: str | int,
        *,
        transaction_id: str | None = None,
    ) -> models.Transaction:
        return models.make_adjustment(
            product_name,
            when,
            new_stock=Decimal(str(new_stock)),
            transaction_id=transaction_id or f"A-{uuid.uuid4().hex[:8]}",
        )

    return _make


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that writes a config.ini pointing at a temp workbook."""

    def _create_config(
        *,
        make_relative: bool = False,
        dashboard_name: str = "Test Shop",
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        threshold: str = "10",
        log_level: str = "INFO",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = bundle_dir / "ledger.xlsx"
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                dashboard_name=dashboard_name,
                schema_version=schema_version,
                threshold=threshold,
                log_level=log_level,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            dashboard_name=dashboard_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings without touching disk."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        dashboard_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="ledger-cli", description="Ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
