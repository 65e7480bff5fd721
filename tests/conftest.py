"""Shared pytest fixtures and utilities for dealership tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from dealer_dms import cli, constants, core_logic, data_manager  # noqa: E402
from dealer_dms.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "DealershipName = {dealership_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DiscountThresholdUSD = {threshold}\n"
    "DiscountPerkText = {perk_text}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    dealership_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized dealership workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "dealership.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(base_dir / filename, force=True)

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        dealership_name: str = "Test Motors",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        threshold: str = "50000",
        perk_text: str = constants.DEFAULT_DISCOUNT_PERK_TEXT,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                dealership_name=dealership_name,
                schema_version=schema_version,
                threshold=threshold,
                perk_text=perk_text,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            dealership_name=dealership_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="dms-cli", description="Dealership CLI")


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


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "dealership.xlsx",
        dealership_name="Test Motors",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def storage() -> data_manager.MemoryStorage:
    """Return an empty in-memory storage backend."""

    return data_manager.MemoryStorage()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, storage: data_manager.MemoryStorage) -> core_logic.RuntimeContext:
    """Assemble a runtime context backed by in-memory storage."""

    return core_logic.build_runtime_context(settings, storage)


@pytest.fixture
def stocked_context(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Context holding one Toyota (stock 1), one Ford (stock 3) and one licensed customer."""

    core_logic.upsert_vehicle(
        context,
        vin="VIN-TOY-1",
        make="Toyota",
        model="Camry",
        year=2024,
        category="family",
        condition="new",
        mileage=0,
        price=Decimal("60000"),
        stock=1,
    )
    core_logic.upsert_vehicle(
        context,
        vin="VIN-FRD-1",
        make="Ford",
        model="Mustang",
        year=2021,
        category="sport",
        condition="used",
        mileage=22000,
        price=Decimal("40000"),
        stock=3,
    )
    core_logic.upsert_customer(
        context,
        license="DL1234567",
        first="Amina",
        middle="K",
        last="Hassan",
        address="123 Main St, Columbia, SC",
        phone1="+1 555 111 2222",
        credit_score=720,
    )
    return context


@pytest.fixture
def customer(stocked_context: core_logic.RuntimeContext) -> data_manager.CustomerRecord:
    """The licensed customer seeded by ``stocked_context``."""

    return core_logic.get_customer_by_license(stocked_context, "DL1234567")


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
