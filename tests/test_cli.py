"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import json
from decimal import Decimal
from pathlib import Path

import pytest

from dealer_dms import cli, constants, core_logic, data_manager


WRITE_COMMANDS = {
    "add-vehicle",
    "delete-vehicle",
    "add-customer",
    "delete-customer",
    "sale",
    "delete-transaction",
    "clear-invoices",
    "regenerate-invoice",
    "set-discount",
    "restore",
    "reset",
    "seed-demo",
}

READ_COMMANDS = {
    "inventory",
    "customers",
    "log",
    "invoice",
    "commission",
    "sales-overview",
    "inventory-health",
    "dashboard",
    "search",
    "backup",
    "export",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "dms-cli"
    assert "Dealership" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire all read and write sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    choices = _registered_choices(cli_parser)
    assert WRITE_COMMANDS | READ_COMMANDS <= set(choices)


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) and spec.help_text for spec in specs.values())
    assert WRITE_COMMANDS <= set(subparsers_action.choices)


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    assert READ_COMMANDS <= set(subparsers_action.choices)


# ---------------------------------------------------------------------------
# Command registrations
# ---------------------------------------------------------------------------


def test_register_add_vehicle_command_configures_arguments():
    """register_add_vehicle_command should define the vehicle fields."""

    parser, subparsers = _fresh_parser()
    spec = cli.register_add_vehicle_command(subparsers)
    spec.register(subparsers)
    namespace = parser.parse_args(
        ["add-vehicle", "--vin", "VIN-1", "--year", "2024", "--price", "32000", "--condition", "new", "--stock", "3"]
    )

    assert spec.name == "add-vehicle"
    assert namespace.command == "add-vehicle"
    assert namespace.year == 2024
    assert namespace.price == Decimal("32000")
    assert namespace.make is None


def test_add_vehicle_rejects_bad_condition_and_price():
    parser, subparsers = _fresh_parser()
    cli.register_add_vehicle_command(subparsers).register(subparsers)

    with pytest.raises(SystemExit):
        parser.parse_args(["add-vehicle", "--vin", "V", "--condition", "mint"])
    with pytest.raises(SystemExit):
        parser.parse_args(["add-vehicle", "--vin", "V", "--price", "-5"])


def test_register_sale_command_configures_arguments():
    """register_sale_command should accept trade-in details."""

    parser, subparsers = _fresh_parser()
    spec = cli.register_sale_command(subparsers)
    spec.register(subparsers)
    namespace = parser.parse_args(
        [
            "sale",
            "--license",
            "DL1234567",
            "--vin",
            "VIN-1",
            "--salesperson",
            "alex",
            "--type",
            "tradein",
            "--trade-in-value",
            "15000",
            "--trade-make",
            "Honda",
            "--trade-year",
            "2015",
        ]
    )

    assert namespace.customer_id is None
    assert namespace.license == "DL1234567"
    assert namespace.transaction_type == "tradein"
    assert namespace.trade_in_value == Decimal("15000")
    assert namespace.trade_year == 2015
    assert namespace.price_override is None


def test_register_sale_command_requires_one_customer_reference():
    parser, subparsers = _fresh_parser()
    cli.register_sale_command(subparsers).register(subparsers)

    with pytest.raises(SystemExit):
        parser.parse_args(["sale", "--vin", "V", "--salesperson", "alex"])
    with pytest.raises(SystemExit):
        parser.parse_args(["sale", "--customer-id", "c", "--license", "DL1", "--vin", "V", "--salesperson", "alex"])


def test_register_reset_command_requires_confirmation():
    parser, subparsers = _fresh_parser()
    cli.register_reset_command(subparsers).register(subparsers)

    with pytest.raises(SystemExit):
        parser.parse_args(["reset"])
    assert parser.parse_args(["reset", "--yes"]).yes is True


def test_register_export_command_limits_kinds():
    parser, subparsers = _fresh_parser()
    cli.register_export_command(subparsers).register(subparsers)

    namespace = parser.parse_args(["export", "--kind", "customers", "--output", "out.json"])
    assert namespace.output_path == Path("out.json")
    with pytest.raises(SystemExit):
        parser.parse_args(["export", "--kind", "invoices", "--output", "out.json"])


# ---------------------------------------------------------------------------
# Runtime context and dispatch helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    """load_runtime_context should load settings from the specified config path."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


def test_load_runtime_context_defers_discovery(monkeypatch):
    """Without --config the business layer searches for config.ini itself."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path is None
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context() is sentinel_context


def test_dispatch_command_invokes_executor(context):
    """dispatch_command should call the executor associated with the command."""

    calls = []
    spec = cli.CommandSpec(
        "catalog-test",
        "help",
        lambda subparsers: subparsers.add_parser("catalog-test"),
        lambda ctx, args: calls.append((ctx, args)) or 0,
    )
    args = argparse.Namespace(command="catalog-test")

    assert cli.dispatch_command(context, args, {"catalog-test": spec}) == 0
    assert calls == [(context, args)]


def test_dispatch_command_handles_unknown_commands(context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_translate_add_vehicle_omits_unset_fields():
    """Only supplied options should reach the upsert, so updates merge."""

    args = argparse.Namespace(
        vin="VIN-1",
        make=None,
        model=None,
        year=None,
        category=None,
        condition=None,
        mileage=None,
        price=None,
        stock=4,
    )
    assert cli.translate_add_vehicle(args) == {"vin": "VIN-1", "stock": 4}


def test_translate_add_customer_returns_payload():
    args = argparse.Namespace(
        license="DL1",
        first="Amina",
        middle=None,
        last="Hassan",
        address=None,
        phone1=None,
        phone2=None,
        credit_score=700,
    )
    assert cli.translate_add_customer(args) == {
        "license": "DL1",
        "first": "Amina",
        "last": "Hassan",
        "credit_score": 700,
    }


def test_translate_sale_builds_trade_in_request(stocked_context, customer):
    """A tradein sale should carry details valued at the trade-in amount."""

    args = _sale_args(license="DL1234567", transaction_type="tradein", trade_in_value=Decimal("9000"), trade_make="Kia")

    request = cli.translate_sale(stocked_context, args)

    assert isinstance(request, core_logic.TransactionRequest)
    assert request.customer_id == customer.customer_id
    assert request.transaction_type is constants.TransactionType.TRADE_IN
    assert request.trade_in == data_manager.TradeInDetails(make="Kia", estimated_resale_usd=Decimal("9000"))
    assert request.trade_in_value_usd == Decimal("9000")


def test_translate_sale_purchase_has_no_trade_in(stocked_context):
    request = cli.translate_sale(stocked_context, _sale_args(customer_id="cust_1"))

    assert request.customer_id == "cust_1"
    assert request.transaction_type is constants.TransactionType.PURCHASE
    assert request.trade_in is None


def test_translate_sale_unknown_license_raises(stocked_context):
    with pytest.raises(core_logic.NotFoundError):
        cli.translate_sale(stocked_context, _sale_args(license="DL-NOPE"))


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_add_vehicle_invokes_bll(context, monkeypatch, capsys):
    """run_add_vehicle should delegate to the business logic layer."""

    payload = {"vin": "VIN-1", "stock": 2}
    monkeypatch.setattr(cli, "translate_add_vehicle", lambda value: payload)
    called: dict[str, object] = {}

    def fake_upsert(ctx: core_logic.RuntimeContext, **data: object) -> data_manager.VehicleRecord:
        called["context"] = ctx
        called["data"] = data
        return data_manager.VehicleRecord("veh_1", "VIN-1", stock=2)

    monkeypatch.setattr(cli.core_logic, "upsert_vehicle", fake_upsert)
    result = cli.run_add_vehicle(context, argparse.Namespace())

    assert result == 0
    assert called == {"context": context, "data": payload}
    assert "VIN-1" in capsys.readouterr().out


def test_run_sale_prints_invoice(stocked_context, customer, capsys):
    """run_sale should record the transaction and print its invoice."""

    result = cli.run_sale(stocked_context, _sale_args(customer_id=customer.customer_id, vin="VIN-FRD-1"))

    output = capsys.readouterr().out
    assert result == 0
    assert "INVOICE" in output
    assert "Final purchase:      $40,000.00" in output
    assert len(stocked_context.store.transactions) == 1


def test_run_inventory_report_renders_table(stocked_context, capsys):
    cli.run_inventory_report(stocked_context, argparse.Namespace())

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split() == ["VIN", "Vehicle", "Category", "Condition", "Mileage", "Price", "Stock"]
    assert any("VIN-TOY-1" in line and "$60,000.00" in line for line in lines)


def test_register_listing_commands_accept_filter():
    parser, subparsers = _fresh_parser()
    cli.register_inventory_command(subparsers).register(subparsers)
    cli.register_customers_command(subparsers).register(subparsers)

    assert parser.parse_args(["inventory"]).query is None
    assert parser.parse_args(["inventory", "--filter", "toy"]).query == "toy"
    assert parser.parse_args(["customers", "--filter", "hassan"]).query == "hassan"


def test_run_inventory_report_applies_filter(stocked_context, capsys):
    cli.run_inventory_report(stocked_context, argparse.Namespace(query="mustang"))

    output = capsys.readouterr().out
    assert "VIN-FRD-1" in output
    assert "VIN-TOY-1" not in output


def test_run_customers_report_applies_filter(stocked_context, capsys):
    core_logic.upsert_customer(stocked_context, license="DL7654321", first="Noah", last="Reyes")

    cli.run_customers_report(stocked_context, argparse.Namespace(query="reyes"))

    output = capsys.readouterr().out
    assert "DL7654321" in output
    assert "DL1234567" not in output


def test_run_search_reports_no_matches(stocked_context, capsys):
    cli.run_search(stocked_context, argparse.Namespace(query="zzz"))
    assert capsys.readouterr().out.strip() == "No matches."


def test_render_table_aligns_columns():
    table = cli.render_table(("A", "Long"), [("xyz", 1)])
    assert table.splitlines() == ["A    Long", "---  ----", "xyz  1"]


@pytest.mark.parametrize(
    "error, code",
    [
        (core_logic.OutOfStockError("gone"), 2),
        (core_logic.ValidationError("bad"), 2),
        (core_logic.RestoreError("bad"), 2),
        (FileNotFoundError("config.ini"), 3),
        (RuntimeError("schema"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


# ---------------------------------------------------------------------------
# End-to-end through main()
# ---------------------------------------------------------------------------


def test_main_runs_demo_sale_workflow(config_file, capsys):
    """Seed, sell, report and search through the real workbook."""

    base = ["--config", str(config_file)]
    assert cli.main([*base, "seed-demo"]) == 0
    assert cli.main(
        [
            *base,
            "sale",
            "--license",
            "DL1234567",
            "--vin",
            "VIN-TOY-2024-CAMRY",
            "--salesperson",
            "alex",
            "--date",
            "2025-03-14",
        ]
    ) == 0
    capsys.readouterr()

    assert cli.main([*base, "commission", "--salesperson", "alex", "--month", "2025-03"]) == 0
    output = capsys.readouterr().out
    assert "Sales:       $32,000.00" in output
    assert "Rate:        5%" in output
    assert "Commission:  $1,600.00" in output

    assert cli.main([*base, "search", "toy"]) == 0
    assert "VIN-TOY-2024-CAMRY" in capsys.readouterr().out

    assert cli.main([*base, "dashboard"]) == 0
    assert "Transactions: 1" in capsys.readouterr().out


def test_main_returns_business_error_code(config_file):
    """Selling the last unit twice should exit with the business error code."""

    base = ["--config", str(config_file)]
    sale = [*base, "sale", "--license", "DL7654321", "--vin", "VIN-FRD-2021-MUSTANG", "--salesperson", "sam"]
    assert cli.main([*base, "seed-demo"]) == 0
    assert cli.main(sale) == 0
    assert cli.main(sale) == 2


def test_main_backup_reset_restore(config_file, tmp_path, capsys):
    base = ["--config", str(config_file)]
    backup_path = tmp_path / "backup.json"
    assert cli.main([*base, "seed-demo"]) == 0
    assert cli.main([*base, "backup", "--output", str(backup_path)]) == 0
    assert cli.main([*base, "reset", "--yes"]) == 0
    capsys.readouterr()

    assert cli.main([*base, "inventory"]) == 0
    assert "VIN-JEP-2020-WRANGLR" not in capsys.readouterr().out

    assert cli.main([*base, "restore", "--input", str(backup_path)]) == 0
    assert cli.main([*base, "inventory"]) == 0
    assert "VIN-JEP-2020-WRANGLR" in capsys.readouterr().out
    assert len(json.loads(backup_path.read_text(encoding="utf-8"))["vehicles"]) == 3


def test_main_restore_rejects_invalid_backup(config_file, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2, 3]", encoding="utf-8")

    assert cli.main(["--config", str(config_file), "restore", "--input", str(bad)]) == 2


def test_main_missing_config_returns_file_error(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent" / "config.ini"), "inventory"]) == 3


def test_main_schema_mismatch_returns_generic_error(config_factory):
    bundle = config_factory(schema_version="0.1.0")
    assert cli.main(["--config", str(bundle.config_path), "inventory"]) == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fresh_parser() -> tuple[argparse.ArgumentParser, argparse._SubParsersAction[argparse.ArgumentParser]]:
    parser = argparse.ArgumentParser(prog="cli")
    return parser, parser.add_subparsers(dest="command")


def _sale_args(**overrides) -> argparse.Namespace:
    values = {
        "customer_id": None,
        "license": None,
        "vin": "VIN-TOY-1",
        "salesperson": "alex",
        "transaction_type": "purchase",
        "date": None,
        "price_override": None,
        "trade_in_value": Decimal("0"),
        "trade_make": "",
        "trade_model": "",
        "trade_year": None,
        "trade_mileage": 0,
        "trade_condition_note": "",
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def _registered_choices(parser: argparse.ArgumentParser) -> dict[str, argparse.ArgumentParser]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices
    return {}
