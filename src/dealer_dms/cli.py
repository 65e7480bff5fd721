"""Command-line entry points for the dealership toolkit.

This module only wires argparse and translates command-line arguments into
calls on the business and reporting layers. Core operations persist the
store themselves, so executors never touch storage directly.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log, reporting
from .constants import INVENTORY_HEALTH_LIMIT, RecordKind, TransactionType, VehicleCategory, VehicleCondition
from .formatting import format_rate, format_usd


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def money_argument(raw: str) -> Decimal:
    """argparse ``type`` accepting non-negative dollar amounts."""
    value = data_manager.parse_money(raw)
    if value is None or value < 0:
        raise argparse.ArgumentTypeError(f"invalid amount: {raw!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="dms-cli",
        description="Command-line tools for the Dealership workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
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
    """Declare mutating CLI commands such as sales and catalog edits."""
    specs = {
        "add-vehicle": register_add_vehicle_command(subparsers),
        "delete-vehicle": register_delete_vehicle_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "delete-customer": register_delete_customer_command(subparsers),
        "sale": register_sale_command(subparsers),
        "delete-transaction": register_delete_transaction_command(subparsers),
        "clear-invoices": register_clear_invoices_command(subparsers),
        "regenerate-invoice": register_regenerate_invoice_command(subparsers),
        "set-discount": register_set_discount_command(subparsers),
        "restore": register_restore_command(subparsers),
        "reset": register_reset_command(subparsers),
        "seed-demo": register_seed_demo_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "inventory": register_inventory_command(subparsers),
        "customers": register_customers_command(subparsers),
        "log": register_log_command(subparsers),
        "invoice": register_invoice_command(subparsers),
        "commission": register_commission_command(subparsers),
        "sales-overview": register_sales_overview_command(subparsers),
        "inventory-health": register_inventory_health_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "search": register_search_command(subparsers),
        "backup": register_backup_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _simple_command(name: str, help_text: str, execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


# ---------------------------------------------------------------------------
# Write command registrations
# ---------------------------------------------------------------------------


def register_add_vehicle_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-vehicle``."""
    name = "add-vehicle"
    help_text = "Add a vehicle or update the one with the same VIN."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vin", required=True)
        parser.add_argument("--make")
        parser.add_argument("--model")
        parser.add_argument("--year", type=int)
        parser.add_argument("--category", choices=[member.value for member in VehicleCategory])
        parser.add_argument("--condition", choices=[member.value for member in VehicleCondition])
        parser.add_argument("--mileage", type=int)
        parser.add_argument("--price", type=money_argument)
        parser.add_argument("--stock", type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_vehicle)


def register_delete_vehicle_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-vehicle``."""
    name = "delete-vehicle"
    help_text = "Remove a vehicle from inventory."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vin", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_vehicle)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Add a customer or update the one with the same driver's license."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--license", required=True)
        parser.add_argument("--first")
        parser.add_argument("--middle")
        parser.add_argument("--last")
        parser.add_argument("--address")
        parser.add_argument("--phone1")
        parser.add_argument("--phone2")
        parser.add_argument("--credit-score", type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_delete_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-customer``."""
    name = "delete-customer"
    help_text = "Remove a customer by driver's license."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--license", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_customer)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a purchase, optionally with a trade-in."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        customer = parser.add_mutually_exclusive_group(required=True)
        customer.add_argument("--customer-id")
        customer.add_argument("--license", help="Resolve the customer by driver's license.")
        parser.add_argument("--vin", required=True)
        parser.add_argument("--salesperson", required=True)
        parser.add_argument(
            "--type",
            dest="transaction_type",
            choices=[member.value for member in TransactionType],
            default=TransactionType.PURCHASE.value,
        )
        parser.add_argument("--date", default=None, help="Transaction date (YYYY-MM-DD); defaults to today.")
        parser.add_argument("--price-override", type=money_argument, default=None)
        parser.add_argument("--trade-in-value", type=money_argument, default=Decimal("0"))
        parser.add_argument("--trade-make", default="")
        parser.add_argument("--trade-model", default="")
        parser.add_argument("--trade-year", type=int, default=None)
        parser.add_argument("--trade-mileage", type=int, default=0)
        parser.add_argument("--trade-condition-note", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_delete_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-transaction``."""
    name = "delete-transaction"
    help_text = "Delete a transaction and its invoice (stock is not restored)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_transaction)


def register_clear_invoices_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``clear-invoices``."""
    return _simple_command("clear-invoices", "Delete every stored invoice.", run_clear_invoices)


def register_regenerate_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``regenerate-invoice``."""
    name = "regenerate-invoice"
    help_text = "Rebuild the invoice for a transaction from current records."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_regenerate_invoice)


def register_set_discount_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-discount``."""
    name = "set-discount"
    help_text = "Replace the discount rule printed on invoices."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--threshold", required=True)
        parser.add_argument("--perk", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_discount)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""
    name = "restore"
    help_text = "Replace all data with the contents of a JSON backup."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--input", dest="input_path", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restore)


def register_reset_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reset``."""
    name = "reset"
    help_text = "Erase all vehicles, customers, transactions and invoices."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--yes", action="store_true", required=True, help="Confirm the reset.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reset)


def register_seed_demo_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``seed-demo``."""
    return _simple_command("seed-demo", "Replace inventory and customers with demo data.", run_seed_demo)


# ---------------------------------------------------------------------------
# Read command registrations
# ---------------------------------------------------------------------------


def register_inventory_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``inventory``."""
    name = "inventory"
    help_text = "Display the vehicle inventory."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--filter", dest="query", default=None, help="Only vehicles whose VIN, make or model contains this text.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_inventory_report)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    name = "customers"
    help_text = "Display the customer list."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--filter", dest="query", default=None, help="Only customers whose name, license or phone contains this text.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_customers_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    return _simple_command("log", "Display the transaction log, most recent first.", run_log_report)


def register_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoice``."""
    name = "invoice"
    help_text = "Print a stored invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.add_argument("--html", dest="html_path", type=Path, default=None, help="Also write a printable HTML page.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoice)


def register_commission_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``commission``."""
    name = "commission"
    help_text = "Display a salesperson's monthly sales and commission."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--salesperson", required=True)
        parser.add_argument("--month", required=True, help="Month to report on (YYYY-MM).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_commission_report)


def register_sales_overview_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales-overview``."""
    return _simple_command("sales-overview", "Display total sales by salesperson.", run_sales_overview_report)


def register_inventory_health_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``inventory-health``."""
    name = "inventory-health"
    help_text = "Display the vehicles with the lowest stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=INVENTORY_HEALTH_LIMIT)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_inventory_health_report)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    return _simple_command("dashboard", "Display record counts and the latest invoice.", run_dashboard_report)


def register_search_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``search``."""
    name = "search"
    help_text = "Search vehicles, customers and transactions."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("query")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_search)


def register_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backup``."""
    name = "backup"
    help_text = "Write a JSON backup of all data."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", dest="output_path", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_backup)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write one collection as JSON."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--kind", choices=[member.value for member in RecordKind], required=True)
        parser.add_argument("--output", dest="output_path", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


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


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def _provided(args: argparse.Namespace, mapping: Mapping[str, str]) -> Dict[str, Any]:
    return {field: getattr(args, attr) for attr, field in mapping.items() if getattr(args, attr, None) is not None}


def translate_add_vehicle(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into upsert_vehicle keyword arguments; omitted fields are left alone."""
    payload = _provided(
        args,
        {
            "make": "make",
            "model": "model",
            "year": "year",
            "category": "category",
            "condition": "condition",
            "mileage": "mileage",
            "price": "price",
            "stock": "stock",
        },
    )
    payload["vin"] = args.vin
    return payload


def translate_add_customer(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into upsert_customer keyword arguments."""
    payload = _provided(
        args,
        {
            "first": "first",
            "middle": "middle",
            "last": "last",
            "address": "address",
            "phone1": "phone1",
            "phone2": "phone2",
            "credit_score": "credit_score",
        },
    )
    payload["license"] = args.license
    return payload


def translate_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.TransactionRequest:
    """Translate CLI args into a transaction request.

    A ``tradein`` sale always carries trade-in details, using the trade-in
    value as the estimated resale price of the received vehicle.
    """
    customer_id = args.customer_id
    if customer_id is None:
        customer_id = core_logic.get_customer_by_license(context, args.license).customer_id

    transaction_type = TransactionType(args.transaction_type)
    trade_in = None
    if transaction_type is TransactionType.TRADE_IN:
        trade_in = data_manager.TradeInDetails(
            make=args.trade_make,
            model=args.trade_model,
            year=args.trade_year,
            mileage=args.trade_mileage,
            condition_note=args.trade_condition_note,
            estimated_resale_usd=args.trade_in_value,
        )
    return core_logic.TransactionRequest(
        customer_id=customer_id,
        vehicle_vin=args.vin,
        salesperson=args.salesperson,
        transaction_type=transaction_type,
        date=args.date,
        price_override_usd=args.price_override,
        trade_in_value_usd=args.trade_in_value,
        trade_in=trade_in,
    )


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def render_table(headers: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    """Left-aligned plain-text table."""
    body = [[str(cell) for cell in row] for row in rows]
    widths = [len(header) for header in headers]
    for row in body:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = ["  ".join(header.ljust(widths[index]) for index, header in enumerate(headers)).rstrip()]
    lines.append("  ".join("-" * width for width in widths))
    for row in body:
        lines.append("  ".join(cell.ljust(widths[index]) for index, cell in enumerate(row)).rstrip())
    return "\n".join(lines)


def _vehicle_rows(vehicles: Iterable[data_manager.VehicleRecord]) -> list[tuple[object, ...]]:
    return [
        (
            vehicle.vin,
            f"{vehicle.year} {vehicle.make} {vehicle.model}",
            vehicle.category,
            vehicle.condition,
            vehicle.mileage,
            format_usd(vehicle.price),
            vehicle.stock,
        )
        for vehicle in vehicles
    ]


VEHICLE_HEADERS = ("VIN", "Vehicle", "Category", "Condition", "Mileage", "Price", "Stock")
CUSTOMER_HEADERS = ("ID", "Name", "License", "Phone", "Credit", "Purchases")
TRANSACTION_HEADERS = ("ID", "Invoice", "Date", "Type", "Salesperson", "VIN", "Final")


def _customer_rows(customers: Iterable[data_manager.CustomerRecord]) -> list[tuple[object, ...]]:
    return [
        (
            customer.customer_id,
            " ".join(part for part in (customer.first, customer.middle, customer.last) if part),
            customer.license,
            customer.phone1,
            "" if customer.credit_score is None else customer.credit_score,
            len(customer.tx_history),
        )
        for customer in customers
    ]


def _transaction_rows(transactions: Iterable[data_manager.TransactionRecord]) -> list[tuple[object, ...]]:
    return [
        (
            transaction.transaction_id,
            transaction.invoice_number,
            transaction.date,
            transaction.transaction_type,
            transaction.salesperson,
            transaction.vehicle_vin,
            format_usd(transaction.final_purchase_usd),
        )
        for transaction in transactions
    ]


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the vehicle upsert workflow in the BLL."""
    record = core_logic.upsert_vehicle(context, **translate_add_vehicle(args))
    print(f"Saved vehicle {record.vin} (stock {record.stock}).")
    return 0


def run_delete_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    removed = core_logic.delete_vehicle(context, args.vin)
    print(f"Removed {removed} vehicle(s).")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer upsert workflow in the BLL."""
    record = core_logic.upsert_customer(context, **translate_add_customer(args))
    print(f"Saved customer {record.customer_id} ({record.license}).")
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    removed = core_logic.delete_customer(context, args.license)
    print(f"Removed {removed} customer(s).")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction workflow via the BLL and print the invoice."""
    transaction = core_logic.create_transaction(context, translate_sale(context, args))
    print(f"Recorded transaction {transaction.transaction_id} ({transaction.invoice_number}).")
    print()
    print(core_logic.get_invoice(context, transaction.transaction_id))
    return 0


def run_delete_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if core_logic.delete_transaction(context, args.transaction_id):
        print(f"Deleted transaction {args.transaction_id}.")
    else:
        print(f"No transaction {args.transaction_id}; nothing deleted.")
    return 0


def run_clear_invoices(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    removed = core_logic.clear_invoices(context)
    print(f"Cleared {removed} invoice(s).")
    return 0


def run_regenerate_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(core_logic.regenerate_invoice(context, args.transaction_id))
    return 0


def run_set_discount(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rule = core_logic.update_discount_rule(context, args.threshold, args.perk)
    print(f"Discount rule: purchases of {format_usd(rule.threshold_usd)} or more earn '{rule.perk_text}'.")
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.import_backup(context, args.input_path)
    print(
        f"Restored {len(snapshot.vehicles)} vehicle(s), {len(snapshot.customers)} customer(s), "
        f"{len(snapshot.transactions)} transaction(s)."
    )
    return 0


def run_reset(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.reset_store(context)
    print("All data erased.")
    return 0


def run_seed_demo(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.load_demo_data(context)
    print("Demo data loaded.")
    return 0


def run_inventory_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the inventory listing."""
    print(render_table(VEHICLE_HEADERS, _vehicle_rows(core_logic.list_vehicles(context, getattr(args, "query", None)))))
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the customer listing."""
    print(render_table(CUSTOMER_HEADERS, _customer_rows(core_logic.list_customers(context, getattr(args, "query", None)))))
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction log reporting workflow."""
    print(render_table(TRANSACTION_HEADERS, _transaction_rows(core_logic.list_transactions(context))))
    return 0


def run_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(core_logic.get_invoice(context, args.transaction_id))
    if args.html_path is not None:
        html = core_logic.render_invoice_html(context, args.transaction_id)
        path = data_manager.write_text_document(html, args.html_path)
        print(f"\nWrote {path}")
    return 0


def run_commission_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the commission reporting workflow."""
    summary = reporting.calculate_commission(context, args.salesperson, args.month)
    print(f"Salesperson: {summary.username}")
    print(f"Month:       {summary.year_month}")
    print(f"Sales:       {format_usd(summary.total_sales_usd)}")
    print(f"Rate:        {format_rate(summary.rate)}")
    print(f"Commission:  {format_usd(summary.commission_usd)}")
    return 0


def run_sales_overview_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    overview = reporting.sales_overview(context)
    print(f"Total sales: {format_usd(overview.grand_total_usd)}")
    print(render_table(("Salesperson", "Sales"), [(name, format_usd(total)) for name, total in overview.by_salesperson]))
    return 0


def run_inventory_health_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(render_table(VEHICLE_HEADERS, _vehicle_rows(reporting.inventory_health(context, args.limit))))
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = reporting.dashboard_summary(context)
    print(f"Vehicles:     {summary.vehicle_count}")
    print(f"Customers:    {summary.customer_count}")
    print(f"Transactions: {summary.transaction_count}")
    print()
    print(summary.latest_invoice or "No invoices yet.")
    return 0


def run_search(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    results = reporting.global_search(context, args.query)
    if results.total == 0:
        print("No matches.")
        return 0
    if results.vehicles:
        print(render_table(VEHICLE_HEADERS, _vehicle_rows(results.vehicles)))
        print()
    if results.customers:
        print(render_table(CUSTOMER_HEADERS, _customer_rows(results.customers)))
        print()
    if results.transactions:
        print(render_table(TRANSACTION_HEADERS, _transaction_rows(results.transactions)))
    return 0


def run_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    path = core_logic.export_backup(context, args.output_path)
    print(f"Wrote backup to {path}")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    path = core_logic.export_records(context, args.kind, args.output_path)
    print(f"Wrote {args.kind} to {path}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.DealershipError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    raise SystemExit(main())
