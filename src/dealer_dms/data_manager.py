"""Data access layer for the dealership store.

This module owns everything that touches disk or crosses the persistence
boundary. Business rules belong in :mod:`dealer_dms.core_logic`.

The public API is organised around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Typed records: frozen dataclasses for vehicles, customers, transactions
   and settings, plus the :class:`StoreSnapshot` that bundles them.
3. Snapshot (de)serialization: a permissive loader that defaults malformed
   fields instead of rejecting the whole snapshot, and the JSON document
   format used for backups.
4. Storage backends: :class:`WorkbookStorage` persists snapshots to an Excel
   workbook through ``openpyxl``; :class:`MemoryStorage` keeps them in memory.
"""


from __future__ import annotations

import configparser
import json
import math
import os
import tempfile
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_DEALERSHIP_NAME,
    DEFAULT_DISCOUNT_PERK_TEXT,
    DEFAULT_DISCOUNT_THRESHOLD_USD,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"

# Longest string a worksheet cell holds; openpyxl truncates anything longer.
MAX_CELL_TEXT_LENGTH = 32767

# Worksheet header -> snapshot document key, in column order.
VEHICLE_COLUMNS: Mapping[str, str] = {
    "VehicleID": "id",
    "VIN": "vin",
    "Make": "make",
    "Model": "model",
    "Year": "year",
    "Category": "category",
    "Condition": "condition",
    "Mileage": "mileage",
    "PriceUSD": "price",
    "Stock": "stock",
}

CUSTOMER_COLUMNS: Mapping[str, str] = {
    "CustomerID": "id",
    "First": "first",
    "Middle": "middle",
    "Last": "last",
    "Address": "address",
    "Phone1": "phone1",
    "Phone2": "phone2",
    "License": "license",
    "CreditScore": "creditScore",
}

HISTORY_COLUMNS: Mapping[str, str] = {
    "CustomerID": "customerId",
    "TransactionID": "txId",
    "Date": "date",
    "Type": "type",
    "AmountUSD": "amountUSD",
}

TRANSACTION_COLUMNS: Mapping[str, str] = {
    "TransactionID": "id",
    "Type": "type",
    "Date": "date",
    "CustomerID": "customerId",
    "Salesperson": "salesperson",
    "VehicleVIN": "vehicleVinBuy",
    "VehiclePriceUSD": "vehiclePriceUSD",
    "TradeInValueUSD": "tradeInValueUSD",
    "FinalPurchaseUSD": "finalPurchaseUSD",
    "InvoiceNumber": "invoiceNo",
}

TRADE_IN_COLUMNS: Mapping[str, str] = {
    "TradeInMake": "make",
    "TradeInModel": "model",
    "TradeInYear": "year",
    "TradeInMileage": "mileage",
    "TradeInConditionNote": "conditionNote",
    "TradeInEstimatedResaleUSD": "estimatedResaleUSD",
}

INVOICE_COLUMNS: Mapping[str, str] = {
    "TransactionID": "txId",
    "InvoiceText": "text",
}

SETTINGS_COLUMNS: Mapping[str, str] = {
    "Key": "key",
    "Value": "value",
}

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.VEHICLES.value: list(VEHICLE_COLUMNS),
    SheetName.CUSTOMERS.value: list(CUSTOMER_COLUMNS),
    SheetName.CUSTOMER_HISTORY.value: list(HISTORY_COLUMNS),
    SheetName.TRANSACTIONS.value: [*TRANSACTION_COLUMNS, *TRADE_IN_COLUMNS],
    SheetName.INVOICES.value: list(INVOICE_COLUMNS),
    SheetName.SETTINGS.value: list(SETTINGS_COLUMNS),
}

SETTING_DISCOUNT_THRESHOLD = "DiscountThresholdUSD"
SETTING_DISCOUNT_PERK = "DiscountPerkText"
SETTING_SESSION_USERNAME = "SessionUsername"
SETTING_SESSION_ROLE = "SessionRole"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    dealership_name: str
    schema_version: str
    discount_threshold_usd: Decimal = DEFAULT_DISCOUNT_THRESHOLD_USD
    discount_perk_text: str = DEFAULT_DISCOUNT_PERK_TEXT


@dataclass(frozen=True)
class VehicleRecord:
    """A vehicle held in inventory."""

    vehicle_id: str
    vin: str
    make: str = ""
    model: str = ""
    year: int = 0
    category: str = ""
    condition: str = ""
    mileage: int = 0
    price: Decimal = Decimal("0")
    stock: int = 0


@dataclass(frozen=True)
class HistoryEntry:
    """Compact summary of a purchase kept on the customer record."""

    transaction_id: str
    date: str
    transaction_type: str
    amount_usd: Decimal


@dataclass(frozen=True)
class CustomerRecord:
    """A customer keyed by driver's license."""

    customer_id: str
    license: str
    first: str = ""
    middle: str = ""
    last: str = ""
    address: str = ""
    phone1: str = ""
    phone2: str = ""
    credit_score: Optional[int] = None
    tx_history: tuple[HistoryEntry, ...] = ()


@dataclass(frozen=True)
class TradeInDetails:
    """Description of the vehicle a customer hands over in a trade-in."""

    make: str = ""
    model: str = ""
    year: Optional[int] = None
    mileage: int = 0
    condition_note: str = ""
    estimated_resale_usd: Decimal = Decimal("0")


@dataclass(frozen=True)
class TransactionRecord:
    """A completed purchase. Never mutated after creation."""

    transaction_id: str
    transaction_type: str
    date: str
    customer_id: str
    salesperson: str
    vehicle_vin: str
    vehicle_price_usd: Decimal
    trade_in_value_usd: Decimal
    final_purchase_usd: Decimal
    invoice_number: str
    trade_in: Optional[TradeInDetails] = None


@dataclass(frozen=True)
class DiscountRule:
    """Purchase threshold above which the perk text is printed on invoices."""

    threshold_usd: Decimal
    perk_text: str


@dataclass(frozen=True)
class Session:
    """Signed-in user carried along in snapshots; not used for access control."""

    username: str
    role: str = ""


@dataclass(frozen=True)
class StoreSnapshot:
    """Serializable image of the whole store."""

    discount_rule: DiscountRule
    session: Optional[Session] = None
    vehicles: tuple[VehicleRecord, ...] = ()
    customers: tuple[CustomerRecord, ...] = ()
    transactions: tuple[TransactionRecord, ...] = ()
    invoices: Dict[str, str] = field(default_factory=dict)


class Storage(Protocol):
    """Persistence boundary consumed by the record store."""

    def load(self) -> Optional[StoreSnapshot]:
        ...

    def save(self, snapshot: StoreSnapshot) -> None:
        ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the data layer.

    An explicit path is returned as-is. Otherwise the search walks from the
    current working directory up to the filesystem root and returns the first
    ``CONFIG_FILE_NAME`` it finds.

    Args:
        explicit_path (Path | None): Optional path that bypasses the search.

    Returns:
        Path: The supplied or discovered configuration file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Required entries are checked later by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    # Interpolation off so perk texts may contain a literal '%'.
    parser = configparser.ConfigParser(interpolation=None)
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System]`` must provide ``DataFile``, ``DealershipName`` and
    ``SchemaVersion``. ``[Defaults]`` is optional; its discount entries seed
    the rule used by a fresh store. Relative data file paths are anchored to
    ``base_path`` (or the working directory) and resolved.

    Raises:
        KeyError: If a required entry is missing.
        ValueError: If ``DiscountThresholdUSD`` is not a non-negative number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        dealership_name = parser.get("System", "DealershipName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    threshold_raw = parser.get("Defaults", "DiscountThresholdUSD", fallback=None)
    perk_text = parser.get("Defaults", "DiscountPerkText", fallback=DEFAULT_DISCOUNT_PERK_TEXT)
    threshold = DEFAULT_DISCOUNT_THRESHOLD_USD
    if threshold_raw is not None:
        threshold = parse_money(threshold_raw)
        if threshold is None or threshold < 0:
            raise ValueError(f"Invalid DiscountThresholdUSD in configuration: {threshold_raw!r}")

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        dealership_name=dealership_name or DEFAULT_DEALERSHIP_NAME,
        schema_version=schema_version,
        discount_threshold_usd=threshold,
        discount_perk_text=perk_text.strip() or DEFAULT_DISCOUNT_PERK_TEXT,
    )


def default_discount_rule(settings: Optional[ConfigSettings] = None) -> DiscountRule:
    """Return the discount rule a fresh store starts with."""

    if settings is None:
        return DiscountRule(DEFAULT_DISCOUNT_THRESHOLD_USD, DEFAULT_DISCOUNT_PERK_TEXT)
    return DiscountRule(settings.discount_threshold_usd, settings.discount_perk_text)


def empty_snapshot(discount_rule: Optional[DiscountRule] = None) -> StoreSnapshot:
    """Snapshot of a store with no records."""

    return StoreSnapshot(discount_rule=discount_rule or default_discount_rule())


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def parse_money(raw: object) -> Optional[Decimal]:
    """Coerce ``raw`` into a finite :class:`Decimal`, or ``None`` if impossible."""

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, float):
        if not math.isfinite(raw):
            return None
        value = Decimal(str(raw))
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            value = Decimal(text)
        except InvalidOperation:
            return None
    if not value.is_finite():
        return None
    return value


def _money(raw: object, default: Decimal = Decimal("0")) -> Decimal:
    value = parse_money(raw)
    return default if value is None else value


def _integer(raw: object, default: int = 0) -> int:
    value = parse_money(raw)
    if value is None:
        return default
    return int(value)


def _optional_integer(raw: object) -> Optional[int]:
    value = parse_money(raw)
    return None if value is None else int(value)


def _text(raw: object) -> str:
    return "" if raw is None else str(raw)


def _money_text(value: Decimal) -> str:
    return str(value)


# ---------------------------------------------------------------------------
# Snapshot documents
# ---------------------------------------------------------------------------


def vehicle_to_dict(record: VehicleRecord) -> Dict[str, Any]:
    return {
        "id": record.vehicle_id,
        "vin": record.vin,
        "make": record.make,
        "model": record.model,
        "year": record.year,
        "category": record.category,
        "condition": record.condition,
        "mileage": record.mileage,
        "price": _money_text(record.price),
        "stock": record.stock,
    }


def vehicle_from_dict(raw: object) -> Optional[VehicleRecord]:
    """Build a vehicle from a document entry; ``None`` when it has no VIN."""

    if not isinstance(raw, Mapping):
        return None
    vin = _text(raw.get("vin")).strip()
    if not vin:
        return None
    return VehicleRecord(
        vehicle_id=_text(raw.get("id")),
        vin=vin,
        make=_text(raw.get("make")),
        model=_text(raw.get("model")),
        year=_integer(raw.get("year")),
        category=_text(raw.get("category")),
        condition=_text(raw.get("condition")),
        mileage=_integer(raw.get("mileage")),
        price=_money(raw.get("price")),
        stock=max(0, _integer(raw.get("stock"))),
    )


def history_to_dict(entry: HistoryEntry) -> Dict[str, Any]:
    return {
        "txId": entry.transaction_id,
        "date": entry.date,
        "type": entry.transaction_type,
        "amountUSD": _money_text(entry.amount_usd),
    }


def history_from_dict(raw: object) -> Optional[HistoryEntry]:
    if not isinstance(raw, Mapping):
        return None
    transaction_id = _text(raw.get("txId"))
    if not transaction_id:
        return None
    return HistoryEntry(
        transaction_id=transaction_id,
        date=_text(raw.get("date")),
        transaction_type=_text(raw.get("type")),
        amount_usd=_money(raw.get("amountUSD")),
    )


def customer_to_dict(record: CustomerRecord) -> Dict[str, Any]:
    return {
        "id": record.customer_id,
        "first": record.first,
        "middle": record.middle,
        "last": record.last,
        "address": record.address,
        "phone1": record.phone1,
        "phone2": record.phone2,
        "license": record.license,
        "creditScore": record.credit_score,
        "txHistory": [history_to_dict(entry) for entry in record.tx_history],
    }


def customer_from_dict(raw: object) -> Optional[CustomerRecord]:
    """Build a customer from a document entry; ``None`` when it has no license."""

    if not isinstance(raw, Mapping):
        return None
    license_number = _text(raw.get("license")).strip()
    if not license_number:
        return None
    history_raw = raw.get("txHistory")
    history: List[HistoryEntry] = []
    if isinstance(history_raw, list):
        history = [entry for entry in map(history_from_dict, history_raw) if entry is not None]
    return CustomerRecord(
        customer_id=_text(raw.get("id")),
        license=license_number,
        first=_text(raw.get("first")),
        middle=_text(raw.get("middle")),
        last=_text(raw.get("last")),
        address=_text(raw.get("address")),
        phone1=_text(raw.get("phone1")),
        phone2=_text(raw.get("phone2")),
        credit_score=_optional_integer(raw.get("creditScore")),
        tx_history=tuple(history),
    )


def trade_in_to_dict(details: TradeInDetails) -> Dict[str, Any]:
    return {
        "make": details.make,
        "model": details.model,
        "year": details.year,
        "mileage": details.mileage,
        "conditionNote": details.condition_note,
        "estimatedResaleUSD": _money_text(details.estimated_resale_usd),
    }


def trade_in_from_dict(raw: object) -> Optional[TradeInDetails]:
    if not isinstance(raw, Mapping):
        return None
    return TradeInDetails(
        make=_text(raw.get("make")),
        model=_text(raw.get("model")),
        year=_optional_integer(raw.get("year")),
        mileage=_integer(raw.get("mileage")),
        condition_note=_text(raw.get("conditionNote")),
        estimated_resale_usd=_money(raw.get("estimatedResaleUSD")),
    )


def transaction_to_dict(record: TransactionRecord) -> Dict[str, Any]:
    return {
        "id": record.transaction_id,
        "type": record.transaction_type,
        "date": record.date,
        "customerId": record.customer_id,
        "salesperson": record.salesperson,
        "vehicleVinBuy": record.vehicle_vin,
        "vehiclePriceUSD": _money_text(record.vehicle_price_usd),
        "tradeIn": trade_in_to_dict(record.trade_in) if record.trade_in is not None else None,
        "tradeInValueUSD": _money_text(record.trade_in_value_usd),
        "finalPurchaseUSD": _money_text(record.final_purchase_usd),
        "invoiceNo": record.invoice_number,
    }


def transaction_from_dict(raw: object) -> Optional[TransactionRecord]:
    """Build a transaction from a document entry; ``None`` when it has no id."""

    if not isinstance(raw, Mapping):
        return None
    transaction_id = _text(raw.get("id"))
    if not transaction_id:
        return None
    return TransactionRecord(
        transaction_id=transaction_id,
        transaction_type=_text(raw.get("type")),
        date=_text(raw.get("date")),
        customer_id=_text(raw.get("customerId")),
        salesperson=_text(raw.get("salesperson")),
        vehicle_vin=_text(raw.get("vehicleVinBuy")),
        vehicle_price_usd=_money(raw.get("vehiclePriceUSD")),
        trade_in_value_usd=_money(raw.get("tradeInValueUSD")),
        final_purchase_usd=_money(raw.get("finalPurchaseUSD")),
        invoice_number=_text(raw.get("invoiceNo")),
        trade_in=trade_in_from_dict(raw.get("tradeIn")),
    )


def discount_rule_to_dict(rule: DiscountRule) -> Dict[str, Any]:
    return {"thresholdUSD": _money_text(rule.threshold_usd), "perkText": rule.perk_text}


def discount_rule_from_dict(raw: object, default: DiscountRule) -> DiscountRule:
    """Parse a stored discount rule, falling back to ``default`` when invalid."""

    if not isinstance(raw, Mapping):
        return default
    threshold = parse_money(raw.get("thresholdUSD"))
    perk_text = raw.get("perkText")
    if threshold is None or threshold < 0 or not isinstance(perk_text, str) or not perk_text.strip():
        log.warning("Ignoring invalid stored discount rule: %r", dict(raw))
        return default
    return DiscountRule(threshold_usd=threshold, perk_text=perk_text)


def session_from_dict(raw: object) -> Optional[Session]:
    if not isinstance(raw, Mapping) or not raw.get("username"):
        return None
    return Session(username=_text(raw.get("username")), role=_text(raw.get("role")))


def _records(raw: object, builder, label: str) -> tuple:
    if not isinstance(raw, list):
        if raw is not None:
            log.warning("Snapshot field '%s' is not a list; defaulting to empty", label)
        return ()
    records = []
    for entry in raw:
        record = builder(entry)
        if record is None:
            log.warning("Skipping malformed %s entry: %r", label, entry)
            continue
        records.append(record)
    return tuple(records)


def snapshot_to_dict(snapshot: StoreSnapshot) -> Dict[str, Any]:
    """Convert a snapshot into the JSON-compatible backup document."""

    session = None
    if snapshot.session is not None:
        session = {"username": snapshot.session.username, "role": snapshot.session.role}
    return {
        "session": session,
        "vehicles": [vehicle_to_dict(record) for record in snapshot.vehicles],
        "customers": [customer_to_dict(record) for record in snapshot.customers],
        "transactions": [transaction_to_dict(record) for record in snapshot.transactions],
        "invoices": dict(snapshot.invoices),
        "settings": {"discountRule": discount_rule_to_dict(snapshot.discount_rule)},
    }


def snapshot_from_dict(raw: Mapping[str, Any], *, default_rule: Optional[DiscountRule] = None) -> StoreSnapshot:
    """Build a snapshot from a document, defaulting every malformed field.

    Missing or mistyped collections become empty, entries without their
    natural key are skipped, and an invalid discount rule is replaced by
    ``default_rule``. The load as a whole never fails.
    """

    fallback_rule = default_rule or default_discount_rule()
    invoices_raw = raw.get("invoices")
    invoices: Dict[str, str] = {}
    if isinstance(invoices_raw, Mapping):
        invoices = {str(key): value for key, value in invoices_raw.items() if isinstance(value, str)}
    settings_raw = raw.get("settings")
    rule_raw = settings_raw.get("discountRule") if isinstance(settings_raw, Mapping) else None
    return StoreSnapshot(
        discount_rule=discount_rule_from_dict(rule_raw, fallback_rule),
        session=session_from_dict(raw.get("session")),
        vehicles=_records(raw.get("vehicles"), vehicle_from_dict, "vehicles"),
        customers=_records(raw.get("customers"), customer_from_dict, "customers"),
        transactions=_records(raw.get("transactions"), transaction_from_dict, "transactions"),
        invoices=invoices,
    )


def dump_json_document(payload: object) -> str:
    """Serialize a document the way backups and exports are written."""

    return json.dumps(payload, indent=2, ensure_ascii=False)


def parse_backup_document(text: str, *, default_rule: Optional[DiscountRule] = None) -> StoreSnapshot:
    """Parse a backup document produced by :func:`snapshot_to_dict`.

    Raises:
        ValueError: If ``text`` is not JSON or its top level is not an object.
    """

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON backup: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Invalid JSON backup: top-level value must be an object")
    return snapshot_from_dict(parsed, default_rule=default_rule)


def write_text_document(text: str, destination: Path) -> Path:
    """Write ``text`` to ``destination``, creating parent directories."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(text, encoding="utf-8")
    return dest


def read_text_document(source: Path) -> str:
    """Read a UTF-8 document.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
    """

    path = Path(source).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Document not found: {path}")
    return path.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the dealership workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist ``workbook`` to ``destination`` in one step.

    The workbook is written to a temporary file next to the destination and
    then moved over it, so readers never observe a partially written file.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(handle)
    try:
        workbook.save(temp_name)
        os.replace(temp_name, dest)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def cell_text_problem(value: str) -> Optional[str]:
    """Describe why ``value`` cannot be written to a worksheet cell, or return ``None``."""

    if ILLEGAL_CHARACTERS_RE.search(value):
        return "contains control characters"
    if len(value) > MAX_CELL_TEXT_LENGTH:
        return f"is longer than {MAX_CELL_TEXT_LENGTH} characters"
    return None


def new_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Create a workbook with one sheet per entry and bold header rows."""

    workbook = openpyxl.Workbook()
    if workbook.active is not None and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[Dict[str, Any]]:
    """Yield each populated row of ``sheet_name`` as a header -> value dict.

    A missing sheet yields nothing. Fully empty rows are skipped.
    """

    if sheet_name not in workbook.sheetnames:
        log.warning("Workbook has no '%s' sheet; treating it as empty", sheet_name)
        return
    sheet = workbook[sheet_name]
    headers = [cell.value for cell in sheet[1]]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield {header: value for header, value in zip(headers, raw) if header is not None}


def _row_to_document(row: Mapping[str, Any], columns: Mapping[str, str]) -> Dict[str, Any]:
    return {key: row.get(header) for header, key in columns.items()}


def _document_to_row(document: Mapping[str, Any], columns: Mapping[str, str]) -> List[object]:
    return [document.get(key) for key in columns.values()]


def read_snapshot_document(workbook: Workbook) -> Dict[str, Any]:
    """Reassemble the backup-style document from the workbook sheets."""

    history_by_customer: Dict[str, List[Dict[str, Any]]] = {}
    for row in iter_sheet_rows(workbook, SheetName.CUSTOMER_HISTORY.value):
        entry = _row_to_document(row, HISTORY_COLUMNS)
        history_by_customer.setdefault(_text(entry.pop("customerId")), []).append(entry)

    customers = []
    for row in iter_sheet_rows(workbook, SheetName.CUSTOMERS.value):
        document = _row_to_document(row, CUSTOMER_COLUMNS)
        document["txHistory"] = history_by_customer.get(_text(document.get("id")), [])
        customers.append(document)

    transactions = []
    for row in iter_sheet_rows(workbook, SheetName.TRANSACTIONS.value):
        document = _row_to_document(row, TRANSACTION_COLUMNS)
        trade_in = _row_to_document(row, TRADE_IN_COLUMNS)
        document["tradeIn"] = trade_in if any(value is not None for value in trade_in.values()) else None
        transactions.append(document)

    invoices = {}
    for row in iter_sheet_rows(workbook, SheetName.INVOICES.value):
        entry = _row_to_document(row, INVOICE_COLUMNS)
        if entry["txId"] is not None and entry["text"] is not None:
            invoices[_text(entry["txId"])] = _text(entry["text"])

    settings = {
        _text(row.get("Key")): row.get("Value")
        for row in iter_sheet_rows(workbook, SheetName.SETTINGS.value)
    }
    session = None
    if settings.get(SETTING_SESSION_USERNAME):
        session = {"username": settings[SETTING_SESSION_USERNAME], "role": settings.get(SETTING_SESSION_ROLE)}

    return {
        "session": session,
        "vehicles": [
            _row_to_document(row, VEHICLE_COLUMNS)
            for row in iter_sheet_rows(workbook, SheetName.VEHICLES.value)
        ],
        "customers": customers,
        "transactions": transactions,
        "invoices": invoices,
        "settings": {
            "discountRule": {
                "thresholdUSD": settings.get(SETTING_DISCOUNT_THRESHOLD),
                "perkText": settings.get(SETTING_DISCOUNT_PERK),
            }
        },
    }


def build_workbook(snapshot: StoreSnapshot) -> Workbook:
    """Lay a snapshot out across the dealership sheets."""

    workbook = new_workbook()
    document = snapshot_to_dict(snapshot)

    vehicles_sheet = workbook[SheetName.VEHICLES.value]
    for vehicle in document["vehicles"]:
        vehicles_sheet.append(_document_to_row(vehicle, VEHICLE_COLUMNS))

    customers_sheet = workbook[SheetName.CUSTOMERS.value]
    history_sheet = workbook[SheetName.CUSTOMER_HISTORY.value]
    for customer in document["customers"]:
        customers_sheet.append(_document_to_row(customer, CUSTOMER_COLUMNS))
        for entry in customer["txHistory"]:
            history_sheet.append(_document_to_row({**entry, "customerId": customer["id"]}, HISTORY_COLUMNS))

    transactions_sheet = workbook[SheetName.TRANSACTIONS.value]
    for transaction in document["transactions"]:
        trade_in = transaction["tradeIn"] or {}
        transactions_sheet.append(
            _document_to_row(transaction, TRANSACTION_COLUMNS) + _document_to_row(trade_in, TRADE_IN_COLUMNS)
        )

    invoices_sheet = workbook[SheetName.INVOICES.value]
    for transaction_id, text in document["invoices"].items():
        invoices_sheet.append([transaction_id, text])

    settings_sheet = workbook[SheetName.SETTINGS.value]
    rule = document["settings"]["discountRule"]
    settings_sheet.append([SETTING_DISCOUNT_THRESHOLD, rule["thresholdUSD"]])
    settings_sheet.append([SETTING_DISCOUNT_PERK, rule["perkText"]])
    if snapshot.session is not None:
        settings_sheet.append([SETTING_SESSION_USERNAME, snapshot.session.username])
        settings_sheet.append([SETTING_SESSION_ROLE, snapshot.session.role])

    return workbook


class WorkbookStorage:
    """Stores snapshots in an Excel workbook at ``data_file``."""

    def __init__(self, data_file: Path, *, default_rule: Optional[DiscountRule] = None) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self.default_rule = default_rule or default_discount_rule()

    def load(self) -> Optional[StoreSnapshot]:
        if not self.data_file.exists():
            log.info("Workbook '%s' does not exist yet; starting empty", self.data_file)
            return None
        workbook = open_workbook(self.data_file)
        snapshot = snapshot_from_dict(read_snapshot_document(workbook), default_rule=self.default_rule)
        log.debug(
            "Loaded %d vehicles, %d customers, %d transactions from '%s'",
            len(snapshot.vehicles),
            len(snapshot.customers),
            len(snapshot.transactions),
            self.data_file,
        )
        return snapshot

    def save(self, snapshot: StoreSnapshot) -> None:
        save_workbook(build_workbook(snapshot), self.data_file)


class MemoryStorage:
    """Keeps the last saved snapshot in memory."""

    def __init__(self, snapshot: Optional[StoreSnapshot] = None) -> None:
        self.snapshot = snapshot
        self.save_count = 0

    def load(self) -> Optional[StoreSnapshot]:
        return self.snapshot

    def save(self, snapshot: StoreSnapshot) -> None:
        self.snapshot = snapshot
        self.save_count += 1
