"""Business logic layer for the dealership store.

Every operation receives a :class:`RuntimeContext` that owns the in-memory
:class:`RecordStore` and the storage backend it is flushed to. Mutating
operations validate all preconditions first, then mutate the store, then
persist the whole snapshot once, so a raised error always means nothing
changed.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from . import data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    MIN_LICENSE_LENGTH,
    TRADE_IN_CATEGORY,
    UNKNOWN_TRADE_IN_LABEL,
    RecordKind,
    TransactionType,
    VehicleCondition,
)
from .data_manager import (
    CustomerRecord,
    DiscountRule,
    HistoryEntry,
    Session,
    StoreSnapshot,
    TradeInDetails,
    TransactionRecord,
    VehicleRecord,
)
from .formatting import (
    escape_html,
    format_usd,
    generate_id,
    generate_invoice_number,
    generate_trade_in_vin,
)


class DealershipError(Exception):
    """Base class for errors raised by dealership operations."""


class ValidationError(DealershipError):
    """Raised when a required field is missing or a value is invalid."""


class NotFoundError(DealershipError):
    """Raised when a referenced customer, vehicle or transaction is unknown."""


class OutOfStockError(DealershipError):
    """Raised when a purchase targets a vehicle with no stock left."""


class IntegrityError(DealershipError):
    """Raised when an invoice references a record that has been deleted."""


class RestoreError(DealershipError):
    """Raised when a backup document cannot be parsed."""


VEHICLE_FIELDS = frozenset({"make", "model", "year", "category", "condition", "mileage", "price", "stock"})
CUSTOMER_FIELDS = frozenset({"first", "middle", "last", "address", "phone1", "phone2", "credit_score"})


@dataclass
class RecordStore:
    """In-memory collections owned by a runtime context.

    Vehicles and customers keep insertion order; transactions are kept
    most-recent-first.
    """

    discount_rule: DiscountRule
    session: Optional[Session] = None
    vehicles: List[VehicleRecord] = field(default_factory=list)
    customers: List[CustomerRecord] = field(default_factory=list)
    transactions: List[TransactionRecord] = field(default_factory=list)
    invoices: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, snapshot: StoreSnapshot) -> "RecordStore":
        store = cls(discount_rule=snapshot.discount_rule)
        store.replace_with(snapshot)
        return store

    def replace_with(self, snapshot: StoreSnapshot) -> None:
        """Swap every collection for the contents of ``snapshot``."""

        self.discount_rule = snapshot.discount_rule
        self.session = snapshot.session
        self.vehicles = list(snapshot.vehicles)
        self.customers = list(snapshot.customers)
        self.transactions = list(snapshot.transactions)
        self.invoices = dict(snapshot.invoices)

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            discount_rule=self.discount_rule,
            session=self.session,
            vehicles=tuple(self.vehicles),
            customers=tuple(self.customers),
            transactions=tuple(self.transactions),
            invoices=dict(self.invoices),
        )


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration, record store and storage backend used by every operation."""

    settings: data_manager.ConfigSettings
    store: RecordStore
    storage: data_manager.Storage


@dataclass(frozen=True)
class TransactionRequest:
    """User intent for a purchase, optionally offset by a trade-in."""

    customer_id: str
    vehicle_vin: str
    salesperson: str
    transaction_type: TransactionType = TransactionType.PURCHASE
    date: Optional[str] = None
    price_override_usd: Optional[Decimal] = None
    trade_in_value_usd: Decimal = Decimal("0")
    trade_in: Optional[TradeInDetails] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    storage: data_manager.Storage,
) -> RuntimeContext:
    """Load the store from ``storage``, starting empty when nothing is saved."""

    snapshot = storage.load()
    if snapshot is None:
        snapshot = data_manager.empty_snapshot(data_manager.default_discount_rule(settings))
    return RuntimeContext(settings=settings, store=RecordStore.from_snapshot(snapshot), storage=storage)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve ``config.ini`` and load the workbook-backed store it points at.

    Args:
        config_path (Path | None): Optional explicit configuration file. When
            omitted the data layer searches upwards from the working directory.

    Returns:
        RuntimeContext: Context wired to a :class:`data_manager.WorkbookStorage`.

    Raises:
        FileNotFoundError: If no configuration file can be located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    storage = data_manager.WorkbookStorage(
        settings.data_file,
        default_rule=data_manager.default_discount_rule(settings),
    )
    context = build_runtime_context(settings, storage)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Reject configurations written for a different workbook layout.

    Raises:
        RuntimeError: If the configured schema version differs from
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
    """Flush the complete store to the storage backend.

    Failures propagate unchanged; the in-memory store keeps the mutation.
    """

    context.storage.save(context.store.snapshot())
    log.debug("Persisted store snapshot")


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Discard in-memory state and reload from the storage backend."""

    refreshed = build_runtime_context(context.settings, context.storage)
    log.info("Reloaded store from storage")
    return refreshed


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def _contains(needle: str, *haystack: object) -> bool:
    return any(needle in str(value or "").lower() for value in haystack)


def list_vehicles(context: RuntimeContext, query: Optional[str] = None) -> List[VehicleRecord]:
    """Return the inventory, narrowed to VIN, make or model matches of ``query``.

    Matching is a case-insensitive substring test; a blank query lists all.
    """

    needle = (query or "").strip().lower()
    return [
        vehicle
        for vehicle in context.store.vehicles
        if not needle or _contains(needle, vehicle.vin, vehicle.make, vehicle.model)
    ]


def list_customers(context: RuntimeContext, query: Optional[str] = None) -> List[CustomerRecord]:
    """Return the customers, narrowed to name, license or phone matches of ``query``."""

    needle = (query or "").strip().lower()
    matches = []
    for customer in context.store.customers:
        full_name = f"{customer.first} {customer.middle or ''} {customer.last}"
        if not needle or _contains(needle, full_name, customer.license, customer.phone1, customer.phone2):
            matches.append(customer)
    return matches


def list_transactions(context: RuntimeContext) -> List[TransactionRecord]:
    """Return the transactions, most recent first."""

    return list(context.store.transactions)


def _vehicle_index(context: RuntimeContext, vin: str) -> Optional[int]:
    for index, vehicle in enumerate(context.store.vehicles):
        if vehicle.vin == vin:
            return index
    return None


def _customer_index(context: RuntimeContext, *, customer_id: Optional[str] = None, license_number: Optional[str] = None) -> Optional[int]:
    for index, customer in enumerate(context.store.customers):
        if customer_id is not None and customer.customer_id == customer_id:
            return index
        if license_number is not None and customer.license == license_number:
            return index
    return None


def find_vehicle(context: RuntimeContext, vin: str) -> Optional[VehicleRecord]:
    index = _vehicle_index(context, vin)
    return None if index is None else context.store.vehicles[index]


def find_customer(context: RuntimeContext, customer_id: str) -> Optional[CustomerRecord]:
    index = _customer_index(context, customer_id=customer_id)
    return None if index is None else context.store.customers[index]


def get_vehicle(context: RuntimeContext, vin: str) -> VehicleRecord:
    """Resolve a vehicle by VIN.

    Raises:
        NotFoundError: If no vehicle carries ``vin``.
    """

    vehicle = find_vehicle(context, vin)
    if vehicle is None:
        log.warning("Vehicle lookup failed for VIN '%s'", vin)
        raise NotFoundError("Vehicle not found.")
    return vehicle


def get_customer(context: RuntimeContext, customer_id: str) -> CustomerRecord:
    """Resolve a customer by identifier.

    Raises:
        NotFoundError: If the identifier is unknown.
    """

    customer = find_customer(context, customer_id)
    if customer is None:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise NotFoundError("Customer not found.")
    return customer


def get_customer_by_license(context: RuntimeContext, license_number: str) -> CustomerRecord:
    """Resolve a customer by driver's license.

    Raises:
        NotFoundError: If no customer holds ``license_number``.
    """

    index = _customer_index(context, license_number=license_number.strip())
    if index is None:
        log.warning("Customer lookup failed for license '%s'", license_number)
        raise NotFoundError("Customer not found.")
    return context.store.customers[index]


def get_transaction(context: RuntimeContext, transaction_id: str) -> TransactionRecord:
    """Resolve a transaction by identifier.

    Raises:
        NotFoundError: If the identifier is unknown.
    """

    for transaction in context.store.transactions:
        if transaction.transaction_id == transaction_id:
            return transaction
    log.warning("Transaction lookup failed for id '%s'", transaction_id)
    raise NotFoundError("Transaction not found.")


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def require_nonnegative_money(amount: Decimal, label: str = "Amount") -> Decimal:
    """Return ``amount`` as a finite, non-negative :class:`Decimal`.

    Raises:
        ValidationError: If ``amount`` is not numeric or is negative.
    """

    value = data_manager.parse_money(amount)
    if value is None or value < 0:
        log.error("%s validation failed: %r", label, amount)
        raise ValidationError(f"{label} must be a number zero or greater.")
    return value


def _require_count(raw: object, label: str) -> int:
    value = data_manager.parse_money(raw)
    if value is None or value < 0 or value != value.to_integral_value():
        log.error("%s validation failed: %r", label, raw)
        raise ValidationError(f"{label} must be a whole number zero or greater.")
    return int(value)


def require_storable_text(value: object, label: str) -> str:
    """Return ``value`` trimmed, rejecting text a workbook cell cannot hold.

    Raises:
        ValidationError: If the text has control characters or is too long.
    """

    text = "" if value is None else str(value).strip()
    problem = data_manager.cell_text_problem(text)
    if problem is not None:
        log.error("%s validation failed: text %s", label, problem)
        raise ValidationError(f"{label} {problem}.")
    return text


def _normalize_vehicle_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(fields) - VEHICLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown vehicle field(s): {', '.join(unknown)}")

    normalized: Dict[str, Any] = {}
    for name, value in fields.items():
        if name in ("make", "model", "category"):
            normalized[name] = require_storable_text(value, name.capitalize())
        elif name == "condition":
            condition = require_storable_text(value, "Condition")
            if condition and condition not in {member.value for member in VehicleCondition}:
                raise ValidationError(f"Unsupported vehicle condition: {condition}")
            normalized[name] = condition
        elif name == "price":
            normalized[name] = require_nonnegative_money(value, "Price")
        else:
            normalized[name] = _require_count(value, name.capitalize())
    return normalized


def _normalize_customer_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    if "tx_history" in fields:
        raise ValidationError("Transaction history is recorded by purchases and cannot be edited.")
    unknown = sorted(set(fields) - CUSTOMER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown customer field(s): {', '.join(unknown)}")

    normalized: Dict[str, Any] = {}
    for name, value in fields.items():
        if name == "credit_score":
            normalized[name] = None if value in (None, "") else _require_count(value, "Credit score")
        else:
            normalized[name] = require_storable_text(value, name.replace("_", " ").capitalize())
    return normalized


# ---------------------------------------------------------------------------
# Catalog operations
# ---------------------------------------------------------------------------


def upsert_vehicle(context: RuntimeContext, *, vin: str, **fields: Any) -> VehicleRecord:
    """Insert a vehicle or merge ``fields`` into the one with the same VIN.

    The VIN is trimmed and must not be empty. Existing records keep their VIN
    and identifier; new records receive a generated ``veh_`` identifier.

    Raises:
        ValidationError: If the VIN is empty, a field is unknown, or a numeric
            field is invalid (stock must be a whole number zero or greater).
    """

    vin = require_storable_text(vin, "VIN")
    if not vin:
        log.error("Vehicle upsert rejected: empty VIN")
        raise ValidationError("VIN is required.")
    normalized = _normalize_vehicle_fields(fields)

    index = _vehicle_index(context, vin)
    if index is not None:
        record = replace(context.store.vehicles[index], **normalized)
        context.store.vehicles[index] = record
        log.info("Updated vehicle '%s'", vin)
    else:
        record = VehicleRecord(vehicle_id=generate_id("veh"), vin=vin, **normalized)
        context.store.vehicles.append(record)
        log.info("Added vehicle '%s'", vin)

    persist_context(context)
    return record


def delete_vehicle(context: RuntimeContext, vin: str) -> int:
    """Remove every vehicle with ``vin``; returns how many were removed."""

    vin = (vin or "").strip()
    before = len(context.store.vehicles)
    context.store.vehicles = [vehicle for vehicle in context.store.vehicles if vehicle.vin != vin]
    removed = before - len(context.store.vehicles)
    persist_context(context)
    log.info("Deleted %d vehicle(s) with VIN '%s'", removed, vin)
    return removed


def upsert_customer(context: RuntimeContext, *, license: str, **fields: Any) -> CustomerRecord:
    """Insert a customer or merge ``fields`` into the one with the same license.

    New customers start with an empty transaction history. The history can
    only grow through :func:`create_transaction`.

    Raises:
        ValidationError: If the license is empty, a field is unknown, or
            ``tx_history`` is supplied.
    """

    license_number = require_storable_text(license, "Driver's license")
    if not license_number:
        log.error("Customer upsert rejected: empty license")
        raise ValidationError("Driver's license is required.")
    normalized = _normalize_customer_fields(fields)

    index = _customer_index(context, license_number=license_number)
    if index is not None:
        record = replace(context.store.customers[index], **normalized)
        context.store.customers[index] = record
        log.info("Updated customer with license '%s'", license_number)
    else:
        record = CustomerRecord(customer_id=generate_id("cust"), license=license_number, **normalized)
        context.store.customers.append(record)
        log.info("Added customer with license '%s'", license_number)

    persist_context(context)
    return record


def delete_customer(context: RuntimeContext, license: str) -> int:
    """Remove every customer with ``license``; returns how many were removed."""

    license_number = (license or "").strip()
    before = len(context.store.customers)
    context.store.customers = [
        customer for customer in context.store.customers if customer.license != license_number
    ]
    removed = before - len(context.store.customers)
    persist_context(context)
    log.info("Deleted %d customer(s) with license '%s'", removed, license_number)
    return removed


# ---------------------------------------------------------------------------
# Transaction engine
# ---------------------------------------------------------------------------


def validate_customer_for_purchase(customer: CustomerRecord) -> None:
    """Require a driver's license of at least ``MIN_LICENSE_LENGTH`` characters.

    Raises:
        ValidationError: If the customer is not eligible to purchase.
    """

    if len((customer.license or "").strip()) < MIN_LICENSE_LENGTH:
        log.error("Customer '%s' has no valid driver's license", customer.customer_id)
        raise ValidationError("Customer must have a valid driver's license to purchase.")


def require_in_stock(vehicle: VehicleRecord) -> None:
    """Raises :class:`OutOfStockError` when ``vehicle`` has no stock."""

    if vehicle.stock <= 0:
        log.error("Vehicle '%s' is out of stock", vehicle.vin)
        raise OutOfStockError("Vehicle is out of stock.")


def compute_final_purchase(vehicle_price_usd: Decimal, trade_in_value_usd: Decimal) -> Decimal:
    """Price minus trade-in, floored at zero without complaint."""

    return max(Decimal("0"), vehicle_price_usd - trade_in_value_usd)


def _resolve_transaction_type(candidate: TransactionType | str) -> TransactionType:
    try:
        return TransactionType(candidate)
    except ValueError as exc:
        raise ValidationError(f"Unsupported transaction type: {candidate}") from exc


def _resolve_date(candidate: Optional[str | date], moment: datetime) -> str:
    if candidate is None or candidate == "":
        return moment.date().isoformat()
    if isinstance(candidate, date):
        # datetimes are dates too; keep only the calendar day
        return date(candidate.year, candidate.month, candidate.day).isoformat()
    try:
        return date.fromisoformat(str(candidate).strip()).isoformat()
    except ValueError as exc:
        log.error("Transaction date validation failed: %r", candidate)
        raise ValidationError(f"Transaction date must be YYYY-MM-DD, got '{candidate}'.") from exc


def validate_trade_in(details: TradeInDetails) -> TradeInDetails:
    """Return ``details`` with its text trimmed and its numbers checked.

    Raises:
        ValidationError: If the resale value, mileage or year is negative or
            not numeric, or a text field cannot be stored.
    """

    return TradeInDetails(
        make=require_storable_text(details.make, "Trade-in make"),
        model=require_storable_text(details.model, "Trade-in model"),
        year=None if details.year in (None, "") else _require_count(details.year, "Trade-in year"),
        mileage=_require_count(details.mileage or 0, "Trade-in mileage"),
        condition_note=require_storable_text(details.condition_note, "Trade-in condition note"),
        estimated_resale_usd=require_nonnegative_money(details.estimated_resale_usd, "Estimated resale value"),
    )


def build_trade_in_vehicle(details: TradeInDetails, *, moment: datetime, taken_vins: set[str]) -> VehicleRecord:
    """Inventory record for a vehicle received in trade."""

    return VehicleRecord(
        vehicle_id=generate_id("veh", when=moment),
        vin=generate_trade_in_vin(when=moment, taken=taken_vins),
        make=details.make or UNKNOWN_TRADE_IN_LABEL,
        model=details.model or UNKNOWN_TRADE_IN_LABEL,
        year=details.year or moment.year,
        category=TRADE_IN_CATEGORY,
        condition=VehicleCondition.TRADE_IN.value,
        mileage=details.mileage or 0,
        price=details.estimated_resale_usd,
        stock=1,
    )


def create_transaction(context: RuntimeContext, request: TransactionRequest) -> TransactionRecord:
    """Record a purchase and bring inventory, customer history and invoices in line.

    Validation (customer and vehicle exist, license is eligible, vehicle is in
    stock, salesperson and trade-in details are usable, amounts and date are
    well formed) finishes before anything is touched. The store is then
    updated in one pass: the transaction goes to the head of the log, the
    vehicle loses one unit of stock, a trade-in vehicle is added when details
    were supplied, the customer's history gains an entry, the invoice is
    generated, and the snapshot is persisted.

    The final amount is ``max(0, price - trade_in_value)``. A trade-in worth
    more than the vehicle silently yields zero.

    Raises:
        NotFoundError: If the customer or vehicle cannot be resolved.
        ValidationError: If the customer is ineligible or an input is invalid.
        OutOfStockError: If the vehicle has no stock.
    """

    customer = get_customer(context, request.customer_id)
    vehicle = get_vehicle(context, request.vehicle_vin)
    validate_customer_for_purchase(customer)
    require_in_stock(vehicle)
    salesperson = require_storable_text(request.salesperson, "Salesperson")
    if not salesperson:
        log.error("Transaction rejected: no salesperson given")
        raise ValidationError("Salesperson is required.")

    transaction_type = _resolve_transaction_type(request.transaction_type)
    is_trade_in = transaction_type is TransactionType.TRADE_IN
    if request.price_override_usd is not None:
        vehicle_price = require_nonnegative_money(request.price_override_usd, "Price override")
    else:
        vehicle_price = vehicle.price
    trade_in_value = Decimal("0")
    if is_trade_in:
        trade_in_value = require_nonnegative_money(request.trade_in_value_usd or Decimal("0"), "Trade-in value")
    final_purchase = compute_final_purchase(vehicle_price, trade_in_value)

    moment = _resolve_timestamp(None)
    transaction_date = _resolve_date(request.date, moment)
    trade_in = None
    if is_trade_in and request.trade_in is not None:
        trade_in = validate_trade_in(request.trade_in)

    transaction = TransactionRecord(
        transaction_id=generate_id("tx", when=moment),
        transaction_type=transaction_type.value,
        date=transaction_date,
        customer_id=customer.customer_id,
        salesperson=salesperson,
        vehicle_vin=vehicle.vin,
        vehicle_price_usd=vehicle_price,
        trade_in_value_usd=trade_in_value,
        final_purchase_usd=final_purchase,
        invoice_number=generate_invoice_number(
            when=moment,
            taken={existing.invoice_number for existing in context.store.transactions},
        ),
        trade_in=trade_in,
    )
    history_entry = HistoryEntry(
        transaction_id=transaction.transaction_id,
        date=transaction.date,
        transaction_type=transaction.transaction_type,
        amount_usd=final_purchase,
    )
    trade_vehicle = None
    if trade_in is not None:
        trade_vehicle = build_trade_in_vehicle(
            trade_in,
            moment=moment,
            taken_vins={existing.vin for existing in context.store.vehicles},
        )

    store = context.store
    store.transactions.insert(0, transaction)
    store.vehicles[_vehicle_index(context, vehicle.vin)] = replace(vehicle, stock=vehicle.stock - 1)
    if trade_vehicle is not None:
        store.vehicles.insert(0, trade_vehicle)
    store.customers[_customer_index(context, customer_id=customer.customer_id)] = replace(
        customer,
        tx_history=(history_entry, *customer.tx_history),
    )
    store.invoices[transaction.transaction_id] = build_invoice_text(context, transaction)
    persist_context(context)

    log.info(
        "Recorded %s transaction '%s' (invoice %s) for VIN '%s': price=%s trade-in=%s final=%s",
        transaction.transaction_type,
        transaction.transaction_id,
        transaction.invoice_number,
        vehicle.vin,
        vehicle_price,
        trade_in_value,
        final_purchase,
    )
    return transaction


def delete_transaction(context: RuntimeContext, transaction_id: str) -> bool:
    """Remove a transaction and its invoice.

    Stock and customer history are left untouched; this is not a rollback.
    Returns ``False`` when the transaction did not exist.
    """

    before = len(context.store.transactions)
    context.store.transactions = [
        transaction for transaction in context.store.transactions if transaction.transaction_id != transaction_id
    ]
    removed = len(context.store.transactions) < before
    context.store.invoices.pop(transaction_id, None)
    persist_context(context)
    if removed:
        log.info("Deleted transaction '%s' and its invoice", transaction_id)
    else:
        log.warning("Delete requested for unknown transaction '%s'", transaction_id)
    return removed


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


def get_discount_perks(context: RuntimeContext, final_purchase_usd: Decimal) -> List[str]:
    """Perks earned by a purchase under the active discount rule."""

    rule = context.store.discount_rule
    if final_purchase_usd >= rule.threshold_usd:
        return [rule.perk_text]
    return []


def _customer_name(customer: CustomerRecord) -> str:
    middle = f"{customer.middle}. " if customer.middle else ""
    return f"{customer.first} {middle}{customer.last}"


def build_invoice_text(context: RuntimeContext, transaction: TransactionRecord) -> str:
    """Render the invoice for ``transaction`` from the current store.

    Invoices are not snapshots: the customer and vehicle are looked up again
    on every call.

    Raises:
        IntegrityError: If the referenced customer or vehicle no longer exists.
    """

    customer = find_customer(context, transaction.customer_id)
    vehicle = find_vehicle(context, transaction.vehicle_vin)
    if customer is None:
        log.error("Invoice for '%s' references a missing customer", transaction.transaction_id)
        raise IntegrityError("Invoice error: customer missing.")
    if vehicle is None:
        log.error("Invoice for '%s' references a missing vehicle", transaction.transaction_id)
        raise IntegrityError("Invoice error: vehicle missing.")

    phones = customer.phone1 + (f" | {customer.phone2}" if customer.phone2 else "")
    lines = [
        context.settings.dealership_name.upper(),
        "INVOICE",
        "-" * 60,
        f"Invoice #: {transaction.invoice_number}",
        f"Date:      {transaction.date}",
        f"Type:      {transaction.transaction_type.upper()}",
        f"Salesperson: {transaction.salesperson}",
        "",
        "CUSTOMER",
        f"Name: {_customer_name(customer)}",
        f"Address: {customer.address}",
        f"Phone: {phones}",
        f"Driver's License: {customer.license}",
        "",
        "VEHICLE",
        f"{vehicle.year} {vehicle.make} {vehicle.model} ({vehicle.condition})",
        f"VIN: {vehicle.vin}",
        f"Mileage: {vehicle.mileage}",
        "",
        "PAYMENT SUMMARY",
    ]

    if transaction.transaction_type == TransactionType.TRADE_IN.value:
        lines.append(f"Vehicle price:       {format_usd(transaction.vehicle_price_usd)}")
        lines.append(f"Trade-in value:     -{format_usd(transaction.trade_in_value_usd)}")
        lines.append("-" * 40)
    lines.append(f"Final purchase:      {format_usd(transaction.final_purchase_usd)}")

    perks = get_discount_perks(context, transaction.final_purchase_usd)
    if perks:
        lines.append("")
        lines.append("DISCOUNTS / PERKS")
        lines.extend(f"- {perk}" for perk in perks)

    lines.append("")
    lines.append("Thank you for your business!")
    return "\n".join(lines)


def get_invoice(context: RuntimeContext, transaction_id: str) -> str:
    """Stored invoice text for ``transaction_id``.

    Raises:
        NotFoundError: If no invoice is stored for the transaction.
    """

    try:
        return context.store.invoices[transaction_id]
    except KeyError as exc:
        log.warning("Invoice lookup failed for transaction '%s'", transaction_id)
        raise NotFoundError("Invoice not found.") from exc


def regenerate_invoice(context: RuntimeContext, transaction_id: str) -> str:
    """Rebuild and store the invoice for an existing transaction.

    Raises:
        NotFoundError: If the transaction is unknown.
        IntegrityError: If its customer or vehicle has since been deleted.
    """

    transaction = get_transaction(context, transaction_id)
    text = build_invoice_text(context, transaction)
    context.store.invoices[transaction_id] = text
    persist_context(context)
    log.info("Regenerated invoice for transaction '%s'", transaction_id)
    return text


def clear_invoices(context: RuntimeContext) -> int:
    """Drop every stored invoice; returns how many were removed."""

    removed = len(context.store.invoices)
    context.store.invoices = {}
    persist_context(context)
    log.info("Cleared %d invoice(s)", removed)
    return removed


def render_invoice_html(context: RuntimeContext, transaction_id: str) -> str:
    """Printable HTML page wrapping the stored invoice text."""

    text = get_invoice(context, transaction_id)
    transaction = get_transaction(context, transaction_id)
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>Invoice {escape_html(transaction.invoice_number)}</title>\n"
        "</head>\n<body>\n"
        '<pre style="font-family: ui-monospace, Menlo, Consolas, monospace; white-space: pre-wrap; font-size: 12px;">\n'
        f"{escape_html(text)}\n"
        "</pre>\n</body>\n</html>\n"
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def update_discount_rule(context: RuntimeContext, threshold_usd: Decimal | str, perk_text: str) -> DiscountRule:
    """Replace the active discount rule.

    Raises:
        ValidationError: If the threshold is not a non-negative number or the
            perk text is blank or cannot be stored.
    """

    threshold = require_nonnegative_money(threshold_usd, "Discount threshold")
    perk = require_storable_text(perk_text, "Perk text")
    if not perk:
        log.error("Discount rule rejected: empty perk text")
        raise ValidationError("Perk text is required.")
    rule = DiscountRule(threshold_usd=threshold, perk_text=perk)
    context.store.discount_rule = rule
    persist_context(context)
    log.info("Discount rule set: threshold=%s perk=%r", threshold, perk)
    return rule


# ---------------------------------------------------------------------------
# Backup, restore and maintenance
# ---------------------------------------------------------------------------


def backup_document(context: RuntimeContext) -> str:
    """The full store as a JSON backup document."""

    return data_manager.dump_json_document(data_manager.snapshot_to_dict(context.store.snapshot()))


def restore_document(context: RuntimeContext, text: str) -> StoreSnapshot:
    """Replace the whole store with the contents of a backup document.

    Raises:
        RestoreError: If ``text`` is not a JSON object.
    """

    try:
        snapshot = data_manager.parse_backup_document(
            text,
            default_rule=data_manager.default_discount_rule(context.settings),
        )
    except ValueError as exc:
        log.error("Restore failed: %s", exc)
        raise RestoreError(str(exc)) from exc
    context.store.replace_with(snapshot)
    persist_context(context)
    log.info(
        "Restored backup: %d vehicles, %d customers, %d transactions",
        len(snapshot.vehicles),
        len(snapshot.customers),
        len(snapshot.transactions),
    )
    return snapshot


def export_backup(context: RuntimeContext, destination: Path) -> Path:
    """Write the backup document to ``destination``."""

    path = data_manager.write_text_document(backup_document(context), destination)
    log.info("Exported backup to '%s'", path)
    return path


def import_backup(context: RuntimeContext, source: Path) -> StoreSnapshot:
    """Restore the store from a backup file.

    Raises:
        FileNotFoundError: If ``source`` does not exist.
        RestoreError: If the file is not a JSON object.
    """

    return restore_document(context, data_manager.read_text_document(source))


def export_records(context: RuntimeContext, kind: RecordKind | str, destination: Path) -> Path:
    """Write one collection (vehicles, customers or transactions) as JSON."""

    record_kind = RecordKind(kind)
    snapshot = data_manager.snapshot_to_dict(context.store.snapshot())
    path = data_manager.write_text_document(
        data_manager.dump_json_document(snapshot[record_kind.value]),
        destination,
    )
    log.info("Exported %s to '%s'", record_kind.value, path)
    return path


def reset_store(context: RuntimeContext) -> None:
    """Erase every record and restore the default discount rule."""

    context.store.replace_with(data_manager.empty_snapshot(data_manager.default_discount_rule(context.settings)))
    persist_context(context)
    log.info("Store reset")


def load_demo_data(context: RuntimeContext) -> None:
    """Replace inventory and customers with a small demo data set."""

    store = context.store
    store.vehicles = [
        VehicleRecord(generate_id("veh"), "VIN-TOY-2024-CAMRY", "Toyota", "Camry", 2024, "family", "new", 0, Decimal("32000"), 3),
        VehicleRecord(generate_id("veh"), "VIN-FRD-2021-MUSTANG", "Ford", "Mustang", 2021, "sport", "used", 22000, Decimal("38000"), 1),
        VehicleRecord(generate_id("veh"), "VIN-JEP-2020-WRANGLR", "Jeep", "Wrangler", 2020, "recreational", "used", 41000, Decimal("36000"), 2),
    ]
    store.customers = [
        CustomerRecord(
            customer_id=generate_id("cust"),
            license="DL1234567",
            first="Amina",
            middle="K",
            last="Hassan",
            address="123 Main St, Columbia, SC",
            phone1="+1 555 111 2222",
            credit_score=720,
        ),
        CustomerRecord(
            customer_id=generate_id("cust"),
            license="DL7654321",
            first="Zaid",
            last="Mohamed",
            address="45 King Rd, Florence, SC",
            phone1="+1 555 333 4444",
            phone2="+1 555 444 5555",
            credit_score=690,
        ),
    ]
    store.transactions = []
    store.invoices = {}
    store.discount_rule = data_manager.default_discount_rule(context.settings)
    persist_context(context)
    log.info("Loaded demo data")
