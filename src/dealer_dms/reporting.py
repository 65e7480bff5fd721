"""Read-only reports over the dealership store.

Nothing here mutates the store; every function derives its answer from the
records held by the runtime context at call time.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from . import log
from .constants import COMMISSION_TIERS, INVENTORY_HEALTH_LIMIT
from .core_logic import RuntimeContext
from .data_manager import CustomerRecord, TransactionRecord, VehicleRecord


T = TypeVar("T")


@dataclass(frozen=True)
class CommissionSummary:
    username: str
    year_month: str
    total_sales_usd: Decimal
    rate: Decimal
    commission_usd: Decimal


@dataclass(frozen=True)
class SalesOverview:
    grand_total_usd: Decimal
    by_salesperson: Tuple[Tuple[str, Decimal], ...]


@dataclass(frozen=True)
class DashboardSummary:
    vehicle_count: int
    customer_count: int
    transaction_count: int
    latest_invoice: Optional[str]


@dataclass(frozen=True)
class SearchResults:
    vehicles: Tuple[VehicleRecord, ...] = ()
    customers: Tuple[CustomerRecord, ...] = ()
    transactions: Tuple[TransactionRecord, ...] = ()

    @property
    def total(self) -> int:
        return len(self.vehicles) + len(self.customers) + len(self.transactions)


# ---------------------------------------------------------------------------
# Commission
# ---------------------------------------------------------------------------


def monthly_sales_for_user(context: RuntimeContext, username: str, year_month: str) -> Decimal:
    """Sum of final purchase amounts sold by ``username`` in ``year_month``.

    ``year_month`` is matched as a prefix of the transaction date, so
    ``"2025-03"`` covers every day of March 2025.
    """

    total = Decimal("0")
    for transaction in context.store.transactions:
        if transaction.salesperson == username and transaction.date.startswith(year_month):
            total += transaction.final_purchase_usd
    log.debug("Monthly sales for '%s' in %s: %s", username, year_month, total)
    return total


def commission_rate_for_monthly_sales(total_usd: Decimal) -> Decimal:
    """Tiered commission rate; each upper bound is inclusive."""

    for upper_bound, rate in COMMISSION_TIERS:
        if upper_bound is None or total_usd <= upper_bound:
            return rate
    return COMMISSION_TIERS[-1][1]


def calculate_commission(context: RuntimeContext, username: str, year_month: str) -> CommissionSummary:
    """Commission owed to ``username`` for ``year_month``.

    Args:
        context (RuntimeContext): Context holding the transaction log.
        username (str): Salesperson name as recorded on transactions.
        year_month (str): ``YYYY-MM`` period to report on.

    Returns:
        CommissionSummary: Monthly total, applicable rate and the unrounded
            commission amount.
    """

    total = monthly_sales_for_user(context, username, year_month)
    rate = commission_rate_for_monthly_sales(total)
    summary = CommissionSummary(
        username=username,
        year_month=year_month,
        total_sales_usd=total,
        rate=rate,
        commission_usd=total * rate,
    )
    log.debug("Commission for '%s' in %s: rate=%s amount=%s", username, year_month, rate, summary.commission_usd)
    return summary


# ---------------------------------------------------------------------------
# Overviews
# ---------------------------------------------------------------------------


def sales_overview(context: RuntimeContext) -> SalesOverview:
    """Grand total and per-salesperson totals, largest first.

    Sales are grouped by the recorded salesperson name as-is. Salespeople
    with equal totals keep the order in which they first appear in the
    transaction log.
    """

    grand_total = Decimal("0")
    totals: dict[str, Decimal] = {}
    for transaction in context.store.transactions:
        grand_total += transaction.final_purchase_usd
        name = transaction.salesperson
        totals[name] = totals.get(name, Decimal("0")) + transaction.final_purchase_usd
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    log.debug("Sales overview: grand total %s across %d salespeople", grand_total, len(ranked))
    return SalesOverview(grand_total_usd=grand_total, by_salesperson=tuple(ranked))


def inventory_health(context: RuntimeContext, limit: int = INVENTORY_HEALTH_LIMIT) -> List[VehicleRecord]:
    """Vehicles with the lowest stock first, at most ``limit`` of them."""

    ranked = sorted(context.store.vehicles, key=lambda vehicle: vehicle.stock)
    return ranked[: max(limit, 0)]


def dashboard_summary(context: RuntimeContext) -> DashboardSummary:
    """Record counts plus the invoice of the most recent transaction."""

    store = context.store
    latest_invoice = None
    if store.transactions:
        latest_invoice = store.invoices.get(store.transactions[0].transaction_id)
    return DashboardSummary(
        vehicle_count=len(store.vehicles),
        customer_count=len(store.customers),
        transaction_count=len(store.transactions),
        latest_invoice=latest_invoice,
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def _vehicle_fields(vehicle: VehicleRecord) -> Sequence[object]:
    return (vehicle.vin, vehicle.make, vehicle.model, vehicle.category, vehicle.condition, vehicle.year)


def _customer_fields(customer: CustomerRecord) -> Sequence[object]:
    return (
        customer.first,
        customer.middle,
        customer.last,
        customer.license,
        customer.phone1,
        customer.phone2,
        customer.address,
    )


def _transaction_fields(transaction: TransactionRecord) -> Sequence[object]:
    return (
        transaction.transaction_id,
        transaction.invoice_number,
        transaction.salesperson,
        transaction.date,
        transaction.transaction_type,
        transaction.vehicle_vin,
    )


def _matching(records: Iterable[T], fields: Callable[[T], Sequence[object]], needle: str) -> Tuple[T, ...]:
    return tuple(
        record
        for record in records
        if any(needle in str(value).lower() for value in fields(record) if value is not None)
    )


def global_search(context: RuntimeContext, query: str) -> SearchResults:
    """Case-insensitive substring search across vehicles, customers and transactions.

    A blank query matches nothing.
    """

    needle = (query or "").strip().lower()
    if not needle:
        return SearchResults()
    store = context.store
    results = SearchResults(
        vehicles=_matching(store.vehicles, _vehicle_fields, needle),
        customers=_matching(store.customers, _customer_fields, needle),
        transactions=_matching(store.transactions, _transaction_fields, needle),
    )
    log.debug("Search for %r matched %d record(s)", needle, results.total)
    return results


__all__ = [
    "CommissionSummary",
    "SalesOverview",
    "DashboardSummary",
    "SearchResults",
    "monthly_sales_for_user",
    "commission_rate_for_monthly_sales",
    "calculate_commission",
    "sales_overview",
    "inventory_health",
    "dashboard_summary",
    "global_search",
]
