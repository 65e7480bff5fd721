"""Enumerations and fixed values shared across the dealership modules.

The data access layer, the business rules and the CLI all read their
identifiers from here so that sheet names, transaction types and commission
tiers have a single definition.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Workbook layout version expected by the data layer.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_DEALERSHIP_NAME = "Mr. Tucker's Car Dealership"
DEFAULT_DISCOUNT_THRESHOLD_USD = Decimal("50000")
DEFAULT_DISCOUNT_PERK_TEXT = "Eligible for the monthly car wash discount (purchase over $50k)."

MIN_LICENSE_LENGTH = 3
INVENTORY_HEALTH_LIMIT = 12

# (upper bound inclusive, rate); the last tier has no upper bound.
COMMISSION_TIERS: tuple[tuple[Decimal | None, Decimal], ...] = (
    (Decimal("100000"), Decimal("0.05")),
    (Decimal("200000"), Decimal("0.07")),
    (None, Decimal("0.10")),
)

TRADE_IN_VIN_PREFIX = "TRADE-"
INVOICE_NUMBER_PREFIX = "INV-"
TRADE_IN_CATEGORY = "family"
UNKNOWN_TRADE_IN_LABEL = "Unknown"


class TransactionType(str, Enum):
    """Kinds of purchase the transaction engine records."""

    PURCHASE = "purchase"
    TRADE_IN = "tradein"


class VehicleCondition(str, Enum):
    """Condition labels carried by inventory records."""

    NEW = "new"
    USED = "used"
    TRADE_IN = "trade-in"


class VehicleCategory(str, Enum):
    """Inventory categories offered by the front desk."""

    FAMILY = "family"
    SPORT = "sport"
    RECREATIONAL = "recreational"


class SheetName(str, Enum):
    """Worksheet names managed by the workbook storage."""

    VEHICLES = "Vehicles"
    CUSTOMERS = "Customers"
    CUSTOMER_HISTORY = "CustomerHistory"
    TRANSACTIONS = "Transactions"
    INVOICES = "Invoices"
    SETTINGS = "Settings"


class RecordKind(str, Enum):
    """Collections that can be exported on their own."""

    VEHICLES = "vehicles"
    CUSTOMERS = "customers"
    TRANSACTIONS = "transactions"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_DEALERSHIP_NAME",
    "DEFAULT_DISCOUNT_THRESHOLD_USD",
    "DEFAULT_DISCOUNT_PERK_TEXT",
    "MIN_LICENSE_LENGTH",
    "INVENTORY_HEALTH_LIMIT",
    "COMMISSION_TIERS",
    "TRADE_IN_VIN_PREFIX",
    "INVOICE_NUMBER_PREFIX",
    "TRADE_IN_CATEGORY",
    "UNKNOWN_TRADE_IN_LABEL",
    "TransactionType",
    "VehicleCondition",
    "VehicleCategory",
    "SheetName",
    "RecordKind",
]
