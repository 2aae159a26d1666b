"""Enumerations and domain constants shared across the quota ledger.

The persistence layer, the ledger components, and the CLI all read their
identifiers from here. Enum values are the labels stored in workbooks and
JSON backups, so changing one is a data migration.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Schema version every layer expects when validating the ledger workbook.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Version stamped into (and required by) JSON backup documents.
BACKUP_FORMAT_VERSION = "1.0"

# Statutory quarterly invoicing quota for individual sole-proprietorships.
STATUTORY_QUARTERLY_LIMIT = Decimal("280000")

DEFAULT_QUARTER = "2025Q3"

# Usage above this percentage marks a supplier as close to its quota.
HIGH_RISK_USAGE_PERCENT = Decimal("85")

UNKNOWN_STORE = "未知店铺"
UNKNOWN_COMPANY = "未知公司"
UNKNOWN_SUPPLIER = "未知主体"
UNKNOWN_FACTORY = "未知工厂"

EXPENSE_CATEGORIES: tuple[str, ...] = (
    "shipping",
    "promotion",
    "salaries",
    "rent",
    "office",
    "fuel",
    "other",
)


class EntityType(str, Enum):
    """Legal form of an invoicing entity."""

    INDIVIDUAL = "个体工商户"
    COMPANY = "小规模纳税人"
    GENERAL = "一般纳税人"


class StoreTaxType(str, Enum):
    """VAT regime a storefront company is registered under."""

    SMALL_SCALE = "小规模纳税人"
    GENERAL = "一般纳税人"


class SupplierStatus(str, Enum):
    """Informational supplier state; quota checks never read it."""

    ACTIVE = "Active"
    FULL = "Full"
    SUSPENDED = "Suspended"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class PeriodSource(str, Enum):
    """Where the admissible invoice date window comes from."""

    CALENDAR = "calendar"
    LABEL = "label"


class InvoicePeriod(str, Enum):
    """Position of an invoice date relative to the wall-clock quarter."""

    CURRENT = "current"
    NEXT = "next"
    OTHER = "other"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    SETTINGS = "Settings"
    STORES = "Stores"
    SUPPLIERS = "Suppliers"
    INVOICES = "Invoices"
    PAYMENTS = "Payments"
    FACTORY_OWNERS = "FactoryOwners"
    ARCHIVED_STORES = "ArchivedStores"
    ARCHIVED_SUPPLIERS = "ArchivedSuppliers"
    ARCHIVED_INVOICES = "ArchivedInvoices"
    ARCHIVED_PAYMENTS = "ArchivedPayments"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "BACKUP_FORMAT_VERSION",
    "STATUTORY_QUARTERLY_LIMIT",
    "DEFAULT_QUARTER",
    "HIGH_RISK_USAGE_PERCENT",
    "UNKNOWN_STORE",
    "UNKNOWN_COMPANY",
    "UNKNOWN_SUPPLIER",
    "UNKNOWN_FACTORY",
    "EXPENSE_CATEGORIES",
    "EntityType",
    "StoreTaxType",
    "SupplierStatus",
    "InvoiceStatus",
    "PeriodSource",
    "InvoicePeriod",
    "SheetName",
]
