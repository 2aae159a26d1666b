"""Data access layer for the quota ledger.

This module provides low-level helpers that read from and write to the ledger
workbook. Business rules belong elsewhere; the ledger components only ever see
the typed row records defined here.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Dataset operations: loading every sheet into a :class:`DatasetPayload` and
   rewriting the sheets from one.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_QUARTER,
    EXPENSE_CATEGORIES,
    STATUTORY_QUARTERLY_LIMIT,
    InvoiceStatus,
    PeriodSource,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
DEFAULT_FALLBACK_FILE = "ledger_fallback.json"

STORE_COLUMNS: tuple[str, ...] = (
    "StoreID",
    "StoreName",
    "CompanyName",
    "QuarterIncome",
    "QuarterExpenses",
    "TaxType",
    "Shipping",
    "Promotion",
    "Salaries",
    "Rent",
    "Office",
    "Fuel",
    "Other",
)
SUPPLIER_COLUMNS: tuple[str, ...] = (
    "SupplierID",
    "SupplierName",
    "Owner",
    "EntityType",
    "QuarterlyLimit",
    "Status",
)
INVOICE_COLUMNS: tuple[str, ...] = (
    "InvoiceID",
    "StoreID",
    "SupplierID",
    "Amount",
    "InvoiceDate",
    "Status",
    "VerificationValid",
    "VerificationIssues",
    "VerificationFactory",
    "VerificationCompany",
    "VerificationAmount",
)
PAYMENT_COLUMNS: tuple[str, ...] = (
    "PaymentID",
    "FactoryOwner",
    "Amount",
    "PaymentDate",
    "StoreID",
    "SupplierID",
)

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.SETTINGS.value: ("Key", "Value"),
    SheetName.STORES.value: STORE_COLUMNS,
    SheetName.SUPPLIERS.value: SUPPLIER_COLUMNS,
    SheetName.INVOICES.value: INVOICE_COLUMNS,
    SheetName.PAYMENTS.value: PAYMENT_COLUMNS,
    SheetName.FACTORY_OWNERS.value: ("OwnerName",),
    SheetName.ARCHIVED_STORES.value: ("Quarter", *STORE_COLUMNS),
    SheetName.ARCHIVED_SUPPLIERS.value: ("Quarter", *SUPPLIER_COLUMNS),
    SheetName.ARCHIVED_INVOICES.value: ("Quarter", *INVOICE_COLUMNS),
    SheetName.ARCHIVED_PAYMENTS.value: ("Quarter", *PAYMENT_COLUMNS),
}

SETTING_CURRENT_QUARTER = "CurrentQuarter"
SETTING_AVAILABLE_QUARTERS = "AvailableQuarters"
SETTING_ARCHIVED_QUARTERS = "ArchivedQuarters"

ZERO = Decimal("0")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    dataset_name: str
    schema_version: str
    initial_quarter: str = DEFAULT_QUARTER
    period_source: PeriodSource = PeriodSource.CALENDAR
    clear_expense_breakdown: bool = False
    statutory_limit: Decimal = STATUTORY_QUARTERLY_LIMIT
    fallback_file: Optional[Path] = None


@dataclass(frozen=True)
class ExpenseBreakdown:
    """Named cost buckets whose sum is a store's quarterly expenses."""

    shipping: Decimal = ZERO
    promotion: Decimal = ZERO
    salaries: Decimal = ZERO
    rent: Decimal = ZERO
    office: Decimal = ZERO
    fuel: Decimal = ZERO
    other: Decimal = ZERO

    def total(self) -> Decimal:
        return sum((getattr(self, name) for name in EXPENSE_CATEGORIES), ZERO)

    def as_dict(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in EXPENSE_CATEGORIES}


@dataclass(frozen=True)
class StoreRow:
    """In-memory view of a row from the ``Stores`` sheet."""

    store_id: str
    store_name: str
    company_name: str
    quarter_income: Decimal
    quarter_expenses: Decimal
    tax_type: str
    expense_breakdown: Optional[ExpenseBreakdown] = None


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: str
    name: str
    owner: str
    entity_type: str
    quarterly_limit: Decimal
    status: str


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of checking a recognised invoice against its declared data."""

    is_valid: bool
    issues: tuple[str, ...] = ()
    factory_name: Optional[str] = None
    company_name: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass(frozen=True)
class InvoiceRow:
    """In-memory view of a row from the ``Invoices`` sheet."""

    invoice_id: str
    store_id: str
    supplier_id: str
    amount: Decimal
    date_iso: str
    status: str = InvoiceStatus.PENDING.value
    verification: Optional[VerificationResult] = None


@dataclass(frozen=True)
class PaymentRow:
    """In-memory view of a row from the ``Payments`` sheet.

    ``store_id`` and ``supplier_id`` only appear on legacy records that
    attributed a payment to one supplier; new payments name the factory owner.
    """

    payment_id: str
    factory_owner: Optional[str]
    amount: Decimal
    date_iso: str
    store_id: Optional[str] = None
    supplier_id: Optional[str] = None


@dataclass(frozen=True)
class QuarterSnapshot:
    """Frozen copy of the four collections for one quarter."""

    stores: tuple[StoreRow, ...] = ()
    suppliers: tuple[SupplierRow, ...] = ()
    invoices: tuple[InvoiceRow, ...] = ()
    payments: tuple[PaymentRow, ...] = ()


@dataclass(frozen=True)
class DatasetPayload:
    """Everything the storage collaborator loads and saves in one unit."""

    current_quarter: str
    stores: tuple[StoreRow, ...] = ()
    suppliers: tuple[SupplierRow, ...] = ()
    invoices: tuple[InvoiceRow, ...] = ()
    payments: tuple[PaymentRow, ...] = ()
    quarter_archive: Mapping[str, QuarterSnapshot] = field(default_factory=dict)
    available_quarters: tuple[str, ...] = ()
    factory_owners: tuple[str, ...] = ()


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _anchor_path(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw)
    if not path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory. The optional
    ``[Quota]`` section tunes the quota window, the quarter-close reset and the
    degraded-mode fallback file. Relative paths are anchored at ``base_path``
    (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` and ``FallbackFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If an optional ``[Quota]`` entry cannot be interpreted.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        dataset_name = parser.get("System", "DatasetName")
        schema_version = parser.get("System", "SchemaVersion")
        initial_quarter = parser.get("Defaults", "InitialQuarter")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    period_source = PeriodSource(
        parser.get("Quota", "PeriodSource", fallback=PeriodSource.CALENDAR.value).strip().lower()
    )
    clear_breakdown = parser.getboolean("Quota", "ClearExpenseBreakdown", fallback=False)
    try:
        statutory_limit = Decimal(
            parser.get("Quota", "StatutoryLimit", fallback=str(STATUTORY_QUARTERLY_LIMIT)).strip()
        )
    except InvalidOperation as exc:
        raise ValueError("StatutoryLimit must be a number") from exc
    fallback_raw = parser.get("Quota", "FallbackFile", fallback=DEFAULT_FALLBACK_FILE)

    return ConfigSettings(
        data_file=_anchor_path(data_file_raw, base_path),
        dataset_name=dataset_name,
        schema_version=schema_version,
        initial_quarter=initial_quarter.strip(),
        period_source=period_source,
        clear_expense_breakdown=clear_breakdown,
        statutory_limit=statutory_limit,
        fallback_file=_anchor_path(fallback_raw, base_path),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def ensure_sheet(workbook: Workbook, sheet_name: str):
    """Return ``sheet_name``, creating it with its header row when absent.

    Workbooks written by older releases lack some sheets; creating them on
    demand keeps reads and writes uniform.
    """

    if sheet_name in workbook.sheetnames:
        return workbook[sheet_name]
    log.info("Creating missing sheet '%s'", sheet_name)
    sheet = workbook.create_sheet(title=sheet_name)
    sheet.append(list(SHEET_COLUMNS[sheet_name]))
    return sheet


def _iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterator[tuple[object, ...]]:
    if sheet_name not in workbook.sheetnames:
        return
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield tuple(raw)


def replace_sheet_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    """Drop every data row of ``sheet_name`` and append ``rows`` in order."""

    sheet = ensure_sheet(workbook, sheet_name)
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for row in rows:
        sheet.append(list(row))


def iter_stores(workbook: Workbook) -> Iterable[StoreRow]:
    """Iterate over live store records, skipping the header and empty rows."""

    for raw in _iter_raw_rows(workbook, SheetName.STORES.value):
        yield deserialize_store(raw)


def iter_suppliers(workbook: Workbook) -> Iterable[SupplierRow]:
    """Iterate over live supplier records."""

    for raw in _iter_raw_rows(workbook, SheetName.SUPPLIERS.value):
        yield deserialize_supplier(raw)


def iter_invoices(workbook: Workbook) -> Iterable[InvoiceRow]:
    """Iterate over live invoice records."""

    for raw in _iter_raw_rows(workbook, SheetName.INVOICES.value):
        yield deserialize_invoice(raw)


def iter_payments(workbook: Workbook) -> Iterable[PaymentRow]:
    """Iterate over live payment records."""

    for raw in _iter_raw_rows(workbook, SheetName.PAYMENTS.value):
        yield deserialize_payment(raw)


def iter_factory_owners(workbook: Workbook) -> Iterable[str]:
    """Iterate over registered factory owner names in sheet order."""

    for raw in _iter_raw_rows(workbook, SheetName.FACTORY_OWNERS.value):
        if raw[0] is not None and str(raw[0]).strip():
            yield str(raw[0]).strip()


def read_settings(workbook: Workbook) -> dict[str, str]:
    """Return the ``Settings`` sheet as a key/value mapping."""

    settings: dict[str, str] = {}
    for raw in _iter_raw_rows(workbook, SheetName.SETTINGS.value):
        padded = _pad(raw, 2)
        if padded[0] is None:
            continue
        settings[str(padded[0])] = "" if padded[1] is None else str(padded[1])
    return settings


def _split_quarters(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def load_dataset(workbook: Workbook, *, default_quarter: str = DEFAULT_QUARTER) -> DatasetPayload:
    """Read every sheet of ``workbook`` into a :class:`DatasetPayload`.

    Archived rows are grouped by their leading ``Quarter`` column. Quarters
    named in the ``ArchivedQuarters`` setting get a snapshot even when all of
    their collections were empty at archive time.

    Args:
        workbook (Workbook): Workbook produced by
            :func:`quota_ledger.setup_workbook.create_ledger_workbook` or by a
            previous :func:`write_dataset`.
        default_quarter (str): Quarter label used when the workbook does not
            record one yet.

    Returns:
        DatasetPayload: Typed view of the persisted ledger.
    """

    settings = read_settings(workbook)
    current_quarter = settings.get(SETTING_CURRENT_QUARTER) or default_quarter
    available = _split_quarters(settings.get(SETTING_AVAILABLE_QUARTERS)) or (current_quarter,)

    buckets: dict[str, dict[str, list[Any]]] = {}

    def bucket(quarter: object) -> dict[str, list[Any]]:
        return buckets.setdefault(
            str(quarter),
            {"stores": [], "suppliers": [], "invoices": [], "payments": []},
        )

    for quarter in _split_quarters(settings.get(SETTING_ARCHIVED_QUARTERS)):
        bucket(quarter)
    for raw in _iter_raw_rows(workbook, SheetName.ARCHIVED_STORES.value):
        bucket(raw[0])["stores"].append(deserialize_store(raw[1:]))
    for raw in _iter_raw_rows(workbook, SheetName.ARCHIVED_SUPPLIERS.value):
        bucket(raw[0])["suppliers"].append(deserialize_supplier(raw[1:]))
    for raw in _iter_raw_rows(workbook, SheetName.ARCHIVED_INVOICES.value):
        bucket(raw[0])["invoices"].append(deserialize_invoice(raw[1:]))
    for raw in _iter_raw_rows(workbook, SheetName.ARCHIVED_PAYMENTS.value):
        bucket(raw[0])["payments"].append(deserialize_payment(raw[1:]))

    archive = {
        quarter: QuarterSnapshot(
            stores=tuple(parts["stores"]),
            suppliers=tuple(parts["suppliers"]),
            invoices=tuple(parts["invoices"]),
            payments=tuple(parts["payments"]),
        )
        for quarter, parts in buckets.items()
    }

    payload = DatasetPayload(
        current_quarter=current_quarter,
        stores=tuple(iter_stores(workbook)),
        suppliers=tuple(iter_suppliers(workbook)),
        invoices=tuple(iter_invoices(workbook)),
        payments=tuple(iter_payments(workbook)),
        quarter_archive=archive,
        available_quarters=available,
        factory_owners=tuple(iter_factory_owners(workbook)),
    )
    log.debug(
        "Loaded dataset for %s: %d stores, %d suppliers, %d invoices, %d payments, %d archived quarters",
        current_quarter,
        len(payload.stores),
        len(payload.suppliers),
        len(payload.invoices),
        len(payload.payments),
        len(archive),
    )
    return payload


def write_dataset(workbook: Workbook, payload: DatasetPayload) -> None:
    """Rewrite every ledger sheet of ``workbook`` from ``payload``.

    Only the in-memory workbook is modified; call :func:`save_workbook` to
    write it to disk.
    """

    replace_sheet_rows(
        workbook,
        SheetName.SETTINGS.value,
        [
            (SETTING_CURRENT_QUARTER, payload.current_quarter),
            (SETTING_AVAILABLE_QUARTERS, ",".join(payload.available_quarters)),
            (SETTING_ARCHIVED_QUARTERS, ",".join(payload.quarter_archive)),
        ],
    )
    replace_sheet_rows(workbook, SheetName.STORES.value, (serialize_store(r) for r in payload.stores))
    replace_sheet_rows(workbook, SheetName.SUPPLIERS.value, (serialize_supplier(r) for r in payload.suppliers))
    replace_sheet_rows(workbook, SheetName.INVOICES.value, (serialize_invoice(r) for r in payload.invoices))
    replace_sheet_rows(workbook, SheetName.PAYMENTS.value, (serialize_payment(r) for r in payload.payments))
    replace_sheet_rows(workbook, SheetName.FACTORY_OWNERS.value, ((name,) for name in payload.factory_owners))

    archive = payload.quarter_archive
    replace_sheet_rows(
        workbook,
        SheetName.ARCHIVED_STORES.value,
        ([quarter, *serialize_store(r)] for quarter, snap in archive.items() for r in snap.stores),
    )
    replace_sheet_rows(
        workbook,
        SheetName.ARCHIVED_SUPPLIERS.value,
        ([quarter, *serialize_supplier(r)] for quarter, snap in archive.items() for r in snap.suppliers),
    )
    replace_sheet_rows(
        workbook,
        SheetName.ARCHIVED_INVOICES.value,
        ([quarter, *serialize_invoice(r)] for quarter, snap in archive.items() for r in snap.invoices),
    )
    replace_sheet_rows(
        workbook,
        SheetName.ARCHIVED_PAYMENTS.value,
        ([quarter, *serialize_payment(r)] for quarter, snap in archive.items() for r in snap.payments),
    )


def serialize_store(record: StoreRow) -> list[object]:
    """Convert a store dataclass into the ``Stores`` column ordering.

    Breakdown columns stay blank when the store has no breakdown, which is how
    :func:`deserialize_store` tells "unset" apart from "all zero".
    """

    breakdown = record.expense_breakdown
    bucket_values: list[object] = (
        [getattr(breakdown, name) for name in EXPENSE_CATEGORIES]
        if breakdown is not None
        else [None] * len(EXPENSE_CATEGORIES)
    )
    return [
        record.store_id,
        record.store_name,
        record.company_name,
        record.quarter_income,
        record.quarter_expenses,
        record.tax_type,
        *bucket_values,
    ]


def serialize_supplier(record: SupplierRow) -> list[object]:
    return [
        record.supplier_id,
        record.name,
        record.owner,
        record.entity_type,
        record.quarterly_limit,
        record.status,
    ]


def serialize_invoice(record: InvoiceRow) -> list[object]:
    """Convert an invoice dataclass into the ``Invoices`` column ordering.

    Verification issues are stored as a JSON array so issue texts may contain
    any separator.
    """

    verification = record.verification
    if verification is None:
        verification_cells: list[object] = [None] * 5
    else:
        verification_cells = [
            verification.is_valid,
            json.dumps(list(verification.issues), ensure_ascii=False),
            verification.factory_name,
            verification.company_name,
            verification.amount,
        ]
    return [
        record.invoice_id,
        record.store_id,
        record.supplier_id,
        record.amount,
        record.date_iso,
        record.status,
        *verification_cells,
    ]


def serialize_payment(record: PaymentRow) -> list[object]:
    return [
        record.payment_id,
        record.factory_owner,
        record.amount,
        record.date_iso,
        record.store_id,
        record.supplier_id,
    ]


def _pad(raw_row: Sequence[object], width: int) -> tuple[object, ...]:
    values = tuple(raw_row[:width])
    return values + (None,) * (width - len(values))


def _decimal(raw: object, default: str = "0") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    return Decimal(str(raw))


def _optional_decimal(raw: object) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    return Decimal(str(raw))


def _optional_str(raw: object) -> Optional[str]:
    if raw is None or str(raw) == "":
        return None
    return str(raw)


def _date_text(raw: object) -> str:
    # Excel may have converted an ISO string into a real date on manual edits.
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    return "" if raw is None else str(raw)


def deserialize_store(raw_row: Sequence[object]) -> StoreRow:
    """Convert a raw ``Stores`` row into a :class:`StoreRow`.

    Money columns become :class:`~decimal.Decimal`; a breakdown is only built
    when at least one bucket column holds a value.
    """

    values = _pad(raw_row, len(STORE_COLUMNS))
    store_id, store_name, company_name, income_raw, expenses_raw, tax_type = values[:6]
    bucket_raw = values[6:]

    breakdown: Optional[ExpenseBreakdown] = None
    if any(cell is not None and cell != "" for cell in bucket_raw):
        breakdown = ExpenseBreakdown(
            **{name: _decimal(cell) for name, cell in zip(EXPENSE_CATEGORIES, bucket_raw)}
        )

    return StoreRow(
        store_id=str(store_id),
        store_name="" if store_name is None else str(store_name),
        company_name="" if company_name is None else str(company_name),
        quarter_income=_decimal(income_raw),
        quarter_expenses=_decimal(expenses_raw),
        tax_type="" if tax_type is None else str(tax_type),
        expense_breakdown=breakdown,
    )


def deserialize_supplier(raw_row: Sequence[object]) -> SupplierRow:
    supplier_id, name, owner, entity_type, limit_raw, status = _pad(raw_row, len(SUPPLIER_COLUMNS))
    return SupplierRow(
        supplier_id=str(supplier_id),
        name="" if name is None else str(name),
        owner="" if owner is None else str(owner),
        entity_type="" if entity_type is None else str(entity_type),
        quarterly_limit=_decimal(limit_raw, default=str(STATUTORY_QUARTERLY_LIMIT)),
        status="Active" if status is None else str(status),
    )


def deserialize_invoice(raw_row: Sequence[object]) -> InvoiceRow:
    """Convert a raw ``Invoices`` row into an :class:`InvoiceRow`.

    A blank ``VerificationValid`` cell means the invoice was never verified.
    """

    (
        invoice_id,
        store_id,
        supplier_id,
        amount_raw,
        date_raw,
        status,
        valid_raw,
        issues_raw,
        factory_raw,
        company_raw,
        verified_amount_raw,
    ) = _pad(raw_row, len(INVOICE_COLUMNS))

    verification: Optional[VerificationResult] = None
    if valid_raw is not None and valid_raw != "":
        issues: tuple[str, ...] = ()
        if issues_raw:
            issues = tuple(str(item) for item in json.loads(str(issues_raw)))
        verification = VerificationResult(
            is_valid=bool(valid_raw),
            issues=issues,
            factory_name=_optional_str(factory_raw),
            company_name=_optional_str(company_raw),
            amount=_optional_decimal(verified_amount_raw),
        )

    return InvoiceRow(
        invoice_id=str(invoice_id),
        store_id="" if store_id is None else str(store_id),
        supplier_id="" if supplier_id is None else str(supplier_id),
        amount=_decimal(amount_raw),
        date_iso=_date_text(date_raw),
        status=InvoiceStatus.PENDING.value if status is None else str(status),
        verification=verification,
    )


def deserialize_payment(raw_row: Sequence[object]) -> PaymentRow:
    payment_id, owner, amount_raw, date_raw, store_id, supplier_id = _pad(raw_row, len(PAYMENT_COLUMNS))
    return PaymentRow(
        payment_id=str(payment_id),
        factory_owner=_optional_str(owner),
        amount=_decimal(amount_raw),
        date_iso=_date_text(date_raw),
        store_id=_optional_str(store_id),
        supplier_id=_optional_str(supplier_id),
    )
