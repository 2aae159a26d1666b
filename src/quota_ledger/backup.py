"""JSON backup export and import.

A backup holds every live and archived collection in one document::

    {"version": "1.0", "timestamp": "...", "quarter": "2025Q3",
     "data": {"stores": [...], "suppliers": [...], "invoices": [...],
              "payments": [...], "quarterData": {...},
              "availableQuarters": [...], "factoryOwners": [...]}}

Field names are camelCase so files stay interchangeable with backups made by
the earlier browser-based tool. Import parses the whole document into a
:class:`~quota_ledger.data_manager.DatasetPayload` before anything is
replaced, so a malformed file never half-applies.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Optional

from . import log
from .constants import BACKUP_FORMAT_VERSION, EXPENSE_CATEGORIES, InvoiceStatus, StoreTaxType, SupplierStatus
from .data_manager import (
    DatasetPayload,
    ExpenseBreakdown,
    InvoiceRow,
    PaymentRow,
    QuarterSnapshot,
    StoreRow,
    SupplierRow,
    VerificationResult,
)
from .entity_store import (
    require_cell_text,
    validate_invoice,
    validate_payment,
    validate_store,
    validate_supplier,
)
from .errors import NotFoundError, ValidationError
from .quarters import parse_quarter, sort_quarters


def backup_file_name(day: date) -> str:
    return f"系统备份_所有季度_{day.isoformat()}.json"


def _money(value: Optional[Decimal]) -> Any:
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _decimal(raw: Any, field_name: str) -> Decimal:
    if raw is None or isinstance(raw, bool):
        raise ValueError(f"{field_name} must be a number")
    return Decimal(str(raw))


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def store_to_dict(row: StoreRow) -> dict[str, Any]:
    document: dict[str, Any] = {
        "id": row.store_id,
        "storeName": row.store_name,
        "companyName": row.company_name,
        "quarterIncome": _money(row.quarter_income),
        "quarterExpenses": _money(row.quarter_expenses),
        "taxType": row.tax_type,
    }
    if row.expense_breakdown is not None:
        document["expenseBreakdown"] = {
            name: _money(value) for name, value in row.expense_breakdown.as_dict().items()
        }
    return document


def supplier_to_dict(row: SupplierRow) -> dict[str, Any]:
    return {
        "id": row.supplier_id,
        "name": row.name,
        "owner": row.owner,
        "type": row.entity_type,
        "quarterlyLimit": _money(row.quarterly_limit),
        "status": row.status,
    }


def invoice_to_dict(row: InvoiceRow) -> dict[str, Any]:
    document: dict[str, Any] = {
        "id": row.invoice_id,
        "storeId": row.store_id,
        "supplierId": row.supplier_id,
        "amount": _money(row.amount),
        "date": row.date_iso,
        "status": row.status,
    }
    if row.verification is not None:
        result = row.verification
        document["verificationResult"] = {
            "isValid": result.is_valid,
            "issues": list(result.issues),
            "factoryName": result.factory_name,
            "companyName": result.company_name,
            "amount": _money(result.amount),
        }
    return document


def payment_to_dict(row: PaymentRow) -> dict[str, Any]:
    document: dict[str, Any] = {
        "id": row.payment_id,
        "amount": _money(row.amount),
        "date": row.date_iso,
    }
    if row.factory_owner is not None:
        document["factoryOwner"] = row.factory_owner
    if row.store_id is not None:
        document["storeId"] = row.store_id
    if row.supplier_id is not None:
        document["supplierId"] = row.supplier_id
    return document


def _snapshot_to_dict(snapshot: QuarterSnapshot) -> dict[str, Any]:
    return {
        "stores": [store_to_dict(row) for row in snapshot.stores],
        "suppliers": [supplier_to_dict(row) for row in snapshot.suppliers],
        "invoices": [invoice_to_dict(row) for row in snapshot.invoices],
        "payments": [payment_to_dict(row) for row in snapshot.payments],
    }


def build_backup_document(payload: DatasetPayload, *, timestamp: datetime) -> dict[str, Any]:
    """Serialise ``payload`` into the backup document layout."""

    data = _snapshot_to_dict(payload)  # DatasetPayload has the four collections too
    data["quarterData"] = {
        quarter: _snapshot_to_dict(snapshot) for quarter, snapshot in payload.quarter_archive.items()
    }
    data["availableQuarters"] = list(payload.available_quarters)
    data["factoryOwners"] = list(payload.factory_owners)
    return {
        "version": BACKUP_FORMAT_VERSION,
        "timestamp": timestamp.isoformat(),
        "quarter": payload.current_quarter,
        "data": data,
    }


def write_backup_file(document: Mapping[str, Any], destination: Path) -> Path:
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
    log.info("Wrote backup of quarter %s to %s", document.get("quarter"), destination)
    return destination


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def store_from_dict(raw: Mapping[str, Any]) -> StoreRow:
    breakdown_raw = raw.get("expenseBreakdown")
    breakdown = None
    if breakdown_raw:
        breakdown = ExpenseBreakdown(
            **{name: _decimal(breakdown_raw.get(name, 0), name) for name in EXPENSE_CATEGORIES}
        )
    return StoreRow(
        store_id=str(raw["id"]),
        store_name=str(raw.get("storeName", "")),
        company_name=str(raw.get("companyName", "")),
        quarter_income=_decimal(raw.get("quarterIncome", 0), "quarterIncome"),
        quarter_expenses=_decimal(raw.get("quarterExpenses", 0), "quarterExpenses"),
        tax_type=str(raw.get("taxType") or StoreTaxType.SMALL_SCALE.value),
        expense_breakdown=breakdown,
    )


def supplier_from_dict(raw: Mapping[str, Any]) -> SupplierRow:
    return SupplierRow(
        supplier_id=str(raw["id"]),
        name=str(raw.get("name", "")),
        owner=str(raw.get("owner", "")),
        entity_type=str(raw.get("type", "")),
        quarterly_limit=_decimal(raw["quarterlyLimit"], "quarterlyLimit"),
        status=str(raw.get("status", SupplierStatus.ACTIVE.value)),
    )


def invoice_from_dict(raw: Mapping[str, Any]) -> InvoiceRow:
    verification = None
    result = raw.get("verificationResult")
    if result:
        amount = result.get("amount")
        verification = VerificationResult(
            is_valid=bool(result.get("isValid")),
            issues=tuple(str(issue) for issue in result.get("issues") or ()),
            factory_name=result.get("factoryName"),
            company_name=result.get("companyName"),
            amount=None if amount is None else _decimal(amount, "verificationResult.amount"),
        )
    return InvoiceRow(
        invoice_id=str(raw["id"]),
        store_id=str(raw.get("storeId", "")),
        supplier_id=str(raw.get("supplierId", "")),
        amount=_decimal(raw["amount"], "amount"),
        date_iso=str(raw.get("date", "")),
        status=str(raw.get("status") or InvoiceStatus.PENDING.value),
        verification=verification,
    )


def payment_from_dict(raw: Mapping[str, Any]) -> PaymentRow:
    return PaymentRow(
        payment_id=str(raw["id"]),
        factory_owner=raw.get("factoryOwner") or None,
        amount=_decimal(raw["amount"], "amount"),
        date_iso=str(raw.get("date", "")),
        store_id=raw.get("storeId") or None,
        supplier_id=raw.get("supplierId") or None,
    )


def _snapshot_from_dict(raw: Mapping[str, Any]) -> QuarterSnapshot:
    return QuarterSnapshot(
        stores=tuple(store_from_dict(item) for item in raw.get("stores") or ()),
        suppliers=tuple(supplier_from_dict(item) for item in raw.get("suppliers") or ()),
        invoices=tuple(invoice_from_dict(item) for item in raw.get("invoices") or ()),
        payments=tuple(payment_from_dict(item) for item in raw.get("payments") or ()),
    )


def _validate_snapshot(snapshot: QuarterSnapshot) -> None:
    for store in snapshot.stores:
        validate_store(store)
    for supplier in snapshot.suppliers:
        validate_supplier(supplier)
    for invoice in snapshot.invoices:
        validate_invoice(invoice)
    for payment in snapshot.payments:
        validate_payment(payment)


def parse_backup(document: Any, *, fallback_quarter: str) -> DatasetPayload:
    """Turn a decoded backup document into a :class:`DatasetPayload`.

    Backups written before the owner registry existed have no
    ``factoryOwners`` entry; the registry is then rebuilt from supplier owners
    in first-seen order.

    Args:
        document (Any): Decoded JSON document.
        fallback_quarter (str): Current quarter to keep when the backup does
            not name one.

    Returns:
        DatasetPayload: Complete replacement for the live and archived state.

    Raises:
        ValidationError: ``backup-format`` when ``version`` or ``data`` is
            missing, ``malformed-backup`` when any record cannot be read
            or holds a value the ledger would refuse.
    """

    if not isinstance(document, Mapping) or not document.get("version") or not isinstance(document.get("data"), Mapping):
        raise ValidationError("backup-format", "Backup file must contain 'version' and 'data'")

    data = document["data"]
    try:
        live = _snapshot_from_dict(data)
        archive = {
            str(quarter): _snapshot_from_dict(snapshot)
            for quarter, snapshot in (data.get("quarterData") or {}).items()
        }
        for snapshot in (live, *archive.values()):
            _validate_snapshot(snapshot)
        current_quarter = str(document.get("quarter") or fallback_quarter)
        for quarter in (current_quarter, *archive):
            parse_quarter(quarter)
        available = [str(quarter) for quarter in data.get("availableQuarters") or ()]
        for quarter in available:
            parse_quarter(quarter)
        if "factoryOwners" in data:
            owners = [str(name) for name in data.get("factoryOwners") or ()]
        else:
            owners = list(dict.fromkeys(row.owner for row in live.suppliers if row.owner))
        for name in owners:
            require_cell_text(name, "factoryOwners")
    except (KeyError, TypeError, ValueError, AttributeError, InvalidOperation, ValidationError) as exc:
        log.warning("Rejected malformed backup: %s", exc)
        raise ValidationError("malformed-backup", f"Backup file could not be read: {exc}") from exc

    if not available:
        available = sort_quarters([current_quarter, *archive])

    return DatasetPayload(
        current_quarter=current_quarter,
        stores=live.stores,
        suppliers=live.suppliers,
        invoices=live.invoices,
        payments=live.payments,
        quarter_archive=archive,
        available_quarters=tuple(available),
        factory_owners=tuple(owners),
    )


def read_backup_file(source: Path) -> Any:
    """Decode a backup file; numbers become Decimal to keep money exact.

    Raises:
        NotFoundError: If ``source`` does not exist.
        ValidationError: ``malformed-backup`` when the file cannot be read as
            UTF-8 text or is not JSON.
    """

    path = Path(source).expanduser()
    try:
        text = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        raise NotFoundError("backup", str(path)) from None
    except (OSError, UnicodeDecodeError) as exc:
        log.warning("Could not read backup '%s': %s", path, exc)
        raise ValidationError("malformed-backup", f"Backup file could not be read: {exc}") from exc
    try:
        return json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise ValidationError("malformed-backup", f"Backup file is not valid JSON: {exc}") from exc
