"""Entity store: identity, field validation and the four record collections.

Collections hold immutable row records keyed by their opaque id. They never
cascade: removing a store leaves its invoices in place, and every derived
computation is expected to cope with the dangling reference.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Generic, Iterable, Iterator, Optional, TypeVar

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from .constants import EntityType, InvoiceStatus, StoreTaxType, SupplierStatus
from .data_manager import InvoiceRow, PaymentRow, StoreRow, SupplierRow
from .errors import NotFoundError, ValidationError

RowT = TypeVar("RowT")
EnumT = TypeVar("EnumT", bound=Enum)

ZERO = Decimal("0")


def new_entity_id(prefix: str) -> str:
    """Return a collision-resistant id such as ``inv-3f2a...``."""

    return f"{prefix}-{uuid.uuid4().hex}"


def parse_iso_date(raw: str, *, field_name: str = "date") -> date:
    """Parse a ``YYYY-MM-DD`` string.

    Raises:
        ValidationError: ``missing-field`` when empty, ``invalid-date`` when
            the text is not a calendar date.
    """

    if not raw or not str(raw).strip():
        raise ValidationError("missing-field", f"{field_name} is required", details={"field": field_name})
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError as exc:
        raise ValidationError(
            "invalid-date", f"{field_name} must be a YYYY-MM-DD date, got {raw!r}", details={"field": field_name}
        ) from exc


def _require_text(value: Optional[str], field_name: str) -> None:
    if value is None or not str(value).strip():
        raise ValidationError("missing-field", f"{field_name} is required", details={"field": field_name})
    require_cell_text(str(value), field_name)


def require_cell_text(value: Optional[str], field_name: str) -> None:
    """Reject control characters that a worksheet cell cannot hold."""

    if value and ILLEGAL_CHARACTERS_RE.search(value):
        raise ValidationError(
            "invalid-text", f"{field_name} contains control characters", details={"field": field_name}
        )


def _require_choice(value: str, choices: type, field_name: str) -> None:
    allowed = [member.value for member in choices]
    if value not in allowed:
        raise ValidationError(
            "invalid-choice",
            f"{field_name} must be one of {', '.join(allowed)}",
            details={"field": field_name, "value": value},
        )


def coerce_amount(raw: object, field_name: str = "amount") -> Decimal:
    """Turn user input (text, int, float or Decimal) into a Decimal.

    Floats go through ``str`` so ``0.1`` stays ``Decimal("0.1")``.

    Raises:
        ValidationError: ``missing-field`` for empty input, ``invalid-amount``
            when the value is not a finite number.
    """

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError("missing-field", f"{field_name} is required", details={"field": field_name})
    if isinstance(raw, bool):
        raise ValidationError("invalid-amount", f"{field_name} must be a number", details={"field": field_name})
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise ValidationError(
            "invalid-amount", f"{field_name} must be a number, got {raw!r}", details={"field": field_name}
        ) from exc
    if not value.is_finite():
        raise ValidationError("invalid-amount", f"{field_name} must be a finite number", details={"field": field_name})
    return value


def coerce_choice(choices: type[EnumT], raw: object, field_name: str) -> EnumT:
    """Map a member or its stored value onto an enum member.

    Raises:
        ValidationError: ``invalid-choice`` when ``raw`` is not a member value.
    """

    try:
        return choices(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in choices)
        raise ValidationError(
            "invalid-choice",
            f"{field_name} must be one of {allowed}",
            details={"field": field_name, "value": raw},
        ) from None


def require_positive_amount(amount: Decimal, field_name: str = "amount") -> None:
    """Ensure a money amount is strictly positive."""

    if amount <= ZERO:
        raise ValidationError(
            "invalid-amount", f"{field_name} must be greater than zero", details={"field": field_name}
        )


def require_non_negative_amount(amount: Decimal, field_name: str) -> None:
    if amount < ZERO:
        raise ValidationError(
            "invalid-amount", f"{field_name} must not be negative", details={"field": field_name}
        )


def validate_store(row: StoreRow) -> None:
    """Check a store before it enters the collection.

    Breakdown and expenses are not compared: a quarter close zeroes expenses
    but may keep the breakdown until the next expense edit.
    """

    _require_text(row.store_name, "store_name")
    _require_text(row.company_name, "company_name")
    require_non_negative_amount(row.quarter_income, "quarter_income")
    require_non_negative_amount(row.quarter_expenses, "quarter_expenses")
    _require_choice(row.tax_type, StoreTaxType, "tax_type")
    if row.expense_breakdown is not None:
        for name, value in row.expense_breakdown.as_dict().items():
            require_non_negative_amount(value, name)


def validate_supplier(row: SupplierRow) -> None:
    _require_text(row.name, "name")
    _require_text(row.owner, "owner")
    _require_choice(row.entity_type, EntityType, "entity_type")
    _require_choice(row.status, SupplierStatus, "status")
    require_positive_amount(row.quarterly_limit, "quarterly_limit")


def validate_invoice(row: InvoiceRow) -> None:
    _require_text(row.store_id, "store_id")
    _require_text(row.supplier_id, "supplier_id")
    require_positive_amount(row.amount)
    parse_iso_date(row.date_iso)
    _require_choice(row.status, InvoiceStatus, "status")
    if row.verification is not None:
        require_cell_text(row.verification.factory_name, "factory_name")
        require_cell_text(row.verification.company_name, "company_name")


def validate_payment(row: PaymentRow) -> None:
    """Payments name a factory owner; legacy rows may name a supplier instead."""

    if not (row.factory_owner and row.factory_owner.strip()) and not row.supplier_id:
        raise ValidationError("missing-field", "factory_owner is required", details={"field": "factory_owner"})
    require_cell_text(row.factory_owner, "factory_owner")
    require_positive_amount(row.amount)
    parse_iso_date(row.date_iso)


class EntityCollection(Generic[RowT]):
    """Ordered, id-keyed collection of immutable row records.

    Insertion order is kept so listings and exports follow creation order.
    ``validator`` runs on :meth:`upsert` only; bulk loads through
    :meth:`replace_all` accept stored data as-is.
    """

    def __init__(
        self,
        kind: str,
        key: Callable[[RowT], str],
        validator: Optional[Callable[[RowT], None]] = None,
        rows: Iterable[RowT] = (),
    ) -> None:
        self.kind = kind
        self._key = key
        self._validator = validator
        self._rows: dict[str, RowT] = {}
        self.replace_all(rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[RowT]:
        return iter(list(self._rows.values()))

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._rows

    def upsert(self, row: RowT) -> RowT:
        """Insert ``row`` or replace the record with the same id in place."""

        if self._validator is not None:
            self._validator(row)
        self._rows[self._key(row)] = row
        return row

    def remove(self, entity_id: str) -> RowT:
        """Remove and return a record.

        Raises:
            NotFoundError: If no record has ``entity_id``.
        """

        try:
            return self._rows.pop(entity_id)
        except KeyError:
            raise NotFoundError(self.kind, entity_id) from None

    def get(self, entity_id: Optional[str]) -> Optional[RowT]:
        if entity_id is None:
            return None
        return self._rows.get(entity_id)

    def require(self, entity_id: str) -> RowT:
        row = self.get(entity_id)
        if row is None:
            raise NotFoundError(self.kind, entity_id)
        return row

    def list(self, predicate: Optional[Callable[[RowT], bool]] = None) -> list[RowT]:
        if predicate is None:
            return list(self._rows.values())
        return [row for row in self._rows.values() if predicate(row)]

    def replace_all(self, rows: Iterable[RowT]) -> None:
        self._rows = {self._key(row): row for row in rows}

    def clear(self) -> None:
        self._rows.clear()

    def snapshot(self) -> tuple[RowT, ...]:
        return tuple(self._rows.values())


def store_collection(rows: Iterable[StoreRow] = ()) -> EntityCollection[StoreRow]:
    return EntityCollection("store", lambda row: row.store_id, validate_store, rows)


def supplier_collection(rows: Iterable[SupplierRow] = ()) -> EntityCollection[SupplierRow]:
    return EntityCollection("supplier", lambda row: row.supplier_id, validate_supplier, rows)


def invoice_collection(rows: Iterable[InvoiceRow] = ()) -> EntityCollection[InvoiceRow]:
    return EntityCollection("invoice", lambda row: row.invoice_id, validate_invoice, rows)


def payment_collection(rows: Iterable[PaymentRow] = ()) -> EntityCollection[PaymentRow]:
    return EntityCollection("payment", lambda row: row.payment_id, validate_payment, rows)
