"""Ledger calculator: pure derivations over a quarter's collections.

Every function here takes a :class:`~quota_ledger.data_manager.QuarterSnapshot`
(the live :class:`~quota_ledger.state.LedgerView` or an archived quarter) and
recomputes its answer from scratch. Nothing is cached.

Dangling references are normal: an invoice may point at a deleted store or
supplier. Lookups fall back to the ``UNKNOWN_*`` labels instead of raising.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from .constants import (
    HIGH_RISK_USAGE_PERCENT,
    UNKNOWN_COMPANY,
    UNKNOWN_FACTORY,
    UNKNOWN_STORE,
    UNKNOWN_SUPPLIER,
)
from .data_manager import InvoiceRow, PaymentRow, QuarterSnapshot, StoreRow, SupplierRow

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PERCENT_STEP = Decimal("0.01")


@dataclass(frozen=True)
class InvoiceLine:
    """Invoice joined with the display names of the records it references."""

    invoice: InvoiceRow
    store_name: str
    company_name: str
    supplier_name: str
    factory_owner: str


@dataclass(frozen=True)
class QuotaUsage:
    supplier: SupplierRow
    invoiced: Decimal
    remaining: Decimal
    percent_used: Decimal
    high_risk: bool
    full: bool


@dataclass(frozen=True)
class IntegrityWarning:
    """A supplier whose admitted invoices exceed its current limit.

    Raised by a downward limit edit after invoices were admitted; the ledger
    reports it and never cancels invoices to fix it.
    """

    supplier_id: str
    supplier_name: str
    quarterly_limit: Decimal
    invoiced: Decimal

    @property
    def excess(self) -> Decimal:
        return self.invoiced - self.quarterly_limit


@dataclass(frozen=True)
class FactorySettlement:
    owner: str
    paid: Decimal
    invoiced: Decimal

    @property
    def pending(self) -> Decimal:
        """Paid but not yet covered by invoices; negative when over-invoiced."""

        return self.paid - self.invoiced


@dataclass(frozen=True)
class OwnerGroup:
    owner: str
    suppliers: tuple[SupplierRow, ...]
    registered: bool


@dataclass(frozen=True)
class LedgerSummary:
    total_income: Decimal
    total_expenses: Decimal
    total_invoiced: Decimal
    total_available_quota: Decimal
    total_gap: Decimal
    store_count: int
    supplier_count: int
    invoice_count: int


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def store_invoiced_total(view: QuarterSnapshot, store_id: str) -> Decimal:
    return sum((row.amount for row in view.invoices if row.store_id == store_id), ZERO)


def supplier_invoiced_total(view: QuarterSnapshot, supplier_id: str) -> Decimal:
    return sum((row.amount for row in view.invoices if row.supplier_id == supplier_id), ZERO)


def supplier_remaining_quota(view: QuarterSnapshot, supplier: SupplierRow) -> Decimal:
    """Limit minus invoiced; negative when the limit was cut after admission.

    Quota checks use this raw value. Only aggregate displays clamp it.
    """

    return supplier.quarterly_limit - supplier_invoiced_total(view, supplier.supplier_id)


def store_profit(store: StoreRow) -> Decimal:
    return store.quarter_income - store.quarter_expenses


def store_gap(view: QuarterSnapshot, store: StoreRow) -> Decimal:
    """Profit not yet covered by deductible invoices, never below zero."""

    return max(ZERO, store_profit(store) - store_invoiced_total(view, store.store_id))


def suppliers_of_owner(view: QuarterSnapshot, owner: str) -> list[SupplierRow]:
    return [row for row in view.suppliers if row.owner == owner]


def factory_remaining_quota(view: QuarterSnapshot, owner: str) -> Decimal:
    """Sum of per-supplier remaining quota, each clamped at zero."""

    return sum(
        (max(ZERO, supplier_remaining_quota(view, row)) for row in suppliers_of_owner(view, owner)),
        ZERO,
    )


def factory_total_limit(view: QuarterSnapshot, owner: str) -> Decimal:
    return sum((row.quarterly_limit for row in suppliers_of_owner(view, owner)), ZERO)


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------


def find_store(view: QuarterSnapshot, store_id: Optional[str]) -> Optional[StoreRow]:
    return next((row for row in view.stores if row.store_id == store_id), None)


def find_supplier(view: QuarterSnapshot, supplier_id: Optional[str]) -> Optional[SupplierRow]:
    return next((row for row in view.suppliers if row.supplier_id == supplier_id), None)


def describe_invoice(view: QuarterSnapshot, invoice: InvoiceRow) -> InvoiceLine:
    store = find_store(view, invoice.store_id)
    supplier = find_supplier(view, invoice.supplier_id)
    return InvoiceLine(
        invoice=invoice,
        store_name=store.store_name if store else UNKNOWN_STORE,
        company_name=store.company_name if store else UNKNOWN_COMPANY,
        supplier_name=supplier.name if supplier else UNKNOWN_SUPPLIER,
        factory_owner=supplier.owner if supplier else UNKNOWN_FACTORY,
    )


def payment_factory_owner(view: QuarterSnapshot, payment: PaymentRow) -> str:
    """Owner a payment settles; legacy rows resolve through their supplier."""

    if payment.factory_owner:
        return payment.factory_owner
    supplier = find_supplier(view, payment.supplier_id)
    if supplier is not None:
        return supplier.owner
    return UNKNOWN_FACTORY


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------


def supplier_usage(view: QuarterSnapshot, supplier: SupplierRow) -> QuotaUsage:
    invoiced = supplier_invoiced_total(view, supplier.supplier_id)
    if supplier.quarterly_limit > ZERO:
        percent = min(HUNDRED, invoiced / supplier.quarterly_limit * HUNDRED)
    else:
        percent = HUNDRED
    percent = percent.quantize(PERCENT_STEP, rounding=ROUND_HALF_UP)
    return QuotaUsage(
        supplier=supplier,
        invoiced=invoiced,
        remaining=supplier.quarterly_limit - invoiced,
        percent_used=percent,
        high_risk=percent > HIGH_RISK_USAGE_PERCENT,
        full=percent >= HUNDRED,
    )


def integrity_warnings(view: QuarterSnapshot) -> list[IntegrityWarning]:
    warnings: list[IntegrityWarning] = []
    for supplier in view.suppliers:
        invoiced = supplier_invoiced_total(view, supplier.supplier_id)
        if invoiced > supplier.quarterly_limit:
            warnings.append(
                IntegrityWarning(
                    supplier_id=supplier.supplier_id,
                    supplier_name=supplier.name,
                    quarterly_limit=supplier.quarterly_limit,
                    invoiced=invoiced,
                )
            )
    return warnings


def factory_settlements(view: QuarterSnapshot, owners: Iterable[str] = ()) -> list[FactorySettlement]:
    """Paid, invoiced and pending figures per factory owner.

    Owners come from ``owners`` first, then from suppliers and payments in the
    order they are first seen, so orphaned names are reported too.
    """

    paid: dict[str, Decimal] = defaultdict(lambda: ZERO)
    invoiced: dict[str, Decimal] = defaultdict(lambda: ZERO)
    ordered: list[str] = list(dict.fromkeys(owners))

    def note(owner: str) -> None:
        if owner not in ordered:
            ordered.append(owner)

    for supplier in view.suppliers:
        note(supplier.owner)
    for payment in view.payments:
        owner = payment_factory_owner(view, payment)
        note(owner)
        paid[owner] += payment.amount
    for invoice in view.invoices:
        supplier = find_supplier(view, invoice.supplier_id)
        owner = supplier.owner if supplier else UNKNOWN_FACTORY
        note(owner)
        invoiced[owner] += invoice.amount

    return [FactorySettlement(owner=name, paid=paid[name], invoiced=invoiced[name]) for name in ordered]


def summarize_kpis(view: QuarterSnapshot) -> LedgerSummary:
    return LedgerSummary(
        total_income=sum((row.quarter_income for row in view.stores), ZERO),
        total_expenses=sum((row.quarter_expenses for row in view.stores), ZERO),
        total_invoiced=sum((row.amount for row in view.invoices), ZERO),
        total_available_quota=sum(
            (max(ZERO, supplier_remaining_quota(view, row)) for row in view.suppliers), ZERO
        ),
        total_gap=sum((store_gap(view, row) for row in view.stores), ZERO),
        store_count=len(view.stores),
        supplier_count=len(view.suppliers),
        invoice_count=len(view.invoices),
    )


def gap_ranking(view: QuarterSnapshot, limit: Optional[int] = None) -> list[tuple[StoreRow, Decimal]]:
    """Stores ordered by gap, largest first."""

    ranked = sorted(((row, store_gap(view, row)) for row in view.stores), key=lambda pair: pair[1], reverse=True)
    return ranked if limit is None else ranked[:limit]


def factory_quota_ranking(view: QuarterSnapshot, limit: Optional[int] = None) -> list[tuple[str, Decimal]]:
    """Owners ordered by remaining quota, largest first."""

    owners = list(dict.fromkeys(row.owner for row in view.suppliers))
    ranked = sorted(
        ((owner, factory_remaining_quota(view, owner)) for owner in owners),
        key=lambda pair: pair[1],
        reverse=True,
    )
    return ranked if limit is None else ranked[:limit]


def group_suppliers_by_owner(view: QuarterSnapshot, registry: Sequence[str] = ()) -> list[OwnerGroup]:
    """Group suppliers by owner name.

    Registered owners come first in registry order, including those with no
    suppliers. Owners referenced by suppliers but missing from the registry
    follow with ``registered=False``.
    """

    grouped: dict[str, list[SupplierRow]] = {name: [] for name in registry}
    for supplier in view.suppliers:
        grouped.setdefault(supplier.owner, []).append(supplier)
    return [
        OwnerGroup(owner=owner, suppliers=tuple(rows), registered=owner in registry)
        for owner, rows in grouped.items()
    ]


def search_stores(view: QuarterSnapshot, term: str) -> list[StoreRow]:
    """Case-insensitive substring match on store or company name."""

    needle = term.strip().casefold()
    if not needle:
        return list(view.stores)
    return [
        row
        for row in view.stores
        if needle in row.store_name.casefold() or needle in row.company_name.casefold()
    ]
