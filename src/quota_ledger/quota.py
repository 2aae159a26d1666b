"""Quota enforcement and the invoice/payment record operations.

:func:`submit_invoice` is the only way an invoice enters the ledger. It checks
the date window and the supplier's remaining quota and admits the invoice in
the same transaction, so two concurrent submissions can never both squeeze
under the limit.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from . import log
from .constants import InvoicePeriod, InvoiceStatus
from .data_manager import InvoiceRow, PaymentRow, SupplierRow, VerificationResult
from .entity_store import coerce_choice, new_entity_id, parse_iso_date, require_positive_amount
from .errors import ValidationError
from .ledger import supplier_invoiced_total
from .quarters import QuarterRange, classify_invoice_period

if TYPE_CHECKING:
    from .state import LedgerState

ZERO = Decimal("0")


@dataclass(frozen=True)
class InvoiceCommand:
    """User intent for issuing an invoice from a supplier to a store."""

    store_id: str
    supplier_id: str
    amount: Decimal
    date_iso: str
    status: InvoiceStatus = InvoiceStatus.PENDING
    verification: Optional[VerificationResult] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for recording a payment to a factory owner."""

    factory_owner: str
    amount: Decimal
    date_iso: str
    store_id: Optional[str] = None


@dataclass(frozen=True)
class InvoiceDeletion:
    """Quota restoration report for a deleted invoice.

    ``supplier`` is ``None`` when the invoice pointed at a deleted supplier;
    ``remaining_after`` is then ``None`` as well.
    """

    invoice: InvoiceRow
    supplier: Optional[SupplierRow]
    remaining_after: Optional[Decimal]
    period: InvoicePeriod


def submit_invoice(state: "LedgerState", command: InvoiceCommand, active_range: QuarterRange) -> InvoiceRow:
    """Validate an invoice against its period and quota, then admit it.

    Checks run in this order: required fields and a positive amount, the
    date window, the supplier and store references, an exhausted quota, and
    finally an amount larger than what remains. An over-limit amount is
    rejected outright, never split.

    Args:
        state (LedgerState): Live ledger state.
        command (InvoiceCommand): The proposed invoice.
        active_range (QuarterRange): Window the invoice date must fall in.

    Returns:
        InvoiceRow: The admitted invoice.

    Raises:
        ValidationError: ``missing-field``, ``invalid-amount``,
            ``invalid-date``, ``out-of-period``, ``supplier-not-found``,
            ``store-not-found``, ``quota-exhausted`` or
            ``amount-exceeds-remaining``. Quota failures carry ``limit``,
            ``used`` and ``remaining`` in ``details``.
    """

    for field_name in ("store_id", "supplier_id"):
        if not getattr(command, field_name):
            raise ValidationError("missing-field", f"{field_name} is required", details={"field": field_name})
    require_positive_amount(command.amount)
    invoice_day = parse_iso_date(command.date_iso)

    if not active_range.contains(invoice_day):
        log.warning("Rejected invoice dated %s outside %s", invoice_day, active_range.label)
        raise ValidationError(
            "out-of-period",
            f"Invoice date {invoice_day.isoformat()} is outside {active_range.label} "
            f"({active_range.start.isoformat()} to {active_range.end.isoformat()})",
            details={
                "date": invoice_day.isoformat(),
                "quarter": active_range.label,
                "start": active_range.start.isoformat(),
                "end": active_range.end.isoformat(),
            },
        )

    with state.transaction("submit-invoice"):
        supplier = state.suppliers.get(command.supplier_id)
        if supplier is None:
            log.warning("Rejected invoice for unknown supplier '%s'", command.supplier_id)
            raise ValidationError(
                "supplier-not-found",
                f"Unknown supplier id: {command.supplier_id}",
                details={"supplier_id": command.supplier_id},
            )
        if command.store_id not in state.stores:
            log.warning("Rejected invoice for unknown store '%s'", command.store_id)
            raise ValidationError(
                "store-not-found",
                f"Unknown store id: {command.store_id}",
                details={"store_id": command.store_id},
            )

        used = supplier_invoiced_total(state.capture_snapshot(), supplier.supplier_id)
        remaining = supplier.quarterly_limit - used
        figures = {"limit": supplier.quarterly_limit, "used": used, "remaining": remaining}
        if remaining <= ZERO:
            log.warning("Rejected invoice: supplier '%s' has no quota left", supplier.name)
            raise ValidationError(
                "quota-exhausted",
                f"{supplier.name} has used its quarterly quota "
                f"(limit {supplier.quarterly_limit}, used {used})",
                details=figures,
            )
        if command.amount > remaining:
            log.warning(
                "Rejected invoice of %s: supplier '%s' has %s remaining", command.amount, supplier.name, remaining
            )
            raise ValidationError(
                "amount-exceeds-remaining",
                f"Amount {command.amount} exceeds the remaining quota {remaining} of {supplier.name} "
                f"(limit {supplier.quarterly_limit}, used {used})",
                details=figures,
            )

        invoice = state.invoices.upsert(
            InvoiceRow(
                invoice_id=new_entity_id("inv"),
                store_id=command.store_id,
                supplier_id=command.supplier_id,
                amount=command.amount,
                date_iso=invoice_day.isoformat(),
                status=coerce_choice(InvoiceStatus, command.status, "status").value,
                verification=command.verification,
            )
        )

    log.info(
        "Admitted invoice %s: %s from '%s' (%s remaining)",
        invoice.invoice_id,
        invoice.amount,
        supplier.name,
        remaining - invoice.amount,
    )
    return invoice


def delete_invoice(state: "LedgerState", invoice_id: str, *, today: date) -> InvoiceDeletion:
    """Delete an invoice unconditionally and report the restored quota.

    Raises:
        NotFoundError: If no invoice has ``invoice_id``.
    """

    with state.transaction("delete-invoice"):
        invoice = state.invoices.remove(invoice_id)
        supplier = state.suppliers.get(invoice.supplier_id)
        remaining_after: Optional[Decimal] = None
        if supplier is not None:
            remaining_after = supplier.quarterly_limit - supplier_invoiced_total(
                state.capture_snapshot(), supplier.supplier_id
            )

    try:
        period = classify_invoice_period(date.fromisoformat(invoice.date_iso), today)
    except ValueError:
        period = InvoicePeriod.OTHER
    log.info("Deleted invoice %s (%s, %s period)", invoice.invoice_id, invoice.amount, period.value)
    return InvoiceDeletion(invoice=invoice, supplier=supplier, remaining_after=remaining_after, period=period)


def update_invoice_status(
    state: "LedgerState",
    invoice_id: str,
    status: InvoiceStatus,
    verification: Optional[VerificationResult] = None,
) -> InvoiceRow:
    """Set status and verification; the only in-place change an invoice allows.

    Raises:
        NotFoundError: If no invoice has ``invoice_id``.
    """

    with state.transaction("update-invoice-status"):
        current = state.invoices.require(invoice_id)
        updated = state.invoices.upsert(
            replace(
                current,
                status=coerce_choice(InvoiceStatus, status, "status").value,
                verification=verification if verification is not None else current.verification,
            )
        )
    log.info("Invoice %s marked %s", invoice_id, updated.status)
    return updated


def record_payment(state: "LedgerState", command: PaymentCommand) -> PaymentRow:
    """Record a payment to a factory owner.

    Payments are not quota-gated and the owner does not need to be
    registered.

    Raises:
        ValidationError: For a missing owner, a non-positive amount or a bad date.
    """

    owner = (command.factory_owner or "").strip()
    if not owner:
        raise ValidationError("missing-field", "factory_owner is required", details={"field": "factory_owner"})
    require_positive_amount(command.amount)
    payment_day = parse_iso_date(command.date_iso)

    with state.transaction("record-payment"):
        payment = state.payments.upsert(
            PaymentRow(
                payment_id=new_entity_id("pay"),
                factory_owner=owner,
                amount=command.amount,
                date_iso=payment_day.isoformat(),
                store_id=command.store_id or None,
            )
        )
    log.info("Recorded payment %s of %s to '%s'", payment.payment_id, payment.amount, owner)
    return payment


def delete_payment(state: "LedgerState", payment_id: str) -> PaymentRow:
    with state.transaction("delete-payment"):
        payment = state.payments.remove(payment_id)
    log.info("Deleted payment %s", payment_id)
    return payment
