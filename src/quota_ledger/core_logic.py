"""Runtime context and operation facade for the quota ledger.

This module wires the configuration, the workbook and the in-memory
:class:`~quota_ledger.state.LedgerState` together and exposes every mutating
operation as a function returning an :class:`OperationResult`. Component
modules raise :class:`~quota_ledger.errors.LedgerError` subclasses; the facade
turns them into failures so callers render an outcome instead of handling
exceptions.

Persistence is optimistic. A successful mutation notifies the autosave
listener, which rewrites the workbook. A failed save never undoes the
mutation; it is reported on the otherwise successful result.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar

from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook import Workbook

from . import backup, data_manager, ledger, log, owners, quarters, quota, reports
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    EXPENSE_CATEGORIES,
    EntityType,
    InvoiceStatus,
    StoreTaxType,
    SupplierStatus,
)
from .entity_store import coerce_amount, coerce_choice, new_entity_id
from .errors import LedgerError, NotFoundError, PersistenceError, ValidationError
from .state import LedgerState, LedgerView
from .tax import TaxEstimate, estimate_store_tax

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Typed outcome of a public operation.

    ``persistence_error`` may be set on a successful result: the in-memory
    change stands, but replicating it to storage failed.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[LedgerError] = None
    persistence_error: Optional[PersistenceError] = None

    @classmethod
    def success(cls, value: T, *, persistence_error: Optional[PersistenceError] = None) -> "OperationResult[T]":
        return cls(ok=True, value=value, persistence_error=persistence_error)

    @classmethod
    def failure(cls, error: LedgerError) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""

        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook and live ledger state.

    Saves are serialized on ``_save_lock``. The outcome of the save an
    operation triggers is kept per thread in ``_last_save``, so concurrent
    operations each report their own.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    state: LedgerState
    _save_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    _last_save: threading.local = field(default_factory=threading.local, repr=False, compare=False)


# ---------------------------------------------------------------------------
# Context lifecycle and persistence
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None, *, autosave: bool = True) -> RuntimeContext:
    """Load configuration, open the workbook and build the ledger state.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        autosave (bool): Register the listener that saves the workbook after
            every successful mutation.

    Returns:
        RuntimeContext: Fully populated context ready for the operations below.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
        ValidationError: If the stored current quarter is not a quarter label.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    payload = data_manager.load_dataset(workbook, default_quarter=settings.initial_quarter)
    quarters.parse_quarter(payload.current_quarter)

    context = RuntimeContext(settings=settings, workbook=workbook, state=LedgerState.from_payload(payload))
    if autosave:
        attach_autosave(context)
    log.info("Loaded runtime context for workbook '%s' (quarter %s)", settings.data_file, payload.current_quarter)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work with a workbook declared for another schema version.

    Raises:
        RuntimeError: If the configured schema version does not match
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

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def attach_autosave(context: RuntimeContext) -> Callable[[LedgerState, str], None]:
    """Save the workbook after every committed mutation of ``context.state``.

    Returns:
        Callable: The registered listener, for :meth:`LedgerState.remove_listener`.
    """

    def _autosave(_state: LedgerState, action: str) -> None:
        log.debug("Autosaving after '%s'", action)
        context._last_save.result = persist_context(context)

    context.state.add_listener(_autosave)
    return _autosave


def persist_context(context: RuntimeContext) -> OperationResult[Path]:
    """Write the ledger state to the workbook and save it to disk.

    When the save fails, one fallback attempt writes a JSON backup to
    :attr:`ConfigSettings.fallback_file`. The in-memory state is left as it is
    either way.

    Returns:
        OperationResult[Path]: The saved workbook path, or a
            :class:`PersistenceError` failure.
    """
    with context._save_lock:
        return _persist_locked(context)


def _persist_locked(context: RuntimeContext) -> OperationResult[Path]:
    payload = context.state.to_payload()
    try:
        data_manager.write_dataset(context.workbook, payload)
        data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    except (OSError, ValueError, IllegalCharacterError) as exc:
        log.error("Failed to persist workbook '%s': %s", context.settings.data_file, exc)
        fallback = context.settings.fallback_file
        if fallback is not None:
            try:
                document = backup.build_backup_document(payload, timestamp=datetime.now())
                backup.write_backup_file(document, fallback)
                log.warning("Wrote fallback copy of the ledger to '%s'", fallback)
            except OSError as fallback_exc:
                log.error("Fallback write to '%s' failed: %s", fallback, fallback_exc)
        error = PersistenceError(f"Could not save workbook {context.settings.data_file}: {exc}")
        return OperationResult.failure(error)

    log.info("Persisted workbook '%s'", context.settings.data_file)
    return OperationResult.success(context.settings.data_file)


def refresh_context(context: RuntimeContext, *, autosave: bool = True) -> RuntimeContext:
    """Reload the workbook from disk, discarding unsaved in-memory changes.

    Listeners registered on the old state are not carried over.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    payload = data_manager.load_dataset(workbook, default_quarter=context.settings.initial_quarter)
    fresh = RuntimeContext(settings=context.settings, workbook=workbook, state=LedgerState.from_payload(payload))
    if autosave:
        attach_autosave(fresh)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return fresh


def _run(context: RuntimeContext, action: str, operation: Callable[[], T]) -> OperationResult[T]:
    context._last_save.result = None
    try:
        value = operation()
    except LedgerError as exc:
        log.warning("%s failed: %s", action, exc)
        return OperationResult.failure(exc)

    saved: Optional[OperationResult[Path]] = context._last_save.result
    context._last_save.result = None
    persistence_error = None
    if saved is not None and not saved.ok:
        persistence_error = saved.error  # type: ignore[assignment]
    return OperationResult.success(value, persistence_error=persistence_error)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


def add_store(
    context: RuntimeContext,
    *,
    store_name: str,
    company_name: str,
    tax_type: StoreTaxType = StoreTaxType.SMALL_SCALE,
    quarter_income: Any = 0,
) -> OperationResult[data_manager.StoreRow]:
    """Create a store; expenses start at zero."""

    def _add() -> data_manager.StoreRow:
        row = data_manager.StoreRow(
            store_id=new_entity_id("store"),
            store_name=(store_name or "").strip(),
            company_name=(company_name or "").strip(),
            quarter_income=coerce_amount(quarter_income, "quarter_income"),
            quarter_expenses=Decimal("0"),
            tax_type=coerce_choice(StoreTaxType, tax_type, "tax_type").value,
        )
        with context.state.transaction("add-store"):
            context.state.stores.upsert(row)
        log.info("Added store '%s' (%s)", row.store_name, row.store_id)
        return row

    return _run(context, "add-store", _add)


def update_store(
    context: RuntimeContext,
    store_id: str,
    *,
    store_name: Optional[str] = None,
    company_name: Optional[str] = None,
    quarter_income: Any = None,
    tax_type: Optional[StoreTaxType] = None,
) -> OperationResult[data_manager.StoreRow]:
    """Edit a store's names, income or tax type; expenses are left alone."""

    def _update() -> data_manager.StoreRow:
        with context.state.transaction("update-store"):
            current = context.state.stores.require(store_id)
            changes: Dict[str, Any] = {}
            if store_name is not None:
                changes["store_name"] = store_name.strip()
            if company_name is not None:
                changes["company_name"] = company_name.strip()
            if quarter_income is not None:
                changes["quarter_income"] = coerce_amount(quarter_income, "quarter_income")
            if tax_type is not None:
                changes["tax_type"] = coerce_choice(StoreTaxType, tax_type, "tax_type").value
            updated = context.state.stores.upsert(replace(current, **changes))
        log.info("Updated store %s: %s", store_id, ", ".join(sorted(changes)) or "no changes")
        return updated

    return _run(context, "update-store", _update)


def set_store_expenses(
    context: RuntimeContext,
    store_id: str,
    breakdown: Mapping[str, Any],
) -> OperationResult[data_manager.StoreRow]:
    """Replace a store's expense breakdown and recompute its expenses.

    Buckets missing from ``breakdown`` count as zero.
    """

    def _set() -> data_manager.StoreRow:
        unknown = sorted(set(breakdown) - set(EXPENSE_CATEGORIES))
        if unknown:
            raise ValidationError(
                "invalid-choice",
                f"Unknown expense categories: {', '.join(unknown)}",
                details={"field": "expense_breakdown", "value": unknown},
            )
        buckets = data_manager.ExpenseBreakdown(
            **{name: coerce_amount(breakdown.get(name, 0), name) for name in EXPENSE_CATEGORIES}
        )
        with context.state.transaction("set-store-expenses"):
            current = context.state.stores.require(store_id)
            updated = context.state.stores.upsert(
                replace(current, expense_breakdown=buckets, quarter_expenses=buckets.total())
            )
        log.info("Set expenses of store %s to %s", store_id, updated.quarter_expenses)
        return updated

    return _run(context, "set-store-expenses", _set)


def delete_store(context: RuntimeContext, store_id: str) -> OperationResult[data_manager.StoreRow]:
    """Delete a store; its invoices and payments stay in place."""

    def _delete() -> data_manager.StoreRow:
        with context.state.transaction("delete-store"):
            removed = context.state.stores.remove(store_id)
        log.info("Deleted store '%s' (%s)", removed.store_name, store_id)
        return removed

    return _run(context, "delete-store", _delete)


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------


def add_supplier(
    context: RuntimeContext,
    *,
    name: str,
    owner: str,
    entity_type: EntityType = EntityType.INDIVIDUAL,
    quarterly_limit: Any = None,
    status: SupplierStatus = SupplierStatus.ACTIVE,
) -> OperationResult[data_manager.SupplierRow]:
    """Create a supplier under a new or existing owner.

    A new owner name is appended to the registry. The limit defaults to the
    configured statutory limit.
    """

    def _add() -> data_manager.SupplierRow:
        owner_name = owners.normalize_owner_name(owner)
        limit = (
            context.settings.statutory_limit
            if quarterly_limit is None
            else coerce_amount(quarterly_limit, "quarterly_limit")
        )
        row = data_manager.SupplierRow(
            supplier_id=new_entity_id("sup"),
            name=(name or "").strip(),
            owner=owner_name,
            entity_type=coerce_choice(EntityType, entity_type, "entity_type").value,
            quarterly_limit=limit,
            status=coerce_choice(SupplierStatus, status, "status").value,
        )
        with context.state.transaction("add-supplier"):
            context.state.suppliers.upsert(row)
            context.state.owners.add(owner_name)
        log.info("Added supplier '%s' under owner '%s' (%s)", row.name, owner_name, row.supplier_id)
        return row

    return _run(context, "add-supplier", _add)


def update_supplier(
    context: RuntimeContext,
    supplier_id: str,
    *,
    name: Optional[str] = None,
    entity_type: Optional[EntityType] = None,
    quarterly_limit: Any = None,
    status: Optional[SupplierStatus] = None,
) -> OperationResult[data_manager.SupplierRow]:
    """Edit a supplier. The owner only changes through :func:`rename_owner`.

    Cutting the limit below what was already invoiced is allowed; it shows up
    as an integrity warning instead.
    """

    def _update() -> data_manager.SupplierRow:
        with context.state.transaction("update-supplier"):
            current = context.state.suppliers.require(supplier_id)
            changes: Dict[str, Any] = {}
            if name is not None:
                changes["name"] = name.strip()
            if entity_type is not None:
                changes["entity_type"] = coerce_choice(EntityType, entity_type, "entity_type").value
            if quarterly_limit is not None:
                changes["quarterly_limit"] = coerce_amount(quarterly_limit, "quarterly_limit")
            if status is not None:
                changes["status"] = coerce_choice(SupplierStatus, status, "status").value
            updated = context.state.suppliers.upsert(replace(current, **changes))
        for warning in ledger.integrity_warnings(context.state.view()):
            if warning.supplier_id == supplier_id:
                log.warning(
                    "Supplier '%s' is over its limit by %s after the edit", warning.supplier_name, warning.excess
                )
        log.info("Updated supplier %s: %s", supplier_id, ", ".join(sorted(changes)) or "no changes")
        return updated

    return _run(context, "update-supplier", _update)


def delete_supplier(context: RuntimeContext, supplier_id: str) -> OperationResult[data_manager.SupplierRow]:
    """Delete a supplier; its invoices stay and render as unknown."""

    def _delete() -> data_manager.SupplierRow:
        with context.state.transaction("delete-supplier"):
            removed = context.state.suppliers.remove(supplier_id)
        log.info("Deleted supplier '%s' (%s)", removed.name, supplier_id)
        return removed

    return _run(context, "delete-supplier", _delete)


# ---------------------------------------------------------------------------
# Invoices and payments
# ---------------------------------------------------------------------------


def active_invoice_range(context: RuntimeContext, today: Optional[date] = None) -> quarters.QuarterRange:
    """Date window new invoices must fall into under the configured policy."""

    return quarters.active_quarter_range(
        context.settings.period_source,
        context.state.view().current_quarter,
        today or date.today(),
    )


def submit_invoice(
    context: RuntimeContext,
    *,
    store_id: str,
    supplier_id: str,
    amount: Any,
    date_iso: str,
    status: InvoiceStatus = InvoiceStatus.PENDING,
    verification: Optional[data_manager.VerificationResult] = None,
    today: Optional[date] = None,
) -> OperationResult[data_manager.InvoiceRow]:
    """Admit an invoice if its date and the supplier's quota allow it."""

    def _submit() -> data_manager.InvoiceRow:
        command = quota.InvoiceCommand(
            store_id=(store_id or "").strip(),
            supplier_id=(supplier_id or "").strip(),
            amount=coerce_amount(amount),
            date_iso=date_iso,
            status=status,
            verification=verification,
        )
        # Window and quota are read under one lock.
        with context.state.transaction("submit-invoice"):
            return quota.submit_invoice(context.state, command, active_invoice_range(context, today))

    return _run(context, "submit-invoice", _submit)


def delete_invoice(
    context: RuntimeContext, invoice_id: str, *, today: Optional[date] = None
) -> OperationResult[quota.InvoiceDeletion]:
    return _run(
        context,
        "delete-invoice",
        lambda: quota.delete_invoice(context.state, invoice_id, today=today or date.today()),
    )


def update_invoice_status(
    context: RuntimeContext,
    invoice_id: str,
    status: InvoiceStatus,
    verification: Optional[data_manager.VerificationResult] = None,
) -> OperationResult[data_manager.InvoiceRow]:
    return _run(
        context,
        "update-invoice-status",
        lambda: quota.update_invoice_status(context.state, invoice_id, status, verification),
    )


def record_payment(
    context: RuntimeContext,
    *,
    factory_owner: str,
    amount: Any,
    date_iso: str,
    store_id: Optional[str] = None,
) -> OperationResult[data_manager.PaymentRow]:
    def _record() -> data_manager.PaymentRow:
        command = quota.PaymentCommand(
            factory_owner=factory_owner,
            amount=coerce_amount(amount),
            date_iso=date_iso,
            store_id=store_id,
        )
        return quota.record_payment(context.state, command)

    return _run(context, "record-payment", _record)


def delete_payment(context: RuntimeContext, payment_id: str) -> OperationResult[data_manager.PaymentRow]:
    return _run(context, "delete-payment", lambda: quota.delete_payment(context.state, payment_id))


# ---------------------------------------------------------------------------
# Owners
# ---------------------------------------------------------------------------


def register_owner(context: RuntimeContext, name: str) -> OperationResult[str]:
    return _run(context, "register-owner", lambda: owners.register_owner(context.state, name))


def rename_owner(context: RuntimeContext, old_name: str, new_name: str) -> OperationResult[int]:
    return _run(context, "rename-owner", lambda: owners.rename_owner(context.state, old_name, new_name))


def delete_owner(context: RuntimeContext, name: str) -> OperationResult[None]:
    return _run(context, "delete-owner", lambda: owners.delete_owner(context.state, name))


# ---------------------------------------------------------------------------
# Quarter lifecycle
# ---------------------------------------------------------------------------


def start_new_quarter(context: RuntimeContext) -> OperationResult[quarters.QuarterTransition]:
    return _run(
        context,
        "start-quarter",
        lambda: quarters.start_new_quarter(
            context.state,
            statutory_limit=context.settings.statutory_limit,
            clear_expense_breakdown=context.settings.clear_expense_breakdown,
        ),
    )


def switch_quarter(context: RuntimeContext, target: str) -> OperationResult[quarters.QuarterTransition]:
    return _run(
        context,
        "switch-quarter",
        lambda: quarters.switch_quarter(
            context.state,
            (target or "").strip(),
            clear_expense_breakdown=context.settings.clear_expense_breakdown,
        ),
    )


def delete_quarter(context: RuntimeContext, quarter: str) -> OperationResult[quarters.QuarterTransition]:
    return _run(
        context,
        "delete-quarter",
        lambda: quarters.delete_quarter_snapshot(
            context.state,
            (quarter or "").strip(),
            clear_expense_breakdown=context.settings.clear_expense_breakdown,
        ),
    )


# ---------------------------------------------------------------------------
# Backups and exports
# ---------------------------------------------------------------------------


def import_backup(context: RuntimeContext, source: Path) -> OperationResult[data_manager.DatasetPayload]:
    """Replace all live and archived state with a backup file's contents.

    The whole file is parsed before anything is replaced.
    """

    def _import() -> data_manager.DatasetPayload:
        document = backup.read_backup_file(source)
        payload = backup.parse_backup(document, fallback_quarter=context.state.view().current_quarter)
        context.state.replace_from_payload(payload)
        log.info(
            "Imported backup '%s' (quarter %s, %d archived quarters)",
            source,
            payload.current_quarter,
            len(payload.quarter_archive),
        )
        return payload

    return _run(context, "import-backup", _import)


def export_backup(
    context: RuntimeContext,
    destination: Optional[Path] = None,
    *,
    now: Optional[datetime] = None,
) -> OperationResult[Path]:
    """Write a JSON backup of all live and archived state.

    Without ``destination`` the dated default file name is used in the
    workbook's directory.
    """

    def _export() -> Path:
        moment = now or datetime.now()
        target = destination or context.settings.data_file.parent / backup.backup_file_name(moment.date())
        document = backup.build_backup_document(context.state.to_payload(), timestamp=moment)
        try:
            return backup.write_backup_file(document, target)
        except OSError as exc:
            raise PersistenceError(f"Could not write backup {target}: {exc}") from exc

    return _run(context, "export-backup", _export)


def export_csv(context: RuntimeContext, directory: Path) -> OperationResult[List[Path]]:
    """Write the store-centric and supplier-centric CSV files into ``directory``."""

    def _export() -> List[Path]:
        view = context.state.view()
        try:
            return [
                reports.write_csv(reports.render_store_csv(view), directory / reports.store_csv_name(view.current_quarter)),
                reports.write_csv(
                    reports.render_supplier_csv(view), directory / reports.supplier_csv_name(view.current_quarter)
                ),
            ]
        except OSError as exc:
            raise PersistenceError(f"Could not write CSV exports to {directory}: {exc}") from exc

    return _run(context, "export-csv", _export)


# ---------------------------------------------------------------------------
# Read-only queries
# ---------------------------------------------------------------------------


def ledger_view(context: RuntimeContext) -> LedgerView:
    return context.state.view()


def summarize(context: RuntimeContext) -> ledger.LedgerSummary:
    return ledger.summarize_kpis(context.state.view())


def supplier_usages(context: RuntimeContext) -> List[ledger.QuotaUsage]:
    view = context.state.view()
    return [ledger.supplier_usage(view, row) for row in view.suppliers]


def integrity_warnings(context: RuntimeContext) -> List[ledger.IntegrityWarning]:
    return ledger.integrity_warnings(context.state.view())


def factory_settlements(context: RuntimeContext) -> List[ledger.FactorySettlement]:
    view = context.state.view()
    return ledger.factory_settlements(view, view.factory_owners)


def owner_groups(context: RuntimeContext) -> List[ledger.OwnerGroup]:
    view = context.state.view()
    return ledger.group_suppliers_by_owner(view, view.factory_owners)


def store_tax_estimate(context: RuntimeContext, store_id: str) -> OperationResult[TaxEstimate]:
    def _estimate() -> TaxEstimate:
        view = context.state.view()
        store = ledger.find_store(view, store_id)
        if store is None:
            raise NotFoundError("store", store_id)
        return estimate_store_tax(store, ledger.store_invoiced_total(view, store_id))

    return _run(context, "tax-estimate", _estimate)


def analysis_payload(context: RuntimeContext) -> Dict[str, Any]:
    return reports.analysis_payload(context.state.view(), context.settings.statutory_limit)


def quarter_overview(context: RuntimeContext) -> List[tuple[str, bool, bool]]:
    return quarters.quarter_overview(context.state)
