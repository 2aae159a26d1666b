"""Command-line entry points for the quota ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into facade calls, and printing their results. The
business rules live in :mod:`quota_ledger.core_logic` and the component
modules behind it.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import EXPENSE_CATEGORIES, EntityType, InvoiceStatus, StoreTaxType, SupplierStatus
from .errors import LedgerError, PersistenceError
from .ledger import (
    describe_invoice,
    factory_quota_ranking,
    factory_total_limit,
    gap_ranking,
    search_stores,
    store_gap,
    store_invoiced_total,
)

SUMMARY_RANKING_SIZE = 5


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="quota-cli",
        description="Command-line tools for the supplier invoice quota ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini upwards).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    arguments: Callable[[argparse.ArgumentParser], None],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands."""
    specs = {
        "add-store": register_add_store_command(subparsers),
        "edit-store": register_edit_store_command(subparsers),
        "set-expenses": register_set_expenses_command(subparsers),
        "delete-store": _simple_spec(
            "delete-store", "Delete a store (its invoices are kept).", _id_argument("--store-id"), run_delete_store
        ),
        "add-supplier": register_add_supplier_command(subparsers),
        "edit-supplier": register_edit_supplier_command(subparsers),
        "delete-supplier": _simple_spec(
            "delete-supplier",
            "Delete a supplier (its invoices are kept).",
            _id_argument("--supplier-id"),
            run_delete_supplier,
        ),
        "add-owner": _simple_spec(
            "add-owner", "Register a factory owner.", _id_argument("--name"), run_add_owner
        ),
        "rename-owner": register_rename_owner_command(subparsers),
        "delete-owner": _simple_spec(
            "delete-owner",
            "Remove a factory owner from the registry (suppliers are kept).",
            _id_argument("--name"),
            run_delete_owner,
        ),
        "invoice": register_invoice_command(subparsers),
        "invoice-status": register_invoice_status_command(subparsers),
        "delete-invoice": _simple_spec(
            "delete-invoice", "Delete an invoice and restore its quota.", _id_argument("--invoice-id"), run_delete_invoice
        ),
        "payment": register_payment_command(subparsers),
        "delete-payment": _simple_spec(
            "delete-payment", "Delete a payment.", _id_argument("--payment-id"), run_delete_payment
        ),
        "start-quarter": _simple_spec(
            "start-quarter", "Close the current quarter and start the next one.", lambda parser: None, run_start_quarter
        ),
        "switch-quarter": _simple_spec(
            "switch-quarter", "Switch to another quarter.", _id_argument("--quarter"), run_switch_quarter
        ),
        "delete-quarter": _simple_spec(
            "delete-quarter", "Delete a quarter and its snapshot.", _id_argument("--quarter"), run_delete_quarter
        ),
        "import-backup": _simple_spec(
            "import-backup",
            "Replace all data with the contents of a JSON backup.",
            _path_argument("--source", required=True),
            run_import_backup,
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and exports."""
    specs = {
        "summary": _simple_spec("summary", "Show quarter KPIs and integrity warnings.", lambda parser: None, run_summary),
        "stores": register_stores_command(subparsers),
        "suppliers": _simple_spec("suppliers", "List suppliers grouped by owner.", lambda parser: None, run_suppliers),
        "factories": _simple_spec(
            "factories", "Show paid, invoiced and pending amounts per factory.", lambda parser: None, run_factories
        ),
        "invoices": _simple_spec("invoices", "List invoices of the current quarter.", lambda parser: None, run_invoices),
        "quarters": _simple_spec("quarters", "List known quarters.", lambda parser: None, run_quarters),
        "tax": _simple_spec("tax", "Estimate a store's quarterly tax.", _id_argument("--store-id"), run_tax),
        "analysis": _simple_spec(
            "analysis", "Print the analysis payload as JSON.", lambda parser: None, run_analysis
        ),
        "export-csv": _simple_spec(
            "export-csv",
            "Write the store and supplier CSV reports.",
            _path_argument("--directory", required=False),
            run_export_csv,
        ),
        "export-backup": _simple_spec(
            "export-backup",
            "Write a JSON backup of all quarters.",
            _path_argument("--destination", required=False),
            run_export_backup,
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _id_argument(flag: str) -> Callable[[argparse.ArgumentParser], None]:
    def add(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(flag, required=True)

    return add


def _path_argument(flag: str, *, required: bool) -> Callable[[argparse.ArgumentParser], None]:
    def add(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(flag, type=Path, required=required, default=None)

    return add


def register_add_store_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-store``."""
    name = "add-store"
    help_text = "Register a new store."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--store-name", required=True)
        parser.add_argument("--company-name", required=True)
        parser.add_argument(
            "--tax-type",
            choices=[member.value for member in StoreTaxType],
            default=StoreTaxType.SMALL_SCALE.value,
        )
        parser.add_argument("--income", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_store)


def register_edit_store_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-store``."""
    name = "edit-store"
    help_text = "Edit a store's names, income or tax type."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--store-id", required=True)
        parser.add_argument("--store-name", default=None)
        parser.add_argument("--company-name", default=None)
        parser.add_argument("--income", default=None)
        parser.add_argument("--tax-type", choices=[member.value for member in StoreTaxType], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_store)


def register_set_expenses_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-expenses``."""
    name = "set-expenses"
    help_text = "Replace a store's expense breakdown."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--store-id", required=True)
        for category in EXPENSE_CATEGORIES:
            parser.add_argument(f"--{category}", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_expenses)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Register an invoicing entity under a factory owner."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--owner", required=True)
        parser.add_argument(
            "--type",
            dest="entity_type",
            choices=[member.value for member in EntityType],
            default=EntityType.INDIVIDUAL.value,
        )
        parser.add_argument("--limit", default=None, help="Quarterly limit (defaults to the statutory limit).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier)


def register_edit_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-supplier``."""
    name = "edit-supplier"
    help_text = "Edit a supplier's name, type, limit or status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--type", dest="entity_type", choices=[member.value for member in EntityType], default=None)
        parser.add_argument("--limit", default=None)
        parser.add_argument("--status", choices=[member.value for member in SupplierStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_supplier)


def register_rename_owner_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rename-owner``."""
    name = "rename-owner"
    help_text = "Rename a factory owner on every supplier and payment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--old-name", required=True)
        parser.add_argument("--new-name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rename_owner)


def register_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoice``."""
    name = "invoice"
    help_text = "Submit an invoice from a supplier to a store."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--store-id", required=True)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--date", dest="date_iso", required=True, help="Invoice date as YYYY-MM-DD.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoice)


def register_invoice_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoice-status``."""
    name = "invoice-status"
    help_text = "Mark an invoice as pending, verified or rejected."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice-id", required=True)
        parser.add_argument("--status", choices=[member.value for member in InvoiceStatus], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoice_status)


def register_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payment``."""
    name = "payment"
    help_text = "Record a payment to a factory owner."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--owner", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--date", dest="date_iso", required=True, help="Payment date as YYYY-MM-DD.")
        parser.add_argument("--store-id", default=None, help="Store that made the payment, if any.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payment)


def register_stores_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stores``."""
    name = "stores"
    help_text = "List stores with invoiced totals and gaps."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="", help="Filter by store or company name.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stores)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Load the runtime context and validate its schema version."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translation of parsed arguments
# ---------------------------------------------------------------------------


def translate_add_store(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "store_name": args.store_name,
        "company_name": args.company_name,
        "tax_type": StoreTaxType(args.tax_type),
        "quarter_income": args.income,
    }


def translate_edit_store(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "store_name": args.store_name,
        "company_name": args.company_name,
        "quarter_income": args.income,
        "tax_type": StoreTaxType(args.tax_type) if args.tax_type else None,
    }


def translate_expenses(args: argparse.Namespace) -> Mapping[str, Any]:
    return {category: getattr(args, category) for category in EXPENSE_CATEGORIES}


def translate_add_supplier(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "name": args.name,
        "owner": args.owner,
        "entity_type": EntityType(args.entity_type),
        "quarterly_limit": args.limit,
    }


def translate_edit_supplier(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "name": args.name,
        "entity_type": EntityType(args.entity_type) if args.entity_type else None,
        "quarterly_limit": args.limit,
        "status": SupplierStatus(args.status) if args.status else None,
    }


def translate_invoice(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "store_id": args.store_id,
        "supplier_id": args.supplier_id,
        "amount": args.amount,
        "date_iso": args.date_iso,
    }


def translate_payment(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "factory_owner": args.owner,
        "amount": args.amount,
        "date_iso": args.date_iso,
        "store_id": args.store_id,
    }


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def report_result(result: core_logic.OperationResult[Any], describe: Callable[[Any], str]) -> int:
    """Print an operation outcome and return its exit code.

    Rejected operations exit with 2. A change that was applied but could not
    be saved exits with 1.
    """
    if not result.ok:
        assert result.error is not None
        print(f"[ERROR] {result.error}")
        details = getattr(result.error, "details", None)
        if details:
            for key, value in details.items():
                print(f"  {key}: {value}")
        return 1 if isinstance(result.error, PersistenceError) else 2
    print(describe(result.value))
    if result.persistence_error is not None:
        print(f"[WARNING] Change applied but not saved: {result.persistence_error}")
        return 1
    return 0


def run_add_store(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.add_store(context, **translate_add_store(args))
    return report_result(result, lambda row: f"Added store {row.store_id} ({row.store_name})")


def run_edit_store(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.update_store(context, args.store_id, **translate_edit_store(args))
    return report_result(result, lambda row: f"Updated store {row.store_id}")


def run_set_expenses(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.set_store_expenses(context, args.store_id, translate_expenses(args))
    return report_result(result, lambda row: f"Store {row.store_id} expenses: {row.quarter_expenses}")


def run_delete_store(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.delete_store(context, args.store_id)
    return report_result(result, lambda row: f"Deleted store {row.store_id}")


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.add_supplier(context, **translate_add_supplier(args))
    return report_result(
        result, lambda row: f"Added supplier {row.supplier_id} ({row.name}, limit {row.quarterly_limit})"
    )


def run_edit_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.update_supplier(context, args.supplier_id, **translate_edit_supplier(args))
    return report_result(result, lambda row: f"Updated supplier {row.supplier_id}")


def run_delete_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.delete_supplier(context, args.supplier_id)
    return report_result(result, lambda row: f"Deleted supplier {row.supplier_id}")


def run_add_owner(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.register_owner(context, args.name)
    return report_result(result, lambda name: f"Registered owner {name}")


def run_rename_owner(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.rename_owner(context, args.old_name, args.new_name)
    return report_result(result, lambda count: f"Renamed owner; {count} records updated")


def run_delete_owner(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.delete_owner(context, args.name)
    return report_result(result, lambda _: f"Removed owner {args.name} from the registry")


def run_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.submit_invoice(context, **translate_invoice(args))
    return report_result(result, lambda row: f"Admitted invoice {row.invoice_id} for {row.amount}")


def run_invoice_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.update_invoice_status(context, args.invoice_id, InvoiceStatus(args.status))
    return report_result(result, lambda row: f"Invoice {row.invoice_id} is {row.status}")


def run_delete_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    def describe(deletion: Any) -> str:
        if deletion.supplier is None:
            return f"Deleted invoice {deletion.invoice.invoice_id}; its supplier no longer exists"
        return (
            f"Deleted invoice {deletion.invoice.invoice_id} ({deletion.period.value} quarter); "
            f"{deletion.supplier.name} now has {deletion.remaining_after} remaining"
        )

    return report_result(core_logic.delete_invoice(context, args.invoice_id), describe)


def run_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.record_payment(context, **translate_payment(args))
    return report_result(result, lambda row: f"Recorded payment {row.payment_id} of {row.amount}")


def run_delete_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.delete_payment(context, args.payment_id)
    return report_result(result, lambda row: f"Deleted payment {row.payment_id}")


def _describe_transition(transition: Any) -> str:
    if not transition.changed:
        return f"Quarter {transition.current_quarter} is already current"
    return f"Current quarter: {transition.current_quarter} (was {transition.previous_quarter})"


def run_start_quarter(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return report_result(core_logic.start_new_quarter(context), _describe_transition)


def run_switch_quarter(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return report_result(core_logic.switch_quarter(context, args.quarter), _describe_transition)


def run_delete_quarter(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.delete_quarter(context, args.quarter)
    return report_result(result, lambda t: f"Deleted quarter {args.quarter}; current quarter: {t.current_quarter}")


def run_import_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.import_backup(context, args.source)
    return report_result(result, lambda payload: f"Restored backup; current quarter: {payload.current_quarter}")


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    view = core_logic.ledger_view(context)
    summary = core_logic.summarize(context)
    print(f"Quarter: {view.current_quarter}")
    print(f"Total income: {summary.total_income}")
    print(f"Total expenses: {summary.total_expenses}")
    print(f"Total invoiced: {summary.total_invoiced}")
    print(f"Available quota: {summary.total_available_quota}")
    print(f"Total gap: {summary.total_gap}")
    for store, gap in gap_ranking(view, limit=SUMMARY_RANKING_SIZE):
        print(f"Gap\t{store.store_name}\t{gap}")
    for owner, remaining in factory_quota_ranking(view, limit=SUMMARY_RANKING_SIZE):
        print(f"Quota\t{owner}\t{remaining}")
    for warning in core_logic.integrity_warnings(context):
        print(
            f"[WARNING] {warning.supplier_name}: invoiced {warning.invoiced} exceeds limit "
            f"{warning.quarterly_limit} by {warning.excess}"
        )
    return 0


def run_stores(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    view = core_logic.ledger_view(context)
    for store in search_stores(view, args.search):
        print(
            f"{store.store_id}\t{store.store_name}\t{store.company_name}\t{store.tax_type}\t"
            f"income={store.quarter_income}\texpenses={store.quarter_expenses}\t"
            f"invoiced={store_invoiced_total(view, store.store_id)}\tgap={store_gap(view, store)}"
        )
    return 0


def run_suppliers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    usages = {usage.supplier.supplier_id: usage for usage in core_logic.supplier_usages(context)}
    for group in core_logic.owner_groups(context):
        marker = "" if group.registered else " (unregistered)"
        print(f"{group.owner}{marker}")
        for supplier in group.suppliers:
            usage = usages[supplier.supplier_id]
            flag = " FULL" if usage.full else (" HIGH" if usage.high_risk else "")
            print(
                f"  {supplier.supplier_id}\t{supplier.name}\t{supplier.entity_type}\t"
                f"limit={supplier.quarterly_limit}\tused={usage.invoiced}\tremaining={usage.remaining}\t"
                f"{usage.percent_used}%{flag}"
            )
    return 0


def run_factories(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    view = core_logic.ledger_view(context)
    for settlement in core_logic.factory_settlements(context):
        print(
            f"{settlement.owner}\tlimit={factory_total_limit(view, settlement.owner)}\tpaid={settlement.paid}\t"
            f"invoiced={settlement.invoiced}\tpending={settlement.pending}"
        )
    return 0


def run_invoices(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    view = core_logic.ledger_view(context)
    for invoice in view.invoices:
        line = describe_invoice(view, invoice)
        print(
            f"{invoice.invoice_id}\t{invoice.date_iso}\t{line.store_name}\t{line.supplier_name}\t"
            f"{line.factory_owner}\t{invoice.amount}\t{invoice.status}"
        )
    return 0


def run_quarters(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for label, archived, current in core_logic.quarter_overview(context):
        tags = [tag for tag, flag in (("current", current), ("archived", archived)) if flag]
        print(f"{label}\t{', '.join(tags)}")
    return 0


def run_tax(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    def describe(estimate: Any) -> str:
        return (
            f"VAT {estimate.vat}, surtax {estimate.surtax}, taxable profit {estimate.taxable_profit}, "
            f"income tax {estimate.income_tax}, total {estimate.total}"
        )

    return report_result(core_logic.store_tax_estimate(context, args.store_id), describe)


def run_analysis(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(json.dumps(core_logic.analysis_payload(context), ensure_ascii=False, indent=2))
    return 0


def run_export_csv(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    directory = args.directory or context.settings.data_file.parent
    result = core_logic.export_csv(context, directory)
    return report_result(result, lambda paths: "\n".join(f"Wrote {path}" for path in paths))


def run_export_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.export_backup(context, args.destination)
    return report_result(result, lambda path: f"Wrote {path}")


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, LedgerError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution.

    Mutating commands are saved by the context's autosave listener, so no
    explicit save happens here.
    """
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
