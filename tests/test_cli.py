"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Iterable, Mapping

import pytest

from quota_ledger import cli, constants, core_logic
from quota_ledger.errors import NotFoundError, PersistenceError, ValidationError


WRITE_COMMANDS = {
    "add-store",
    "edit-store",
    "set-expenses",
    "delete-store",
    "add-supplier",
    "edit-supplier",
    "delete-supplier",
    "add-owner",
    "rename-owner",
    "delete-owner",
    "invoice",
    "invoice-status",
    "delete-invoice",
    "payment",
    "delete-payment",
    "start-quarter",
    "switch-quarter",
    "delete-quarter",
    "import-backup",
}

READ_COMMANDS = {
    "summary",
    "stores",
    "suppliers",
    "factories",
    "invoices",
    "quarters",
    "tax",
    "analysis",
    "export-csv",
    "export-backup",
}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "quota-cli"
    assert "quota" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire all write and read sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    """register_write_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for name, spec in specs.items():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.name == name
        assert spec.help_text
        assert name in subparsers_action.choices


def test_register_read_commands_returns_command_specs(subparsers_action):
    """register_read_commands should return a mapping of CommandSpec objects."""

    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert callable(spec.execute)


# ---------------------------------------------------------------------------
# Command registrations
# ---------------------------------------------------------------------------


def test_register_invoice_command_configures_arguments():
    """register_invoice_command should define invoice arguments."""

    namespace = _parse(
        cli.register_invoice_command,
        ["invoice", "--store-id", "store-1", "--supplier-id", "sup-1", "--amount", "1000.50", "--date", "2025-08-01"],
    )
    assert namespace.command == "invoice"
    assert namespace.store_id == "store-1"
    assert namespace.supplier_id == "sup-1"
    assert namespace.amount == "1000.50"
    assert namespace.date_iso == "2025-08-01"


def test_register_payment_command_store_is_optional():
    """A payment does not need to name the store that made it."""

    namespace = _parse(
        cli.register_payment_command, ["payment", "--owner", "Factory A", "--amount", "10", "--date", "2025-08-01"]
    )
    assert namespace.owner == "Factory A"
    assert namespace.store_id is None


def test_register_add_supplier_command_defaults():
    """Suppliers default to individual entities with no explicit limit."""

    namespace = _parse(cli.register_add_supplier_command, ["add-supplier", "--name", "Maker", "--owner", "Factory A"])
    assert namespace.entity_type == constants.EntityType.INDIVIDUAL.value
    assert namespace.limit is None


def test_register_add_store_command_rejects_unknown_tax_type():
    """argparse should refuse tax types outside the enumeration."""

    with pytest.raises(SystemExit):
        _parse(
            cli.register_add_store_command,
            ["add-store", "--store-name", "A", "--company-name", "B", "--tax-type", "nonsense"],
        )


def test_register_set_expenses_command_adds_one_flag_per_category():
    """Every expense bucket should be settable from the command line."""

    namespace = _parse(cli.register_set_expenses_command, ["set-expenses", "--store-id", "s1", "--rent", "1200"])
    assert namespace.rent == "1200"
    for category in constants.EXPENSE_CATEGORIES:
        assert hasattr(namespace, category)


# ---------------------------------------------------------------------------
# Runtime context helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_validates_schema(config_file, monkeypatch):
    """load_runtime_context should load from the path and check the schema."""

    sentinel_context = object()
    checked = {}

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    monkeypatch.setattr(core_logic, "ensure_schema_version", lambda context: checked.setdefault("context", context))
    assert cli.load_runtime_context(config_file) is sentinel_context
    assert checked["context"] is sentinel_context


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(runtime_context):
    """dispatch_command should call the executor associated with the command."""

    calls = []
    spec = cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: calls.append(c) or 0)
    result = cli.dispatch_command(runtime_context, argparse.Namespace(command="alpha"), {"alpha": spec})
    assert result == 0
    assert calls == [runtime_context]


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="unknown"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(), {})


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_translate_add_store_returns_payload():
    """translate_add_store should convert the tax type to its enum."""

    args = argparse.Namespace(store_name="A", company_name="B", tax_type="一般纳税人", income="100")
    payload = cli.translate_add_store(args)
    assert payload["tax_type"] is constants.StoreTaxType.GENERAL
    assert payload["quarter_income"] == "100"


def test_translate_edit_supplier_leaves_unset_fields_as_none():
    """Only the options given on the command line should change."""

    args = argparse.Namespace(name=None, entity_type=None, limit="5000", status="Full")
    payload = cli.translate_edit_supplier(args)
    assert payload == {
        "name": None,
        "entity_type": None,
        "quarterly_limit": "5000",
        "status": constants.SupplierStatus.FULL,
    }


def test_translate_payment_maps_owner():
    """translate_payment should target the factory owner keyword."""

    args = argparse.Namespace(owner="Factory A", amount="10", date_iso="2025-08-01", store_id=None)
    assert cli.translate_payment(args)["factory_owner"] == "Factory A"


# ---------------------------------------------------------------------------
# Result reporting
# ---------------------------------------------------------------------------


def test_report_result_success(capsys):
    """Successful results print their description and exit with 0."""

    assert cli.report_result(core_logic.OperationResult.success("x"), lambda value: f"done {value}") == 0
    assert capsys.readouterr().out.strip() == "done x"


def test_report_result_rejection_prints_details(capsys):
    """Rejections exit with 2 and print the figures behind them."""

    error = ValidationError("amount-exceeds-remaining", "Too much", details={"remaining": "100"})
    assert cli.report_result(core_logic.OperationResult.failure(error), str) == 2
    out = capsys.readouterr().out
    assert "[ERROR] Too much" in out
    assert "remaining: 100" in out


def test_report_result_unsaved_change_exits_with_one(capsys):
    """An applied change that was not saved still returns a non-zero code."""

    result = core_logic.OperationResult.success("x", persistence_error=PersistenceError("disk full"))
    assert cli.report_result(result, str) == 1
    assert "[WARNING]" in capsys.readouterr().out


def test_report_result_persistence_failure_exits_with_one():
    """Failed exports are storage problems, not rejections."""

    assert cli.report_result(core_logic.OperationResult.failure(PersistenceError("nope")), str) == 1


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_invoice_invokes_facade(runtime_context, monkeypatch):
    """run_invoice should delegate to the facade with translated arguments."""

    payload = {"store_id": "s", "supplier_id": "p", "amount": "1", "date_iso": "2025-08-01"}
    monkeypatch.setattr(cli, "translate_invoice", lambda value: payload)
    called: dict[str, object] = {}

    def fake_submit(context: core_logic.RuntimeContext, **data: object):
        called["context"] = context
        called["data"] = data
        return core_logic.OperationResult.failure(NotFoundError("store", "s"))

    monkeypatch.setattr(cli.core_logic, "submit_invoice", fake_submit)
    assert cli.run_invoice(runtime_context, argparse.Namespace()) == 2
    assert called["context"] is runtime_context
    assert called["data"] == payload


def test_run_analysis_prints_json(runtime_context, capsys):
    """run_analysis should print a parseable JSON document."""

    assert cli.run_analysis(runtime_context, argparse.Namespace()) == 0
    document = json.loads(capsys.readouterr().out)
    assert set(document) == {"stores", "factories", "taxRule"}


def test_run_summary_prints_rankings(runtime_context, capsys):
    """The summary lists gap and remaining-quota rankings."""

    core_logic.add_store(runtime_context, store_name="North", company_name="North Co", quarter_income="900")
    core_logic.add_supplier(runtime_context, name="Maker", owner="Factory A", quarterly_limit="700")
    assert cli.run_summary(runtime_context, argparse.Namespace()) == 0
    out = capsys.readouterr().out
    assert "Quarter: 2025Q3" in out
    assert "Gap\tNorth\t900" in out
    assert "Quota\tFactory A\t700" in out


def test_run_factories_prints_total_limit_per_owner(runtime_context, capsys):
    """Each factory line carries the summed quarterly limit of its suppliers."""

    core_logic.add_supplier(runtime_context, name="Maker", owner="Factory A", quarterly_limit="700")
    core_logic.add_supplier(runtime_context, name="Maker Two", owner="Factory A", quarterly_limit="300")
    core_logic.record_payment(runtime_context, factory_owner="Factory A", amount="250", date_iso="2025-08-01")
    assert cli.run_factories(runtime_context, argparse.Namespace()) == 0
    out = capsys.readouterr().out
    assert "Factory A\tlimit=1000\tpaid=250\tinvoiced=0\tpending=250" in out


def test_run_export_csv_defaults_to_workbook_directory(runtime_context, capsys):
    """Without --directory the CSV files land beside the workbook."""

    assert cli.run_export_csv(runtime_context, argparse.Namespace(directory=None)) == 0
    assert (runtime_context.settings.data_file.parent / "店铺数据_2025Q3.csv").exists()
    assert "Wrote" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (ValidationError("invalid-amount", "invalid"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_executes_specified_command(monkeypatch, runtime_context):
    """main should execute the command parsed from argv."""

    parser = _stub_parser(command="summary")
    command_table = {"summary": cli.CommandSpec("summary", "help", lambda _: parser, lambda *_: 0)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: runtime_context)

    called = {}

    def fake_dispatch(
        context: core_logic.RuntimeContext, args: argparse.Namespace, table: Mapping[str, cli.CommandSpec]
    ) -> int:
        called["context"] = context
        called["args"] = args
        return 0

    monkeypatch.setattr(cli, "dispatch_command", fake_dispatch)
    assert cli.main(["summary"]) == 0
    assert called["context"] is runtime_context
    assert called["args"].command == "summary"


def test_main_handles_load_errors(monkeypatch):
    """main should turn loading failures into exit codes."""

    parser = _stub_parser(command="summary")
    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: {})

    def fake_load(path=None):
        raise FileNotFoundError("config.ini")

    monkeypatch.setattr(cli, "load_runtime_context", fake_load)
    assert cli.main(["summary"]) == 3


def test_main_end_to_end_with_config(config_file, capsys):
    """Commands run against a real workbook and are saved between runs."""

    base = ["--config", str(config_file)]
    assert cli.main([*base, "add-store", "--store-name", "North", "--company-name", "North Co", "--income", "9000"]) == 0
    assert cli.main([*base, "add-supplier", "--name", "Maker", "--owner", "Factory A", "--limit", "1000"]) == 0

    context = core_logic.load_runtime_context(config_file)
    store_id = context.state.stores.list()[0].store_id
    supplier_id = context.state.suppliers.list()[0].supplier_id
    invoice = ["invoice", "--store-id", store_id, "--supplier-id", supplier_id, "--date", "2025-08-01"]
    capsys.readouterr()

    assert cli.main([*base, *invoice, "--amount", "600"]) == 0
    assert cli.main([*base, *invoice, "--amount", "600"]) == 2
    assert "quota" in capsys.readouterr().out.lower()

    reloaded = core_logic.load_runtime_context(config_file)
    assert len(reloaded.state.invoices) == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse(register, argv: list[str]) -> argparse.Namespace:
    """Register a single command on a fresh parser and parse ``argv``."""

    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = register(subparsers)
    spec.register(subparsers)
    return parser.parse_args(argv)


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command, config=None)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
