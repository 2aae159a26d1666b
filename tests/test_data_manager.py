"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from conftest import make_invoice, make_payment, make_store, make_supplier
from quota_ledger import constants, data_manager
from quota_ledger.setup_workbook import create_ledger_workbook, main as setup_main


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_dir = tmp_path / "nested"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.ini"
    config_file.write_text("[System]\nDataFile=quota_ledger.xlsx")
    monkeypatch.chdir(config_dir)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "DatasetName") == "Test Ledger"
    assert parser.get("Defaults", "InitialQuarter") == "2025Q3"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True)
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.period_source is constants.PeriodSource.LABEL
    assert settings.fallback_file == (bundle.config_path.parent / data_manager.DEFAULT_FALLBACK_FILE).resolve()


def test_parse_settings_quota_section_is_optional(tmp_path):
    """Without [Quota] the calendar window and statutory limit apply."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=ledger.xlsx\nDatasetName=X\nSchemaVersion=1.0.0\n[Defaults]\nInitialQuarter=2025Q3\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.period_source is constants.PeriodSource.CALENDAR
    assert settings.clear_expense_breakdown is False
    assert settings.statutory_limit == Decimal("280000")


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_bad_limit(tmp_path):
    """A non-numeric StatutoryLimit should raise ValueError."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=l.xlsx\nDatasetName=X\nSchemaVersion=1.0.0\n"
        "[Defaults]\nInitialQuarter=2025Q3\n[Quota]\nStatutoryLimit=lots\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_create_ledger_workbook_writes_headers_and_settings(ledger_workbook_path):
    """A new workbook should carry every sheet and the seeded quarter."""

    workbook = openpyxl.load_workbook(ledger_workbook_path)
    assert set(data_manager.SHEET_COLUMNS) <= set(workbook.sheetnames)
    header = [cell.value for cell in workbook[constants.SheetName.INVOICES.value][1]]
    assert header == list(data_manager.INVOICE_COLUMNS)
    assert data_manager.read_settings(workbook)[data_manager.SETTING_CURRENT_QUARTER] == "2025Q3"


def test_create_ledger_workbook_refuses_overwrite(ledger_workbook_path):
    """Existing files are only replaced when overwrite is requested."""

    with pytest.raises(FileExistsError):
        create_ledger_workbook(ledger_workbook_path)


def test_setup_main_creates_workbook_from_config(tmp_path, capsys):
    """The setup script should create the workbook named in config.ini."""

    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile=fresh.xlsx\nDatasetName=X\nSchemaVersion=1.0.0\n[Defaults]\nInitialQuarter=2026Q1\n"
    )
    assert setup_main(["--config", str(config_path)]) == 0
    assert (tmp_path / "fresh.xlsx").exists()
    assert setup_main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out


def test_open_workbook_returns_openpyxl_instance(ledger_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(ledger_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_load_dataset_on_fresh_workbook_is_empty(ledger_workbook_path):
    """A fresh workbook loads as an empty ledger in its initial quarter."""

    payload = data_manager.load_dataset(data_manager.open_workbook(ledger_workbook_path))
    assert payload.current_quarter == "2025Q3"
    assert payload.available_quarters == ("2025Q3",)
    assert payload.stores == ()
    assert payload.quarter_archive == {}


def test_load_dataset_creates_nothing_for_missing_sheets():
    """Workbooks from older releases may lack sheets; they read as empty."""

    workbook = openpyxl.Workbook()
    payload = data_manager.load_dataset(workbook, default_quarter="2024Q2")
    assert payload.current_quarter == "2024Q2"
    assert payload.factory_owners == ()


def test_write_and_load_dataset_preserves_archive(ledger_workbook_path):
    """Live rows, archived quarters and the owner registry survive a save."""

    breakdown = data_manager.ExpenseBreakdown(rent=Decimal("1200.5"), fuel=Decimal("300"))
    verification = data_manager.VerificationResult(
        is_valid=False, issues=("amount mismatch", "name, with comma"), amount=Decimal("99.9")
    )
    payload = data_manager.DatasetPayload(
        current_quarter="2025Q4",
        stores=(make_store("s1", expense_breakdown=breakdown, quarter_expenses=Decimal("1500.5")),),
        suppliers=(make_supplier("p1"),),
        invoices=(make_invoice("i1", "1234.56", verification=verification, status="rejected"),),
        payments=(make_payment("pay1", "10", store_id="s1"),),
        quarter_archive={
            "2025Q3": data_manager.QuarterSnapshot(suppliers=(make_supplier("p1"),)),
            "2025Q2": data_manager.QuarterSnapshot(),
        },
        available_quarters=("2025Q2", "2025Q3", "2025Q4"),
        factory_owners=("Owner A", "Owner Z"),
    )
    workbook = data_manager.open_workbook(ledger_workbook_path)
    data_manager.write_dataset(workbook, payload)
    data_manager.save_workbook(workbook, ledger_workbook_path)

    loaded = data_manager.load_dataset(data_manager.refresh_workbook(ledger_workbook_path))
    assert loaded.current_quarter == "2025Q4"
    assert loaded.available_quarters == payload.available_quarters
    assert loaded.factory_owners == payload.factory_owners
    assert loaded.stores[0].expense_breakdown == breakdown
    assert loaded.invoices[0].verification == verification
    assert loaded.invoices[0].amount == Decimal("1234.56")
    assert loaded.payments[0].store_id == "s1"
    assert set(loaded.quarter_archive) == {"2025Q3", "2025Q2"}
    assert loaded.quarter_archive["2025Q2"] == data_manager.QuarterSnapshot()
    assert loaded.quarter_archive["2025Q3"].suppliers[0].supplier_id == "p1"


def test_write_dataset_replaces_previous_rows(ledger_workbook_path):
    """Rewriting the dataset should not leave stale rows behind."""

    workbook = data_manager.open_workbook(ledger_workbook_path)
    data_manager.write_dataset(
        workbook,
        data_manager.DatasetPayload(current_quarter="2025Q3", stores=(make_store("a"), make_store("b"))),
    )
    data_manager.write_dataset(
        workbook,
        data_manager.DatasetPayload(current_quarter="2025Q3", stores=(make_store("c"),)),
    )
    assert [row.store_id for row in data_manager.iter_stores(workbook)] == ["c"]


def test_deserialize_store_without_breakdown_cells():
    """Blank bucket columns mean no breakdown was ever entered."""

    row = data_manager.deserialize_store(["s1", "Shop", "Co", 100, 20, "小规模纳税人"])
    assert row.expense_breakdown is None
    assert row.quarter_income == Decimal("100")


def test_deserialize_supplier_defaults_missing_limit():
    """Rows without a limit fall back to the statutory limit."""

    row = data_manager.deserialize_supplier(["p1", "Name", "Owner", "个体工商户", None, None])
    assert row.quarterly_limit == Decimal("280000")
    assert row.status == "Active"
