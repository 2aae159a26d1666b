"""Fixtures shared by the quota ledger test modules.

Workbook-backed fixtures build a real ledger file under ``tmp_path``; the
``ledger_state`` fixture and the ``make_*`` helpers stay in memory.
"""

from __future__ import annotations

import argparse
import configparser
import itertools
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from quota_ledger import constants, core_logic, data_manager  # noqa: E402
from quota_ledger.setup_workbook import create_ledger_workbook  # noqa: E402
from quota_ledger.state import LedgerState  # noqa: E402

DEFAULT_QUARTER = "2025Q3"

STORE_ID = "store-1"
OTHER_STORE_ID = "store-2"
SUPPLIER_ID = "sup-1"
OTHER_SUPPLIER_ID = "sup-2"
COMPANY_SUPPLIER_ID = "sup-3"


@dataclass(frozen=True)
class ConfigBundle:
    config_path: Path
    workbook_path: Path


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Build ledger workbooks under ``tmp_path``; each call gets its own folder."""

    counter = itertools.count(1)

    def _build(*, initial_quarter: str = DEFAULT_QUARTER, filename: str = "quota_ledger.xlsx") -> Path:
        folder = tmp_path / f"ledger_{next(counter)}"
        return create_ledger_workbook(folder / filename, initial_quarter=initial_quarter)

    return _build


@pytest.fixture
def ledger_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    return workbook_factory()


@pytest.fixture
def config_factory(workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Write a ``config.ini`` next to a fresh workbook.

    The period source defaults to ``label`` so invoice dates inside 2025Q3 are
    admissible whatever the wall-clock date is.
    """

    def _build(
        *,
        make_relative: bool = False,
        dataset_name: str = "Test Ledger",
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        initial_quarter: str = DEFAULT_QUARTER,
        period_source: str = "label",
        clear_breakdown: bool = False,
    ) -> ConfigBundle:
        workbook_path = workbook_factory(initial_quarter=initial_quarter)
        parser = configparser.ConfigParser()
        parser.optionxform = str
        parser["System"] = {
            "DataFile": workbook_path.name if make_relative else str(workbook_path),
            "DatasetName": dataset_name,
            "SchemaVersion": schema_version,
        }
        parser["Defaults"] = {"InitialQuarter": initial_quarter}
        parser["Quota"] = {
            "PeriodSource": period_source,
            "ClearExpenseBreakdown": "true" if clear_breakdown else "false",
        }
        config_path = workbook_path.parent / "config.ini"
        with config_path.open("w", encoding="utf-8") as handle:
            parser.write(handle)
        return ConfigBundle(config_path=config_path, workbook_path=workbook_path)

    return _build


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# In-memory rows and state


def make_store(store_id: str = STORE_ID, **overrides) -> data_manager.StoreRow:
    values = dict(
        store_id=store_id,
        store_name=f"Store {store_id}",
        company_name=f"Company {store_id}",
        quarter_income=Decimal("500000"),
        quarter_expenses=Decimal("100000"),
        tax_type=constants.StoreTaxType.SMALL_SCALE.value,
    )
    values.update(overrides)
    return data_manager.StoreRow(**values)


def make_supplier(supplier_id: str = SUPPLIER_ID, **overrides) -> data_manager.SupplierRow:
    values = dict(
        supplier_id=supplier_id,
        name=f"Supplier {supplier_id}",
        owner="Owner A",
        entity_type=constants.EntityType.INDIVIDUAL.value,
        quarterly_limit=Decimal("280000"),
        status=constants.SupplierStatus.ACTIVE.value,
    )
    values.update(overrides)
    return data_manager.SupplierRow(**values)


def make_invoice(invoice_id: str, amount: str, **overrides) -> data_manager.InvoiceRow:
    values = dict(
        invoice_id=invoice_id,
        store_id=STORE_ID,
        supplier_id=SUPPLIER_ID,
        amount=Decimal(amount),
        date_iso="2025-07-15",
    )
    values.update(overrides)
    return data_manager.InvoiceRow(**values)


def make_payment(payment_id: str, amount: str, **overrides) -> data_manager.PaymentRow:
    values = dict(
        payment_id=payment_id,
        factory_owner="Owner A",
        amount=Decimal(amount),
        date_iso="2025-07-20",
    )
    values.update(overrides)
    return data_manager.PaymentRow(**values)


@pytest.fixture
def ledger_state() -> LedgerState:
    """Two stores, three suppliers under two owners, no invoices yet."""

    return LedgerState(
        DEFAULT_QUARTER,
        stores=[make_store(STORE_ID), make_store(OTHER_STORE_ID, quarter_income=Decimal("200000"))],
        suppliers=[
            make_supplier(SUPPLIER_ID),
            make_supplier(OTHER_SUPPLIER_ID, owner="Owner B", quarterly_limit=Decimal("100000")),
            make_supplier(
                COMPANY_SUPPLIER_ID,
                owner="Owner A",
                entity_type=constants.EntityType.COMPANY.value,
                quarterly_limit=Decimal("500000"),
            ),
        ],
        factory_owners=["Owner A", "Owner B"],
    )


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="quota-cli", description="Quota CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")
