"""Derived reports: CSV exports and the assistant analysis payload.

CSV files start with a UTF-8 byte order mark so spreadsheet tools detect the
encoding, and each file carries detail sections after a blank line. Column
headers are the ones downstream spreadsheets already consume.
"""

from __future__ import annotations

import csv
import io
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Iterable, Sequence

from . import log
from .constants import STATUTORY_QUARTERLY_LIMIT, UNKNOWN_FACTORY
from .data_manager import QuarterSnapshot
from .ledger import (
    describe_invoice,
    payment_factory_owner,
    store_gap,
    store_invoiced_total,
    store_profit,
    supplier_invoiced_total,
    supplier_remaining_quota,
)

BOM = "\ufeff"
CENT = Decimal("0.01")

STORE_HEADER = ("店铺名称", "公司名称", "纳税人类型", "季度收入", "季度支出", "已收发票", "待抵扣缺口")
STORE_INVOICE_TITLE = "发票明细："
STORE_INVOICE_HEADER = ("开票日期", "店铺名称", "店铺绑定公司", "开票主体", "开票主体所属工厂", "开票金额")

SUPPLIER_HEADER = ("工厂负责人", "开票单位", "类型", "季度限额", "已开票金额", "剩余额度")
SUPPLIER_INVOICE_TITLE = "开票明细："
SUPPLIER_INVOICE_HEADER = ("开票日期", "工厂负责人", "开票单位", "开票店铺", "开票店铺绑定公司", "开票金额")
PAYMENT_TITLE = "付款明细："
PAYMENT_HEADER = ("付款日期", "工厂负责人", "付款金额", "备注")
STORE_PAYMENT_NOTE = "店铺付款"
OTHER_PAYMENT_NOTE = "其他付款"


def store_csv_name(quarter: str) -> str:
    return f"店铺数据_{quarter}.csv"


def supplier_csv_name(quarter: str) -> str:
    return f"工厂数据_{quarter}.csv"


def plain_number(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros (``500000``, ``1234.5``)."""

    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


def money_2dp(value: Decimal) -> str:
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _render(sections: Iterable[Sequence[Sequence[str]]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for index, rows in enumerate(sections):
        if index:
            writer.writerow([])
        writer.writerows(rows)
    return BOM + buffer.getvalue()


def render_store_csv(view: QuarterSnapshot) -> str:
    """Store-centric export: one row per store, then every invoice.

    The gap column here is the raw difference and may be negative; only the
    dashboard metric clamps it.
    """

    summary = [STORE_HEADER]
    for store in view.stores:
        invoiced = store_invoiced_total(view, store.store_id)
        summary.append(
            (
                store.store_name,
                store.company_name,
                store.tax_type,
                plain_number(store.quarter_income),
                plain_number(store.quarter_expenses),
                plain_number(invoiced),
                plain_number(store_profit(store) - invoiced),
            )
        )

    details: list[Sequence[str]] = [(STORE_INVOICE_TITLE,), STORE_INVOICE_HEADER]
    for invoice in view.invoices:
        line = describe_invoice(view, invoice)
        details.append(
            (
                invoice.date_iso,
                line.store_name,
                line.company_name,
                line.supplier_name,
                line.factory_owner,
                money_2dp(invoice.amount),
            )
        )
    return _render([summary, details])


def render_supplier_csv(view: QuarterSnapshot) -> str:
    """Supplier-centric export: supplier quota rows, invoices, then payments."""

    summary = [SUPPLIER_HEADER]
    for supplier in view.suppliers:
        summary.append(
            (
                supplier.owner,
                supplier.name,
                supplier.entity_type,
                plain_number(supplier.quarterly_limit),
                plain_number(supplier_invoiced_total(view, supplier.supplier_id)),
                plain_number(supplier_remaining_quota(view, supplier)),
            )
        )

    invoices: list[Sequence[str]] = [(SUPPLIER_INVOICE_TITLE,), SUPPLIER_INVOICE_HEADER]
    for invoice in view.invoices:
        line = describe_invoice(view, invoice)
        invoices.append(
            (
                invoice.date_iso,
                line.factory_owner,
                line.supplier_name,
                line.store_name,
                line.company_name,
                money_2dp(invoice.amount),
            )
        )

    payments: list[Sequence[str]] = [(PAYMENT_TITLE,), PAYMENT_HEADER]
    for payment in view.payments:
        payments.append(
            (
                payment.date_iso,
                payment_factory_owner(view, payment) or UNKNOWN_FACTORY,
                money_2dp(payment.amount),
                STORE_PAYMENT_NOTE if payment.store_id else OTHER_PAYMENT_NOTE,
            )
        )
    return _render([summary, invoices, payments])


def write_csv(content: str, destination: Path) -> Path:
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", encoding="utf-8", newline="") as handle:
        handle.write(content)
    log.info("Wrote CSV export %s", destination)
    return destination


def analysis_payload(view: QuarterSnapshot, statutory_limit: Decimal = STATUTORY_QUARTERLY_LIMIT) -> dict[str, Any]:
    """Read-only view models handed to an external analysis assistant.

    Values are plain JSON types. Nothing the assistant returns flows back into
    the ledger.
    """

    return {
        "taxRule": f"个体工商户每季度有 {plain_number(statutory_limit)} 元的免税额度。",
        "stores": [
            {
                "name": store.company_name,
                "income": float(store.quarter_income),
                "currentInvoices": float(store_invoiced_total(view, store.store_id)),
                "gap": float(store_gap(view, store)),
            }
            for store in view.stores
        ],
        "factories": [
            {
                "name": supplier.name,
                "remainingQuota": float(supplier_remaining_quota(view, supplier)),
                "status": supplier.status,
            }
            for supplier in view.suppliers
        ],
    }
