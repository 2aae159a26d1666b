"""Illustrative quarterly tax estimate for one store.

Rates model the two VAT regimes stores are registered under. The figures are
an operator aid for judging how much invoice coverage is worth, not a filing.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .constants import StoreTaxType
from .data_manager import StoreRow

GENERAL_VAT_RATE = Decimal("0.13")
SMALL_SCALE_VAT_RATE = Decimal("0.01")
INPUT_VAT_RATE = Decimal("0.01")
GENERAL_SURTAX_RATE = Decimal("0.12")
SMALL_SCALE_SURTAX_RATE = Decimal("0.06")
SMALL_PROFIT_LIMIT = Decimal("3000000")
SMALL_PROFIT_INCOME_TAX_RATE = Decimal("0.05")
STANDARD_INCOME_TAX_RATE = Decimal("0.25")

ZERO = Decimal("0")
ONE = Decimal("1")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class TaxEstimate:
    vat: Decimal
    surtax: Decimal
    taxable_profit: Decimal
    income_tax: Decimal

    @property
    def total(self) -> Decimal:
        return self.vat + self.surtax + self.income_tax


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def income_tax_for(taxable_profit: Decimal) -> Decimal:
    """Small-profit rate up to the threshold, standard rate above it."""

    if taxable_profit <= ZERO:
        return ZERO
    rate = SMALL_PROFIT_INCOME_TAX_RATE if taxable_profit <= SMALL_PROFIT_LIMIT else STANDARD_INCOME_TAX_RATE
    return taxable_profit * rate


def estimate_store_tax(store: StoreRow, total_invoiced: Decimal) -> TaxEstimate:
    """Estimate VAT, surtax and income tax for ``store``.

    General taxpayers pay output VAT on income net of 13% VAT and deduct 1%
    input VAT carried by the received invoices. Small-scale taxpayers pay a
    flat 1% on income net of VAT and deduct invoices at face value from
    profit.

    Args:
        store (StoreRow): Store whose income and expenses are used.
        total_invoiced (Decimal): Sum of invoices the store received.

    Returns:
        TaxEstimate: Amounts rounded to cents.
    """

    income = store.quarter_income
    expenses = store.quarter_expenses

    if store.tax_type == StoreTaxType.GENERAL.value:
        output_vat = income / (ONE + GENERAL_VAT_RATE) * GENERAL_VAT_RATE
        input_vat = total_invoiced / (ONE + INPUT_VAT_RATE) * INPUT_VAT_RATE
        vat = max(ZERO, output_vat - input_vat)
        surtax = vat * GENERAL_SURTAX_RATE
        taxable_profit = income / (ONE + GENERAL_VAT_RATE) - expenses - total_invoiced / (ONE + INPUT_VAT_RATE)
    else:
        vat = income / (ONE + SMALL_SCALE_VAT_RATE) * SMALL_SCALE_VAT_RATE
        surtax = vat * SMALL_SCALE_SURTAX_RATE
        taxable_profit = income - expenses - total_invoiced

    return TaxEstimate(
        vat=_cents(vat),
        surtax=_cents(surtax),
        taxable_profit=_cents(taxable_profit),
        income_tax=_cents(income_tax_for(taxable_profit)),
    )
