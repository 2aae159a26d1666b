"""Unit tests for the derived ledger figures."""

from __future__ import annotations

from decimal import Decimal

from conftest import (
    OTHER_STORE_ID,
    OTHER_SUPPLIER_ID,
    STORE_ID,
    SUPPLIER_ID,
    make_invoice,
    make_payment,
    make_store,
    make_supplier,
)
from quota_ledger import constants, ledger
from quota_ledger.data_manager import QuarterSnapshot


def _view(**parts) -> QuarterSnapshot:
    values = dict(
        stores=(make_store(STORE_ID), make_store(OTHER_STORE_ID, quarter_income=Decimal("200000"))),
        suppliers=(
            make_supplier(SUPPLIER_ID),
            make_supplier(OTHER_SUPPLIER_ID, owner="Owner B", quarterly_limit=Decimal("100000")),
        ),
    )
    values.update(parts)
    return QuarterSnapshot(**values)


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def test_store_gap_subtracts_invoices_from_profit():
    """Gap should be income minus expenses minus invoices received."""

    view = _view(invoices=(make_invoice("i1", "150000"),))
    store = view.stores[0]
    assert ledger.store_invoiced_total(view, STORE_ID) == Decimal("150000")
    assert ledger.store_gap(view, store) == Decimal("250000")


def test_store_gap_never_goes_below_zero():
    """Over-covered stores should report a zero gap."""

    view = _view(invoices=(make_invoice("i1", "450000", supplier_id="other"),))
    assert ledger.store_gap(view, view.stores[0]) == Decimal("0")


def test_supplier_remaining_quota_may_be_negative():
    """A limit cut after admission should leave a negative remaining quota."""

    supplier = make_supplier(SUPPLIER_ID, quarterly_limit=Decimal("100000"))
    view = _view(suppliers=(supplier,), invoices=(make_invoice("i1", "120000"),))
    assert ledger.supplier_remaining_quota(view, supplier) == Decimal("-20000")


def test_factory_remaining_quota_clamps_each_supplier():
    """An over-limit supplier should not eat into its siblings' quota."""

    over = make_supplier("s1", quarterly_limit=Decimal("100000"))
    sibling = make_supplier("s2", quarterly_limit=Decimal("50000"))
    view = _view(suppliers=(over, sibling), invoices=(make_invoice("i1", "120000", supplier_id="s1"),))
    assert ledger.factory_remaining_quota(view, "Owner A") == Decimal("50000")
    assert ledger.factory_total_limit(view, "Owner A") == Decimal("150000")


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------


def test_describe_invoice_uses_placeholders_for_deleted_references():
    """Dangling store and supplier ids should render as unknown."""

    view = _view(stores=(), suppliers=())
    line = ledger.describe_invoice(view, make_invoice("i1", "10"))
    assert line.store_name == constants.UNKNOWN_STORE
    assert line.company_name == constants.UNKNOWN_COMPANY
    assert line.supplier_name == constants.UNKNOWN_SUPPLIER
    assert line.factory_owner == constants.UNKNOWN_FACTORY


def test_payment_factory_owner_resolves_legacy_supplier_payments():
    """Legacy payments should settle the owner of their supplier."""

    view = _view()
    legacy = make_payment("p1", "10", factory_owner=None, supplier_id=OTHER_SUPPLIER_ID)
    assert ledger.payment_factory_owner(view, legacy) == "Owner B"
    orphan = make_payment("p2", "10", factory_owner=None, supplier_id="gone")
    assert ledger.payment_factory_owner(view, orphan) == constants.UNKNOWN_FACTORY


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------


def test_supplier_usage_flags_high_risk_and_full():
    """Usage above 85% is high risk; usage at the limit is full."""

    supplier = make_supplier(SUPPLIER_ID, quarterly_limit=Decimal("100000"))
    risky = ledger.supplier_usage(_view(invoices=(make_invoice("i1", "90000"),)), supplier)
    assert risky.percent_used == Decimal("90.00")
    assert risky.high_risk and not risky.full

    full = ledger.supplier_usage(_view(invoices=(make_invoice("i1", "100000"),)), supplier)
    assert full.full
    assert full.remaining == Decimal("0")


def test_supplier_usage_caps_percent_at_hundred():
    """Percent used is capped even when the supplier is over its limit."""

    supplier = make_supplier(SUPPLIER_ID, quarterly_limit=Decimal("100000"))
    usage = ledger.supplier_usage(_view(invoices=(make_invoice("i1", "150000"),)), supplier)
    assert usage.percent_used == Decimal("100.00")
    assert usage.remaining == Decimal("-50000")


def test_integrity_warnings_report_over_limit_suppliers():
    """Only suppliers invoiced beyond their limit should be reported."""

    supplier = make_supplier(SUPPLIER_ID, quarterly_limit=Decimal("100000"))
    view = _view(suppliers=(supplier,), invoices=(make_invoice("i1", "130000"),))
    warnings = ledger.integrity_warnings(view)
    assert len(warnings) == 1
    assert warnings[0].excess == Decimal("30000")
    assert ledger.integrity_warnings(_view()) == []


def test_factory_settlements_aggregate_paid_and_invoiced():
    """Settlements should combine payments and invoices per owner."""

    view = _view(
        invoices=(make_invoice("i1", "30000"), make_invoice("i2", "5000", supplier_id=OTHER_SUPPLIER_ID)),
        payments=(make_payment("p1", "40000"), make_payment("p2", "2000", factory_owner="Owner C")),
    )
    settlements = {row.owner: row for row in ledger.factory_settlements(view, ["Owner A", "Owner B"])}
    assert settlements["Owner A"].paid == Decimal("40000")
    assert settlements["Owner A"].invoiced == Decimal("30000")
    assert settlements["Owner A"].pending == Decimal("10000")
    assert settlements["Owner B"].pending == Decimal("-5000")
    assert settlements["Owner C"].invoiced == Decimal("0")


def test_summarize_kpis_clamps_available_quota_per_supplier():
    """The dashboard total should not let an over-limit supplier go negative."""

    over = make_supplier(SUPPLIER_ID, quarterly_limit=Decimal("100000"))
    view = _view(
        suppliers=(over, make_supplier(OTHER_SUPPLIER_ID, quarterly_limit=Decimal("100000"))),
        invoices=(make_invoice("i1", "120000"),),
    )
    summary = ledger.summarize_kpis(view)
    assert summary.total_income == Decimal("700000")
    assert summary.total_expenses == Decimal("200000")
    assert summary.total_invoiced == Decimal("120000")
    assert summary.total_available_quota == Decimal("100000")
    assert summary.total_gap == Decimal("380000")
    assert (summary.store_count, summary.supplier_count, summary.invoice_count) == (2, 2, 1)


def test_gap_ranking_orders_largest_first():
    """Stores should be ranked by descending gap."""

    ranked = ledger.gap_ranking(_view(), limit=1)
    assert [store.store_id for store, _ in ranked] == [STORE_ID]


def test_factory_quota_ranking_orders_owners_by_remaining_quota():
    """Owners should be ranked by the quota they still have."""

    view = _view(invoices=(make_invoice("i1", "250000"),))
    assert ledger.factory_quota_ranking(view) == [("Owner B", Decimal("100000")), ("Owner A", Decimal("30000"))]
    assert ledger.factory_quota_ranking(view, limit=1)[0][0] == "Owner B"


def test_group_suppliers_by_owner_lists_registered_owners_first():
    """Registered owners come first, even without suppliers."""

    groups = ledger.group_suppliers_by_owner(_view(), ["Owner Z", "Owner A"])
    assert [group.owner for group in groups] == ["Owner Z", "Owner A", "Owner B"]
    assert groups[0].suppliers == ()
    assert groups[2].registered is False


def test_search_stores_matches_store_or_company():
    """Search should be case-insensitive over both names."""

    view = _view()
    assert [row.store_id for row in ledger.search_stores(view, "company store-2")] == [OTHER_STORE_ID]
    assert len(ledger.search_stores(view, "  ")) == 2
