"""Quarter identifiers and the quarter lifecycle operations.

Quarter labels have the form ``YYYYQn``. The lifecycle operations
(:func:`start_new_quarter`, :func:`switch_quarter` and
:func:`delete_quarter_snapshot`) each run as a single
:meth:`~quota_ledger.state.LedgerState.transaction`, so the archive, the live
collections and the quarter pointer change together or not at all.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional

from . import log
from .constants import STATUTORY_QUARTERLY_LIMIT, EntityType, InvoicePeriod, PeriodSource
from .data_manager import QuarterSnapshot
from .errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from .state import LedgerState

QUARTER_PATTERN = re.compile(r"^(\d{4})Q([1-4])$")
ZERO = Decimal("0")


@dataclass(frozen=True)
class QuarterRange:
    """Inclusive calendar date window of one quarter."""

    label: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class QuarterTransition:
    """What a lifecycle operation did.

    ``archived`` names the quarter whose live data was snapshotted, if any.
    ``restored`` is true when the new current quarter was loaded from the
    archive rather than reset.
    """

    previous_quarter: str
    current_quarter: str
    archived: Optional[str] = None
    restored: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_quarter != self.current_quarter


# ---------------------------------------------------------------------------
# Quarter arithmetic
# ---------------------------------------------------------------------------


def parse_quarter(label: str) -> tuple[int, int]:
    """Split ``YYYYQn`` into ``(year, n)``.

    Raises:
        ValidationError: ``invalid-quarter`` when the label is malformed.
    """

    match = QUARTER_PATTERN.match(str(label or "").strip())
    if match is None:
        raise ValidationError(
            "invalid-quarter", f"Quarter must look like 2025Q3, got {label!r}", details={"quarter": label}
        )
    return int(match.group(1)), int(match.group(2))


def format_quarter(year: int, number: int) -> str:
    return f"{year}Q{number}"


def next_quarter(label: str) -> str:
    """Return the quarter after ``label``; Q4 rolls over into Q1 of the next year."""

    year, number = parse_quarter(label)
    if number == 4:
        return format_quarter(year + 1, 1)
    return format_quarter(year, number + 1)


def sort_quarters(labels: Iterable[str]) -> list[str]:
    """Deduplicate and order quarter labels chronologically."""

    return sorted(set(labels), key=parse_quarter)


def quarter_range(label: str) -> QuarterRange:
    year, number = parse_quarter(label)
    start = date(year, 3 * (number - 1) + 1, 1)
    next_year, next_number = parse_quarter(next_quarter(label))
    end = date(next_year, 3 * (next_number - 1) + 1, 1) - timedelta(days=1)
    return QuarterRange(label=label, start=start, end=end)


def calendar_quarter_for(day: date) -> str:
    return format_quarter(day.year, (day.month - 1) // 3 + 1)


def active_quarter_range(period_source: PeriodSource, current_quarter: str, today: date) -> QuarterRange:
    """Date window new invoices must fall into.

    ``calendar`` uses the wall-clock quarter containing ``today``; ``label``
    uses the nominal range of the ledger's current quarter.
    """

    if PeriodSource(period_source) is PeriodSource.LABEL:
        return quarter_range(current_quarter)
    return quarter_range(calendar_quarter_for(today))


def classify_invoice_period(invoice_day: date, today: date) -> InvoicePeriod:
    """Place ``invoice_day`` relative to the wall-clock quarter of ``today``."""

    current = calendar_quarter_for(today)
    if quarter_range(current).contains(invoice_day):
        return InvoicePeriod.CURRENT
    if quarter_range(next_quarter(current)).contains(invoice_day):
        return InvoicePeriod.NEXT
    return InvoicePeriod.OTHER


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _add_available(state: "LedgerState", *labels: str) -> None:
    state.available_quarters = sort_quarters([*state.available_quarters, *labels])


def _reset_stores(state: "LedgerState", clear_expense_breakdown: bool) -> None:
    state.stores.replace_all(
        replace(
            row,
            quarter_income=ZERO,
            quarter_expenses=ZERO,
            expense_breakdown=None if clear_expense_breakdown else row.expense_breakdown,
        )
        for row in state.stores
    )


def _reset_for_uncharted_quarter(state: "LedgerState", clear_expense_breakdown: bool) -> None:
    _reset_stores(state, clear_expense_breakdown)
    state.invoices.clear()
    state.payments.clear()


def start_new_quarter(
    state: "LedgerState",
    *,
    statutory_limit: Decimal = STATUTORY_QUARTERLY_LIMIT,
    clear_expense_breakdown: bool = False,
) -> QuarterTransition:
    """Close the current quarter and open the one right after it.

    The next quarter is always ``current + 1``, whatever else the archive
    already holds. The live collections are snapshotted into the archive,
    store income and expenses drop to zero, individual suppliers get the
    statutory limit back, and invoices and payments are cleared.

    Args:
        state (LedgerState): Live ledger state.
        statutory_limit (Decimal): Limit restored for individual suppliers.
        clear_expense_breakdown (bool): Also drop each store's breakdown.

    Returns:
        QuarterTransition: Previous and new quarter labels.

    Raises:
        ValidationError: If the current quarter label is malformed.
    """

    with state.transaction("start-quarter"):
        previous = state.current_quarter
        upcoming = next_quarter(previous)

        state.archive[previous] = state.capture_snapshot()
        _add_available(state, previous, upcoming)
        state.current_quarter = upcoming

        _reset_stores(state, clear_expense_breakdown)
        state.suppliers.replace_all(
            replace(row, quarterly_limit=statutory_limit)
            if row.entity_type == EntityType.INDIVIDUAL.value
            else row
            for row in state.suppliers
        )
        state.invoices.clear()
        state.payments.clear()

    log.info("Closed quarter %s and started %s", previous, upcoming)
    return QuarterTransition(previous_quarter=previous, current_quarter=upcoming, archived=previous)


def switch_quarter(
    state: "LedgerState",
    target: str,
    *,
    clear_expense_breakdown: bool = False,
) -> QuarterTransition:
    """Make ``target`` the current quarter.

    The live data is snapshotted under the current label first, so switching
    away and back is lossless. A target without a snapshot gets a best-effort
    reset: suppliers stay, invoices and payments are cleared, and store
    income and expenses drop to zero.

    Raises:
        ValidationError: If ``target`` is not a quarter label.
    """

    parse_quarter(target)
    previous = state.current_quarter
    if target == previous:
        log.debug("Quarter %s already current; nothing to switch", target)
        return QuarterTransition(previous_quarter=previous, current_quarter=previous)

    with state.transaction("switch-quarter"):
        previous = state.current_quarter
        state.archive[previous] = state.capture_snapshot()
        snapshot = state.archive.get(target)
        if snapshot is not None:
            state.load_snapshot(snapshot)
        else:
            _reset_for_uncharted_quarter(state, clear_expense_breakdown)
        _add_available(state, previous, target)
        state.current_quarter = target

    if snapshot is None:
        log.warning("Quarter %s has no snapshot; started it from a reset copy of %s", target, previous)
    else:
        log.info("Switched from quarter %s to %s", previous, target)
    return QuarterTransition(
        previous_quarter=previous,
        current_quarter=target,
        archived=previous,
        restored=snapshot is not None,
    )


def delete_quarter_snapshot(
    state: "LedgerState",
    quarter: str,
    *,
    clear_expense_breakdown: bool = False,
) -> QuarterTransition:
    """Forget ``quarter``: drop its snapshot and its available-quarter entry.

    Deleting the current quarter moves to the latest remaining quarter without
    snapshotting the deleted data first. When no quarter remains, the live
    collections are cleared and the label stays as the only available quarter.

    Raises:
        NotFoundError: If the quarter is neither archived, available nor current.
    """

    with state.transaction("delete-quarter"):
        previous = state.current_quarter
        known = quarter in state.archive or quarter in state.available_quarters or quarter == previous
        if not known:
            raise NotFoundError("quarter", quarter)

        state.archive.pop(quarter, None)
        state.available_quarters = [label for label in state.available_quarters if label != quarter]

        restored = False
        if quarter == previous:
            remaining = sort_quarters(state.available_quarters)
            if remaining:
                latest = remaining[-1]
                snapshot = state.archive.get(latest)
                if snapshot is not None:
                    state.load_snapshot(snapshot)
                    restored = True
                else:
                    _reset_for_uncharted_quarter(state, clear_expense_breakdown)
                state.current_quarter = latest
            else:
                state.load_snapshot(QuarterSnapshot())
                state.available_quarters = [previous]

    log.info("Deleted quarter %s; current quarter is %s", quarter, state.current_quarter)
    return QuarterTransition(previous_quarter=previous, current_quarter=state.current_quarter, restored=restored)


def quarter_overview(state: "LedgerState") -> list[tuple[str, bool, bool]]:
    """``(label, has_snapshot, is_current)`` for every known quarter, oldest first."""

    view = state.view()
    archived = set(state.archived_labels())
    labels = sort_quarters([*view.available_quarters, *archived, view.current_quarter])
    return [(label, label in archived, label == view.current_quarter) for label in labels]
