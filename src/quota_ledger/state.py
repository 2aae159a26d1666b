"""Explicit state container for one ledger dataset.

:class:`LedgerState` owns the four live collections, the quarter pointer, the
quarter archive and the owner registry. Every mutation runs inside
:meth:`LedgerState.transaction`, which serialises writers with a re-entrant
lock, restores the previous contents if the block raises, and notifies change
listeners (for example the autosave hook) once the lock has been released.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Mapping, Optional

from . import log
from .data_manager import (
    DatasetPayload,
    InvoiceRow,
    PaymentRow,
    QuarterSnapshot,
    StoreRow,
    SupplierRow,
)
from .entity_store import (
    EntityCollection,
    invoice_collection,
    payment_collection,
    store_collection,
    supplier_collection,
)
from .owners import OwnerRegistry

ChangeListener = Callable[["LedgerState", str], None]


@dataclass(frozen=True)
class LedgerView(QuarterSnapshot):
    """Consistent read-only copy of the live collections and quarter pointer."""

    current_quarter: str = ""
    factory_owners: tuple[str, ...] = ()
    available_quarters: tuple[str, ...] = ()


@dataclass(frozen=True)
class _Checkpoint:
    current_quarter: str
    live: QuarterSnapshot
    archive: dict[str, QuarterSnapshot]
    available_quarters: list[str]
    factory_owners: tuple[str, ...]


class LedgerState:
    """Mutable ledger dataset guarded by a single writer lock."""

    def __init__(
        self,
        current_quarter: str,
        *,
        stores: Iterable[StoreRow] = (),
        suppliers: Iterable[SupplierRow] = (),
        invoices: Iterable[InvoiceRow] = (),
        payments: Iterable[PaymentRow] = (),
        archive: Optional[Mapping[str, QuarterSnapshot]] = None,
        available_quarters: Iterable[str] = (),
        factory_owners: Iterable[str] = (),
    ) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._listeners: list[ChangeListener] = []
        self.current_quarter = current_quarter
        self.stores: EntityCollection[StoreRow] = store_collection(stores)
        self.suppliers: EntityCollection[SupplierRow] = supplier_collection(suppliers)
        self.invoices: EntityCollection[InvoiceRow] = invoice_collection(invoices)
        self.payments: EntityCollection[PaymentRow] = payment_collection(payments)
        self.archive: dict[str, QuarterSnapshot] = dict(archive or {})
        self.available_quarters: list[str] = list(available_quarters) or [current_quarter]
        self.owners = OwnerRegistry(factory_owners)

    # ------------------------------------------------------------------
    # Construction from and conversion to the persistence payload
    # ------------------------------------------------------------------

    @classmethod
    def from_payload(cls, payload: DatasetPayload) -> "LedgerState":
        return cls(
            payload.current_quarter,
            stores=payload.stores,
            suppliers=payload.suppliers,
            invoices=payload.invoices,
            payments=payload.payments,
            archive=payload.quarter_archive,
            available_quarters=payload.available_quarters,
            factory_owners=payload.factory_owners,
        )

    def to_payload(self) -> DatasetPayload:
        with self._lock:
            return DatasetPayload(
                current_quarter=self.current_quarter,
                stores=self.stores.snapshot(),
                suppliers=self.suppliers.snapshot(),
                invoices=self.invoices.snapshot(),
                payments=self.payments.snapshot(),
                quarter_archive=dict(self.archive),
                available_quarters=tuple(self.available_quarters),
                factory_owners=self.owners.names(),
            )

    def replace_from_payload(self, payload: DatasetPayload, *, action: str = "import") -> None:
        """Swap every live and archived collection for the payload's contents."""

        with self.transaction(action):
            self.current_quarter = payload.current_quarter
            self.load_snapshot(
                QuarterSnapshot(
                    stores=tuple(payload.stores),
                    suppliers=tuple(payload.suppliers),
                    invoices=tuple(payload.invoices),
                    payments=tuple(payload.payments),
                )
            )
            self.archive = dict(payload.quarter_archive)
            self.available_quarters = list(payload.available_quarters) or [payload.current_quarter]
            self.owners = OwnerRegistry(payload.factory_owners)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def capture_snapshot(self) -> QuarterSnapshot:
        """Copy the live collections; rows are frozen so tuples suffice."""

        with self._lock:
            return QuarterSnapshot(
                stores=self.stores.snapshot(),
                suppliers=self.suppliers.snapshot(),
                invoices=self.invoices.snapshot(),
                payments=self.payments.snapshot(),
            )

    def load_snapshot(self, snapshot: QuarterSnapshot) -> None:
        with self._lock:
            self.stores.replace_all(snapshot.stores)
            self.suppliers.replace_all(snapshot.suppliers)
            self.invoices.replace_all(snapshot.invoices)
            self.payments.replace_all(snapshot.payments)

    def view(self) -> LedgerView:
        """Return a consistent copy of the live state for readers."""

        with self._lock:
            return LedgerView(
                stores=self.stores.snapshot(),
                suppliers=self.suppliers.snapshot(),
                invoices=self.invoices.snapshot(),
                payments=self.payments.snapshot(),
                current_quarter=self.current_quarter,
                factory_owners=self.owners.names(),
                available_quarters=tuple(self.available_quarters),
            )

    def archived_quarter(self, quarter: str) -> Optional[QuarterSnapshot]:
        with self._lock:
            return self.archive.get(quarter)

    def archived_labels(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self.archive)

    # ------------------------------------------------------------------
    # Transactions and listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        self._listeners.remove(listener)

    @contextmanager
    def transaction(self, action: str) -> Iterator["LedgerState"]:
        """Run a block of mutations as one atomic unit.

        Nested transactions join the outermost one. If the block raises, the
        state is restored to its contents at entry and no listener runs.

        Args:
            action (str): Short name of the mutation, passed to listeners.

        Yields:
            LedgerState: ``self``, for convenience.
        """

        with self._lock:
            outermost = self._depth == 0
            checkpoint = self._checkpoint() if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if checkpoint is not None:
                    self._restore(checkpoint)
                    log.debug("Rolled back '%s' after an error", action)
                raise
            finally:
                self._depth -= 1
        if outermost:
            self._notify(action)

    def _checkpoint(self) -> _Checkpoint:
        return _Checkpoint(
            current_quarter=self.current_quarter,
            live=self.capture_snapshot(),
            archive=dict(self.archive),
            available_quarters=list(self.available_quarters),
            factory_owners=self.owners.names(),
        )

    def _restore(self, checkpoint: _Checkpoint) -> None:
        self.current_quarter = checkpoint.current_quarter
        self.load_snapshot(checkpoint.live)
        self.archive = checkpoint.archive
        self.available_quarters = checkpoint.available_quarters
        self.owners = OwnerRegistry(checkpoint.factory_owners)

    def _notify(self, action: str) -> None:
        for listener in list(self._listeners):
            listener(self, action)
