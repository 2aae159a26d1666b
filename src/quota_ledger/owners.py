"""Factory/owner registry and the operations that cascade owner names.

Owner names are plain strings on supplier and payment rows. Every piece of
name matching lives in this module so the rest of the ledger never compares
owner names directly.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Iterable, Iterator, Optional

from . import log
from .entity_store import require_cell_text
from .errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from .state import LedgerState


def normalize_owner_name(raw: Optional[str]) -> str:
    """Strip surrounding whitespace and reject empty names.

    Raises:
        ValidationError: ``missing-field`` when nothing is left,
            ``invalid-text`` for control characters.
    """

    name = (raw or "").strip()
    if not name:
        raise ValidationError("missing-field", "owner name is required", details={"field": "owner"})
    require_cell_text(name, "owner")
    return name


class OwnerRegistry:
    """Ordered set of factory owner display names."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._names: list[str] = []
        for name in names:
            self.add(name)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names))

    def __len__(self) -> int:
        return len(self._names)

    def add(self, name: str) -> bool:
        """Append ``name`` unless present; return whether it was added."""

        if name in self._names:
            return False
        self._names.append(name)
        return True

    def remove(self, name: str) -> None:
        try:
            self._names.remove(name)
        except ValueError:
            raise NotFoundError("owner", name) from None

    def rename(self, old_name: str, new_name: str) -> None:
        """Replace ``old_name`` in place; merge when ``new_name`` is already listed."""

        if old_name not in self._names:
            self.add(new_name)
            return
        if new_name in self._names:
            self._names.remove(old_name)
            return
        self._names[self._names.index(old_name)] = new_name

    def names(self) -> tuple[str, ...]:
        return tuple(self._names)


def register_owner(state: "LedgerState", name: str) -> str:
    """Add an owner with no suppliers yet and return the normalised name."""

    owner = normalize_owner_name(name)
    with state.transaction("register-owner"):
        added = state.owners.add(owner)
    if added:
        log.info("Registered factory owner '%s'", owner)
    return owner


def rename_owner(state: "LedgerState", old_name: str, new_name: str) -> int:
    """Rename an owner across suppliers, payments and the registry.

    All replacement rows are built before anything is written, and the writes
    happen inside one transaction, so no reader ever sees a mix of old and new
    names.

    Args:
        state (LedgerState): Live ledger state.
        old_name (str): Name to replace.
        new_name (str): Replacement name.

    Returns:
        int: Number of supplier and payment rows that were rewritten.

    Raises:
        ValidationError: If either name is empty.
        NotFoundError: If ``old_name`` is neither registered nor referenced.
    """

    old = normalize_owner_name(old_name)
    new = normalize_owner_name(new_name)
    if old == new:
        return 0

    with state.transaction("rename-owner"):
        suppliers = [
            replace(row, owner=new) for row in state.suppliers.list(lambda row: row.owner == old)
        ]
        payments = [
            replace(row, factory_owner=new)
            for row in state.payments.list(lambda row: row.factory_owner == old)
        ]
        if not suppliers and not payments and old not in state.owners:
            raise NotFoundError("owner", old)

        # replace_all keeps collection order and skips row validation
        updated_suppliers = {row.supplier_id: row for row in suppliers}
        state.suppliers.replace_all(
            updated_suppliers.get(row.supplier_id, row) for row in state.suppliers
        )
        updated_payments = {row.payment_id: row for row in payments}
        state.payments.replace_all(
            updated_payments.get(row.payment_id, row) for row in state.payments
        )
        state.owners.rename(old, new)

    log.info(
        "Renamed owner '%s' to '%s' (%d suppliers, %d payments)", old, new, len(suppliers), len(payments)
    )
    return len(suppliers) + len(payments)


def delete_owner(state: "LedgerState", name: str) -> None:
    """Remove ``name`` from the registry only.

    Suppliers and payments that still reference the name stay untouched and
    keep aggregating under it.
    """

    owner = normalize_owner_name(name)
    with state.transaction("delete-owner"):
        state.owners.remove(owner)
    log.info("Deleted factory owner '%s' from the registry", owner)
