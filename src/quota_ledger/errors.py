"""Error taxonomy for the quota ledger.

Component modules raise these exceptions; :mod:`quota_ledger.core_logic`
turns them into :class:`~quota_ledger.core_logic.OperationResult` failures so
callers never see an unhandled error from a public operation.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class LedgerError(Exception):
    """Base class for every error raised by the ledger components."""


class ValidationError(LedgerError):
    """Raised when a request is user-correctable and must not be admitted.

    ``code`` is a stable machine identifier (for example ``quota-exhausted``)
    and ``details`` carries the figures that explain the rejection, such as
    the supplier's limit, used and remaining quota.
    """

    def __init__(self, code: str, message: Optional[str] = None, *, details: Optional[Mapping[str, Any]] = None) -> None:
        self.code = code
        self.details: dict[str, Any] = dict(details or {})
        super().__init__(message or code)


class NotFoundError(LedgerError):
    """Raised when a referenced store, supplier, record or quarter is unknown."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"Unknown {kind} id: {entity_id}")


class PersistenceError(LedgerError):
    """Raised when the storage collaborator could not save or load state."""


__all__ = [
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "PersistenceError",
]
