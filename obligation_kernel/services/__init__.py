"""Services for the obligation kernel (write side)."""

from obligation_kernel.services.inheritance_engine import (
    DEFAULT_MAX_DEPTH,
    InheritanceEngine,
)
from obligation_kernel.services.ledger_reconciler import LedgerReconciler
from obligation_kernel.services.obligation_repository import ObligationRepository
from obligation_kernel.services.person_store import (
    MappingPersonStore,
    PersonStore,
    SqlPersonStore,
)

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "InheritanceEngine",
    "LedgerReconciler",
    "MappingPersonStore",
    "ObligationRepository",
    "PersonStore",
    "SqlPersonStore",
]
