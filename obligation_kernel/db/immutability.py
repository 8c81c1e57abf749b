"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Obligation balances are evidence.  Downstream reporting reads the persisted
ObligationRecord and PaymentRecord rows directly, so they must not be
rewritten after the fact:

  - PaymentRecord rows are append-only: no UPDATE, no DELETE, ever.
  - ObligationRecord rows are created once by a distribution run.  Only the
    balance fields (amount_paid, amount_outstanding, status, version,
    voided_at, updated_at) may change afterwards, and rows are never deleted.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
USAGE
===============================================================================

Called once during application startup (and by the test harness):

    from obligation_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from obligation_kernel.exceptions import ImmutabilityViolationError
from obligation_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields the reconciler and run-voiding are allowed to change
OBLIGATION_MUTABLE_FIELDS = frozenset({
    "amount_paid",
    "amount_outstanding",
    "status",
    "version",
    "voided_at",
    "updated_at",
})


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_payment_record_immutability(mapper, connection, target):
    """Prevent any updates to PaymentRecord rows."""
    raise _blocked(
        "PaymentRecord",
        str(target.id),
        "UPDATE",
        "Payment records are immutable and cannot be modified",
    )


def _check_payment_record_delete(mapper, connection, target):
    """Prevent deletion of PaymentRecord rows."""
    raise _blocked(
        "PaymentRecord",
        str(target.id),
        "DELETE",
        "Payment records cannot be deleted",
    )


def _check_obligation_record_immutability(mapper, connection, target):
    """
    Allow balance changes on ObligationRecord, block structural changes.

    Structural fields (descendant, root, generation, shares, lineage) define
    how the obligation was derived; changing them would falsify the run.
    """
    for column_attr in mapper.column_attrs:
        name = column_attr.key
        if name in OBLIGATION_MUTABLE_FIELDS:
            continue
        if get_history(target, name).has_changes():
            raise _blocked(
                "ObligationRecord",
                str(target.id),
                "UPDATE",
                f"Field '{name}' is fixed once the obligation is distributed",
            )


def _check_obligation_record_delete(mapper, connection, target):
    """Obligation records are retained for audit, even when settled or voided."""
    raise _blocked(
        "ObligationRecord",
        str(target.id),
        "DELETE",
        "Obligation records are never deleted; void the run instead",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    from obligation_kernel.models.obligation import ObligationRecord
    from obligation_kernel.models.payment import PaymentRecord

    for target, name, fn in _listener_table(ObligationRecord, PaymentRecord):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from obligation_kernel.models.obligation import ObligationRecord
    from obligation_kernel.models.payment import PaymentRecord

    for target, name, fn in _listener_table(ObligationRecord, PaymentRecord):
        if event.contains(target, name, fn):
            event.remove(target, name, fn)


def _listener_table(obligation_cls, payment_cls):
    return (
        (payment_cls, "before_update", _check_payment_record_immutability),
        (payment_cls, "before_delete", _check_payment_record_delete),
        (obligation_cls, "before_update", _check_obligation_record_immutability),
        (obligation_cls, "before_delete", _check_obligation_record_delete),
    )
