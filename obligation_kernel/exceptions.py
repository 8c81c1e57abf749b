"""
Typed Exception Hierarchy for the Obligation Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine react differently to a bad seed amount, a cyclic
relationship graph, and a payment that would overdraw a balance.  Parsing
message strings to tell those apart is fragile, so every error here has:

  1. Its own class (catch by type, not message)
  2. A ``code`` class attribute (machine-readable, API-safe)
  3. Structured attributes carrying the data that caused it

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ObligationKernelError:

    ObligationKernelError (base)
    |
    +-- ValidationError
    |   +-- NonPositiveAmountError
    |   +-- UnknownPersonError
    |   +-- SelfEdgeError
    |
    +-- DistributionError
    |   +-- RunNotFoundError
    |   +-- RunHasPaymentsError
    |
    +-- ReconciliationError
    |   +-- OverpayRejected
    |   +-- PaymentConflictError
    |   +-- InvalidStatusTransitionError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityViolationError
    |
    +-- ObligationWarning        (also a UserWarning)
        +-- CycleDetected
        +-- DepthExceeded
        +-- OverpayApplied

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | NON_POSITIVE_AMOUNT         | Seed or payment amount <= 0
                | UNKNOWN_PERSON              | root/payer/recipient not in PersonStore
                | SELF_EDGE                   | parent_id == child_id
----------------|-----------------------------|-----------------------------------------
Distribution    | RUN_NOT_FOUND               | Distribution run id doesn't exist
                | RUN_HAS_PAYMENTS            | Voiding a run whose records were paid
----------------|-----------------------------|-----------------------------------------
Reconciliation  | OVERPAY_REJECTED            | Amount exceeds outstanding (REJECT policy)
                | PAYMENT_CONFLICT            | Same external_ref, different details
                | INVALID_STATUS_TRANSITION   | Obligation status moved backward
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Balance row changed under us
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a payment or frozen field
----------------|-----------------------------|-----------------------------------------
Warnings        | CYCLE_DETECTED              | Descendant loops back onto its own path
                | DEPTH_EXCEEDED              | max_depth reached with amount unresolved
                | OVERPAY_APPLIED             | ALLOW policy drove a balance negative

===============================================================================
WARNINGS
===============================================================================

CycleDetected, DepthExceeded and OverpayApplied are recoverable: the
operation finishes and the condition is reflected on the returned result.
They are issued through ``warnings.warn`` so they are never silent, and can
be escalated with ``warnings.simplefilter("error", ObligationWarning)`` or the
``strict=True`` flag on ``InheritanceEngine.distribute``.
"""

from decimal import Decimal


class ObligationKernelError(Exception):
    """
    Base exception for all obligation kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "OBLIGATION_KERNEL_ERROR"


# Validation exceptions


class ValidationError(ObligationKernelError):
    """Input rejected before any write."""

    code: str = "VALIDATION_ERROR"


class NonPositiveAmountError(ValidationError):
    """Seed or payment amount is zero, negative, or not a finite number."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, field: str, amount: object):
        self.field = field
        self.amount = str(amount)
        super().__init__(f"{field} must be a positive amount, got {amount!r}")


class UnknownPersonError(ValidationError):
    """Person id is not known to the PersonStore."""

    code: str = "UNKNOWN_PERSON"

    def __init__(self, role: str, person_id: str):
        self.role = role
        self.person_id = person_id
        super().__init__(f"Unknown {role}: {person_id}")


class SelfEdgeError(ValidationError):
    """A relationship edge may not point from a person to themselves."""

    code: str = "SELF_EDGE"

    def __init__(self, person_id: str):
        self.person_id = person_id
        super().__init__(f"Person {person_id} cannot be their own child")


# Distribution exceptions


class DistributionError(ObligationKernelError):
    """Base exception for distribution-run errors."""

    code: str = "DISTRIBUTION_ERROR"


class RunNotFoundError(DistributionError):
    """Distribution run with given ID was not found."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Distribution run not found: {run_id}")


class RunHasPaymentsError(DistributionError):
    """
    A run cannot be voided or superseded once payments were applied to it.

    Payments already reconciled against the run's records would be orphaned.
    """

    code: str = "RUN_HAS_PAYMENTS"

    def __init__(self, run_id: str, paid_record_count: int):
        self.run_id = run_id
        self.paid_record_count = paid_record_count
        super().__init__(
            f"Distribution run {run_id} has {paid_record_count} record(s) "
            "with payments applied and cannot be voided"
        )


# Reconciliation exceptions


class ReconciliationError(ObligationKernelError):
    """Base exception for payment reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class OverpayRejected(ReconciliationError):
    """Payment exceeds the matched record's outstanding balance (REJECT policy)."""

    code: str = "OVERPAY_REJECTED"

    def __init__(
        self,
        record_id: str,
        kind: str,
        amount: Decimal,
        outstanding: Decimal,
    ):
        self.record_id = record_id
        self.kind = kind
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Payment of {amount} exceeds outstanding {outstanding} "
            f"on {kind} record {record_id}"
        )


class PaymentConflictError(ReconciliationError):
    """
    External reference already recorded with different payment details.

    Retries with identical details are idempotent; a different payload under
    the same reference is a protocol violation.
    """

    code: str = "PAYMENT_CONFLICT"

    def __init__(self, external_ref: str, existing_payment_id: str):
        self.external_ref = external_ref
        self.existing_payment_id = existing_payment_id
        super().__init__(
            f"External reference {external_ref} already recorded as payment "
            f"{existing_payment_id} with different details"
        )


class InvalidStatusTransitionError(ReconciliationError):
    """Obligation status may only move forward."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, record_id: str, from_status: str, to_status: str):
        self.record_id = record_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Obligation {record_id} cannot move from {from_status} to {to_status}"
        )


# Concurrency exceptions


class ConcurrencyError(ObligationKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityViolationError(ObligationKernelError):
    """
    Attempted to modify or delete an immutable record.

    PaymentRecords are immutable from creation; ObligationRecords freeze
    their structural fields and may never be deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Recoverable warnings


class ObligationWarning(ObligationKernelError, UserWarning):
    """Base class for recoverable conditions surfaced via warnings.warn."""

    code: str = "OBLIGATION_WARNING"


class CycleDetected(ObligationWarning):
    """A descendant's subtree loops back to a person already on its path."""

    code: str = "CYCLE_DETECTED"

    def __init__(self, root_id: str, node_id: str, repeated_id: str, generation: int):
        self.root_id = root_id
        self.node_id = node_id
        self.repeated_id = repeated_id
        self.generation = generation
        super().__init__(
            f"Cycle under root {root_id}: {node_id} -> {repeated_id} "
            f"at generation {generation}; treated as leaf"
        )


class DepthExceeded(ObligationWarning):
    """max_depth was reached while amount remained to be handed down."""

    code: str = "DEPTH_EXCEEDED"

    def __init__(
        self,
        root_id: str,
        max_depth: int,
        unresolved_amount: Decimal,
        branch_count: int,
    ):
        self.root_id = root_id
        self.max_depth = max_depth
        self.unresolved_amount = unresolved_amount
        self.branch_count = branch_count
        super().__init__(
            f"Distribution from {root_id} stopped at depth {max_depth} with "
            f"{unresolved_amount} unresolved across {branch_count} branch(es)"
        )


class OverpayApplied(ObligationWarning):
    """ALLOW policy applied more than a record's outstanding balance."""

    code: str = "OVERPAY_APPLIED"

    def __init__(self, record_id: str, kind: str, overpaid: Decimal):
        self.record_id = record_id
        self.kind = kind
        self.overpaid = overpaid
        super().__init__(
            f"{kind} record {record_id} overpaid by {overpaid}"
        )
