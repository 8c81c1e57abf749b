"""
Obligation vocabulary -- kinds, lifecycle states, and payment policies.

Responsibility:
    Defines the enums shared by models, services and selectors, plus the
    forward-only obligation state machine.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Obligation status only moves forward: created -> partially_paid ->
      settled (created -> settled directly is allowed).  There is no path
      back except an explicit reversal, which this kernel does not offer.
    - Status is derived from the balance, never set independently of it.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from obligation_kernel.exceptions import InvalidStatusTransitionError


class ObligationKind(str, Enum):
    """Which side of the ledger an obligation sits on."""

    DEBT = "debt"  # rooted at a perpetrator, owed by descendants
    CREDIT = "credit"  # rooted at a harmed ancestor, owed to descendants

    @classmethod
    def coerce(cls, value: ObligationKind | str) -> ObligationKind:
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())


class ObligationStatus(str, Enum):
    """Lifecycle state of one ObligationRecord."""

    CREATED = "created"
    PARTIALLY_PAID = "partially_paid"
    SETTLED = "settled"

    @classmethod
    def derive(cls, inherited_portion: Decimal, amount_paid: Decimal) -> ObligationStatus:
        """Status implied by a balance."""
        if inherited_portion - amount_paid <= Decimal("0"):
            return cls.SETTLED
        if amount_paid > Decimal("0"):
            return cls.PARTIALLY_PAID
        return cls.CREATED


VALID_TRANSITIONS: dict[ObligationStatus, frozenset[ObligationStatus]] = {
    ObligationStatus.CREATED: frozenset({
        ObligationStatus.CREATED,
        ObligationStatus.PARTIALLY_PAID,
        ObligationStatus.SETTLED,
    }),
    ObligationStatus.PARTIALLY_PAID: frozenset({
        ObligationStatus.PARTIALLY_PAID,
        ObligationStatus.SETTLED,
    }),
    ObligationStatus.SETTLED: frozenset({ObligationStatus.SETTLED}),
}


def check_transition(
    record_id: str,
    current: ObligationStatus,
    target: ObligationStatus,
) -> ObligationStatus:
    """
    Validate a status move against VALID_TRANSITIONS.

    Raises:
        InvalidStatusTransitionError: if ``target`` is not reachable.
    """
    if target not in VALID_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(
            record_id=record_id,
            from_status=current.value,
            to_status=target.value,
        )
    return target


class OverpayPolicy(str, Enum):
    """What to do when a payment exceeds a matched record's outstanding."""

    CLAMP = "clamp"  # apply up to outstanding, report the rest as unapplied
    ALLOW = "allow"  # apply everything, outstanding may go negative
    REJECT = "reject"  # raise OverpayRejected before any write

    @classmethod
    def coerce(cls, value: OverpayPolicy | str) -> OverpayPolicy:
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())


class RunStatus(str, Enum):
    """Lifecycle state of a DistributionRun."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"  # depth bound left amount unresolved
    SUPERSEDED = "superseded"
    VOIDED = "voided"

    @property
    def is_active(self) -> bool:
        return self not in (RunStatus.SUPERSEDED, RunStatus.VOIDED)


ACTIVE_RUN_STATUSES: frozenset[RunStatus] = frozenset(
    s for s in RunStatus if s.is_active
)


class PaymentType(str, Enum):
    """Classification carried on each PaymentRecord."""

    REPARATIONS_PAYMENT = "reparations_payment"
    DEBT_PAYMENT = "debt_payment"
