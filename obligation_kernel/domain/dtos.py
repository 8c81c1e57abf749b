"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable structures returned across the service boundary:
    ObligationView and DistributionResult (InheritanceEngine output),
    PaymentView, AppliedSide and PaymentResult (LedgerReconciler output),
    plus the supporting UnresolvedBranch and CycleReport reports.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Services return DTOs, never ORM entities, so callers cannot mutate
      balances outside LedgerReconciler.
    - All monetary fields are Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from obligation_kernel.domain.obligation import (
    ObligationKind,
    ObligationStatus,
    OverpayPolicy,
    PaymentType,
    RunStatus,
)

if TYPE_CHECKING:
    from obligation_kernel.models.distribution import DistributionRun
    from obligation_kernel.models.obligation import ObligationRecord
    from obligation_kernel.models.payment import PaymentRecord


ZERO = Decimal("0")


class DistributionStatus(str, Enum):
    """Outcome of one distribute() call."""

    COMPLETE = "complete"  # every branch reached a leaf
    INCOMPLETE = "incomplete"  # depth bound left amount unresolved
    INTERRUPTED = "interrupted"  # step budget or cancellation; resumable
    EMPTY = "empty"  # root has no children; nothing written


@dataclass(frozen=True)
class ObligationView:
    """Read-only snapshot of one ObligationRecord."""

    record_id: UUID
    run_id: UUID
    kind: ObligationKind
    root_id: str
    descendant_id: str
    parent_id: str
    generation_distance: int
    lineage_hash: str
    amount_at_this_level: Decimal
    inherited_portion: Decimal
    sibling_share_factor: Decimal
    sibling_count: int
    amount_paid: Decimal
    amount_outstanding: Decimal
    status: ObligationStatus
    version: int
    voided_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def natural_key(self) -> tuple[str, str, int, str]:
        return (
            str(self.run_id),
            self.descendant_id,
            self.generation_distance,
            self.lineage_hash,
        )

    @classmethod
    def from_model(cls, model: ObligationRecord) -> ObligationView:
        return cls(
            record_id=model.id,
            run_id=model.run_id,
            kind=ObligationKind(model.kind),
            root_id=model.root_id,
            descendant_id=model.descendant_id,
            parent_id=model.parent_id,
            generation_distance=model.generation_distance,
            lineage_hash=model.lineage_hash,
            amount_at_this_level=model.amount_at_this_level,
            inherited_portion=model.inherited_portion,
            sibling_share_factor=model.sibling_share_factor,
            sibling_count=model.sibling_count,
            amount_paid=model.amount_paid,
            amount_outstanding=model.amount_outstanding,
            status=ObligationStatus(model.status),
            version=model.version,
            voided_at=model.voided_at,
            created_at=model.created_at,
        )


@dataclass(frozen=True)
class RunView:
    """Read-only snapshot of one DistributionRun."""

    run_id: UUID
    root_id: str
    kind: ObligationKind
    revision: int
    root_amount: Decimal
    max_depth: int
    status: RunStatus
    unresolved_amount: Decimal
    cycle_count: int
    record_count: int
    started_at: datetime
    completed_at: datetime | None
    superseded_by_id: UUID | None

    @classmethod
    def from_model(cls, model: DistributionRun) -> RunView:
        return cls(
            run_id=model.id,
            root_id=model.root_id,
            kind=ObligationKind(model.kind),
            revision=model.revision,
            root_amount=model.root_amount,
            max_depth=model.max_depth,
            status=RunStatus(model.status),
            unresolved_amount=model.unresolved_amount,
            cycle_count=model.cycle_count,
            record_count=model.record_count,
            started_at=model.started_at,
            completed_at=model.completed_at,
            superseded_by_id=model.superseded_by_id,
        )


@dataclass(frozen=True)
class UnresolvedBranch:
    """A node at max_depth that still had children and an amount to hand down."""

    node_id: str
    generation: int
    amount: Decimal


@dataclass(frozen=True)
class CycleReport:
    """``node_id`` listed ``repeated_id`` as a child although it is already an ancestor."""

    node_id: str
    repeated_id: str
    generation: int


@dataclass(frozen=True)
class DistributionResult:
    """
    Outcome of InheritanceEngine.distribute().

    Guarantees:
        - For COMPLETE runs without cycles, the generation-1 records sum to
          root_amount, and so does every set of siblings against its parent.
        - unresolved_amount == sum(b.amount for b in unresolved).
    """

    run_id: UUID | None
    root_id: str
    kind: ObligationKind
    root_amount: Decimal
    status: DistributionStatus
    records: tuple[ObligationView, ...] = ()
    unresolved: tuple[UnresolvedBranch, ...] = ()
    unresolved_amount: Decimal = ZERO
    cycles: tuple[CycleReport, ...] = ()
    steps: int = 0
    reused_existing_run: bool = False
    amount_mismatch: bool = False

    @property
    def is_complete(self) -> bool:
        return self.status in (DistributionStatus.COMPLETE, DistributionStatus.EMPTY)

    @property
    def cycle_detected(self) -> bool:
        return bool(self.cycles)

    @property
    def depth_exceeded(self) -> bool:
        return bool(self.unresolved)

    @property
    def total_distributed(self) -> Decimal:
        """Sum of generation-1 portions."""
        return sum(
            (r.inherited_portion for r in self.records if r.generation_distance == 1),
            ZERO,
        )


@dataclass(frozen=True)
class PaymentView:
    """Read-only snapshot of one PaymentRecord."""

    payment_id: UUID
    external_ref: str
    payer_id: str
    recipient_id: str
    amount: Decimal
    debt_record_id: UUID | None
    credit_record_id: UUID | None
    debt_applied: Decimal
    credit_applied: Decimal
    overpay_policy: OverpayPolicy
    payment_type: PaymentType
    paid_at: datetime
    block_number: int | None = None
    network_id: int | None = None
    notes: str | None = None

    @classmethod
    def from_model(cls, model: PaymentRecord) -> PaymentView:
        return cls(
            payment_id=model.id,
            external_ref=model.external_ref,
            payer_id=model.payer_id,
            recipient_id=model.recipient_id,
            amount=model.amount,
            debt_record_id=model.debt_record_id,
            credit_record_id=model.credit_record_id,
            debt_applied=model.debt_applied,
            credit_applied=model.credit_applied,
            overpay_policy=OverpayPolicy(model.overpay_policy),
            payment_type=PaymentType(model.payment_type),
            paid_at=model.paid_at,
            block_number=model.blockchain_block_number,
            network_id=model.blockchain_network_id,
            notes=model.notes,
        )


@dataclass(frozen=True)
class AppliedSide:
    """
    How a payment landed on one matched record.

    ``applied + unapplied == payment amount`` on every side.  ``overpaid`` is
    non-zero only under OverpayPolicy.ALLOW.
    """

    record_id: UUID
    outstanding_before: Decimal
    applied: Decimal
    unapplied: Decimal
    overpaid: Decimal
    outstanding_after: Decimal
    status_after: ObligationStatus


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of LedgerReconciler.apply_payment()."""

    payment: PaymentView
    debt: AppliedSide | None
    credit: AppliedSide | None
    already_recorded: bool = False

    @property
    def unconsumed_debt(self) -> Decimal:
        """Part of the payment not applied to a debt record (all of it if none matched)."""
        if self.debt is None:
            return self.payment.amount
        return self.debt.unapplied

    @property
    def unconsumed_credit(self) -> Decimal:
        if self.credit is None:
            return self.payment.amount
        return self.credit.unapplied
