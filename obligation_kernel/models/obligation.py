"""
Module: obligation_kernel.models.obligation
Responsibility: ORM persistence for per-descendant obligation balances.
    A single table holds both debt and credit records, told apart by ``kind``.
Architecture position: Kernel > Models.  May import from db/base.py,
    db/types.py and domain/obligation.py only.

Invariants enforced:
    - Natural key (run_id, descendant_id, generation_distance, lineage_hash)
      is unique (uq_obligation_natural_key).  Re-walking a tree for the same
      run can never create a duplicate.
    - amount_outstanding == inherited_portion - amount_paid (maintained by
      LedgerReconciler.apply_to_record, the only balance writer).
    - version is an optimistic-lock counter (SQLAlchemy version_id_col); an
      UPDATE against a stale version raises StaleDataError, which the
      repository surfaces as OptimisticLockError.
    - Structural columns are frozen after INSERT and rows are never deleted
      (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate natural key.
    - ImmutabilityViolationError on structural UPDATE or any DELETE.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from obligation_kernel.db.base import TimestampedBase, UUIDString
from obligation_kernel.db.types import PortableDecimal
from obligation_kernel.domain.obligation import (
    ObligationKind,
    ObligationStatus,
)


class ObligationRecord(TimestampedBase):
    """
    One descendant's share of a root's debt or credit.

    Contract:
        Created once by InheritanceEngine; afterwards only the balance
        fields move, and only forward through ObligationStatus.

    Non-goals:
        - The cumulative fraction of the root amount is not stored;
          sibling_share_factor is the per-level 1/k.
    """

    __tablename__ = "obligation_records"

    __table_args__ = (
        UniqueConstraint(
            "run_id",
            "descendant_id",
            "generation_distance",
            "lineage_hash",
            name="uq_obligation_natural_key",
        ),
        Index("idx_obligation_descendant_kind", "descendant_id", "kind", "status"),
        Index("idx_obligation_root_kind", "root_id", "kind"),
        Index("idx_obligation_run", "run_id"),
    )

    kind: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("distribution_runs.id"),
        nullable=False,
    )

    root_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    descendant_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Immediate parent the share was handed down through
    parent_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    generation_distance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    lineage_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # What the parent held before the split
    amount_at_this_level: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    inherited_portion: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    sibling_share_factor: Mapped[Decimal] = mapped_column(
        PortableDecimal(38, 18),
        nullable=False,
    )

    sibling_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    amount_paid: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    amount_outstanding: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ObligationStatus.CREATED.value,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def obligation_kind(self) -> ObligationKind:
        return ObligationKind(self.kind)

    @property
    def obligation_status(self) -> ObligationStatus:
        return ObligationStatus(self.status)

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    @property
    def is_open(self) -> bool:
        """Eligible for payment matching."""
        return not self.is_voided and self.status != ObligationStatus.SETTLED.value

    def __repr__(self) -> str:
        return (
            f"<ObligationRecord {self.kind} {self.descendant_id} "
            f"gen={self.generation_distance} "
            f"outstanding={self.amount_outstanding} ({self.status})>"
        )
