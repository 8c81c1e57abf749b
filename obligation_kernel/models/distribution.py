"""
Module: obligation_kernel.models.distribution
Responsibility: ORM persistence for distribution runs -- one row per attempt
    to hand a root's obligation down its descendant tree.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/obligation.py only.

Invariants enforced:
    - (root_id, kind, revision) is unique (uq_distribution_run_revision).
      Two writers racing to open revision N collide here; the loser reloads
      the winner's run.
    - At most one run per (root_id, kind) is active (status not superseded
      or voided).  Enforced by InheritanceEngine, which only opens a new
      revision after superseding the active one.

Audit relevance:
    Every ObligationRecord points at the run that produced it, so a
    superseded calculation stays inspectable next to its replacement.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from obligation_kernel.db.base import TimestampedBase, UUIDString
from obligation_kernel.domain.obligation import RunStatus


class DistributionRun(TimestampedBase):
    """One revision of a root's distribution."""

    __tablename__ = "distribution_runs"

    __table_args__ = (
        UniqueConstraint(
            "root_id",
            "kind",
            "revision",
            name="uq_distribution_run_revision",
        ),
        Index("idx_run_root_kind_status", "root_id", "kind", "status"),
    )

    root_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    kind: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )

    revision: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    root_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
    )

    max_depth: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RunStatus.IN_PROGRESS.value,
    )

    unresolved_amount: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    cycle_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    record_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    superseded_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    @property
    def run_status(self) -> RunStatus:
        return RunStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.run_status.is_active

    def __repr__(self) -> str:
        return (
            f"<DistributionRun {self.kind}:{self.root_id} "
            f"rev={self.revision} {self.status}>"
        )
