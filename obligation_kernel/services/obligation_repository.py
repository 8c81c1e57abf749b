"""
ObligationRepository -- flush-only persistence for runs, records and payments.

Responsibility:
    The only module that issues INSERT/UPDATE statements against
    distribution_runs, obligation_records and payment_records.  The engine
    and reconciler decide *what* to write; this class decides *how*,
    including the savepoint-guarded insert races and row locking.

Architecture position:
    Kernel > Services.  Used by InheritanceEngine and LedgerReconciler.

Invariants enforced:
    - Upsert-or-skip: a record whose natural key already exists is never
      written twice.  A concurrent writer's IntegrityError rolls back only
      the savepoint around that one insert.
    - Stale balance writes surface as OptimisticLockError, never as a
      silent lost update.
    - Matching candidates are read with SELECT ... FOR UPDATE in id order.

Failure modes:
    - RunNotFoundError from get_run().
    - OptimisticLockError from save_balance().
    - IntegrityError from add_payment() on a duplicate external_ref (the
      reconciler resolves it).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from obligation_kernel.domain.obligation import (
    ACTIVE_RUN_STATUSES,
    ObligationKind,
    ObligationStatus,
    RunStatus,
)
from obligation_kernel.exceptions import OptimisticLockError, RunNotFoundError
from obligation_kernel.logging_config import get_logger
from obligation_kernel.models.distribution import DistributionRun
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.models.payment import PaymentRecord
from obligation_kernel.services.base import BaseService

logger = get_logger("services.obligation_repository")

NaturalKey = tuple[str, int, str]
"""(descendant_id, generation_distance, lineage_hash) within one run."""


class ObligationRepository(BaseService[ObligationRecord]):
    """
    CRUD over the obligation tables within the caller's transaction.

    Non-goals:
        - Aggregates and reports live in AggregationReader.
    """

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def get_active_run(
        self,
        root_id: str,
        kind: ObligationKind,
    ) -> DistributionRun | None:
        return self.session.execute(
            select(DistributionRun)
            .where(DistributionRun.root_id == root_id)
            .where(DistributionRun.kind == kind.value)
            .where(DistributionRun.status.in_([s.value for s in ACTIVE_RUN_STATUSES]))
            .order_by(DistributionRun.revision.desc())
            .limit(1)
        ).scalar_one_or_none()

    def latest_revision(self, root_id: str, kind: ObligationKind) -> int:
        latest = self.session.execute(
            select(func.max(DistributionRun.revision))
            .where(DistributionRun.root_id == root_id)
            .where(DistributionRun.kind == kind.value)
        ).scalar_one_or_none()
        return latest or 0

    def create_run(
        self,
        root_id: str,
        kind: ObligationKind,
        root_amount: Decimal,
        max_depth: int,
        started_at: datetime,
    ) -> tuple[DistributionRun, bool]:
        """
        Open the next revision for (root_id, kind).

        Returns:
            (run, created).  ``created`` is False when a concurrent writer
            opened the same revision first; ``run`` is then the winner's.
        """
        revision = self.latest_revision(root_id, kind) + 1
        savepoint = self.session.begin_nested()
        try:
            run = DistributionRun(
                root_id=root_id,
                kind=kind.value,
                revision=revision,
                root_amount=root_amount,
                max_depth=max_depth,
                status=RunStatus.IN_PROGRESS.value,
                unresolved_amount=Decimal("0"),
                cycle_count=0,
                record_count=0,
                started_at=started_at,
                created_at=started_at,
                updated_at=started_at,
            )
            self.session.add(run)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "distribution_run_race_retry",
                extra={"root_id": root_id, "kind": kind.value, "revision": revision},
            )
            savepoint.rollback()
            self.session.expire_all()
            winner = self.get_active_run(root_id, kind)
            if winner is None:
                raise
            return winner, False

        logger.info(
            "distribution_run_created",
            extra={
                "run_id": str(run.id),
                "root_id": root_id,
                "kind": kind.value,
                "revision": revision,
            },
        )
        return run, True

    def get_run(self, run_id: UUID | str) -> DistributionRun:
        try:
            key = _as_uuid(run_id)
        except ValueError:
            raise RunNotFoundError(str(run_id)) from None
        run = self.session.get(DistributionRun, key)
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    def runs_for_root(self, root_id: str, kind: ObligationKind) -> list[DistributionRun]:
        return list(
            self.session.execute(
                select(DistributionRun)
                .where(DistributionRun.root_id == root_id)
                .where(DistributionRun.kind == kind.value)
                .order_by(DistributionRun.revision)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Obligation records
    # ------------------------------------------------------------------

    def existing_keys(self, run_id: UUID) -> set[NaturalKey]:
        rows = self.session.execute(
            select(
                ObligationRecord.descendant_id,
                ObligationRecord.generation_distance,
                ObligationRecord.lineage_hash,
            ).where(ObligationRecord.run_id == run_id)
        )
        return {(d, g, h) for d, g, h in rows}

    def insert_record_if_absent(self, record: ObligationRecord) -> bool:
        """
        Insert ``record`` inside a savepoint.

        Returns:
            True if inserted, False if a row with the same natural key
            already existed (written by another transaction).
        """
        savepoint = self.session.begin_nested()
        try:
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "obligation_record_exists",
                extra={
                    "run_id": str(record.run_id),
                    "descendant_id": record.descendant_id,
                    "generation_distance": record.generation_distance,
                },
            )
            return False
        return True

    def records_for_run(
        self,
        run_id: UUID,
        include_voided: bool = True,
    ) -> list[ObligationRecord]:
        stmt = select(ObligationRecord).where(ObligationRecord.run_id == run_id)
        if not include_voided:
            stmt = stmt.where(ObligationRecord.voided_at.is_(None))
        stmt = stmt.order_by(
            ObligationRecord.generation_distance,
            ObligationRecord.descendant_id,
            ObligationRecord.lineage_hash,
        )
        return list(self.session.execute(stmt).scalars())

    def lock_open_records(
        self,
        person_id: str,
        kind: ObligationKind,
    ) -> list[ObligationRecord]:
        """
        Lock and return ``person_id``'s unsettled, non-voided records of ``kind``.

        Rows are locked in id order so concurrent payments for the same
        person queue behind each other rather than deadlock.
        """
        return list(
            self.session.execute(
                select(ObligationRecord)
                .where(ObligationRecord.descendant_id == person_id)
                .where(ObligationRecord.kind == kind.value)
                .where(ObligationRecord.voided_at.is_(None))
                .where(ObligationRecord.status != ObligationStatus.SETTLED.value)
                .order_by(ObligationRecord.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def save_balance(self, record: ObligationRecord) -> None:
        """
        Flush a balance change, checking the version counter.

        Raises:
            OptimisticLockError: the row was updated by another transaction
                since it was loaded.
        """
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "obligation_record_stale",
                extra={"record_id": str(record.id), "version": record.version},
            )
            raise OptimisticLockError("ObligationRecord", str(record.id)) from exc

    def void_records(self, run_id: UUID, at: datetime) -> int:
        """Stamp ``voided_at`` on every live record of the run.  Returns the count."""
        records = self.records_for_run(run_id, include_voided=False)
        for record in records:
            record.voided_at = at
        if records:
            self.save_balance(records[0])
        return len(records)

    def has_payments(self, run_id: UUID) -> int:
        """Number of records in the run that have had any payment applied."""
        paid = self.session.execute(
            select(ObligationRecord.amount_paid).where(ObligationRecord.run_id == run_id)
        ).scalars()
        return sum(1 for amount in paid if amount != Decimal("0"))

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        self.session.add(payment)
        self.session.flush()
        return payment

    def get_payment_by_ref(self, external_ref: str) -> PaymentRecord | None:
        return self.session.execute(
            select(PaymentRecord).where(PaymentRecord.external_ref == external_ref)
        ).scalar_one_or_none()


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))
