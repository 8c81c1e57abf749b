"""
Module: obligation_kernel.selectors.aggregation_reader
Responsibility: Read-only balance queries over obligation records and the
    payment ledger: per-person totals, per-root breakdowns, leaderboards,
    run summaries, payment history and system-wide totals.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Voided records (superseded or voided runs) never count toward a
      balance, except in run_summary(), which describes one run as written.
    - All sums are Decimal, computed in Python, so they are exact on every
      backend including text-stored SQLite decimals.

Failure modes:
    - RunNotFoundError from run_summary() for an unknown run.
    - ValidationError from payment_history() for an unknown role.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from obligation_kernel.domain.dtos import PaymentView, RunView
from obligation_kernel.domain.obligation import ACTIVE_RUN_STATUSES, ObligationKind
from obligation_kernel.exceptions import RunNotFoundError, ValidationError
from obligation_kernel.models.distribution import DistributionRun
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.models.payment import PaymentRecord
from obligation_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")

PAYMENT_ROLES = ("any", "payer", "recipient")


@dataclass(frozen=True)
class KindTotals:
    """Assigned / paid / outstanding for one person and one kind."""

    record_count: int = 0
    assigned: Decimal = ZERO
    paid: Decimal = ZERO
    outstanding: Decimal = ZERO

    @classmethod
    def of(cls, records: Iterable[ObligationRecord]) -> KindTotals:
        count = 0
        assigned = paid = outstanding = ZERO
        for r in records:
            count += 1
            assigned += r.inherited_portion
            paid += r.amount_paid
            outstanding += r.amount_outstanding
        return cls(count, assigned, paid, outstanding)


@dataclass(frozen=True)
class PersonBalanceSummary:
    person_id: str
    debt: KindTotals
    credit: KindTotals

    @property
    def net_position(self) -> Decimal:
        """Credit still owed to the person minus debt the person still owes."""
        return self.credit.outstanding - self.debt.outstanding


@dataclass(frozen=True)
class RootBreakdownRow:
    """A person's share of one originating root's obligation."""

    root_id: str
    run_id: UUID
    record_count: int
    nearest_generation: int
    assigned: Decimal
    paid: Decimal
    outstanding: Decimal


@dataclass(frozen=True)
class LeaderboardRow:
    rank: int
    person_id: str
    record_count: int
    assigned: Decimal
    paid: Decimal
    outstanding: Decimal


@dataclass(frozen=True)
class GenerationRow:
    generation: int
    record_count: int
    total_inherited: Decimal
    total_outstanding: Decimal


@dataclass(frozen=True)
class RunSummary:
    """
    Per-generation view of one distribution run.

    ``conserves_root_amount`` checks that the generation-1 shares add back up
    to the run's root amount.
    """

    run: RunView
    record_count: int
    generations: tuple[GenerationRow, ...]
    first_generation_total: Decimal

    @property
    def conserves_root_amount(self) -> bool:
        return self.first_generation_total == self.run.root_amount


@dataclass(frozen=True)
class SystemTotals:
    kind: ObligationKind
    record_count: int
    distinct_descendants: int
    assigned: Decimal
    paid: Decimal
    outstanding: Decimal
    active_run_count: int


class AggregationReader(BaseSelector[ObligationRecord]):
    """
    Read-side queries over obligation balances.

    Non-goals:
        - SQL-side SUM.  Decimal columns are text on SQLite, so filtering
          happens in SQL and arithmetic in Python.
    """

    def _live_records(
        self,
        kind: ObligationKind | str,
        person_id: str | None = None,
    ) -> list[ObligationRecord]:
        kind = ObligationKind.coerce(kind)
        stmt = (
            select(ObligationRecord)
            .where(ObligationRecord.kind == kind.value)
            .where(ObligationRecord.voided_at.is_(None))
        )
        if person_id is not None:
            stmt = stmt.where(ObligationRecord.descendant_id == person_id)
        return list(self.session.execute(stmt).scalars())

    def sum_outstanding(self, person_id: str, kind: ObligationKind | str) -> Decimal:
        """Total outstanding across the person's live records of ``kind``."""
        return sum(
            (r.amount_outstanding for r in self._live_records(kind, person_id)),
            ZERO,
        )

    def person_summary(self, person_id: str) -> PersonBalanceSummary:
        return PersonBalanceSummary(
            person_id=person_id,
            debt=KindTotals.of(self._live_records(ObligationKind.DEBT, person_id)),
            credit=KindTotals.of(self._live_records(ObligationKind.CREDIT, person_id)),
        )

    def breakdown_by_root(
        self,
        person_id: str,
        kind: ObligationKind | str,
    ) -> list[RootBreakdownRow]:
        """One row per root the person inherited ``kind`` from, sorted by root_id."""
        grouped: dict[tuple[str, UUID], list[ObligationRecord]] = defaultdict(list)
        for record in self._live_records(kind, person_id):
            grouped[(record.root_id, record.run_id)].append(record)

        rows = []
        for (root_id, run_id), records in sorted(grouped.items(), key=lambda i: i[0][0]):
            totals = KindTotals.of(records)
            rows.append(
                RootBreakdownRow(
                    root_id=root_id,
                    run_id=run_id,
                    record_count=totals.record_count,
                    nearest_generation=min(r.generation_distance for r in records),
                    assigned=totals.assigned,
                    paid=totals.paid,
                    outstanding=totals.outstanding,
                )
            )
        return rows

    def top_outstanding(
        self,
        kind: ObligationKind | str,
        limit: int = 50,
    ) -> list[LeaderboardRow]:
        """Descendants ranked by outstanding ``kind``, largest first."""
        grouped: dict[str, list[ObligationRecord]] = defaultdict(list)
        for record in self._live_records(kind):
            grouped[record.descendant_id].append(record)

        ranked = sorted(
            ((person_id, KindTotals.of(records)) for person_id, records in grouped.items()),
            key=lambda item: (-item[1].outstanding, item[0]),
        )
        return [
            LeaderboardRow(
                rank=i,
                person_id=person_id,
                record_count=totals.record_count,
                assigned=totals.assigned,
                paid=totals.paid,
                outstanding=totals.outstanding,
            )
            for i, (person_id, totals) in enumerate(ranked[:limit], start=1)
        ]

    def run_summary(self, run_id: UUID | str) -> RunSummary:
        try:
            key = run_id if isinstance(run_id, UUID) else UUID(str(run_id))
        except ValueError:
            raise RunNotFoundError(str(run_id)) from None
        run = self.session.get(DistributionRun, key)
        if run is None:
            raise RunNotFoundError(str(run_id))

        records = self.session.execute(
            select(ObligationRecord).where(ObligationRecord.run_id == run.id)
        ).scalars()

        by_generation: dict[int, list[ObligationRecord]] = defaultdict(list)
        for record in records:
            by_generation[record.generation_distance].append(record)

        generations = tuple(
            GenerationRow(
                generation=gen,
                record_count=len(rows),
                total_inherited=sum((r.inherited_portion for r in rows), ZERO),
                total_outstanding=sum((r.amount_outstanding for r in rows), ZERO),
            )
            for gen, rows in sorted(by_generation.items())
        )
        first = next((g.total_inherited for g in generations if g.generation == 1), ZERO)

        return RunSummary(
            run=RunView.from_model(run),
            record_count=sum(g.record_count for g in generations),
            generations=generations,
            first_generation_total=first,
        )

    def payment_history(self, person_id: str, role: str = "any") -> list[PaymentView]:
        """Payments the person made, received, or either, oldest first."""
        if role not in PAYMENT_ROLES:
            raise ValidationError(f"role must be one of {PAYMENT_ROLES}, got {role!r}")

        stmt = select(PaymentRecord)
        if role == "payer":
            stmt = stmt.where(PaymentRecord.payer_id == person_id)
        elif role == "recipient":
            stmt = stmt.where(PaymentRecord.recipient_id == person_id)
        else:
            stmt = stmt.where(
                or_(
                    PaymentRecord.payer_id == person_id,
                    PaymentRecord.recipient_id == person_id,
                )
            )
        stmt = stmt.order_by(PaymentRecord.paid_at, PaymentRecord.created_at, PaymentRecord.id)
        return [PaymentView.from_model(p) for p in self.session.execute(stmt).scalars()]

    def system_totals(self, kind: ObligationKind | str) -> SystemTotals:
        kind = ObligationKind.coerce(kind)
        records = self._live_records(kind)
        totals = KindTotals.of(records)
        active_runs = self.session.execute(
            select(func.count(DistributionRun.id))
            .where(DistributionRun.kind == kind.value)
            .where(DistributionRun.status.in_([s.value for s in ACTIVE_RUN_STATUSES]))
        ).scalar_one()
        return SystemTotals(
            kind=kind,
            record_count=totals.record_count,
            distinct_descendants=len({r.descendant_id for r in records}),
            assigned=totals.assigned,
            paid=totals.paid,
            outstanding=totals.outstanding,
            active_run_count=active_runs,
        )
