"""
InheritanceEngine -- hands a root's obligation down its descendant tree.

Responsibility:
    Given a root person, an amount and a kind (debt or credit), walks the
    root's descendants depth-first and writes one ObligationRecord per
    (descendant, route) with that descendant's share of the amount.

Architecture position:
    Kernel > Services -- imperative shell.  Reads the graph through a
    PersonStore, splits amounts with domain.shares, and persists through
    ObligationRepository.

Invariants enforced:
    - Conservation: at every expanded node the children's portions sum to
      the node's amount exactly (largest-remainder rounding).
    - The root never gets a record of its own at the start of the walk;
      generation_distance 1 is a direct child.
    - No record is ever written below max_depth.  A node at max_depth that
      still has children is reported as unresolved.
    - A child already on the current root-to-node path gets its record and
      is then treated as a leaf, so a cyclic graph terminates.  This holds
      for the root too: a loop back to the root writes a root record at
      generation 2 or deeper, keeping the amount conserved.
    - A share that rounds to zero is written already settled.  Zero frames
      are still expanded so every route has a record.
    - At most one active run per (root_id, kind).  Re-running never
      rewrites existing records; a different amount only sets
      ``amount_mismatch``.
    - Flush-only.  All writes of one call sit inside a savepoint, so a
      strict-mode warning leaves nothing behind.

Failure modes:
    - NonPositiveAmountError / UnknownPersonError before any write.
    - CycleDetected / DepthExceeded raised instead of warned when
      ``strict=True``.
    - RunHasPaymentsError from supersede() and void_run().

Audit relevance:
    Every record carries run_id, parent_id and lineage_hash, so the route
    by which a descendant inherited a share can be reconstructed.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from obligation_kernel.db.types import MONEY_DECIMAL_PLACES, SHARE_FACTOR_DECIMAL_PLACES
from obligation_kernel.domain.clock import Clock, SystemClock
from obligation_kernel.domain.dtos import (
    CycleReport,
    DistributionResult,
    DistributionStatus,
    ObligationView,
    RunView,
    UnresolvedBranch,
)
from obligation_kernel.domain.obligation import (
    ObligationKind,
    ObligationStatus,
    RunStatus,
)
from obligation_kernel.domain.shares import split_among_siblings
from obligation_kernel.exceptions import (
    CycleDetected,
    DepthExceeded,
    ObligationWarning,
    RunHasPaymentsError,
    UnknownPersonError,
    ValidationError,
)
from obligation_kernel.logging_config import LogContext, get_logger
from obligation_kernel.models.distribution import DistributionRun
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.services.base import BaseService, require_positive_amount
from obligation_kernel.services.obligation_repository import ObligationRepository
from obligation_kernel.services.person_store import PersonStore
from obligation_kernel.utils.hashing import lineage_hash

logger = get_logger("services.inheritance_engine")

DEFAULT_MAX_DEPTH = 10

ZERO = Decimal("0")


@dataclass(frozen=True)
class _Frame:
    node_id: str
    amount: Decimal
    generation: int
    path: tuple[str, ...]


@dataclass
class _WalkOutcome:
    unresolved: list[UnresolvedBranch]
    cycles: list[CycleReport]
    steps: int
    written: int
    interrupted: bool

    @property
    def unresolved_amount(self) -> Decimal:
        return sum((b.amount for b in self.unresolved), ZERO)


class InheritanceEngine(BaseService[ObligationRecord]):
    """
    Distributes root obligations across descendants.

    Contract:
        ``distribute()`` is idempotent per (root_id, kind): the first call
        opens a run, later calls resume or reuse it.  Recalculating with a
        new amount requires ``supersede()``.

    Guarantees:
        - Traversal is iterative (explicit stack), bounded by max_depth,
          the per-path cycle guard and the optional step budget.
        - Children are visited in sorted id order, so record creation order
          and remainder assignment are reproducible.

    Non-goals:
        - Does NOT commit.  The caller owns the transaction.
        - Does NOT validate the genealogy itself.
    """

    def __init__(
        self,
        session: Session,
        person_store: PersonStore,
        clock: Clock | None = None,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        step_budget: int | None = None,
        decimal_places: int = MONEY_DECIMAL_PLACES,
        share_factor_places: int = SHARE_FACTOR_DECIMAL_PLACES,
    ):
        super().__init__(session)
        self.person_store = person_store
        self.clock = clock or SystemClock()
        self.max_depth = max_depth
        self.step_budget = step_budget
        self.decimal_places = decimal_places
        self.share_factor_places = share_factor_places
        self.repository = ObligationRepository(session)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def distribute(
        self,
        root_id: str,
        root_amount: Decimal | int | str,
        kind: ObligationKind | str,
        *,
        max_depth: int | None = None,
        step_budget: int | None = None,
        should_cancel: Callable[[], bool] | None = None,
        run_id: UUID | str | None = None,
        strict: bool = False,
    ) -> DistributionResult:
        """
        Distribute ``root_amount`` from ``root_id`` to its descendants.

        Preconditions:
            - ``root_amount`` > 0 (no floats).
            - ``root_id`` is known to the PersonStore.

        Args:
            root_id: The person the obligation is attached to.
            root_amount: Amount to hand down.
            kind: ObligationKind or its string value.
            max_depth: Deepest generation that may receive a record.
            step_budget: Maximum number of new node expansions this call.
            should_cancel: Polled before each expansion; True stops the walk.
            run_id: Resume this specific run instead of looking it up.
            strict: Raise CycleDetected / DepthExceeded instead of warning.

        Returns:
            DistributionResult describing every record of the run.
        """
        kind = ObligationKind.coerce(kind)
        amount = require_positive_amount("root_amount", root_amount, self.decimal_places)
        if not self.person_store.person_exists(root_id):
            raise UnknownPersonError("root", root_id)
        depth = self.max_depth if max_depth is None else max_depth
        if depth < 1:
            raise ValidationError(f"max_depth must be at least 1, got {depth}")
        budget = self.step_budget if step_budget is None else step_budget

        with LogContext.bind(root_id=root_id):
            if not self.person_store.get_children(root_id):
                logger.info(
                    "distribution_empty",
                    extra={"root_id": root_id, "kind": kind.value},
                )
                return DistributionResult(
                    run_id=None,
                    root_id=root_id,
                    kind=kind,
                    root_amount=amount,
                    status=DistributionStatus.EMPTY,
                )

            with self.session.begin_nested():
                return self._distribute(
                    root_id, amount, kind, depth, budget, should_cancel, run_id, strict
                )

    def supersede(
        self,
        root_id: str,
        kind: ObligationKind | str,
        new_amount: Decimal | int | str,
        **distribute_options,
    ) -> DistributionResult:
        """
        Replace the active run for (root_id, kind) with a new revision.

        The old run becomes SUPERSEDED and its records are voided.  When
        there is no active run this is a plain distribute().

        Raises:
            RunHasPaymentsError: a record of the active run has been paid.
        """
        kind = ObligationKind.coerce(kind)
        amount = require_positive_amount("new_amount", new_amount, self.decimal_places)
        if not self.person_store.person_exists(root_id):
            raise UnknownPersonError("root", root_id)

        with self.session.begin_nested():
            previous = self.repository.get_active_run(root_id, kind)
            if previous is not None:
                self._retire(previous, RunStatus.SUPERSEDED)

            result = self.distribute(root_id, amount, kind, **distribute_options)

            if previous is not None:
                previous.superseded_by_id = result.run_id
                self.session.flush()
                logger.info(
                    "distribution_run_superseded",
                    extra={
                        "run_id": str(previous.id),
                        "root_id": root_id,
                        "kind": kind.value,
                        "superseded_by_id": str(result.run_id) if result.run_id else None,
                    },
                )
        return result

    def void_run(self, run_id: UUID | str) -> RunView:
        """
        Void a run and its records without replacing it.

        Voiding an already inactive run is a no-op.

        Raises:
            RunNotFoundError: no such run.
            RunHasPaymentsError: a record of the run has been paid.
        """
        run = self.repository.get_run(run_id)
        if not run.is_active:
            return RunView.from_model(run)

        with self.session.begin_nested():
            self._retire(run, RunStatus.VOIDED)
        logger.info(
            "distribution_run_voided",
            extra={"run_id": str(run.id), "root_id": run.root_id, "kind": run.kind},
        )
        return RunView.from_model(run)

    def get_run(self, run_id: UUID | str) -> RunView:
        return RunView.from_model(self.repository.get_run(run_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _distribute(
        self,
        root_id: str,
        amount: Decimal,
        kind: ObligationKind,
        max_depth: int,
        step_budget: int | None,
        should_cancel: Callable[[], bool] | None,
        run_id: UUID | str | None,
        strict: bool,
    ) -> DistributionResult:
        run, reused = self._open_run(root_id, amount, kind, max_depth, run_id)

        amount_mismatch = run.root_amount != amount
        if reused and amount_mismatch:
            logger.warning(
                "distribution_amount_mismatch",
                extra={
                    "run_id": str(run.id),
                    "root_id": root_id,
                    "existing_amount": run.root_amount,
                    "requested_amount": amount,
                },
            )

        finalized = run.status != RunStatus.IN_PROGRESS.value
        with LogContext.bind(run_id=str(run.id)):
            logger.info(
                "distribution_started",
                extra={
                    "kind": kind.value,
                    "root_amount": run.root_amount,
                    "max_depth": run.max_depth,
                    "revision": run.revision,
                    "resumed": reused and not finalized,
                },
            )

            # A finished run is re-walked read-only to rebuild its reports.
            outcome = self._walk(
                run,
                kind,
                step_budget=None if finalized else step_budget,
                should_cancel=None if finalized else should_cancel,
                strict=strict,
            )

            if outcome.interrupted:
                status = DistributionStatus.INTERRUPTED
                logger.info(
                    "distribution_interrupted",
                    extra={"steps": outcome.steps, "records_written": outcome.written},
                )
            else:
                status = (
                    DistributionStatus.INCOMPLETE
                    if outcome.unresolved
                    else DistributionStatus.COMPLETE
                )
                if not finalized:
                    self._finalize(run, outcome)

            records = tuple(
                ObligationView.from_model(r)
                for r in self.repository.records_for_run(run.id)
            )

            logger.info(
                "distribution_completed",
                extra={
                    "status": status.value,
                    "record_count": len(records),
                    "records_written": outcome.written,
                    "unresolved_amount": outcome.unresolved_amount,
                    "cycle_count": len(outcome.cycles),
                    "steps": outcome.steps,
                },
            )

        return DistributionResult(
            run_id=run.id,
            root_id=root_id,
            kind=kind,
            root_amount=run.root_amount,
            status=status,
            records=records,
            unresolved=tuple(outcome.unresolved),
            unresolved_amount=outcome.unresolved_amount,
            cycles=tuple(outcome.cycles),
            steps=outcome.steps,
            reused_existing_run=reused,
            amount_mismatch=reused and amount_mismatch,
        )

    def _open_run(
        self,
        root_id: str,
        amount: Decimal,
        kind: ObligationKind,
        max_depth: int,
        run_id: UUID | str | None,
    ) -> tuple[DistributionRun, bool]:
        """Return (run, reused) -- the run to walk and whether it existed."""
        if run_id is not None:
            run = self.repository.get_run(run_id)
            if run.root_id != root_id or run.kind != kind.value:
                raise ValidationError(
                    f"Run {run_id} belongs to {run.kind}:{run.root_id}, "
                    f"not {kind.value}:{root_id}"
                )
            if not run.is_active:
                raise ValidationError(f"Run {run_id} is {run.status} and cannot be resumed")
            return run, True

        active = self.repository.get_active_run(root_id, kind)
        if active is not None:
            return active, True

        run, created = self.repository.create_run(
            root_id=root_id,
            kind=kind,
            root_amount=amount,
            max_depth=max_depth,
            started_at=self.clock.now(),
        )
        return run, not created

    def _walk(
        self,
        run: DistributionRun,
        kind: ObligationKind,
        step_budget: int | None,
        should_cancel: Callable[[], bool] | None,
        strict: bool,
    ) -> _WalkOutcome:
        """
        Depth-first walk from the run's root, inserting missing records.

        Only expansions that write at least one new record count against
        ``step_budget``; replaying an already written subtree is free, so a
        resumed run always makes progress.
        """
        existing = self.repository.existing_keys(run.id)
        outcome = _WalkOutcome(unresolved=[], cycles=[], steps=0, written=0, interrupted=False)
        charged = 0

        stack = [_Frame(run.root_id, run.root_amount, 0, (run.root_id,))]
        while stack:
            if step_budget is not None and charged >= step_budget:
                outcome.interrupted = True
                break
            if should_cancel is not None and should_cancel():
                outcome.interrupted = True
                break

            frame = stack.pop()
            children = self.person_store.get_children(frame.node_id)
            outcome.steps += 1
            if not children:
                continue

            if frame.generation >= run.max_depth:
                branch = UnresolvedBranch(frame.node_id, frame.generation, frame.amount)
                outcome.unresolved.append(branch)
                continue

            split = split_among_siblings(
                frame.amount, children, self.decimal_places, self.share_factor_places
            )
            next_generation = frame.generation + 1
            expansions: list[_Frame] = []
            wrote_any = False

            for share in split.shares:
                path = frame.path + (share.child_id,)
                digest = lineage_hash(path)
                key = (share.child_id, next_generation, digest)
                if key not in existing:
                    record = ObligationRecord(
                        kind=kind.value,
                        run_id=run.id,
                        root_id=run.root_id,
                        descendant_id=share.child_id,
                        parent_id=frame.node_id,
                        generation_distance=next_generation,
                        lineage_hash=digest,
                        amount_at_this_level=frame.amount,
                        inherited_portion=share.amount,
                        sibling_share_factor=split.share_factor,
                        sibling_count=split.sibling_count,
                        amount_paid=ZERO,
                        amount_outstanding=share.amount,
                        status=ObligationStatus.derive(share.amount, ZERO).value,
                        created_at=self.clock.now(),
                        updated_at=self.clock.now(),
                    )
                    if self.repository.insert_record_if_absent(record):
                        outcome.written += 1
                        wrote_any = True
                        logger.debug(
                            "obligation_record_created",
                            extra={
                                "descendant_id": share.child_id,
                                "generation_distance": next_generation,
                                "inherited_portion": share.amount,
                            },
                        )
                    existing.add(key)

                if share.child_id in frame.path:
                    cycle = CycleReport(frame.node_id, share.child_id, next_generation)
                    outcome.cycles.append(cycle)
                    self._warn(
                        CycleDetected(
                            root_id=run.root_id,
                            node_id=frame.node_id,
                            repeated_id=share.child_id,
                            generation=next_generation,
                        ),
                        "distribution_cycle_detected",
                        strict,
                    )
                    continue

                expansions.append(_Frame(share.child_id, share.amount, next_generation, path))

            if wrote_any:
                charged += 1
            # Reversed so the smallest id is popped first
            stack.extend(reversed(expansions))

        if outcome.unresolved and not outcome.interrupted:
            self._warn(
                DepthExceeded(
                    root_id=run.root_id,
                    max_depth=run.max_depth,
                    unresolved_amount=outcome.unresolved_amount,
                    branch_count=len(outcome.unresolved),
                ),
                "distribution_depth_exceeded",
                strict,
            )

        return outcome

    def _finalize(self, run: DistributionRun, outcome: _WalkOutcome) -> None:
        run.status = (
            RunStatus.INCOMPLETE.value if outcome.unresolved else RunStatus.COMPLETED.value
        )
        run.unresolved_amount = outcome.unresolved_amount
        run.cycle_count = len(outcome.cycles)
        run.record_count = len(self.repository.existing_keys(run.id))
        run.completed_at = self.clock.now()
        self.session.flush()

    def _retire(self, run: DistributionRun, status: RunStatus) -> None:
        paid = self.repository.has_payments(run.id)
        if paid:
            raise RunHasPaymentsError(str(run.id), paid)
        voided = self.repository.void_records(run.id, self.clock.now())
        run.status = status.value
        self.session.flush()
        logger.debug(
            "distribution_records_voided",
            extra={"run_id": str(run.id), "voided_count": voided, "status": status.value},
        )

    def _warn(self, warning: ObligationWarning, event: str, strict: bool) -> None:
        logger.warning(
            event,
            extra={k: v for k, v in vars(warning).items() if not k.startswith("_")},
        )
        if strict:
            raise warning
        warnings.warn(warning, stacklevel=5)
