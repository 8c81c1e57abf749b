"""
LedgerReconciler -- applies incoming payments to obligation balances.

Responsibility:
    Records one payment from a payer to a recipient and moves the payer's
    largest open debt and the recipient's largest open credit by the
    payment amount.  Writes the PaymentRecord that links both.

Architecture position:
    Kernel > Services -- imperative shell.  The only writer of balance
    fields on ObligationRecord.

Invariants enforced:
    - amount_outstanding == inherited_portion - amount_paid after every
      application.
    - Status moves forward only (domain.obligation.VALID_TRANSITIONS).
    - The full payment amount is applied to each side independently; it is
      not split between the debt and the credit.
    - Under CLAMP (default) amount_outstanding never drops below zero.
    - external_ref is an idempotency key: a retry with identical details
      returns the original payment, a retry with different details raises.
    - One payment is one savepoint: balances and the payment row commit
      together or not at all.

Failure modes:
    - NonPositiveAmountError / UnknownPersonError / ValidationError before
      any write.
    - OverpayRejected (REJECT policy) before any write.
    - PaymentConflictError on external_ref reuse with different details.
    - OptimisticLockError when a matched row was changed concurrently.

Audit relevance:
    A payment matching no record on either side is still written with null
    links, so the ledger accounts for every payment received.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from obligation_kernel.db.types import MONEY_DECIMAL_PLACES
from obligation_kernel.domain.clock import Clock, SystemClock
from obligation_kernel.domain.dtos import AppliedSide, PaymentResult, PaymentView
from obligation_kernel.domain.obligation import (
    ObligationKind,
    ObligationStatus,
    OverpayPolicy,
    PaymentType,
    check_transition,
)
from obligation_kernel.exceptions import (
    OverpayApplied,
    OverpayRejected,
    PaymentConflictError,
    UnknownPersonError,
    ValidationError,
)
from obligation_kernel.logging_config import LogContext, get_logger
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.models.payment import PaymentRecord
from obligation_kernel.services.base import BaseService, require_positive_amount
from obligation_kernel.services.obligation_repository import ObligationRepository
from obligation_kernel.services.person_store import PersonStore

logger = get_logger("services.ledger_reconciler")

ZERO = Decimal("0")


@dataclass(frozen=True)
class _SidePlan:
    record: ObligationRecord
    outstanding_before: Decimal
    applied: Decimal
    unapplied: Decimal
    overpaid: Decimal


def select_target(candidates: list[ObligationRecord]) -> ObligationRecord | None:
    """
    Pick the record a payment is applied to.

    Largest amount_outstanding wins; ties go to the lowest generation, then
    the earliest created_at, then the smallest id.  Records with nothing
    outstanding are never targets.
    """
    # Filtered here rather than in SQL: amounts are text columns on SQLite
    open_records = [r for r in candidates if r.amount_outstanding > ZERO]
    if not open_records:
        return None
    return min(
        open_records,
        key=lambda r: (
            -r.amount_outstanding,
            r.generation_distance,
            r.created_at,
            str(r.id),
        ),
    )


def plan_application(
    record: ObligationRecord,
    amount: Decimal,
    policy: OverpayPolicy,
) -> _SidePlan:
    """
    Work out how much of ``amount`` lands on ``record`` under ``policy``.

    Raises:
        OverpayRejected: REJECT policy and amount exceeds outstanding.
    """
    before = record.amount_outstanding
    if policy is OverpayPolicy.REJECT and amount > before:
        raise OverpayRejected(
            record_id=str(record.id),
            kind=record.kind,
            amount=amount,
            outstanding=before,
        )

    if policy is OverpayPolicy.CLAMP:
        applied = min(amount, max(before, ZERO))
    else:
        applied = amount

    return _SidePlan(
        record=record,
        outstanding_before=before,
        applied=applied,
        unapplied=amount - applied,
        overpaid=max(applied - before, ZERO),
    )


class LedgerReconciler(BaseService[PaymentRecord]):
    """
    Applies payments to debt and credit records.

    Contract:
        ``apply_payment()`` either writes one PaymentRecord and updates at
        most one debt and one credit record, or writes nothing and raises.

    Guarantees:
        - Matching candidates are row-locked (SELECT ... FOR UPDATE) before
          they are read for the decision.
        - Deterministic target choice (see select_target).

    Non-goals:
        - Refunds and reversals.
        - Does NOT commit.  The caller owns the transaction.
    """

    def __init__(
        self,
        session: Session,
        person_store: PersonStore,
        clock: Clock | None = None,
        *,
        overpay_policy: OverpayPolicy | str = OverpayPolicy.CLAMP,
        decimal_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session)
        self.person_store = person_store
        self.clock = clock or SystemClock()
        self.overpay_policy = OverpayPolicy.coerce(overpay_policy)
        self.decimal_places = decimal_places
        self.repository = ObligationRepository(session)

    def apply_payment(
        self,
        payer_id: str,
        recipient_id: str,
        amount: Decimal | int | str,
        external_ref: str,
        *,
        overpay_policy: OverpayPolicy | str | None = None,
        paid_at: datetime | None = None,
        payment_type: PaymentType | str = PaymentType.REPARATIONS_PAYMENT,
        block_number: int | None = None,
        network_id: int | None = None,
        notes: str | None = None,
    ) -> PaymentResult:
        """
        Apply a payment from ``payer_id`` to ``recipient_id``.

        Preconditions:
            - ``amount`` > 0 (no floats).
            - ``payer_id`` and ``recipient_id`` are known to the PersonStore.
            - ``external_ref`` is non-empty.

        Args:
            payer_id: Descendant paying down a debt.
            recipient_id: Descendant receiving against a credit.
            amount: Payment amount, applied in full to each side.
            external_ref: Caller's unique reference (e.g. a transaction hash).
            overpay_policy: Overrides the reconciler default for this call.
            paid_at: When the payment happened; defaults to clock.now().
            payment_type: Classification stored on the payment row.
            block_number: Optional on-chain block number.
            network_id: Optional on-chain network id.
            notes: Free text stored with the payment.

        Returns:
            PaymentResult.  ``already_recorded`` is True for an idempotent
            retry, in which case ``debt`` and ``credit`` are None.
        """
        amount = require_positive_amount("amount", amount, self.decimal_places)
        if not external_ref or not str(external_ref).strip():
            raise ValidationError("external_ref must be a non-empty string")
        if not self.person_store.person_exists(payer_id):
            raise UnknownPersonError("payer", payer_id)
        if not self.person_store.person_exists(recipient_id):
            raise UnknownPersonError("recipient", recipient_id)
        policy = OverpayPolicy.coerce(overpay_policy or self.overpay_policy)
        payment_type = PaymentType(payment_type)

        with LogContext.bind(payment_ref=external_ref):
            existing = self.repository.get_payment_by_ref(external_ref)
            if existing is not None:
                return self._replay(existing, payer_id, recipient_id, amount)

            try:
                with self.session.begin_nested():
                    debt_plan, credit_plan, payment = self._apply(
                        payer_id,
                        recipient_id,
                        amount,
                        external_ref,
                        policy,
                        paid_at=paid_at or self.clock.now(),
                        payment_type=payment_type,
                        block_number=block_number,
                        network_id=network_id,
                        notes=notes,
                    )
            except IntegrityError:
                # A concurrent writer recorded the same external_ref first
                winner = self.repository.get_payment_by_ref(external_ref)
                if winner is None:
                    raise
                return self._replay(winner, payer_id, recipient_id, amount)

            debt = self._side_result(debt_plan)
            credit = self._side_result(credit_plan)

            logger.info(
                "payment_applied",
                extra={
                    "payment_id": str(payment.id),
                    "payer_id": payer_id,
                    "recipient_id": recipient_id,
                    "amount": amount,
                    "overpay_policy": policy.value,
                    "debt_record_id": str(debt.record_id) if debt else None,
                    "debt_applied": debt.applied if debt else ZERO,
                    "credit_record_id": str(credit.record_id) if credit else None,
                    "credit_applied": credit.applied if credit else ZERO,
                },
            )
            if debt is None and credit is None:
                logger.warning(
                    "payment_unmatched",
                    extra={"payer_id": payer_id, "recipient_id": recipient_id},
                )

            for plan in (debt_plan, credit_plan):
                if plan is not None and plan.overpaid > ZERO:
                    warning = OverpayApplied(
                        record_id=str(plan.record.id),
                        kind=plan.record.kind,
                        overpaid=plan.overpaid,
                    )
                    logger.warning(
                        "payment_overpaid",
                        extra={
                            "record_id": warning.record_id,
                            "kind": warning.kind,
                            "overpaid": warning.overpaid,
                        },
                    )
                    warnings.warn(warning, stacklevel=2)

        return PaymentResult(
            payment=PaymentView.from_model(payment),
            debt=debt,
            credit=credit,
        )

    def get_payment(self, external_ref: str) -> PaymentView | None:
        payment = self.repository.get_payment_by_ref(external_ref)
        return PaymentView.from_model(payment) if payment is not None else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(
        self,
        payer_id: str,
        recipient_id: str,
        amount: Decimal,
        external_ref: str,
        policy: OverpayPolicy,
        *,
        paid_at: datetime,
        payment_type: PaymentType,
        block_number: int | None,
        network_id: int | None,
        notes: str | None,
    ) -> tuple[_SidePlan | None, _SidePlan | None, PaymentRecord]:
        debt_record = select_target(
            self.repository.lock_open_records(payer_id, ObligationKind.DEBT)
        )
        credit_record = select_target(
            self.repository.lock_open_records(recipient_id, ObligationKind.CREDIT)
        )

        # Both sides are planned before either is written so REJECT leaves
        # no partial state behind.
        debt_plan = plan_application(debt_record, amount, policy) if debt_record else None
        credit_plan = (
            plan_application(credit_record, amount, policy) if credit_record else None
        )

        for plan in (debt_plan, credit_plan):
            if plan is not None:
                self.apply_to_record(plan.record, plan.applied)

        now = self.clock.now()
        payment = PaymentRecord(
            external_ref=external_ref,
            payer_id=payer_id,
            recipient_id=recipient_id,
            amount=amount,
            debt_record_id=debt_record.id if debt_record else None,
            credit_record_id=credit_record.id if credit_record else None,
            debt_applied=debt_plan.applied if debt_plan else ZERO,
            credit_applied=credit_plan.applied if credit_plan else ZERO,
            overpay_policy=policy.value,
            payment_type=payment_type.value,
            paid_at=paid_at,
            blockchain_block_number=block_number,
            blockchain_network_id=network_id,
            notes=notes,
            created_at=now,
        )
        self.repository.add_payment(payment)
        return debt_plan, credit_plan, payment

    def apply_to_record(self, record: ObligationRecord, applied: Decimal) -> None:
        """
        Move ``applied`` onto ``record`` and flush with the version check.

        Raises:
            InvalidStatusTransitionError: the derived status would move
                backward.
            OptimisticLockError: stale row.
        """
        new_paid = record.amount_paid + applied
        target = ObligationStatus.derive(record.inherited_portion, new_paid)
        check_transition(str(record.id), ObligationStatus(record.status), target)

        record.amount_paid = new_paid
        record.amount_outstanding = record.inherited_portion - new_paid
        record.status = target.value
        self.repository.save_balance(record)

    def _replay(
        self,
        existing: PaymentRecord,
        payer_id: str,
        recipient_id: str,
        amount: Decimal,
    ) -> PaymentResult:
        if not existing.same_details(payer_id, recipient_id, amount):
            logger.warning(
                "payment_conflict",
                extra={
                    "existing_payment_id": str(existing.id),
                    "payer_id": payer_id,
                    "recipient_id": recipient_id,
                    "amount": amount,
                },
            )
            raise PaymentConflictError(existing.external_ref, str(existing.id))

        logger.info(
            "payment_already_recorded",
            extra={"payment_id": str(existing.id)},
        )
        return PaymentResult(
            payment=PaymentView.from_model(existing),
            debt=None,
            credit=None,
            already_recorded=True,
        )

    @staticmethod
    def _side_result(plan: _SidePlan | None) -> AppliedSide | None:
        if plan is None:
            return None
        record = plan.record
        return AppliedSide(
            record_id=record.id,
            outstanding_before=plan.outstanding_before,
            applied=plan.applied,
            unapplied=plan.unapplied,
            overpaid=plan.overpaid,
            outstanding_after=record.amount_outstanding,
            status_after=ObligationStatus(record.status),
        )
