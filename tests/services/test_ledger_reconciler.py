"""
LedgerReconciler payment application tests.

Verifies:
- A payment reduces the payer's debt and the recipient's credit by the full
  amount, independently, and writes exactly one PaymentRecord
- Target selection: largest outstanding, then lowest generation
- Overpay policies: CLAMP never goes negative, ALLOW warns, REJECT writes
  nothing
- external_ref idempotency and conflict detection
- Unmatched payments are still recorded, and zero-share records never match
- A failure after a balance write rolls the whole payment back
"""

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import UUID

import pytest
from sqlalchemy import func, select

from obligation_kernel.domain.obligation import (
    ObligationKind,
    ObligationStatus,
    OverpayPolicy,
    PaymentType,
)
from obligation_kernel.exceptions import (
    NonPositiveAmountError,
    OverpayApplied,
    OverpayRejected,
    PaymentConflictError,
    UnknownPersonError,
    ValidationError,
)
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.models.payment import PaymentRecord
from obligation_kernel.services.ledger_reconciler import (
    LedgerReconciler,
    plan_application,
    select_target,
)


def _payment_count(session) -> int:
    return session.execute(select(func.count(PaymentRecord.id))).scalar_one()


@pytest.fixture
def funded_tree(scenario_tree, inheritance_engine):
    """
    Debt and credit of 1,000,000 each distributed from root.

    childA owes 500,000; grandchildB is owed 250,000.
    """
    inheritance_engine.distribute("root", Decimal("1000000.00"), ObligationKind.DEBT)
    inheritance_engine.distribute("root", Decimal("1000000.00"), ObligationKind.CREDIT)


class TestApplyPayment:
    def test_payment_moves_both_balances(self, funded_tree, reconciler, aggregation, session):
        result = reconciler.apply_payment(
            payer_id="childA",
            recipient_id="grandchildB",
            amount=Decimal("100000.00"),
            external_ref="tx1",
        )

        assert result.debt.outstanding_before == Decimal("500000.00")
        assert result.debt.outstanding_after == Decimal("400000.00")
        assert result.credit.outstanding_before == Decimal("250000.00")
        assert result.credit.outstanding_after == Decimal("150000.00")
        assert aggregation.sum_outstanding("childA", "debt") == Decimal("400000.00")
        assert aggregation.sum_outstanding("grandchildB", "credit") == Decimal("150000.00")
        assert _payment_count(session) == 1

    def test_payment_record_links_both_sides(self, funded_tree, reconciler):
        result = reconciler.apply_payment("childA", "grandchildB", "100000.00", "tx1")

        payment = result.payment
        assert payment.external_ref == "tx1"
        assert payment.payer_id == "childA"
        assert payment.recipient_id == "grandchildB"
        assert payment.amount == Decimal("100000.00")
        assert payment.debt_record_id == result.debt.record_id
        assert payment.credit_record_id == result.credit.record_id
        assert payment.debt_applied == Decimal("100000.00")
        assert payment.credit_applied == Decimal("100000.00")
        assert payment.overpay_policy is OverpayPolicy.CLAMP
        assert payment.payment_type is PaymentType.REPARATIONS_PAYMENT
        assert not result.already_recorded

    def test_status_moves_forward(self, funded_tree, reconciler):
        partial = reconciler.apply_payment("childA", "grandchildB", "1.00", "tx-a")
        assert partial.debt.status_after is ObligationStatus.PARTIALLY_PAID

        final = reconciler.apply_payment("childA", "grandchildB", "499999.00", "tx-b")
        assert final.debt.status_after is ObligationStatus.SETTLED
        assert final.debt.outstanding_after == Decimal("0.00")

    def test_balance_identity_holds(self, funded_tree, reconciler, session):
        reconciler.apply_payment("childA", "grandchildB", "123.45", "tx1")
        reconciler.apply_payment("childB", "grandchildA", "678.90", "tx2")

        for record in session.execute(select(ObligationRecord)).scalars():
            assert record.amount_outstanding == record.inherited_portion - record.amount_paid

    def test_payment_metadata_is_stored(self, funded_tree, reconciler):
        paid_at = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

        result = reconciler.apply_payment(
            "childA",
            "grandchildB",
            "10.00",
            "0xabc",
            paid_at=paid_at,
            payment_type="debt_payment",
            block_number=19_000_000,
            network_id=1,
            notes="first instalment",
        )

        view = reconciler.get_payment("0xabc")
        assert view == result.payment
        assert view.payment_type is PaymentType.DEBT_PAYMENT
        assert view.block_number == 19_000_000
        assert view.network_id == 1
        assert view.notes == "first instalment"

    def test_settled_record_is_not_matched_again(self, funded_tree, reconciler):
        reconciler.apply_payment("childA", "grandchildB", "500000.00", "tx1")

        result = reconciler.apply_payment("childA", "grandchildA", "10.00", "tx2")

        assert result.debt is None
        assert result.unconsumed_debt == Decimal("10.00")
        assert result.credit is not None


class TestTargetSelection:
    def test_largest_outstanding_wins(self, build_tree, inheritance_engine, reconciler):
        build_tree({"rootX": ["c"], "rootY": ["c", "d"]})
        inheritance_engine.distribute("rootX", "100.00", "debt")
        inheritance_engine.distribute("rootY", "100.00", "debt")

        result = reconciler.apply_payment("c", "d", "10.00", "tx1")

        assert result.debt.outstanding_before == Decimal("100.00")

    def test_tie_goes_to_lowest_generation(self, build_tree, inheritance_engine, reconciler):
        build_tree({"rootP": ["c"], "rootQ": ["m"], "m": ["c"]})
        near = inheritance_engine.distribute("rootP", "100.00", "debt")
        inheritance_engine.distribute("rootQ", "100.00", "debt")

        result = reconciler.apply_payment("c", "m", "10.00", "tx1")

        assert result.debt.record_id == near.records[0].record_id

    def test_select_target_ordering(self):
        early = datetime(2024, 1, 1)
        late = datetime(2024, 1, 2)
        candidates = [
            SimpleNamespace(id=UUID(int=3), amount_outstanding=Decimal("5"), generation_distance=1, created_at=early),
            SimpleNamespace(id=UUID(int=2), amount_outstanding=Decimal("5"), generation_distance=1, created_at=late),
            SimpleNamespace(id=UUID(int=1), amount_outstanding=Decimal("5"), generation_distance=2, created_at=early),
            SimpleNamespace(id=UUID(int=4), amount_outstanding=Decimal("5"), generation_distance=1, created_at=early),
        ]

        assert select_target(candidates).id == UUID(int=3)
        assert select_target([]) is None

    def test_select_target_skips_nothing_outstanding(self):
        created = datetime(2024, 1, 1)
        candidates = [
            SimpleNamespace(id=UUID(int=1), amount_outstanding=Decimal("0.00"), generation_distance=1, created_at=created),
            SimpleNamespace(id=UUID(int=2), amount_outstanding=Decimal("-3.00"), generation_distance=1, created_at=created),
        ]

        assert select_target(candidates) is None


class TestOverpayPolicies:
    def test_clamp_stops_at_zero(self, funded_tree, reconciler, recwarn):
        result = reconciler.apply_payment("childA", "grandchildB", "600000.00", "tx1")

        assert result.debt.applied == Decimal("500000.00")
        assert result.debt.unapplied == Decimal("100000.00")
        assert result.debt.outstanding_after == Decimal("0.00")
        assert result.credit.applied == Decimal("250000.00")
        assert result.credit.unapplied == Decimal("350000.00")
        assert result.unconsumed_credit == Decimal("350000.00")
        assert result.debt.overpaid == Decimal("0")
        assert not [w for w in recwarn if issubclass(w.category, OverpayApplied)]

    def test_allow_goes_negative_and_warns(self, funded_tree, reconciler, captured_logs):
        with pytest.warns(OverpayApplied) as caught:
            result = reconciler.apply_payment(
                "childA", "grandchildB", "600000.00", "tx1", overpay_policy="allow",
            )

        assert result.debt.outstanding_after == Decimal("-100000.00")
        assert result.debt.overpaid == Decimal("100000.00")
        assert result.debt.status_after is ObligationStatus.SETTLED
        assert result.credit.outstanding_after == Decimal("-350000.00")
        assert {w.message.kind for w in caught} == {"debt", "credit"}
        assert any(r["message"] == "payment_overpaid" for r in captured_logs())

    def test_reject_writes_nothing(self, funded_tree, reconciler, aggregation, session):
        with pytest.raises(OverpayRejected) as exc_info:
            reconciler.apply_payment(
                "childA", "grandchildB", "300000.00", "tx1", overpay_policy=OverpayPolicy.REJECT,
            )

        # The debt side alone would have fit; the credit side did not.
        assert exc_info.value.kind == "credit"
        assert aggregation.sum_outstanding("childA", "debt") == Decimal("500000.00")
        assert aggregation.sum_outstanding("grandchildB", "credit") == Decimal("250000.00")
        assert _payment_count(session) == 0
        assert reconciler.get_payment("tx1") is None

    def test_reconciler_default_policy(self, session, funded_tree, person_store, clock):
        strict = LedgerReconciler(session, person_store, clock, overpay_policy="reject")

        with pytest.raises(OverpayRejected):
            strict.apply_payment("childA", "grandchildB", "600000.00", "tx1")

    def test_plan_application_clamp_on_negative_balance(self):
        record = SimpleNamespace(id="r", kind="debt", amount_outstanding=Decimal("-5.00"))

        plan = plan_application(record, Decimal("10.00"), OverpayPolicy.CLAMP)

        assert plan.applied == Decimal("0")
        assert plan.unapplied == Decimal("10.00")


class TestIdempotency:
    def test_same_ref_same_details_is_replayed(self, funded_tree, reconciler, aggregation, session):
        first = reconciler.apply_payment("childA", "grandchildB", "100.00", "tx1")
        second = reconciler.apply_payment("childA", "grandchildB", "100.00", "tx1")

        assert second.already_recorded
        assert second.payment.payment_id == first.payment.payment_id
        assert second.debt is None and second.credit is None
        assert aggregation.sum_outstanding("childA", "debt") == Decimal("499900.00")
        assert _payment_count(session) == 1

    def test_same_ref_different_details_conflicts(self, funded_tree, reconciler):
        first = reconciler.apply_payment("childA", "grandchildB", "100.00", "tx1")

        with pytest.raises(PaymentConflictError) as exc_info:
            reconciler.apply_payment("childA", "grandchildB", "200.00", "tx1")

        assert exc_info.value.existing_payment_id == str(first.payment.payment_id)
        assert exc_info.value.code == "PAYMENT_CONFLICT"

    def test_replay_logs(self, funded_tree, reconciler, captured_logs):
        reconciler.apply_payment("childA", "grandchildB", "100.00", "tx1")
        reconciler.apply_payment("childA", "grandchildB", "100.00", "tx1")

        replay = next(r for r in captured_logs() if r["message"] == "payment_already_recorded")
        assert replay["payment_ref"] == "tx1"


class TestUnmatched:
    def test_payment_without_records_is_still_recorded(
        self, scenario_tree, reconciler, session, captured_logs,
    ):
        result = reconciler.apply_payment("childA", "grandchildB", "50.00", "tx1")

        assert result.debt is None
        assert result.credit is None
        assert result.unconsumed_debt == Decimal("50.00")
        assert result.payment.debt_record_id is None
        assert result.payment.credit_record_id is None
        assert _payment_count(session) == 1
        assert any(r["message"] == "payment_unmatched" for r in captured_logs())

    def test_voided_records_are_not_matched(
        self, scenario_tree, inheritance_engine, reconciler,
    ):
        run = inheritance_engine.distribute("root", "1000.00", "debt")
        inheritance_engine.void_run(run.run_id)

        result = reconciler.apply_payment("childA", "grandchildB", "10.00", "tx1")

        assert result.debt is None


class TestZeroShareRecords:
    """A share that rounded to 0.00 is settled from the start and never matched."""

    @pytest.fixture
    def dust_tree(self, build_tree, inheritance_engine):
        build_tree({"root": ["a", "b", "c"], "croot": ["x"]})
        inheritance_engine.distribute("root", "0.01", "debt")
        inheritance_engine.distribute("croot", "10.00", "credit")

    def test_zero_record_is_not_a_candidate_under_reject(self, dust_tree, reconciler, session):
        result = reconciler.apply_payment(
            "b", "x", "1.00", "tx1", overpay_policy=OverpayPolicy.REJECT,
        )

        assert result.debt is None
        assert result.payment.debt_record_id is None
        assert result.credit.applied == Decimal("1.00")
        assert _payment_count(session) == 1

    def test_zero_record_is_not_linked_under_clamp(self, dust_tree, reconciler):
        result = reconciler.apply_payment("b", "x", "1.00", "tx1")

        assert result.debt is None
        assert result.unconsumed_debt == Decimal("1.00")
        assert result.payment.debt_record_id is None

    def test_penny_holder_is_still_matched(self, dust_tree, reconciler):
        result = reconciler.apply_payment("a", "x", "0.01", "tx1")

        assert result.debt.applied == Decimal("0.01")
        assert result.debt.status_after is ObligationStatus.SETTLED


class TestAtomicity:
    """A failure after a balance write leaves no trace of the payment."""

    def test_failed_payment_insert_restores_both_balances(
        self, funded_tree, reconciler, aggregation, session, monkeypatch,
    ):
        def _fail(payment):
            raise RuntimeError("payment insert failed")

        monkeypatch.setattr(reconciler.repository, "add_payment", _fail)

        with pytest.raises(RuntimeError, match="payment insert failed"):
            reconciler.apply_payment("childA", "grandchildB", "100000.00", "tx1")

        assert aggregation.sum_outstanding("childA", "debt") == Decimal("500000.00")
        assert aggregation.sum_outstanding("grandchildB", "credit") == Decimal("250000.00")
        assert _payment_count(session) == 0

    def test_failed_credit_save_restores_debt(
        self, funded_tree, reconciler, aggregation, session, monkeypatch,
    ):
        real_save = reconciler.repository.save_balance
        saved_kinds = []

        def _fail_on_credit(record):
            if record.kind == ObligationKind.CREDIT.value:
                raise RuntimeError("credit save failed")
            real_save(record)
            saved_kinds.append(record.kind)

        monkeypatch.setattr(reconciler.repository, "save_balance", _fail_on_credit)

        with pytest.raises(RuntimeError, match="credit save failed"):
            reconciler.apply_payment("childA", "grandchildB", "100000.00", "tx1")

        assert saved_kinds == ["debt"]
        assert aggregation.sum_outstanding("childA", "debt") == Decimal("500000.00")
        assert aggregation.sum_outstanding("grandchildB", "credit") == Decimal("250000.00")
        assert _payment_count(session) == 0

        # The session is still usable after the rollback
        monkeypatch.undo()
        result = reconciler.apply_payment("childA", "grandchildB", "100.00", "tx2")
        assert result.debt.outstanding_after == Decimal("499900.00")


class TestValidation:
    @pytest.mark.parametrize("amount", ["0", "-1", "0.004", 10.5])
    def test_bad_amount(self, funded_tree, reconciler, amount):
        with pytest.raises(NonPositiveAmountError):
            reconciler.apply_payment("childA", "grandchildB", amount, "tx1")

    @pytest.mark.parametrize("ref", ["", "   "])
    def test_empty_ref(self, funded_tree, reconciler, ref):
        with pytest.raises(ValidationError, match="external_ref"):
            reconciler.apply_payment("childA", "grandchildB", "1.00", ref)

    def test_unknown_payer(self, funded_tree, reconciler):
        with pytest.raises(UnknownPersonError) as exc_info:
            reconciler.apply_payment("stranger", "grandchildB", "1.00", "tx1")

        assert exc_info.value.role == "payer"

    def test_unknown_recipient(self, funded_tree, reconciler):
        with pytest.raises(UnknownPersonError) as exc_info:
            reconciler.apply_payment("childA", "stranger", "1.00", "tx1")

        assert exc_info.value.role == "recipient"
