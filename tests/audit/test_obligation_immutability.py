"""
ORM-level immutability of payments and distributed obligation records.

Payments are append-only.  Obligation records accept balance updates only;
their derivation fields and their existence are fixed.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from obligation_kernel.exceptions import ImmutabilityViolationError
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.models.payment import PaymentRecord


@pytest.fixture
def paid_ledger(scenario_tree, inheritance_engine, reconciler, session):
    inheritance_engine.distribute("root", "1000.00", "debt")
    reconciler.apply_payment("childA", "childB", "10.00", "tx1")
    session.flush()


def _record(session, descendant_id: str) -> ObligationRecord:
    return session.execute(
        select(ObligationRecord).where(ObligationRecord.descendant_id == descendant_id)
    ).scalar_one()


class TestPaymentImmutability:
    def test_payment_update_blocked(self, paid_ledger, session):
        payment = session.execute(select(PaymentRecord)).scalar_one()
        payment.amount = Decimal("999.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "PaymentRecord"

    def test_payment_delete_blocked(self, paid_ledger, session):
        payment = session.execute(select(PaymentRecord)).scalar_one()
        session.delete(payment)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestObligationRecordImmutability:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("inherited_portion", Decimal("1.00")),
            ("descendant_id", "someone_else"),
            ("generation_distance", 7),
            ("lineage_hash", "0" * 64),
        ],
    )
    def test_structural_update_blocked(self, paid_ledger, session, field, value):
        record = _record(session, "grandchildA")
        setattr(record, field, value)

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert field in exc_info.value.reason

    def test_balance_update_allowed(self, paid_ledger, session):
        record = _record(session, "grandchildA")
        version = record.version
        record.amount_paid = Decimal("1.00")
        record.amount_outstanding = record.inherited_portion - Decimal("1.00")
        record.status = "partially_paid"

        session.flush()

        assert record.version == version + 1

    def test_delete_blocked(self, paid_ledger, session):
        session.delete(_record(session, "grandchildA"))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
