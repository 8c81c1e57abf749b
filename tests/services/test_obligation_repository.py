"""
ObligationRepository persistence tests.

Verifies:
- Run revisions and the active-run lookup
- Natural-key deduplication of obligation records
- Optimistic locking on balance updates
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from obligation_kernel.domain.obligation import ObligationKind, RunStatus
from obligation_kernel.exceptions import OptimisticLockError, RunNotFoundError
from obligation_kernel.models.obligation import ObligationRecord
from obligation_kernel.services.obligation_repository import ObligationRepository
from obligation_kernel.utils.hashing import lineage_hash

STARTED = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def repository(session) -> ObligationRepository:
    return ObligationRepository(session)


def _record(run, descendant_id: str, path: tuple[str, ...]) -> ObligationRecord:
    return ObligationRecord(
        kind=run.kind,
        run_id=run.id,
        root_id=run.root_id,
        descendant_id=descendant_id,
        parent_id=path[-2],
        generation_distance=len(path) - 1,
        lineage_hash=lineage_hash(path),
        amount_at_this_level=Decimal("10.00"),
        inherited_portion=Decimal("10.00"),
        sibling_share_factor=Decimal("1"),
        sibling_count=1,
        amount_paid=Decimal("0"),
        amount_outstanding=Decimal("10.00"),
        status="created",
        created_at=STARTED,
        updated_at=STARTED,
    )


class TestRuns:
    def test_first_run_is_revision_one(self, repository):
        run, created = repository.create_run(
            "root", ObligationKind.DEBT, Decimal("10.00"), 10, STARTED,
        )

        assert created
        assert run.revision == 1
        assert run.run_status is RunStatus.IN_PROGRESS
        assert repository.get_active_run("root", ObligationKind.DEBT) is run
        assert repository.get_active_run("root", ObligationKind.CREDIT) is None

    def test_revisions_increase(self, repository):
        first, _ = repository.create_run("root", ObligationKind.DEBT, Decimal("1"), 10, STARTED)
        first.status = RunStatus.SUPERSEDED.value
        second, _ = repository.create_run("root", ObligationKind.DEBT, Decimal("2"), 10, STARTED)

        assert second.revision == 2
        assert repository.latest_revision("root", ObligationKind.DEBT) == 2
        assert [r.revision for r in repository.runs_for_root("root", ObligationKind.DEBT)] == [1, 2]

    @pytest.mark.parametrize("run_id", ["not-a-uuid", "00000000-0000-0000-0000-000000000000"])
    def test_get_run_unknown(self, repository, run_id):
        with pytest.raises(RunNotFoundError):
            repository.get_run(run_id)


class TestRecords:
    def test_natural_key_insert_is_deduplicated(self, repository):
        run, _ = repository.create_run("root", ObligationKind.DEBT, Decimal("10.00"), 10, STARTED)

        assert repository.insert_record_if_absent(_record(run, "a", ("root", "a")))
        assert not repository.insert_record_if_absent(_record(run, "a", ("root", "a")))
        assert repository.existing_keys(run.id) == {("a", 1, lineage_hash(("root", "a")))}

    def test_same_descendant_other_route_is_distinct(self, repository):
        run, _ = repository.create_run("root", ObligationKind.DEBT, Decimal("10.00"), 10, STARTED)

        assert repository.insert_record_if_absent(_record(run, "c", ("root", "a", "c")))
        assert repository.insert_record_if_absent(_record(run, "c", ("root", "b", "c")))
        assert len(repository.records_for_run(run.id)) == 2

    def test_void_records(self, repository):
        run, _ = repository.create_run("root", ObligationKind.DEBT, Decimal("10.00"), 10, STARTED)
        repository.insert_record_if_absent(_record(run, "a", ("root", "a")))

        assert repository.void_records(run.id, STARTED) == 1
        assert repository.records_for_run(run.id, include_voided=False) == []
        assert repository.void_records(run.id, STARTED) == 0


class TestOptimisticLocking:
    def test_stale_balance_write_is_rejected(
        self, scenario_tree, inheritance_engine, session, session_factory,
    ):
        inheritance_engine.distribute("root", "100.00", "debt")
        session.commit()

        first = session_factory()
        second = session_factory()
        try:
            query = select(ObligationRecord).where(ObligationRecord.descendant_id == "childA")
            stale = first.execute(query).scalar_one()
            first.commit()

            fresh = second.execute(query).scalar_one()
            fresh.amount_paid = Decimal("10.00")
            fresh.amount_outstanding = Decimal("40.00")
            second.commit()

            stale.amount_paid = Decimal("20.00")
            stale.amount_outstanding = Decimal("30.00")
            with pytest.raises(OptimisticLockError) as exc_info:
                ObligationRepository(first).save_balance(stale)

            assert exc_info.value.entity_type == "ObligationRecord"
            assert exc_info.value.entity_id == str(stale.id)
        finally:
            first.rollback()
            first.close()
            second.close()
