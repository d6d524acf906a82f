"""
SQL persistence: record store, unit of work and the engine on SQLite.

Covers:
- Round trip of records, decisions and assignments through the ORM
- compare_and_swap refuses a stale version and writes nothing
- Two interleaved units of work on a file database: one wins, one is stale
- Two threads deciding one step through the engine: one event, one refusal
- The three-step sign-off end to end on SQL
- Audit append failure rolls the state change back
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from functools import partial
from threading import Barrier

import pytest
from sqlalchemy import func, select

from workflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.domain.record import Decision, RecordStatus, WorkflowRecord
from workflow_kernel.domain.results import TransitionErrorKind
from workflow_kernel.exceptions import (
    AuditAppendError,
    RecordNotFoundError,
    StaleStateError,
)
from workflow_kernel.models.audit_event import AuditEventModel
from workflow_kernel.models.workflow_record import StepOutcomeModel, WorkflowRecordModel
from workflow_kernel.services.auditor_service import AuditTrailRecorder
from workflow_kernel.services.record_store import SqlRecordStore
from workflow_kernel.services.unit_of_work import SqlAlchemyUnitOfWork
from workflow_services.transition_engine import TransitionEngine

SUPERVISOR = "hod-1"
SECOND_SUPERVISOR = "hod-2"
HR_OFFICER = "hr-1"
EXEC_DIRECTOR = "ed-1"
STAFF = "staff-1"
OTHER_STAFF = "staff-2"

LOSING_KINDS = {
    TransitionErrorKind.STALE_STATE,
    TransitionErrorKind.WRONG_STEP,
    TransitionErrorKind.ALREADY_TERMINAL,
}


@pytest.fixture
def file_session_factory(tmp_path):
    """SQLite file database: every session gets its own connection."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'workflow.db'}")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


class TestSqlRecordStore:

    def test_round_trip(self, sql_session_factory, sql_submit):
        record = sql_submit("annual_leave", assigned_actors={2: HR_OFFICER, 3: EXEC_DIRECTOR})
        with sql_session_factory() as session:
            loaded = SqlRecordStore(session).get(record.record_id)
        assert loaded == record

    def test_unknown_record(self, sql_session_factory):
        with sql_session_factory() as session:
            store = SqlRecordStore(session)
            assert not store.exists("missing")
            with pytest.raises(RecordNotFoundError):
                store.get("missing")

    def test_compare_and_swap_persists_children(self, sql_session_factory, sql_submit, deterministic_clock):
        record = sql_submit("ria_lifecycle")
        with SqlAlchemyUnitOfWork(sql_session_factory) as uow:
            successor = replace(
                record.with_assignment(1, STAFF),
                version=2,
                updated_at=deterministic_clock.now(),
            )
            uow.records.compare_and_swap(record.record_id, 1, successor)
            uow.commit()

        with SqlAlchemyUnitOfWork(sql_session_factory) as uow:
            loaded = uow.records.get(record.record_id)
        assert loaded.version == 2
        assert loaded.assigned_actor(1) == STAFF

    def test_stale_swap_refused(self, sql_session_factory, sql_submit):
        record = sql_submit("local_leave")
        with SqlAlchemyUnitOfWork(sql_session_factory) as uow:
            uow.records.compare_and_swap(record.record_id, 1, replace(record, version=2))
            with pytest.raises(StaleStateError) as exc_info:
                uow.records.compare_and_swap(
                    record.record_id, 1, replace(record, version=2, status=RecordStatus.REJECTED),
                )
            assert exc_info.value.actual_version == 2

    def test_swap_on_missing_record(self, sql_session_factory):
        ghost = WorkflowRecord.new("local_leave", "nobody")
        with SqlAlchemyUnitOfWork(sql_session_factory) as uow:
            with pytest.raises(RecordNotFoundError):
                uow.records.compare_and_swap(ghost.record_id, 1, replace(ghost, version=2))

    def test_uncommitted_unit_of_work_rolls_back(self, sql_session_factory, sql_submit):
        record = sql_submit("local_leave")
        with SqlAlchemyUnitOfWork(sql_session_factory) as uow:
            uow.records.compare_and_swap(record.record_id, 1, replace(record, version=2))

        with SqlAlchemyUnitOfWork(sql_session_factory) as uow:
            assert uow.records.get(record.record_id).version == 1

    def test_unit_of_work_outside_context(self, sql_session_factory):
        with pytest.raises(RuntimeError, match="not active"):
            SqlAlchemyUnitOfWork(sql_session_factory).commit()


class TestInterleavedWriters:
    """Read-modify-write cycles that overlap on one record."""

    def test_second_writer_is_stale(self, file_session_factory, deterministic_clock):
        record = WorkflowRecord.new("local_leave", "applicant-1", created_at=deterministic_clock.now())
        with SqlAlchemyUnitOfWork(file_session_factory) as uow:
            uow.records.add(record)
            uow.commit()

        slow = SqlAlchemyUnitOfWork(file_session_factory)
        with slow:
            seen = slow.records.get(record.record_id)

            with SqlAlchemyUnitOfWork(file_session_factory) as fast:
                fast.records.compare_and_swap(
                    record.record_id, 1, replace(seen, version=2, status=RecordStatus.APPROVED),
                )
                fast.commit()

            with pytest.raises(StaleStateError):
                slow.records.compare_and_swap(
                    record.record_id, seen.version,
                    replace(seen, version=2, status=RecordStatus.REJECTED),
                )

        with SqlAlchemyUnitOfWork(file_session_factory) as uow:
            assert uow.records.get(record.record_id).status is RecordStatus.APPROVED

    def test_threaded_approvers_through_engine(self, file_session_factory, registry, claims, deterministic_clock):
        engine = TransitionEngine(
            partial(SqlAlchemyUnitOfWork, file_session_factory), registry, claims, clock=deterministic_clock,
        )

        for _ in range(10):
            record = WorkflowRecord.new("local_leave", STAFF, created_at=deterministic_clock.now())
            with SqlAlchemyUnitOfWork(file_session_factory) as uow:
                uow.records.add(record)
                uow.commit()
            rid = record.record_id

            barrier = Barrier(2)

            def decide(actor_id, decision):
                barrier.wait()
                return engine.apply_transition(rid, 1, actor_id, decision)

            with ThreadPoolExecutor(max_workers=2) as pool:
                futures = [
                    pool.submit(decide, SUPERVISOR, Decision.APPROVE),
                    pool.submit(decide, SECOND_SUPERVISOR, Decision.REJECT),
                ]
                results = [f.result() for f in futures]

            winners = [r for r in results if r.success]
            losers = [r for r in results if not r.success]
            assert len(winners) == 1
            assert losers[0].error in LOSING_KINDS

            stored = engine.get_record(rid)
            assert stored.version == 2
            assert stored.status is winners[0].new_status
            with file_session_factory() as session:
                recorder = AuditTrailRecorder(session)
                assert recorder.event_count(rid) == 1
                assert recorder.validate_chain(rid)


class TestEngineOnSql:

    def test_three_step_sign_off(self, sql_engine, sql_submit):
        record = sql_submit("annual_leave", assigned_actors={2: HR_OFFICER, 3: EXEC_DIRECTOR})
        rid = record.record_id

        assert sql_engine.apply_transition(rid, 1, SUPERVISOR, Decision.APPROVE).success
        assert sql_engine.apply_transition(rid, 2, HR_OFFICER, Decision.APPROVE, notes="ok").success
        refused = sql_engine.apply_transition(rid, 3, OTHER_STAFF, Decision.APPROVE)
        assert refused.error is TransitionErrorKind.NOT_AUTHORIZED
        final = sql_engine.apply_transition(rid, 3, EXEC_DIRECTOR, Decision.APPROVE)
        assert final.new_status is RecordStatus.APPROVED
        again = sql_engine.apply_transition(rid, 3, EXEC_DIRECTOR, Decision.APPROVE)
        assert again.error is TransitionErrorKind.ALREADY_TERMINAL

        stored = sql_engine.get_record(rid)
        assert stored.version == 4
        assert stored.step_outcomes[2].notes == "ok"
        trail = sql_engine.audit_trail(rid)
        assert [(e.seq, e.step_ordinal, e.actor_id) for e in trail] == [
            (1, 1, SUPERVISOR), (2, 2, HR_OFFICER), (3, 3, EXEC_DIRECTOR),
        ]

    def test_chain_and_sequence_verifiable(self, sql_engine, sql_submit, sql_session_factory):
        record = sql_submit("ria_lifecycle")
        rid = record.record_id
        sql_engine.claim_step(rid, 1, STAFF)
        for step in (1, 2, 3):
            assert sql_engine.apply_transition(rid, step, STAFF, Decision.APPROVE).success

        with sql_session_factory() as session:
            recorder = AuditTrailRecorder(session)
            assert recorder.event_count(rid) == 4
            assert recorder.validate_chain(rid)
            assert recorder.verify_monotonic(rid) == (1, 2, 3)

    def test_hand_off_persists(self, sql_engine, sql_submit):
        record = sql_submit("ria_lifecycle")
        rid = record.record_id
        sql_engine.claim_step(rid, 1, STAFF)
        assert sql_engine.assign_step(rid, 1, OTHER_STAFF, SUPERVISOR).success
        assert sql_engine.get_record(rid).assigned_actor(1) == OTHER_STAFF
        assert sql_engine.apply_transition(rid, 1, OTHER_STAFF, Decision.APPROVE).success

    def test_progress_and_durations(self, sql_engine, sql_submit, deterministic_clock):
        record = sql_submit("claim_annual_days", assigned_actors={2: HR_OFFICER})
        deterministic_clock.advance_days(4)
        sql_engine.apply_transition(record.record_id, 1, SUPERVISOR, Decision.APPROVE)
        deterministic_clock.advance_days(1)

        assert sql_engine.get_progress(record.record_id).progress_percentage == 100
        durations = sql_engine.step_durations(record.record_id)
        assert [(d.step_ordinal, d.days) for d in durations] == [(1, 4), (2, 1)]


class TestAuditRollback:
    """A change without its audit event never commits."""

    def test_append_failure_rolls_back(self, sql_engine, sql_submit, sql_session_factory, monkeypatch, captured_logs):
        record = sql_submit("local_leave")

        def fail(self, event):
            raise AuditAppendError(event.record_id, event.step_ordinal, "disk full")

        monkeypatch.setattr(AuditTrailRecorder, "append", fail)

        with pytest.raises(AuditAppendError):
            sql_engine.apply_transition(record.record_id, 1, SUPERVISOR, Decision.APPROVE)

        with sql_session_factory() as session:
            row = session.scalars(
                select(WorkflowRecordModel).where(WorkflowRecordModel.record_id == record.record_id)
            ).one()
            assert row.version == 1
            assert row.status == "active"
            assert session.scalar(select(func.count()).select_from(StepOutcomeModel)) == 0
        assert any(r["message"] == "transition_rolled_back" for r in captured_logs())

    def test_flush_failure_becomes_append_error(self, sql_engine, sql_submit, sql_session_factory, monkeypatch):
        record = sql_submit("annual_leave", assigned_actors={2: HR_OFFICER, 3: EXEC_DIRECTOR})
        rid = record.record_id
        assert sql_engine.apply_transition(rid, 1, SUPERVISOR, Decision.APPROVE).success

        # A writer that lost track of the chain tail reuses seq 1
        monkeypatch.setattr(AuditTrailRecorder, "_tail", lambda self, record_id: (0, None))

        with pytest.raises(AuditAppendError):
            sql_engine.apply_transition(rid, 2, HR_OFFICER, Decision.APPROVE)

        monkeypatch.undo()
        stored = sql_engine.get_record(rid)
        assert stored.current_step_ordinal == 2
        assert stored.version == 2
        with sql_session_factory() as session:
            assert session.scalar(select(func.count()).select_from(AuditEventModel)) == 1

    def test_memory_backend_rolls_back(self, engine, backend, annual_leave, monkeypatch):
        from workflow_kernel.services import memory_backend

        def fail(self, event):
            raise AuditAppendError(event.record_id, event.step_ordinal, "log unavailable")

        monkeypatch.setattr(memory_backend._StagedAuditLog, "append", fail)

        with pytest.raises(AuditAppendError):
            engine.apply_transition(annual_leave.record_id, 1, SUPERVISOR, Decision.APPROVE)
        assert backend.get(annual_leave.record_id) == annual_leave
        assert backend.events_for(annual_leave.record_id) == ()


def test_sql_engine_factory_is_partial(sql_session_factory):
    factory = partial(SqlAlchemyUnitOfWork, sql_session_factory)
    with factory() as uow:
        assert isinstance(uow.records, SqlRecordStore)
        assert isinstance(uow.audit, AuditTrailRecorder)
