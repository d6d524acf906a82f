"""
TransitionEngine against the in-memory backend.

Covers:
- The literal three-step sign-off: approve, approve, refused impostor,
  approve, then AlreadyTerminal
- Rejection short-circuits at any step
- Refusals are returned, never raised, and leave no trace
- Every applied change yields exactly one audit event
- Claim ("assign to me") and hand-off on the RIA lifecycle
- Queries: get_record, get_progress, audit_trail, step_durations
- Structured logging of applied and refused transitions
"""

import pytest

from workflow_kernel.domain.record import AuditAction, Decision, RecordStatus
from workflow_kernel.domain.results import StepStatus, TransitionErrorKind
from workflow_kernel.exceptions import RecordNotFoundError

# Role claims for these actors are set up in conftest.py
SUPERVISOR = "hod-1"
SECOND_SUPERVISOR = "hod-2"
HR_OFFICER = "hr-1"
EXEC_DIRECTOR = "ed-1"
APPLICANT = "applicant-1"
STAFF = "staff-1"
OTHER_STAFF = "staff-2"
OUTSIDER = "visitor-1"


class TestThreeStepSignOff:
    """Annual leave: supervisor, HR certification, Executive Director."""

    def test_full_chain(self, engine, backend, annual_leave):
        rid = annual_leave.record_id

        result = engine.apply_transition(rid, 1, SUPERVISOR, Decision.APPROVE)
        assert result.success
        assert result.new_status is RecordStatus.ACTIVE
        assert result.new_current_step == 2
        assert result.event.step_ordinal == 1
        assert result.event.actor_id == SUPERVISOR
        assert result.event.decision is Decision.APPROVE

        result = engine.apply_transition(rid, 2, HR_OFFICER, Decision.APPROVE, notes="ok")
        assert result.success
        assert result.new_current_step == 3
        assert result.event.notes == "ok"

        refused = engine.apply_transition(rid, 3, OTHER_STAFF, Decision.APPROVE)
        assert not refused.success
        assert refused.error is TransitionErrorKind.NOT_AUTHORIZED
        assert refused.explanation == "You are not the assigned approver for this step."
        assert backend.get(rid).current_step_ordinal == 3
        assert len(backend.events_for(rid)) == 2

        result = engine.apply_transition(rid, 3, EXEC_DIRECTOR, Decision.APPROVE)
        assert result.success
        assert result.new_status is RecordStatus.APPROVED

        after = engine.apply_transition(rid, 3, EXEC_DIRECTOR, Decision.APPROVE)
        assert after.error is TransitionErrorKind.ALREADY_TERMINAL

        events = backend.events_for(rid)
        assert [(e.step_ordinal, e.decision, e.actor_id) for e in events] == [
            (1, Decision.APPROVE, SUPERVISOR),
            (2, Decision.APPROVE, HR_OFFICER),
            (3, Decision.APPROVE, EXEC_DIRECTOR),
        ]
        assert [e.seq for e in events] == [1, 2, 3]
        assert backend.validate_chain(rid)
        assert backend.verify_monotonic(rid) == (1, 2, 3)

    def test_any_supervisor_may_decide_step_one(self, engine, annual_leave):
        result = engine.apply_transition(annual_leave.record_id, 1, SECOND_SUPERVISOR, "approve")
        assert result.success

    def test_single_step_workflow(self, engine, submit):
        record = submit("local_leave")
        result = engine.apply_transition(record.record_id, 1, SUPERVISOR, Decision.APPROVE)
        assert result.new_status is RecordStatus.APPROVED


class TestRejection:

    @pytest.mark.parametrize("step, actor", [(1, SUPERVISOR), (2, HR_OFFICER), (3, EXEC_DIRECTOR)])
    def test_reject_terminates(self, engine, backend, annual_leave, step, actor):
        rid = annual_leave.record_id
        approvers = [SUPERVISOR, HR_OFFICER, EXEC_DIRECTOR]
        for ordinal in range(1, step):
            assert engine.apply_transition(rid, ordinal, approvers[ordinal - 1], Decision.APPROVE).success

        result = engine.apply_transition(rid, step, actor, Decision.REJECT, notes="insufficient balance")
        assert result.success
        assert result.new_status is RecordStatus.REJECTED

        record = backend.get(rid)
        assert record.current_step_ordinal == step
        assert record.step_outcomes[step].notes == "insufficient balance"

        later = engine.apply_transition(rid, step, actor, Decision.APPROVE)
        assert later.error is TransitionErrorKind.ALREADY_TERMINAL


class TestRefusals:
    """Refused requests change nothing and write nothing."""

    def test_unknown_record(self, engine):
        result = engine.apply_transition("no-such-record", 1, SUPERVISOR, Decision.APPROVE)
        assert not result.success
        assert result.error is TransitionErrorKind.NOT_FOUND

    def test_unknown_workflow_type(self, engine, backend, submit):
        record = submit("sabbatical")
        result = engine.apply_transition(record.record_id, 1, SUPERVISOR, Decision.APPROVE)
        assert result.error is TransitionErrorKind.INVALID_DEFINITION
        assert backend.events_for(record.record_id) == ()

    def test_skip_ahead(self, engine, backend, annual_leave):
        result = engine.apply_transition(annual_leave.record_id, 2, HR_OFFICER, Decision.APPROVE)
        assert result.error is TransitionErrorKind.WRONG_STEP
        assert backend.get(annual_leave.record_id) == annual_leave

    def test_redecide_past_step(self, engine, annual_leave):
        rid = annual_leave.record_id
        engine.apply_transition(rid, 1, SUPERVISOR, Decision.APPROVE)
        result = engine.apply_transition(rid, 1, SECOND_SUPERVISOR, Decision.REJECT)
        assert result.error is TransitionErrorKind.WRONG_STEP

    def test_out_of_range_step(self, engine, annual_leave):
        result = engine.apply_transition(annual_leave.record_id, 7, SUPERVISOR, Decision.APPROVE)
        assert result.error is TransitionErrorKind.INVALID_DEFINITION

    def test_role_mismatch(self, engine, backend, annual_leave):
        result = engine.apply_transition(annual_leave.record_id, 1, OUTSIDER, Decision.APPROVE)
        assert result.error is TransitionErrorKind.NOT_AUTHORIZED
        assert result.reason
        assert backend.events_for(annual_leave.record_id) == ()

    def test_unassigned_step(self, engine, submit):
        record = submit("claim_annual_days")
        engine.apply_transition(record.record_id, 1, SUPERVISOR, Decision.APPROVE)
        result = engine.apply_transition(record.record_id, 2, HR_OFFICER, Decision.APPROVE)
        assert result.error is TransitionErrorKind.NOT_AUTHORIZED

    def test_snapshot_edit_cannot_grant_authority(self, engine, backend, annual_leave):
        rid = annual_leave.record_id
        snapshot = engine.get_record(rid)
        with pytest.raises(TypeError):
            snapshot.assigned_actors[2] = OUTSIDER

        engine.apply_transition(rid, 1, SUPERVISOR, Decision.APPROVE)
        result = engine.apply_transition(rid, 2, OUTSIDER, Decision.APPROVE)

        assert result.error is TransitionErrorKind.NOT_AUTHORIZED
        assert backend.get(rid).assigned_actor(2) == HR_OFFICER
        assert len(backend.events_for(rid)) == 1

    def test_stale_expected_version(self, engine, backend, annual_leave):
        result = engine.apply_transition(
            annual_leave.record_id, 1, SUPERVISOR, Decision.APPROVE, expected_version=5,
        )
        assert result.error is TransitionErrorKind.STALE_STATE
        assert backend.get(annual_leave.record_id).version == 1

    def test_refusal_is_logged(self, engine, annual_leave, captured_logs):
        engine.apply_transition(annual_leave.record_id, 2, HR_OFFICER, Decision.APPROVE)
        refused = [r for r in captured_logs() if r["message"] == "transition_refused"]
        assert len(refused) == 1
        assert refused[0]["error_code"] == "WRONG_STEP"
        assert refused[0]["record_id"] == annual_leave.record_id
        assert refused[0]["actor_id"] == HR_OFFICER


class TestApplied:

    def test_applied_is_logged(self, engine, annual_leave, captured_logs):
        engine.apply_transition(annual_leave.record_id, 1, SUPERVISOR, Decision.APPROVE)
        applied = [r for r in captured_logs() if r["message"] == "transition_applied"]
        assert len(applied) == 1
        assert applied[0]["new_current_step"] == 2
        assert applied[0]["action"] == "step_approved"
        assert applied[0]["version"] == 2

    def test_version_bumps_once_per_change(self, engine, backend, annual_leave):
        rid = annual_leave.record_id
        engine.apply_transition(rid, 1, SUPERVISOR, Decision.APPROVE)
        engine.apply_transition(rid, 2, HR_OFFICER, Decision.APPROVE)
        assert backend.get(rid).version == 3

    def test_decision_timestamp_from_clock(self, engine, backend, annual_leave, deterministic_clock):
        deterministic_clock.advance_days(2)
        engine.apply_transition(annual_leave.record_id, 1, SUPERVISOR, Decision.APPROVE)
        outcome = backend.get(annual_leave.record_id).step_outcomes[1]
        assert outcome.decided_at == deterministic_clock.now()


class TestClaimAndAssign:
    """RIA lifecycle: claim, hand-off and carried-forward officer."""

    def test_claim_then_advance(self, engine, backend, ria):
        rid = ria.record_id
        claimed = engine.claim_step(rid, 1, STAFF)
        assert claimed.success
        assert claimed.event.action is AuditAction.STEP_CLAIMED
        assert claimed.new_current_step == 1

        assert engine.apply_transition(rid, 1, STAFF, Decision.APPROVE).success
        record = backend.get(rid)
        assert record.current_step_ordinal == 2
        assert record.assigned_actor(2) == STAFF

    def test_second_claim_refused(self, engine, ria):
        assert engine.claim_step(ria.record_id, 1, STAFF).success
        result = engine.claim_step(ria.record_id, 1, OTHER_STAFF)
        assert result.error is TransitionErrorKind.NOT_AUTHORIZED

    def test_claimed_step_closed_to_others(self, engine, ria):
        engine.claim_step(ria.record_id, 1, STAFF)
        result = engine.apply_transition(ria.record_id, 1, OTHER_STAFF, Decision.APPROVE)
        assert result.error is TransitionErrorKind.NOT_AUTHORIZED

    def test_deciding_unclaimed_step_claims_it(self, engine, backend, ria):
        assert engine.apply_transition(ria.record_id, 1, STAFF, Decision.APPROVE).success
        assert backend.get(ria.record_id).assigned_actor(1) == STAFF

    def test_hand_off_redirects_authority(self, engine, backend, ria):
        rid = ria.record_id
        engine.apply_transition(rid, 1, STAFF, Decision.APPROVE)

        handed = engine.assign_step(rid, 2, OTHER_STAFF, SUPERVISOR, notes="leave cover")
        assert handed.success
        assert handed.event.action is AuditAction.STEP_ASSIGNED
        assert handed.event.subject_actor_id == OTHER_STAFF

        assert engine.apply_transition(rid, 2, STAFF, Decision.APPROVE).error is (
            TransitionErrorKind.NOT_AUTHORIZED
        )
        assert engine.apply_transition(rid, 2, OTHER_STAFF, Decision.APPROVE).success
        assert backend.get(rid).assigned_actor(3) == OTHER_STAFF

    def test_assign_requires_assigner_role(self, engine, ria):
        result = engine.assign_step(ria.record_id, 1, OTHER_STAFF, STAFF)
        assert result.error is TransitionErrorKind.NOT_AUTHORIZED

    def test_assign_past_step_refused(self, engine, ria):
        engine.apply_transition(ria.record_id, 1, STAFF, Decision.APPROVE)
        result = engine.assign_step(ria.record_id, 1, OTHER_STAFF, SUPERVISOR)
        assert result.error is TransitionErrorKind.WRONG_STEP

    def test_full_ria_lifecycle(self, engine, backend, ria):
        rid = ria.record_id
        engine.claim_step(rid, 1, STAFF)
        for step in range(1, 16):
            result = engine.apply_transition(rid, step, STAFF, Decision.APPROVE)
            assert result.success, result.reason
        assert backend.get(rid).status is RecordStatus.APPROVED
        assert backend.verify_monotonic(rid) == tuple(range(1, 16))
        assert len(backend.events_for(rid)) == 16


class TestQueries:

    def test_get_record(self, engine, annual_leave):
        assert engine.get_record(annual_leave.record_id) == annual_leave

    def test_get_record_unknown(self, engine):
        with pytest.raises(RecordNotFoundError):
            engine.get_record("missing")

    def test_get_progress(self, engine, annual_leave):
        engine.apply_transition(annual_leave.record_id, 1, SUPERVISOR, Decision.APPROVE)
        progress = engine.get_progress(annual_leave.record_id)
        assert progress.progress_percentage == 67
        assert progress.steps[0].status is StepStatus.APPROVED
        assert progress.steps[1].status is StepStatus.PENDING
        assert progress.steps[1].actor_id == HR_OFFICER

    def test_audit_trail(self, engine, annual_leave):
        engine.apply_transition(annual_leave.record_id, 1, SUPERVISOR, Decision.APPROVE)
        trail = engine.audit_trail(annual_leave.record_id)
        assert len(trail) == 1
        assert trail[0].prev_hash is None
        assert trail[0].hash

    def test_audit_trail_unknown_record(self, engine):
        with pytest.raises(RecordNotFoundError):
            engine.audit_trail("missing")

    def test_step_durations(self, engine, ria, deterministic_clock):
        rid = ria.record_id
        deterministic_clock.advance_days(3)
        engine.apply_transition(rid, 1, STAFF, Decision.APPROVE)
        deterministic_clock.advance_days(2)

        durations = engine.step_durations(rid)
        assert [(d.step_ordinal, d.days) for d in durations] == [(1, 3), (2, 2)]
        assert durations[-1].is_open

    def test_submitter_is_subject(self, engine, annual_leave):
        assert engine.get_record(annual_leave.record_id).subject_id == APPLICANT
