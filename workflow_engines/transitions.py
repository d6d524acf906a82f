"""
workflow_engines.transitions -- Pure workflow state machine.

Responsibility:
    Given a record snapshot, its definition, the acting actor's claims and a
    requested change, compute the successor record and the audit event that
    describes it -- or raise the typed refusal.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The caller supplies
    ``occurred_at``; nothing here reads a clock or a store.

State machine:
    active(k) --approve, k < N--> active(k+1)
    active(N) --approve-------> approved
    active(k) --reject--------> rejected        (any k, including N)
    approved / rejected         accept nothing

Invariants enforced:
    - Refusals are checked in a fixed order: AlreadyTerminal,
      InvalidDefinition, WrongStep, NotAuthorized, StaleState.
    - ``current_step_ordinal`` never decreases.
    - ``step_outcomes`` gains exactly one entry per decision; existing
      entries are never replaced.
    - ``version`` increases by exactly one per plan.
    - When step k+1 becomes current and its rule inherits an actor from an
      earlier step, that actor is copied into ``assigned_actors[k+1]``
      unless a nominee is already present.

Failure modes:
    - AlreadyTerminalError, InvalidDefinitionError, WrongStepError,
      NotAuthorizedError, StaleStateError.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime

from workflow_engines.authorization import (
    evaluate_step_rule,
    may_assign,
    require_authority,
)
from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.record import (
    DECISION_ACTIONS,
    AuditAction,
    AuditEvent,
    Decision,
    RecordStatus,
    StepOutcome,
    WorkflowRecord,
)
from workflow_kernel.domain.workflow import (
    AssignedActorRule,
    FixedRoleRule,
    SelfAssignmentRule,
    StepDefinition,
    WorkflowDefinition,
)
from workflow_kernel.exceptions import (
    AlreadyTerminalError,
    InvalidDefinitionError,
    NotAuthorizedError,
    StaleStateError,
    WrongStepError,
)


@dataclass(frozen=True)
class TransitionPlan:
    """A computed change, ready for compare-and-swap and audit append.

    ``expected_version`` is the version the successor was derived from;
    ``record.version == expected_version + 1``.
    """

    record: WorkflowRecord
    event: AuditEvent
    expected_version: int
    claimed: bool = False

    @property
    def advanced(self) -> bool:
        return self.record.is_active and self.record.current_step_ordinal > self.event.step_ordinal


# =============================================================================
# Guards
# =============================================================================


def ensure_active(record: WorkflowRecord) -> None:
    """Raises AlreadyTerminalError if the record has left ``active``."""
    if not record.is_active:
        raise AlreadyTerminalError(record.record_id, record.status.value)


def ensure_definition(
    record: WorkflowRecord,
    definition: WorkflowDefinition | None,
) -> WorkflowDefinition:
    if definition is None:
        raise InvalidDefinitionError(record.workflow_type_id, "unknown workflow type")
    if definition.workflow_type_id != record.workflow_type_id:
        raise InvalidDefinitionError(
            record.workflow_type_id,
            f"definition {definition.workflow_type_id} does not govern this record",
        )
    # The record's own position must resolve too
    definition.step(record.current_step_ordinal)
    return definition


def ensure_current_step(
    definition: WorkflowDefinition,
    record: WorkflowRecord,
    step_ordinal: int,
) -> StepDefinition:
    """Return the requested step iff it is the record's current step.

    Raises:
        InvalidDefinitionError: Ordinal outside ``1..N``.
        WrongStepError: Ordinal is a past or future step.
    """
    step = definition.step(step_ordinal)
    if step_ordinal != record.current_step_ordinal:
        raise WrongStepError(record.record_id, step_ordinal, record.current_step_ordinal)
    return step


def ensure_version(record: WorkflowRecord, expected_version: int | None) -> int:
    if expected_version is not None and expected_version != record.version:
        raise StaleStateError(record.record_id, expected_version, record.version)
    return record.version


# =============================================================================
# Helpers
# =============================================================================


def _enter_step(
    definition: WorkflowDefinition,
    assigned: dict[int, str],
    ordinal: int,
) -> None:
    """Resolve inherited assignment as ``ordinal`` becomes current."""
    rule = definition.step(ordinal).actor_rule
    if (
        isinstance(rule, AssignedActorRule)
        and rule.inherit_from_step is not None
        and ordinal not in assigned
    ):
        inherited = assigned.get(rule.inherit_from_step)
        if inherited is not None:
            assigned[ordinal] = inherited


def _successor(record: WorkflowRecord, occurred_at: datetime, **changes) -> WorkflowRecord:
    return replace(record, version=record.version + 1, updated_at=occurred_at, **changes)


# =============================================================================
# Planners
# =============================================================================


@traced_engine("transition", "1.0", fingerprint_fields=("step_ordinal", "actor_id", "decision"))
def plan_transition(
    *,
    definition: WorkflowDefinition | None,
    record: WorkflowRecord,
    step_ordinal: int,
    actor_id: str,
    actor_roles: Iterable[str],
    decision: Decision,
    occurred_at: datetime,
    notes: str = "",
    expected_version: int | None = None,
) -> TransitionPlan:
    """Plan an approve/reject decision on the record's current step."""
    ensure_active(record)
    definition = ensure_definition(record, definition)
    ensure_current_step(definition, record, step_ordinal)
    authority = require_authority(definition, record, actor_id, actor_roles)
    base_version = ensure_version(record, expected_version)

    decision = Decision(decision)
    outcomes = dict(record.step_outcomes)
    outcomes[step_ordinal] = StepOutcome(
        actor_id=actor_id,
        decided_at=occurred_at,
        decision=decision,
        notes=notes,
    )

    assigned = dict(record.assigned_actors)
    if authority.claim_required:
        assigned[step_ordinal] = actor_id

    status = record.status
    current = record.current_step_ordinal
    if decision is Decision.REJECT:
        status = RecordStatus.REJECTED
    elif definition.is_last(step_ordinal):
        status = RecordStatus.APPROVED
    else:
        current = step_ordinal + 1
        _enter_step(definition, assigned, current)

    new_record = _successor(
        record,
        occurred_at,
        current_step_ordinal=current,
        status=status,
        step_outcomes=outcomes,
        assigned_actors=assigned,
    )
    event = AuditEvent.build(
        record,
        step_ordinal=step_ordinal,
        actor_id=actor_id,
        action=DECISION_ACTIONS[decision],
        occurred_at=occurred_at,
        decision=decision,
        notes=notes,
    )
    return TransitionPlan(new_record, event, base_version, claimed=authority.claim_required)


@traced_engine("claim", "1.0", fingerprint_fields=("step_ordinal", "actor_id"))
def plan_claim(
    *,
    definition: WorkflowDefinition | None,
    record: WorkflowRecord,
    step_ordinal: int,
    actor_id: str,
    actor_roles: Iterable[str],
    occurred_at: datetime,
    expected_version: int | None = None,
) -> TransitionPlan:
    """Plan "assign to me" on an unclaimed self-assignment step.

    First claim wins: a step that already has an actor refuses further
    claims with NotAuthorizedError.
    """
    ensure_active(record)
    definition = ensure_definition(record, definition)
    step = ensure_current_step(definition, record, step_ordinal)

    if not isinstance(step.actor_rule, SelfAssignmentRule):
        raise NotAuthorizedError(
            record.record_id, step_ordinal, actor_id,
            f"{step.actor_rule.kind.value} steps cannot be claimed",
        )
    authority = evaluate_step_rule(step, record, actor_id, actor_roles)
    if not authority.allowed or not authority.claim_required:
        holder = record.assigned_actor(step_ordinal)
        reason = f"step already claimed by {holder}" if holder else authority.reason
        raise NotAuthorizedError(record.record_id, step_ordinal, actor_id, reason)
    base_version = ensure_version(record, expected_version)

    new_record = _successor(record.with_assignment(step_ordinal, actor_id), occurred_at)
    event = AuditEvent.build(
        record,
        step_ordinal=step_ordinal,
        actor_id=actor_id,
        action=AuditAction.STEP_CLAIMED,
        occurred_at=occurred_at,
        subject_actor_id=actor_id,
    )
    return TransitionPlan(new_record, event, base_version, claimed=True)


@traced_engine("assignment", "1.0", fingerprint_fields=("step_ordinal", "assignee_id", "actor_id"))
def plan_assignment(
    *,
    definition: WorkflowDefinition | None,
    record: WorkflowRecord,
    step_ordinal: int,
    assignee_id: str,
    actor_id: str,
    actor_roles: Iterable[str],
    occurred_at: datetime,
    notes: str = "",
    expected_version: int | None = None,
) -> TransitionPlan:
    """Plan an assigner's hand-off of a current or future step to ``assignee_id``.

    Decided steps cannot be reassigned (WrongStepError); fixed-role steps
    have no individual actor to assign (NotAuthorizedError).
    """
    ensure_active(record)
    definition = ensure_definition(record, definition)
    step = definition.step(step_ordinal)
    if step_ordinal < record.current_step_ordinal:
        raise WrongStepError(record.record_id, step_ordinal, record.current_step_ordinal)
    if not may_assign(definition, actor_roles):
        raise NotAuthorizedError(
            record.record_id, step_ordinal, actor_id,
            f"assigning requires one of roles {sorted(definition.assigner_roles)}",
        )
    if isinstance(step.actor_rule, FixedRoleRule):
        raise NotAuthorizedError(
            record.record_id, step_ordinal, actor_id,
            "fixed-role steps have no individual actor to assign",
        )
    base_version = ensure_version(record, expected_version)

    new_record = _successor(record.with_assignment(step_ordinal, assignee_id), occurred_at)
    event = AuditEvent.build(
        record,
        step_ordinal=step_ordinal,
        actor_id=actor_id,
        action=AuditAction.STEP_ASSIGNED,
        occurred_at=occurred_at,
        notes=notes,
        subject_actor_id=assignee_id,
    )
    return TransitionPlan(new_record, event, base_version)
