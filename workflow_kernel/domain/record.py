"""
Workflow record and audit event types (``workflow_kernel.domain.record``).

Responsibility
--------------
Frozen snapshots of a workflow instance (a leave request, an RIA
submission) and of the audit events produced when it changes.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``current_step_ordinal`` starts at 1 and only increases while ``active``.
* ``step_outcomes`` is append-only: one entry per decided step.
* Once ``status`` leaves ``active`` the record is immutable.
* ``version`` increases by exactly one on every applied change; it is the
  compare-and-swap token.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping
from uuid import uuid4


class RecordStatus(str, Enum):
    """Workflow record lifecycle states.

    ``APPROVED`` is the approved/completed terminal status: leave requests
    read it as "approved", RIA submissions as "completed".
    """

    ACTIVE = "active"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not RecordStatus.ACTIVE


class Decision(str, Enum):
    """Decisions an authorized actor can apply to the current step."""

    APPROVE = "approve"
    REJECT = "reject"


class AuditAction(str, Enum):
    """Types of auditable workflow actions."""

    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    STEP_CLAIMED = "step_claimed"
    STEP_ASSIGNED = "step_assigned"


DECISION_ACTIONS: dict[Decision, AuditAction] = {
    Decision.APPROVE: AuditAction.STEP_APPROVED,
    Decision.REJECT: AuditAction.STEP_REJECTED,
}


@dataclass(frozen=True)
class StepOutcome:
    """Record of a single step decision. Immutable."""

    actor_id: str
    decided_at: datetime
    decision: Decision
    notes: str = ""


@dataclass(frozen=True)
class WorkflowRecord:
    """Immutable snapshot of one workflow instance.

    Mutations go through ``dataclasses.replace`` in the transition engine;
    nothing else writes ``current_step_ordinal``, ``status``,
    ``step_outcomes`` or ``assigned_actors``.
    """

    record_id: str
    workflow_type_id: str
    subject_id: str
    current_step_ordinal: int = 1
    status: RecordStatus = RecordStatus.ACTIVE
    step_outcomes: Mapping[int, StepOutcome] = field(default_factory=dict)
    assigned_actors: Mapping[int, str] = field(default_factory=dict)
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        # Read-only views over private copies, so a snapshot cannot edit stored state
        object.__setattr__(self, "step_outcomes", MappingProxyType(dict(self.step_outcomes)))
        object.__setattr__(self, "assigned_actors", MappingProxyType(dict(self.assigned_actors)))

    @classmethod
    def new(
        cls,
        workflow_type_id: str,
        subject_id: str,
        *,
        assigned_actors: Mapping[int, str] | None = None,
        record_id: str | None = None,
        created_at: datetime | None = None,
    ) -> WorkflowRecord:
        """Build a freshly submitted record in ``active(1)``.

        ``assigned_actors`` carries submitter nominations (e.g. the HR
        certifier and Executive Director of an annual leave request).
        """
        return cls(
            record_id=record_id or str(uuid4()),
            workflow_type_id=workflow_type_id,
            subject_id=subject_id,
            assigned_actors=dict(assigned_actors or {}),
            created_at=created_at,
            updated_at=created_at,
        )

    @property
    def is_active(self) -> bool:
        return self.status is RecordStatus.ACTIVE

    def assigned_actor(self, ordinal: int) -> str | None:
        return self.assigned_actors.get(ordinal)

    def with_assignment(self, ordinal: int, actor_id: str) -> WorkflowRecord:
        """Return a copy with ``assigned_actors[ordinal] = actor_id``.

        Does not bump ``version``; the caller applies exactly one bump per
        committed change.
        """
        actors = dict(self.assigned_actors)
        actors[ordinal] = actor_id
        return replace(self, assigned_actors=actors)


@dataclass(frozen=True)
class AuditEvent:
    """An immutable audit event for one applied workflow change.

    ``seq``, ``prev_hash`` and ``hash`` are assigned by the audit log at
    append time; events built by the transition planner carry ``seq=0``.
    ``decision`` is set for approve/reject events and None for claim and
    assignment events.
    """

    event_id: str
    record_id: str
    workflow_type_id: str
    step_ordinal: int
    actor_id: str
    action: AuditAction
    occurred_at: datetime
    decision: Decision | None = None
    notes: str = ""
    subject_actor_id: str | None = None
    seq: int = 0
    prev_hash: str | None = None
    hash: str | None = None

    @classmethod
    def build(
        cls,
        record: WorkflowRecord,
        *,
        step_ordinal: int,
        actor_id: str,
        action: AuditAction,
        occurred_at: datetime,
        decision: Decision | None = None,
        notes: str = "",
        subject_actor_id: str | None = None,
    ) -> AuditEvent:
        return cls(
            event_id=str(uuid4()),
            record_id=record.record_id,
            workflow_type_id=record.workflow_type_id,
            step_ordinal=step_ordinal,
            actor_id=actor_id,
            action=action,
            occurred_at=occurred_at,
            decision=decision,
            notes=notes,
            subject_actor_id=subject_actor_id,
        )

    @property
    def is_decision(self) -> bool:
        return self.decision is not None
