"""
Module: workflow_kernel.models.workflow_record
Responsibility: ORM persistence for workflow records, their per-step
    decisions and their per-step actor assignments.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value objects only.

Invariants enforced:
    - Valid status values (check constraint).
    - ``version`` is the optimistic-concurrency token; the record store
      updates rows with ``WHERE version = :expected``.
    - One decision per (record, step) -- UNIQUE constraint.
    - Decisions are append-only: ORM listeners reject UPDATE and DELETE.
    - One assignment per (record, step); assignments of undecided steps may
      be replaced by a hand-off.

Failure modes:
    - IntegrityError on a second decision for the same step.
    - ImmutabilityViolationError on decision UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base, UTCDateTime
from workflow_kernel.domain.record import (
    Decision,
    RecordStatus,
    StepOutcome,
    WorkflowRecord,
)
from workflow_kernel.exceptions import ImmutabilityViolationError


class WorkflowRecordModel(Base):
    """Persistent workflow record (one leave request, one RIA submission)."""

    __tablename__ = "workflow_records"

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'approved', 'rejected')",
            name="ck_workflow_records_valid_status",
        ),
        CheckConstraint(
            "current_step_ordinal >= 1",
            name="ck_workflow_records_step_positive",
        ),
        Index("ix_workflow_records_type_status", "workflow_type_id", "status"),
        Index("ix_workflow_records_subject", "subject_id"),
    )

    record_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    workflow_type_id: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(100), nullable=False)
    current_step_ordinal: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    outcomes: Mapped[list["StepOutcomeModel"]] = relationship(
        "StepOutcomeModel",
        primaryjoin="WorkflowRecordModel.record_id == StepOutcomeModel.record_id",
        order_by="StepOutcomeModel.step_ordinal",
        lazy="selectin",
        viewonly=True,
    )

    assignments: Mapped[list["StepAssignmentModel"]] = relationship(
        "StepAssignmentModel",
        primaryjoin="WorkflowRecordModel.record_id == StepAssignmentModel.record_id",
        order_by="StepAssignmentModel.step_ordinal",
        lazy="selectin",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowRecord {self.record_id} {self.workflow_type_id} "
            f"step={self.current_step_ordinal} status={self.status} v{self.version}>"
        )

    def to_dto(self) -> WorkflowRecord:
        """Convert ORM model to frozen domain snapshot."""
        return WorkflowRecord(
            record_id=self.record_id,
            workflow_type_id=self.workflow_type_id,
            subject_id=self.subject_id,
            current_step_ordinal=self.current_step_ordinal,
            status=RecordStatus(self.status),
            step_outcomes={o.step_ordinal: o.to_dto() for o in self.outcomes},
            assigned_actors={a.step_ordinal: a.actor_id for a in self.assignments},
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowRecord) -> WorkflowRecordModel:
        return cls(
            record_id=dto.record_id,
            workflow_type_id=dto.workflow_type_id,
            subject_id=dto.subject_id,
            current_step_ordinal=dto.current_step_ordinal,
            status=dto.status.value,
            version=dto.version,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
        )


class StepOutcomeModel(Base):
    """Persistent step decision. Append-only."""

    __tablename__ = "workflow_step_outcomes"

    __table_args__ = (
        UniqueConstraint(
            "record_id", "step_ordinal",
            name="uq_workflow_step_outcomes_step",
        ),
        CheckConstraint(
            "decision IN ('approve', 'reject')",
            name="ck_workflow_step_outcomes_decision",
        ),
    )

    record_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("workflow_records.record_id"),
        nullable=False,
    )
    step_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    decided_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<StepOutcome {self.record_id}#{self.step_ordinal} {self.decision}>"

    def to_dto(self) -> StepOutcome:
        return StepOutcome(
            actor_id=self.actor_id,
            decided_at=self.decided_at,
            decision=Decision(self.decision),
            notes=self.notes,
        )


class StepAssignmentModel(Base):
    """The actor currently assigned to one step of a record."""

    __tablename__ = "workflow_step_assignments"

    __table_args__ = (
        UniqueConstraint(
            "record_id", "step_ordinal",
            name="uq_workflow_step_assignments_step",
        ),
        Index("ix_workflow_step_assignments_actor", "actor_id"),
    )

    record_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("workflow_records.record_id"),
        nullable=False,
    )
    step_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<StepAssignment {self.record_id}#{self.step_ordinal} -> {self.actor_id}>"


# =============================================================================
# ORM-Level Immutability for Decisions (Append-Only)
# =============================================================================


@event.listens_for(StepOutcomeModel, "before_update")
def prevent_outcome_update(mapper, connection, target):
    """Prevent updates to step decisions."""
    raise ImmutabilityViolationError(
        entity_type="StepOutcome",
        entity_id=f"{target.record_id}#{target.step_ordinal}",
        reason="Step decisions are immutable -- cannot modify",
    )


@event.listens_for(StepOutcomeModel, "before_delete")
def prevent_outcome_delete(mapper, connection, target):
    """Prevent deletion of step decisions."""
    raise ImmutabilityViolationError(
        entity_type="StepOutcome",
        entity_id=f"{target.record_id}#{target.step_ordinal}",
        reason="Step decisions are immutable -- cannot delete",
    )
