"""
Module: workflow_kernel.models.audit_event
Responsibility: ORM persistence for the per-record, tamper-evident audit
    trail of workflow transitions.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value objects only.

Invariants enforced:
    - Audit rows are append-only; no UPDATE or DELETE (ORM listeners).
    - seq is contiguous per record starting at 1 -- UNIQUE(record_id, seq).
    - hash = H(record_id | seq | action | payload_hash | prev_hash).
      Validated by AuditTrailRecorder.validate_chain.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - IntegrityError when two writers allocate the same seq; the unit of
      work converts this into AuditAppendError and rolls back.

Audit relevance:
    Every applied decision, claim and hand-off produces exactly one row,
    written in the same transaction as the record change it describes.
"""

from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UTCDateTime
from workflow_kernel.domain.record import AuditAction, AuditEvent, Decision
from workflow_kernel.exceptions import ImmutabilityViolationError


class AuditEventModel(Base):
    """
    Audit event row with a per-record hash chain.

    Contract:
        Rows are never updated or deleted.  Each row's hash includes the
        previous row's hash for the same record.

    Non-goals:
        - This model does NOT compute hashes at INSERT time; that is the
          responsibility of the audit recorder.
    """

    __tablename__ = "workflow_audit_events"

    __table_args__ = (
        UniqueConstraint("record_id", "seq", name="uq_workflow_audit_record_seq"),
        Index("ix_workflow_audit_record", "record_id"),
        Index("ix_workflow_audit_actor", "actor_id"),
        Index("ix_workflow_audit_occurred", "occurred_at"),
    )

    event_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    record_id: Mapped[str] = mapped_column(String(64), nullable=False)
    workflow_type_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Position in this record's trail, from 1
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    step_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Claimed or assigned actor for step_claimed / step_assigned
    subject_actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Null for the first event of a record
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.record_id}#{self.seq} {self.action}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_dto(self) -> AuditEvent:
        return AuditEvent(
            event_id=self.event_id,
            record_id=self.record_id,
            workflow_type_id=self.workflow_type_id,
            step_ordinal=self.step_ordinal,
            actor_id=self.actor_id,
            action=AuditAction(self.action),
            occurred_at=self.occurred_at,
            decision=Decision(self.decision) if self.decision else None,
            notes=self.notes,
            subject_actor_id=self.subject_actor_id,
            seq=self.seq,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )

    @classmethod
    def from_dto(cls, dto: AuditEvent, payload_hash: str) -> "AuditEventModel":
        return cls(
            event_id=dto.event_id,
            record_id=dto.record_id,
            workflow_type_id=dto.workflow_type_id,
            seq=dto.seq,
            step_ordinal=dto.step_ordinal,
            actor_id=dto.actor_id,
            action=dto.action.value,
            decision=dto.decision.value if dto.decision else None,
            notes=dto.notes,
            subject_actor_id=dto.subject_actor_id,
            occurred_at=dto.occurred_at,
            payload_hash=payload_hash,
            prev_hash=dto.prev_hash,
            hash=dto.hash,
        )


@event.listens_for(AuditEventModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=f"{target.record_id}#{target.seq}",
        reason="Audit events are append-only -- cannot modify",
    )


@event.listens_for(AuditEventModel, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=f"{target.record_id}#{target.seq}",
        reason="Audit events are append-only -- cannot delete",
    )
