"""
AuditTrailRecorder -- per-record, tamper-evident audit trail.

Responsibility:
    Appends one hash-chained audit row per applied workflow change, reads a
    record's trail back in order, validates the chain and checks the
    approval sequence.

Architecture position:
    Kernel > Services -- imperative shell, used inside a unit of work by the
    transition engine.  The chain helpers at module level are shared with
    the in-memory backend.

Invariants enforced:
    - Append-only: rows are never updated or deleted (ORM listeners on
      AuditEventModel).
    - seq is contiguous per record from 1; ``UNIQUE(record_id, seq)``.
    - hash = H(record_id | seq | action | payload_hash | prev_hash), where
      prev_hash is the previous row of the same record (None for seq 1).
    - Approved step ordinals are strictly increasing and contiguous from 1.

Failure modes:
    - AuditAppendError: the row could not be flushed.  The enclosing unit of
      work rolls the state change back.
    - AuditChainBrokenError: a recomputed hash or link does not match.
    - AuditSequenceError: approved ordinals are not 1, 2, 3, ...

Audit relevance:
    This IS the audit trail.  Every decision, claim and hand-off applied by
    the transition engine flows through ``append()``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from workflow_kernel.domain.record import AuditEvent, Decision
from workflow_kernel.exceptions import (
    AuditAppendError,
    AuditChainBrokenError,
    AuditSequenceError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.audit_event import AuditEventModel
from workflow_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")


# =============================================================================
# Chain helpers
# =============================================================================


def event_payload(event: AuditEvent) -> dict[str, Any]:
    """Fields covered by ``payload_hash``."""
    return {
        "event_id": event.event_id,
        "workflow_type_id": event.workflow_type_id,
        "step_ordinal": event.step_ordinal,
        "actor_id": event.actor_id,
        "decision": event.decision.value if event.decision else None,
        "notes": event.notes,
        "subject_actor_id": event.subject_actor_id,
        "occurred_at": event.occurred_at.isoformat(),
    }


def seal_event(event: AuditEvent, seq: int, prev_hash: str | None) -> tuple[AuditEvent, str]:
    """Return ``event`` with seq/prev_hash/hash set, plus its payload hash."""
    payload_hash = hash_payload(event_payload(event))
    event_hash = hash_audit_event(
        record_id=event.record_id,
        seq=seq,
        action=event.action.value,
        payload_hash=payload_hash,
        prev_hash=prev_hash,
    )
    return replace(event, seq=seq, prev_hash=prev_hash, hash=event_hash), payload_hash


def check_chain(record_id: str, events: Sequence[AuditEvent]) -> bool:
    """Recompute every hash and link of one record's ordered trail.

    Raises:
        AuditChainBrokenError: On the first mismatch.
    """
    prev_hash: str | None = None
    for expected_seq, event in enumerate(events, start=1):
        if event.seq != expected_seq:
            logger.critical(
                "audit_chain_broken",
                extra={"seq": event.seq, "expected_seq": expected_seq},
            )
            raise AuditChainBrokenError(record_id, event.seq, f"seq {expected_seq}", f"seq {event.seq}")
        if event.prev_hash != prev_hash:
            logger.critical("audit_chain_broken", extra={"seq": event.seq, "link": True})
            raise AuditChainBrokenError(
                record_id, event.seq, prev_hash or "None", event.prev_hash or "None",
            )
        resealed, _ = seal_event(event, event.seq, prev_hash)
        if resealed.hash != event.hash:
            logger.critical("audit_chain_broken", extra={"seq": event.seq})
            raise AuditChainBrokenError(record_id, event.seq, resealed.hash, event.hash or "None")
        prev_hash = event.hash
    return True


def verify_monotonic(record_id: str, events: Sequence[AuditEvent]) -> tuple[int, ...]:
    """Return the approved ordinals; they must be exactly 1..m.

    Also requires that no decision follows a rejection.

    Raises:
        AuditSequenceError: If the trail breaks either rule.
    """
    approved: list[int] = []
    rejected = False
    for event in events:
        if not event.is_decision:
            continue
        if rejected:
            raise AuditSequenceError(record_id, tuple(approved) + (event.step_ordinal,))
        if event.decision is Decision.APPROVE:
            approved.append(event.step_ordinal)
        else:
            rejected = True

    ordinals = tuple(approved)
    if ordinals != tuple(range(1, len(ordinals) + 1)):
        logger.critical("audit_sequence_broken", extra={"ordinals": ordinals})
        raise AuditSequenceError(record_id, ordinals)
    return ordinals


# =============================================================================
# SQL recorder
# =============================================================================


class AuditTrailRecorder:
    """
    SQL-backed audit log.

    Contract:
        ``append()`` allocates the next per-record seq, links the row to the
        record's previous hash and flushes it.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the unit of work controls
          boundaries, so the audit row commits with the record change or
          not at all.
    """

    def __init__(self, session: Session):
        self._session = session

    def _tail(self, record_id: str) -> tuple[int, str | None]:
        """(last seq, last hash) for a record; (0, None) when empty."""
        last = self._session.execute(
            select(AuditEventModel)
            .where(AuditEventModel.record_id == record_id)
            .order_by(AuditEventModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        if last is None:
            return 0, None
        return last.seq, last.hash

    def append(self, event: AuditEvent) -> AuditEvent:
        """Append ``event`` to its record's chain.

        Raises:
            AuditAppendError: If the row cannot be flushed.
        """
        try:
            last_seq, prev_hash = self._tail(event.record_id)
            sealed, payload_hash = seal_event(event, last_seq + 1, prev_hash)
            self._session.add(AuditEventModel.from_dto(sealed, payload_hash))
            self._session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "audit_append_failed",
                extra={"record_id": event.record_id, "step_ordinal": event.step_ordinal},
                exc_info=True,
            )
            raise AuditAppendError(event.record_id, event.step_ordinal, str(exc)) from exc

        logger.info(
            "audit_event_appended",
            extra={
                "record_id": sealed.record_id,
                "seq": sealed.seq,
                "action": sealed.action.value,
                "step_ordinal": sealed.step_ordinal,
            },
        )
        return sealed

    def events_for(self, record_id: str) -> tuple[AuditEvent, ...]:
        rows = self._session.execute(
            select(AuditEventModel)
            .where(AuditEventModel.record_id == record_id)
            .order_by(AuditEventModel.seq)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def event_count(self, record_id: str) -> int:
        return self._session.scalar(
            select(func.count())
            .select_from(AuditEventModel)
            .where(AuditEventModel.record_id == record_id)
        ) or 0

    def validate_chain(self, record_id: str) -> bool:
        """
        Validate one record's chain.

        Raises:
            AuditChainBrokenError: If any hash or link fails to recompute.
        """
        events = self.events_for(record_id)
        check_chain(record_id, events)
        logger.info(
            "audit_chain_valid",
            extra={"record_id": record_id, "event_count": len(events)},
        )
        return True

    def verify_monotonic(self, record_id: str) -> tuple[int, ...]:
        return verify_monotonic(record_id, self.events_for(record_id))
