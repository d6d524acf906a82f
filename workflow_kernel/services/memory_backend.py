"""
InMemoryWorkflowBackend -- process-local record store and audit log.

Responsibility:
    A storage adapter with the same contracts as the SQL one, for tests,
    demos and embedding the engine without a database.

Concurrency model:
    Each unit of work stages its writes privately.  ``commit()`` takes the
    backend lock, re-checks every staged compare-and-swap against the
    committed version and every staged audit event against the committed
    chain tail, then applies all of them.  A failed check applies nothing
    and raises StaleStateError.  Readers take the lock only to copy a
    snapshot; records are frozen so snapshots are safe to share.
"""

from __future__ import annotations

import threading
from types import TracebackType

from workflow_kernel.domain.record import AuditEvent, WorkflowRecord
from workflow_kernel.exceptions import RecordNotFoundError, StaleStateError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.services.auditor_service import (
    check_chain,
    seal_event,
    verify_monotonic,
)

logger = get_logger("services.memory_backend")


class InMemoryWorkflowBackend:
    """Committed state shared by every ``InMemoryUnitOfWork`` it creates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, WorkflowRecord] = {}
        self._events: dict[str, list[AuditEvent]] = {}

    # -- reads -------------------------------------------------------------

    def get(self, record_id: str) -> WorkflowRecord:
        with self._lock:
            record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def events_for(self, record_id: str) -> tuple[AuditEvent, ...]:
        with self._lock:
            return tuple(self._events.get(record_id, ()))

    def validate_chain(self, record_id: str) -> bool:
        return check_chain(record_id, self.events_for(record_id))

    def verify_monotonic(self, record_id: str) -> tuple[int, ...]:
        return verify_monotonic(record_id, self.events_for(record_id))

    # -- writes ------------------------------------------------------------

    def add(self, record: WorkflowRecord) -> WorkflowRecord:
        """Store a newly submitted record directly (no audit event)."""
        with self.unit_of_work() as uow:
            uow.records.add(record)
            uow.commit()
        return record

    def unit_of_work(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self)

    def tail(self, record_id: str) -> tuple[int, str | None]:
        """(last committed seq, last committed hash) for a record."""
        with self._lock:
            return self._tail(record_id)

    def _tail(self, record_id: str) -> tuple[int, str | None]:
        events = self._events.get(record_id)
        if not events:
            return 0, None
        return events[-1].seq, events[-1].hash

    def _apply(
        self,
        added: dict[str, WorkflowRecord],
        swaps: dict[str, tuple[int, WorkflowRecord]],
        events: list[AuditEvent],
    ) -> None:
        with self._lock:
            for record_id in added:
                if record_id in self._records:
                    raise ValueError(f"Workflow record already exists: {record_id}")
            for record_id, (expected, _) in swaps.items():
                current = self._records.get(record_id)
                if current is None:
                    raise RecordNotFoundError(record_id)
                if current.version != expected:
                    raise StaleStateError(record_id, expected, current.version)

            tails: dict[str, tuple[int, str | None]] = {}
            for event in events:
                seq, prev_hash = tails.get(event.record_id) or self._tail(event.record_id)
                if event.seq != seq + 1 or event.prev_hash != prev_hash:
                    raise StaleStateError(event.record_id, event.seq - 1, seq)
                tails[event.record_id] = (event.seq, event.hash)

            self._records.update(added)
            for record_id, (_, record) in swaps.items():
                self._records[record_id] = record
            for event in events:
                self._events.setdefault(event.record_id, []).append(event)


class _StagedRecordStore:
    def __init__(self, backend: InMemoryWorkflowBackend):
        self._backend = backend
        self.added: dict[str, WorkflowRecord] = {}
        self.swaps: dict[str, tuple[int, WorkflowRecord]] = {}

    def get(self, record_id: str) -> WorkflowRecord:
        if record_id in self.swaps:
            return self.swaps[record_id][1]
        if record_id in self.added:
            return self.added[record_id]
        return self._backend.get(record_id)

    def add(self, record: WorkflowRecord) -> WorkflowRecord:
        self.added[record.record_id] = record
        return record

    def compare_and_swap(
        self,
        record_id: str,
        expected_version: int,
        new_record: WorkflowRecord,
    ) -> WorkflowRecord:
        current = self.get(record_id)
        if current.version != expected_version:
            raise StaleStateError(record_id, expected_version, current.version)
        if record_id in self.added:
            self.added[record_id] = new_record
        else:
            # Keep the version read from committed state for the commit check
            base = self.swaps.get(record_id, (expected_version, None))[0]
            self.swaps[record_id] = (base, new_record)
        return new_record


class _StagedAuditLog:
    def __init__(self, backend: InMemoryWorkflowBackend):
        self._backend = backend
        self.staged: list[AuditEvent] = []

    def append(self, event: AuditEvent) -> AuditEvent:
        mine = [e for e in self.staged if e.record_id == event.record_id]
        if mine:
            seq, prev_hash = mine[-1].seq, mine[-1].hash
        else:
            seq, prev_hash = self._backend.tail(event.record_id)
        sealed, _ = seal_event(event, seq + 1, prev_hash)
        self.staged.append(sealed)
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
        committed = self._backend.events_for(record_id)
        return committed + tuple(e for e in self.staged if e.record_id == record_id)


class InMemoryUnitOfWork:
    """Staged writes over an ``InMemoryWorkflowBackend``."""

    def __init__(self, backend: InMemoryWorkflowBackend):
        self._backend = backend
        self._committed = False

    def __enter__(self) -> InMemoryUnitOfWork:
        self.records = _StagedRecordStore(self._backend)
        self.audit = _StagedAuditLog(self._backend)
        self._committed = False
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self._committed:
            # Dropping the staged writes is the rollback
            self.records = _StagedRecordStore(self._backend)
            self.audit = _StagedAuditLog(self._backend)

    def commit(self) -> None:
        self._backend._apply(
            self.records.added,
            self.records.swaps,
            self.audit.staged,
        )
        self._committed = True
