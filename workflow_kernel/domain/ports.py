"""
Collaborator contracts for the workflow kernel.

The engine is storage- and transport-agnostic: persistence, the identity
provider's role claims and notification delivery are injected through these
structural protocols.
"""

from __future__ import annotations

from types import TracebackType
from typing import Iterable, Protocol

from workflow_kernel.domain.record import AuditEvent, WorkflowRecord


class RecordStore(Protocol):
    """Workflow record persistence with compare-and-swap writes."""

    def get(self, record_id: str) -> WorkflowRecord:
        """Return the record.  Raises ``RecordNotFoundError``."""
        ...

    def add(self, record: WorkflowRecord) -> WorkflowRecord:
        """Persist a newly submitted record."""
        ...

    def compare_and_swap(
        self,
        record_id: str,
        expected_version: int,
        new_record: WorkflowRecord,
    ) -> WorkflowRecord:
        """Replace the record iff its stored version equals ``expected_version``.

        Raises ``StaleStateError`` when the version moved on.
        """
        ...


class AuditLog(Protocol):
    """Append-only, per-record ordered audit log."""

    def append(self, event: AuditEvent) -> AuditEvent:
        """Append and return the stored event (with seq and hash).

        Raises ``AuditAppendError`` when the event cannot be persisted.
        """
        ...

    def events_for(self, record_id: str) -> tuple[AuditEvent, ...]:
        """Full ordered read-back for one record."""
        ...


class TransitionUnitOfWork(Protocol):
    """Atomic scope covering one state commit and its audit append.

    Leaving the ``with`` block without ``commit()`` (or through an
    exception) discards both.
    """

    records: RecordStore
    audit: AuditLog

    def __enter__(self) -> TransitionUnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...

    def commit(self) -> None: ...


class ClaimsProvider(Protocol):
    """Role claims supplied by the external identity provider."""

    def roles_for(self, actor_id: str) -> frozenset[str]:
        """Return all role claims for an actor (empty if unknown)."""
        ...

    def actors_with_roles(self, roles: Iterable[str]) -> tuple[str, ...]:
        """Return actors holding any of ``roles`` (for notification fan-out)."""
        ...


class Notifier(Protocol):
    """Best-effort notification port.  Failures never roll back a transition."""

    def notify(self, actor_id: str, record: WorkflowRecord, event: AuditEvent) -> None:
        ...
