"""Kernel services: record stores, audit trail and units of work."""

from workflow_kernel.services.auditor_service import (
    AuditTrailRecorder,
    check_chain,
    seal_event,
    verify_monotonic,
)
from workflow_kernel.services.memory_backend import (
    InMemoryUnitOfWork,
    InMemoryWorkflowBackend,
)
from workflow_kernel.services.record_store import SqlRecordStore
from workflow_kernel.services.unit_of_work import SqlAlchemyUnitOfWork

__all__ = [
    "AuditTrailRecorder",
    "InMemoryUnitOfWork",
    "InMemoryWorkflowBackend",
    "SqlAlchemyUnitOfWork",
    "SqlRecordStore",
    "check_chain",
    "seal_event",
    "verify_monotonic",
]
