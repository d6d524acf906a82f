"""
SqlAlchemyUnitOfWork -- one session, one transaction per transition attempt.

The record compare-and-swap and the audit append share the session, so a
single COMMIT persists both or neither.  Leaving the block without
``commit()`` rolls everything back.

Usage:
    with SqlAlchemyUnitOfWork(session_factory) as uow:
        record = uow.records.get(record_id)
        uow.records.compare_and_swap(record_id, record.version, successor)
        uow.audit.append(event)
        uow.commit()
"""

from __future__ import annotations

from types import TracebackType

from sqlalchemy.orm import Session, sessionmaker

from workflow_kernel.logging_config import get_logger
from workflow_kernel.services.auditor_service import AuditTrailRecorder
from workflow_kernel.services.record_store import SqlRecordStore

logger = get_logger("services.unit_of_work")


class SqlAlchemyUnitOfWork:
    """Transaction scope over ``SqlRecordStore`` and ``AuditTrailRecorder``."""

    records: SqlRecordStore
    audit: AuditTrailRecorder

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._session: Session | None = None
        self._committed = False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("Unit of work is not active; use it as a context manager")
        return self._session

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self._session = self._session_factory()
        self._committed = False
        self.records = SqlRecordStore(self._session)
        self.audit = AuditTrailRecorder(self._session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        session = self.session
        try:
            if not self._committed:
                session.rollback()
                if exc_type is not None:
                    logger.debug(
                        "unit_of_work_rolled_back",
                        extra={"exc_type": exc_type.__name__},
                    )
        finally:
            session.close()
            self._session = None

    def commit(self) -> None:
        self.session.commit()
        self._committed = True
