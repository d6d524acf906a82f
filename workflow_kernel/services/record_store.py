"""
SqlRecordStore -- SQLAlchemy adapter for the workflow record store.

Responsibility:
    Load a record (with its decisions and assignments) as a frozen domain
    snapshot, insert newly submitted records, and replace a record's state
    with a compare-and-swap on ``version``.

Architecture position:
    Kernel > Services -- imperative shell over workflow_kernel.models.

Invariants enforced:
    - compare_and_swap issues ``UPDATE ... WHERE record_id = :id AND
      version = :expected``; zero matched rows means another writer won and
      nothing is written.
    - Decisions are only ever inserted, never updated.
    - Assignments are upserted per (record, step).

Failure modes:
    - RecordNotFoundError: unknown record id.
    - StaleStateError: the stored version is not ``expected_version``.

Non-goals:
    - Does NOT call ``session.commit()`` -- the unit of work controls
      boundaries.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from workflow_kernel.domain.record import WorkflowRecord
from workflow_kernel.exceptions import RecordNotFoundError, StaleStateError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow_record import (
    StepAssignmentModel,
    StepOutcomeModel,
    WorkflowRecordModel,
)

logger = get_logger("services.record_store")


class SqlRecordStore:
    """Record store backed by the ``workflow_records`` tables."""

    def __init__(self, session: Session):
        self._session = session

    def _load(self, record_id: str) -> WorkflowRecordModel | None:
        return self._session.execute(
            select(WorkflowRecordModel)
            .where(WorkflowRecordModel.record_id == record_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, record_id: str) -> WorkflowRecord:
        """
        Raises:
            RecordNotFoundError: If no record has this id.
        """
        model = self._load(record_id)
        if model is None:
            raise RecordNotFoundError(record_id)
        return model.to_dto()

    def exists(self, record_id: str) -> bool:
        return self._session.scalar(
            select(WorkflowRecordModel.id).where(WorkflowRecordModel.record_id == record_id)
        ) is not None

    def add(self, record: WorkflowRecord) -> WorkflowRecord:
        """Insert a newly submitted record with its nominations."""
        self._session.add(WorkflowRecordModel.from_dto(record))
        self._session.flush()
        self._sync_children(record)
        self._session.flush()

        logger.info(
            "workflow_record_created",
            extra={
                "record_id": record.record_id,
                "workflow_type_id": record.workflow_type_id,
                "subject_id": record.subject_id,
            },
        )
        return record

    def compare_and_swap(
        self,
        record_id: str,
        expected_version: int,
        new_record: WorkflowRecord,
    ) -> WorkflowRecord:
        """
        Replace the stored state iff its version is ``expected_version``.

        Raises:
            RecordNotFoundError: If the record vanished.
            StaleStateError: If another writer moved the version on.
        """
        result = self._session.execute(
            update(WorkflowRecordModel)
            .where(
                WorkflowRecordModel.record_id == record_id,
                WorkflowRecordModel.version == expected_version,
            )
            .values(
                current_step_ordinal=new_record.current_step_ordinal,
                status=new_record.status.value,
                version=new_record.version,
                updated_at=new_record.updated_at,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            actual = self._session.scalar(
                select(WorkflowRecordModel.version)
                .where(WorkflowRecordModel.record_id == record_id)
            )
            if actual is None:
                raise RecordNotFoundError(record_id)
            logger.warning(
                "compare_and_swap_conflict",
                extra={
                    "record_id": record_id,
                    "expected_version": expected_version,
                    "actual_version": actual,
                },
            )
            raise StaleStateError(record_id, expected_version, actual)

        self._sync_children(new_record)
        self._session.flush()
        return new_record

    def _sync_children(self, record: WorkflowRecord) -> None:
        """Insert new decisions and upsert assignments for ``record``."""
        decided = set(self._session.scalars(
            select(StepOutcomeModel.step_ordinal)
            .where(StepOutcomeModel.record_id == record.record_id)
        ))
        for ordinal, outcome in sorted(record.step_outcomes.items()):
            if ordinal in decided:
                continue
            self._session.add(StepOutcomeModel(
                record_id=record.record_id,
                step_ordinal=ordinal,
                actor_id=outcome.actor_id,
                decision=outcome.decision.value,
                notes=outcome.notes,
                decided_at=outcome.decided_at,
            ))

        existing = {
            row.step_ordinal: row
            for row in self._session.scalars(
                select(StepAssignmentModel)
                .where(StepAssignmentModel.record_id == record.record_id)
            )
        }
        for ordinal, actor_id in sorted(record.assigned_actors.items()):
            row = existing.get(ordinal)
            if row is None:
                self._session.add(StepAssignmentModel(
                    record_id=record.record_id,
                    step_ordinal=ordinal,
                    actor_id=actor_id,
                ))
            elif row.actor_id != actor_id:
                row.actor_id = actor_id
