"""
workflow_engines.progress -- Pure progress report for one record.

Step status rules:
    - A step with a recorded outcome reports that outcome.
    - The current step of an active record is ``pending``.
    - Every other step is ``not-reached`` (including steps after a rejection).

``progress_percentage`` is round-half-up(100 * k / N) for current step k,
and 100 once approved, matching the stage percentages shown on the RIA
tracking screens (7, 13, 20, ... 100 for fifteen stages).
"""

from __future__ import annotations

from workflow_kernel.domain.record import Decision, RecordStatus, WorkflowRecord
from workflow_kernel.domain.results import StepProgress, StepStatus, WorkflowProgress
from workflow_kernel.domain.workflow import WorkflowDefinition

_DECISION_STATUS = {
    Decision.APPROVE: StepStatus.APPROVED,
    Decision.REJECT: StepStatus.REJECTED,
}


def progress_percentage(step_ordinal: int, step_count: int, status: RecordStatus) -> int:
    if status is RecordStatus.APPROVED:
        return 100
    return (200 * step_ordinal + step_count) // (2 * step_count)


def build_progress(definition: WorkflowDefinition, record: WorkflowRecord) -> WorkflowProgress:
    steps = []
    for step in definition.steps:
        outcome = record.step_outcomes.get(step.ordinal)
        if outcome is not None:
            steps.append(StepProgress(
                ordinal=step.ordinal,
                name=step.name,
                status=_DECISION_STATUS[outcome.decision],
                actor_id=outcome.actor_id,
                decided_at=outcome.decided_at,
            ))
            continue

        if record.is_active and step.ordinal == record.current_step_ordinal:
            status = StepStatus.PENDING
        else:
            status = StepStatus.NOT_REACHED
        steps.append(StepProgress(
            ordinal=step.ordinal,
            name=step.name,
            status=status,
            actor_id=record.assigned_actor(step.ordinal),
        ))

    return WorkflowProgress(
        record_id=record.record_id,
        workflow_type_id=record.workflow_type_id,
        steps=tuple(steps),
        current_step_ordinal=record.current_step_ordinal,
        overall_status=record.status,
        progress_percentage=progress_percentage(
            record.current_step_ordinal, definition.step_count, record.status,
        ),
    )
