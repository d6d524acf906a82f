"""
workflow_engines.stage_timing -- Time spent per step, reconstructed from the
audit trail.

Responsibility:
    Answer "how long did step k take" as the delta between consecutive
    decision events.  Step 1 is entered when the record was created; step
    k+1 is entered when step k is approved.  The current step of an active
    record is open and runs until ``now``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is a parameter.

Claim and assignment events do not move a record between steps and are
ignored here.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.record import AuditEvent, Decision, WorkflowRecord
from workflow_kernel.domain.results import StepDuration


@traced_engine("stage_timing", "1.0")
def compute_step_durations(
    *,
    record: WorkflowRecord,
    events: Sequence[AuditEvent],
    now: datetime,
) -> tuple[StepDuration, ...]:
    decisions = [e for e in events if e.is_decision]

    entered_at = record.created_at
    if entered_at is None:
        entered_at = events[0].occurred_at if events else now

    durations: list[StepDuration] = []
    for event in decisions:
        durations.append(StepDuration(
            step_ordinal=event.step_ordinal,
            entered_at=entered_at,
            left_at=event.occurred_at,
            duration=event.occurred_at - entered_at,
        ))
        if event.decision is not Decision.APPROVE:
            break
        entered_at = event.occurred_at

    if record.is_active:
        durations.append(StepDuration(
            step_ordinal=record.current_step_ordinal,
            entered_at=entered_at,
            left_at=None,
            duration=max(now - entered_at, timedelta(0)),
        ))

    return tuple(durations)
