"""
Result types returned by the transition engine.

Recoverable refusals travel back to the caller as ``TransitionResult``
values carrying a ``TransitionErrorKind``; they are never raised across the
engine boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from workflow_kernel.domain.record import AuditEvent, RecordStatus


class TransitionErrorKind(str, Enum):
    """Recoverable refusal kinds.  Values match the exception ``code``."""

    NOT_FOUND = "NOT_FOUND"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    WRONG_STEP = "WRONG_STEP"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    STALE_STATE = "STALE_STATE"
    INVALID_DEFINITION = "INVALID_DEFINITION"


_EXPLANATIONS: dict[TransitionErrorKind, str] = {
    TransitionErrorKind.NOT_FOUND: "This request could not be found.",
    TransitionErrorKind.NOT_AUTHORIZED: "You are not the assigned approver for this step.",
    TransitionErrorKind.WRONG_STEP: "This step is not awaiting a decision; the request is at a different stage.",
    TransitionErrorKind.ALREADY_TERMINAL: "This request has already been completed or rejected.",
    TransitionErrorKind.STALE_STATE: "Someone else acted on this request while you were viewing it. Please reload.",
    TransitionErrorKind.INVALID_DEFINITION: "This workflow is misconfigured; contact an administrator.",
}


def explain(kind: TransitionErrorKind) -> str:
    """User-facing explanation of why an action was refused."""
    return _EXPLANATIONS[kind]


@dataclass(frozen=True)
class NotificationWarning:
    """A best-effort notification that did not go out."""

    actor_id: str
    code: str
    reason: str


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one ``apply_transition`` (or claim/assign) call.

    ``success`` is True iff the change was committed together with its
    audit event.  ``warnings`` lists notifier failures, which never undo a
    committed change.
    """

    success: bool
    record_id: str
    new_status: RecordStatus | None = None
    new_current_step: int | None = None
    error: TransitionErrorKind | None = None
    reason: str = ""
    event: AuditEvent | None = None
    warnings: tuple[NotificationWarning, ...] = ()
    attempts: int = 1

    @property
    def explanation(self) -> str:
        return explain(self.error) if self.error is not None else ""


class StepStatus(str, Enum):
    """Per-step status reported by ``get_progress``."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NOT_REACHED = "not-reached"


@dataclass(frozen=True)
class StepProgress:
    ordinal: int
    name: str
    status: StepStatus
    actor_id: str | None = None
    decided_at: datetime | None = None


@dataclass(frozen=True)
class WorkflowProgress:
    """Snapshot of where a record stands in its workflow."""

    record_id: str
    workflow_type_id: str
    steps: tuple[StepProgress, ...]
    current_step_ordinal: int
    overall_status: RecordStatus
    progress_percentage: int


@dataclass(frozen=True)
class StepDuration:
    """Time a record spent at one step, derived from the audit trail."""

    step_ordinal: int
    entered_at: datetime
    left_at: datetime | None
    duration: timedelta

    @property
    def days(self) -> int:
        """Whole days spent at the step (the stage-history report unit)."""
        return self.duration.days

    @property
    def is_open(self) -> bool:
        return self.left_at is None
