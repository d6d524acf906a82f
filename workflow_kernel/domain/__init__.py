"""Pure domain types for the workflow kernel."""

from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.record import (
    AuditAction,
    AuditEvent,
    Decision,
    RecordStatus,
    StepOutcome,
    WorkflowRecord,
)
from workflow_kernel.domain.results import (
    NotificationWarning,
    StepDuration,
    StepProgress,
    StepStatus,
    TransitionErrorKind,
    TransitionResult,
    WorkflowProgress,
    explain,
)
from workflow_kernel.domain.workflow import (
    ActorRule,
    ActorRuleKind,
    AssignedActorRule,
    FixedRoleRule,
    SelfAssignmentRule,
    StepDefinition,
    WorkflowDefinition,
)

__all__ = [
    "ActorRule",
    "ActorRuleKind",
    "AssignedActorRule",
    "AuditAction",
    "AuditEvent",
    "Clock",
    "Decision",
    "DeterministicClock",
    "FixedRoleRule",
    "NotificationWarning",
    "RecordStatus",
    "SelfAssignmentRule",
    "StepDefinition",
    "StepDuration",
    "StepOutcome",
    "StepProgress",
    "StepStatus",
    "SystemClock",
    "TransitionErrorKind",
    "TransitionResult",
    "WorkflowDefinition",
    "WorkflowProgress",
    "explain",
]
