"""ORM models for the workflow kernel."""

from workflow_kernel.models.audit_event import AuditEventModel
from workflow_kernel.models.notification import NotificationModel
from workflow_kernel.models.user_role import UserRoleModel
from workflow_kernel.models.workflow_record import (
    StepAssignmentModel,
    StepOutcomeModel,
    WorkflowRecordModel,
)

__all__ = [
    "AuditEventModel",
    "NotificationModel",
    "StepAssignmentModel",
    "StepOutcomeModel",
    "UserRoleModel",
    "WorkflowRecordModel",
]
