"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval workflows refuse requests for several very different reasons, and
the surrounding application must tell them apart: "you are not the assigned
approver" is not the same message as "someone else already decided this
step", and neither is the same as "no such leave request".

Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA (record id, step ordinal, actor id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- TransitionRefusedError          (recoverable, returned as typed results)
    |   +-- RecordNotFoundError
    |   +-- NotAuthorizedError
    |   +-- WrongStepError
    |   +-- AlreadyTerminalError
    |   +-- StaleStateError
    |   +-- InvalidDefinitionError
    |
    +-- AuditError                      (fatal to the transition)
    |   +-- AuditAppendError
    |   +-- AuditChainBrokenError
    |   +-- AuditSequenceError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- NotificationError               (downgraded to warnings)
        +-- NotificationTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                 | When Raised
----------------|----------------------|------------------------------------------
Transition      | NOT_FOUND            | Record id does not resolve
                | NOT_AUTHORIZED       | Actor is not the authority for the step
                | WRONG_STEP           | Requested step is not the current step
                | ALREADY_TERMINAL     | Record is approved or rejected
                | STALE_STATE          | Compare-and-swap lost a race
                | INVALID_DEFINITION   | Unknown workflow type or step ordinal
----------------|----------------------|------------------------------------------
Audit           | AUDIT_APPEND_FAILED  | Audit event could not be persisted
                | AUDIT_CHAIN_BROKEN   | Hash chain validation failed
                | AUDIT_SEQUENCE_BROKEN| Approved steps not contiguous from 1
----------------|----------------------|------------------------------------------
Immutability    | IMMUTABILITY_VIOLATION | Modifying an append-only row
----------------|----------------------|------------------------------------------
Notification    | NOTIFICATION_FAILED  | Notifier raised
                | NOTIFICATION_TIMEOUT | Notifier did not finish in time

===============================================================================
HANDLING PATTERNS
===============================================================================

1. The transition engine converts every ``TransitionRefusedError`` into a
   ``TransitionResult`` carrying a ``TransitionErrorKind``.  Callers of
   ``apply_transition`` never see these raised.

2. ``StaleStateError`` means "re-read and retry".  The engine's
   ``apply_transition_with_retry`` does exactly that before surfacing a
   refusal to a human.

3. ``AuditAppendError`` is raised to the caller after the state change has
   been rolled back.  A transition without an audit trail never commits.
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Recoverable refusals


class TransitionRefusedError(WorkflowKernelError):
    """Base for conditions the caller can recover from."""

    code: str = "TRANSITION_REFUSED"


class RecordNotFoundError(TransitionRefusedError):
    """Workflow record with the given id does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Workflow record not found: {record_id}")


class NotAuthorizedError(TransitionRefusedError):
    """Actor is not the resolved authority for the record's current step."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, record_id: str, step_ordinal: int, actor_id: str, reason: str):
        self.record_id = record_id
        self.step_ordinal = step_ordinal
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} may not act on step {step_ordinal} "
            f"of record {record_id}: {reason}"
        )


class WrongStepError(TransitionRefusedError):
    """Requested step ordinal does not match the record's current step."""

    code: str = "WRONG_STEP"

    def __init__(self, record_id: str, requested_step: int, current_step: int):
        self.record_id = record_id
        self.requested_step = requested_step
        self.current_step = current_step
        super().__init__(
            f"Record {record_id} is at step {current_step}, "
            f"request targeted step {requested_step}"
        )


class AlreadyTerminalError(TransitionRefusedError):
    """Record has left ``active`` status and accepts no further transitions."""

    code: str = "ALREADY_TERMINAL"

    def __init__(self, record_id: str, status: str):
        self.record_id = record_id
        self.status = status
        super().__init__(f"Record {record_id} is already {status}")


class StaleStateError(TransitionRefusedError):
    """Optimistic concurrency check failed; the record changed since it was read."""

    code: str = "STALE_STATE"

    def __init__(self, record_id: str, expected_version: int, actual_version: int | None = None):
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Record {record_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class InvalidDefinitionError(TransitionRefusedError):
    """Workflow type or step ordinal does not exist, or a definition is malformed."""

    code: str = "INVALID_DEFINITION"

    def __init__(self, workflow_type_id: str, reason: str, step_ordinal: int | None = None):
        self.workflow_type_id = workflow_type_id
        self.step_ordinal = step_ordinal
        self.reason = reason
        where = f" step {step_ordinal}" if step_ordinal is not None else ""
        super().__init__(f"Invalid workflow definition {workflow_type_id}{where}: {reason}")


# Audit exceptions


class AuditError(WorkflowKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditAppendError(AuditError):
    """
    The audit event could not be appended.

    The state transition that produced it has been rolled back.
    """

    code: str = "AUDIT_APPEND_FAILED"

    def __init__(self, record_id: str, step_ordinal: int, cause: str):
        self.record_id = record_id
        self.step_ordinal = step_ordinal
        self.cause = cause
        super().__init__(
            f"Audit append failed for record {record_id} step {step_ordinal}: {cause}"
        )


class AuditChainBrokenError(AuditError):
    """Hash chain validation failed -- the audit trail may have been tampered with."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, record_id: str, seq: int, expected_hash: str, actual_hash: str):
        self.record_id = record_id
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken for record {record_id} at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


class AuditSequenceError(AuditError):
    """Approved steps in the audit trail are not strictly increasing from 1."""

    code: str = "AUDIT_SEQUENCE_BROKEN"

    def __init__(self, record_id: str, ordinals: tuple[int, ...]):
        self.record_id = record_id
        self.ordinals = ordinals
        super().__init__(
            f"Approved steps for record {record_id} are not contiguous from 1: {ordinals}"
        )


# Immutability exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# Notification exceptions


class NotificationError(WorkflowKernelError):
    """A notifier failed to deliver a message."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, actor_id: str, reason: str):
        self.actor_id = actor_id
        self.reason = reason
        super().__init__(f"Notification to {actor_id} failed: {reason}")


class NotificationTimeoutError(NotificationError):
    """A notifier did not finish within its timeout."""

    code: str = "NOTIFICATION_TIMEOUT"

    def __init__(self, actor_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(actor_id, f"timed out after {timeout_seconds}s")
