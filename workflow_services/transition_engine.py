"""
TransitionEngine -- the only writer of workflow record state.

Responsibility:
    Thin coordinator around the pure planners in ``workflow_engines``:
    read the record, resolve the definition and the actor's role claims,
    plan the change, compare-and-swap the record and append the audit
    event in one unit of work, then notify.

Architecture position:
    Services -- imperative shell.  Called by the portal's form handlers.

Invariants enforced:
    - Refusal order: NOT_FOUND, ALREADY_TERMINAL, INVALID_DEFINITION,
      WRONG_STEP, NOT_AUTHORIZED, STALE_STATE.
    - A change commits only together with its audit event.
    - Notifications run after commit; a failing notifier yields a warning
      on a successful result and never undoes the change.

Failure modes:
    - Recoverable refusals are returned as ``TransitionResult(success=False,
      error=TransitionErrorKind...)``; they are never raised to the caller.
    - AuditAppendError is raised after the unit of work has rolled back.

Usage:
    engine = TransitionEngine(backend.unit_of_work, registry, claims, notifier)
    result = engine.apply_transition(record_id, 1, "hod-1", Decision.APPROVE)
    if not result.success:
        show(result.explanation)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from workflow_config.registry import WorkflowRegistry
from workflow_engines.authorization import eligible_roles
from workflow_engines.progress import build_progress
from workflow_engines.stage_timing import compute_step_durations
from workflow_engines.transitions import (
    TransitionPlan,
    plan_assignment,
    plan_claim,
    plan_transition,
)
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.ports import ClaimsProvider, Notifier, TransitionUnitOfWork
from workflow_kernel.domain.record import (
    AuditAction,
    AuditEvent,
    Decision,
    WorkflowRecord,
)
from workflow_kernel.domain.results import (
    NotificationWarning,
    StepDuration,
    TransitionErrorKind,
    TransitionResult,
    WorkflowProgress,
)
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import (
    AuditAppendError,
    NotificationError,
    TransitionRefusedError,
)
from workflow_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.transition_engine")

# A planner receives (record, definition or None, actor roles, now)
Planner = Callable[
    [WorkflowRecord, WorkflowDefinition | None, frozenset[str], datetime],
    TransitionPlan,
]

DEFAULT_RETRY_ATTEMPTS = 3


class TransitionEngine:
    """
    Apply decisions, claims and hand-offs to workflow records.

    Contract:
        Every public mutating method returns a ``TransitionResult``.  Only
        an audit failure escapes as an exception.

    Non-goals:
        - Does NOT create records; submission happens outside the engine.
        - Does NOT deliver email; delivery is the notifier's concern.
    """

    def __init__(
        self,
        unit_of_work: Callable[[], TransitionUnitOfWork],
        registry: WorkflowRegistry,
        claims: ClaimsProvider,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        stale_retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    ):
        self._unit_of_work = unit_of_work
        self._registry = registry
        self._claims = claims
        self._notifier = notifier
        self._clock = clock or SystemClock()
        if stale_retry_attempts < 1:
            raise ValueError(
                f"stale_retry_attempts must be at least 1, got {stale_retry_attempts}"
            )
        self._stale_retry_attempts = stale_retry_attempts

    # =========================================================================
    # Mutations
    # =========================================================================

    def apply_transition(
        self,
        record_id: str,
        step_ordinal: int,
        actor_id: str,
        decision: Decision,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Approve or reject the record's current step."""

        def planner(record, definition, roles, now):
            return plan_transition(
                definition=definition,
                record=record,
                step_ordinal=step_ordinal,
                actor_id=actor_id,
                actor_roles=roles,
                decision=decision,
                occurred_at=now,
                notes=notes or "",
                expected_version=expected_version,
            )

        return self._execute("apply_transition", record_id, step_ordinal, actor_id, planner)

    def apply_transition_with_retry(
        self,
        record_id: str,
        step_ordinal: int,
        actor_id: str,
        decision: Decision,
        notes: str | None = None,
        max_attempts: int | None = None,
    ) -> TransitionResult:
        """``apply_transition`` that re-reads and retries on STALE_STATE only.

        A retry after another actor advanced the record typically ends in
        WRONG_STEP or ALREADY_TERMINAL, which is the refusal to show a human.

        Raises:
            ValueError: If the attempt limit is below 1.
        """
        attempts = self._stale_retry_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")
        result: TransitionResult | None = None
        for attempt in range(1, attempts + 1):
            result = self.apply_transition(record_id, step_ordinal, actor_id, decision, notes)
            if result.error is not TransitionErrorKind.STALE_STATE:
                return replace(result, attempts=attempt)
            logger.info(
                "transition_retry",
                extra={"record_id": record_id, "attempt": attempt, "max_attempts": attempts},
            )
        return replace(result, attempts=attempts)

    def claim_step(
        self,
        record_id: str,
        step_ordinal: int,
        actor_id: str,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Claim ("assign to me") an unclaimed self-assignment step; first claim wins."""

        def planner(record, definition, roles, now):
            return plan_claim(
                definition=definition,
                record=record,
                step_ordinal=step_ordinal,
                actor_id=actor_id,
                actor_roles=roles,
                occurred_at=now,
                expected_version=expected_version,
            )

        return self._execute("claim_step", record_id, step_ordinal, actor_id, planner)

    def assign_step(
        self,
        record_id: str,
        step_ordinal: int,
        assignee_id: str,
        actor_id: str,
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Hand a current or future step to ``assignee_id`` (assigner roles only)."""

        def planner(record, definition, roles, now):
            return plan_assignment(
                definition=definition,
                record=record,
                step_ordinal=step_ordinal,
                assignee_id=assignee_id,
                actor_id=actor_id,
                actor_roles=roles,
                occurred_at=now,
                notes=notes or "",
                expected_version=expected_version,
            )

        return self._execute("assign_step", record_id, step_ordinal, actor_id, planner)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_record(self, record_id: str) -> WorkflowRecord:
        """
        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        with self._unit_of_work() as uow:
            return uow.records.get(record_id)

    def get_progress(self, record_id: str) -> WorkflowProgress:
        """
        Raises:
            RecordNotFoundError: If the record does not exist.
            InvalidDefinitionError: If its workflow type is unknown.
        """
        record = self.get_record(record_id)
        return build_progress(self._registry.get(record.workflow_type_id), record)

    def audit_trail(self, record_id: str) -> tuple[AuditEvent, ...]:
        with self._unit_of_work() as uow:
            uow.records.get(record_id)
            return uow.audit.events_for(record_id)

    def step_durations(
        self,
        record_id: str,
        now: datetime | None = None,
    ) -> tuple[StepDuration, ...]:
        """Time spent at each step; the current step runs until ``now``."""
        with self._unit_of_work() as uow:
            record = uow.records.get(record_id)
            events = uow.audit.events_for(record_id)
        return compute_step_durations(
            record=record, events=events, now=now or self._clock.now(),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Release the notifier's resources (e.g. a TimeoutNotifier's worker pool).

        Later transitions still commit; their notifications come back as
        warnings.  Safe to call more than once.
        """
        close = getattr(self._notifier, "close", None)
        if close is not None:
            close()

    # =========================================================================
    # Internals
    # =========================================================================

    def _execute(
        self,
        operation: str,
        record_id: str,
        step_ordinal: int,
        actor_id: str,
        planner: Planner,
    ) -> TransitionResult:
        with LogContext.bind(record_id=record_id, actor_id=actor_id):
            roles = self._claims.roles_for(actor_id)
            try:
                with self._unit_of_work() as uow:
                    record = uow.records.get(record_id)
                    definition = self._registry.find(record.workflow_type_id)
                    plan = planner(record, definition, roles, self._clock.now())
                    stored = uow.records.compare_and_swap(
                        record_id, plan.expected_version, plan.record,
                    )
                    event = uow.audit.append(plan.event)
                    uow.commit()
            except TransitionRefusedError as exc:
                kind = TransitionErrorKind(exc.code)
                logger.info(
                    "transition_refused",
                    extra={
                        "operation": operation,
                        "step_ordinal": step_ordinal,
                        "error_code": kind.value,
                        "reason": str(exc),
                    },
                )
                return TransitionResult(
                    success=False, record_id=record_id, error=kind, reason=str(exc),
                )
            except AuditAppendError:
                logger.critical(
                    "transition_rolled_back",
                    extra={"operation": operation, "step_ordinal": step_ordinal},
                    exc_info=True,
                )
                raise

            logger.info(
                "transition_applied",
                extra={
                    "operation": operation,
                    "workflow_type_id": stored.workflow_type_id,
                    "step_ordinal": step_ordinal,
                    "action": event.action.value,
                    "new_status": stored.status.value,
                    "new_current_step": stored.current_step_ordinal,
                    "version": stored.version,
                    "seq": event.seq,
                },
            )
            warnings = self._notify(definition, stored, event)

        return TransitionResult(
            success=True,
            record_id=record_id,
            new_status=stored.status,
            new_current_step=stored.current_step_ordinal,
            event=event,
            warnings=warnings,
        )

    def _recipients(
        self,
        definition: WorkflowDefinition,
        record: WorkflowRecord,
        event: AuditEvent,
    ) -> tuple[str, ...]:
        """Who hears about ``event``.

        Hand-off: the assignee.  Approve-and-advance: the next step's actor,
        or every holder of its roles.  Terminal decision: the submitter.
        """
        if event.action is AuditAction.STEP_ASSIGNED:
            return (event.subject_actor_id,) if event.subject_actor_id else ()
        if event.action is AuditAction.STEP_CLAIMED:
            return ()
        if not record.is_active:
            return (record.subject_id,)

        nominee = record.assigned_actor(record.current_step_ordinal)
        if nominee is not None:
            return (nominee,)
        roles = eligible_roles(definition.step(record.current_step_ordinal))
        return tuple(dict.fromkeys(self._claims.actors_with_roles(roles)))

    def _notify(
        self,
        definition: WorkflowDefinition,
        record: WorkflowRecord,
        event: AuditEvent,
    ) -> tuple[NotificationWarning, ...]:
        if self._notifier is None:
            return ()

        warnings: list[NotificationWarning] = []
        try:
            recipients = self._recipients(definition, record, event)
        except Exception as exc:  # noqa: BLE001 -- state is committed; report and move on
            logger.warning("notification_recipients_failed", exc_info=True)
            return (NotificationWarning("", NotificationError.code, str(exc)),)

        for recipient in recipients:
            try:
                self._notifier.notify(recipient, record, event)
            except Exception as exc:  # noqa: BLE001 -- state is committed; report and move on
                code = getattr(exc, "code", NotificationError.code)
                logger.warning(
                    "notification_failed",
                    extra={"recipient_id": recipient, "error_code": code},
                    exc_info=True,
                )
                warnings.append(NotificationWarning(recipient, code, str(exc)))
        return tuple(warnings)
