"""
Notifier adapters (``workflow_services.notifier``).

Responsibility:
    Deliver "it is your turn" and "your request was decided" messages after
    a transition has committed.

Architecture position:
    Services -- adapters for the ``Notifier`` port.  The transition engine
    calls them only after commit and converts any exception they raise into
    a ``NotificationWarning`` on the result.

Adapters:
    LoggingNotifier     structured log line per message
    InAppNotifier       row in the ``notifications`` table (portal inbox)
    CompositeNotifier   fan out to several notifiers, report all failures
    TimeoutNotifier     bound how long the caller waits for delivery

Failure modes:
    - NotificationError / NotificationTimeoutError, or whatever the
      underlying channel raises.  None of them affect committed state.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from workflow_config.registry import WorkflowRegistry
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.ports import Notifier
from workflow_kernel.domain.record import AuditAction, AuditEvent, RecordStatus, WorkflowRecord
from workflow_kernel.exceptions import NotificationError, NotificationTimeoutError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.notification import NotificationModel

logger = get_logger("services.notifier")


@dataclass(frozen=True)
class NotificationMessage:
    """Rendered content for one recipient."""

    type: str
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


def compose_message(
    actor_id: str,
    record: WorkflowRecord,
    event: AuditEvent,
    registry: WorkflowRegistry | None = None,
) -> NotificationMessage:
    """Render the message ``actor_id`` receives about ``event``.

    Step names come from the registry when one is supplied; otherwise
    steps are referred to by ordinal.
    """
    definition = registry.find(record.workflow_type_id) if registry else None
    workflow_name = definition.name if definition else record.workflow_type_id

    def step_name(ordinal: int) -> str:
        if definition and 1 <= ordinal <= definition.step_count:
            return definition.step(ordinal).name
        return f"Step {ordinal}"

    details = {
        "record_id": record.record_id,
        "workflow_type_id": record.workflow_type_id,
        "step_ordinal": event.step_ordinal,
        "status": record.status.value,
        "event_id": event.event_id,
    }

    if event.action in (AuditAction.STEP_CLAIMED, AuditAction.STEP_ASSIGNED):
        return NotificationMessage(
            type="step_assigned",
            title=f"{workflow_name} Assigned To You",
            message=(
                f"{workflow_name} {record.record_id} has been assigned to you "
                f"at {step_name(event.step_ordinal)} by {event.actor_id}."
            ),
            details={**details, "assigned_by": event.actor_id},
        )

    if record.status is RecordStatus.ACTIVE:
        current = record.current_step_ordinal
        return NotificationMessage(
            type="approval_required",
            title=f"{workflow_name} Awaiting Your Action",
            message=(
                f"{workflow_name} {record.record_id} from {record.subject_id} "
                f"requires your action as {step_name(current)}."
            ),
            details={**details, "step_ordinal": current, "subject_id": record.subject_id},
        )

    status_text = "Approved" if record.status is RecordStatus.APPROVED else "Rejected"
    closing = (
        "Your request has been fully approved."
        if record.status is RecordStatus.APPROVED
        else "Please contact the approver if you have any questions."
    )
    return NotificationMessage(
        type=f"request_{record.status.value}",
        title=f"{workflow_name} {status_text} - Step {event.step_ordinal}",
        message=(
            f"Your {workflow_name} {record.record_id} has been {status_text.lower()} "
            f"by {event.actor_id} ({step_name(event.step_ordinal)}). {closing}"
        ),
        details={**details, "decided_by": event.actor_id, "notes": event.notes},
    )


class LoggingNotifier:
    """Emit one ``notification_sent`` log line per message."""

    def __init__(self, registry: WorkflowRegistry | None = None):
        self._registry = registry

    def notify(self, actor_id: str, record: WorkflowRecord, event: AuditEvent) -> None:
        msg = compose_message(actor_id, record, event, self._registry)
        logger.info(
            "notification_sent",
            extra={
                "recipient_id": actor_id,
                "notification_type": msg.type,
                "title": msg.title,
                "record_id": record.record_id,
            },
        )


class InAppNotifier:
    """Write the message to the ``notifications`` table in its own transaction."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: WorkflowRegistry | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._clock = clock or SystemClock()

    def notify(self, actor_id: str, record: WorkflowRecord, event: AuditEvent) -> None:
        msg = compose_message(actor_id, record, event, self._registry)
        with self._session_factory() as session:
            session.add(NotificationModel(
                user_id=actor_id,
                type=msg.type,
                title=msg.title,
                message=msg.message,
                details=msg.details,
                is_read=False,
                created_at=self._clock.now(),
            ))
            session.commit()


class CompositeNotifier:
    """Deliver through every notifier; one failing channel does not stop the rest."""

    def __init__(self, notifiers: Iterable[Notifier]):
        self._notifiers = tuple(notifiers)

    def notify(self, actor_id: str, record: WorkflowRecord, event: AuditEvent) -> None:
        failures: list[str] = []
        for notifier in self._notifiers:
            try:
                notifier.notify(actor_id, record, event)
            except Exception as exc:  # noqa: BLE001 -- collected and re-raised below
                failures.append(f"{type(notifier).__name__}: {exc}")
        if failures:
            raise NotificationError(actor_id, "; ".join(failures))


class TimeoutNotifier:
    """Wait at most ``timeout_seconds`` for the wrapped notifier.

    A delivery that overruns keeps running on the worker thread; the caller
    gets NotificationTimeoutError and moves on.
    """

    def __init__(
        self,
        inner: Notifier,
        timeout_seconds: float,
        executor: ThreadPoolExecutor | None = None,
    ):
        self._inner = inner
        self._timeout = timeout_seconds
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="workflow-notify",
        )

    def notify(self, actor_id: str, record: WorkflowRecord, event: AuditEvent) -> None:
        future = self._executor.submit(self._inner.notify, actor_id, record, event)
        try:
            future.result(timeout=self._timeout)
        except FutureTimeoutError:
            raise NotificationTimeoutError(actor_id, self._timeout) from None

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)
