"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- Structured logging configured once per session, plus ``captured_logs``
- A deterministic clock, the bundled workflow registry and static role claims
- An in-memory backend and a TransitionEngine wired to it
- An in-memory SQLite database and a TransitionEngine wired to it
- Recording and failing notifiers
"""

import json
import logging
from functools import partial
from io import StringIO

import pytest

from workflow_config import get_workflow_registry
from workflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.record import WorkflowRecord
from workflow_kernel.exceptions import NotificationError
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.services.memory_backend import InMemoryWorkflowBackend
from workflow_kernel.services.unit_of_work import SqlAlchemyUnitOfWork
from workflow_services.claims import StaticClaimsProvider
from workflow_services.transition_engine import TransitionEngine

# Actors used across the suite
SUPERVISOR = "hod-1"
SECOND_SUPERVISOR = "hod-2"
HR_OFFICER = "hr-1"
EXEC_DIRECTOR = "ed-1"
APPLICANT = "applicant-1"
STAFF = "staff-1"
OTHER_STAFF = "staff-2"
OUTSIDER = "visitor-1"

ROLE_CLAIMS = {
    SUPERVISOR: ["admin"],
    SECOND_SUPERVISOR: ["admin"],
    HR_OFFICER: ["staff"],
    EXEC_DIRECTOR: ["staff"],
    APPLICANT: ["staff"],
    STAFF: ["staff"],
    OTHER_STAFF: ["staff"],
}


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.apply_transition(...)
            logs = captured_logs()
            assert any(r["message"] == "transition_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Notifier doubles
# =============================================================================


class RecordingNotifier:
    """Collects every (actor_id, record, event) it is asked to deliver."""

    def __init__(self):
        self.sent = []

    def notify(self, actor_id, record, event):
        self.sent.append((actor_id, record, event))

    @property
    def recipients(self):
        return [actor_id for actor_id, _, _ in self.sent]


class FailingNotifier:
    """Raises on every delivery."""

    def __init__(self, exc=None):
        self.exc = exc
        self.calls = 0

    def notify(self, actor_id, record, event):
        self.calls += 1
        raise self.exc or NotificationError(actor_id, "mail relay unreachable")


@pytest.fixture
def recording_notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


@pytest.fixture
def make_failing_notifier():
    """Factory for notifiers that raise ``exc`` (NotificationError by default)."""
    return FailingNotifier


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock pinned to 2024-01-01T09:00:00Z."""
    return DeterministicClock()


@pytest.fixture(scope="session")
def registry():
    """The bundled leave-approval and RIA workflow definitions."""
    return get_workflow_registry()


@pytest.fixture
def claims():
    return StaticClaimsProvider(ROLE_CLAIMS)


# =============================================================================
# In-memory backend
# =============================================================================


@pytest.fixture
def backend():
    return InMemoryWorkflowBackend()


@pytest.fixture
def engine(backend, registry, claims, recording_notifier, deterministic_clock):
    return TransitionEngine(
        backend.unit_of_work,
        registry,
        claims,
        notifier=recording_notifier,
        clock=deterministic_clock,
    )


@pytest.fixture
def submit(backend, deterministic_clock):
    """
    Create an ``active(1)`` record in the in-memory backend.

    Usage::

        record = submit("annual_leave", assigned_actors={2: HR_OFFICER})
    """

    def _submit(workflow_type_id, subject_id=APPLICANT, assigned_actors=None):
        return backend.add(WorkflowRecord.new(
            workflow_type_id,
            subject_id,
            assigned_actors=assigned_actors,
            created_at=deterministic_clock.now(),
        ))

    return _submit


@pytest.fixture
def annual_leave(submit):
    """Annual leave request nominating the HR officer and Executive Director."""
    return submit("annual_leave", assigned_actors={2: HR_OFFICER, 3: EXEC_DIRECTOR})


@pytest.fixture
def ria(submit):
    """RIA submission waiting to be claimed."""
    return submit("ria_lifecycle")


# =============================================================================
# SQL backend (in-memory SQLite)
# =============================================================================


@pytest.fixture
def sql_session_factory():
    """Fresh in-memory SQLite schema per test."""
    init_engine_from_url("sqlite://")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_engine(sql_session_factory, registry, claims, recording_notifier, deterministic_clock):
    return TransitionEngine(
        partial(SqlAlchemyUnitOfWork, sql_session_factory),
        registry,
        claims,
        notifier=recording_notifier,
        clock=deterministic_clock,
    )


@pytest.fixture
def sql_submit(sql_session_factory, deterministic_clock):
    """Create an ``active(1)`` record in the SQL store."""

    def _submit(workflow_type_id, subject_id=APPLICANT, assigned_actors=None):
        record = WorkflowRecord.new(
            workflow_type_id,
            subject_id,
            assigned_actors=assigned_actors,
            created_at=deterministic_clock.now(),
        )
        with SqlAlchemyUnitOfWork(sql_session_factory) as uow:
            uow.records.add(record)
            uow.commit()
        return record

    return _submit
