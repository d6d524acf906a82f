"""
Wiring for a database-backed TransitionEngine from ``WorkflowSettings``.

Usage:
    engine = build_transition_engine(WorkflowSettings.from_env(), create_schema=True)
    ...
    engine.close()
"""

from __future__ import annotations

from functools import partial

from workflow_config import get_workflow_registry
from workflow_config.settings import WorkflowSettings
from workflow_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from workflow_kernel.domain.clock import Clock
from workflow_kernel.domain.ports import ClaimsProvider, Notifier
from workflow_kernel.logging_config import configure_logging
from workflow_kernel.services.unit_of_work import SqlAlchemyUnitOfWork
from workflow_services.claims import SqlClaimsProvider
from workflow_services.notifier import (
    CompositeNotifier,
    InAppNotifier,
    LoggingNotifier,
    TimeoutNotifier,
)
from workflow_services.transition_engine import TransitionEngine


def build_transition_engine(
    settings: WorkflowSettings,
    *,
    claims: ClaimsProvider | None = None,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
    create_schema: bool = False,
) -> TransitionEngine:
    """Initialise logging, the database engine and the registry, then the engine.

    Defaults: role claims from ``user_roles``; notifications logged and
    written to the in-app inbox, bounded by the configured timeout.
    The default notifier owns a worker pool; call ``engine.close()`` at
    shutdown to release it.
    """
    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url)
    if create_schema:
        create_tables()

    session_factory = get_session_factory()
    registry = get_workflow_registry(settings.config_dir)

    if notifier is None:
        notifier = TimeoutNotifier(
            CompositeNotifier([
                LoggingNotifier(registry),
                InAppNotifier(session_factory, registry, clock),
            ]),
            timeout_seconds=settings.notify_timeout_seconds,
        )

    return TransitionEngine(
        partial(SqlAlchemyUnitOfWork, session_factory),
        registry,
        claims or SqlClaimsProvider(session_factory),
        notifier=notifier,
        clock=clock,
        stale_retry_attempts=settings.stale_retry_attempts,
    )
