"""Workflow services: the transition engine and its collaborator adapters."""

from workflow_services.bootstrap import build_transition_engine
from workflow_services.claims import SqlClaimsProvider, StaticClaimsProvider
from workflow_services.notifier import (
    CompositeNotifier,
    InAppNotifier,
    LoggingNotifier,
    NotificationMessage,
    TimeoutNotifier,
    compose_message,
)
from workflow_services.transition_engine import TransitionEngine

__all__ = [
    "CompositeNotifier",
    "InAppNotifier",
    "LoggingNotifier",
    "NotificationMessage",
    "SqlClaimsProvider",
    "StaticClaimsProvider",
    "TimeoutNotifier",
    "TransitionEngine",
    "build_transition_engine",
    "compose_message",
]
