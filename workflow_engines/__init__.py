"""
Module: workflow_engines
Responsibility:
    Re-exports the pure workflow engines: authorization resolution, the
    transition state machine, progress reporting and stage timing.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel domain types, exceptions and logging.
    MUST NOT import workflow_services or workflow_config.

Invariants enforced:
    - Engines never read a clock; timestamps are passed in by services.
    - Identical inputs always produce identical outputs (apart from the
      generated audit event id).
"""

from workflow_engines.authorization import (
    AuthorizationDecision,
    eligible_roles,
    evaluate_step_rule,
    may_assign,
    require_authority,
    resolve_authority,
)
from workflow_engines.progress import build_progress, progress_percentage
from workflow_engines.stage_timing import compute_step_durations
from workflow_engines.transitions import (
    TransitionPlan,
    ensure_active,
    plan_assignment,
    plan_claim,
    plan_transition,
)

__all__ = [
    "AuthorizationDecision",
    "TransitionPlan",
    "build_progress",
    "compute_step_durations",
    "eligible_roles",
    "ensure_active",
    "evaluate_step_rule",
    "may_assign",
    "plan_assignment",
    "plan_claim",
    "plan_transition",
    "progress_percentage",
    "require_authority",
    "resolve_authority",
]
