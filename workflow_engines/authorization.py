"""
workflow_engines.authorization -- Pure "who may act on step k" resolver.

Responsibility:
    Evaluate a step's actor rule against an actor's role claims and the
    record's ``assigned_actors`` map.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain types.

Invariants enforced:
    - Fixed-role: any holder of one of the rule's roles may act.
    - Assigned-actor: only ``assigned_actors[k]`` may act; an unassigned
      step authorizes nobody.
    - Self-assignment: once claimed, behaves as assigned-actor; while
      unclaimed, any qualifying role holder may act and the decision carries
      ``claim_required=True`` so the caller writes the claim in the same
      compare-and-swap.
    - A refusal always carries a reason; it is never reported as "not found".

Failure modes:
    - ``require_authority`` raises NotAuthorizedError.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from workflow_kernel.domain.record import WorkflowRecord
from workflow_kernel.domain.workflow import (
    AssignedActorRule,
    FixedRoleRule,
    SelfAssignmentRule,
    StepDefinition,
    WorkflowDefinition,
)
from workflow_kernel.exceptions import NotAuthorizedError


@dataclass(frozen=True)
class AuthorizationDecision:
    """Result of evaluating an actor rule.

    ``claim_required`` is True only for an unclaimed self-assignment step:
    acting on it implies writing ``actor_id`` into ``assigned_actors``.
    """

    allowed: bool
    reason: str
    claim_required: bool = False


def _holds_any(actor_roles: Iterable[str], roles: tuple[str, ...]) -> bool:
    return not set(actor_roles).isdisjoint(roles)


def evaluate_step_rule(
    step: StepDefinition,
    record: WorkflowRecord,
    actor_id: str,
    actor_roles: Iterable[str],
) -> AuthorizationDecision:
    """Evaluate one step's actor rule for ``actor_id``."""
    rule = step.actor_rule
    assigned = record.assigned_actor(step.ordinal)

    if isinstance(rule, FixedRoleRule):
        if _holds_any(actor_roles, rule.roles):
            return AuthorizationDecision(True, f"holds role in {sorted(rule.roles)}")
        return AuthorizationDecision(False, f"requires one of roles {sorted(rule.roles)}")

    if isinstance(rule, AssignedActorRule):
        if assigned is None:
            return AuthorizationDecision(False, "no actor is assigned to this step")
        if assigned == actor_id:
            return AuthorizationDecision(True, "assigned actor")
        return AuthorizationDecision(False, f"step is assigned to {assigned}")

    if isinstance(rule, SelfAssignmentRule):
        if assigned is not None:
            if assigned == actor_id:
                return AuthorizationDecision(True, "claimed by actor")
            return AuthorizationDecision(False, f"step already claimed by {assigned}")
        if _holds_any(actor_roles, rule.roles):
            return AuthorizationDecision(
                True, "unclaimed; actor may claim", claim_required=True,
            )
        return AuthorizationDecision(False, f"claiming requires one of roles {sorted(rule.roles)}")

    return AuthorizationDecision(False, f"unsupported actor rule {type(rule).__name__}")


def resolve_authority(
    definition: WorkflowDefinition,
    record: WorkflowRecord,
    actor_id: str,
    actor_roles: Iterable[str],
) -> AuthorizationDecision:
    """May ``actor_id`` decide the record's current step?

    Raises:
        InvalidDefinitionError: If the current step is not in the definition.
    """
    step = definition.step(record.current_step_ordinal)
    return evaluate_step_rule(step, record, actor_id, actor_roles)


def require_authority(
    definition: WorkflowDefinition,
    record: WorkflowRecord,
    actor_id: str,
    actor_roles: Iterable[str],
) -> AuthorizationDecision:
    """Like ``resolve_authority`` but raises on refusal.

    Raises:
        NotAuthorizedError: If the actor may not act.
    """
    decision = resolve_authority(definition, record, actor_id, actor_roles)
    if not decision.allowed:
        raise NotAuthorizedError(
            record.record_id, record.current_step_ordinal, actor_id, decision.reason,
        )
    return decision


def may_assign(definition: WorkflowDefinition, actor_roles: Iterable[str]) -> bool:
    """True if the actor may hand steps of this workflow to a named actor."""
    return bool(definition.assigner_roles) and _holds_any(actor_roles, definition.assigner_roles)


def eligible_roles(step: StepDefinition) -> tuple[str, ...]:
    """Roles whose holders may act on (or claim) ``step``; empty for assigned steps."""
    rule = step.actor_rule
    if isinstance(rule, (FixedRoleRule, SelfAssignmentRule)):
        return rule.roles
    return ()
