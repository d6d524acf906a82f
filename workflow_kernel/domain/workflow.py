"""
Workflow definition types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing the ordered steps of a workflow type and the
rule that resolves each step's authorized actor.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``services/``, ``models/`` or outer layers.

Invariants enforced
-------------------
* Ordinals are contiguous starting at 1.
* Exactly one step has ``is_terminal=True`` and it is the last one.
* Role-based rules name at least one role.
* ``AssignedActorRule.inherit_from_step`` points at an earlier step.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from workflow_kernel.exceptions import InvalidDefinitionError


class ActorRuleKind(str, Enum):
    """How a step's authorized actor is resolved."""

    FIXED_ROLE = "fixed_role"
    ASSIGNED_ACTOR = "assigned_actor"
    SELF_ASSIGNMENT = "self_assignment"


@dataclass(frozen=True)
class FixedRoleRule:
    """Any actor holding one of ``roles`` may decide the step.

    First write wins when two holders race (optimistic concurrency).
    """

    roles: tuple[str, ...]
    kind: ActorRuleKind = ActorRuleKind.FIXED_ROLE


@dataclass(frozen=True)
class AssignedActorRule:
    """Only the actor stored in ``assigned_actors[ordinal]`` may decide.

    The actor is either nominated by the submitter at creation time, handed
    over by an assigner, or -- when ``inherit_from_step`` is set -- copied
    from that earlier step's assignee at the moment this step becomes
    current.
    """

    inherit_from_step: int | None = None
    kind: ActorRuleKind = ActorRuleKind.ASSIGNED_ACTOR


@dataclass(frozen=True)
class SelfAssignmentRule:
    """An actor holding one of ``roles`` may claim the step.

    First claim wins.  Once claimed the step behaves as an
    ``AssignedActorRule`` for every subsequent action on it.
    """

    roles: tuple[str, ...]
    kind: ActorRuleKind = ActorRuleKind.SELF_ASSIGNMENT


ActorRule = FixedRoleRule | AssignedActorRule | SelfAssignmentRule


@dataclass(frozen=True)
class StepDefinition:
    """One step of a workflow.

    Contract: frozen.  ``ordinal`` is 1-based.  ``is_terminal`` is True only
    for the last step.
    """

    ordinal: int
    name: str
    actor_rule: ActorRule
    is_terminal: bool = False
    description: str = ""


@dataclass(frozen=True)
class WorkflowDefinition:
    """Ordered steps for a workflow type.

    Contract: frozen; call ``validate()`` (the registry does) before use.
    ``assigner_roles`` are roles allowed to hand a step to a named actor.
    """

    workflow_type_id: str
    name: str
    steps: tuple[StepDefinition, ...]
    assigner_roles: tuple[str, ...] = ()
    description: str = ""

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def step(self, ordinal: int) -> StepDefinition:
        """Return the step with ``ordinal``.

        Raises:
            InvalidDefinitionError: If the ordinal is outside ``1..N``.
        """
        if ordinal < 1 or ordinal > len(self.steps):
            raise InvalidDefinitionError(
                self.workflow_type_id, "no such step", step_ordinal=ordinal,
            )
        return self.steps[ordinal - 1]

    def is_last(self, ordinal: int) -> bool:
        return ordinal == len(self.steps)

    def validate(self) -> WorkflowDefinition:
        """Check structural invariants; return self for chaining.

        Raises:
            InvalidDefinitionError: On the first violated invariant.
        """
        wid = self.workflow_type_id
        if not self.steps:
            raise InvalidDefinitionError(wid, "workflow has no steps")

        for index, step in enumerate(self.steps, start=1):
            if step.ordinal != index:
                raise InvalidDefinitionError(
                    wid,
                    f"ordinals must be contiguous from 1; found {step.ordinal} at position {index}",
                    step_ordinal=step.ordinal,
                )
            if not step.name:
                raise InvalidDefinitionError(wid, "step name is empty", step_ordinal=index)
            _validate_rule(wid, step)

        terminal = [s.ordinal for s in self.steps if s.is_terminal]
        if terminal != [len(self.steps)]:
            raise InvalidDefinitionError(
                wid,
                f"exactly one terminal step, the last, is required; terminal steps: {terminal}",
            )
        return self


def _validate_rule(workflow_type_id: str, step: StepDefinition) -> None:
    rule = step.actor_rule
    if isinstance(rule, (FixedRoleRule, SelfAssignmentRule)):
        if not rule.roles:
            raise InvalidDefinitionError(
                workflow_type_id,
                f"{rule.kind.value} rule requires at least one role",
                step_ordinal=step.ordinal,
            )
    elif isinstance(rule, AssignedActorRule):
        source = rule.inherit_from_step
        if source is not None and not 1 <= source < step.ordinal:
            raise InvalidDefinitionError(
                workflow_type_id,
                f"inherit_from_step {source} must reference an earlier step",
                step_ordinal=step.ordinal,
            )
    else:
        raise InvalidDefinitionError(
            workflow_type_id,
            f"unknown actor rule {type(rule).__name__}",
            step_ordinal=step.ordinal,
        )
