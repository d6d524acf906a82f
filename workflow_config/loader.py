"""
Workflow Definition Loader (``workflow_config.loader``).

Responsibility
--------------
Loads YAML workflow-set files and parses them into frozen
``workflow_kernel.domain.workflow`` definitions.  Runtime callers use
``workflow_config.get_workflow_registry()`` instead of calling this
directly.

Architecture position
---------------------
**Config layer** -- sits above the kernel (imports its domain types) and
below services.  The kernel never imports from here.

YAML shape
----------
::

    version: 1
    workflows:
      - workflow_type_id: annual_leave
        name: Annual Leave
        assigner_roles: [admin]          # optional
        steps:
          - ordinal: 1
            name: Supervisor Recommendation
            actor_rule: {kind: fixed_role, roles: [admin]}
          - ordinal: 2
            name: HR Certification
            actor_rule: {kind: assigned_actor, inherit_from_step: previous}
            is_terminal: true

``inherit_from_step`` accepts an ordinal or ``previous``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown rule kind, bad ordinals, duplicate workflow types
  -> ``InvalidDefinitionError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from workflow_kernel.domain.workflow import (
    ActorRule,
    ActorRuleKind,
    AssignedActorRule,
    FixedRoleRule,
    SelfAssignmentRule,
    StepDefinition,
    WorkflowDefinition,
)
from workflow_kernel.exceptions import InvalidDefinitionError
from workflow_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def _roles(data: dict[str, Any]) -> tuple[str, ...]:
    roles = data.get("roles") or ()
    if isinstance(roles, str):
        roles = (roles,)
    return tuple(str(r) for r in roles)


def parse_actor_rule(
    data: dict[str, Any],
    ordinal: int,
    workflow_type_id: str = "",
) -> ActorRule:
    """Parse an ``actor_rule`` mapping for the step at ``ordinal``."""
    try:
        kind = ActorRuleKind(data["kind"])
    except ValueError:
        raise InvalidDefinitionError(
            workflow_type_id, f"unknown actor rule kind {data['kind']!r}", step_ordinal=ordinal,
        ) from None

    if kind is ActorRuleKind.FIXED_ROLE:
        return FixedRoleRule(roles=_roles(data))
    if kind is ActorRuleKind.SELF_ASSIGNMENT:
        return SelfAssignmentRule(roles=_roles(data))

    inherit = data.get("inherit_from_step")
    if inherit == "previous":
        inherit = ordinal - 1
    return AssignedActorRule(inherit_from_step=int(inherit) if inherit is not None else None)


def parse_step(data: dict[str, Any], workflow_type_id: str = "") -> StepDefinition:
    ordinal = int(data["ordinal"])
    return StepDefinition(
        ordinal=ordinal,
        name=str(data["name"]),
        actor_rule=parse_actor_rule(data["actor_rule"], ordinal, workflow_type_id),
        is_terminal=bool(data.get("is_terminal", False)),
        description=data.get("description", ""),
    )


def parse_workflow_definition(data: dict[str, Any]) -> WorkflowDefinition:
    """Parse and validate one workflow definition.

    Raises:
        InvalidDefinitionError: If the definition violates its invariants.
    """
    workflow_type_id = str(data["workflow_type_id"])
    steps = tuple(
        parse_step(step, workflow_type_id)
        for step in sorted(data["steps"], key=lambda s: int(s["ordinal"]))
    )
    definition = WorkflowDefinition(
        workflow_type_id=workflow_type_id,
        name=str(data.get("name", workflow_type_id)),
        steps=steps,
        assigner_roles=_roles({"roles": data.get("assigner_roles")}),
        description=data.get("description", ""),
    )
    return definition.validate()


def load_definitions(config_dir: Path) -> tuple[tuple[WorkflowDefinition, ...], str]:
    """Load every ``*.yaml`` file in ``config_dir``.

    Returns:
        (definitions in file/declaration order, checksum over all files).

    Raises:
        FileNotFoundError: If ``config_dir`` does not exist.
        InvalidDefinitionError: If a workflow type is declared twice.
    """
    config_dir = Path(config_dir)
    if not config_dir.is_dir():
        raise FileNotFoundError(f"Workflow config directory not found: {config_dir}")

    raw: dict[str, Any] = {}
    definitions: list[WorkflowDefinition] = []
    seen: dict[str, str] = {}
    for path in sorted(config_dir.glob("*.yaml")):
        data = load_yaml_file(path)
        raw[path.name] = data
        for entry in data.get("workflows", ()):
            definition = parse_workflow_definition(entry)
            wid = definition.workflow_type_id
            if wid in seen:
                raise InvalidDefinitionError(
                    wid, f"declared in both {seen[wid]} and {path.name}",
                )
            seen[wid] = path.name
            definitions.append(definition)

    return tuple(definitions), compute_checksum(raw)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    return hash_payload(data)
