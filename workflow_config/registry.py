"""
WorkflowRegistry -- validated, read-only lookup of workflow definitions.

Exposes the two definition queries the transition engine needs,
``step_count`` and ``step_definition``, plus ``find`` for callers that
want an absent type as ``None`` rather than an error.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from types import MappingProxyType

from workflow_kernel.domain.workflow import StepDefinition, WorkflowDefinition
from workflow_kernel.exceptions import InvalidDefinitionError


class WorkflowRegistry:
    """Immutable set of workflow definitions keyed by ``workflow_type_id``."""

    def __init__(self, definitions: Iterable[WorkflowDefinition], checksum: str = ""):
        by_type: dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            definition.validate()
            wid = definition.workflow_type_id
            if wid in by_type:
                raise InvalidDefinitionError(wid, "workflow type declared twice")
            by_type[wid] = definition
        self._definitions = MappingProxyType(by_type)
        self._checksum = checksum

    @property
    def checksum(self) -> str:
        return self._checksum

    @property
    def workflow_types(self) -> tuple[str, ...]:
        return tuple(self._definitions)

    def __contains__(self, workflow_type_id: object) -> bool:
        return workflow_type_id in self._definitions

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def find(self, workflow_type_id: str) -> WorkflowDefinition | None:
        return self._definitions.get(workflow_type_id)

    def get(self, workflow_type_id: str) -> WorkflowDefinition:
        """
        Raises:
            InvalidDefinitionError: If the workflow type is unknown.
        """
        definition = self._definitions.get(workflow_type_id)
        if definition is None:
            raise InvalidDefinitionError(workflow_type_id, "unknown workflow type")
        return definition

    def step_count(self, workflow_type_id: str) -> int:
        return self.get(workflow_type_id).step_count

    def step_definition(self, workflow_type_id: str, ordinal: int) -> StepDefinition:
        """
        Raises:
            InvalidDefinitionError: If the type or the ordinal is unknown.
        """
        return self.get(workflow_type_id).step(ordinal)
