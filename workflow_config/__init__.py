"""
workflow_config -- single public entry point for workflow definitions.

Responsibility:
    ``get_workflow_registry()`` is the only way runtime code obtains
    workflow definitions.  YAML loading is internal.

Architecture position:
    Configuration -- sits above ``workflow_kernel`` and below
    ``workflow_services``.  The kernel MUST NEVER import from
    ``workflow_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration directory does not exist.
    - ``InvalidDefinitionError`` -- a definition violates its invariants.

Audit relevance:
    Every call emits a ``workflow_config_loaded`` log entry carrying the
    checksum of the YAML sets, tying each decision back to the definitions
    that governed it.
"""

from __future__ import annotations

from pathlib import Path

from workflow_config.loader import load_definitions
from workflow_config.registry import WorkflowRegistry
from workflow_config.settings import WorkflowSettings
from workflow_kernel.logging_config import get_logger

_logger = get_logger("config")

# Bundled workflow sets
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_workflow_registry(config_dir: Path | None = None) -> WorkflowRegistry:
    """Load, validate and return the workflow registry.

    Args:
        config_dir: Override path to a directory of ``*.yaml`` sets.
            Defaults to workflow_config/sets/.
    """
    sets_dir = Path(config_dir) if config_dir else _DEFAULT_CONFIG_DIR
    definitions, checksum = load_definitions(sets_dir)
    registry = WorkflowRegistry(definitions, checksum=checksum)

    _logger.info(
        "workflow_config_loaded",
        extra={
            "config_dir": str(sets_dir),
            "checksum": checksum,
            "workflow_types": registry.workflow_types,
            "step_counts": {d.workflow_type_id: d.step_count for d in registry},
        },
    )
    return registry


__all__ = [
    "WorkflowRegistry",
    "WorkflowSettings",
    "get_workflow_registry",
]
