"""Process settings read from the environment.

=================================  =========================  ==========
Variable                           Field                      Default
=================================  =========================  ==========
WORKFLOW_DATABASE_URL              database_url               sqlite://
WORKFLOW_CONFIG_DIR                config_dir                 bundled sets
WORKFLOW_LOG_LEVEL                 log_level                  INFO
WORKFLOW_NOTIFY_TIMEOUT_SECONDS    notify_timeout_seconds     5.0
WORKFLOW_STALE_RETRY_ATTEMPTS      stale_retry_attempts       3
=================================  =========================  ==========
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


def _number(environ: Mapping[str, str], name: str, default: str, cast):
    raw = environ.get(name, default)
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class WorkflowSettings:
    database_url: str = "sqlite://"
    config_dir: Path | None = None
    log_level: str = "INFO"
    notify_timeout_seconds: float = 5.0
    stale_retry_attempts: int = 3

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WorkflowSettings:
        """
        Raises:
            ValueError: If a numeric variable is not a positive number.
        """
        env = os.environ if environ is None else environ
        config_dir = env.get("WORKFLOW_CONFIG_DIR")
        return cls(
            database_url=env.get("WORKFLOW_DATABASE_URL", "sqlite://"),
            config_dir=Path(config_dir) if config_dir else None,
            log_level=env.get("WORKFLOW_LOG_LEVEL", "INFO").upper(),
            notify_timeout_seconds=_number(env, "WORKFLOW_NOTIFY_TIMEOUT_SECONDS", "5.0", float),
            stale_retry_attempts=_number(env, "WORKFLOW_STALE_RETRY_ATTEMPTS", "3", int),
        )
