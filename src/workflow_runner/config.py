"""Configuration for the workflow runner.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Script-level retry/backoff settings are not configured here; they travel in
each node's `config`. Only engine-level limits live in these settings.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    """Settings for the engine, the CLI and the REST adapter.

    Environment variables:
    - LOG_LEVEL                       (optional)
    - WORKFLOW_RUN_TIMEOUT_SECONDS    (optional)
    - WORKFLOW_HTTP_TIMEOUT_SECONDS   (optional)
    - WORKFLOW_STEP_DELAY_SECONDS     (optional)
    - WORKFLOW_MAX_VISITS_PER_NODE    (optional)
    - WORKFLOW_RECORD_ERROR_VARS      (optional)
    - WORKFLOW_DOCUMENTS_PATH         (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `WorkflowSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    run_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias="WORKFLOW_RUN_TIMEOUT_SECONDS",
        description="Wall-clock budget for a whole run; exceeding it aborts the run",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="WORKFLOW_HTTP_TIMEOUT_SECONDS",
        description="Default per-request timeout for node network calls",
    )
    step_delay_seconds: float = Field(
        default=0.0,
        ge=0,
        validation_alias="WORKFLOW_STEP_DELAY_SECONDS",
        description="Pause between consecutive node executions (useful for live viewers)",
    )
    max_visits_per_node: int = Field(
        default=1,
        ge=1,
        validation_alias="WORKFLOW_MAX_VISITS_PER_NODE",
        description=(
            "How many times a node may execute within one run. The default of 1 breaks "
            "cycles; raise it to allow intentional loops."
        ),
    )
    record_error_vars: bool = Field(
        default=True,
        validation_alias="WORKFLOW_RECORD_ERROR_VARS",
        description="Store a failed node's error message as `node_<id>_error`",
    )

    documents_path: Path = Field(
        default=Path("agent_state/graphs.json"),
        validation_alias="WORKFLOW_DOCUMENTS_PATH",
        description="JSON file backing the local graph document repository",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_log_level(self) -> WorkflowSettings:
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown LOG_LEVEL: {self.log_level!r}")
        return self
