"""Outcome records and the final run report."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DEAD_END = "dead_end"


class RunStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class NodeOutcome(BaseModel):
    node_id: str
    status: OutcomeStatus
    error: str | None = None
    duration_ms: float = Field(default=0.0, ge=0)


class RunReport(BaseModel):
    run_id: str
    status: RunStatus
    outcomes: list[NodeOutcome] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    abort_reason: str | None = None
    started_at: datetime
    finished_at: datetime

    def visited(self) -> list[str]:
        """Node ids in execution order, excluding dead-end markers."""

        return [o.node_id for o in self.outcomes if o.status is not OutcomeStatus.DEAD_END]

    def outcomes_for(self, node_id: str) -> list[NodeOutcome]:
        return [o for o in self.outcomes if o.node_id == node_id]
