"""Pydantic models for the REST server."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from workflow_runner.engine import RunReport


class RunOptions(BaseModel):
    start_node_id: str | None = None
    initial_vars: dict[str, Any] = Field(default_factory=dict)
    apis: list[dict[str, Any]] = Field(default_factory=list)


class RunRequest(RunOptions):
    graph: dict[str, Any] | list[Any] | str


class ResumeRequest(BaseModel):
    node_id: str | None = None


class ApiGraphSummary(BaseModel):
    id: str
    name: str
    created_at: int | None = None
    updated_at: int | None = None


BackgroundRunStatus = Literal["running", "waiting", "completed", "aborted", "failed"]


class RunRecord(BaseModel):
    run_id: str
    document_id: str | None = None
    status: BackgroundRunStatus

    created_at: datetime
    updated_at: datetime

    current_node_id: str | None = None
    waiting_node_id: str | None = None

    error: str | None = None
    report: RunReport | None = None
