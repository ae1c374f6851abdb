"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from workflow_runner.engine import Engine, RunReport
from workflow_runner.http import HttpClient, HttpResponse
from workflow_runner.store import JsonGraphRepository

_SETTINGS_ENV = (
    "LOG_LEVEL",
    "WORKFLOW_RUN_TIMEOUT_SECONDS",
    "WORKFLOW_HTTP_TIMEOUT_SECONDS",
    "WORKFLOW_STEP_DELAY_SECONDS",
    "WORKFLOW_MAX_VISITS_PER_NODE",
    "WORKFLOW_RECORD_ERROR_VARS",
    "WORKFLOW_DOCUMENTS_PATH",
)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no settings in the environment."""
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def fake_http() -> Mock:
    """Provide an HttpClient whose fetch returns an empty JSON object."""
    http = Mock(spec=HttpClient)
    http.fetch = AsyncMock(
        return_value=HttpResponse(url="https://example.test", status=200, text="{}")
    )
    return http


@pytest.fixture
def engine(fake_http: Mock) -> Engine:
    """Provide an engine with a short timeout and no network access."""
    return Engine(http=fake_http, run_timeout_seconds=5.0)


@pytest.fixture
def run_graph(engine: Engine) -> Callable[..., RunReport]:
    """Run a graph to completion on a fresh event loop."""

    def _run(graph: object, **kwargs: Any) -> RunReport:
        return asyncio.run(engine.run(graph, **kwargs))

    return _run


@pytest.fixture
def repository(tmp_path: Path) -> JsonGraphRepository:
    """Provide an empty JSON-backed document repository."""
    return JsonGraphRepository(tmp_path / "agent_state" / "graphs.json")



@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """Undo any handler changes made by configure_logging during a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
