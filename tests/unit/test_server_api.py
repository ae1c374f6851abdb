from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from graph_helpers import edge, noop_node, script_node

from workflow_runner import __version__
from workflow_runner.config import WorkflowSettings
from workflow_runner.server.app import create_app
from workflow_runner.store import GraphDocument, JsonGraphRepository


@pytest.fixture
def client(
    clean_env: Path, repository: JsonGraphRepository, fake_http: Mock
) -> Iterator[TestClient]:
    settings = WorkflowSettings(WORKFLOW_RUN_TIMEOUT_SECONDS=5)
    app = create_app(settings=settings, repository=repository, http=fake_http)
    # Entering the client keeps one event loop alive for background runs.
    with TestClient(app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    health = client.get("/api/health").json()

    assert health == {"status": "ok", "version": __version__}


def test_run_inline_graph(client: TestClient) -> None:
    graph = {
        "nodes": [noop_node("start"), script_node("s", "ctx.set_var('answer', ctx.vars['q'] + 1)")],
        "edges": [edge("start", "s")],
    }

    resp = client.post("/api/runs", json={"graph": graph, "initial_vars": {"q": 41}})

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["variables"] == {"q": 41, "answer": 42}
    assert [o["node_id"] for o in body["outcomes"]] == ["start", "s"]


def test_run_invalid_graph_is_422(client: TestClient) -> None:
    graph = {"nodes": [noop_node("a")], "edges": [edge("a", "b")]}

    resp = client.post("/api/runs", json={"graph": graph})

    assert resp.status_code == 422
    assert "missing node" in resp.json()["detail"]


def test_list_and_run_documents(client: TestClient, repository: JsonGraphRepository) -> None:
    repository.save(
        GraphDocument(
            id="rule-1",
            name="Weather",
            workflow_object=[script_node("a", "ctx.set_var('done', True)")],
            created_at=10,
        )
    )

    listed = client.get("/api/graphs").json()
    assert listed == [{"id": "rule-1", "name": "Weather", "created_at": 10, "updated_at": None}]

    resp = client.post("/api/graphs/rule-1/run")
    assert resp.status_code == 200
    assert resp.json()["variables"] == {"done": True}

    resp = client.post("/api/graphs/rule-1/run", json={"initial_vars": {"extra": 1}})
    assert resp.json()["variables"] == {"extra": 1, "done": True}


def test_run_missing_document_is_404(client: TestClient) -> None:
    resp = client.post("/api/graphs/nope/run")

    assert resp.status_code == 404


def _wait_graph() -> dict[str, object]:
    return {
        "nodes": [
            script_node("ask", "ctx.set_var('waiting_wait', True)"),
            script_node("after", "ctx.set_var('done', True)"),
        ],
        "edges": [edge("ask", "after")],
    }


def _poll(
    client: TestClient, run_id: str, until: Callable[[dict[str, Any]], bool]
) -> dict[str, Any]:
    deadline = time.monotonic() + 3.0
    while True:
        body = client.get(f"/api/runs/{run_id}").json()
        if until(body) or time.monotonic() >= deadline:
            return body
        time.sleep(0.01)


def test_background_run_completes(client: TestClient) -> None:
    graph = [script_node("s", "await sleep(0.01)\nctx.set_var('answer', ctx.vars['q'] * 2)")]

    resp = client.post("/api/runs/start", json={"graph": graph, "initial_vars": {"q": 21}})

    assert resp.status_code == 200
    started = resp.json()
    assert started["run_id"].startswith("run_")
    assert started["status"] == "running"

    body = _poll(client, started["run_id"], lambda b: b["status"] == "completed")
    assert body["status"] == "completed"
    assert body["report"]["variables"] == {"q": 21, "answer": 42}
    assert body["current_node_id"] is None
    assert [r["run_id"] for r in client.get("/api/runs").json()] == [started["run_id"]]


def test_background_run_waits_and_resumes(client: TestClient) -> None:
    run_id = client.post("/api/runs/start", json={"graph": _wait_graph()}).json()["run_id"]

    waiting = _poll(client, run_id, lambda b: b["status"] == "waiting")
    assert waiting["waiting_node_id"] == "ask"
    assert waiting["current_node_id"] == "ask"

    wrong = client.post(f"/api/runs/{run_id}/resume", json={"node_id": "after"})
    assert wrong.status_code == 409

    assert client.post(f"/api/runs/{run_id}/resume", json={"node_id": "ask"}).status_code == 200

    body = _poll(client, run_id, lambda b: b["status"] == "completed")
    assert body["status"] == "completed"
    assert body["waiting_node_id"] is None
    variables = body["report"]["variables"]
    assert variables["node_ask_status"] == "user_continued"
    assert variables["waiting_wait"] is False
    assert variables["done"] is True

    assert client.post(f"/api/runs/{run_id}/resume").status_code == 409


def test_stop_aborts_a_background_run(client: TestClient) -> None:
    run_id = client.post("/api/runs/start", json={"graph": _wait_graph()}).json()["run_id"]
    _poll(client, run_id, lambda b: b["status"] == "waiting")

    resp = client.post(f"/api/runs/{run_id}/stop")
    assert resp.status_code == 200

    body = _poll(client, run_id, lambda b: b["status"] == "aborted")
    assert body["status"] == "aborted"
    assert "RunCancelledError" in body["error"]
    assert [o["node_id"] for o in body["report"]["outcomes"]] == ["ask"]

    assert client.post(f"/api/runs/{run_id}/stop").status_code == 409


def test_unknown_run_is_404(client: TestClient) -> None:
    assert client.get("/api/runs/run_nope").status_code == 404
    assert client.post("/api/runs/run_nope/stop").status_code == 404
    assert client.post("/api/runs/run_nope/resume").status_code == 404


def test_start_invalid_graph_is_422(client: TestClient) -> None:
    graph = {"nodes": [noop_node("a")], "edges": [edge("a", "b")]}

    resp = client.post("/api/runs/start", json={"graph": graph})

    assert resp.status_code == 422
    assert client.get("/api/runs").json() == []


def test_document_start_reuses_its_active_run(
    client: TestClient, repository: JsonGraphRepository
) -> None:
    repository.save(GraphDocument(id="rule-1", name="Wait", workflow_object=_wait_graph()))

    first = client.post("/api/graphs/rule-1/start").json()
    second = client.post("/api/graphs/rule-1/start").json()

    assert first["run_id"] == second["run_id"]
    assert first["document_id"] == "rule-1"
    assert client.post("/api/graphs/nope/start").status_code == 404


def test_list_graphs_skips_invalid_entries(
    client: TestClient, repository: JsonGraphRepository
) -> None:
    repository.path.parent.mkdir(parents=True, exist_ok=True)
    repository.path.write_text(
        '[{"name": "No id"}, {"id": "rule-1", "name": "Ok"}]', encoding="utf-8"
    )

    resp = client.get("/api/graphs")

    assert resp.status_code == 200
    assert [g["id"] for g in resp.json()] == ["rule-1"]
