"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the engine and the document
repository. Runs started in the background are tracked by `RunRegistry`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from workflow_runner import __version__
from workflow_runner.config import WorkflowSettings
from workflow_runner.engine import Engine, GraphValidationError, RunReport
from workflow_runner.http import HttpClient
from workflow_runner.server.models import (
    ApiGraphSummary,
    ResumeRequest,
    RunOptions,
    RunRecord,
    RunRequest,
)
from workflow_runner.server.run_registry import RunRegistry, RunStateError
from workflow_runner.store import GraphRepository, JsonGraphRepository

logger = logging.getLogger(__name__)


def create_app(
    *,
    settings: WorkflowSettings | None = None,
    repository: GraphRepository | None = None,
    http: HttpClient | None = None,
) -> FastAPI:
    settings = settings or WorkflowSettings()
    repository = repository or JsonGraphRepository(settings.documents_path)
    http = http or HttpClient(timeout_seconds=settings.http_timeout_seconds)
    engine = Engine.from_settings(settings, http=http)
    registry = RunRegistry(settings, http=http)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await registry.shutdown()

    app = FastAPI(
        lifespan=lifespan,
        title="Workflow Runner",
        version=__version__,
        description="REST API for running workflow graphs.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose settings for request handlers that want to read it.
    app.state.settings = settings
    app.state.runs = registry

    async def _run(graph: object, options: RunOptions) -> RunReport:
        try:
            return await engine.run(
                graph,
                start_node_id=options.start_node_id,
                initial_vars=options.initial_vars,
                apis=options.apis,
            )
        except GraphValidationError as e:
            logger.info("Rejected invalid graph", extra={"error": str(e)})
            raise HTTPException(status_code=422, detail=str(e)) from e

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/api/runs", response_model=RunReport)
    async def run_graph(req: RunRequest) -> RunReport:
        return await _run(req.graph, req)

    @app.get("/api/graphs", response_model=list[ApiGraphSummary])
    def list_graphs() -> list[ApiGraphSummary]:
        return [
            ApiGraphSummary(
                id=doc.id,
                name=doc.name,
                created_at=doc.created_at,
                updated_at=doc.updated_at,
            )
            for doc in repository.list()
        ]

    @app.post("/api/graphs/{document_id}/run", response_model=RunReport)
    async def run_document(document_id: str, options: RunOptions | None = None) -> RunReport:
        document = repository.load(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Graph document not found")
        return await _run(document.workflow_object, options or RunOptions())

    def _start(graph: object, options: RunOptions, document_id: str | None = None) -> RunRecord:
        try:
            return registry.start(
                graph,
                document_id=document_id,
                start_node_id=options.start_node_id,
                initial_vars=options.initial_vars,
                apis=options.apis,
            )
        except GraphValidationError as e:
            logger.info("Rejected invalid graph", extra={"error": str(e)})
            raise HTTPException(status_code=422, detail=str(e)) from e

    def _record_or_404(run_id: str) -> RunRecord:
        record = registry.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return record

    @app.post("/api/runs/start", response_model=RunRecord)
    async def start_run(req: RunRequest) -> RunRecord:
        return _start(req.graph, req)

    @app.post("/api/graphs/{document_id}/start", response_model=RunRecord)
    async def start_document(document_id: str, options: RunOptions | None = None) -> RunRecord:
        document = repository.load(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Graph document not found")
        return _start(document.workflow_object, options or RunOptions(), document_id)

    @app.get("/api/runs", response_model=list[RunRecord])
    async def list_runs() -> list[RunRecord]:
        return registry.list()

    @app.get("/api/runs/{run_id}", response_model=RunRecord)
    async def get_run(run_id: str) -> RunRecord:
        return _record_or_404(run_id)

    @app.post("/api/runs/{run_id}/stop", response_model=RunRecord)
    async def stop_run(run_id: str) -> RunRecord:
        _record_or_404(run_id)
        try:
            return registry.stop(run_id)
        except RunStateError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    @app.post("/api/runs/{run_id}/resume", response_model=RunRecord)
    async def resume_run(run_id: str, req: ResumeRequest | None = None) -> RunRecord:
        _record_or_404(run_id)
        try:
            return registry.resume(run_id, (req or ResumeRequest()).node_id)
        except RunStateError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    return app
