"""In-process tracking for runs started in the background.

Records live in memory for the lifetime of the app. A run's task is bound to
the server's event loop, so there is nothing to resume after a restart.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from workflow_runner.config import WorkflowSettings
from workflow_runner.engine import Engine, RunHandle, RunReport, RunStatus
from workflow_runner.engine import events
from workflow_runner.engine.events import RunEvent
from workflow_runner.http import HttpClient
from workflow_runner.server.models import RunRecord

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"running", "waiting"})


class RunStateError(Exception):
    """The run exists but is not in a state that allows the request."""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class RunRegistry:
    def __init__(self, settings: WorkflowSettings, *, http: HttpClient | None = None) -> None:
        self._engine = Engine.from_settings(settings, http=http, event_sink=self._observe)
        self._records: dict[str, RunRecord] = {}
        self._handles: dict[str, RunHandle] = {}

    def list(self) -> list[RunRecord]:
        return list(self._records.values())

    def get(self, run_id: str) -> RunRecord | None:
        return self._records.get(run_id)

    def _update(self, run_id: str, **updates: object) -> RunRecord:
        record = self._records[run_id]
        merged = record.model_copy(update={"updated_at": _utc_now(), **updates})
        self._records[run_id] = merged
        return merged

    def start(
        self,
        graph: object,
        *,
        document_id: str | None = None,
        start_node_id: str | None = None,
        initial_vars: Mapping[str, Any] | None = None,
        apis: Sequence[Mapping[str, Any]] | None = None,
    ) -> RunRecord:
        """Start a run in the background and return its record.

        A document that already has an active run gets that run back instead
        of a second one.

        Raises:
            GraphValidationError: if the graph is malformed.
        """

        if document_id is not None:
            for record in self._records.values():
                if record.document_id == document_id and record.status in ACTIVE_STATUSES:
                    return record

        handle = self._engine.start(
            graph,
            start_node_id=start_node_id,
            initial_vars=initial_vars,
            apis=apis,
            run_id=f"run_{uuid.uuid4().hex}",
        )
        now = _utc_now()
        record = RunRecord(
            run_id=handle.run_id,
            document_id=document_id,
            status="running",
            created_at=now,
            updated_at=now,
        )
        self._records[handle.run_id] = record
        self._handles[handle.run_id] = handle
        handle.task.add_done_callback(lambda task: self._finished(handle.run_id, task))
        logger.info(
            "Background run started",
            extra={"run_id": handle.run_id, "document_id": document_id},
        )
        return record

    def stop(self, run_id: str) -> RunRecord:
        """Ask an active run to stop at its next node boundary.

        Raises:
            KeyError: if the run is unknown.
            RunStateError: if the run has already finished.
        """

        record = self._records[run_id]
        handle = self._handles.get(run_id)
        if handle is None or handle.done():
            raise RunStateError(f"Run is already {record.status}")
        handle.cancel()
        logger.info("Background run stop requested", extra={"run_id": run_id})
        return record

    def resume(self, run_id: str, node_id: str | None = None) -> RunRecord:
        """Let a waiting run continue.

        Raises:
            KeyError: if the run is unknown.
            RunStateError: if the run is not waiting (on `node_id`, if given).
        """

        record = self._records[run_id]
        handle = self._handles.get(run_id)
        if handle is None or not handle.resume(node_id):
            target = "" if node_id is None else f" on node {node_id!r}"
            raise RunStateError(f"Run is not waiting{target}")
        logger.info("Background run resume requested", extra={"run_id": run_id})
        return record

    async def shutdown(self) -> None:
        """Cancel every active run and wait for the tasks to settle."""

        handles = [h for h in self._handles.values() if not h.done()]
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*(h.task for h in handles), return_exceptions=True)

    def _observe(self, event: RunEvent) -> None:
        if event.run_id not in self._records:
            return
        node_id = event.payload.get("node_id")
        if event.type == events.NODE_STARTED:
            self._update(event.run_id, current_node_id=node_id)
        elif event.type == events.NODE_WAITING:
            self._update(event.run_id, status="waiting", waiting_node_id=node_id)
        elif event.type == events.NODE_RESUMED:
            self._update(event.run_id, status="running", waiting_node_id=None)

    def _finished(self, run_id: str, task: asyncio.Task[RunReport]) -> None:
        self._handles.pop(run_id, None)
        if task.cancelled():
            self._update(run_id, status="aborted", waiting_node_id=None, error="Run task cancelled")
            return

        exc = task.exception()
        if exc is not None:
            logger.error("Background run failed", exc_info=exc, extra={"run_id": run_id})
            self._update(run_id, status="failed", waiting_node_id=None, error=str(exc))
            return

        report = task.result()
        self._update(
            run_id,
            status="completed" if report.status is RunStatus.COMPLETED else "aborted",
            current_node_id=None,
            waiting_node_id=None,
            error=report.abort_reason,
            report=report,
        )
        logger.info(
            "Background run finished",
            extra={"run_id": run_id, "status": report.status.value},
        )
