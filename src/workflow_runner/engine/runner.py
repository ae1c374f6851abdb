"""The scheduler that drives one traversal of a graph.

A run is strictly sequential: one node executes at a time, and its outgoing
edges are evaluated only after its action settles. Independent runs share no
mutable state and can be awaited concurrently.

A node can ask a resumable run to pause by setting `waiting_wait` to true. The
run then holds before evaluating that node's edges until `RunHandle.resume` is
called or the run is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter, deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from workflow_runner.config import WorkflowSettings
from workflow_runner.http import HttpClient

from . import events
from .conditions import EdgeEvaluator
from .context import ContextBuilder
from .errors import GraphValidationError, RunCancelledError, RunTimeoutError, WorkflowError
from .events import EventSink, RunEvent
from .executor import NodeExecutor
from .graph import ApiDescriptor, Graph, validate_graph
from .report import NodeOutcome, OutcomeStatus, RunReport, RunStatus
from .variables import VariableStore

logger = logging.getLogger(__name__)

WAIT_FLAG = "waiting_wait"
WAITING_STATUS = "waiting_user_input"
RESUMED_STATUS = "user_continued"


@dataclass
class _RunState:
    run_id: str
    graph: Graph
    store: VariableStore
    executor: NodeExecutor
    deadline: float
    cancel_event: asyncio.Event | None
    resume_gate: ResumeGate | None
    status: RunStatus = RunStatus.NOT_STARTED
    outcomes: list[NodeOutcome] = field(default_factory=list)
    visits: Counter[str] = field(default_factory=Counter)
    current: str | None = None
    current_started: float = 0.0


class ResumeGate:
    """Holds a paused run until a caller lets it continue."""

    def __init__(self) -> None:
        self._released = asyncio.Event()
        self.waiting_on: str | None = None

    def resume(self, node_id: str | None = None) -> bool:
        """Release the pause. Returns False if nothing (or another node) is waiting."""

        if self.waiting_on is None:
            return False
        if node_id is not None and node_id != self.waiting_on:
            return False
        self._released.set()
        return True

    def arm(self, node_id: str) -> None:
        self._released.clear()
        self.waiting_on = node_id

    async def wait(self, cancel_event: asyncio.Event | None) -> None:
        waiters = [asyncio.create_task(self._released.wait())]
        if cancel_event is not None:
            waiters.append(asyncio.create_task(cancel_event.wait()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            self.waiting_on = None


@dataclass
class RunHandle:
    """A run started in the background that can be cancelled or resumed."""

    run_id: str
    task: asyncio.Task[RunReport]
    cancel_event: asyncio.Event
    gate: ResumeGate

    def cancel(self) -> None:
        """Let the current node finish, then stop scheduling further nodes.

        A run paused on a wait stops immediately.
        """

        self.cancel_event.set()

    def resume(self, node_id: str | None = None) -> bool:
        return self.gate.resume(node_id)

    @property
    def waiting_on(self) -> str | None:
        return self.gate.waiting_on

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> RunReport:
        return await self.task


def _coerce_apis(
    apis: Sequence[ApiDescriptor | Mapping[str, Any]] | None,
) -> tuple[ApiDescriptor, ...]:
    if not apis:
        return ()
    return tuple(a if isinstance(a, ApiDescriptor) else ApiDescriptor.from_json(a) for a in apis)


class Engine:
    """Validates a graph, then executes it node by node until the queue drains."""

    def __init__(
        self,
        *,
        http: HttpClient | None = None,
        run_timeout_seconds: float = 300.0,
        step_delay_seconds: float = 0.0,
        max_visits_per_node: int = 1,
        record_error_vars: bool = True,
        event_sink: EventSink | None = None,
    ) -> None:
        if run_timeout_seconds <= 0:
            raise ValueError("run_timeout_seconds must be positive")
        if max_visits_per_node < 1:
            raise ValueError("max_visits_per_node must be at least 1")
        self._http = http or HttpClient()
        self._run_timeout = run_timeout_seconds
        self._step_delay = step_delay_seconds
        self._max_visits = max_visits_per_node
        self._record_error_vars = record_error_vars
        self._event_sink = event_sink
        self._evaluator = EdgeEvaluator()

    @classmethod
    def from_settings(
        cls,
        settings: WorkflowSettings,
        *,
        http: HttpClient | None = None,
        event_sink: EventSink | None = None,
    ) -> Engine:
        return cls(
            http=http or HttpClient(timeout_seconds=settings.http_timeout_seconds),
            run_timeout_seconds=settings.run_timeout_seconds,
            step_delay_seconds=settings.step_delay_seconds,
            max_visits_per_node=settings.max_visits_per_node,
            record_error_vars=settings.record_error_vars,
            event_sink=event_sink,
        )

    def _emit(self, event_type: str, run_id: str, **payload: object) -> None:
        if self._event_sink is None:
            return
        try:
            self._event_sink(RunEvent(type=event_type, run_id=run_id, payload=payload))
        except Exception:
            logger.exception("Event sink failed", extra={"run_id": run_id, "event": event_type})

    def start(
        self,
        graph: object,
        *,
        start_node_id: str | None = None,
        initial_vars: Mapping[str, Any] | None = None,
        apis: Sequence[ApiDescriptor | Mapping[str, Any]] | None = None,
        run_id: str | None = None,
    ) -> RunHandle:
        """Schedule a run on the current event loop and return a handle to it.

        The graph is validated before the task is created, so a bad graph raises
        `GraphValidationError` here rather than inside the task.
        """

        descriptors = _coerce_apis(apis)
        canonical = self._prepare(graph, start_node_id, descriptors)
        run_id = run_id or uuid.uuid4().hex
        cancel_event = asyncio.Event()
        gate = ResumeGate()
        task = asyncio.create_task(
            self.run(
                canonical,
                start_node_id=start_node_id,
                initial_vars=initial_vars,
                apis=descriptors,
                cancel_event=cancel_event,
                resume_gate=gate,
                run_id=run_id,
            )
        )
        return RunHandle(run_id=run_id, task=task, cancel_event=cancel_event, gate=gate)

    @staticmethod
    def _prepare(
        graph: object, start_node_id: str | None, apis: tuple[ApiDescriptor, ...]
    ) -> Graph:
        canonical = graph if isinstance(graph, Graph) else validate_graph(graph, apis=apis)
        if start_node_id is not None and not canonical.has_node(start_node_id):
            raise GraphValidationError(f"Start node {start_node_id!r} does not exist")
        return canonical

    async def run(
        self,
        graph: object,
        *,
        start_node_id: str | None = None,
        initial_vars: Mapping[str, Any] | None = None,
        apis: Sequence[ApiDescriptor | Mapping[str, Any]] | None = None,
        cancel_event: asyncio.Event | None = None,
        resume_gate: ResumeGate | None = None,
        run_id: str | None = None,
    ) -> RunReport:
        """Execute `graph` and return its report.

        Without a `resume_gate` the run is not resumable and a requested wait
        is skipped.

        Raises:
            GraphValidationError: if the graph is malformed or `start_node_id`
                does not name a node. Nothing executes in that case.
        """

        descriptors = _coerce_apis(apis)
        canonical = self._prepare(graph, start_node_id, descriptors)

        run_id = run_id or uuid.uuid4().hex
        store = VariableStore(initial_vars)
        builder = ContextBuilder(store=store, http=self._http, apis=descriptors, run_id=run_id)
        loop = asyncio.get_running_loop()
        state = _RunState(
            run_id=run_id,
            graph=canonical,
            store=store,
            executor=NodeExecutor(
                builder=builder, store=store, record_error_vars=self._record_error_vars
            ),
            deadline=loop.time() + self._run_timeout,
            cancel_event=cancel_event,
            resume_gate=resume_gate,
        )

        started_at = datetime.now(tz=UTC)
        state.status = RunStatus.RUNNING
        logger.info(
            "Run started",
            extra={
                "run_id": run_id,
                "nodes": len(canonical.nodes),
                "edges": len(canonical.edges),
            },
        )
        self._emit(events.RUN_STARTED, run_id)

        abort: WorkflowError | None = None
        try:
            async with asyncio.timeout(self._run_timeout):
                await self._drive(state, start_node_id)
        except TimeoutError:
            abort = RunTimeoutError(f"Run exceeded {self._run_timeout:g}s")
        except (RunTimeoutError, RunCancelledError) as e:
            abort = e

        if abort is not None:
            state.status = RunStatus.ABORTED
            if isinstance(abort, RunTimeoutError) and state.current is not None:
                # The in-flight node was cancelled mid-action.
                state.outcomes.append(
                    NodeOutcome(
                        node_id=state.current,
                        status=OutcomeStatus.FAILURE,
                        error=f"{type(abort).__name__}: {abort}",
                        duration_ms=round(
                            (time.perf_counter() - state.current_started) * 1000.0, 3
                        ),
                    )
                )
            logger.warning(
                "Run aborted",
                extra={"run_id": run_id, "reason": f"{type(abort).__name__}: {abort}"},
            )
        else:
            state.status = RunStatus.COMPLETED

        report = RunReport(
            run_id=run_id,
            status=state.status,
            outcomes=list(state.outcomes),
            variables=dict(store.snapshot()),
            abort_reason=f"{type(abort).__name__}: {abort}" if abort is not None else None,
            started_at=started_at,
            finished_at=datetime.now(tz=UTC),
        )
        logger.info(
            "Run finished",
            extra={
                "run_id": run_id,
                "status": report.status.value,
                "outcomes": len(report.outcomes),
            },
        )
        self._emit(events.RUN_FINISHED, run_id, status=report.status.value)
        return report

    def _seeds(self, graph: Graph, start_node_id: str | None) -> list[str]:
        if start_node_id is not None:
            return [start_node_id]
        seeds = graph.entry_nodes()
        if not seeds and graph.nodes:
            # Every node sits on a cycle; fall back to declaration order.
            seeds = [graph.nodes[0].id]
        return seeds

    def _check_boundary(self, state: _RunState) -> None:
        if state.cancel_event is not None and state.cancel_event.is_set():
            raise RunCancelledError("Run cancelled")
        if asyncio.get_running_loop().time() >= state.deadline:
            raise RunTimeoutError(f"Run exceeded {self._run_timeout:g}s")

    def _write(self, state: _RunState, node_id: str, values: Mapping[str, Any]) -> None:
        state.store.open_window(node_id)
        try:
            for name, value in values.items():
                state.store.set(name, value)
        finally:
            state.store.close_window()

    async def _pause(self, state: _RunState, node_id: str) -> None:
        gate = state.resume_gate
        if gate is None:
            logger.warning(
                "Wait requested but the run cannot be resumed; continuing",
                extra={"run_id": state.run_id, "node_id": node_id},
            )
            return

        self._write(
            state,
            node_id,
            {
                f"node_{node_id}_status": WAITING_STATUS,
                f"node_{node_id}_wait_start": int(time.time() * 1000),
            },
        )
        gate.arm(node_id)
        logger.info("Run waiting", extra={"run_id": state.run_id, "node_id": node_id})
        self._emit(events.NODE_WAITING, state.run_id, node_id=node_id, reason=WAITING_STATUS)
        await gate.wait(state.cancel_event)
        self._check_boundary(state)

        self._write(state, node_id, {WAIT_FLAG: False, f"node_{node_id}_status": RESUMED_STATUS})
        logger.info("Run resumed", extra={"run_id": state.run_id, "node_id": node_id})
        self._emit(events.NODE_RESUMED, state.run_id, node_id=node_id)

    async def _drive(self, state: _RunState, start_node_id: str | None) -> None:
        graph = state.graph
        queue: deque[str] = deque()
        pending: set[str] = set()
        for node_id in self._seeds(graph, start_node_id):
            if node_id not in pending:
                queue.append(node_id)
                pending.add(node_id)

        while queue:
            self._check_boundary(state)
            node_id = queue.popleft()
            pending.discard(node_id)
            if state.visits[node_id] >= self._max_visits:
                continue

            if self._step_delay > 0 and state.outcomes:
                await asyncio.sleep(self._step_delay)

            node = graph.node(node_id)
            state.visits[node_id] += 1
            state.current = node_id
            state.current_started = time.perf_counter()
            self._emit(events.NODE_STARTED, state.run_id, node_id=node_id, kind=node.kind.value)
            outcome = await state.executor.execute(node)
            state.current = None
            state.outcomes.append(outcome)
            self._emit(
                events.NODE_FINISHED,
                state.run_id,
                node_id=node_id,
                status=outcome.status.value,
                error=outcome.error,
            )

            if state.store.get(WAIT_FLAG) is True:
                await self._pause(state, node_id)

            outgoing = graph.outgoing(node_id)
            if not outgoing:
                continue

            selection = self._evaluator.select(outgoing, state.store.resolve)
            if selection.is_dead_end:
                reason = "No outgoing edge is eligible"
                if selection.errors:
                    details = "; ".join(f"{edge.id}: {msg}" for edge, msg in selection.errors)
                    reason = f"{reason} (condition errors: {details})"
                state.outcomes.append(
                    NodeOutcome(node_id=node_id, status=OutcomeStatus.DEAD_END, error=reason)
                )
                logger.info(
                    "Branch reached a dead end",
                    extra={"run_id": state.run_id, "node_id": node_id},
                )
                self._emit(events.DEAD_END, state.run_id, node_id=node_id)
                continue

            for edge in selection.taken:
                self._emit(
                    events.EDGE_TAKEN,
                    state.run_id,
                    edge_id=edge.id,
                    source=edge.source,
                    target=edge.target,
                )
                if edge.target in pending or state.visits[edge.target] >= self._max_visits:
                    continue
                queue.append(edge.target)
                pending.add(edge.target)
