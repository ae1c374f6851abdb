from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

RUN_STARTED = "run_started"
NODE_STARTED = "node_started"
NODE_FINISHED = "node_finished"
EDGE_TAKEN = "edge_taken"
DEAD_END = "dead_end"
NODE_WAITING = "node_waiting"
NODE_RESUMED = "node_resumed"
RUN_FINISHED = "run_finished"


@dataclass(frozen=True, slots=True)
class RunEvent:
    """A progress signal emitted by the engine.

    Events are observations only. Sinks cannot influence scheduling.
    """

    type: str
    run_id: str
    payload: dict[str, object] = field(default_factory=dict)


class EventSink(Protocol):
    def __call__(self, event: RunEvent) -> None: ...


class RecordingSink:
    """Collects events in memory; handy for callers that replay a run."""

    def __init__(self) -> None:
        self.events: list[RunEvent] = []

    def __call__(self, event: RunEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[RunEvent]:
        return [e for e in self.events if e.type == event_type]
