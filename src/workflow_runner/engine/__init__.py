"""Graph workflow engine.

The engine takes a raw graph (as stored by the editor), validates it once, then
walks it node by node:
- script nodes run a Python async body against a per-visit context
- legacy API nodes fetch a URL into a variable
- no-op nodes mark structure (start/end)

Edges carry optional boolean conditions evaluated against the run's variables.
"""

from workflow_runner.engine.errors import (
    ExpressionEvaluationError,
    GraphValidationError,
    NodeExecutionError,
    RunCancelledError,
    RunTimeoutError,
    WorkflowError,
)
from workflow_runner.engine.graph import (
    ApiDescriptor,
    Edge,
    Graph,
    Node,
    NodeKind,
    parse_apis,
    validate_graph,
)
from workflow_runner.engine.report import NodeOutcome, OutcomeStatus, RunReport, RunStatus
from workflow_runner.engine.runner import Engine, ResumeGate, RunHandle
from workflow_runner.engine.variables import UNDEFINED, VariableStore

__all__ = [
    "UNDEFINED",
    "ApiDescriptor",
    "Edge",
    "Engine",
    "ExpressionEvaluationError",
    "Graph",
    "GraphValidationError",
    "Node",
    "NodeExecutionError",
    "NodeKind",
    "NodeOutcome",
    "OutcomeStatus",
    "ResumeGate",
    "RunCancelledError",
    "RunHandle",
    "RunReport",
    "RunStatus",
    "RunTimeoutError",
    "VariableStore",
    "WorkflowError",
    "parse_apis",
    "validate_graph",
]
