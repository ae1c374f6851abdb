"""Exceptions raised by the workflow engine.

Only `GraphValidationError` ever escapes `Engine.run`. The others are caught at
the seam where they occur and attached to a node outcome or to the run's abort
reason.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for engine errors."""


class GraphValidationError(WorkflowError):
    """The supplied graph is structurally malformed."""


class NodeExecutionError(WorkflowError):
    """A node's action raised or its network call failed.

    The original exception is chained via __cause__.
    """

    def __init__(self, node_id: str, message: str) -> None:
        super().__init__(message)
        self.node_id = node_id


class ExpressionEvaluationError(WorkflowError):
    """An edge condition could not be parsed or evaluated."""


class RunTimeoutError(WorkflowError):
    """The run exceeded its wall-clock budget."""


class RunCancelledError(WorkflowError):
    """The run was cancelled at a node boundary."""
