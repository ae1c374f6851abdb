"""Workflow Runner.

Executes editor-authored workflow graphs:
- configuration loaded from `.env`
- structured logging
- a sequential graph engine with conditional edges
- maintenance utilities for the stored graph documents
"""

__version__ = "0.1.0"

from workflow_runner.config import WorkflowSettings

__all__ = ["__version__", "WorkflowSettings"]
