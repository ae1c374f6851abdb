"""FastAPI server adapter for workflow-runner.

Design intent:
- Keep execution logic in `workflow_runner.engine`
- Keep server-specific concerns (routing, request models) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from workflow_runner.server.app import create_app
