#!/usr/bin/env python3
"""Programmatic run example.

This demonstrates using the engine directly:

* load settings from `.env`
* build a small branching graph in the editor's stored shape
* run it and print the report

The starting temperature is passed as an argument so each branch can be tried.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from workflow_runner.config import WorkflowSettings
from workflow_runner.engine import Engine
from workflow_runner.logging import configure_logging

GRAPH = {
    "nodes": [
        {"id": "start", "data": {"label": "Start"}},
        {"id": "cold", "data": {"fnString": "ctx.set_var('advice', 'Wear a coat')"}},
        {"id": "mild", "data": {"fnString": "ctx.set_var('advice', 'A jacket will do')"}},
        {"id": "hot", "data": {"fnString": "ctx.set_var('advice', 'Shorts weather')"}},
        {
            "id": "report",
            "data": {
                "fnString": "ctx.log.info('Advice ready', extra={'advice': ctx.vars['advice']})",
            },
        },
    ],
    "edges": [
        {"source": "start", "target": "cold", "label": "temperature < 10"},
        {"source": "start", "target": "mild", "label": "temperature >= 10 && temperature <= 20"},
        {"source": "start", "target": "hot", "label": "temperature > 20"},
        {"source": "cold", "target": "report"},
        {"source": "mild", "target": "report"},
        {"source": "hot", "target": "report"},
    ],
}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a branching graph (programmatic example).")
    parser.add_argument("--temperature", type=float, default=15.0, help="Starting temperature")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = WorkflowSettings()
    configure_logging(settings.log_level)

    engine = Engine.from_settings(settings)
    report = asyncio.run(engine.run(GRAPH, initial_vars={"temperature": args.temperature}))

    print(f"Status: {report.status.value}")
    print(f"Visited: {' -> '.join(report.visited())}")
    print(f"Advice: {report.variables.get('advice')}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
