"""CLI entrypoint for the workflow runner."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from workflow_runner import __version__
from workflow_runner.config import WorkflowSettings
from workflow_runner.engine import Engine, GraphValidationError, RunReport, RunStatus
from workflow_runner.http import HttpClient
from workflow_runner.logging import configure_logging
from workflow_runner.store import JsonGraphRepository, backfill_documents, dedupe_documents

logger = logging.getLogger(__name__)


def _parse_vars(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    parsed = json.loads(value)
    if not isinstance(parsed, dict):
        raise ValueError("--vars must be a JSON object")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-runner",
        description="Run editor-authored workflow graphs and maintain stored graph documents",
    )
    parser.add_argument("--version", action="version", version=f"workflow-runner {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a graph from a JSON file")
    run.add_argument("graph", type=Path, help="Path to a graph JSON file")
    _add_run_options(run)

    run_document = subparsers.add_parser(
        "run-document", help="Run the graph embedded in a stored document"
    )
    run_document.add_argument("document_id", help="Id of the stored document")
    _add_run_options(run_document)

    backfill = subparsers.add_parser(
        "backfill",
        help="Ensure every stored node carries fnString and config fields",
    )
    backfill.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the documents that would change without writing them",
    )

    dedupe = subparsers.add_parser(
        "dedupe",
        help="Delete older documents that share a (case-insensitive) name",
    )
    dedupe.add_argument(
        "--apply",
        action="store_true",
        help="Actually delete duplicates (default is a dry run)",
    )

    return parser


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", default=None, help="Explicit start node id")
    parser.add_argument(
        "--vars",
        default=None,
        help="Initial variables as a JSON object, e.g. '{\"temperature\": 15}'",
    )
    parser.add_argument(
        "--apis",
        type=Path,
        default=None,
        help="Path to a JSON list of legacy API descriptors",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Run timeout in seconds (overrides WORKFLOW_RUN_TIMEOUT_SECONDS)",
    )


def _run_graph(settings: WorkflowSettings, args: argparse.Namespace, graph: object) -> int:
    if args.timeout is not None:
        settings = settings.model_copy(update={"run_timeout_seconds": args.timeout})
    apis = json.loads(args.apis.read_text(encoding="utf-8")) if args.apis else None

    http = HttpClient(timeout_seconds=settings.http_timeout_seconds)
    try:
        engine = Engine.from_settings(settings, http=http)
        report: RunReport = asyncio.run(
            engine.run(
                graph,
                start_node_id=args.start,
                initial_vars=_parse_vars(args.vars),
                apis=apis,
            )
        )
    finally:
        http.close()

    print(report.model_dump_json(indent=2))
    return 0 if report.status is RunStatus.COMPLETED else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = WorkflowSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    repository = JsonGraphRepository(settings.documents_path)

    try:
        if args.command == "run":
            graph = json.loads(args.graph.read_text(encoding="utf-8"))
            return _run_graph(settings, args, graph)

        if args.command == "run-document":
            document = repository.load(args.document_id)
            if document is None:
                print(f"Document not found: {args.document_id}", file=sys.stderr)
                return 2
            return _run_graph(settings, args, document.workflow_object)

        if args.command == "backfill":
            backfill_report = backfill_documents(repository, dry_run=args.dry_run)
            verb = "Would update" if backfill_report.dry_run else "Updated"
            print(f"Processed {backfill_report.processed} documents")
            print(f"{verb} {backfill_report.updated}: {', '.join(backfill_report.updated_ids)}")
            return 0

        if args.command == "dedupe":
            dedupe_report = dedupe_documents(repository, dry_run=not args.apply)
            for group in dedupe_report.groups:
                print(
                    f'Name: "{group.name}" -> keep {group.keep.id}, delete {len(group.delete)}'
                )
                for doc in group.delete:
                    print(f"  delete: {doc.id}")
            print(f"Duplicates found: {len(dedupe_report.to_delete)}")
            if dedupe_report.dry_run:
                print("Dry run only. Re-run with --apply to delete.")
            else:
                print(f"Deleted: {len(dedupe_report.deleted)}")
            return 0

        parser.error(f"Unknown command: {args.command}")
        return 2
    except GraphValidationError as e:
        logger.error("Graph validation failed", extra={"error": str(e)})
        print(f"Invalid graph: {e}", file=sys.stderr)
        return 2
    except (OSError, ValueError) as e:
        logger.error("Command failed", extra={"error": str(e)})
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
