"""Backfill `fnString` and `config` onto every stored node.

After this pass the engine can rely on both fields being present. The pass is
idempotent: running it again over the same documents changes nothing.
"""

from __future__ import annotations

import json
import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any

from .documents import GraphRepository, now_ms

logger = logging.getLogger(__name__)

SCRIPT_FIELD = "fnString"
CONFIG_FIELD = "config"


@dataclass(frozen=True, slots=True)
class BackfillReport:
    processed: int
    updated: int
    updated_ids: list[str] = field(default_factory=list)
    dry_run: bool = False


def backfill_node(node: MutableMapping[str, Any]) -> bool:
    """Add the missing fields to one node in place.

    Returns:
        True if the node was modified.
    """

    modified = False
    data = node.get("data")
    if not data:
        data = {}
        node["data"] = data
        modified = True
    elif not isinstance(data, MutableMapping):
        logger.warning(
            "Skipping node whose data is not an object",
            extra={"node_id": node.get("id"), "data_type": type(data).__name__},
        )
        return False

    if SCRIPT_FIELD not in data:
        data[SCRIPT_FIELD] = ""
        modified = True

    if CONFIG_FIELD not in data:
        data[CONFIG_FIELD] = {}
        modified = True

    return modified


def backfill_workflow(workflow: Any) -> bool:
    """Backfill every node of a workflow object in either stored shape."""

    if isinstance(workflow, list):
        nodes = workflow
    elif isinstance(workflow, dict) and isinstance(workflow.get("nodes"), list):
        nodes = workflow["nodes"]
    else:
        return False

    modified = False
    for node in nodes:
        if isinstance(node, MutableMapping) and backfill_node(node):
            modified = True
    return modified


def backfill_documents(repository: GraphRepository, *, dry_run: bool = False) -> BackfillReport:
    processed = 0
    updated_ids: list[str] = []

    for document in repository.list():
        processed += 1
        raw = document.workflow_object
        as_string = isinstance(raw, str)
        if as_string:
            try:
                workflow = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(
                    "Skipping document with unparseable workflow",
                    extra={"document_id": document.id},
                )
                continue
        else:
            workflow = raw

        if not backfill_workflow(workflow):
            continue

        updated_ids.append(document.id)
        logger.info("Backfilling document", extra={"document_id": document.id, "dry_run": dry_run})
        if dry_run:
            continue

        repository.save(
            document.model_copy(
                update={
                    # Keep the stored representation: strings stay strings.
                    "workflow_object": json.dumps(workflow) if as_string else workflow,
                    "updated_at": now_ms(),
                }
            )
        )

    report = BackfillReport(
        processed=processed,
        updated=len(updated_ids),
        updated_ids=updated_ids,
        dry_run=dry_run,
    )
    logger.info(
        "Backfill complete",
        extra={"processed": report.processed, "updated": report.updated, "dry_run": dry_run},
    )
    return report
