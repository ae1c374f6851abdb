"""Graph document storage and the maintenance passes that run over it."""

from workflow_runner.store.backfill import BackfillReport, backfill_documents
from workflow_runner.store.dedupe import DedupeReport, dedupe_documents, find_duplicates
from workflow_runner.store.documents import GraphDocument, GraphRepository, JsonGraphRepository

__all__ = [
    "BackfillReport",
    "DedupeReport",
    "GraphDocument",
    "GraphRepository",
    "JsonGraphRepository",
    "backfill_documents",
    "dedupe_documents",
    "find_duplicates",
]
