"""Remove graph documents that share a name.

Documents are grouped by their trimmed, case-insensitive name. Within a group
the newest document (latest `created_at`, ties broken by latest `updated_at`)
is kept and the rest are deleted. Documents with a blank name are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .documents import GraphDocument, GraphRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    name: str
    keep: GraphDocument
    delete: list[GraphDocument]


@dataclass(frozen=True, slots=True)
class DedupeReport:
    groups: list[DuplicateGroup] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    dry_run: bool = True

    @property
    def to_delete(self) -> list[str]:
        return [doc.id for group in self.groups for doc in group.delete]


def _recency(doc: GraphDocument) -> tuple[int, int]:
    return (doc.created_at or 0, doc.updated_at or 0)


def find_duplicates(documents: list[GraphDocument]) -> list[DuplicateGroup]:
    groups: dict[str, list[GraphDocument]] = {}
    for doc in documents:
        name = doc.name.strip()
        if not name:
            continue
        groups.setdefault(name.lower(), []).append(doc)

    result: list[DuplicateGroup] = []
    for entries in groups.values():
        if len(entries) <= 1:
            continue
        # sorted() is stable, so exact ties keep the first stored document.
        ranked = sorted(entries, key=_recency, reverse=True)
        keep, *rest = ranked
        result.append(DuplicateGroup(name=keep.name.strip(), keep=keep, delete=rest))
    return result


def dedupe_documents(repository: GraphRepository, *, dry_run: bool = True) -> DedupeReport:
    groups = find_duplicates(repository.list())
    deleted: list[str] = []

    for group in groups:
        logger.info(
            "Duplicate documents found",
            extra={
                "document_name": group.name,
                "keep": group.keep.id,
                "delete": [doc.id for doc in group.delete],
            },
        )
        if dry_run:
            continue
        for doc in group.delete:
            if repository.delete(doc.id):
                deleted.append(doc.id)
                logger.info("Deleted duplicate document", extra={"document_id": doc.id})

    report = DedupeReport(groups=groups, deleted=deleted, dry_run=dry_run)
    logger.info(
        "Dedupe complete",
        extra={"duplicates": len(report.to_delete), "deleted": len(deleted), "dry_run": dry_run},
    )
    return report
