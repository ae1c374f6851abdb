"""Unit tests for duplicate document cleanup."""

from __future__ import annotations

from workflow_runner.store import (
    GraphDocument,
    JsonGraphRepository,
    dedupe_documents,
    find_duplicates,
)


def _seed(repository: JsonGraphRepository) -> None:
    repository.save(GraphDocument(id="old", name="Weather Rule", created_at=100))
    repository.save(GraphDocument(id="newest", name="weather rule ", created_at=300))
    repository.save(GraphDocument(id="middle", name="WEATHER RULE", created_at=200))
    repository.save(GraphDocument(id="solo", name="Other", created_at=50))
    repository.save(GraphDocument(id="blank1", name=" "))
    repository.save(GraphDocument(id="blank2", name=""))


def test_find_duplicates_keeps_newest() -> None:
    docs = [
        GraphDocument(id="a", name="Rule", created_at=100),
        GraphDocument(id="b", name="rule", created_at=300),
        GraphDocument(id="c", name="RULE", created_at=200),
    ]

    (group,) = find_duplicates(docs)

    assert group.keep.id == "b"
    assert [d.id for d in group.delete] == ["c", "a"]


def test_updated_at_breaks_created_at_ties() -> None:
    docs = [
        GraphDocument(id="a", name="Rule", created_at=100, updated_at=1),
        GraphDocument(id="b", name="Rule", created_at=100, updated_at=9),
    ]

    (group,) = find_duplicates(docs)

    assert group.keep.id == "b"


def test_dedupe_dry_run_deletes_nothing(repository: JsonGraphRepository) -> None:
    _seed(repository)

    report = dedupe_documents(repository)

    assert report.dry_run is True
    assert sorted(report.to_delete) == ["middle", "old"]
    assert report.deleted == []
    assert len(repository.list()) == 6


def test_dedupe_apply_removes_older_copies(repository: JsonGraphRepository) -> None:
    _seed(repository)

    report = dedupe_documents(repository, dry_run=False)

    assert sorted(report.deleted) == ["middle", "old"]
    assert sorted(d.id for d in repository.list()) == ["blank1", "blank2", "newest", "solo"]
    assert dedupe_documents(repository, dry_run=False).deleted == []
