"""Unit tests for the JSON-backed graph document repository."""

from __future__ import annotations

import json
from pathlib import Path

from workflow_runner.store import GraphDocument, JsonGraphRepository


def test_missing_file_is_empty(repository: JsonGraphRepository) -> None:
    assert repository.list() == []
    assert repository.load("nope") is None
    assert repository.delete("nope") is False


def test_save_upserts_and_uses_stored_field_names(repository: JsonGraphRepository) -> None:
    repository.save(GraphDocument(id="r1", name="Rule", workflow_object=[], created_at=1))
    repository.save(GraphDocument(id="r1", name="Rule v2", workflow_object=[], created_at=1))
    repository.save(GraphDocument(id="r2", name="Other"))

    raw = json.loads(repository.path.read_text(encoding="utf-8"))

    assert [d["id"] for d in raw] == ["r1", "r2"]
    assert raw[0]["name"] == "Rule v2"
    assert raw[0]["workflowObject"] == []
    assert raw[0]["createdAt"] == 1
    assert repository.load("r1").name == "Rule v2"  # type: ignore[union-attr]


def test_unknown_fields_survive_a_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "graphs.json"
    path.write_text(
        json.dumps([{"id": "r1", "name": "Rule", "owner": "ops", "workflowObject": "[]"}]),
        encoding="utf-8",
    )
    repo = JsonGraphRepository(path)

    doc = repo.load("r1")
    assert doc is not None
    assert doc.workflow_object == "[]"
    repo.save(doc.model_copy(update={"name": "Renamed"}))

    (stored,) = json.loads(path.read_text(encoding="utf-8"))
    assert stored["owner"] == "ops"
    assert stored["name"] == "Renamed"


def test_delete_removes_document(repository: JsonGraphRepository) -> None:
    repository.save(GraphDocument(id="a"))
    repository.save(GraphDocument(id="b"))

    assert repository.delete("a") is True
    assert [d.id for d in repository.list()] == ["b"]


def test_corrupt_or_unexpected_file_reads_as_empty(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    odd = tmp_path / "odd.json"
    odd.write_text('{"id": "x"}', encoding="utf-8")

    assert JsonGraphRepository(broken).list() == []
    assert JsonGraphRepository(odd).list() == []


def test_invalid_entries_are_skipped_and_kept_on_save(tmp_path: Path) -> None:
    path = tmp_path / "graphs.json"
    path.write_text(
        json.dumps([{"name": "No id"}, {"id": "r1", "name": "Rule"}, "junk"]),
        encoding="utf-8",
    )
    repo = JsonGraphRepository(path)

    assert [doc.id for doc in repo.list()] == ["r1"]
    assert repo.load("r1") is not None

    repo.save(GraphDocument(id="r2", name="New"))
    assert repo.delete("r1") is True

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored[0] == {"name": "No id"}
    assert stored[1] == "junk"
    assert stored[2]["id"] == "r2"
