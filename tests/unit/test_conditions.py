"""Unit tests for edge condition parsing and selection."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from workflow_runner.engine.conditions import (
    EdgeEvaluator,
    evaluate_condition,
    is_truthy,
    loose_equals,
    parse_condition,
    strict_equals,
)
from workflow_runner.engine.errors import ExpressionEvaluationError
from workflow_runner.engine.graph import Edge
from workflow_runner.engine.variables import UNDEFINED, VariableStore


def _resolver(**values: Any):
    return VariableStore(values).resolve


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        ("temperature < 10", False),
        ("temperature >= 10 && temperature <= 20", True),
        ("temperature > 20", False),
        ("!(temperature > 20)", True),
        ("temperature == '15'", True),
        ("temperature === '15'", False),
        ("temperature !== 15", False),
        ("status == 'ok' || temperature > 100", True),
        ("false || temperature < 0 && true", False),
        ("missing == null", True),
        ("missing === undefined", True),
        ("missing === null", False),
        ("missing > 0", False),
        ("weather.current.temp <= -1.5", True),
        ('label == "it\\"s"', True),
        ("name < 'bob'", True),
    ],
)
def test_evaluate_condition(source: str, expected: bool) -> None:
    resolve = _resolver(
        temperature=15,
        status="ok",
        weather={"current": {"temp": -2}},
        label='it"s',
        name="alice",
    )

    assert evaluate_condition(source, resolve) is expected


def test_and_binds_tighter_than_or() -> None:
    expr = parse_condition("a || b && c")

    assert type(expr).__name__ == "Logical"
    assert expr.op == "||"  # type: ignore[union-attr]


@pytest.mark.parametrize(
    "source",
    ["", "a >", "(a > 1", "a > 1)", "foo(1)", "a + 1", "a = 1"],
)
def test_malformed_conditions_raise(source: str) -> None:
    with pytest.raises(ExpressionEvaluationError):
        evaluate_condition(source, _resolver(a=1))


def test_truthiness_follows_editor_dialect() -> None:
    assert not is_truthy(0)
    assert not is_truthy("")
    assert not is_truthy(None)
    assert not is_truthy(UNDEFINED)
    assert not is_truthy(float("nan"))
    assert is_truthy("0")
    assert is_truthy([])
    assert is_truthy({})


def test_loose_and_strict_equality() -> None:
    assert loose_equals(1, "1")
    assert loose_equals(True, 1)
    assert loose_equals(None, UNDEFINED)
    assert not loose_equals(0, None)
    assert strict_equals(1, 1.0)
    assert not strict_equals(1, "1")
    assert not strict_equals(True, 1)
    assert not strict_equals(None, UNDEFINED)


def _edges(*conditions: str | None) -> list[Edge]:
    return [
        Edge(id=f"e{i}", source="s", target=f"t{i}", condition=c) for i, c in enumerate(conditions)
    ]


def test_temperature_routes_to_exactly_one_branch() -> None:
    edges = _edges("temperature < 10", "temperature >= 10 && temperature <= 20", "temperature > 20")

    selection = EdgeEvaluator().select(edges, _resolver(temperature=15))

    assert [e.target for e in selection.taken] == ["t1"]
    assert not selection.is_dead_end


def test_branching_is_inclusive() -> None:
    edges = _edges(None, "x > 1", "x > 2", "x > 100")

    selection = EdgeEvaluator().select(edges, _resolver(x=5))

    assert [e.target for e in selection.taken] == ["t0", "t1", "t2"]


def test_else_edge_only_when_no_condition_holds() -> None:
    edges = _edges("else", "x > 1")

    hit = EdgeEvaluator().select(edges, _resolver(x=5))
    miss = EdgeEvaluator().select(edges, _resolver(x=0))

    assert [e.target for e in hit.taken] == ["t1"]
    assert [e.target for e in miss.taken] == ["t0"]


def test_else_edge_keeps_declaration_order_with_unconditional_edges() -> None:
    edges = _edges("x > 1", "ELSE", None)

    selection = EdgeEvaluator().select(edges, _resolver(x=0))

    assert [e.target for e in selection.taken] == ["t1", "t2"]


def test_unparseable_condition_is_false_and_reported(caplog: pytest.LogCaptureFixture) -> None:
    edges = _edges("x >>> 1", "x < 0")

    with caplog.at_level(logging.WARNING, logger="workflow_runner.engine.conditions"):
        selection = EdgeEvaluator().select(edges, _resolver(x=5))

    assert selection.is_dead_end
    assert [edge.id for edge, _ in selection.errors] == ["e0"]
    assert "treating as false" in caplog.text
