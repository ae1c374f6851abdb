"""Edge condition parsing and evaluation.

Conditions are small boolean expressions written in the same dialect the graph
editor uses for edge labels, e.g. ``temperature >= 10 && temperature <= 20``.

Grammar (lowest to highest precedence)::

    or         := and ( "||" and )*
    and        := equality ( "&&" equality )*
    equality   := relational ( ( "===" | "!==" | "==" | "!=" ) relational )*
    relational := unary ( ( "<=" | ">=" | "<" | ">" ) unary )*
    unary      := "!" unary | primary
    primary    := NUMBER | STRING | true | false | null | undefined
                | IDENT ( "." IDENT )* | "(" or ")"

Nothing else is accepted: no calls, no attribute access beyond dotted variable
paths, no arithmetic.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from .errors import ExpressionEvaluationError
from .graph import Edge
from .variables import UNDEFINED

logger = logging.getLogger(__name__)

ELSE_KEYWORD = "else"

Resolver = Callable[[str], Any]

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?|\.\d+)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!()\-])
  | (?P<ident>[A-Za-z_$][A-Za-z0-9_$]*(?:\.[A-Za-z0-9_$]+)*)
    """,
    re.VERBOSE,
)

_KEYWORDS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": UNDEFINED,
}


@dataclass(frozen=True, slots=True)
class _Token:
    kind: str
    text: str
    pos: int


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise ExpressionEvaluationError(
                f"Unexpected character {source[pos]!r} at position {pos} in {source!r}"
            )
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind=kind, text=match.group(), pos=pos))
        pos = match.end()
    return tokens


# Expression tree


@dataclass(frozen=True, slots=True)
class Literal:
    value: Any

    def evaluate(self, resolve: Resolver) -> Any:
        return self.value


@dataclass(frozen=True, slots=True)
class Name:
    path: str

    def evaluate(self, resolve: Resolver) -> Any:
        return resolve(self.path)


@dataclass(frozen=True, slots=True)
class Not:
    operand: Expression

    def evaluate(self, resolve: Resolver) -> Any:
        return not is_truthy(self.operand.evaluate(resolve))


@dataclass(frozen=True, slots=True)
class Logical:
    op: str
    left: Expression
    right: Expression

    def evaluate(self, resolve: Resolver) -> Any:
        # Short-circuits and yields the deciding operand, like the editor dialect.
        left = self.left.evaluate(resolve)
        if self.op == "&&":
            return self.right.evaluate(resolve) if is_truthy(left) else left
        return left if is_truthy(left) else self.right.evaluate(resolve)


@dataclass(frozen=True, slots=True)
class Compare:
    op: str
    left: Expression
    right: Expression

    def evaluate(self, resolve: Resolver) -> Any:
        return _COMPARATORS[self.op](self.left.evaluate(resolve), self.right.evaluate(resolve))


Expression = Literal | Name | Not | Logical | Compare


class _Parser:
    def __init__(self, source: str) -> None:
        self._source = source
        self._tokens = _tokenize(source)
        self._pos = 0

    def parse(self) -> Expression:
        if not self._tokens:
            raise ExpressionEvaluationError("Empty condition")
        expr = self._or()
        if self._pos != len(self._tokens):
            tok = self._tokens[self._pos]
            raise ExpressionEvaluationError(
                f"Unexpected {tok.text!r} at position {tok.pos} in {self._source!r}"
            )
        return expr

    def _peek(self) -> _Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _accept(self, *ops: str) -> str | None:
        tok = self._peek()
        if tok is not None and tok.kind == "op" and tok.text in ops:
            self._pos += 1
            return tok.text
        return None

    def _or(self) -> Expression:
        expr = self._and()
        while self._accept("||"):
            expr = Logical("||", expr, self._and())
        return expr

    def _and(self) -> Expression:
        expr = self._equality()
        while self._accept("&&"):
            expr = Logical("&&", expr, self._equality())
        return expr

    def _equality(self) -> Expression:
        expr = self._relational()
        while (op := self._accept("===", "!==", "==", "!=")) is not None:
            expr = Compare(op, expr, self._relational())
        return expr

    def _relational(self) -> Expression:
        expr = self._unary()
        while (op := self._accept("<=", ">=", "<", ">")) is not None:
            expr = Compare(op, expr, self._unary())
        return expr

    def _unary(self) -> Expression:
        if self._accept("!"):
            return Not(self._unary())
        return self._primary()

    def _primary(self) -> Expression:
        tok = self._peek()
        if tok is None:
            raise ExpressionEvaluationError(f"Unexpected end of condition {self._source!r}")

        if tok.kind == "op" and tok.text == "(":
            self._pos += 1
            expr = self._or()
            if not self._accept(")"):
                raise ExpressionEvaluationError(f"Missing ')' in {self._source!r}")
            return expr

        if tok.kind == "op" and tok.text == "-":
            nxt = self._tokens[self._pos + 1] if self._pos + 1 < len(self._tokens) else None
            if nxt is not None and nxt.kind == "number":
                self._pos += 2
                return Literal(-float(nxt.text))

        self._pos += 1
        if tok.kind == "number":
            return Literal(float(tok.text))
        if tok.kind == "string":
            return Literal(_unquote(tok.text))
        if tok.kind == "ident":
            if tok.text in _KEYWORDS:
                return Literal(_KEYWORDS[tok.text])
            return Name(tok.text)

        raise ExpressionEvaluationError(
            f"Unexpected {tok.text!r} at position {tok.pos} in {self._source!r}"
        )


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


@lru_cache(maxsize=512)
def parse_condition(source: str) -> Expression:
    """Parse a condition string.

    Raises:
        ExpressionEvaluationError: if the string is not a valid condition.
    """

    return _Parser(source).parse()


# Value semantics


def _is_nullish(value: Any) -> bool:
    return value is None or value is UNDEFINED


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if _is_number(value):
        return float(value)
    if value is None:
        return 0.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def is_truthy(value: Any) -> bool:
    if _is_nullish(value) or value is False:
        return False
    if _is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    # Containers are truthy even when empty, matching the editor dialect.
    return True


def loose_equals(left: Any, right: Any) -> bool:
    if _is_nullish(left) or _is_nullish(right):
        return _is_nullish(left) and _is_nullish(right)
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    scalar = (str, int, float, bool)
    if isinstance(left, scalar) and isinstance(right, scalar):
        a, b = _to_number(left), _to_number(right)
        return not (math.isnan(a) or math.isnan(b)) and a == b
    return left is right or left == right


def strict_equals(left: Any, right: Any) -> bool:
    if _is_nullish(left) or _is_nullish(right):
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    if type(left) is not type(right):
        return False
    return left is right or left == right


def _relational(test: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def compare(left: Any, right: Any) -> bool:
        if isinstance(left, str) and isinstance(right, str):
            return test(left, right)
        a, b = _to_number(left), _to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False
        return test(a, b)

    return compare


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": loose_equals,
    "!=": lambda a, b: not loose_equals(a, b),
    "===": strict_equals,
    "!==": lambda a, b: not strict_equals(a, b),
    "<": _relational(lambda a, b: a < b),
    "<=": _relational(lambda a, b: a <= b),
    ">": _relational(lambda a, b: a > b),
    ">=": _relational(lambda a, b: a >= b),
}


def evaluate_condition(source: str, resolve: Resolver) -> bool:
    """Parse and evaluate `source`, returning its truthiness.

    Raises:
        ExpressionEvaluationError: if parsing or evaluation fails.
    """

    expr = parse_condition(source)
    try:
        return is_truthy(expr.evaluate(resolve))
    except ExpressionEvaluationError:
        raise
    except Exception as e:
        raise ExpressionEvaluationError(f"Failed to evaluate {source!r}: {e}") from e


@dataclass(frozen=True, slots=True)
class EdgeSelection:
    """Edges chosen for one node, plus the conditions that could not be evaluated."""

    taken: tuple[Edge, ...]
    errors: tuple[tuple[Edge, str], ...] = ()

    @property
    def is_dead_end(self) -> bool:
        return not self.taken


class EdgeEvaluator:
    """Select every outgoing edge whose condition holds.

    Branching is inclusive: all eligible edges are followed. An edge labelled
    ``else`` is eligible only when no conditional sibling was taken.
    """

    def select(self, edges: Sequence[Edge], resolve: Resolver) -> EdgeSelection:
        taken: list[Edge] = []
        fallbacks: list[Edge] = []
        errors: list[tuple[Edge, str]] = []
        any_conditional_taken = False

        for edge in edges:
            if edge.condition is None:
                taken.append(edge)
                continue
            if edge.condition.lower() == ELSE_KEYWORD:
                fallbacks.append(edge)
                continue
            try:
                ok = evaluate_condition(edge.condition, resolve)
            except ExpressionEvaluationError as e:
                logger.warning(
                    "Edge condition could not be evaluated; treating as false",
                    extra={"edge_id": edge.id, "condition": edge.condition, "error": str(e)},
                )
                errors.append((edge, str(e)))
                continue
            if ok:
                any_conditional_taken = True
                taken.append(edge)

        if not any_conditional_taken and fallbacks:
            taken.extend(fallbacks)
            # Keep declaration order stable for deterministic scheduling.
            order = {id(edge): idx for idx, edge in enumerate(edges)}
            taken.sort(key=lambda e: order[id(e)])

        return EdgeSelection(taken=tuple(taken), errors=tuple(errors))
