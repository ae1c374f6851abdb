"""Runs a single node's action and turns the result into an outcome record.

Script bodies are Python source for the body of an async function taking
``ctx``::

    resp = await ctx.fetch(ctx.config["url"])
    ctx.set_var("weather", resp.json())

A body may instead define one of ``process_request``, ``handler``, ``main`` or
``run``; if it falls through without returning, the first of those found is
called with ``ctx`` (and awaited when it is a coroutine function).

Bodies are compiled against a small builtins table. Imports, ``global`` /
``nonlocal``, bare ``except:`` clauses, access to underscore-prefixed
attributes or dunder names, and frame introspection are rejected before
compilation. ``json`` and ``math`` are small helper tuples (``json.loads``,
``math.sqrt``, ...), not the modules.
"""

from __future__ import annotations

import ast
import asyncio
import builtins
import inspect
import json
import logging
import math
import textwrap
import time
from collections import namedtuple
from collections.abc import Awaitable, Callable
from typing import Any

from .context import ContextBuilder, NodeContext
from .errors import NodeExecutionError
from .graph import Node, NodeKind
from .report import NodeOutcome, OutcomeStatus
from .variables import VariableStore

logger = logging.getLogger(__name__)

ENTRYPOINT_NAMES: tuple[str, ...] = ("process_request", "handler", "main", "run")

_ACTION_NAME = "__node_action__"
_FALLTHROUGH_NAME = "__fallthrough__"

_SAFE_BUILTIN_NAMES = (
    "abs",
    "all",
    "any",
    "bool",
    "callable",
    "dict",
    "enumerate",
    "filter",
    "float",
    "int",
    "isinstance",
    "len",
    "list",
    "locals",
    "map",
    "max",
    "min",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "Exception",
    "IndexError",
    "KeyError",
    "RuntimeError",
    "TimeoutError",
    "TypeError",
    "ValueError",
    "ZeroDivisionError",
)

SAFE_BUILTINS: dict[str, Any] = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}

# Scripts never receive module objects, only these fixed helper tuples.
_JsonHelpers = namedtuple("_JsonHelpers", ["loads", "dumps"])
_MathHelpers = namedtuple(
    "_MathHelpers",
    [
        "ceil",
        "floor",
        "sqrt",
        "exp",
        "log",
        "log10",
        "fabs",
        "isnan",
        "isfinite",
        "inf",
        "nan",
        "pi",
        "e",
    ],
)

JSON_HELPERS = _JsonHelpers(loads=json.loads, dumps=json.dumps)
MATH_HELPERS = _MathHelpers(*(getattr(math, name) for name in _MathHelpers._fields))

# Introspection attributes that lead from a coroutine, frame or traceback back
# into module globals.
_FORBIDDEN_ATTRIBUTES = frozenset(
    {
        "ag_code",
        "ag_frame",
        "cr_await",
        "cr_code",
        "cr_frame",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "gi_code",
        "gi_frame",
        "gi_yieldfrom",
        "tb_frame",
        "tb_next",
    }
)

ScriptAction = Callable[[NodeContext], Awaitable[Any]]


class _Fallthrough:
    """Returned when a script body ends without an explicit return."""

    __slots__ = ("namespace",)

    def __init__(self, namespace: dict[str, Any]) -> None:
        self.namespace = namespace


class _ScriptGuard(ast.NodeVisitor):
    def __init__(self, node_id: str) -> None:
        self._node_id = node_id

    def _reject(self, node: ast.AST, what: str) -> None:
        # Line numbers are relative to the user body, not the generated wrapper.
        line = getattr(node, "lineno", 2) - 1
        raise NodeExecutionError(self._node_id, f"{what} is not allowed in scripts (line {line})")

    def visit_Import(self, node: ast.Import) -> None:
        self._reject(node, "import")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(node, "import")

    def visit_Global(self, node: ast.Global) -> None:
        self._reject(node, "global")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._reject(node, "nonlocal")

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        # A bare except would swallow the engine's cancellation of the node.
        if node.type is None:
            self._reject(node, "bare except")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_") or node.attr in _FORBIDDEN_ATTRIBUTES:
            self._reject(node, f"attribute {node.attr!r}")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._reject(node, f"name {node.id!r}")


def compile_script(node_id: str, source: str) -> ScriptAction:
    """Compile a script body into an async callable taking the node context.

    Raises:
        NodeExecutionError: if the body is not valid Python or uses a
            forbidden construct.
    """

    body = textwrap.indent(textwrap.dedent(source).strip("\n") or "pass", "    ")
    wrapped = f"async def {_ACTION_NAME}(ctx):\n{body}\n"
    try:
        module = ast.parse(wrapped, filename=f"<node {node_id}>")
    except SyntaxError as e:
        lineno = (e.lineno or 1) - 1
        raise NodeExecutionError(node_id, f"Script syntax error on line {lineno}: {e.msg}") from e

    func = module.body[0]
    assert isinstance(func, ast.AsyncFunctionDef)
    guard = _ScriptGuard(node_id)
    for stmt in func.body:
        guard.visit(stmt)

    func.body.append(
        ast.Return(
            value=ast.Call(
                func=ast.Name(id=_FALLTHROUGH_NAME, ctx=ast.Load()),
                args=[ast.Call(func=ast.Name(id="locals", ctx=ast.Load()), args=[], keywords=[])],
                keywords=[],
            )
        )
    )
    ast.fix_missing_locations(module)

    namespace: dict[str, Any] = {
        "__builtins__": SAFE_BUILTINS,
        _FALLTHROUGH_NAME: _Fallthrough,
        "json": JSON_HELPERS,
        "math": MATH_HELPERS,
        "sleep": asyncio.sleep,
    }
    exec(compile(module, f"<node {node_id}>", "exec"), namespace)  # noqa: S102
    action: ScriptAction = namespace[_ACTION_NAME]
    return action


async def _call_entrypoint(result: _Fallthrough, ctx: NodeContext) -> Any:
    for name in ENTRYPOINT_NAMES:
        candidate = result.namespace.get(name)
        if callable(candidate):
            value = candidate(ctx)
            if inspect.isawaitable(value):
                value = await value
            return value
    return None


class NodeExecutor:
    """Executes nodes for one run, yielding exactly one outcome per visit."""

    def __init__(
        self,
        *,
        builder: ContextBuilder,
        store: VariableStore,
        record_error_vars: bool = True,
    ) -> None:
        self._builder = builder
        self._store = store
        self._record_error_vars = record_error_vars
        self._compiled: dict[str, ScriptAction] = {}

    def _script_for(self, node: Node) -> ScriptAction:
        action = self._compiled.get(node.id)
        if action is None:
            action = compile_script(node.id, node.script or "")
            self._compiled[node.id] = action
        return action

    async def _run_action(self, node: Node, ctx: NodeContext) -> None:
        if node.kind is NodeKind.NOOP:
            return

        if node.kind is NodeKind.SCRIPT:
            result = await self._script_for(node)(ctx)
            if isinstance(result, _Fallthrough):
                await _call_entrypoint(result, ctx)
            return

        if node.kind is NodeKind.LEGACY_API:
            if node.url is None or node.result_var is None:
                raise NodeExecutionError(node.id, "Legacy API node is missing url or result var")
            resp = await ctx.fetch(node.url, method=node.method)
            if not resp.ok:
                raise NodeExecutionError(
                    node.id, f"{node.method} {node.url} returned HTTP {resp.status}"
                )
            ctx.set_var(node.result_var, resp.parsed())
            return

        raise NodeExecutionError(node.id, f"Unsupported node kind: {node.kind}")

    async def execute(self, node: Node) -> NodeOutcome:
        started = time.perf_counter()
        ctx = self._builder.build(node)
        self._store.open_window(node.id)
        try:
            try:
                await self._run_action(node, ctx)
            except Exception as e:
                error = _as_node_error(node.id, e)
                logger.warning(
                    "Node failed",
                    extra={"node_id": node.id, "kind": node.kind.value, "error": str(error)},
                    exc_info=e,
                )
                if self._record_error_vars:
                    self._store.set(f"node_{node.id}_error", str(error))
                return NodeOutcome(
                    node_id=node.id,
                    status=OutcomeStatus.FAILURE,
                    error=str(error),
                    duration_ms=_elapsed_ms(started),
                )
        finally:
            ctx.close()
            self._store.close_window()

        logger.debug("Node succeeded", extra={"node_id": node.id, "kind": node.kind.value})
        return NodeOutcome(
            node_id=node.id,
            status=OutcomeStatus.SUCCESS,
            duration_ms=_elapsed_ms(started),
        )


def _as_node_error(node_id: str, exc: Exception) -> NodeExecutionError:
    if isinstance(exc, NodeExecutionError):
        return exc
    error = NodeExecutionError(node_id, f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)
