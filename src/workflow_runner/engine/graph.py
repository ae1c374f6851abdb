"""Canonical graph model and the validator that produces it.

Stored graphs arrive in several shapes:
- a bare list of nodes (the legacy shape, no edges)
- `{"nodes": [...], "edges": [...]}`
- either of the above serialised as a JSON string

Node fields may sit at the top level or under `data` (the editor shape), and
several fields have historical aliases. `validate_graph` folds all of this
into one frozen `Graph` and decides every node's kind exactly once.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .errors import GraphValidationError

_API_LABEL_PREFIX = re.compile(r"^api[:\s-]*", re.IGNORECASE)


class NodeKind(str, Enum):
    SCRIPT = "script"
    LEGACY_API = "legacy_api"
    NOOP = "noop"


@dataclass(frozen=True, slots=True)
class ApiDescriptor:
    """A legacy API definition shared by every node in a run."""

    name: str
    url: str | None = None
    method: str = "GET"
    script: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"name": self.name, "method": self.method}
        if self.url is not None:
            out["url"] = self.url
        if self.script is not None:
            out["script"] = self.script
        return out

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> ApiDescriptor:
        name = _first_str(obj, "name", "label", "displayName", "id") or ""
        script = _first_str(obj, "script", "function", "fnString", "functionBody")
        method = _first_str(obj, "method") or "GET"
        return ApiDescriptor(
            name=name.strip(),
            url=_first_str(obj, "url", "apiUrl"),
            method=method.upper(),
            script=script if script and script.strip() else None,
        )


@dataclass(frozen=True, slots=True)
class Node:
    id: str
    kind: NodeKind
    label: str = ""
    script: str | None = None
    config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    url: str | None = None
    method: str = "GET"
    result_var: str | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "label": self.label,
            "script": self.script,
            "config": dict(self.config),
            "url": self.url,
            "method": self.method,
            "result_var": self.result_var,
        }


@dataclass(frozen=True, slots=True)
class Edge:
    id: str
    source: str
    target: str
    condition: str | None = None

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None

    def to_json(self) -> dict[str, object]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "condition": self.condition,
        }


@dataclass(frozen=True, slots=True)
class Graph:
    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...]
    _by_id: Mapping[str, Node] = field(init=False, repr=False, compare=False)
    _outgoing: Mapping[str, tuple[Edge, ...]] = field(init=False, repr=False, compare=False)
    _incoming: Mapping[str, tuple[Edge, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        outgoing: dict[str, list[Edge]] = {n.id: [] for n in self.nodes}
        incoming: dict[str, list[Edge]] = {n.id: [] for n in self.nodes}
        for edge in self.edges:
            outgoing.setdefault(edge.source, []).append(edge)
            incoming.setdefault(edge.target, []).append(edge)
        object.__setattr__(self, "_by_id", MappingProxyType({n.id: n for n in self.nodes}))
        object.__setattr__(
            self, "_outgoing", MappingProxyType({k: tuple(v) for k, v in outgoing.items()})
        )
        object.__setattr__(
            self, "_incoming", MappingProxyType({k: tuple(v) for k, v in incoming.items()})
        )

    def node(self, node_id: str) -> Node:
        try:
            return self._by_id[node_id]
        except KeyError:
            raise KeyError(f"Unknown node id: {node_id}") from None

    def has_node(self, node_id: str) -> bool:
        return node_id in self._by_id

    def outgoing(self, node_id: str) -> tuple[Edge, ...]:
        return self._outgoing.get(node_id, ())

    def incoming(self, node_id: str) -> tuple[Edge, ...]:
        return self._incoming.get(node_id, ())

    def entry_nodes(self) -> list[str]:
        """Nodes without incoming edges, in declaration order."""

        return [n.id for n in self.nodes if not self._incoming.get(n.id)]

    def to_json(self) -> dict[str, object]:
        return {
            "nodes": [n.to_json() for n in self.nodes],
            "edges": [e.to_json() for e in self.edges],
        }


def _first_str(obj: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value != "":
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return None


def _node_fields(raw: Mapping[str, Any]) -> dict[str, Any]:
    # `data` carries the editor's fields; top-level values win on conflict.
    data = raw.get("data")
    merged: dict[str, Any] = dict(data) if isinstance(data, Mapping) else {}
    for key, value in raw.items():
        if key != "data":
            merged[key] = value
    return merged


def _match_api(label: str, apis: Sequence[ApiDescriptor]) -> ApiDescriptor | None:
    normalized = _API_LABEL_PREFIX.sub("", label.strip()).strip().lower()
    if not normalized:
        return None
    for api in apis:
        candidate = api.name.lower()
        if not candidate:
            continue
        if candidate == normalized or candidate in normalized or normalized in candidate:
            return api
    return None


def _build_node(raw: object, index: int, apis: Sequence[ApiDescriptor]) -> Node:
    if not isinstance(raw, Mapping):
        raise GraphValidationError(f"Node at index {index} is not an object")

    fields = _node_fields(raw)
    node_id = _first_str(fields, "id")
    if node_id is None or not node_id.strip():
        raise GraphValidationError(f"Node at index {index} has no id")

    config_raw = fields.get("config")
    if config_raw is None:
        config: dict[str, Any] = {}
    elif isinstance(config_raw, Mapping):
        config = dict(config_raw)
    else:
        raise GraphValidationError(f"Node {node_id!r} has a non-object config")

    label = _first_str(fields, "label", "labelText") or ""
    script = _first_str(fields, "script", "fnString")
    if script is not None and not script.strip():
        script = None
    url = _first_str(fields, "url", "apiUrl")
    method = (_first_str(fields, "method") or _first_str(config, "method") or "GET").upper()
    result_var = _first_str(fields, "resultVar", "result_var", "varName", "variable")

    explicit = fields.get("kind")
    if explicit is not None:
        try:
            kind = NodeKind(str(explicit))
        except ValueError:
            raise GraphValidationError(
                f"Node {node_id!r} has unknown kind {explicit!r}"
            ) from None
    elif script is not None:
        kind = NodeKind.SCRIPT
    elif url is not None:
        kind = NodeKind.LEGACY_API
    else:
        kind = NodeKind.NOOP
        api = _match_api(label, apis)
        if api is not None and api.script is not None:
            kind, script = NodeKind.SCRIPT, api.script
        elif api is not None and api.url is not None:
            kind, url, method = NodeKind.LEGACY_API, api.url, api.method

    if kind is NodeKind.SCRIPT and script is None:
        raise GraphValidationError(f"Script node {node_id!r} has no script body")
    if kind is NodeKind.LEGACY_API and url is None:
        raise GraphValidationError(f"Legacy API node {node_id!r} has no url")
    if kind is NodeKind.LEGACY_API and result_var is None:
        result_var = f"{node_id}_result"

    return Node(
        id=node_id,
        kind=kind,
        label=label,
        script=script,
        config=MappingProxyType(config),
        url=url,
        method=method,
        result_var=result_var,
    )


def _build_edge(raw: object, index: int) -> Edge:
    if not isinstance(raw, Mapping):
        raise GraphValidationError(f"Edge at index {index} is not an object")
    source = _first_str(raw, "source", "from")
    target = _first_str(raw, "target", "to")
    if source is None or target is None:
        raise GraphValidationError(f"Edge at index {index} is missing its source or target")

    condition = _first_str(raw, "condition", "label")
    if condition is not None and not condition.strip():
        condition = None
    edge_id = _first_str(raw, "id") or f"edge_{source}_{target}"
    return Edge(
        id=edge_id,
        source=source,
        target=target,
        condition=condition.strip() if condition is not None else None,
    )


def validate_graph(raw: object, *, apis: Sequence[ApiDescriptor] = ()) -> Graph:
    """Normalise a raw graph into a canonical `Graph`.

    Raises:
        GraphValidationError: on an unrecognised shape, a node without an id,
            duplicate node ids, or an edge that references a missing node.
    """

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise GraphValidationError(f"Graph is not valid JSON: {e}") from e

    if isinstance(raw, Mapping):
        raw_nodes = raw.get("nodes") or []
        raw_edges = raw.get("edges") or []
    elif isinstance(raw, Sequence):
        raw_nodes, raw_edges = raw, []
    else:
        raise GraphValidationError(f"Unsupported graph shape: {type(raw).__name__}")

    if not isinstance(raw_nodes, Sequence) or isinstance(raw_nodes, (str, bytes)):
        raise GraphValidationError("Graph 'nodes' must be a list")
    if not isinstance(raw_edges, Sequence) or isinstance(raw_edges, (str, bytes)):
        raise GraphValidationError("Graph 'edges' must be a list")

    nodes: list[Node] = []
    seen: set[str] = set()
    for idx, item in enumerate(raw_nodes):
        node = _build_node(item, idx, apis)
        if node.id in seen:
            raise GraphValidationError(f"Duplicate node id: {node.id!r}")
        seen.add(node.id)
        nodes.append(node)

    edges: list[Edge] = []
    for idx, item in enumerate(raw_edges):
        edge = _build_edge(item, idx)
        for end in (edge.source, edge.target):
            if end not in seen:
                raise GraphValidationError(
                    f"Edge {edge.id!r} references missing node {end!r}"
                )
        edges.append(edge)

    return Graph(nodes=tuple(nodes), edges=tuple(edges))


def parse_apis(raw: object) -> tuple[ApiDescriptor, ...]:
    """Build descriptors from a raw list, skipping entries that are not objects."""

    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return ()
    return tuple(ApiDescriptor.from_json(item) for item in raw if isinstance(item, Mapping))
