"""Per-visit execution context for node actions.

A `NodeContext` is the whole surface a script can see. It is built fresh for
every node visit and closed as soon as the visit ends, after which `set_var`
refuses to write.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping, MutableMapping
from types import MappingProxyType
from typing import Any

from workflow_runner.http import HttpClient, HttpResponse

from .graph import ApiDescriptor, Node
from .variables import VariableStore

_script_logger = logging.getLogger("workflow_runner.scripts")


class NodeLogAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger that tags every record with the run and node ids."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


class NodeContext:
    """Capabilities available to a single node execution.

    Attributes:
        node: Descriptor of the node being executed.
        vars: Read-only snapshot of the variables committed before this visit.
        config: Read-only copy of the node's config.
        apis: Legacy API descriptors declared for the run.
        log: Logger scoped to this run and node.
        run_id: Identifier of the owning run.
    """

    __slots__ = ("node", "vars", "config", "apis", "log", "run_id", "_store", "_http", "_open")

    def __init__(
        self,
        *,
        node: Node,
        store: VariableStore,
        http: HttpClient,
        apis: tuple[ApiDescriptor, ...],
        run_id: str,
    ) -> None:
        self.node = node
        self.vars: Mapping[str, Any] = store.snapshot()
        self.config: Mapping[str, Any] = MappingProxyType(copy.deepcopy(dict(node.config)))
        self.apis = apis
        self.run_id = run_id
        self.log = NodeLogAdapter(_script_logger, {"run_id": run_id, "node_id": node.id})
        self._store = store
        self._http = http
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def set_var(self, name: str, value: Any) -> None:
        if not self._open:
            raise RuntimeError(
                f"Context for node {self.node.id!r} is closed; set_var is no longer available"
            )
        self._store.set(name, value)

    async def fetch(self, url: str, *, method: str = "GET", **kwargs: Any) -> HttpResponse:
        if not self._open:
            raise RuntimeError(f"Context for node {self.node.id!r} is closed")
        return await self._http.fetch(url, method=method, **kwargs)

    def close(self) -> None:
        self._open = False


class ContextBuilder:
    """Builds one `NodeContext` per node visit for a single run."""

    def __init__(
        self,
        *,
        store: VariableStore,
        http: HttpClient,
        apis: tuple[ApiDescriptor, ...] = (),
        run_id: str,
    ) -> None:
        self._store = store
        self._http = http
        self._apis = apis
        self._run_id = run_id

    def build(self, node: Node) -> NodeContext:
        return NodeContext(
            node=node,
            store=self._store,
            http=self._http,
            apis=self._apis,
            run_id=self._run_id,
        )
