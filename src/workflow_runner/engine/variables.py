"""Per-run variable store.

Names are normalised on both read and write (lower-cased, dots replaced with
underscores) so that `Weather.Temp` and `weather_temp` address the same slot.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any, Final


class _Undefined:
    """Marker for a variable that has never been set."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Final = _Undefined()


def normalize_var_key(name: object) -> str:
    return str(name if name is not None else "").strip().lower().replace(".", "_")


class VariableStore:
    """Ordered name -> value mapping owned by exactly one run.

    Writes are only accepted while a node's execution window is open. The
    engine opens the window right before a node runs and closes it once the
    node's action settles.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {}
        self._writer: str | None = None
        for name, value in (initial or {}).items():
            self._values[normalize_var_key(name)] = copy.deepcopy(value)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __contains__(self, name: object) -> bool:
        return normalize_var_key(name) in self._values

    @property
    def writer(self) -> str | None:
        """Id of the node currently allowed to write, if any."""

        return self._writer

    def open_window(self, node_id: str) -> None:
        if self._writer is not None:
            raise RuntimeError(
                f"Node {node_id!r} cannot write while node {self._writer!r} is still executing"
            )
        self._writer = node_id

    def close_window(self) -> None:
        self._writer = None

    def get(self, name: str) -> Any:
        return self._values.get(normalize_var_key(name), UNDEFINED)

    def set(self, name: str, value: Any) -> None:
        if self._writer is None:
            raise RuntimeError("Variables can only be set while a node is executing")
        key = normalize_var_key(name)
        if not key:
            raise ValueError("Variable name must not be empty")
        # Stored by value: later changes to the caller's object are not writes.
        self._values[key] = copy.deepcopy(value)

    def resolve(self, path: str) -> Any:
        """Look up `path`, walking dotted segments through nested mappings.

        The flat normalised key wins when present, which mirrors how scripts
        that call `set_var("weather.temp", ...)` expect to read it back.
        """

        flat = self.get(path)
        if flat is not UNDEFINED or "." not in path:
            return flat

        head, *rest = path.split(".")
        current: Any = self.get(head)
        for part in rest:
            if isinstance(current, Mapping):
                current = current.get(part, UNDEFINED)
            elif isinstance(current, (list, tuple)) and part.isdigit():
                idx = int(part)
                current = current[idx] if idx < len(current) else UNDEFINED
            else:
                return UNDEFINED
            if current is UNDEFINED or current is None:
                return current
        return current

    def snapshot(self) -> Mapping[str, Any]:
        """Return a read-only deep copy of the current values.

        Nested containers are copied too, so mutating a value read from the
        snapshot never reaches the store.
        """

        return MappingProxyType(copy.deepcopy(self._values))
