"""
Host callbacks for sandboxed commands.

The four functions bound into every command scope (log, err, get, set) are
the only capabilities sandboxed code has. They run in the host process; the
sandbox reaches them through the child protocol. Values crossing the
boundary are restricted to JSON-shaped data and copied on the way in and out.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, MutableMapping

from webshell_core.messages import OutputEvent, PrintError, PrintOutput

from sandbox.protocol import OpaqueValue, is_json_value

logger = logging.getLogger(__name__)

Emit = Callable[[OutputEvent], None]

HOST_FUNCTION_NAMES = ("log", "err", "get", "set")


def marshal(value: object) -> object:
    """Deep-copy a JSON-shaped value. Tuples come back as lists."""
    return json.loads(json.dumps(value))


class HostStore:
    """Key/value store shared by every command a shell runs."""

    def __init__(self, data: MutableMapping[str, object] | None = None) -> None:
        self._data: MutableMapping[str, object] = data if data is not None else {}

    def get(self, key: str) -> object:
        if key not in self._data:
            return None
        return marshal(self._data[key])

    def set(self, key: str, value: object) -> None:
        self._data[key] = marshal(value)

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


def _type_name(value: object) -> str:
    if isinstance(value, OpaqueValue):
        return value.type_name
    return type(value).__name__


def build_host_functions(store: HostStore, emit: Emit) -> dict[str, Callable[..., object]]:
    """Create the log/err/get/set callbacks for one command scope."""

    def log(text: object) -> None:
        if type(text) is str:
            emit(PrintOutput(text))
        else:
            emit(PrintError(f"invalid argument to log: not a string (got {_type_name(text)})"))

    def err(text: object) -> None:
        if type(text) is str:
            emit(PrintError(text))
        else:
            emit(PrintError(f"invalid argument to err: not a string (got {_type_name(text)})"))

    def get(key: object) -> object:
        if type(key) is not str:
            emit(PrintError(f"invalid argument to get: key is not a string (got {_type_name(key)})"))
            return None
        return store.get(key)

    def set(key: object, value: object) -> None:
        if type(key) is not str:
            emit(PrintError(f"invalid argument to set: key is not a string (got {_type_name(key)})"))
            return
        if not is_json_value(value):
            emit(PrintError(f"invalid argument to set: value is not serializable (got {_type_name(value)})"))
            return
        store.set(key, value)
        logger.debug("Stored key %r", key)

    return {"log": log, "err": err, "get": get, "set": set}
