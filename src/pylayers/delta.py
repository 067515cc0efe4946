"""Delta values and the tagged union the state merge recurses over.

A delta is a partial, State-shaped mapping. Every value inside it falls into
exactly one :class:`ValueKind`:

* ``TOMBSTONE`` - delete the key, whatever it held before.
* ``MAPPING`` - merge recursively into the mapping at that key.
* ``LIST`` - replace wholesale; lists are never merged element-wise.
* ``SCALAR`` - replace wholesale.

Snapshots handed to layers are frozen with :func:`freeze` (mappings become
``MappingProxyType`` views, lists become tuples, sets become frozensets).
:func:`thaw` turns any value, frozen or not, back into independent plain
``dict``/``list``/``set`` data. Set members are hashable and are not copied.
"""

from __future__ import annotations

import copy
import enum
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Final, TypeAlias


class _Tombstone(enum.Enum):
    TOMBSTONE = "tombstone"

    def __repr__(self) -> str:
        return "TOMBSTONE"


TOMBSTONE: Final = _Tombstone.TOMBSTONE
"""Delta marker meaning "delete this key"."""

State: TypeAlias = dict[str, Any]
Snapshot: TypeAlias = Mapping[str, Any]
Delta: TypeAlias = Mapping[str, Any]


class ValueKind(enum.StrEnum):
    SCALAR = "scalar"
    LIST = "list"
    MAPPING = "mapping"
    TOMBSTONE = "tombstone"


def classify(value: Any) -> ValueKind:
    """Return the merge kind of *value*."""
    if value is TOMBSTONE:
        return ValueKind.TOMBSTONE
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    return ValueKind.SCALAR


def freeze(value: Any) -> Any:
    """Return a read-only deep copy of *value*."""
    kind = classify(value)
    if kind is ValueKind.MAPPING:
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if kind is ValueKind.LIST:
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(value)
    if kind is ValueKind.SCALAR:
        return copy.deepcopy(value)
    return value


def thaw(value: Any) -> Any:
    """Return an independent, mutable deep copy of *value*.

    Accepts frozen snapshot views as well as plain data.
    """
    kind = classify(value)
    if kind is ValueKind.MAPPING:
        return {key: thaw(item) for key, item in value.items()}
    if kind is ValueKind.LIST:
        return [thaw(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return set(value)
    if kind is ValueKind.SCALAR:
        return copy.deepcopy(value)
    return value


def is_empty_delta(delta: Any) -> bool:
    """``None`` and ``{}`` both mean "no change"."""
    if delta is None:
        return True
    return isinstance(delta, Mapping) and not delta


def encode_for_json(value: Any) -> Any:
    """Render a delta as JSON-compatible data; tombstones become ``None``."""
    kind = classify(value)
    if kind is ValueKind.TOMBSTONE:
        return None
    if kind is ValueKind.MAPPING:
        return {str(key): encode_for_json(item) for key, item in value.items()}
    if kind is ValueKind.LIST:
        return [encode_for_json(item) for item in value]
    return value
