"""Layer contract.

A layer owns a subtree of state (by convention) and turns a frozen snapshot
plus its queued actions into a delta. The engine calls every layer with the
same snapshot, so a layer never sees another layer's in-progress work.

Within one ``step`` a layer resolves its own conflicts: actions are handled
strictly in FIFO order and each decision is made against
"snapshot plus the delta already built in this step"; :class:`DeltaBuilder`
provides exactly that read model.
"""

from __future__ import annotations

import abc
import threading
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from pylayers.delta import TOMBSTONE, Delta, Snapshot, ValueKind, classify, freeze, thaw
from pylayers.state.store import deep_merge

_MISSING: Any = object()


@runtime_checkable
class Layer(Protocol):
    """What the engine needs from a layer."""

    name: str

    def queue_action(self, action: Mapping[str, Any]) -> None: ...

    def step(self, snapshot: Snapshot, cycle_id: int) -> Delta | None: ...


class BaseLayer(abc.ABC):
    """Layer with a thread-safe FIFO action queue.

    Producers may call :meth:`queue_action` at any time. :meth:`drain_actions`
    swaps the queue out under the lock, so a batch is never processed twice and
    actions queued during a step wait for the next one.
    """

    name: str = ""

    def __init__(self, name: str | None = None) -> None:
        self.name = name or self.name or type(self).__name__
        self._pending_actions: list[Mapping[str, Any]] = []
        self._actions_lock = threading.Lock()

    def queue_action(self, action: Mapping[str, Any]) -> None:
        if not isinstance(action, Mapping):
            raise TypeError(f"action must be a mapping, got {type(action).__name__}")
        with self._actions_lock:
            self._pending_actions.append(action)

    def drain_actions(self) -> list[Mapping[str, Any]]:
        with self._actions_lock:
            actions, self._pending_actions = self._pending_actions, []
        return actions

    @property
    def pending_count(self) -> int:
        with self._actions_lock:
            return len(self._pending_actions)

    @abc.abstractmethod
    def step(self, snapshot: Snapshot, cycle_id: int) -> Delta | None:
        """Return this layer's delta for the cycle, or ``None`` for no change.

        Must not mutate *snapshot*.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def _child(value: Any, key: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(key, _MISSING)
    return _MISSING


def _seeded(base: Any) -> dict[str, Any]:
    """An empty delta node that, once merged, leaves nothing of *base* behind."""
    if isinstance(base, Mapping):
        return {key: TOMBSTONE for key in base}
    return {}


def _replacement(base: Any, value: Mapping[str, Any]) -> dict[str, Any]:
    """Delta node that makes a path hold exactly *value* after merging over *base*."""
    node = _seeded(base)
    for key, item in value.items():
        if item is TOMBSTONE:
            if isinstance(base, Mapping) and key in base:
                node[key] = TOMBSTONE
            continue
        if classify(item) is ValueKind.MAPPING:
            node[key] = _replacement(_child(base, key), item)
        else:
            node[key] = thaw(item)
    return node


class DeltaBuilder:
    """Accumulates one step's delta and reads through it.

    :meth:`get` answers from the delta built so far and falls back to the
    snapshot, so a layer can tell whether an earlier action in the same batch
    already claimed, created or deleted something.

    ``set`` replaces the value at a path, ``merge`` patches it, ``delete``
    removes it. Replacing a mapping tombstones the snapshot keys the new value
    does not carry, so the committed result is exactly the value written.
    """

    def __init__(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        self._delta: dict[str, Any] = {}

    def get(self, *path: str, default: Any = None) -> Any:
        snap: Any = self._snapshot
        node: Any = self._delta
        for key in path:
            snap = _child(snap, key)
            if node is _MISSING:
                continue
            node = node.get(key, _MISSING) if isinstance(node, dict) else _MISSING
            if node is TOMBSTONE:
                return default
            if node is not _MISSING and classify(node) is not ValueKind.MAPPING:
                # Replaced wholesale in this step; the rest of the path lives inside it.
                snap, node = node, _MISSING
            elif isinstance(node, dict) and not isinstance(snap, Mapping):
                snap = _MISSING
        if node is _MISSING or not isinstance(node, dict):
            return default if snap is _MISSING else freeze(snap)
        merged = thaw(snap) if isinstance(snap, Mapping) else {}
        deep_merge(merged, node)
        return freeze(merged)

    def contains(self, *path: str) -> bool:
        return self.get(*path, default=_MISSING) is not _MISSING

    def set(self, *path: str, value: Any) -> None:
        if not path:
            raise ValueError("path must not be empty")
        if value is TOMBSTONE:
            self.delete(*path)
            return
        parent = self._node(path[:-1])
        if classify(value) is ValueKind.MAPPING:
            parent[path[-1]] = _replacement(self._snapshot_at(path), value)
        else:
            parent[path[-1]] = thaw(value)

    def merge(self, *path: str, value: Mapping[str, Any]) -> None:
        node = self._node(path)
        for key, item in value.items():
            if item is TOMBSTONE:
                self.delete(*path, key)
            elif classify(item) is ValueKind.MAPPING:
                self.merge(*path, key, value=item)
            else:
                node[key] = thaw(item)

    def delete(self, *path: str) -> None:
        if not path:
            raise ValueError("path must not be empty")
        if not self.contains(*path):
            return
        self._node(path[:-1])[path[-1]] = TOMBSTONE

    def build(self) -> dict[str, Any] | None:
        return self._delta or None

    def __bool__(self) -> bool:
        return bool(self._delta)

    def _snapshot_at(self, path: tuple[str, ...]) -> Any:
        value: Any = self._snapshot
        for key in path:
            value = _child(value, key)
        return value

    def _node(self, path: tuple[str, ...]) -> dict[str, Any]:
        node = self._delta
        snap: Any = self._snapshot
        for key in path:
            snap = _child(snap, key)
            child = node.get(key, _MISSING)
            if not isinstance(child, dict):
                # Deleted or replaced earlier in this step: start over from nothing.
                child = {} if child is _MISSING else _seeded(snap)
                node[key] = child
            node = child
        return node
