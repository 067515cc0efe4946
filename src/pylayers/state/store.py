"""Single-owner state store.

This is the only component allowed to write the shared state tree. Everything
else reads frozen snapshots.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pylayers.delta import Delta, Snapshot, State, ValueKind, classify, freeze, thaw
from pylayers.exceptions import MalformedDeltaError, SetupError, StoreAlreadyInitializedError

_logger = logging.getLogger(__name__)


def validate_delta(delta: Any, *, source: str = "") -> Delta:
    """Return *delta* unchanged, or raise if its top level is not a mapping."""
    if classify(delta) is not ValueKind.MAPPING:
        raise MalformedDeltaError(
            f"delta from {source or '<unknown>'} is {type(delta).__name__}, expected a mapping",
            source=source,
        )
    return delta


def prepare_delta(delta: Any, *, source: str = "") -> dict[str, Any]:
    """Validate *delta* and return an independent copy of it.

    Raises :class:`MalformedDeltaError` when the top level is not a mapping or
    when some value inside it cannot be copied.
    """
    validate_delta(delta, source=source)
    try:
        return thaw(delta)
    except Exception as exc:
        raise MalformedDeltaError(
            f"delta from {source or '<unknown>'} cannot be copied: {exc!r}",
            source=source,
        ) from exc


def deep_merge(target: dict[str, Any], delta: Delta, *, copy_values: bool = True) -> None:
    """Merge *delta* into *target* in place.

    Tombstones delete, mappings recurse (replacing any non-dict value first),
    everything else is an atomic replacement. Pass ``copy_values=False`` only
    for a delta that is already an independent copy, such as the result of
    :func:`prepare_delta`.
    """
    for key, value in delta.items():
        kind = classify(value)
        if kind is ValueKind.TOMBSTONE:
            target.pop(key, None)
        elif kind is ValueKind.MAPPING:
            existing = target.get(key)
            if not isinstance(existing, dict):
                existing = {}
                target[key] = existing
            deep_merge(existing, value, copy_values=copy_values)
        else:
            target[key] = thaw(value) if copy_values else value


class StateStore:
    """Owner of the single mutable state tree.

    Deltas touching disjoint key paths commute; deltas touching the same path
    are applied in list order, so the later one wins. That ordering is what
    turns layer registration order and proposal arrival order into the
    conflict-resolution rule.
    """

    def __init__(self) -> None:
        self._state: State = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, initial: Mapping[str, Any]) -> None:
        """Set the initial state. Allowed exactly once, before cycles start."""
        if self._initialized:
            raise StoreAlreadyInitializedError("state store is already initialized")
        if classify(initial) is not ValueKind.MAPPING:
            raise SetupError(f"initial state must be a mapping, got {type(initial).__name__}")
        self._state = thaw(initial)
        self._initialized = True

    def snapshot(self) -> Snapshot:
        """Return a deep, read-only copy of the current state."""
        return freeze(self._state)

    def dump(self) -> State:
        """Return a mutable deep copy of the current state, for diagnostics."""
        return thaw(self._state)

    def commit(self, ordered_deltas: Iterable[Delta]) -> int:
        """Apply *ordered_deltas* in order and return how many were applied.

        A malformed delta is logged and skipped; it never prevents the rest
        of the batch from applying. Each delta is copied in full before any
        of it touches state, so a delta is applied completely or not at all.
        """
        applied = 0
        for index, delta in enumerate(ordered_deltas):
            try:
                prepared = prepare_delta(delta, source=f"batch[{index}]")
            except MalformedDeltaError as exc:
                _logger.warning("Skipping malformed delta: %s", exc)
                continue
            deep_merge(self._state, prepared, copy_values=False)
            applied += 1
        return applied
