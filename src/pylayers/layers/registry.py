"""Keyed entries with add/update/remove actions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pylayers.delta import Delta, Snapshot, thaw
from pylayers.layer import BaseLayer, DeltaBuilder

_logger = logging.getLogger(__name__)


class RegistryLayer(BaseLayer):
    """Owns ``state[key]``, a mapping of entry id to entry.

    Actions (processed in FIFO order, each against snapshot plus the delta
    built so far):

    * ``{"type": "add", "id": ..., "fields": {...}}`` creates
      ``{**defaults, **fields, "id": id}`` unless the entry already exists.
    * ``{"type": "update", "id": ..., "fields": {...}}`` merges fields into an
      existing entry; updates to missing entries are dropped.
    * ``{"type": "remove", "id": ...}`` deletes the entry.
    """

    name = "registry"

    def __init__(
        self,
        name: str | None = None,
        *,
        key: str = "entries",
        defaults: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(name)
        self.key = key
        self.defaults: dict[str, Any] = thaw(defaults or {})
        self._handlers: dict[str, Callable[[DeltaBuilder, str, Mapping[str, Any]], None]] = {
            "add": self._add,
            "update": self._update,
            "remove": self._remove,
        }

    def step(self, snapshot: Snapshot, cycle_id: int) -> Delta | None:
        actions = self.drain_actions()
        if not actions:
            return None

        builder = DeltaBuilder(snapshot)
        for action in actions:
            action_type = action.get("type")
            handler = self._handlers.get(action_type) if isinstance(action_type, str) else None
            if handler is None:
                _logger.debug("Layer %r ignoring action type=%r", self.name, action_type)
                continue
            entry_id = action.get("id")
            if not isinstance(entry_id, str) or not entry_id:
                _logger.warning("Layer %r dropping action without id: %r", self.name, action)
                continue
            handler(builder, entry_id, action)
        return builder.build()

    def _fields(self, action: Mapping[str, Any]) -> Mapping[str, Any] | None:
        fields = action.get("fields", {})
        if not isinstance(fields, Mapping):
            _logger.warning("Layer %r dropping action with non-mapping fields: %r", self.name, action)
            return None
        return fields

    def _add(self, builder: DeltaBuilder, entry_id: str, action: Mapping[str, Any]) -> None:
        if builder.contains(self.key, entry_id):
            _logger.debug("Layer %r: entry %r already exists", self.name, entry_id)
            return
        fields = self._fields(action)
        if fields is None:
            return
        builder.set(self.key, entry_id, value={**self.defaults, **fields, "id": entry_id})

    def _update(self, builder: DeltaBuilder, entry_id: str, action: Mapping[str, Any]) -> None:
        if not builder.contains(self.key, entry_id):
            _logger.debug("Layer %r: update for unknown entry %r dropped", self.name, entry_id)
            return
        fields = self._fields(action)
        if fields:
            builder.merge(self.key, entry_id, value=fields)

    def _remove(self, builder: DeltaBuilder, entry_id: str, action: Mapping[str, Any]) -> None:
        builder.delete(self.key, entry_id)
