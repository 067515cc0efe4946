"""Claimable resources.

Owns ``state[resources_key]`` and credits actors under ``state[credit_key]``.

When several actors claim the same resource in one cycle, the action queued
first wins. Every later claim on that resource in the same batch is dropped
without credit, because each decision reads the snapshot overlaid with the
claims already made in this step.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pylayers.delta import Delta, Snapshot
from pylayers.layer import BaseLayer, DeltaBuilder

_logger = logging.getLogger(__name__)


class ClaimLayer(BaseLayer):
    """Handles ``{"type": "claim", "actor": ..., "resource": ...}`` actions.

    A resource is claimable while it exists and is not ``claimed``. A
    successful claim marks the resource ``claimed``/``claimed_by`` and adds
    its ``points`` (default ``1``) to the actor's ``score`` and ``claims``.
    Writing into the actor's subtree is a deliberate cross-entity write.
    """

    name = "claims"

    def __init__(
        self,
        name: str | None = None,
        *,
        resources_key: str = "resources",
        credit_key: str = "actors",
    ) -> None:
        super().__init__(name)
        self.resources_key = resources_key
        self.credit_key = credit_key

    def step(self, snapshot: Snapshot, cycle_id: int) -> Delta | None:
        actions = self.drain_actions()
        if not actions:
            return None

        builder = DeltaBuilder(snapshot)
        won = 0
        for action in actions:
            if action.get("type") != "claim":
                _logger.debug("Layer %r ignoring action type=%r", self.name, action.get("type"))
                continue
            if self._claim(builder, action):
                won += 1

        _logger.debug("Layer %r cycle %s: %s/%s claims won", self.name, cycle_id, won, len(actions))
        return builder.build()

    def _claim(self, builder: DeltaBuilder, action: Mapping[str, Any]) -> bool:
        actor = action.get("actor")
        resource_id = action.get("resource")
        if not isinstance(actor, str) or not isinstance(resource_id, str):
            _logger.warning("Layer %r dropping malformed claim: %r", self.name, action)
            return False

        resource = builder.get(self.resources_key, resource_id)
        if not isinstance(resource, Mapping) or resource.get("claimed"):
            return False

        builder.merge(self.resources_key, resource_id, value={"claimed": True, "claimed_by": actor})

        points = resource.get("points", 1)
        score = builder.get(self.credit_key, actor, "score", default=0)
        claims = builder.get(self.credit_key, actor, "claims", default=0)
        builder.merge(self.credit_key, actor, value={"score": score + points, "claims": claims + 1})
        return True
