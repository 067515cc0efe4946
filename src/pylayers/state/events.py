"""Records produced by the cycle loop.

Only the engine creates these; subscribers and the history recorder consume
them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from pylayers.delta import encode_for_json


class SourcedDelta(BaseModel):
    """A delta together with the layer or producer that emitted it."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Layer name or proposing producer")
    delta: dict[str, Any] = Field(default_factory=dict)

    @field_validator("source")
    @classmethod
    def _normalize_source(cls, value: str) -> str:
        source = value.strip()
        if not source:
            raise ValueError("source must be non-empty")
        return source

    @field_serializer("delta", when_used="json")
    def _serialize_delta(self, value: dict[str, Any]) -> dict[str, Any]:
        return encode_for_json(value)


class CycleCompleted(BaseModel):
    """Notification emitted to ``"cycle"`` subscribers after every cycle."""

    model_config = ConfigDict(frozen=True)

    cycle_id: int
    delta_count: int = 0
    failed_layers: tuple[str, ...] = ()
